"""Trade execution for grid backtests.

Turns a level crossing into a concrete buy or sell against the settlement
ledger: lot rounding, fees, lot bookkeeping and transaction records.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from fundgrid.config import GridStrategyConfig, SellPolicy, WidthMode
from fundgrid.grid import floor_to_lot
from fundgrid.models import (
    ExecutionResult,
    GridLevel,
    LevelTier,
    Lot,
    Transaction,
    TransactionKind,
    TriggerOutcome,
)
from fundgrid.settlement import SettlementLedger

logger = logging.getLogger(__name__)

# Dynamic-policy retention never withholds more than this share of a sale
MAX_RETAINED_FRACTION = Decimal("0.8")


class TradeExecutionEngine:
    """Execute buy and sell triggers for one backtest run.

    Buys always size from the level's precomputed nominal sizing. Sells are
    sized by the configured sell policy:
    - FIXED_MATCHING: sell settled lots whose tier is present on the crossed
      level and whose target sell offset that tier has reached, oldest first
    - DYNAMIC: sell a fraction of holdings that grows with the distance above
      the lowest held cost

    A sell trigger with no available shares is recorded as a BLOCKED
    transaction instead of being dropped. A trigger with available shares
    but nothing eligible to sell is NO_SELLABLE and writes no transaction.
    """

    def __init__(self, strategy: GridStrategyConfig, ledger: SettlementLedger):
        """Initialize execution engine.

        Args:
            strategy: Strategy configuration
            ledger: Ledger mutated by every execution
        """
        self.strategy = strategy
        self.ledger = ledger
        self.blocked_count = 0
        self._seq = 0

        self._sell_handlers: dict[SellPolicy, Callable[[GridLevel, date, str], ExecutionResult]] = {
            SellPolicy.FIXED_MATCHING: self._sell_fixed_matching,
            SellPolicy.DYNAMIC: self._sell_dynamic,
        }

    def _fee(self, amount: Decimal) -> Decimal:
        return amount * self.strategy.fee_rate

    def _record(self, **kwargs) -> Transaction:
        self._seq += 1
        return Transaction(seq=self._seq, **kwargs)

    def execute_buy(
        self,
        level: GridLevel,
        trade_date: date,
        unlock_date: Optional[date],
        segment: str = "",
    ) -> ExecutionResult:
        """Buy the level's nominal lot-rounded size at the level price.

        A level shared by several tiers opens one lot per tier, each with
        that tier's own size and target sell offset.

        Args:
            level: Crossed grid level
            trade_date: Observation date
            unlock_date: Date the new lots become sellable (None: never in this run)
            segment: Intraday segment label, empty for daily observations

        Returns:
            ExecutionResult with one BUY transaction per sized tier, or NO_BUY
            when no tier's amount covers one lot
        """
        price = level.price
        transactions: list[Transaction] = []
        for part in level.parts:
            shares = part.buy_shares
            if shares <= 0:
                continue

            amount = price * shares
            fee = self._fee(amount)

            lot = self.ledger.open_lot(part, shares, price, trade_date, unlock_date)
            self.ledger.record_buy(amount, fee)

            transactions.append(self._record(
                date=trade_date,
                kind=TransactionKind.BUY,
                price=price,
                shares=shares,
                amount=amount,
                fee=fee,
                tier=part.tier,
                level_offset=part.offset,
                level_price=price,
                lot_id=lot.lot_id,
                purchase_date=trade_date,
                segment=segment,
            ))
            logger.debug('%s BUY %d @ %s (%s, lot %d)', trade_date, shares, price, part.tier, lot.lot_id)

        if not transactions:
            return ExecutionResult(outcome=TriggerOutcome.NO_BUY)
        return ExecutionResult(outcome=TriggerOutcome.BUY, transactions=transactions)

    def execute_sell(self, level: GridLevel, trade_date: date, segment: str = "") -> ExecutionResult:
        """Sell according to the configured policy, or record a blocked trigger.

        BLOCKED applies only when no shares at all are available. When shares
        are available but the policy finds nothing to sell (fixed matching
        with no settled same-tier lot at its target, or a dynamic size that
        rounds to zero), the outcome is NO_SELLABLE: no transaction is written
        and the blocked counter is untouched.

        Args:
            level: Crossed grid level
            trade_date: Observation date
            segment: Intraday segment label, empty for daily observations

        Returns:
            ExecutionResult with SELL (and RETAINED) transactions, a single
            BLOCKED transaction, or NO_SELLABLE when nothing qualifies
        """
        if self.ledger.available_shares == 0:
            self.blocked_count += 1
            logger.debug(
                '%s sell trigger at %s blocked (total=%d, pending=%d)',
                trade_date, level.price, self.ledger.total_shares, self.ledger.pending_shares,
            )
            tx = self._record(
                date=trade_date,
                kind=TransactionKind.BLOCKED,
                price=level.price,
                shares=0,
                amount=Decimal("0"),
                fee=Decimal("0"),
                tier=level.tier,
                level_offset=level.offset,
                level_price=level.price,
                segment=segment,
            )
            return ExecutionResult(outcome=TriggerOutcome.BLOCKED, transactions=[tx])

        handler = self._sell_handlers[self.strategy.sell_policy]
        return handler(level, trade_date, segment)

    def _book_sale(self, level: GridLevel, shares: int, cost_basis: Decimal) -> tuple[Decimal, Decimal, Decimal]:
        """Book the cash side of a sale; returns (gross, fee, realized_pnl)."""
        gross = level.price * shares
        fee = self._fee(gross)
        self.ledger.record_sell(gross, fee)
        return gross, fee, gross - fee - cost_basis

    def _retained_record(self, level: GridLevel, trade_date: date, shares: int, segment: str,
                         lot: Optional[Lot] = None, part: Optional[LevelTier] = None) -> Transaction:
        source = part or level
        return self._record(
            date=trade_date,
            kind=TransactionKind.RETAINED,
            price=level.price,
            shares=shares,
            amount=level.price * shares,
            fee=Decimal("0"),
            tier=source.tier,
            level_offset=source.offset,
            level_price=level.price,
            lot_id=lot.lot_id if lot else None,
            purchase_date=lot.purchase_date if lot else None,
            segment=segment,
        )

    def _sell_fixed_matching(self, level: GridLevel, trade_date: date, segment: str) -> ExecutionResult:
        """Sell every settled lot whose own tier on this level reached its target offset."""
        lot_unit = self.strategy.lot_unit
        keep_ratio = 1 - self.strategy.retained_profit_ratio

        matching: list[tuple[Lot, LevelTier]] = []
        for lot in self.ledger.available_lots():
            part = level.for_tier(lot.tier)
            if part is not None and not lot.retained and lot.target_sell_offset <= part.offset:
                matching.append((lot, part))

        transactions: list[Transaction] = []
        for lot, part in matching:
            available = self.ledger.available_shares
            if available == 0:
                break

            planned = floor_to_lot(lot.shares * keep_ratio, lot_unit)
            if planned == 0:
                continue
            shares = min(planned, available)
            retained = lot.shares - planned if shares == planned else 0
            purchase_price = lot.purchase_price

            self.ledger.consume(lot, shares)
            gross, fee, realized = self._book_sale(level, shares, purchase_price * shares)

            transactions.append(self._record(
                date=trade_date,
                kind=TransactionKind.SELL,
                price=level.price,
                shares=shares,
                amount=gross,
                fee=fee,
                tier=part.tier,
                level_offset=part.offset,
                level_price=level.price,
                lot_id=lot.lot_id,
                purchase_date=lot.purchase_date,
                realized_pnl=realized,
                segment=segment,
            ))
            logger.debug(
                '%s SELL %d @ %s against lot %d bought %s @ %s',
                trade_date, shares, level.price, lot.lot_id, lot.purchase_date, purchase_price,
            )

            if retained > 0:
                lot.retained = True
                transactions.append(self._retained_record(level, trade_date, retained, segment, lot, part))

        if not transactions:
            return ExecutionResult(outcome=TriggerOutcome.NO_SELLABLE)
        return ExecutionResult(outcome=TriggerOutcome.SELL, transactions=transactions)

    def grid_position(self, price: Decimal, lowest_cost: Decimal) -> Decimal:
        """Distance of `price` above `lowest_cost`, in small-tier widths."""
        width = self.strategy.tier_width
        if self.strategy.width_mode == WidthMode.PERCENTAGE:
            return (price / lowest_cost - 1) * 100 / width
        return (price - lowest_cost) / width

    def _sell_dynamic(self, level: GridLevel, trade_date: date, segment: str) -> ExecutionResult:
        """Sell a fraction of holdings proportional to the distance above lowest cost."""
        strategy = self.strategy
        lot_unit = strategy.lot_unit
        tier_count = Decimal(strategy.tier_count)
        price = level.price

        lowest_cost = self.ledger.lowest_held_cost() or strategy.reference_price
        position = max(Decimal("0"), min(tier_count, self.grid_position(price, lowest_cost)))
        fraction = position / tier_count
        # One sale per trigger; a shared level sizes by its largest tier
        planned = floor_to_lot(self.ledger.total_shares * fraction * level.multiplier, lot_unit)

        avg_cost = self.ledger.average_held_cost()
        retained = 0
        if planned > 0 and strategy.retained_profit_ratio > 0:
            gross = price * planned
            profit = gross - self._fee(gross) - avg_cost * planned
            if profit > 0:
                retained = floor_to_lot(profit * strategy.retained_profit_ratio / price, lot_unit)
                retained = min(retained, floor_to_lot(planned * MAX_RETAINED_FRACTION, lot_unit))

        shares = min(planned - retained, self.ledger.available_shares)
        if shares <= 0:
            return ExecutionResult(outcome=TriggerOutcome.NO_SELLABLE)

        # Lots are consumed oldest first; cost uses the average held cost
        left = shares
        for lot in self.ledger.available_lots():
            if left == 0:
                break
            take = min(lot.shares, left)
            self.ledger.consume(lot, take)
            left -= take

        gross, fee, realized = self._book_sale(level, shares, avg_cost * shares)
        transactions = [self._record(
            date=trade_date,
            kind=TransactionKind.SELL,
            price=price,
            shares=shares,
            amount=gross,
            fee=fee,
            tier=level.tier,
            level_offset=level.offset,
            level_price=level.price,
            realized_pnl=realized,
            segment=segment,
        )]
        logger.debug('%s SELL %d @ %s (position %.2f widths above %s)', trade_date, shares, price, position, lowest_cost)

        if retained > 0:
            transactions.append(self._retained_record(level, trade_date, retained, segment))

        return ExecutionResult(outcome=TriggerOutcome.SELL, transactions=transactions)
