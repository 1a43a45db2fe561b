"""Lot ledger with T+1 settlement for grid backtests.

Tracks open lots, share availability and cumulative cash flows. Shares bought
on one observation date only become sellable at the first later observation.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from fundgrid.models import GridLevel, LevelTier, Lot, LotState

logger = logging.getLogger(__name__)


@dataclass
class LedgerState:
    """Running totals of one backtest ledger."""

    total_shares: int = 0
    available_shares: int = 0
    cumulative_buy_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    cumulative_sell_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    cumulative_sell_proceeds: Decimal = field(default_factory=lambda: Decimal("0"))
    cumulative_fees: Decimal = field(default_factory=lambda: Decimal("0"))


class SettlementLedger:
    """Share ledger enforcing a one-observation settlement delay.

    Lot lifecycle: PENDING -> AVAILABLE -> PARTIALLY_SOLD / SOLD.
    Sold lots leave the open list. The invariant
    total_shares == available_shares + pending_shares holds after every call.
    """

    def __init__(self, lot_unit: int = 100):
        """Initialize ledger.

        Args:
            lot_unit: Minimum tradable share increment
        """
        if lot_unit <= 0:
            raise ValueError(f"lot_unit must be positive, got {lot_unit}")
        self.lot_unit = lot_unit
        self.state = LedgerState()
        self.lots: list[Lot] = []
        self.closed_lots: list[Lot] = []

        # unlock date -> shares; None collects lots bought on the final observation
        self._pending: dict[Optional[date], int] = {}
        self._lot_counter = 0

    @property
    def total_shares(self) -> int:
        return self.state.total_shares

    @property
    def available_shares(self) -> int:
        return self.state.available_shares

    @property
    def pending_shares(self) -> int:
        return sum(self._pending.values())

    @property
    def pending_by_unlock_date(self) -> dict[Optional[date], int]:
        return dict(self._pending)

    @property
    def net_investment(self) -> Decimal:
        """Cumulative buy amount (fees included) minus cumulative gross sell amount."""
        return self.state.cumulative_buy_amount - self.state.cumulative_sell_amount

    def is_consistent(self) -> bool:
        """Check share bookkeeping against the open lots."""
        lot_total = sum(lot.shares for lot in self.lots)
        lot_available = sum(lot.shares for lot in self.lots if lot.is_available)
        return (
            self.state.total_shares == self.state.available_shares + self.pending_shares
            and lot_total == self.state.total_shares
            and lot_available == self.state.available_shares
        )

    def open_lot(
        self,
        level: Union[GridLevel, LevelTier],
        shares: int,
        price: Decimal,
        purchase_date: date,
        unlock_date: Optional[date],
    ) -> Lot:
        """Record a purchase as a new pending lot.

        Args:
            level: Tier part (or single-tier level) that triggered the buy
            shares: Lot-rounded share count
            price: Execution price
            purchase_date: Observation date of the buy
            unlock_date: First later observation date, None if there is none

        Returns:
            The new lot
        """
        if shares <= 0 or shares % self.lot_unit:
            raise ValueError(f"Invalid lot size {shares} for lot unit {self.lot_unit}")
        if unlock_date is not None and unlock_date <= purchase_date:
            raise ValueError(f"unlock_date {unlock_date} must be after purchase_date {purchase_date}")

        self._lot_counter += 1
        lot = Lot(
            lot_id=self._lot_counter,
            tier=level.tier,
            shares=shares,
            purchase_price=price,
            purchase_date=purchase_date,
            unlock_date=unlock_date,
            level_offset=level.offset,
            target_sell_offset=level.target_sell_offset,
        )
        self.lots.append(lot)
        self.state.total_shares += shares
        self._pending[unlock_date] = self._pending.get(unlock_date, 0) + shares
        return lot

    def release(self, current_date: date) -> int:
        """Move every lot whose unlock date has arrived from pending to available.

        Called at the start of each observation, before crossings are evaluated.

        Args:
            current_date: Date of the observation being processed

        Returns:
            Number of shares released
        """
        released = 0
        for lot in self.lots:
            if lot.state != LotState.PENDING or lot.unlock_date is None:
                continue
            if lot.unlock_date <= current_date:
                lot.state = LotState.AVAILABLE
                released += lot.shares
                self._pending[lot.unlock_date] -= lot.shares
                if not self._pending[lot.unlock_date]:
                    del self._pending[lot.unlock_date]

        if released:
            self.state.available_shares += released
            logger.debug('%s: %d shares settled', current_date, released)
        return released

    def available_lots(self) -> list[Lot]:
        """Settled open lots, oldest first."""
        return [lot for lot in self.lots if lot.is_available]

    def consume(self, lot: Lot, shares: int) -> None:
        """Remove sold shares from a settled lot.

        Args:
            lot: Open, settled lot
            shares: Lot-rounded share count, at most lot.shares
        """
        if not lot.is_available:
            raise ValueError(f"Lot {lot.lot_id} is not settled")
        if shares <= 0 or shares > lot.shares or shares % self.lot_unit:
            raise ValueError(f"Cannot consume {shares} shares from lot {lot.lot_id} holding {lot.shares}")
        if shares > self.state.available_shares:
            raise ValueError(f"Cannot consume {shares} shares, only {self.state.available_shares} available")

        lot.shares -= shares
        self.state.total_shares -= shares
        self.state.available_shares -= shares

        if lot.shares == 0:
            lot.state = LotState.SOLD
            self.lots.remove(lot)
            self.closed_lots.append(lot)
        else:
            lot.state = LotState.PARTIALLY_SOLD

    def record_buy(self, amount: Decimal, fee: Decimal) -> None:
        """Book the cash outflow of a buy."""
        self.state.cumulative_buy_amount += amount + fee
        self.state.cumulative_fees += fee

    def record_sell(self, gross: Decimal, fee: Decimal) -> None:
        """Book the cash inflow of a sell."""
        self.state.cumulative_sell_amount += gross
        self.state.cumulative_sell_proceeds += gross - fee
        self.state.cumulative_fees += fee

    def lowest_held_cost(self) -> Optional[Decimal]:
        """Lowest purchase price among open lots."""
        if not self.lots:
            return None
        return min(lot.purchase_price for lot in self.lots)

    def average_held_cost(self) -> Decimal:
        """Share-weighted purchase price of open lots."""
        if not self.state.total_shares:
            return Decimal("0")
        return sum((lot.cost for lot in self.lots), Decimal("0")) / self.state.total_shares
