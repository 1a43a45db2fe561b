"""Backtest session for in-memory results storage.

Stores transactions, trigger diagnostics and the daily curve of one run, and
rolls them up into final summary metrics.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from fundgrid.models import (
    DailyPoint,
    GridLevel,
    Transaction,
    TransactionKind,
    TriggerEvent,
    TriggerOutcome,
)
from fundgrid.settlement import SettlementLedger


@dataclass
class BacktestSummary:
    """Final metrics for a backtest run."""

    # Counts
    observation_count: int = 0
    level_count: int = 0
    transaction_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    blocked_count: int = 0
    retained_count: int = 0

    # Cash flows
    total_buy_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    total_sell_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    total_sell_proceeds: Decimal = field(default_factory=lambda: Decimal("0"))
    total_fees: Decimal = field(default_factory=lambda: Decimal("0"))
    net_investment: Decimal = field(default_factory=lambda: Decimal("0"))
    peak_investment: Decimal = field(default_factory=lambda: Decimal("0"))

    # Holdings
    total_shares: int = 0
    available_shares: int = 0
    pending_shares: int = 0
    last_price: Decimal = field(default_factory=lambda: Decimal("0"))
    current_value: Decimal = field(default_factory=lambda: Decimal("0"))

    # PnL
    profit_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    profit_percentage: float = 0.0
    total_realized_pnl: Decimal = field(default_factory=lambda: Decimal("0"))
    winning_sells: int = 0
    losing_sells: int = 0
    win_rate: float = 0.0
    max_drawdown: Decimal = field(default_factory=lambda: Decimal("0"))


class BacktestSession:
    """In-memory storage for one backtest run.

    The engine appends records while replaying the series; finalize()
    computes the summary from the log and the ledger's final state.
    """

    def __init__(self, session_id: Optional[str] = None, levels: Optional[list[GridLevel]] = None):
        """Initialize backtest session.

        Args:
            session_id: Unique session identifier (generated if None)
            levels: Grid ladder used by the run
        """
        self.session_id = session_id or uuid.uuid4().hex
        self.levels: list[GridLevel] = list(levels or [])

        self.transactions: list[Transaction] = []
        self.triggers: list[TriggerEvent] = []
        self.daily_points: list[DailyPoint] = []

        # Final metrics (populated by finalize())
        self.summary: Optional[BacktestSummary] = None

    def record_transaction(self, transaction: Transaction) -> None:
        self.transactions.append(transaction)

    def record_trigger(self, event: TriggerEvent) -> None:
        self.triggers.append(event)

    def record_daily_point(self, point: DailyPoint) -> None:
        self.daily_points.append(point)

    @property
    def buys(self) -> list[Transaction]:
        return [t for t in self.transactions if t.kind == TransactionKind.BUY]

    @property
    def sells(self) -> list[Transaction]:
        return [t for t in self.transactions if t.kind == TransactionKind.SELL]

    @property
    def fired_triggers(self) -> list[TriggerEvent]:
        """Trigger events that led to an action (including blocked sells)."""
        return [e for e in self.triggers if e.outcome != TriggerOutcome.NONE]

    def investment_curve(self) -> list[tuple]:
        return [(p.date, p.investment) for p in self.daily_points]

    def value_curve(self) -> list[tuple]:
        return [(p.date, p.value) for p in self.daily_points]

    def _max_drawdown(self) -> Decimal:
        """Largest peak-to-trough fall of the daily profit curve."""
        peak: Optional[Decimal] = None
        max_drawdown = Decimal("0")
        for point in self.daily_points:
            profit = point.profit
            if peak is None or profit > peak:
                peak = profit
            drawdown = peak - profit
            if drawdown > max_drawdown:
                max_drawdown = drawdown
        return max_drawdown

    def finalize(self, ledger: SettlementLedger, last_price: Optional[Decimal]) -> BacktestSummary:
        """Calculate final metrics.

        Args:
            ledger: Ledger in its end-of-run state
            last_price: Last observed price (None for an empty series)

        Returns:
            Calculated summary
        """
        last_price = last_price if last_price is not None else Decimal("0")
        state = ledger.state

        buys = self.buys
        sells = self.sells
        blocked = [t for t in self.transactions if t.kind == TransactionKind.BLOCKED]
        retained = [t for t in self.transactions if t.kind == TransactionKind.RETAINED]

        winning = sum(1 for t in sells if t.realized_pnl > 0)
        losing = sum(1 for t in sells if t.realized_pnl < 0)
        win_rate = winning / len(sells) if sells else 0.0

        net_investment = ledger.net_investment
        current_value = last_price * state.total_shares
        profit_amount = current_value - net_investment

        # Undefined when nothing is at stake
        profit_pct = float(profit_amount / net_investment * 100) if net_investment > 0 else 0.0

        peak_investment = max(
            (p.investment for p in self.daily_points),
            default=Decimal("0"),
        )

        self.summary = BacktestSummary(
            observation_count=len(self.daily_points),
            level_count=len(self.levels),
            transaction_count=len(self.transactions),
            buy_count=len(buys),
            sell_count=len(sells),
            blocked_count=len(blocked),
            retained_count=len(retained),
            total_buy_amount=state.cumulative_buy_amount,
            total_sell_amount=state.cumulative_sell_amount,
            total_sell_proceeds=state.cumulative_sell_proceeds,
            total_fees=state.cumulative_fees,
            net_investment=net_investment,
            peak_investment=peak_investment,
            total_shares=state.total_shares,
            available_shares=state.available_shares,
            pending_shares=ledger.pending_shares,
            last_price=last_price,
            current_value=current_value,
            profit_amount=profit_amount,
            profit_percentage=profit_pct,
            total_realized_pnl=sum((t.realized_pnl for t in sells), Decimal("0")),
            winning_sells=winning,
            losing_sells=losing,
            win_rate=win_rate,
            max_drawdown=self._max_drawdown(),
        )
        return self.summary

    def get_summary(self) -> str:
        """Get formatted summary string."""
        if self.summary is None:
            return "Session not finalized"

        s = self.summary
        return f"""
Backtest Summary (session {self.session_id[:8]})
{'=' * 50}
Observations:      {s.observation_count}
Grid levels:       {s.level_count}

Trades:
  Transactions:    {s.transaction_count}
  Buys:            {s.buy_count}
  Sells:           {s.sell_count}
  Blocked sells:   {s.blocked_count}
  Retained:        {s.retained_count}
  Win rate:        {s.win_rate:.2%}

Cash flows:
  Total bought:    {s.total_buy_amount:.2f}
  Total sold:      {s.total_sell_amount:.2f}
  Fees:            {s.total_fees:.2f}
  Net investment:  {s.net_investment:.2f}
  Peak investment: {s.peak_investment:.2f}

Position:
  Shares held:     {s.total_shares} ({s.pending_shares} pending)
  Last price:      {s.last_price}
  Current value:   {s.current_value:.2f}

Performance:
  Profit:          {s.profit_amount:.2f} ({s.profit_percentage:.2f}%)
  Realized PnL:    {s.total_realized_pnl:.2f}
  Max drawdown:    {s.max_drawdown:.2f}
"""
