"""
Data model for grid backtesting.

Price observations flow in, grid levels are generated once per run, lots and
the ledger mutate while the series is replayed, and transactions, trigger
events and daily points are appended as write-once records.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Optional


class TierClass(StrEnum):
    """Grid ladder a level belongs to."""
    SMALL = 'small'
    MEDIUM = 'medium'
    LARGE = 'large'

    @property
    def rank(self) -> int:
        """Ordering used when two tiers land on the same price."""
        return _TIER_RANK[self]


_TIER_RANK = {TierClass.SMALL: 0, TierClass.MEDIUM: 1, TierClass.LARGE: 2}


class Side(StrEnum):
    """Nominal side of a grid level."""
    BUY = 'buy'
    SELL = 'sell'
    REFERENCE = 'reference'


class CrossDirection(StrEnum):
    """Direction in which a level was examined."""
    FROM_ABOVE = 'from_above'
    FROM_BELOW = 'from_below'
    NONE = 'none'


class TransactionKind(StrEnum):
    """Kind of ledger record."""
    BUY = 'buy'
    SELL = 'sell'
    BLOCKED = 'blocked'
    RETAINED = 'retained'


class TriggerOutcome(StrEnum):
    """What happened to a level examined during one price segment."""
    NONE = 'none'
    BUY = 'buy'
    SELL = 'sell'
    BLOCKED = 'blocked'
    NO_BUY = 'no_buy'
    NO_SELLABLE = 'no_sellable'


class LotState(StrEnum):
    """Settlement state of a lot."""
    PENDING = 'pending'
    AVAILABLE = 'available'
    PARTIALLY_SOLD = 'partially_sold'
    SOLD = 'sold'


@dataclass(frozen=True)
class PricePoint:
    """One daily observation (date, close)."""
    date: date
    close: Decimal


@dataclass(frozen=True)
class OHLCBar:
    """One daily OHLC bar used by the intraday observation model."""
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal

    def __post_init__(self):
        if self.high < self.low:
            raise ValueError(f"OHLCBar high {self.high} below low {self.low} on {self.date}")


@dataclass(frozen=True)
class LevelTier:
    """One tier's share of a grid level, with that tier's own sizing."""
    tier: TierClass
    multiplier: Decimal
    offset: Decimal
    tier_width: Decimal
    buy_shares: int
    buy_amount: Decimal
    sell_shares: int
    sell_amount: Decimal

    @property
    def target_sell_offset(self) -> Decimal:
        """Offset at which a lot bought for this tier becomes sellable."""
        return self.offset + self.tier_width


@dataclass(frozen=True)
class GridLevel:
    """
    One rung of the grid ladder.

    `offset` is expressed in the grid's unit system (percent in percentage
    mode, currency in absolute mode). `percentage` is always the offset from
    the reference price in percent. Sizing is computed once at generation.

    When several tiers land on the same price they share one level: `tiers`
    holds each tier's sizing (small first), the scalar tier fields describe
    the largest tier and the share/amount fields are totals.
    """
    index: int
    price: Decimal
    offset: Decimal
    percentage: Decimal
    tier: TierClass
    multiplier: Decimal
    tier_width: Decimal
    nominal_side: Side
    buy_shares: int
    buy_amount: Decimal
    sell_shares: int
    sell_amount: Decimal
    tiers: tuple[LevelTier, ...] = ()

    @property
    def target_sell_offset(self) -> Decimal:
        """Offset at which a lot bought for the largest tier becomes sellable."""
        return self.offset + self.tier_width

    @property
    def parts(self) -> tuple[LevelTier, ...]:
        """Per-tier sizing; a hand-built level without `tiers` is its own single part."""
        if self.tiers:
            return self.tiers
        return (LevelTier(
            tier=self.tier,
            multiplier=self.multiplier,
            offset=self.offset,
            tier_width=self.tier_width,
            buy_shares=self.buy_shares,
            buy_amount=self.buy_amount,
            sell_shares=self.sell_shares,
            sell_amount=self.sell_amount,
        ),)

    def for_tier(self, tier: TierClass) -> Optional[LevelTier]:
        for part in self.parts:
            if part.tier == tier:
                return part
        return None


@dataclass
class Lot:
    """A purchase tracked until fully sold."""
    lot_id: int
    tier: TierClass
    shares: int
    purchase_price: Decimal
    purchase_date: date
    unlock_date: Optional[date]
    level_offset: Decimal
    target_sell_offset: Decimal
    original_shares: int = 0
    state: LotState = LotState.PENDING
    retained: bool = False

    def __post_init__(self):
        if not self.original_shares:
            self.original_shares = self.shares

    @property
    def is_available(self) -> bool:
        return self.state in (LotState.AVAILABLE, LotState.PARTIALLY_SOLD)

    @property
    def cost(self) -> Decimal:
        return self.purchase_price * self.shares


@dataclass(frozen=True)
class Transaction:
    """Append-only ledger record."""
    seq: int
    date: date
    kind: TransactionKind
    price: Decimal
    shares: int
    amount: Decimal
    fee: Decimal
    tier: TierClass
    level_offset: Decimal
    level_price: Decimal
    lot_id: Optional[int] = None
    purchase_date: Optional[date] = None
    realized_pnl: Decimal = Decimal('0')
    segment: str = ''


@dataclass(frozen=True)
class TriggerEvent:
    """Audit record for one level examined during one price segment."""
    date: date
    segment: str
    start_price: Decimal
    end_price: Decimal
    level_index: int
    level_price: Decimal
    level_offset: Decimal
    tier: TierClass
    crossed: bool
    direction: CrossDirection
    outcome: TriggerOutcome


@dataclass(frozen=True)
class DailyPoint:
    """Curve point recorded after each observation is processed."""
    date: date
    price: Decimal
    investment: Decimal
    value: Decimal
    total_shares: int = 0
    available_shares: int = 0
    pending_shares: int = 0

    @property
    def profit(self) -> Decimal:
        return self.value - self.investment


@dataclass
class ExecutionResult:
    """Outcome of handling one crossing."""
    outcome: TriggerOutcome
    transactions: list[Transaction] = field(default_factory=list)
