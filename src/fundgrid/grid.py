"""
Grid level generation for grid trading backtests.

Builds the immutable price ladder once per run. Each tier class (small,
medium, large) contributes levels at multiples of its own width; per-level
sizing is computed here so execution never recalculates it.
"""

import logging
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Iterator

from fundgrid.config import GridShape, GridStrategyConfig, WidthMode
from fundgrid.models import GridLevel, LevelTier, Side, TierClass

logger = logging.getLogger(__name__)


def floor_to_lot(shares: Decimal, lot_unit: int) -> int:
    """Floor a share quantity to a whole multiple of the lot unit."""
    shares = Decimal(shares)
    if shares <= 0:
        return 0
    lots = (shares / lot_unit).to_integral_value(rounding=ROUND_FLOOR)
    return int(lots) * lot_unit


def shares_for_amount(amount: Decimal, price: Decimal, lot_unit: int) -> int:
    """Number of lot-rounded shares that `amount` buys at `price`."""
    if price <= 0:
        return 0
    return floor_to_lot(amount / price, lot_unit)


class GridLevelGenerator:
    """
    Pure grid ladder construction.

    Levels are returned sorted by price, highest first. The nominal side of a
    level (buy below the reference, sell above) is advisory: the side actually
    traded is decided by the direction of the crossing.
    """

    def __init__(self, strategy: GridStrategyConfig):
        """
        Initialize the generator.

        Args:
            strategy: Validated strategy configuration
        """
        self.strategy = strategy

    def _round_price(self, price: Decimal) -> Decimal:
        """Round a price to the configured tick size."""
        tick = self.strategy.tick_size
        return (price / tick).quantize(Decimal('1'), rounding=ROUND_HALF_UP) * tick

    def _tiers(self) -> Iterator[tuple[TierClass, Decimal]]:
        """Enabled tier classes with their multipliers, small first."""
        yield TierClass.SMALL, Decimal('1')
        if self.strategy.medium_tier.enabled:
            yield TierClass.MEDIUM, self.strategy.medium_tier.multiplier
        if self.strategy.large_tier.enabled:
            yield TierClass.LARGE, self.strategy.large_tier.multiplier

    def _steps(self) -> range:
        """Signed step indexes a tier contributes for the configured shape."""
        n = self.strategy.tier_count
        if self.strategy.shape == GridShape.SYMMETRIC:
            return range(-n, n + 1)
        # Downward-only ladders never carry positive offsets
        return range(-n, 1)

    def _price_for_offset(self, offset: Decimal) -> Decimal:
        ref = self.strategy.reference_price
        if self.strategy.width_mode == WidthMode.PERCENTAGE:
            return ref * (1 + offset / 100)
        return ref + offset

    def _candidates(self) -> Iterator[tuple[TierClass, Decimal, Decimal, Decimal]]:
        """Yield (tier, multiplier, offset, raw_price) before filtering."""
        width = self.strategy.tier_width
        for tier, multiplier in self._tiers():
            for i in self._steps():
                # The reference level belongs to the small tier only
                if i == 0 and tier != TierClass.SMALL:
                    continue
                offset = i * width * multiplier
                yield tier, multiplier, offset, self._price_for_offset(offset)

    def generate(self) -> list[GridLevel]:
        """
        Build the ladder.

        Levels below the decline floor are dropped, as are absolute-mode levels
        priced at or below zero. When several tiers produce the same rounded
        price they share one level that keeps every tier's sizing, so prices
        are strictly decreasing and no tier loses a rung.

        Returns:
            Grid levels sorted by price, highest first
        """
        floor = self.strategy.decline_floor
        by_price: dict[Decimal, dict[TierClass, tuple[Decimal, Decimal]]] = {}

        for tier, multiplier, offset, raw_price in self._candidates():
            if raw_price <= 0:
                continue
            price = self._round_price(raw_price)
            if price <= 0:
                continue
            if floor is not None and price < floor:
                continue

            by_price.setdefault(price, {}).setdefault(tier, (multiplier, offset))

        levels = [
            self._build_level(index, price, tiers)
            for index, (price, tiers) in enumerate(
                sorted(by_price.items(), key=lambda item: item[0], reverse=True)
            )
        ]

        if not levels:
            logger.warning('Grid generation produced no levels (reference=%s)', self.strategy.reference_price)
        else:
            logger.info('Generated %d grid levels from %s to %s', len(levels), levels[-1].price, levels[0].price)

        shared = sum(1 for lvl in levels if len(lvl.tiers) > 1)
        if shared:
            logger.debug('%d level(s) shared by more than one tier', shared)

        unsized = [lvl.price for lvl in levels if lvl.nominal_side == Side.BUY and lvl.buy_shares == 0]
        if unsized:
            logger.warning('Per-tier amount buys zero lots at %d level(s): %s', len(unsized), unsized)

        return levels

    def _size_tier(self, price: Decimal, tier: TierClass,
                   multiplier: Decimal, offset: Decimal) -> LevelTier:
        """Nominal sizing of one tier at a level price."""
        strategy = self.strategy
        lot_unit = strategy.lot_unit

        amount = strategy.per_tier_amount * multiplier
        buy_shares = shares_for_amount(amount, price, lot_unit)

        # Nominal sell: the lot bought one tier width lower, less retention
        tier_width = strategy.tier_width * multiplier
        paired_buy_price = self._round_price(self._price_for_offset(offset - tier_width))
        paired_shares = shares_for_amount(amount, paired_buy_price, lot_unit)
        sell_shares = floor_to_lot(paired_shares * (1 - strategy.retained_profit_ratio), lot_unit)

        return LevelTier(
            tier=tier,
            multiplier=multiplier,
            offset=offset,
            tier_width=tier_width,
            buy_shares=buy_shares,
            buy_amount=price * buy_shares,
            sell_shares=sell_shares,
            sell_amount=price * sell_shares,
        )

    def _build_level(self, index: int, price: Decimal,
                     tiers: dict[TierClass, tuple[Decimal, Decimal]]) -> GridLevel:
        """Attach nominal sizing of every tier sharing a filtered price."""
        parts = tuple(
            self._size_tier(price, tier, multiplier, offset)
            for tier, (multiplier, offset) in sorted(tiers.items(), key=lambda item: item[0].rank)
        )
        primary = parts[-1]

        if primary.offset < 0:
            side = Side.BUY
        elif primary.offset > 0:
            side = Side.SELL
        else:
            side = Side.REFERENCE

        return GridLevel(
            index=index,
            price=price,
            offset=primary.offset,
            percentage=(price / self.strategy.reference_price - 1) * 100,
            tier=primary.tier,
            multiplier=primary.multiplier,
            tier_width=primary.tier_width,
            nominal_side=side,
            buy_shares=sum(p.buy_shares for p in parts),
            buy_amount=sum((p.buy_amount for p in parts), Decimal('0')),
            sell_shares=sum(p.sell_shares for p in parts),
            sell_amount=sum((p.sell_amount for p in parts), Decimal('0')),
            tiers=parts,
        )
