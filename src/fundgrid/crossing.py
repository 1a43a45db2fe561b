"""Price crossing detection for grid backtests.

Turns consecutive price observations into monotone segments and reports which
grid levels each segment crossed, and in which direction.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator

from fundgrid.models import CrossDirection, GridLevel, OHLCBar

# Checkpoints closer than this are treated as the same price
CHECKPOINT_EPSILON = Decimal("0.0001")


def crossed_from_above(prev_price: Decimal, level_price: Decimal, curr_price: Decimal) -> bool:
    """Price fell through the level: prev > level >= curr."""
    return prev_price > level_price >= curr_price


def crossed_from_below(prev_price: Decimal, level_price: Decimal, curr_price: Decimal) -> bool:
    """Price rose through the level: prev < level <= curr."""
    return prev_price < level_price <= curr_price


@dataclass(frozen=True)
class Segment:
    """A monotone price move between two checkpoints."""

    start_price: Decimal
    end_price: Decimal
    start_label: str = "prev_close"
    end_label: str = "close"

    @property
    def label(self) -> str:
        return f"{self.start_label}->{self.end_label}"

    @property
    def direction(self) -> CrossDirection:
        if self.end_price < self.start_price:
            return CrossDirection.FROM_ABOVE
        if self.end_price > self.start_price:
            return CrossDirection.FROM_BELOW
        return CrossDirection.NONE


@dataclass(frozen=True)
class LevelCheck:
    """Result of testing one level against one segment."""

    level: GridLevel
    crossed: bool
    direction: CrossDirection


def reconstruct_path(bar: OHLCBar) -> list[tuple[str, Decimal]]:
    """Approximate the intrabar path of an OHLC bar.

    The extreme closer to the open is assumed to come first:
    open->high->low->close when |open-high| <= |open-low|, otherwise
    open->low->high->close. Consecutive checkpoints within
    CHECKPOINT_EPSILON of each other are collapsed.

    Args:
        bar: Daily OHLC bar

    Returns:
        Ordered (label, price) checkpoints, at least one
    """
    if abs(bar.open - bar.high) <= abs(bar.open - bar.low):
        path = [("open", bar.open), ("high", bar.high), ("low", bar.low), ("close", bar.close)]
    else:
        path = [("open", bar.open), ("low", bar.low), ("high", bar.high), ("close", bar.close)]

    collapsed = [path[0]]
    for label, price in path[1:]:
        if abs(price - collapsed[-1][1]) > CHECKPOINT_EPSILON:
            collapsed.append((label, price))
    return collapsed


class PriceCrossingScanner:
    """Detect grid level crossings between price checkpoints.

    Crossing model (inclusive at the destination):
    - Falling segment crosses a level when start > level >= end (buy)
    - Rising segment crosses a level when start < level <= end (sell)

    Every level is examined once per segment. Within a segment levels are
    walked from the one nearest the starting price in the direction of travel,
    so several levels crossed by one move fire in the order price reached them.
    """

    def __init__(self, levels: list[GridLevel]):
        """Initialize scanner.

        Args:
            levels: Grid levels sorted by price, highest first
        """
        self._descending = sorted(levels, key=lambda lvl: lvl.price, reverse=True)
        self._ascending = list(reversed(self._descending))

    @property
    def levels(self) -> list[GridLevel]:
        return list(self._descending)

    def daily_segments(self, prev_close: Decimal, close: Decimal) -> list[Segment]:
        """One segment from the previous close to today's close."""
        return [Segment(start_price=prev_close, end_price=close)]

    def intraday_segments(self, bar: OHLCBar) -> list[Segment]:
        """Segments between consecutive reconstructed checkpoints of a bar."""
        path = reconstruct_path(bar)
        return [
            Segment(
                start_price=start_price,
                end_price=end_price,
                start_label=start_label,
                end_label=end_label,
            )
            for (start_label, start_price), (end_label, end_price) in zip(path, path[1:])
        ]

    def scan(self, segment: Segment) -> Iterator[LevelCheck]:
        """Examine every level against a segment in travel order.

        Args:
            segment: Monotone price move

        Yields:
            LevelCheck for each level, crossed or not
        """
        direction = segment.direction
        ordered = self._ascending if direction == CrossDirection.FROM_BELOW else self._descending

        for level in ordered:
            if direction == CrossDirection.FROM_ABOVE:
                crossed = crossed_from_above(segment.start_price, level.price, segment.end_price)
            elif direction == CrossDirection.FROM_BELOW:
                crossed = crossed_from_below(segment.start_price, level.price, segment.end_price)
            else:
                crossed = False
            yield LevelCheck(level=level, crossed=crossed, direction=direction if crossed else CrossDirection.NONE)
