"""Test fixtures for fundgrid package."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from fundgrid.config import GridStrategyConfig, SellPolicy
from fundgrid.grid import GridLevelGenerator
from fundgrid.models import OHLCBar, PricePoint
from fundgrid.settlement import SettlementLedger


START_DATE = date(2024, 1, 1)


def make_points(prices, start: date = START_DATE) -> list[PricePoint]:
    """Daily PricePoints on consecutive dates."""
    return [
        PricePoint(date=start + timedelta(days=i), close=Decimal(str(p)))
        for i, p in enumerate(prices)
    ]


def make_bar(day: int, open_, high, low, close) -> OHLCBar:
    """OHLC bar on START_DATE + day."""
    return OHLCBar(
        date=START_DATE + timedelta(days=day),
        open=Decimal(str(open_)),
        high=Decimal(str(high)),
        low=Decimal(str(low)),
        close=Decimal(str(close)),
    )


@pytest.fixture
def scenario_strategy():
    """Reference 10, two 5% tiers each side, fixed matching, no retention."""
    return GridStrategyConfig(
        reference_price=Decimal("10"),
        tier_count=2,
        tier_width=Decimal("5"),
        sell_policy=SellPolicy.FIXED_MATCHING,
        per_tier_amount=Decimal("1000"),
    )


@pytest.fixture
def dynamic_strategy(scenario_strategy):
    """Same grid as scenario_strategy with the dynamic sell policy."""
    return scenario_strategy.model_copy(update={"sell_policy": SellPolicy.DYNAMIC})


@pytest.fixture
def scenario_prices():
    """Falls through 9.50 and 9.00, then rises back through 9.50 and 10.00."""
    return make_points(["10.00", "9.40", "9.00", "9.60", "10.10"])


@pytest.fixture
def scenario_levels(scenario_strategy):
    """Levels of scenario_strategy keyed by price."""
    return {lvl.price: lvl for lvl in GridLevelGenerator(scenario_strategy).generate()}


@pytest.fixture
def ledger():
    """Empty settlement ledger."""
    return SettlementLedger(lot_unit=100)
