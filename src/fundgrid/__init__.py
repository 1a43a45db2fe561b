"""
fundgrid - Deterministic grid trading backtests for funds and ETFs.

Replays a daily (or OHLC-reconstructed intraday) price series against a
multi-tier grid strategy with T+1 settlement and lot-level accounting.
"""

from fundgrid.config import (
    BacktestConfig,
    GridShape,
    GridStrategyConfig,
    ObservationMode,
    SellPolicy,
    WidthMode,
    load_config,
)
from fundgrid.models import (
    DailyPoint,
    GridLevel,
    Lot,
    OHLCBar,
    PricePoint,
    TierClass,
    Transaction,
    TransactionKind,
    TriggerEvent,
    TriggerOutcome,
)
from fundgrid.grid import GridLevelGenerator
from fundgrid.crossing import PriceCrossingScanner
from fundgrid.settlement import SettlementLedger
from fundgrid.executor import TradeExecutionEngine
from fundgrid.session import BacktestSession, BacktestSummary
from fundgrid.engine import BacktestEngine

__version__ = "0.1.0"

__all__ = [
    # Config
    "BacktestConfig",
    "GridStrategyConfig",
    "GridShape",
    "ObservationMode",
    "SellPolicy",
    "WidthMode",
    "load_config",
    # Models
    "DailyPoint",
    "GridLevel",
    "Lot",
    "OHLCBar",
    "PricePoint",
    "TierClass",
    "Transaction",
    "TransactionKind",
    "TriggerEvent",
    "TriggerOutcome",
    # Core
    "GridLevelGenerator",
    "PriceCrossingScanner",
    "SettlementLedger",
    "TradeExecutionEngine",
    "BacktestSession",
    "BacktestSummary",
    "BacktestEngine",
]
