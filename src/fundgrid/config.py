"""Configuration models for grid backtests.

Loads backtest configuration from YAML file with Pydantic validation.
"""

import os
from decimal import Decimal
from enum import StrEnum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WidthMode(StrEnum):
    """Unit system of the tier width."""

    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class GridShape(StrEnum):
    """Which offsets the grid ladder covers."""

    SYMMETRIC = "symmetric"
    DOWNWARD_ONLY = "downward_only"

    @classmethod
    def _missing_(cls, value):
        if value in ("downward", "downwardOnly"):
            return cls.DOWNWARD_ONLY
        return None


class SellPolicy(StrEnum):
    """How sell triggers are sized."""

    DYNAMIC = "dynamic"
    FIXED_MATCHING = "fixed_matching"

    @classmethod
    def _missing_(cls, value):
        if value in ("fixed", "fixedMatching"):
            return cls.FIXED_MATCHING
        return None


class ObservationMode(StrEnum):
    """Price observation model."""

    DAILY = "daily"
    INTRADAY = "intraday"


def _to_decimal(v):
    """Convert str/int/float input to Decimal without binary float artifacts."""
    if isinstance(v, bool):
        return v
    if isinstance(v, (str, int, float)):
        return Decimal(str(v))
    return v


class TierConfig(BaseModel):
    """Optional extra tier; defaults describe the medium tier."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    multiplier: Decimal = Field(default=Decimal("3"), gt=0)

    @field_validator("multiplier", mode="before")
    @classmethod
    def parse_multiplier(cls, v):
        return _to_decimal(v)


class LargeTierConfig(TierConfig):
    """Large tier; wider spacing than the medium tier by default."""

    multiplier: Decimal = Field(default=Decimal("5"), gt=0)


class DeclineClampConfig(BaseModel):
    """Floor below which no grid level is generated."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    percentage: Decimal = Field(default=Decimal("60"), gt=0, le=100)

    @field_validator("percentage", mode="before")
    @classmethod
    def parse_percentage(cls, v):
        return _to_decimal(v)


class GridStrategyConfig(BaseModel):
    """Grid trading strategy parameters for one backtest run."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    fund_code: str = Field(default="", description="Instrument code (informational)")
    fund_name: str = Field(default="", description="Instrument name (informational)")

    # Grid parameters
    reference_price: Decimal = Field(..., gt=0, description="Price the ladder is centred on")
    tier_count: int = Field(default=5, ge=1, description="Levels per side per tier")
    tier_width: Decimal = Field(default=Decimal("5"), gt=0, description="Spacing between small-tier levels")
    width_mode: WidthMode = WidthMode.PERCENTAGE
    shape: GridShape = GridShape.SYMMETRIC
    tick_size: Decimal = Field(default=Decimal("0.0001"), gt=0, description="Price rounding of levels")

    # Sizing
    per_tier_amount: Decimal = Field(default=Decimal("1000"), gt=0, description="Money per small-tier level")
    lot_unit: int = Field(default=100, gt=0, description="Minimum tradable share increment")

    # Selling
    sell_policy: SellPolicy = SellPolicy.DYNAMIC
    retained_profit_ratio: Decimal = Field(default=Decimal("0"), ge=0, le=1)

    # Extra tiers
    medium_tier: TierConfig = Field(default_factory=TierConfig)
    large_tier: LargeTierConfig = Field(default_factory=LargeTierConfig)
    max_decline_clamp: DeclineClampConfig = Field(default_factory=DeclineClampConfig)

    # Commission
    fee_rate: Decimal = Field(
        default=Decimal("0.0003"),
        ge=0,
        le=Decimal("0.01"),
        description="Fee rate per trade (0.0003 = 0.03%)",
    )

    @field_validator(
        "reference_price",
        "tier_width",
        "tick_size",
        "per_tier_amount",
        "retained_profit_ratio",
        "fee_rate",
        mode="before",
    )
    @classmethod
    def parse_decimal(cls, v):
        """Convert numeric input to Decimal."""
        return _to_decimal(v)

    @property
    def decline_floor(self) -> Optional[Decimal]:
        """Lowest allowed level price, or None when the clamp is disabled."""
        if not self.max_decline_clamp.enabled:
            return None
        return self.reference_price * (1 - self.max_decline_clamp.percentage / 100)


class BacktestConfig(BaseModel):
    """Root configuration for a backtest run."""

    strategy: GridStrategyConfig

    prices_path: Optional[str] = Field(
        default=None,
        description="CSV file with the price series",
    )
    observation_mode: ObservationMode = Field(
        default=ObservationMode.DAILY,
        description="daily closes or intraday OHLC reconstruction",
    )
    export_dir: Optional[str] = Field(
        default=None,
        description="Directory for CSV exports",
    )


def load_config(config_path: Optional[str] = None) -> BacktestConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, checks:
            1. FUNDGRID_CONFIG_PATH environment variable
            2. conf/backtest.yaml
            3. backtest.yaml

    Returns:
        Validated BacktestConfig

    Raises:
        FileNotFoundError: If no config file found
        ValueError: If config validation fails
    """
    if config_path is None:
        config_path = os.environ.get("FUNDGRID_CONFIG_PATH")

    if config_path is None:
        search_paths = [
            Path("conf/backtest.yaml"),
            Path("backtest.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set FUNDGRID_CONFIG_PATH or create conf/backtest.yaml"
        )

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return BacktestConfig(**data)
