"""Historical price data provider for backtest.

Loads an already-fetched price series from CSV files or plain records into
PricePoint / OHLCBar observations sorted by date.

Recognized columns (case-insensitive):
- date: ``date`` or ``FSRQ`` (fund net-value date)
- close: ``close`` or ``DWJZ`` (unit net value)
- OHLC bars additionally need ``open``, ``high`` and ``low``
"""

import csv
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from fundgrid.models import OHLCBar, PricePoint

logger = logging.getLogger(__name__)

Observation = Union[PricePoint, OHLCBar]

DATE_KEYS = ("date", "fsrq")
CLOSE_KEYS = ("close", "dwjz")
OHLC_KEYS = ("open", "high", "low")

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y%m%d", "%Y-%m-%d %H:%M:%S")


@dataclass
class DataRangeInfo:
    """Information about available data range."""

    source: str
    start_date: Optional[date]
    end_date: Optional[date]
    total_records: int


def parse_date(value: Any) -> date:
    """Parse a date from a date/datetime object or a string in common formats."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    raise ValueError(f"Unable to parse date: {value!r}")


def parse_price(value: Any, name: str = "price") -> Decimal:
    """Parse a strictly positive price."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing {name}")
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid {name}: {value!r}") from None
    if not price.is_finite() or price <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return price


def _pick(record: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    raise ValueError(f"Missing column, expected one of {keys}")


def observation_from_record(record: Mapping[str, Any], ohlc: bool = False) -> Observation:
    """Convert one raw record to an observation.

    Args:
        record: Mapping with date/close (or FSRQ/DWJZ) and optionally OHLC keys
        ohlc: Build an OHLCBar instead of a PricePoint

    Raises:
        ValueError: On missing columns, unparseable or non-positive values
    """
    normalized = {str(k).strip().lower(): v for k, v in record.items()}
    obs_date = parse_date(_pick(normalized, DATE_KEYS))
    close = parse_price(_pick(normalized, CLOSE_KEYS), "close")

    if not ohlc:
        return PricePoint(date=obs_date, close=close)

    prices = {key: parse_price(_pick(normalized, (key,)), key) for key in OHLC_KEYS}
    return OHLCBar(date=obs_date, close=close, **prices)


def _has_ohlc(record: Mapping[str, Any]) -> bool:
    keys = {str(k).strip().lower() for k in record}
    return all(key in keys for key in OHLC_KEYS)


def load_records(records: Iterable[Mapping[str, Any]], ohlc: Optional[bool] = None) -> list[Observation]:
    """Convert raw records to observations sorted by date.

    Args:
        records: Raw rows, e.g. parsed JSON or CSV dict rows
        ohlc: Force OHLC parsing on/off; None detects it from the first record

    Returns:
        Observations in chronological order

    Raises:
        ValueError: On malformed rows or duplicate dates
    """
    rows = list(records)
    if not rows:
        return []
    if ohlc is None:
        ohlc = _has_ohlc(rows[0])

    observations = []
    for row_no, record in enumerate(rows, start=1):
        try:
            observations.append(observation_from_record(record, ohlc=ohlc))
        except ValueError as e:
            raise ValueError(f"Row {row_no}: {e}") from e

    observations.sort(key=lambda obs: obs.date)
    for prev, curr in zip(observations, observations[1:]):
        if prev.date == curr.date:
            raise ValueError(f"Duplicate observation date {curr.date}")

    return observations


def load_csv(path: Union[str, Path], ohlc: Optional[bool] = None) -> list[Observation]:
    """Load a price series from a CSV file with a header row."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Price file not found: {path}")

    with open(path, newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))

    observations = load_records(rows, ohlc=ohlc)
    logger.info('Loaded %d observations from %s', len(observations), path)
    return observations


class CsvDataProvider:
    """Provides a price series from a CSV file.

    The file is read lazily on first iteration and cached.
    """

    def __init__(self, path: Union[str, Path], ohlc: Optional[bool] = None):
        """Initialize data provider.

        Args:
            path: CSV file path.
            ohlc: Force OHLC parsing on/off; None detects it from the header.
        """
        self._path = Path(path)
        self._ohlc = ohlc
        self._observations: Optional[list[Observation]] = None

    def _load(self) -> list[Observation]:
        if self._observations is None:
            self._observations = load_csv(self._path, ohlc=self._ohlc)
        return self._observations

    def __iter__(self) -> Iterator[Observation]:
        """Iterate over observations in chronological order."""
        yield from self._load()

    def get_data_range_info(self) -> DataRangeInfo:
        observations = self._load()
        return DataRangeInfo(
            source=str(self._path),
            start_date=observations[0].date if observations else None,
            end_date=observations[-1].date if observations else None,
            total_records=len(observations),
        )


class InMemoryDataProvider:
    """In-memory data provider for testing.

    Accepts pre-built observations or raw records.
    """

    def __init__(self, observations: Iterable[Union[Observation, Mapping[str, Any]]]):
        """Initialize with observations.

        Args:
            observations: PricePoint/OHLCBar objects or raw record mappings.
        """
        items = list(observations)
        if items and isinstance(items[0], Mapping):
            self._observations = load_records(items)
        else:
            self._observations = sorted(items, key=lambda obs: obs.date)

    def __iter__(self) -> Iterator[Observation]:
        """Iterate over observations."""
        yield from self._observations

    def get_data_range_info(self) -> DataRangeInfo:
        """Get data range info from observations."""
        if not self._observations:
            return DataRangeInfo(
                source="memory",
                start_date=None,
                end_date=None,
                total_records=0,
            )

        return DataRangeInfo(
            source="memory",
            start_date=self._observations[0].date,
            end_date=self._observations[-1].date,
            total_records=len(self._observations),
        )
