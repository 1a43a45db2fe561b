"""CLI entry point for grid backtests.

Usage:
    fundgrid --config conf/backtest.yaml
    fundgrid --config conf/backtest.yaml --prices data/510300.csv --mode intraday
    fundgrid --config conf/backtest.yaml --export-dir results/ --json results/run.json
"""

import argparse
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from fundgrid.config import ObservationMode, load_config
from fundgrid.data_provider import CsvDataProvider
from fundgrid.engine import BacktestEngine
from fundgrid.reporter import BacktestReporter


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s %(name)s %(levelname)s: %(message)s"
    logging.basicConfig(level=level, format=format_str)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a grid trading backtest over a fund price series",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: conf/backtest.yaml)",
    )

    parser.add_argument(
        "--prices",
        type=str,
        default=None,
        help="CSV price file (overrides prices_path in config)",
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in ObservationMode],
        default=None,
        help="Observation model (overrides observation_mode in config)",
    )

    parser.add_argument(
        "--export-dir",
        type=str,
        default=None,
        help="Directory for CSV exports (overrides export_dir in config)",
    )

    parser.add_argument(
        "--json",
        type=str,
        default=None,
        help="Write the full result as JSON to this file",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        strategy = config.strategy
        logger.info(f"Loaded strategy for {strategy.fund_code or 'unnamed fund'} (reference {strategy.reference_price})")

        prices_path = args.prices or config.prices_path
        if not prices_path:
            logger.error("No price file given (use --prices or prices_path in config)")
            return 1

        mode = ObservationMode(args.mode) if args.mode else config.observation_mode
        provider = CsvDataProvider(prices_path, ohlc=True if mode == ObservationMode.INTRADAY else None)
        series = list(provider)

        engine = BacktestEngine(strategy)
        session = engine.run(series, mode=mode)
    except (FileNotFoundError, ValidationError, ValueError, TypeError) as e:
        logger.error(f"Input error: {e}")
        return 1

    print(session.get_summary())

    reporter = BacktestReporter(session, strategy)
    reporter.print_console()

    export_dir = args.export_dir or config.export_dir
    if export_dir:
        paths = reporter.export_all(export_dir, prefix=strategy.fund_code)
        for kind, path in paths.items():
            logger.info(f"Exported {kind} to {path}")

    if args.json:
        path = reporter.save_json(args.json)
        logger.info(f"Saved JSON result to {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
