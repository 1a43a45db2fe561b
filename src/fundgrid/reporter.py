"""Backtest reporter for exporting results to various formats.

Supports CSV export for transactions, the daily curve, the trigger log and
the metrics summary, JSON export of the whole run, and a rich console view.
"""

import csv
import json
import logging
from dataclasses import asdict, fields
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.table import Table
from rich.text import Text

from fundgrid.config import GridStrategyConfig
from fundgrid.models import TransactionKind
from fundgrid.session import BacktestSession, BacktestSummary

logger = logging.getLogger(__name__)


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)


def _fmt(value) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


_KIND_STYLES = {
    TransactionKind.BUY: "green",
    TransactionKind.SELL: "red",
    TransactionKind.BLOCKED: "dim",
    TransactionKind.RETAINED: "yellow",
}


class BacktestReporter:
    """Export backtest results to CSV, JSON and the console.

    Example:
        session = engine.run(prices)
        reporter = BacktestReporter(session, strategy)

        reporter.export_transactions("transactions.csv")
        reporter.export_all("output_dir/")
        reporter.print_console()
    """

    def __init__(self, session: BacktestSession, strategy: Optional[GridStrategyConfig] = None):
        """Initialize reporter with a backtest session.

        Args:
            session: Finalized backtest session.
            strategy: Strategy used for the run, included in JSON output.
        """
        if session.summary is None:
            raise ValueError("Session must be finalized before reporting")
        self._session = session
        self._strategy = strategy

    @property
    def session(self) -> BacktestSession:
        """The backtest session."""
        return self._session

    @property
    def summary(self) -> BacktestSummary:
        """The backtest summary."""
        return self._session.summary

    def _ensure_path(self, path: Union[str, Path]) -> Path:
        """Convert to Path and create parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def export_transactions(self, path: Union[str, Path]) -> None:
        """Export the transaction log to CSV.

        Args:
            path: Output file path.
        """
        path = self._ensure_path(path)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([
                "seq",
                "date",
                "kind",
                "price",
                "shares",
                "amount",
                "fee",
                "tier",
                "level_offset",
                "level_price",
                "lot_id",
                "purchase_date",
                "realized_pnl",
                "segment",
            ])

            for tx in self._session.transactions:
                writer.writerow([
                    tx.seq,
                    _fmt(tx.date),
                    tx.kind.value,
                    str(tx.price),
                    tx.shares,
                    str(tx.amount),
                    str(tx.fee),
                    tx.tier.value,
                    str(tx.level_offset),
                    str(tx.level_price),
                    _fmt(tx.lot_id),
                    _fmt(tx.purchase_date),
                    str(tx.realized_pnl),
                    tx.segment,
                ])

    def export_daily_curve(self, path: Union[str, Path]) -> None:
        """Export the per-day investment/value curve to CSV.

        Args:
            path: Output file path.
        """
        path = self._ensure_path(path)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([
                "date", "price", "investment", "value", "profit",
                "total_shares", "available_shares", "pending_shares",
            ])
            for p in self._session.daily_points:
                writer.writerow([
                    _fmt(p.date),
                    str(p.price),
                    str(p.investment),
                    str(p.value),
                    str(p.profit),
                    p.total_shares,
                    p.available_shares,
                    p.pending_shares,
                ])

    def export_triggers(self, path: Union[str, Path], crossed_only: bool = False) -> None:
        """Export the trigger diagnostic log to CSV.

        Args:
            path: Output file path.
            crossed_only: Skip levels that were examined but not crossed.
        """
        path = self._ensure_path(path)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([
                "date", "segment", "start_price", "end_price", "level_index",
                "level_price", "level_offset", "tier", "crossed", "direction", "outcome",
            ])
            for e in self._session.triggers:
                if crossed_only and not e.crossed:
                    continue
                writer.writerow([
                    _fmt(e.date),
                    e.segment,
                    str(e.start_price),
                    str(e.end_price),
                    e.level_index,
                    str(e.level_price),
                    str(e.level_offset),
                    e.tier.value,
                    e.crossed,
                    e.direction.value,
                    e.outcome.value,
                ])

    def export_levels(self, path: Union[str, Path]) -> None:
        """Export the grid ladder to CSV.

        Args:
            path: Output file path.
        """
        path = self._ensure_path(path)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([
                "index", "price", "offset", "percentage", "tier", "tiers", "nominal_side",
                "buy_shares", "buy_amount", "sell_shares", "sell_amount",
            ])
            for lvl in self._session.levels:
                writer.writerow([
                    lvl.index,
                    str(lvl.price),
                    str(lvl.offset),
                    f"{lvl.percentage:.4f}",
                    lvl.tier.value,
                    "+".join(part.tier.value for part in lvl.parts),
                    lvl.nominal_side.value,
                    lvl.buy_shares,
                    str(lvl.buy_amount),
                    lvl.sell_shares,
                    str(lvl.sell_amount),
                ])

    def export_metrics(self, path: Union[str, Path]) -> None:
        """Export metrics summary to CSV.

        Args:
            path: Output file path.
        """
        path = self._ensure_path(path)

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["metric", "value"])
            writer.writerow(["session_id", self._session.session_id])
            for name, value in self.get_summary_dict().items():
                if name == "session_id":
                    continue
                if isinstance(value, float):
                    value = f"{value:.4f}"
                writer.writerow([name, _fmt(value)])

    def export_all(self, output_dir: Union[str, Path], prefix: str = "") -> dict[str, Path]:
        """Export all data to a directory.

        Args:
            output_dir: Output directory path.
            prefix: Optional prefix for file names.

        Returns:
            Dict mapping export type to file path.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        prefix = f"{prefix}_" if prefix else ""
        session_id = self._session.session_id[:8]

        paths = {
            "transactions": output_dir / f"{prefix}{session_id}_transactions.csv",
            "daily_curve": output_dir / f"{prefix}{session_id}_daily.csv",
            "triggers": output_dir / f"{prefix}{session_id}_triggers.csv",
            "levels": output_dir / f"{prefix}{session_id}_levels.csv",
            "metrics": output_dir / f"{prefix}{session_id}_metrics.csv",
        }

        self.export_transactions(paths["transactions"])
        self.export_daily_curve(paths["daily_curve"])
        self.export_triggers(paths["triggers"])
        self.export_levels(paths["levels"])
        self.export_metrics(paths["metrics"])

        logger.info('Exported backtest results to %s', output_dir)
        return paths

    def get_summary_dict(self) -> dict:
        """Get metrics as a dictionary.

        Returns:
            Dict with all metric values; money stays Decimal.
        """
        s = self.summary
        data = {"session_id": self._session.session_id}
        for f in fields(s):
            data[f.name] = getattr(s, f.name)
        return data

    def to_dict(self) -> dict:
        """Whole run as plain data (Decimals and dates left for the encoder)."""
        data = {
            "session_id": self._session.session_id,
            "summary": asdict(self.summary),
            "levels": [asdict(lvl) for lvl in self._session.levels],
            "transactions": [asdict(tx) for tx in self._session.transactions],
            "daily_points": [asdict(p) for p in self._session.daily_points],
            "triggers": [asdict(e) for e in self._session.triggers],
        }
        if self._strategy is not None:
            data["strategy"] = self._strategy.model_dump(mode="json")
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, cls=_DecimalEncoder)

    def save_json(self, path: Union[str, Path]) -> Path:
        """Save the whole run to a JSON file.

        Args:
            path: Output file path.

        Returns:
            Path to the saved file
        """
        path = self._ensure_path(path)
        with open(path, "w") as f:
            f.write(self.to_json())
        return path

    def print_console(self, console: Optional[Console] = None, max_transactions: int = 50) -> None:
        """Print summary and recent transactions with rich tables."""
        console = console or Console()
        s = self.summary

        console.print()
        console.rule("[bold]Grid Backtest Results[/bold]")
        console.print()

        table = Table(title="Summary", show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="white", min_width=22)
        table.add_column("Value", justify="right", min_width=16)

        table.add_row("Observations", str(s.observation_count))
        table.add_row("Grid levels", str(s.level_count))
        table.add_row("Buys / Sells", f"{s.buy_count} / {s.sell_count}")
        table.add_row("Blocked sells", str(s.blocked_count))
        table.add_row("Net investment", f"{s.net_investment:.2f}")
        table.add_row("Current value", f"{s.current_value:.2f}")
        table.add_row("Total fees", f"{s.total_fees:.2f}")
        table.add_row("Shares held", f"{s.total_shares} ({s.pending_shares} pending)")
        table.add_row("Realized PnL", f"{s.total_realized_pnl:.2f}")
        table.add_row("Max drawdown", f"{s.max_drawdown:.2f}")

        style = "bold green" if s.profit_amount >= 0 else "bold red"
        table.add_row(
            "Profit",
            Text(f"{s.profit_amount:.2f} ({s.profit_percentage:.2f}%)", style=style),
        )
        console.print(table)
        console.print()

        transactions = self._session.transactions
        if not transactions:
            return

        shown = transactions[-max_transactions:]
        tx_table = Table(
            title=f"Transactions (last {len(shown)} of {len(transactions)})",
            show_header=True,
            header_style="bold cyan",
        )
        tx_table.add_column("#", justify="right")
        tx_table.add_column("Date")
        tx_table.add_column("Kind")
        tx_table.add_column("Tier")
        tx_table.add_column("Price", justify="right")
        tx_table.add_column("Shares", justify="right")
        tx_table.add_column("Amount", justify="right")
        tx_table.add_column("Fee", justify="right")

        for tx in shown:
            tx_table.add_row(
                str(tx.seq),
                tx.date.isoformat(),
                Text(tx.kind.value, style=_KIND_STYLES[tx.kind]),
                tx.tier.value,
                str(tx.price),
                str(tx.shares),
                f"{tx.amount:.2f}",
                f"{tx.fee:.4f}",
            )
        console.print(tx_table)
        console.print()
