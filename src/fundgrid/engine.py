"""Backtest engine - main orchestrator for running backtests.

Replays a price series against a grid strategy: settles pending lots, scans
each price move for level crossings, executes the resulting trades and
records the curve, then rolls everything up into a session.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, Union

from fundgrid.config import GridStrategyConfig, ObservationMode
from fundgrid.crossing import PriceCrossingScanner, Segment
from fundgrid.executor import TradeExecutionEngine
from fundgrid.grid import GridLevelGenerator
from fundgrid.models import (
    CrossDirection,
    DailyPoint,
    GridLevel,
    OHLCBar,
    PricePoint,
    TriggerEvent,
    TriggerOutcome,
)
from fundgrid.session import BacktestSession
from fundgrid.settlement import SettlementLedger

logger = logging.getLogger(__name__)

Observation = Union[PricePoint, OHLCBar]


def next_observation_dates(dates: Sequence[date]) -> list[Optional[date]]:
    """For each date of a sorted sequence, the first strictly later date (None if none)."""
    result: list[Optional[date]] = [None] * len(dates)
    for i in range(len(dates) - 2, -1, -1):
        if dates[i + 1] > dates[i]:
            result[i] = dates[i + 1]
        else:
            result[i] = result[i + 1]
    return result


class BacktestEngine:
    """Main orchestrator for running grid backtests.

    The ladder is generated once at construction and reused unchanged by
    every run. Each run gets its own ledger, executor and session, so runs
    share no mutable state.

    Example:
        engine = BacktestEngine(GridStrategyConfig(reference_price=Decimal("10")))
        session = engine.run(prices)

        print(session.get_summary())
    """

    def __init__(self, strategy: Union[GridStrategyConfig, dict]):
        """Initialize backtest engine.

        Args:
            strategy: Strategy configuration, or a raw mapping validated into one

        Raises:
            pydantic.ValidationError: If the strategy is invalid
        """
        if isinstance(strategy, dict):
            strategy = GridStrategyConfig.model_validate(strategy)
        self.strategy = strategy
        self.levels: list[GridLevel] = GridLevelGenerator(strategy).generate()

    def run(
        self,
        series: Sequence[Observation],
        mode: ObservationMode = ObservationMode.DAILY,
        session_id: Optional[str] = None,
    ) -> BacktestSession:
        """Run a backtest over a price series.

        Args:
            series: Daily observations; OHLC bars are required for intraday mode
            mode: Observation model
            session_id: Optional session identifier

        Returns:
            Finalized BacktestSession
        """
        if mode == ObservationMode.INTRADAY:
            return self.run_intraday(series, session_id=session_id)
        return self.run_daily(series, session_id=session_id)

    def run_daily(self, series: Sequence[Observation], session_id: Optional[str] = None) -> BacktestSession:
        """Replay one price per day: a single segment from previous close to close."""
        return self._run(series, ObservationMode.DAILY, session_id)

    def run_intraday(self, series: Sequence[OHLCBar], session_id: Optional[str] = None) -> BacktestSession:
        """Replay reconstructed intraday paths of OHLC bars."""
        for bar in series:
            if not isinstance(bar, OHLCBar):
                raise TypeError(f"Intraday mode requires OHLC bars, got {type(bar).__name__}")
        return self._run(series, ObservationMode.INTRADAY, session_id)

    def _run(self, series: Sequence[Observation], mode: ObservationMode,
             session_id: Optional[str]) -> BacktestSession:
        observations = sorted(series, key=lambda obs: obs.date)

        ledger = SettlementLedger(lot_unit=self.strategy.lot_unit)
        executor = TradeExecutionEngine(self.strategy, ledger)
        scanner = PriceCrossingScanner(self.levels)
        session = BacktestSession(session_id=session_id, levels=self.levels)

        if not observations:
            logger.warning('Empty price series, nothing to backtest')
            session.finalize(ledger, None)
            return session

        logger.info(
            'Starting %s backtest: %d observations, %d levels',
            mode, len(observations), len(self.levels),
        )

        unlock_dates = next_observation_dates([obs.date for obs in observations])
        prev_close: Optional[Decimal] = None

        for obs, unlock_date in zip(observations, unlock_dates):
            ledger.release(obs.date)

            # The first observation only establishes the starting price
            if prev_close is not None:
                if mode == ObservationMode.INTRADAY:
                    segments = scanner.intraday_segments(obs)
                else:
                    segments = scanner.daily_segments(prev_close, obs.close)

                for segment in segments:
                    self._process_segment(
                        segment, obs.date, unlock_date, mode, scanner, executor, session,
                    )

            prev_close = obs.close
            session.record_daily_point(DailyPoint(
                date=obs.date,
                price=obs.close,
                investment=ledger.net_investment,
                value=obs.close * ledger.total_shares,
                total_shares=ledger.total_shares,
                available_shares=ledger.available_shares,
                pending_shares=ledger.pending_shares,
            ))

        if unlock_dates[-1] is None and ledger.pending_shares:
            logger.info('%d shares bought on the final observation never settle', ledger.pending_shares)

        summary = session.finalize(ledger, prev_close)
        logger.info(
            'Backtest complete: %d transactions (%d buys, %d sells, %d blocked)',
            summary.transaction_count, summary.buy_count, summary.sell_count, summary.blocked_count,
        )
        return session

    def _process_segment(
        self,
        segment: Segment,
        trade_date: date,
        unlock_date: Optional[date],
        mode: ObservationMode,
        scanner: PriceCrossingScanner,
        executor: TradeExecutionEngine,
        session: BacktestSession,
    ) -> None:
        """Execute every crossing in one segment and log each examined level."""
        label = segment.label if mode == ObservationMode.INTRADAY else ""

        for check in scanner.scan(segment):
            outcome = TriggerOutcome.NONE
            if check.crossed:
                if check.direction == CrossDirection.FROM_ABOVE:
                    result = executor.execute_buy(check.level, trade_date, unlock_date, label)
                else:
                    result = executor.execute_sell(check.level, trade_date, label)
                    if result.outcome == TriggerOutcome.BLOCKED:
                        logger.warning(
                            '%s: sell trigger at %s blocked, no settled shares',
                            trade_date, check.level.price,
                        )
                outcome = result.outcome
                for tx in result.transactions:
                    session.record_transaction(tx)

            session.record_trigger(TriggerEvent(
                date=trade_date,
                segment=segment.label,
                start_price=segment.start_price,
                end_price=segment.end_price,
                level_index=check.level.index,
                level_price=check.level.price,
                level_offset=check.level.offset,
                tier=check.level.tier,
                crossed=check.crossed,
                direction=check.direction,
                outcome=outcome,
            ))
