"""Backtest pipeline - runs engine, Monte Carlo and metrics for one run.

Status lifecycle: pending -> running -> completed | failed. Errors are
recorded on the run (status failed, error_message) and re-raised to the
caller; nothing is retried. A cancelled run ends as failed, never completed.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging
import uuid

from config.schema import BacktestRunConfig
from engine.backtest_engine import BacktestEngine, BacktestResult, BarSource, CancelEvent
from metrics.metrics import MetricsRecord, calculate_and_save_metrics
from validation.monte_carlo.simulator import MonteCarloResults, MonteCarloSimulator, extract_trade_returns
from validation.state import RunRecord, RunStore

logger = logging.getLogger(__name__)

# Share of overall progress assigned to each stage.
ENGINE_PROGRESS = 80.0
MONTE_CARLO_PROGRESS = 15.0


@dataclass
class PipelineResult:
    run: RunRecord
    backtest: BacktestResult
    metrics: MetricsRecord
    monte_carlo: Optional[MonteCarloResults] = None


class BacktestPipeline:
    """Orchestrates a complete backtest run.

    1. Backtest Engine over the configured symbols and dates
    2. Monte Carlo stress test (only with enough trades)
    3. Metrics and validation gate
    4. Persistence of trades, scenarios and metrics
    """

    def __init__(
        self,
        config: BacktestRunConfig,
        bars: BarSource,
        store: Optional[RunStore] = None
    ):
        """
        Initialize backtest pipeline.

        Args:
            config: Validated run configuration
            bars: Bar source for the configured symbols
            store: Run store (in-memory only if None)
        """
        self.config = config
        self.bars = bars
        self.store = store
        self.engine = BacktestEngine(
            strategy=config.strategy,
            risk=config.risk,
            costs=config.costs,
            initial_capital=config.initial_capital,
            clusters=config.clusters,
            apply_breakers=config.apply_breakers,
        )

    def create_run(self, run_id: Optional[str] = None) -> RunRecord:
        record = RunRecord(
            run_id=run_id or uuid.uuid4().hex,
            name=self.config.name,
            apply_breakers=self.config.apply_breakers,
            config=self.config.model_dump(mode='json'),
        )
        self._save(record)
        return record

    def run(
        self,
        run_id: Optional[str] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[CancelEvent] = None
    ) -> PipelineResult:
        """
        Execute the run.

        Args:
            run_id: Identifier for the run (generated if None)
            on_progress: Receives overall progress in [0, 100], non-decreasing
            cancel_event: Cooperative cancellation (engine days, Monte Carlo batches)

        Returns:
            PipelineResult
        """
        record = self.create_run(run_id)
        record.mark_running()
        self._save(record)
        last_reported = [-1]

        def progress(pct: float):
            pct = max(pct, record.progress_percentage)
            record.progress_percentage = pct
            if on_progress is not None:
                on_progress(pct)
            if int(pct) != last_reported[0]:
                last_reported[0] = int(pct)
                self._save(record)

        try:
            backtest = self.engine.run(
                self.config.symbols,
                self.config.start_date,
                self.config.end_date,
                self.bars,
                on_progress=lambda p: progress(p * ENGINE_PROGRESS / 100),
                cancel_event=cancel_event,
            )
            if self.store is not None:
                self.store.save_trades(record.run_id, backtest.trades)

            monte_carlo = self._run_monte_carlo(backtest, progress, cancel_event)
            if monte_carlo is not None and self.store is not None:
                self.store.save_scenarios(record.run_id, monte_carlo)

            metrics = calculate_and_save_metrics(
                backtest.trades,
                self.config.initial_capital,
                monte_carlo_results=monte_carlo,
                costs=self.config.costs,
                store=self.store,
                run_id=record.run_id,
            )
        except BaseException as e:
            logger.error(f"Run {record.run_id} failed: {e!r}")
            record.mark_failed(str(e) or type(e).__name__)
            self._save(record)
            raise

        record.halted = backtest.halted
        record.monte_carlo_ran = monte_carlo is not None
        record.mark_completed(backtest.totals().to_dict())
        self._save(record)
        if on_progress is not None:
            on_progress(100.0)
        logger.info(
            f"Run {record.run_id} completed: {backtest.total_trades} trades, "
            f"PnL {backtest.total_pnl:.2f}, validation {'PASSED' if metrics.validation.validation_passed else 'FAILED'}"
        )
        return PipelineResult(run=record, backtest=backtest, metrics=metrics, monte_carlo=monte_carlo)

    def _run_monte_carlo(
        self,
        backtest: BacktestResult,
        progress: Callable[[float], None],
        cancel_event: Optional[CancelEvent]
    ) -> Optional[MonteCarloResults]:
        mc = self.config.monte_carlo
        if not mc.enabled:
            return None
        if backtest.total_trades < mc.min_trades:
            logger.info(f"Skipping Monte Carlo: {backtest.total_trades} trades < {mc.min_trades}")
            return None

        simulator = MonteCarloSimulator(
            initial_capital=self.config.initial_capital,
            apply_breakers=self.config.apply_breakers,
            global_stop_daily_pct=self.config.risk.global_stop_daily_pct,
            campaign_dd_stop=self.config.risk.campaign_dd_stop,
            seed=mc.seed,
        )
        return simulator.run_simulation(
            extract_trade_returns(backtest.trades, self.config.clusters),
            num_scenarios=mc.num_scenarios,
            on_progress=lambda p: progress(ENGINE_PROGRESS + p * MONTE_CARLO_PROGRESS / 100),
            cancel_event=cancel_event,
            max_workers=mc.max_workers,
            batch_size=mc.batch_size,
        )

    def _save(self, record: RunRecord):
        if self.store is not None:
            self.store.save_run(record)
