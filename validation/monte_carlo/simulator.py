# validation/monte_carlo/simulator.py
"""
Correlation-regime Monte Carlo stress test for a trade ledger.

Key points:
 - Inputs are per-symbol trade returns: return_i = net_pnl_i / notional_i.
 - Each scenario draws a correlation regime (see scenarios.py) and rebuilds
   every return as
       r' = r * (1 - intra - inter) + cluster_shock * intra + market_shock * inter
   with one market shock per scenario and one shock per cluster.
 - Adjusted returns are pooled and shuffled (sequencing is part of what is
   being stressed), then compounded onto equity with the global daily stop
   and campaign drawdown breakers. Paused steps are skipped, not zeroed.
 - Each step has a 5% chance of starting a new "day" (daily PnL and pause
   reset).
 - All randomness comes from numpy Generators spawned from one SeedSequence:
   one child for the regime configs and one per scenario batch. Results are
   identical for a given seed and batch size regardless of worker count.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional, Sequence
import logging
import math
import numpy as np

from engine.backtest_engine import RunCancelled, CancelEvent
from engine.models import TradeResult
from metrics.metrics import calculate_var_es
from validation.monte_carlo.scenarios import ScenarioConfig, generate_scenario_configs
from validation.monte_carlo.utils import (
    MonteCarloSummary,
    ConfidenceIntervals,
    summarize_scenarios,
    confidence_intervals,
)

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER = "0"
MARKET_SHOCK_SCALE = 0.02
CLUSTER_SHOCK_SCALE = 0.01
DAY_RESET_PROBABILITY = 0.05


@dataclass(frozen=True)
class TradeReturns:
    symbol: str
    returns: tuple
    cluster: Optional[str] = None


@dataclass
class ScenarioResult:
    scenario_number: int
    scenario_type: str
    intra_cluster_correlation: float
    inter_cluster_correlation: float
    final_equity: float
    total_pnl: float
    max_drawdown: float
    var_95: float
    es_95: float
    breakers_activated: int
    steps_applied: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'ScenarioResult':
        return cls(**data)


@dataclass
class MonteCarloResults:
    scenarios: List[ScenarioResult]
    summary: MonteCarloSummary
    confidence_intervals: ConfidenceIntervals
    seed: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            'summary': self.summary.to_dict(),
            'confidence_intervals': self.confidence_intervals.to_dict(),
            'seed': self.seed,
        }


def extract_trade_returns(
    trades: Sequence[TradeResult],
    clusters: Optional[Dict[str, str]] = None
) -> List[TradeReturns]:
    """Group ledger returns (net_pnl / notional) by symbol, in first-seen order."""
    grouped: Dict[str, List[float]] = {}
    cluster_of: Dict[str, Optional[str]] = {}
    for trade in trades:
        if trade.notional <= 0:
            continue
        grouped.setdefault(trade.symbol, []).append(trade.return_on_notional)
        cluster_of.setdefault(trade.symbol, trade.cluster)

    clusters = clusters or {}
    return [
        TradeReturns(symbol=symbol, returns=tuple(values), cluster=clusters.get(symbol, cluster_of[symbol]))
        for symbol, values in grouped.items()
    ]


def apply_correlations(
    trade_returns: Sequence[TradeReturns],
    config: ScenarioConfig,
    rng: np.random.Generator
) -> np.ndarray:
    """Blend each return with a shared cluster shock and a market shock."""
    by_cluster: Dict[str, List[TradeReturns]] = {}
    for tr in trade_returns:
        by_cluster.setdefault(tr.cluster or DEFAULT_CLUSTER, []).append(tr)

    intra = config.intra_cluster_correlation
    inter = config.inter_cluster_correlation
    idiosyncratic = 1 - intra - inter
    market_shock = (rng.random() - 0.5) * MARKET_SHOCK_SCALE

    adjusted = []
    for members in by_cluster.values():
        cluster_shock = (rng.random() - 0.5) * CLUSTER_SHOCK_SCALE
        for tr in members:
            values = np.asarray(tr.returns, dtype=float)
            adjusted.append(values * idiosyncratic + cluster_shock * intra + market_shock * inter)
    if not adjusted:
        return np.array([], dtype=float)
    return np.concatenate(adjusted)


class MonteCarloSimulator:
    """Runs correlation-regime scenarios over a ledger's trade returns."""

    def __init__(
        self,
        initial_capital: float = 100000.0,
        apply_breakers: bool = True,
        global_stop_daily_pct: float = -0.024,
        campaign_dd_stop: float = -0.10,
        seed: Optional[int] = None
    ):
        if initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {initial_capital}")
        self.initial_capital = float(initial_capital)
        self.apply_breakers = apply_breakers
        self.global_stop_daily_pct = global_stop_daily_pct
        self.campaign_dd_stop = campaign_dd_stop
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)
            logger.warning(f"No Monte Carlo seed supplied; using entropy {seed} (record it to reproduce)")
        self.seed = seed

    def run_single_scenario(
        self,
        scenario_number: int,
        config: ScenarioConfig,
        trade_returns: Sequence[TradeReturns],
        rng: np.random.Generator
    ) -> ScenarioResult:
        """Correlate, shuffle and compound one scenario path."""
        returns = rng.permutation(apply_correlations(trade_returns, config, rng))
        day_resets = rng.random(len(returns)) < DAY_RESET_PROBABILITY

        equity = peak = self.initial_capital
        max_dd = 0.0
        breakers = 0
        daily_pnl = 0.0
        paused = False
        applied: List[float] = []

        for ret, new_day in zip(returns, day_resets):
            if self.apply_breakers and paused:
                breakers += 1
            else:
                pnl = equity * ret
                equity += pnl
                daily_pnl += pnl
                if self.apply_breakers and daily_pnl / self.initial_capital <= self.global_stop_daily_pct:
                    paused = True
                    breakers += 1

                peak = max(peak, equity)
                dd = (equity - peak) / peak
                max_dd = min(max_dd, dd)
                if self.apply_breakers and dd <= self.campaign_dd_stop:
                    breakers += 1
                    break
                applied.append(float(ret))

            if new_day:
                daily_pnl = 0.0
                paused = False

        var_95, es_95 = calculate_var_es(applied, 0.05)
        return ScenarioResult(
            scenario_number=scenario_number,
            scenario_type=config.scenario_type.value,
            intra_cluster_correlation=config.intra_cluster_correlation,
            inter_cluster_correlation=config.inter_cluster_correlation,
            final_equity=equity,
            total_pnl=equity - self.initial_capital,
            max_drawdown=abs(max_dd),
            var_95=var_95,
            es_95=es_95,
            breakers_activated=breakers,
            steps_applied=len(applied),
        )

    def _run_batch(
        self,
        start: int,
        configs: Sequence[ScenarioConfig],
        trade_returns: Sequence[TradeReturns],
        seed_seq: np.random.SeedSequence
    ) -> List[ScenarioResult]:
        rng = np.random.default_rng(seed_seq)
        return [
            self.run_single_scenario(start + offset + 1, config, trade_returns, rng)
            for offset, config in enumerate(configs)
        ]

    def run_simulation(
        self,
        trade_returns: Sequence[TradeReturns],
        num_scenarios: int = 1000,
        on_progress: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[CancelEvent] = None,
        max_workers: Optional[int] = None,
        batch_size: int = 50
    ) -> MonteCarloResults:
        """
        Run ``num_scenarios`` scenarios.

        Args:
            trade_returns: Per-symbol trade returns (see extract_trade_returns)
            num_scenarios: Number of scenarios (>= 1)
            on_progress: Called with the percentage of scenarios finished
            cancel_event: Checked between batches; raises RunCancelled when set
            max_workers: Thread pool size; 1 runs batches inline
            batch_size: Scenarios per batch (part of the reproducibility key)

        Returns:
            MonteCarloResults with scenarios ordered by scenario number
        """
        if num_scenarios < 1:
            raise ValueError(f"num_scenarios must be >= 1, got {num_scenarios}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if sum(len(tr.returns) for tr in trade_returns) == 0:
            raise ValueError("No trade returns to simulate")

        n_batches = math.ceil(num_scenarios / batch_size)
        children = np.random.SeedSequence(self.seed).spawn(n_batches + 1)
        configs = generate_scenario_configs(num_scenarios, np.random.default_rng(children[0]))
        batches = [
            (i * batch_size, configs[i * batch_size:(i + 1) * batch_size], children[i + 1])
            for i in range(n_batches)
        ]
        logger.info(
            f"Monte Carlo start: {num_scenarios} scenarios in {n_batches} batches, "
            f"seed={self.seed}, breakers={'on' if self.apply_breakers else 'off'}"
        )

        results: List[Optional[List[ScenarioResult]]] = [None] * n_batches
        done = 0

        def report(batch_len: int):
            nonlocal done
            done += batch_len
            if on_progress is not None:
                on_progress(done / num_scenarios * 100)

        def check_cancel():
            if done < num_scenarios and cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Monte Carlo cancelled after {done}/{num_scenarios} scenarios")
                raise RunCancelled(f"Monte Carlo cancelled after {done}/{num_scenarios} scenarios")

        if max_workers == 1 or n_batches == 1:
            for index, (start, batch_configs, seed_seq) in enumerate(batches):
                check_cancel()
                results[index] = self._run_batch(start, batch_configs, trade_returns, seed_seq)
                report(len(batch_configs))
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                futures = {
                    executor.submit(self._run_batch, start, batch_configs, trade_returns, seed_seq): index
                    for index, (start, batch_configs, seed_seq) in enumerate(batches)
                }
                try:
                    for future in as_completed(futures):
                        index = futures[future]
                        results[index] = future.result()
                        report(len(results[index]))
                        check_cancel()
                except BaseException:
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise

        scenarios = [scenario for batch in results for scenario in batch]
        final_equity = np.array([s.final_equity for s in scenarios])
        total_pnl = np.array([s.total_pnl for s in scenarios])
        max_dd = np.array([s.max_drawdown for s in scenarios])
        summary = summarize_scenarios(
            final_equity,
            total_pnl,
            max_dd,
            np.array([s.var_95 for s in scenarios]),
            np.array([s.es_95 for s in scenarios]),
            np.array([s.breakers_activated for s in scenarios]),
        )
        logger.info(f"Monte Carlo complete. Mean final equity: {summary.mean_final_equity:.2f}")
        return MonteCarloResults(
            scenarios=scenarios,
            summary=summary,
            confidence_intervals=confidence_intervals(final_equity, total_pnl, max_dd),
            seed=self.seed,
        )
