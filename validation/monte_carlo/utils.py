"""Aggregation helpers for Monte Carlo scenario populations."""

from dataclasses import dataclass, asdict
from typing import Dict, Sequence, Tuple
import math
import numpy as np
from scipy import stats


def floor_percentile(values: Sequence[float], q: float) -> float:
    """Empirical percentile ``sorted(values)[floor(n * q)]`` (0.0 when empty).

    Nearest-rank without interpolation, so the result is always one of the
    observed values.
    """
    ordered = np.sort(np.asarray(values, dtype=float))
    if len(ordered) == 0:
        return 0.0
    index = min(int(math.floor(len(ordered) * q)), len(ordered) - 1)
    return float(ordered[index])


@dataclass
class MonteCarloSummary:
    """Population statistics over all scenarios.

    ``var99_mean`` and ``es99_mean`` are the 99th percentile of the
    per-scenario VaR95/ES95 values. They approximate a stressed 99% tail and
    are not a 99% VaR/ES recomputed from the pooled per-step returns.
    """
    num_scenarios: int
    mean_final_equity: float
    std_final_equity: float
    var95_mean: float
    var99_mean: float
    es95_mean: float
    es99_mean: float
    max_drawdown_p5: float
    max_drawdown_p50: float
    max_drawdown_p95: float
    prob_positive_pnl: float
    prob_drawdown_over_10pct: float
    pnl_skew: float = 0.0
    pnl_excess_kurtosis: float = 0.0
    mean_breakers_activated: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ConfidenceIntervals:
    """Empirical 95% intervals (2.5th / 97.5th percentiles)."""
    final_equity: Tuple[float, float]
    total_pnl: Tuple[float, float]
    max_drawdown: Tuple[float, float]

    def to_dict(self) -> Dict[str, list]:
        return {k: list(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, list]) -> 'ConfidenceIntervals':
        return cls(**{k: tuple(v) for k, v in data.items()})


def summarize_scenarios(
    final_equity: np.ndarray,
    total_pnl: np.ndarray,
    max_drawdown: np.ndarray,
    var95: np.ndarray,
    es95: np.ndarray,
    breakers_activated: np.ndarray
) -> MonteCarloSummary:
    """Aggregate per-scenario arrays (all of equal length) into a summary."""
    n = len(final_equity)
    if n == 0:
        raise ValueError("Cannot summarize an empty scenario population")

    skew = kurtosis = 0.0
    if n > 2 and np.ptp(total_pnl) > 0:
        skew = float(stats.skew(total_pnl))
        kurtosis = float(stats.kurtosis(total_pnl))

    return MonteCarloSummary(
        num_scenarios=n,
        mean_final_equity=float(np.mean(final_equity)),
        std_final_equity=float(np.std(final_equity)),
        var95_mean=float(np.mean(var95)),
        var99_mean=floor_percentile(var95, 0.99),
        es95_mean=float(np.mean(es95)),
        es99_mean=floor_percentile(es95, 0.99),
        max_drawdown_p5=floor_percentile(max_drawdown, 0.05),
        max_drawdown_p50=floor_percentile(max_drawdown, 0.50),
        max_drawdown_p95=floor_percentile(max_drawdown, 0.95),
        prob_positive_pnl=float(np.mean(total_pnl > 0)),
        prob_drawdown_over_10pct=float(np.mean(max_drawdown > 0.10)),
        pnl_skew=skew,
        pnl_excess_kurtosis=kurtosis,
        mean_breakers_activated=float(np.mean(breakers_activated)),
    )


def confidence_intervals(
    final_equity: np.ndarray,
    total_pnl: np.ndarray,
    max_drawdown: np.ndarray
) -> ConfidenceIntervals:
    def band(values: np.ndarray) -> Tuple[float, float]:
        return floor_percentile(values, 0.025), floor_percentile(values, 0.975)

    return ConfidenceIntervals(
        final_equity=band(final_equity),
        total_pnl=band(total_pnl),
        max_drawdown=band(max_drawdown),
    )
