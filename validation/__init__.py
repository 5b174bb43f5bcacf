"""Validation modules: Monte Carlo stress testing, run pipeline and run store."""

from validation.monte_carlo import (
    MonteCarloSimulator,
    MonteCarloResults,
    ScenarioResult,
    extract_trade_returns,
)

from validation.pipeline import (
    BacktestPipeline,
    PipelineResult,
)

from validation.state import (
    RunRecord,
    RunStore,
)

__all__ = [
    'MonteCarloSimulator',
    'MonteCarloResults',
    'ScenarioResult',
    'extract_trade_returns',
    'BacktestPipeline',
    'PipelineResult',
    'RunRecord',
    'RunStore',
]
