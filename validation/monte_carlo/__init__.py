"""Correlation-regime Monte Carlo stress testing.

Scenario regimes (normal, intra-cluster stress, inter-cluster stress, black
swan) re-correlate and reshuffle a ledger's trade returns, then replay them
through the daily global stop and campaign drawdown breakers.
"""

from .scenarios import ScenarioType, ScenarioConfig, REGIMES, regime_counts, generate_scenario_configs
from .simulator import (
    TradeReturns,
    ScenarioResult,
    MonteCarloResults,
    MonteCarloSimulator,
    extract_trade_returns,
    apply_correlations,
)
from .utils import MonteCarloSummary, ConfidenceIntervals, floor_percentile

__all__ = [
    'ScenarioType',
    'ScenarioConfig',
    'REGIMES',
    'regime_counts',
    'generate_scenario_configs',
    'TradeReturns',
    'ScenarioResult',
    'MonteCarloResults',
    'MonteCarloSimulator',
    'extract_trade_returns',
    'apply_correlations',
    'MonteCarloSummary',
    'ConfidenceIntervals',
    'floor_percentile',
]
