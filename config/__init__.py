"""Configuration management module."""

from .schema import (
    StrategyParams,
    RiskParams,
    CostParams,
    MonteCarloConfig,
    BacktestRunConfig,
    load_config,
    load_defaults,
    default_strategy_params,
    default_risk_params,
    default_cost_params,
    validate_run_config,
    load_run_config,
)

__all__ = [
    "StrategyParams",
    "RiskParams",
    "CostParams",
    "MonteCarloConfig",
    "BacktestRunConfig",
    "load_config",
    "load_defaults",
    "default_strategy_params",
    "default_risk_params",
    "default_cost_params",
    "validate_run_config",
    "load_run_config",
]
