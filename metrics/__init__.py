"""Performance metrics calculation."""

from metrics.metrics import (
    TradeMetrics,
    RiskMetrics,
    CostMetrics,
    BreakerStats,
    ValidationResult,
    MetricsRecord,
    RATIO_SENTINEL,
    calculate_var_es,
    calculate_trade_metrics,
    calculate_daily_returns,
    calculate_sharpe_sortino,
    calculate_drawdown,
    calculate_risk_metrics,
    calculate_cost_metrics,
    calculate_breaker_stats,
    validate_results,
    calculate_and_save_metrics,
)

__all__ = [
    'TradeMetrics',
    'RiskMetrics',
    'CostMetrics',
    'BreakerStats',
    'ValidationResult',
    'MetricsRecord',
    'RATIO_SENTINEL',
    'calculate_var_es',
    'calculate_trade_metrics',
    'calculate_daily_returns',
    'calculate_sharpe_sortino',
    'calculate_drawdown',
    'calculate_risk_metrics',
    'calculate_cost_metrics',
    'calculate_breaker_stats',
    'validate_results',
    'calculate_and_save_metrics',
]
