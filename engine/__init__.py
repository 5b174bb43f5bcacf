"""Core backtesting engine module."""

from engine.backtest_engine import (
    BacktestEngine,
    BacktestResult,
    RunState,
    NoTradesError,
    RunCancelled,
)
from engine.models import Bar, Position, TradeResult, RunTotals
from engine.broker import BrokerModel
from engine.indicators import IndicatorEngine, IndicatorState
from engine.circuit_breaker import BreakerState, reset_daily

__all__ = [
    'BacktestEngine',
    'BacktestResult',
    'RunState',
    'NoTradesError',
    'RunCancelled',
    'Bar',
    'Position',
    'TradeResult',
    'RunTotals',
    'BrokerModel',
    'IndicatorEngine',
    'IndicatorState',
    'BreakerState',
    'reset_daily',
]
