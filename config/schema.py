"""Configuration validation schemas using Pydantic."""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date
import yaml
from pathlib import Path

from config.config_loader import deep_merge, load_yaml_config


class StrategyParams(BaseModel):
    """Breakout/trend strategy parameters (all distances in ATR multiples)."""
    ema_fast: int = Field(default=12, gt=0, description="Fast EMA period")
    ema_slow: int = Field(default=36, gt=0, description="Slow EMA period")
    atr_period: int = Field(default=14, gt=0, description="ATR period (simple mean of true range)")
    breakout_long_atr: float = Field(default=2.0, gt=0.0, description="Close must exceed fast EMA by this many ATRs to go long")
    breakout_short_atr: float = Field(default=1.5, gt=0.0, description="Close must fall below fast EMA by this many ATRs to go short")
    tp1_atr: float = Field(default=1.2, gt=0.0, description="First take-profit distance (closes 50%)")
    tp2_atr: float = Field(default=2.5, gt=0.0, description="Second take-profit distance (closes remainder)")
    sl_atr: float = Field(default=1.0, gt=0.0, description="Stop-loss distance")
    trailing_atr: float = Field(default=0.8, gt=0.0, description="Trailing stop offset from the extreme price after TP1")

    @model_validator(mode='after')
    def check_ordering(self):
        """EMA periods and take-profit legs must be ordered."""
        if self.ema_fast >= self.ema_slow:
            raise ValueError(f"ema_fast ({self.ema_fast}) must be smaller than ema_slow ({self.ema_slow})")
        if self.tp1_atr >= self.tp2_atr:
            raise ValueError(f"tp1_atr ({self.tp1_atr}) must be smaller than tp2_atr ({self.tp2_atr})")
        return self

    @property
    def warmup_bars(self) -> int:
        """Bars held in each indicator buffer."""
        return max(self.ema_slow, self.atr_period) + 1


class RiskParams(BaseModel):
    """Position sizing and circuit breaker limits.

    Daily stop thresholds and the campaign drawdown stop are negative
    fractions (e.g. -0.024 = -2.4% of equity).
    """
    risk_per_trade_bps: float = Field(default=20.0, gt=0.0, description="Risk budget per trade in basis points of equity")
    cluster_cap_pct: float = Field(default=0.12, gt=0.0, description="Max open notional per cluster as fraction of equity")
    cluster_stop_daily_pct: float = Field(default=-0.015, lt=0.0, description="Daily cluster PnL stop")
    global_stop_daily_pct: float = Field(default=-0.024, lt=0.0, description="Daily global PnL stop")
    max_stops_per_asset_day: int = Field(default=2, gt=0, description="Stop-losses per asset before it is paused for the day")
    campaign_dd_stop: float = Field(default=-0.10, lt=0.0, gt=-1.0, description="Drawdown from peak that halts the run")


class CostParams(BaseModel):
    """Execution cost assumptions (fractions, not percent)."""
    fee_roundtrip_pct: float = Field(default=0.0020, ge=0.0, lt=1.0)
    slippage_roundtrip_pct: float = Field(default=0.0010, ge=0.0, lt=1.0)
    funding_daily_pct: float = Field(default=0.0, ge=0.0)
    tax_rate: float = Field(default=0.15, ge=0.0, le=1.0)
    min_atr_daily_pct: float = Field(default=0.005, ge=0.0, description="Entries are skipped while atr/close is below this")


class MonteCarloConfig(BaseModel):
    """Monte Carlo stress test settings."""
    enabled: bool = True
    num_scenarios: int = Field(default=500, gt=0)
    min_trades: int = Field(default=10, ge=1, description="Ledger size required before the simulation runs")
    seed: Optional[int] = Field(default=None, ge=0, description="Seed for reproducible scenarios (None = fresh entropy)")
    batch_size: int = Field(default=50, gt=0, description="Scenarios per worker batch; cancellation is checked between batches")
    max_workers: Optional[int] = Field(default=None, gt=0)


class BacktestRunConfig(BaseModel):
    """Complete description of one backtest run."""
    name: str = "breakout_backtest"
    symbols: List[str]
    start_date: date
    end_date: date
    initial_capital: float = Field(default=100000.0, gt=0.0)
    clusters: Dict[str, str] = Field(default_factory=dict, description="symbol -> cluster id")
    apply_breakers: bool = True
    strategy: StrategyParams = Field(default_factory=StrategyParams)
    risk: RiskParams = Field(default_factory=RiskParams)
    costs: CostParams = Field(default_factory=CostParams)
    monte_carlo: MonteCarloConfig = Field(default_factory=MonteCarloConfig)

    @field_validator('symbols')
    @classmethod
    def validate_symbols(cls, v: List[str]) -> List[str]:
        """Strip, uppercase and de-duplicate while keeping order."""
        seen = []
        for symbol in v:
            symbol = symbol.strip().upper()
            if symbol and symbol not in seen:
                seen.append(symbol)
        if not seen:
            raise ValueError("At least one symbol is required")
        return seen

    @field_validator('clusters')
    @classmethod
    def validate_clusters(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {k.strip().upper(): str(c) for k, c in v.items()}

    @model_validator(mode='after')
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError(f"end_date {self.end_date} is before start_date {self.start_date}")
        return self


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration file."""
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_defaults() -> Dict[str, Any]:
    """Load default configuration values."""
    defaults_path = Path(__file__).parent / "defaults.yml"
    return load_config(defaults_path)


def default_strategy_params() -> StrategyParams:
    return StrategyParams(**load_defaults().get('strategy', {}))


def default_risk_params() -> RiskParams:
    return RiskParams(**load_defaults().get('risk', {}))


def default_cost_params() -> CostParams:
    return CostParams(**load_defaults().get('costs', {}))


def validate_run_config(config_dict: Dict[str, Any]) -> BacktestRunConfig:
    """Validate and return BacktestRunConfig object."""
    return BacktestRunConfig(**config_dict)


def load_run_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> BacktestRunConfig:
    """Load a run configuration.

    Resolution order (later wins): defaults.yml, the YAML file at
    ``config_path``, then ``overrides`` (e.g. CLI arguments).

    Args:
        config_path: Optional user YAML file. Raises FileNotFoundError if given
            but missing.
        overrides: Optional nested dict merged last.

    Returns:
        Validated BacktestRunConfig
    """
    merged = load_defaults()
    if config_path is not None:
        merged = deep_merge(merged, load_yaml_config(Path(config_path)))
    if overrides:
        merged = deep_merge(merged, overrides)
    return validate_run_config(merged)
