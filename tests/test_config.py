"""Tests for configuration system."""

import logging
from datetime import date

import pytest
import yaml
from pydantic import ValidationError

from config.config_loader import deep_merge, drop_none
from config.schema import (
    BacktestRunConfig,
    StrategyParams,
    default_cost_params,
    default_risk_params,
    default_strategy_params,
    load_defaults,
    load_run_config,
)
from engine.logging_setup import setup_run_logging


def test_load_defaults():
    """Test loading default configuration."""
    defaults = load_defaults()
    assert isinstance(defaults, dict)
    assert "strategy" in defaults
    assert "risk" in defaults
    assert "costs" in defaults
    assert "monte_carlo" in defaults


def test_default_params_match_models():
    assert default_strategy_params() == StrategyParams()
    risk = default_risk_params()
    assert risk.risk_per_trade_bps == 20
    assert risk.max_stops_per_asset_day == 2
    assert risk.campaign_dd_stop == -0.10
    assert default_cost_params().fee_roundtrip_pct == 0.002


def test_strategy_params_ordering():
    with pytest.raises(ValidationError):
        StrategyParams(ema_fast=36, ema_slow=12)
    with pytest.raises(ValidationError):
        StrategyParams(tp1_atr=3.0, tp2_atr=2.5)
    assert StrategyParams(ema_fast=5, ema_slow=20, atr_period=30).warmup_bars == 31


def test_run_config_validation():
    config = BacktestRunConfig(
        symbols=[" btcusdt", "ETHUSDT", "BTCUSDT"],
        start_date="2024-01-01",
        end_date="2024-01-31",
        clusters={"btcusdt": "majors"},
    )
    assert config.symbols == ["BTCUSDT", "ETHUSDT"]
    assert config.clusters == {"BTCUSDT": "majors"}
    assert config.start_date == date(2024, 1, 1)

    with pytest.raises(ValidationError):
        BacktestRunConfig(symbols=["AAA"], start_date="2024-02-01", end_date="2024-01-01")
    with pytest.raises(ValidationError):
        BacktestRunConfig(symbols=["AAA"], start_date="2024-01-01", end_date="2024-01-02", initial_capital=0)
    with pytest.raises(ValidationError):
        BacktestRunConfig(symbols=[" "], start_date="2024-01-01", end_date="2024-01-02")
    with pytest.raises(ValidationError):
        BacktestRunConfig(
            symbols=["AAA"], start_date="2024-01-01", end_date="2024-01-02",
            risk={"global_stop_daily_pct": 0.02},
        )


def test_load_run_config_merges_defaults_file_and_overrides(tmp_path):
    config_path = tmp_path / "run.yml"
    with open(config_path, "w") as f:
        yaml.safe_dump({
            "name": "from_file",
            "symbols": ["aaa", "bbb"],
            "start_date": "2024-01-01",
            "end_date": "2024-01-10",
            "risk": {"max_stops_per_asset_day": 3},
            "monte_carlo": {"num_scenarios": 100},
        }, f)

    config = load_run_config(config_path, {"monte_carlo": {"seed": 7}, "initial_capital": 5000})

    assert config.name == "from_file"
    assert config.symbols == ["AAA", "BBB"]
    assert config.risk.max_stops_per_asset_day == 3
    assert config.risk.risk_per_trade_bps == 20
    assert config.monte_carlo.num_scenarios == 100
    assert config.monte_carlo.seed == 7
    assert config.initial_capital == 5000
    assert config.strategy == StrategyParams()


def test_load_run_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_run_config(tmp_path / "missing.yml")


def test_deep_merge_and_drop_none():
    base = {"a": 1, "nested": {"x": 1, "y": 2}}
    merged = deep_merge(base, {"nested": {"y": 3}, "b": 2})
    assert merged == {"a": 1, "b": 2, "nested": {"x": 1, "y": 3}}
    assert base["nested"]["y"] == 2
    assert drop_none({"a": None, "b": 1, "c": {"d": None}}) == {"b": 1}


def test_setup_run_logging_is_idempotent(tmp_path):
    name = "tests.logging_setup_probe"
    logger = logging.getLogger(name)
    try:
        log_file = setup_run_logging(tmp_path, run_name="probe", loggers=(name,))
        assert log_file is not None
        assert log_file.parent == tmp_path
        assert len(logger.handlers) == 2
        assert setup_run_logging(tmp_path, run_name="probe", loggers=(name,)) is None
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
