"""Tests for the day-by-day backtest engine."""

import threading

import numpy as np
import pandas as pd
import pytest

from adapters.data.bar_store import BarStore
from config.schema import StrategyParams, RiskParams, CostParams
from engine.backtest_engine import BacktestEngine, NoTradesError, RunCancelled
from engine.indicators import IndicatorState


ZERO_COSTS = CostParams(fee_roundtrip_pct=0.0, slippage_roundtrip_pct=0.0, min_atr_daily_pct=0.0)

# open, high, low, close against fixed indicators (ema_fast=100, atr=1)
BREAKOUT = (103.0, 103.5, 102.5, 103.0)
STOP_AND_BREAKOUT = (103.0, 103.0, 101.5, 103.0)
FLAT = (100.0, 100.2, 99.8, 100.0)


class _FixedIndicators:
    """Indicator engine stand-in that always reports the same values."""

    def __init__(self, ema_fast=100.0, ema_slow=99.0, atr=1.0):
        self.state = IndicatorState(maxlen=1, ema_fast=ema_fast, ema_slow=ema_slow, atr=atr)

    def update(self, symbol, bar):
        return self.state


class _FixedIndicatorEngine(BacktestEngine):
    def new_state(self):
        state = super().new_state()
        state.indicators = _FixedIndicators()
        return state


def _frame(rows, start):
    idx = pd.date_range(start, periods=len(rows), freq="min")
    return pd.DataFrame(rows, columns=["open", "high", "low", "close"], index=idx).assign(volume=1.0)


def _two_days(day1_rows, day2_rows):
    return pd.concat([_frame(day1_rows, "2024-01-02 09:30"), _frame(day2_rows, "2024-01-03 09:30")])


def _stop_scenario_store():
    day1 = [BREAKOUT, STOP_AND_BREAKOUT, STOP_AND_BREAKOUT, BREAKOUT]
    return BarStore({"AAA": _two_days(day1, [BREAKOUT])})


def _random_walk_frame(seed, start="2024-01-02", days=3, base=100.0):
    idx = pd.date_range(start, periods=days * 1440, freq="min")
    rng = np.random.default_rng(seed)
    close = base * np.exp(np.cumsum(rng.normal(0.0, 0.002, len(idx))))
    open_ = np.concatenate([[base], close[:-1]])
    spread = np.abs(rng.normal(0.0, 0.001, len(idx))) * close
    return pd.DataFrame(
        {
            "open": open_,
            "high": np.maximum(open_, close) + spread,
            "low": np.minimum(open_, close) - spread,
            "close": close,
            "volume": 1.0,
        },
        index=idx,
    )


FAST_STRATEGY = StrategyParams(
    ema_fast=5, ema_slow=20, atr_period=10, breakout_long_atr=0.5, breakout_short_atr=0.5
)


def _real_run(apply_breakers=True, costs=None):
    symbols = ["AAA", "BBB", "CCC"]
    store = BarStore({s: _random_walk_frame(seed) for seed, s in enumerate(symbols, start=11)})
    engine = BacktestEngine(
        strategy=FAST_STRATEGY,
        costs=costs or CostParams(min_atr_daily_pct=0.001),
        initial_capital=100000.0,
        clusters={"AAA": "majors", "BBB": "majors", "CCC": "alts"},
        apply_breakers=apply_breakers,
    )
    return engine.run(symbols, "2024-01-02", "2024-01-04", store)


def test_zero_capital_rejected():
    with pytest.raises(ValueError):
        BacktestEngine(initial_capital=0.0)


def test_third_entry_suppressed_and_reenabled_next_day():
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    result = engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store())

    reasons = [t.exit_reason for t in result.trades]
    assert reasons == ["sl", "sl", "end_of_period"]
    assert not result.trades[0].breaker_triggered
    assert result.trades[1].breaker_triggered
    assert result.trades[1].breaker_type == "asset"
    # next entry only on day two, after the daily reset
    assert result.trades[2].entry_time == pd.Timestamp("2024-01-03 09:30")
    assert result.trades[2].exit_time == pd.Timestamp("2024-01-03 09:30")
    assert result.trades[2].net_pnl == pytest.approx(0.0)
    assert result.days_processed == 2
    assert not result.halted


def test_stop_losses_sized_by_risk_budget():
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    result = engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store())
    first, second = result.trades[:2]
    # 20 bps of equity lost per 1 ATR stop
    assert first.net_pnl == pytest.approx(-200.0)
    assert second.net_pnl == pytest.approx(-0.002 * 99800.0)
    assert result.final_equity == pytest.approx(100000.0 - 200.0 - 199.6)


def test_without_breakers_entries_are_not_gated():
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS, apply_breakers=False)
    result = engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store())
    assert [t.exit_reason for t in result.trades] == ["sl", "sl", "end_of_period"]
    # re-entered on the bar of the second stop
    assert result.trades[2].entry_time == pd.Timestamp("2024-01-02 09:32")
    assert not any(t.breaker_triggered for t in result.trades)
    assert result.breaker_state.peak_equity == pytest.approx(100000.0)


def test_campaign_drawdown_halts_run():
    risk = RiskParams(risk_per_trade_bps=600, global_stop_daily_pct=-0.5, max_stops_per_asset_day=5)
    engine = _FixedIndicatorEngine(risk=risk, costs=ZERO_COSTS)
    result = engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store())

    assert result.halted
    assert result.days_processed == 1
    assert [t.exit_reason for t in result.trades] == ["sl", "sl"]
    assert result.breaker_state.campaign_halted
    assert result.final_equity == pytest.approx(100000.0 * 0.94 * 0.94)


def test_campaign_drawdown_halts_run_without_breakers():
    risk = RiskParams(risk_per_trade_bps=600, global_stop_daily_pct=-0.5, max_stops_per_asset_day=5)
    engine = _FixedIndicatorEngine(risk=risk, costs=ZERO_COSTS, apply_breakers=False)
    result = engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store())

    assert result.halted
    assert result.days_processed == 1
    # no re-entry on the bar that breached the drawdown stop
    assert [t.exit_reason for t in result.trades] == ["sl", "sl"]
    assert not any(t.breaker_triggered for t in result.trades)
    assert result.final_equity == pytest.approx(100000.0 * 0.94 * 0.94)


def test_cluster_cap_blocks_second_symbol():
    store = BarStore({
        "AAA": _frame([BREAKOUT], "2024-01-02 09:30"),
        "BBB": _frame([BREAKOUT], "2024-01-02 09:30"),
    })
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS, clusters={"AAA": "c1", "BBB": "c1"})
    result = engine.run(["AAA", "BBB"], "2024-01-02", "2024-01-02", store)
    assert [t.symbol for t in result.trades] == ["AAA"]
    assert result.trades[0].cluster == "c1"


def test_no_trades_raises():
    store = BarStore({"AAA": _frame([FLAT] * 10, "2024-01-02 09:30")})
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    with pytest.raises(NoTradesError):
        engine.run(["AAA"], "2024-01-02", "2024-01-02", store)


def test_progress_is_monotone_and_completes():
    progress = []
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store(), on_progress=progress.append)
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert all(0.0 <= p <= 100.0 for p in progress)


def test_cancelled_run_raises():
    cancel = threading.Event()
    cancel.set()
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    with pytest.raises(RunCancelled):
        engine.run(["AAA"], "2024-01-02", "2024-01-03", _stop_scenario_store(), cancel_event=cancel)


def test_missing_symbol_is_skipped():
    engine = _FixedIndicatorEngine(costs=ZERO_COSTS)
    result = engine.run(["AAA", "MISSING"], "2024-01-02", "2024-01-03", _stop_scenario_store())
    assert {t.symbol for t in result.trades} == {"AAA"}


class TestRandomWalkRun:
    """Invariants on a realistic multi-symbol, multi-cluster run."""

    @pytest.fixture(scope="class")
    def result(self):
        return _real_run(apply_breakers=False)

    def test_produces_trades_on_every_symbol(self, result):
        assert {t.symbol for t in result.trades} == {"AAA", "BBB", "CCC"}

    def test_equity_identity(self, result):
        assert result.final_equity == pytest.approx(
            result.initial_capital + sum(t.net_pnl for t in result.trades), abs=1e-6
        )
        assert result.total_pnl == pytest.approx(
            sum(t.gross_pnl - t.fees - t.slippage for t in result.trades), abs=1e-6
        )
        assert result.equity_curve.iloc[-1] == pytest.approx(result.final_equity)

    def test_one_position_per_symbol(self, result):
        positions = {}
        for trade in result.trades:
            positions.setdefault((trade.symbol, trade.entry_time), []).append(trade)
        for symbol in ("AAA", "BBB", "CCC"):
            spans = sorted(
                (entry, max(t.exit_time for t in legs))
                for (sym, entry), legs in positions.items()
                if sym == symbol
            )
            for (_, prev_exit), (next_entry, _) in zip(spans, spans[1:]):
                assert next_entry >= prev_exit

    def test_partials_never_exceed_position(self, result):
        legs = {}
        for trade in result.trades:
            legs.setdefault((trade.symbol, trade.entry_time), []).append(trade)
        for trades in legs.values():
            partials = [t for t in trades if t.is_partial]
            assert len(partials) <= 1
            assert sum(1 for t in trades if not t.is_partial) == 1
            if partials:
                final = next(t for t in trades if not t.is_partial)
                assert partials[0].quantity == pytest.approx(final.quantity)

    def test_exit_reasons_and_times(self, result):
        valid = {"sl", "trailing_sl", "tp1", "tp2", "end_of_period"}
        for trade in result.trades:
            assert trade.exit_reason in valid
            assert trade.exit_time >= trade.entry_time
            assert (trade.exit_reason == "tp1") == trade.is_partial

    def test_stops_filled_at_trigger_level(self, result):
        half_slip = CostParams().slippage_roundtrip_pct / 2
        stops = [t for t in result.trades if t.exit_reason == "sl"]
        assert stops
        for trade in stops:
            if trade.side == "long":
                level = trade.entry_price - FAST_STRATEGY.sl_atr * trade.atr_at_entry
                assert trade.exit_price == pytest.approx(level * (1 - half_slip))
            else:
                level = trade.entry_price + FAST_STRATEGY.sl_atr * trade.atr_at_entry
                assert trade.exit_price == pytest.approx(level * (1 + half_slip))


def test_zero_fee_run_matches_closed_form():
    costs = CostParams(fee_roundtrip_pct=0.0, slippage_roundtrip_pct=0.001, min_atr_daily_pct=0.001)
    result = _real_run(apply_breakers=True, costs=costs)
    assert result.total_fees == 0.0
    for trade in result.trades:
        assert trade.slippage == pytest.approx(trade.notional * 0.001)
    expected = result.initial_capital + sum(t.gross_pnl - t.notional * 0.001 for t in result.trades)
    assert result.final_equity == pytest.approx(expected, abs=1e-6)
    totals = result.totals()
    assert totals.total_trades == len(result.trades)
    assert totals.winning_trades + totals.losing_trades <= totals.total_trades
