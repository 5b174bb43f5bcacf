"""Tests for the breakout entry rule, sizing and the exit state machine."""

import pandas as pd
import pytest

from config.schema import StrategyParams, RiskParams, CostParams
from engine.indicators import IndicatorState
from engine.models import Bar, LONG, SHORT
from engine.trade_management import TradeManagementManager, EntrySignal, ExitResolver


TS = pd.Timestamp("2024-01-02 09:30")

ZERO_COSTS = CostParams(fee_roundtrip_pct=0.0, slippage_roundtrip_pct=0.0, min_atr_daily_pct=0.0)


def _bar(high, low, close=None, minutes=1):
    close = close if close is not None else (high + low) / 2
    return Bar(TS + pd.Timedelta(minutes=minutes), close, high, low, close)


def _indicators(ema_fast=100.0, ema_slow=99.0, atr=1.0):
    return IndicatorState(maxlen=5, ema_fast=ema_fast, ema_slow=ema_slow, atr=atr)


def _manager(costs=ZERO_COSTS, **strategy):
    return TradeManagementManager(StrategyParams(**strategy), RiskParams(), costs)


def _open(manager, side=LONG, close=100.0, atr=1.0, equity=100000.0):
    signal = EntrySignal("AAA", side, TS, close, atr, 100.0, 99.0, 1.5)
    return manager.open_position(signal, equity)


class TestEntryRule:

    def test_long_threshold_is_strict(self):
        manager = _manager()
        assert manager.evaluate_entry("AAA", Bar(TS, 102.0, 102.0, 102.0, 102.0), _indicators()) is None
        signal = manager.evaluate_entry("AAA", Bar(TS, 102.5, 102.5, 102.5, 102.5), _indicators())
        assert signal is not None
        assert signal.side == LONG
        assert signal.strength == pytest.approx(1.25)

    def test_short_threshold_is_strict(self):
        manager = _manager()
        indicators = _indicators(ema_fast=100.0, ema_slow=101.0)
        assert manager.evaluate_entry("AAA", Bar(TS, 98.5, 98.5, 98.5, 98.5), indicators) is None
        signal = manager.evaluate_entry("AAA", Bar(TS, 98.0, 98.0, 98.0, 98.0), indicators)
        assert signal.side == SHORT

    def test_long_requires_fast_above_slow(self):
        manager = _manager()
        indicators = _indicators(ema_fast=100.0, ema_slow=101.0)
        assert manager.evaluate_entry("AAA", Bar(TS, 105.0, 105.0, 105.0, 105.0), indicators) is None

    def test_no_signal_while_warming_up(self):
        manager = _manager()
        warming = IndicatorState(maxlen=5)
        assert manager.evaluate_entry("AAA", Bar(TS, 500.0, 500.0, 500.0, 500.0), warming) is None

    def test_min_atr_filter(self):
        manager = _manager(costs=CostParams(min_atr_daily_pct=0.02))
        assert manager.evaluate_entry("AAA", Bar(TS, 102.5, 102.5, 102.5, 102.5), _indicators()) is None


class TestSizing:

    def test_zero_cost_sizing(self):
        position = _open(_manager())
        # 20 bps of 100k risked over a 1% stop
        assert position.notional == pytest.approx(20000.0)
        assert position.quantity == pytest.approx(200.0)
        assert position.stop_loss == pytest.approx(99.0)
        assert position.take_profit_1 == pytest.approx(101.2)
        assert position.take_profit_2 == pytest.approx(102.5)

    def test_sizing_includes_expected_costs(self):
        costs = CostParams()
        position = _open(_manager(costs=costs))
        entry = 100.0 * (1 + costs.slippage_roundtrip_pct / 2)
        expected_cost = costs.fee_roundtrip_pct / 2 + costs.slippage_roundtrip_pct / 2
        assert position.entry_price == pytest.approx(entry)
        assert position.notional == pytest.approx(200.0 / (1.0 / entry + expected_cost))
        assert position.quantity * position.entry_price == pytest.approx(position.notional)

    def test_short_levels_mirror(self):
        position = _open(_manager(), side=SHORT)
        assert position.stop_loss == pytest.approx(101.0)
        assert position.take_profit_1 == pytest.approx(98.8)
        assert position.take_profit_2 == pytest.approx(97.5)

    def test_no_position_without_equity(self):
        assert _open(_manager(), equity=0.0) is None


class TestExitStateMachine:

    def test_stop_loss_closes_everything(self):
        manager = _manager()
        position = _open(manager)
        remaining, trades = manager.manage(position, _bar(high=100.5, low=98.5))
        assert remaining is None
        assert len(trades) == 1
        assert trades[0].exit_reason == "sl"
        assert trades[0].exit_price == pytest.approx(99.0)
        assert trades[0].net_pnl == pytest.approx(-200.0)
        assert not trades[0].is_partial

    def test_tp1_closes_half_and_arms_trailing(self):
        manager = _manager()
        position = _open(manager)
        remaining, trades = manager.manage(position, _bar(high=101.5, low=100.5))

        assert len(trades) == 1
        partial = trades[0]
        assert ExitResolver.resolve(position, _bar(high=101.5, low=100.5)).is_partial
        assert partial.exit_reason == "tp1"
        assert partial.is_partial
        assert partial.quantity == pytest.approx(100.0)
        assert partial.exit_price == pytest.approx(101.2)

        assert remaining.tp1_hit
        assert remaining.quantity == pytest.approx(100.0)
        assert remaining.quantity <= position.quantity
        # breakeven + 0.1 ATR, then ratcheted to high - 0.8 ATR on the same bar
        assert remaining.trailing_stop == pytest.approx(100.7)
        # original position untouched
        assert position.quantity == pytest.approx(200.0)
        assert position.trailing_stop is None

    def test_trailing_stop_after_tp1(self):
        manager = _manager()
        position, _ = manager.manage(_open(manager), _bar(high=101.5, low=100.5))
        remaining, trades = manager.manage(position, _bar(high=101.0, low=100.6, minutes=2))
        assert remaining is None
        assert trades[0].exit_reason == "trailing_sl"
        assert trades[0].exit_price == pytest.approx(100.7)
        assert trades[0].gross_pnl == pytest.approx(70.0)

    def test_tp2_after_tp1(self):
        manager = _manager()
        position, _ = manager.manage(_open(manager), _bar(high=101.5, low=100.5))
        remaining, trades = manager.manage(position, _bar(high=102.6, low=101.0, minutes=2))
        assert remaining is None
        assert trades[0].exit_reason == "tp2"
        assert trades[0].exit_price == pytest.approx(102.5)

    def test_trailing_preferred_over_stop_loss(self):
        manager = _manager()
        position, _ = manager.manage(_open(manager), _bar(high=101.5, low=100.5))
        _, trades = manager.manage(position, _bar(high=101.0, low=98.5, minutes=2))
        assert trades[0].exit_reason == "trailing_sl"

    def test_trailing_only_tightens(self):
        manager = _manager()
        position, _ = manager.manage(_open(manager), _bar(high=101.5, low=100.5))

        position, trades = manager.manage(position, _bar(high=101.0, low=100.8, minutes=2))
        assert trades == []
        assert position.trailing_stop == pytest.approx(100.7)

        position, _ = manager.manage(position, _bar(high=102.0, low=101.5, minutes=3))
        assert position.trailing_stop == pytest.approx(101.2)

        position, trades = manager.manage(position, _bar(high=101.6, low=101.3, minutes=4))
        assert trades == []
        assert position.trailing_stop == pytest.approx(101.2)

    def test_short_tp1_and_trailing(self):
        manager = _manager()
        position = _open(manager, side=SHORT)
        remaining, trades = manager.manage(position, _bar(high=99.5, low=98.5))
        assert trades[0].exit_reason == "tp1"
        assert trades[0].gross_pnl == pytest.approx(1.2 * 100.0)
        assert remaining.trailing_stop == pytest.approx(99.3)

    def test_quiet_bar_keeps_position(self):
        manager = _manager()
        position = _open(manager)
        remaining, trades = manager.manage(position, _bar(high=100.5, low=99.5))
        assert trades == []
        assert remaining == position

    def test_resolver_ignores_tp2_before_tp1(self):
        position = _open(_manager())
        condition = ExitResolver.resolve(position, _bar(high=103.0, low=100.5))
        assert condition.exit_type.value == "tp1"


def test_costs_reduce_net_pnl():
    costs = CostParams(fee_roundtrip_pct=0.002, slippage_roundtrip_pct=0.001, min_atr_daily_pct=0.0)
    manager = _manager(costs=costs)
    position = _open(manager)
    _, trades = manager.manage(position, _bar(high=100.5, low=98.0))
    trade = trades[0]
    assert trade.fees == pytest.approx(position.notional * 0.002)
    assert trade.slippage == pytest.approx(position.notional * 0.001)
    assert trade.net_pnl == pytest.approx(trade.gross_pnl - trade.fees - trade.slippage)
    # exit filled half the round-trip slippage below the stop
    assert trade.exit_price == pytest.approx(position.stop_loss * (1 - 0.0005))
