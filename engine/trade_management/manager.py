"""Signal evaluation, position sizing and exit handling for one position."""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple
import logging
import pandas as pd

from config.schema import StrategyParams, RiskParams, CostParams
from engine.broker import BrokerModel
from engine.indicators import IndicatorState
from engine.models import Bar, Position, TradeResult, LONG, SHORT
from engine.trade_management.exit_resolver import ExitResolver, ExitCondition, ExitType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntrySignal:
    """A breakout detected on a bar close."""
    symbol: str
    side: str
    timestamp: pd.Timestamp
    close: float
    atr: float
    ema_fast: float
    ema_slow: float
    strength: float


class TradeManagementManager:
    """Owns the entry rule, sizing and the per-position exit state machine.

    Holds only parameters; positions are passed in and returned, so one
    manager can serve any number of concurrent runs.
    """

    def __init__(self, strategy: StrategyParams, risk: RiskParams, costs: CostParams):
        self.strategy = strategy
        self.risk = risk
        self.costs = costs
        self.broker = BrokerModel(costs)

    def evaluate_entry(self, symbol: str, bar: Bar, indicators: IndicatorState) -> Optional[EntrySignal]:
        """Check the breakout rule on ``bar``.

        Long: close > ema_fast, close - ema_fast > breakout_long_atr * atr and
        ema_fast > ema_slow. Short mirrors it with breakout_short_atr. Both
        thresholds are strict. Returns None while indicators are warming up or
        when atr / close is below the minimum volatility filter.
        """
        ema_fast, ema_slow, atr = indicators.ema_fast, indicators.ema_slow, indicators.atr
        if not indicators.is_ready or bar.close <= 0:
            return None
        if atr / bar.close < self.costs.min_atr_daily_pct:
            return None

        diff = bar.close - ema_fast
        long_threshold = self.strategy.breakout_long_atr * atr
        short_threshold = self.strategy.breakout_short_atr * atr

        if bar.close > ema_fast and diff > long_threshold and ema_fast > ema_slow:
            side, strength = LONG, diff / long_threshold
        elif bar.close < ema_fast and abs(diff) > short_threshold and ema_fast < ema_slow:
            side, strength = SHORT, abs(diff) / short_threshold
        else:
            return None

        return EntrySignal(
            symbol=symbol,
            side=side,
            timestamp=bar.timestamp,
            close=bar.close,
            atr=atr,
            ema_fast=ema_fast,
            ema_slow=ema_slow,
            strength=strength,
        )

    def open_position(self, signal: EntrySignal, equity: float, cluster: Optional[str] = None) -> Optional[Position]:
        """Size and open a position for ``signal``.

        notional = (risk_per_trade_bps / 10000 * equity) / (sl_pct + avg_fee + avg_slippage)
        with sl_pct = sl_atr * atr / entry_price.
        """
        if equity <= 0:
            return None
        entry_price = self.broker.apply_slippage(signal.close, signal.side, is_entry=True)
        stop_distance = self.strategy.sl_atr * signal.atr
        sl_pct = stop_distance / entry_price
        risk_amount = self.risk.risk_per_trade_bps / 10000 * equity
        notional = risk_amount / (sl_pct + self.broker.expected_cost_pct())
        quantity = notional / entry_price

        sign = 1 if signal.side == LONG else -1
        return Position(
            symbol=signal.symbol,
            side=signal.side,
            entry_price=entry_price,
            entry_time=signal.timestamp,
            quantity=quantity,
            notional=notional,
            stop_loss=entry_price - sign * stop_distance,
            take_profit_1=entry_price + sign * self.strategy.tp1_atr * signal.atr,
            take_profit_2=entry_price + sign * self.strategy.tp2_atr * signal.atr,
            atr_at_entry=signal.atr,
            ema_fast_at_entry=signal.ema_fast,
            ema_slow_at_entry=signal.ema_slow,
            signal_strength=signal.strength,
            cluster=cluster,
        )

    def manage(self, position: Position, bar: Bar) -> Tuple[Optional[Position], List[TradeResult]]:
        """Run the exit state machine for one bar.

        Returns:
            (position still open or None, ledger entries produced on this bar)
        """
        condition = ExitResolver.resolve(position, bar)
        trades: List[TradeResult] = []

        if condition is not None and condition.is_partial:
            closed, remaining = self.split(position, condition.exit_fraction)
            trades.append(self.close(closed, condition, bar.timestamp))
            position = ExitResolver.arm_trailing(remaining, bar)
        elif condition is not None:
            trades.append(self.close(position, condition, bar.timestamp))
            return None, trades

        position = ExitResolver.ratchet_trailing(position, bar, self.strategy.trailing_atr)
        return position, trades

    @staticmethod
    def split(position: Position, fraction: float) -> Tuple[Position, Position]:
        """Split ``position`` into (closed part, remaining part) by quantity fraction."""
        closed_qty = position.quantity * fraction
        closed_notional = position.notional * fraction
        closed = replace(position, quantity=closed_qty, notional=closed_notional)
        remaining = replace(
            position,
            quantity=position.quantity - closed_qty,
            notional=position.notional - closed_notional,
        )
        return closed, remaining

    def close(
        self,
        position: Position,
        condition: ExitCondition,
        exit_time: pd.Timestamp
    ) -> TradeResult:
        """Build the ledger entry for closing ``position`` at ``condition``."""
        exit_price = self.broker.apply_slippage(condition.exit_price, position.side, is_entry=False)
        gross, fees, slippage, net = self.broker.realized_pnl(
            position.side, position.entry_price, exit_price, position.quantity, position.notional
        )
        logger.debug(
            f"{position.symbol} {position.side} {condition.exit_type.value} "
            f"@ {exit_price:.6f} qty={position.quantity:.6f} net={net:.2f}"
        )
        return TradeResult(
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            entry_time=position.entry_time,
            exit_time=exit_time,
            quantity=position.quantity,
            notional=position.notional,
            gross_pnl=gross,
            fees=fees,
            slippage=slippage,
            net_pnl=net,
            exit_reason=condition.exit_type.value,
            is_partial=condition.is_partial,
            cluster=position.cluster,
            atr_at_entry=position.atr_at_entry,
            ema_fast_at_entry=position.ema_fast_at_entry,
            ema_slow_at_entry=position.ema_slow_at_entry,
            signal_strength=position.signal_strength,
        )

    def close_at_market(self, position: Position, price: float, exit_time: pd.Timestamp) -> TradeResult:
        """Force-close the remaining position at ``price`` (end of period)."""
        return self.close(position, ExitCondition(ExitType.END_OF_PERIOD, price), exit_time)
