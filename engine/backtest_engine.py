"""Day-by-day, bar-by-bar backtest of the ATR breakout strategy across symbols.

Key architectural principles:
1. All mutable run data lives in an explicit RunState; the engine holds only
   parameters, so several runs can execute concurrently.
2. Per bar the order is fixed: indicators, then exits, then entries.
3. Circuit breakers gate entries only. Open positions are always managed.
   The campaign drawdown halt ends the run even when breakers are off.
4. Accounting invariant: equity == initial_capital + sum(net_pnl of ledger).
5. No I/O inside the loop. Progress goes to a callback; cancellation is
   checked between days.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple
import logging
import pandas as pd

from config.schema import StrategyParams, RiskParams, CostParams
from engine.circuit_breaker import (
    BreakerState,
    initial_state,
    reset_daily,
    can_enter,
    attribution,
    record_trade,
    update_campaign,
    cluster_has_capacity,
)
from engine.indicators import IndicatorEngine
from engine.models import Bar, Position, TradeResult, RunTotals
from engine.trade_management import TradeManagementManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class NoTradesError(ValueError):
    """A run finished without producing a single trade."""


class RunCancelled(RuntimeError):
    """A run was cancelled through its cancel event."""


class BarSource(Protocol):
    def get_bars(self, symbol: str, day: pd.Timestamp) -> Sequence[Bar]:
        ...


class CancelEvent(Protocol):
    def is_set(self) -> bool:
        ...


@dataclass
class RunState:
    """Everything that changes while a run executes."""
    initial_capital: float
    equity: float
    breakers: BreakerState
    indicators: IndicatorEngine
    positions: Dict[str, Position] = field(default_factory=dict)
    ledger: List[TradeResult] = field(default_factory=list)
    last_bar: Dict[str, Bar] = field(default_factory=dict)
    equity_curve: List[Tuple[pd.Timestamp, float]] = field(default_factory=list)
    days_processed: int = 0
    halted: bool = False

    def open_notional(self, cluster: str) -> float:
        return sum(p.notional for p in self.positions.values() if p.cluster == cluster)


@dataclass
class BacktestResult:
    """Backtest results container.

    Attributes:
        initial_capital: Starting capital
        final_equity: initial_capital + sum of ledger net PnL
        trades: Ledger in booking order (partials included)
        equity_curve: Equity after each booked trade, indexed by exit time
        halted: True if the campaign drawdown stop ended the run early
        breaker_state: Breaker counters at the end of the run
        days_processed: Calendar days replayed
    """
    initial_capital: float
    final_equity: float
    trades: List[TradeResult]
    equity_curve: pd.Series
    halted: bool = False
    breaker_state: Optional[BreakerState] = None
    days_processed: int = 0

    @property
    def total_pnl(self) -> float:
        return self.final_equity - self.initial_capital

    @property
    def total_trades(self) -> int:
        return len(self.trades)

    @property
    def winning_trades(self) -> int:
        return sum(1 for t in self.trades if t.net_pnl > 0)

    @property
    def losing_trades(self) -> int:
        return sum(1 for t in self.trades if t.net_pnl < 0)

    @property
    def total_fees(self) -> float:
        return sum(t.fees for t in self.trades)

    @property
    def total_slippage(self) -> float:
        return sum(t.slippage for t in self.trades)

    def totals(self) -> RunTotals:
        return RunTotals(
            total_trades=self.total_trades,
            winning_trades=self.winning_trades,
            losing_trades=self.losing_trades,
            final_equity=self.final_equity,
            total_pnl=self.total_pnl,
            total_pnl_percentage=self.total_pnl / self.initial_capital * 100,
            total_fees=self.total_fees,
            total_slippage=self.total_slippage,
        )


class BacktestEngine:
    """Replays bars for a symbol universe and produces the trade ledger."""

    def __init__(
        self,
        strategy: Optional[StrategyParams] = None,
        risk: Optional[RiskParams] = None,
        costs: Optional[CostParams] = None,
        initial_capital: float = 100000.0,
        clusters: Optional[Dict[str, str]] = None,
        apply_breakers: bool = True
    ):
        """
        Initialize backtest engine.

        Args:
            strategy: Indicator and exit parameters (defaults if None)
            risk: Sizing and breaker limits (defaults if None)
            costs: Fee/slippage assumptions (defaults if None)
            initial_capital: Starting capital, must be positive
            clusters: Optional symbol -> cluster id map
            apply_breakers: If False, daily breakers are tracked but never gate entries
                (the campaign drawdown halt still ends the run)
        """
        if initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {initial_capital}")
        self.strategy = strategy or StrategyParams()
        self.risk = risk or RiskParams()
        self.costs = costs or CostParams()
        self.initial_capital = float(initial_capital)
        self.clusters = {k.upper(): v for k, v in (clusters or {}).items()}
        self.apply_breakers = apply_breakers
        self.trade_manager = TradeManagementManager(self.strategy, self.risk, self.costs)

    def new_state(self) -> RunState:
        return RunState(
            initial_capital=self.initial_capital,
            equity=self.initial_capital,
            breakers=initial_state(self.initial_capital),
            indicators=IndicatorEngine(self.strategy),
        )

    def run(
        self,
        symbols: Sequence[str],
        start_date,
        end_date,
        bars: BarSource,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[CancelEvent] = None
    ) -> BacktestResult:
        """
        Run the backtest over every calendar day in [start_date, end_date].

        Args:
            symbols: Symbol universe, processed in this order each day
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            bars: Source of per-symbol, per-day bars
            on_progress: Called with the percentage of days processed
            cancel_event: Checked before each day; raises RunCancelled when set

        Returns:
            BacktestResult

        Raises:
            NoTradesError: If the run produced no trades
            RunCancelled: If cancel_event was set
        """
        days = pd.date_range(pd.Timestamp(start_date).normalize(), pd.Timestamp(end_date).normalize(), freq='D')
        if len(days) == 0:
            raise ValueError(f"Empty date range: {start_date} to {end_date}")
        symbols = [s.upper() for s in symbols]
        state = self.new_state()
        total_days = len(days)
        logger.info(
            f"Backtest start: {len(symbols)} symbols, {days[0].date()} to {days[-1].date()}, "
            f"capital={self.initial_capital:.2f}, breakers={'on' if self.apply_breakers else 'off'}"
        )

        for day in days:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Backtest cancelled before {day.date()}")
                raise RunCancelled(f"Backtest cancelled before {day.date()}")

            state.breakers = reset_daily(state.breakers, day)
            if state.breakers.campaign_halted:
                state.halted = True
                logger.warning(f"Campaign halted (dd={state.breakers.campaign_dd:.2%}); stopping at {day.date()}")
                break

            for symbol in symbols:
                day_bars = bars.get_bars(symbol, day)
                if not day_bars:
                    logger.debug(f"No bars for {symbol} on {day.date()}")
                    continue
                for bar in day_bars:
                    self.process_bar(state, symbol, bar)

            state.days_processed += 1
            if on_progress is not None:
                on_progress(min(100.0, state.days_processed / total_days * 100))

        self.close_all(state)
        if on_progress is not None:
            on_progress(100.0)

        if not state.ledger:
            raise NoTradesError(
                f"No trades generated for {symbols} between {days[0].date()} and {days[-1].date()}"
            )

        logger.info(
            f"Backtest complete: {len(state.ledger)} trades, final equity {state.equity:.2f}"
            + (" (campaign halted)" if state.halted else "")
        )
        return self._create_result(state)

    def process_bar(self, state: RunState, symbol: str, bar: Bar) -> None:
        """Indicators, then exits, then entries for one bar of one symbol."""
        indicators = state.indicators.update(symbol, bar)
        state.last_bar[symbol] = bar

        position = state.positions.get(symbol)
        if position is not None:
            remaining, trades = self.trade_manager.manage(position, bar)
            for trade in trades:
                self._book_trade(state, trade)
            if remaining is None:
                del state.positions[symbol]
            else:
                state.positions[symbol] = remaining

        if symbol in state.positions or state.breakers.campaign_halted:
            return
        signal = self.trade_manager.evaluate_entry(symbol, bar, indicators)
        if signal is None:
            return

        cluster = self.clusters.get(symbol)
        if self.apply_breakers:
            allowed, scope = can_enter(state.breakers, symbol, cluster)
            if not allowed:
                logger.debug(f"{symbol} entry blocked by {scope} breaker at {bar.timestamp}")
                return
            if cluster is not None and not cluster_has_capacity(state.open_notional(cluster), state.equity, self.risk):
                logger.debug(f"{symbol} entry blocked: cluster {cluster} at notional cap")
                return

        position = self.trade_manager.open_position(signal, state.equity, cluster)
        if position is not None:
            state.positions[symbol] = position
            logger.debug(
                f"{symbol} {position.side} entry @ {position.entry_price:.6f} "
                f"notional={position.notional:.2f} strength={position.signal_strength:.2f}"
            )

    def close_all(self, state: RunState) -> None:
        """Force-close open positions at their symbol's last close (end_of_period)."""
        for symbol in list(state.positions):
            position = state.positions.pop(symbol)
            last = state.last_bar[symbol]
            self._book_trade(state, self.trade_manager.close_at_market(position, last.close, last.timestamp))

    def _book_trade(self, state: RunState, trade: TradeResult) -> None:
        """Update breakers, attribute, append to the ledger and move equity."""
        state.breakers = record_trade(state.breakers, trade, state.equity, self.risk)
        if self.apply_breakers:
            triggered, breaker_type = attribution(state.breakers, trade.symbol, trade.cluster)
            if triggered:
                trade = replace(trade, breaker_triggered=True, breaker_type=breaker_type)
        state.ledger.append(trade)
        state.equity += trade.net_pnl
        state.breakers = update_campaign(state.breakers, state.equity, self.risk)
        state.equity_curve.append((trade.exit_time, state.equity))

    def _create_result(self, state: RunState) -> BacktestResult:
        if state.equity_curve:
            times, values = zip(*state.equity_curve)
            equity_curve = pd.Series(values, index=pd.DatetimeIndex(times), dtype=float)
        else:
            equity_curve = pd.Series([], dtype=float)
        return BacktestResult(
            initial_capital=state.initial_capital,
            final_equity=state.equity,
            trades=list(state.ledger),
            equity_curve=equity_curve,
            halted=state.halted,
            breaker_state=state.breakers,
            days_processed=state.days_processed,
        )
