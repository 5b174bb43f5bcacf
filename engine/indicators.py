"""Rolling EMA/ATR indicators computed bar by bar per symbol.

Each symbol owns a bounded window of closes and true ranges
(``max(ema_slow, atr_period) + 1`` elements, oldest evicted). Indicator
values are recomputed from that window on every bar:

- EMA: seeded with the simple average of the first ``period`` closes of the
  window, then smoothed with ``alpha = 2 / (period + 1)``.
- ATR: simple mean (not Wilder smoothing) of the last ``atr_period`` true
  ranges. A symbol's first bar only seeds the previous close; its true
  range is not recorded.

Until a buffer holds enough values the indicator is 0.0, which the signal
layer treats as "no signal".
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, Optional, Sequence
import pandas as pd

from config.schema import StrategyParams
from engine.models import Bar


def true_range(high: float, low: float, prev_close: Optional[float]) -> float:
    """max(high - low, |high - prev_close|, |low - prev_close|)."""
    if prev_close is None:
        return high - low
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def compute_ema(values: Sequence[float], period: int) -> float:
    """EMA of the last value in ``values`` (0.0 if fewer than ``period`` values)."""
    if len(values) < period:
        return 0.0
    values = list(values)
    alpha = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    for value in values[period:]:
        ema = alpha * value + (1 - alpha) * ema
    return ema


def compute_sma(values: Sequence[float], period: int) -> float:
    """Mean of the last ``period`` values (0.0 if not enough values)."""
    if len(values) < period:
        return 0.0
    window = list(values)[-period:]
    return sum(window) / period


@dataclass
class IndicatorState:
    """Per-symbol indicator window and last computed values."""
    maxlen: int
    closes: Deque[float] = field(default_factory=deque)
    true_ranges: Deque[float] = field(default_factory=deque)
    prev_close: Optional[float] = None
    last_timestamp: Optional[pd.Timestamp] = None
    ema_fast: float = 0.0
    ema_slow: float = 0.0
    atr: float = 0.0

    def __post_init__(self):
        self.closes = deque(self.closes, maxlen=self.maxlen)
        self.true_ranges = deque(self.true_ranges, maxlen=self.maxlen)

    @property
    def is_ready(self) -> bool:
        return self.ema_fast > 0 and self.ema_slow > 0 and self.atr > 0


class IndicatorEngine:
    """Maintains one IndicatorState per symbol."""

    def __init__(self, params: StrategyParams):
        self.params = params
        self.states: Dict[str, IndicatorState] = {}

    def state_for(self, symbol: str) -> IndicatorState:
        state = self.states.get(symbol)
        if state is None:
            state = IndicatorState(maxlen=self.params.warmup_bars)
            self.states[symbol] = state
        return state

    def update(self, symbol: str, bar: Bar) -> IndicatorState:
        """Push one bar and recompute the symbol's indicators.

        Raises:
            ValueError: If the bar is older than the previous bar for this symbol.
        """
        state = self.state_for(symbol)
        if state.last_timestamp is not None and bar.timestamp < state.last_timestamp:
            raise ValueError(
                f"Out-of-order bar for {symbol}: {bar.timestamp} < {state.last_timestamp}"
            )

        if state.prev_close is not None:
            state.true_ranges.append(true_range(bar.high, bar.low, state.prev_close))
        state.closes.append(bar.close)
        state.prev_close = bar.close
        state.last_timestamp = bar.timestamp

        state.ema_fast = compute_ema(state.closes, self.params.ema_fast)
        state.ema_slow = compute_ema(state.closes, self.params.ema_slow)
        state.atr = compute_sma(state.true_ranges, self.params.atr_period)
        return state


def indicator_frame(df: pd.DataFrame, params: StrategyParams, symbol: str = "SYMBOL") -> pd.DataFrame:
    """Replay an OHLC frame through the engine and return ema_fast/ema_slow/atr columns.

    Useful for inspecting what the backtest saw on each bar.
    """
    engine = IndicatorEngine(params)
    rows = []
    for bar in bars_from_frame(df):
        state = engine.update(symbol, bar)
        rows.append((state.ema_fast, state.ema_slow, state.atr))
    return pd.DataFrame(rows, index=df.index, columns=['ema_fast', 'ema_slow', 'atr'])


def bars_from_frame(df: pd.DataFrame) -> Iterable[Bar]:
    """Yield Bar records from a timestamp-indexed OHLCV DataFrame."""
    has_volume = 'volume' in df.columns
    for row in df.itertuples():
        yield Bar(
            timestamp=pd.Timestamp(row.Index),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume) if has_volume else 0.0,
        )
