"""Core data records shared by the engine, metrics and Monte Carlo layers.

Bars, positions and trade results are immutable. A position changes state
(TP1 partial, trailing stop ratchet) by producing a new Position through
``dataclasses.replace``; the ledger only ever receives new TradeResult
records.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any
import pandas as pd


LONG = "long"
SHORT = "short"


@dataclass(frozen=True)
class Bar:
    """One OHLCV bar."""
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class Position:
    """An open position on one symbol.

    Attributes:
        side: 'long' or 'short'
        entry_price: Fill price after entry slippage
        quantity: Units held (shrinks to half after TP1)
        notional: entry_price * quantity at entry, shrinks with quantity
        stop_loss: Hard stop (never moves)
        take_profit_1: Partial exit level
        take_profit_2: Final take-profit level
        trailing_stop: Armed at TP1, ratchets in the favorable direction only
        tp1_hit: Whether the partial exit already happened
        atr_at_entry: ATR frozen at entry, used for trailing offsets
        extreme_price: Best price seen since the trailing stop was armed
        cluster: Cluster id of the symbol (None when unclustered)
    """
    symbol: str
    side: str
    entry_price: float
    entry_time: pd.Timestamp
    quantity: float
    notional: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    atr_at_entry: float
    ema_fast_at_entry: float
    ema_slow_at_entry: float
    signal_strength: float
    trailing_stop: Optional[float] = None
    tp1_hit: bool = False
    extreme_price: Optional[float] = None
    cluster: Optional[str] = None

    @property
    def is_long(self) -> bool:
        return self.side == LONG


@dataclass(frozen=True)
class TradeResult:
    """Immutable ledger entry for one full or partial close."""
    symbol: str
    side: str
    entry_price: float
    exit_price: float
    entry_time: pd.Timestamp
    exit_time: pd.Timestamp
    quantity: float
    notional: float
    gross_pnl: float
    fees: float
    slippage: float
    net_pnl: float
    exit_reason: str
    is_partial: bool = False
    breaker_triggered: bool = False
    breaker_type: Optional[str] = None
    cluster: Optional[str] = None
    atr_at_entry: float = 0.0
    ema_fast_at_entry: float = 0.0
    ema_slow_at_entry: float = 0.0
    signal_strength: float = 0.0

    @property
    def return_on_notional(self) -> float:
        """Net PnL as a fraction of traded notional."""
        return self.net_pnl / self.notional if self.notional > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['entry_time'] = pd.Timestamp(self.entry_time).isoformat()
        data['exit_time'] = pd.Timestamp(self.exit_time).isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TradeResult':
        data = dict(data)
        data['entry_time'] = pd.Timestamp(data['entry_time'])
        data['exit_time'] = pd.Timestamp(data['exit_time'])
        return cls(**data)


@dataclass
class RunTotals:
    """Summary totals reported at the end of a run."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    final_equity: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percentage: float = 0.0
    total_fees: float = 0.0
    total_slippage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
