"""Exit condition resolution for an open position on one bar."""

from dataclasses import dataclass, replace
from typing import Optional
from enum import Enum

from engine.models import Bar, Position

BREAKEVEN_OFFSET_ATR = 0.1
TP1_EXIT_FRACTION = 0.5


class ExitType(Enum):
    """Types of exit conditions (values are the ledger exit reasons)."""
    STOP_LOSS = "sl"
    TRAILING_STOP = "trailing_sl"
    TAKE_PROFIT_1 = "tp1"
    TAKE_PROFIT_2 = "tp2"
    END_OF_PERIOD = "end_of_period"


@dataclass(frozen=True)
class ExitCondition:
    """A triggered exit.

    Attributes:
        exit_type: Which level was hit
        exit_price: Theoretical level price (before slippage)
        exit_fraction: Fraction of the remaining position to close
    """
    exit_type: ExitType
    exit_price: float
    exit_fraction: float = 1.0

    @property
    def is_partial(self) -> bool:
        return self.exit_fraction < 1.0


class ExitResolver:
    """Resolves which exit (if any) a bar triggers.

    Priority on a single bar:
    1. Trailing stop, once armed (it sits above the hard stop for longs)
    2. Hard stop-loss
    3. TP1 partial, only if not yet taken
    4. TP2 full, only after TP1
    Stops are honored at the exact trigger level.
    """

    @staticmethod
    def resolve(position: Position, bar: Bar) -> Optional[ExitCondition]:
        if position.is_long:
            if position.trailing_stop is not None and bar.low <= position.trailing_stop:
                return ExitCondition(ExitType.TRAILING_STOP, position.trailing_stop)
            if bar.low <= position.stop_loss:
                return ExitCondition(ExitType.STOP_LOSS, position.stop_loss)
            if not position.tp1_hit and bar.high >= position.take_profit_1:
                return ExitCondition(ExitType.TAKE_PROFIT_1, position.take_profit_1, TP1_EXIT_FRACTION)
            if position.tp1_hit and bar.high >= position.take_profit_2:
                return ExitCondition(ExitType.TAKE_PROFIT_2, position.take_profit_2)
            return None

        if position.trailing_stop is not None and bar.high >= position.trailing_stop:
            return ExitCondition(ExitType.TRAILING_STOP, position.trailing_stop)
        if bar.high >= position.stop_loss:
            return ExitCondition(ExitType.STOP_LOSS, position.stop_loss)
        if not position.tp1_hit and bar.low <= position.take_profit_1:
            return ExitCondition(ExitType.TAKE_PROFIT_1, position.take_profit_1, TP1_EXIT_FRACTION)
        if position.tp1_hit and bar.low <= position.take_profit_2:
            return ExitCondition(ExitType.TAKE_PROFIT_2, position.take_profit_2)
        return None

    @staticmethod
    def arm_trailing(position: Position, bar: Bar) -> Position:
        """Mark TP1 taken and arm the trailing stop just past breakeven."""
        offset = BREAKEVEN_OFFSET_ATR * position.atr_at_entry
        if position.is_long:
            return replace(position, tp1_hit=True, trailing_stop=position.entry_price + offset, extreme_price=bar.high)
        return replace(position, tp1_hit=True, trailing_stop=position.entry_price - offset, extreme_price=bar.low)

    @staticmethod
    def ratchet_trailing(position: Position, bar: Bar, trailing_atr: float) -> Position:
        """Move the trailing stop toward price; it never loosens."""
        if position.trailing_stop is None:
            return position
        offset = trailing_atr * position.atr_at_entry
        if position.is_long:
            extreme = max(position.extreme_price or bar.high, bar.high)
            trailing = max(position.trailing_stop, extreme - offset)
        else:
            extreme = min(position.extreme_price or bar.low, bar.low)
            trailing = min(position.trailing_stop, extreme + offset)
        if extreme == position.extreme_price and trailing == position.trailing_stop:
            return position
        return replace(position, trailing_stop=trailing, extreme_price=extreme)
