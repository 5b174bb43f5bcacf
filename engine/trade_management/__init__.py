"""Trade management module: entry rule, sizing and exit state machine."""

from engine.trade_management.manager import TradeManagementManager, EntrySignal
from engine.trade_management.exit_resolver import ExitResolver, ExitCondition, ExitType

__all__ = ['TradeManagementManager', 'EntrySignal', 'ExitResolver', 'ExitCondition', 'ExitType']
