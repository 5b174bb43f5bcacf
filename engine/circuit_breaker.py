"""Circuit breaker state machine.

Scopes and their triggers:
- asset: daily stop-loss counter reaches ``max_stops_per_asset_day``
- cluster: daily cluster PnL / equity <= ``cluster_stop_daily_pct``
- global: daily PnL / equity <= ``global_stop_daily_pct``
- campaign: drawdown from peak equity <= ``campaign_dd_stop`` (terminal)

Asset, cluster and global scopes pause new entries until the next calendar
day. Campaign halt never resets. Breakers gate entries only; open positions
keep being managed.

BreakerState is immutable. Every transition is a function returning a new
state, so the day boundary (``reset_daily``) can be tested on its own.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Optional, Tuple
import logging
import pandas as pd

from config.schema import RiskParams
from engine.models import TradeResult

logger = logging.getLogger(__name__)

STOP_REASONS = frozenset({"sl", "trailing_sl"})


@dataclass(frozen=True)
class BreakerState:
    """Breaker counters for one run."""
    current_day: Optional[pd.Timestamp] = None
    asset_stops: Dict[str, int] = field(default_factory=dict)
    asset_paused: FrozenSet[str] = frozenset()
    cluster_pnl: Dict[str, float] = field(default_factory=dict)
    cluster_paused: FrozenSet[str] = frozenset()
    global_pnl: float = 0.0
    global_paused: bool = False
    peak_equity: float = 0.0
    campaign_dd: float = 0.0
    campaign_halted: bool = False


def initial_state(initial_capital: float) -> BreakerState:
    return BreakerState(peak_equity=initial_capital)


def reset_daily(state: BreakerState, day: Optional[pd.Timestamp] = None) -> BreakerState:
    """Start a new calendar day.

    Clears asset stop counters, cluster/global daily PnL and every daily
    pause. Campaign peak, drawdown and halt are carried over.
    """
    return replace(
        state,
        current_day=day,
        asset_stops={},
        asset_paused=frozenset(),
        cluster_pnl={},
        cluster_paused=frozenset(),
        global_pnl=0.0,
        global_paused=False,
    )


def can_enter(state: BreakerState, symbol: str, cluster: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """Whether a new entry on ``symbol`` is allowed, and the blocking scope if not."""
    if state.campaign_halted:
        return False, "campaign"
    if state.global_paused:
        return False, "global"
    if cluster is not None and cluster in state.cluster_paused:
        return False, "cluster"
    if symbol in state.asset_paused:
        return False, "asset"
    return True, None


def attribution(state: BreakerState, symbol: str, cluster: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """Breaker active on ``symbol`` after a trade was recorded (global > cluster > asset)."""
    if state.global_paused:
        return True, "global"
    if cluster is not None and cluster in state.cluster_paused:
        return True, "cluster"
    if symbol in state.asset_paused:
        return True, "asset"
    return False, None


def record_trade(
    state: BreakerState,
    trade: TradeResult,
    equity_before: float,
    risk: RiskParams
) -> BreakerState:
    """Fold one realized close into the daily counters.

    Thresholds are evaluated against equity before the trade's PnL is booked.
    """
    asset_stops = dict(state.asset_stops)
    asset_paused = set(state.asset_paused)
    if trade.exit_reason in STOP_REASONS:
        count = asset_stops.get(trade.symbol, 0) + 1
        asset_stops[trade.symbol] = count
        if count >= risk.max_stops_per_asset_day and trade.symbol not in asset_paused:
            asset_paused.add(trade.symbol)
            logger.info(f"Asset breaker: {trade.symbol} paused after {count} stops on {state.current_day}")

    cluster_pnl = dict(state.cluster_pnl)
    cluster_paused = set(state.cluster_paused)
    if trade.cluster is not None:
        cluster_pnl[trade.cluster] = cluster_pnl.get(trade.cluster, 0.0) + trade.net_pnl
        if (
            equity_before > 0
            and cluster_pnl[trade.cluster] / equity_before <= risk.cluster_stop_daily_pct
            and trade.cluster not in cluster_paused
        ):
            cluster_paused.add(trade.cluster)
            logger.info(f"Cluster breaker: {trade.cluster} paused, daily PnL {cluster_pnl[trade.cluster]:.2f}")

    global_pnl = state.global_pnl + trade.net_pnl
    global_paused = state.global_paused
    if not global_paused and equity_before > 0 and global_pnl / equity_before <= risk.global_stop_daily_pct:
        global_paused = True
        logger.info(f"Global breaker: entries paused for the day, daily PnL {global_pnl:.2f}")

    return replace(
        state,
        asset_stops=asset_stops,
        asset_paused=frozenset(asset_paused),
        cluster_pnl=cluster_pnl,
        cluster_paused=frozenset(cluster_paused),
        global_pnl=global_pnl,
        global_paused=global_paused,
    )


def update_campaign(state: BreakerState, equity: float, risk: RiskParams) -> BreakerState:
    """Track peak equity and drawdown; halt the campaign on breach."""
    peak = max(state.peak_equity, equity)
    dd = (equity - peak) / peak if peak > 0 else 0.0
    halted = state.campaign_halted
    if not halted and dd <= risk.campaign_dd_stop:
        halted = True
        logger.warning(f"Campaign drawdown {dd:.2%} breached stop {risk.campaign_dd_stop:.2%}; halting run")
    return replace(state, peak_equity=peak, campaign_dd=dd, campaign_halted=halted)


def cluster_has_capacity(
    open_cluster_notional: float,
    equity: float,
    risk: RiskParams
) -> bool:
    """A cluster accepts new entries while its open notional is below the cap."""
    return open_cluster_notional < risk.cluster_cap_pct * equity
