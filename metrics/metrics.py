"""Trade, risk and cost metrics plus the validation gate for a trade ledger."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING
import logging
import math
import numpy as np
import pandas as pd

from config.schema import CostParams
from engine.broker import BrokerModel
from engine.models import TradeResult

if TYPE_CHECKING:
    from validation.monte_carlo.simulator import MonteCarloResults
    from validation.state import RunStore

logger = logging.getLogger(__name__)

RATIO_SENTINEL = 999.0
TRADING_DAYS = 252
RISK_FREE_RATE = 0.04
MC_TAIL_TOLERANCE = 1.2
MAX_DRAWDOWN_LIMIT = 0.10


@dataclass
class TradeMetrics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    hit_rate: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    payoff_ratio: float
    expectancy: float


@dataclass
class RiskMetrics:
    mean_return: float
    stdev_return: float
    sharpe_ratio: float
    sortino_ratio: float
    var_95: float
    var_99: float
    es_95: float
    es_99: float
    max_drawdown: float
    max_drawdown_percentage: float
    max_drawdown_duration_hours: float


@dataclass
class CostMetrics:
    turnover: float
    total_fees: float
    fees_percentage: float
    total_slippage: float
    slippage_bp: float
    cost_drag_percentage: float
    funding_cost: float = 0.0
    pnl_after_tax: float = 0.0


@dataclass
class BreakerStats:
    asset_breakers_triggered: int
    cluster_breakers_triggered: int
    global_breakers_triggered: int
    breaker_attributed_trades: int


@dataclass
class ValidationResult:
    es95_improved: bool
    var99_improved: bool
    pnl_net_positive: bool
    validation_passed: bool
    validation_notes: str


@dataclass
class MetricsRecord:
    """Everything derived from one run's ledger."""
    trade: TradeMetrics
    risk: RiskMetrics
    cost: CostMetrics
    breakers: BreakerStats
    validation: ValidationResult
    monte_carlo_summary: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetricsRecord':
        return cls(
            trade=TradeMetrics(**data['trade']),
            risk=RiskMetrics(**data['risk']),
            cost=CostMetrics(**data['cost']),
            breakers=BreakerStats(**data['breakers']),
            validation=ValidationResult(**data['validation']),
            monte_carlo_summary=data.get('monte_carlo_summary'),
        )


def calculate_var_es(returns: Sequence[float], tail: float = 0.05) -> Tuple[float, float]:
    """
    Empirical Value at Risk and Expected Shortfall, reported as losses.

    The VaR observation is ``sorted[floor(n * tail)]``; ES is the mean of all
    observations up to and including it. Both are expressed as positive loss
    fractions and floored at 0.0, so VaR <= ES always holds.

    Args:
        returns: Return observations
        tail: Tail probability (0.05 for 95%, 0.01 for 99%)

    Returns:
        (var, es); (0.0, 0.0) for an empty input
    """
    values = np.sort(np.asarray(returns, dtype=float))
    if len(values) == 0:
        return 0.0, 0.0
    index = min(int(math.floor(len(values) * tail)), len(values) - 1)
    var = max(0.0, -float(values[index]))
    es = max(0.0, -float(np.mean(values[:index + 1])))
    return var, es


def calculate_trade_metrics(trades: Sequence[TradeResult]) -> TradeMetrics:
    """Hit rate, averages, profit factor, payoff ratio and expectancy.

    Profit factor and payoff ratio are RATIO_SENTINEL when there are wins but
    no losses, and 0.0 when there are no wins either.
    """
    net = np.array([t.net_pnl for t in trades], dtype=float)
    wins = net[net > 0]
    losses = net[net < 0]
    total_wins = float(wins.sum())
    total_losses = float(abs(losses.sum()))
    avg_win = total_wins / len(wins) if len(wins) > 0 else 0.0
    avg_loss = total_losses / len(losses) if len(losses) > 0 else 0.0
    hit_rate = len(wins) / len(net) if len(net) > 0 else 0.0

    if total_losses > 0:
        profit_factor = total_wins / total_losses
    else:
        profit_factor = RATIO_SENTINEL if total_wins > 0 else 0.0
    if avg_loss > 0:
        payoff_ratio = avg_win / avg_loss
    else:
        payoff_ratio = RATIO_SENTINEL if avg_win > 0 else 0.0

    return TradeMetrics(
        total_trades=len(net),
        winning_trades=len(wins),
        losing_trades=len(losses),
        hit_rate=hit_rate,
        avg_win=avg_win,
        avg_loss=avg_loss,
        profit_factor=profit_factor,
        payoff_ratio=payoff_ratio,
        expectancy=hit_rate * avg_win - (1 - hit_rate) * avg_loss,
    )


def calculate_daily_returns(trades: Sequence[TradeResult], initial_capital: float) -> np.ndarray:
    """
    Daily returns from net PnL bucketed by exit date.

    Each day's PnL is divided by the equity at the start of that day
    (initial capital plus PnL of earlier days). Days starting with
    non-positive equity are excluded.
    """
    if not trades:
        return np.array([], dtype=float)
    pnl = pd.Series(
        [t.net_pnl for t in trades],
        index=pd.DatetimeIndex([pd.Timestamp(t.exit_time) for t in trades]).normalize(),
    )
    daily_pnl = pnl.groupby(level=0).sum().sort_index()
    equity_before = initial_capital + daily_pnl.cumsum().shift(1, fill_value=0.0)
    valid = equity_before > 0
    return (daily_pnl[valid] / equity_before[valid]).to_numpy(dtype=float)


def calculate_sharpe_sortino(
    daily_returns: np.ndarray,
    risk_free_rate: float = RISK_FREE_RATE,
    periods_per_year: int = TRADING_DAYS
) -> Tuple[float, float]:
    """
    Annualized Sharpe and Sortino ratios (population standard deviation).

    Sortino's downside deviation is the root mean square of the negative
    returns only. Either ratio is 0.0 when its denominator is zero.
    """
    if len(daily_returns) == 0:
        return 0.0, 0.0
    annual_return = float(np.mean(daily_returns)) * periods_per_year
    annual_vol = float(np.std(daily_returns)) * math.sqrt(periods_per_year)
    sharpe = (annual_return - risk_free_rate) / annual_vol if annual_vol > 0 else 0.0

    negative = daily_returns[daily_returns < 0]
    downside = math.sqrt(float(np.mean(negative ** 2))) * math.sqrt(periods_per_year) if len(negative) > 0 else 0.0
    sortino = (annual_return - risk_free_rate) / downside if downside > 0 else 0.0
    return sharpe, sortino


def calculate_drawdown(trades: Sequence[TradeResult], initial_capital: float) -> Tuple[float, float, float]:
    """
    Walk trades in exit-time order tracking peak equity.

    Returns:
        (max drawdown amount, its fraction of the peak in [0, 1],
         longest drawdown episode in hours)

    An episode starts at the first trade that does not set a new peak and
    ends at the trade that does. An episode still open at the last trade is
    measured up to that trade.
    """
    ordered = sorted(trades, key=lambda t: pd.Timestamp(t.exit_time))
    equity = peak = initial_capital
    max_dd = max_dd_pct = longest = 0.0
    dd_start: Optional[pd.Timestamp] = None

    for trade in ordered:
        exit_time = pd.Timestamp(trade.exit_time)
        equity += trade.net_pnl
        if equity > peak:
            if dd_start is not None:
                longest = max(longest, (exit_time - dd_start).total_seconds() / 3600)
                dd_start = None
            peak = equity
            continue
        if dd_start is None:
            dd_start = exit_time
        dd = peak - equity
        if dd > max_dd:
            max_dd = dd
            max_dd_pct = min(1.0, dd / peak) if peak > 0 else 0.0

    if dd_start is not None and ordered:
        longest = max(longest, (pd.Timestamp(ordered[-1].exit_time) - dd_start).total_seconds() / 3600)
    return max_dd, max_dd_pct, longest


def calculate_risk_metrics(trades: Sequence[TradeResult], initial_capital: float) -> RiskMetrics:
    daily_returns = calculate_daily_returns(trades, initial_capital)
    sharpe, sortino = calculate_sharpe_sortino(daily_returns)
    var_95, es_95 = calculate_var_es(daily_returns, 0.05)
    var_99, es_99 = calculate_var_es(daily_returns, 0.01)
    max_dd, max_dd_pct, duration = calculate_drawdown(trades, initial_capital)
    return RiskMetrics(
        mean_return=float(np.mean(daily_returns)) if len(daily_returns) > 0 else 0.0,
        stdev_return=float(np.std(daily_returns)) if len(daily_returns) > 0 else 0.0,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        var_95=var_95,
        var_99=var_99,
        es_95=es_95,
        es_99=es_99,
        max_drawdown=max_dd,
        max_drawdown_percentage=max_dd_pct,
        max_drawdown_duration_hours=duration,
    )


def calculate_cost_metrics(trades: Sequence[TradeResult], costs: Optional[CostParams] = None) -> CostMetrics:
    """
    Turnover and cost ratios.

    fees_percentage and slippage_bp are normalized by total notional;
    cost_drag_percentage is (fees + slippage) / |gross PnL| * 100, 0.0 when
    gross PnL is zero. Funding and after-tax PnL are informational and need
    ``costs``.
    """
    turnover = sum(t.notional for t in trades)
    total_fees = sum(t.fees for t in trades)
    total_slippage = sum(t.slippage for t in trades)
    gross = sum(t.gross_pnl for t in trades)

    funding = 0.0
    after_tax = sum(t.net_pnl for t in trades)
    if costs is not None:
        broker = BrokerModel(costs)
        funding = sum(
            broker.funding_cost(
                t.notional,
                (pd.Timestamp(t.exit_time) - pd.Timestamp(t.entry_time)).total_seconds() / 86400,
            )
            for t in trades
        )
        after_tax = broker.after_tax(after_tax)

    return CostMetrics(
        turnover=turnover,
        total_fees=total_fees,
        fees_percentage=total_fees / turnover * 100 if turnover > 0 else 0.0,
        total_slippage=total_slippage,
        slippage_bp=total_slippage / turnover * 10000 if turnover > 0 else 0.0,
        cost_drag_percentage=(total_fees + total_slippage) / abs(gross) * 100 if gross != 0 else 0.0,
        funding_cost=funding,
        pnl_after_tax=after_tax,
    )


def calculate_breaker_stats(trades: Sequence[TradeResult]) -> BreakerStats:
    flagged = [t for t in trades if t.breaker_triggered]
    return BreakerStats(
        asset_breakers_triggered=sum(1 for t in flagged if t.breaker_type == "asset"),
        cluster_breakers_triggered=sum(1 for t in flagged if t.breaker_type == "cluster"),
        global_breakers_triggered=sum(1 for t in flagged if t.breaker_type == "global"),
        breaker_attributed_trades=len(flagged),
    )


def validate_results(
    trade_metrics: TradeMetrics,
    risk_metrics: RiskMetrics,
    monte_carlo_results: Optional['MonteCarloResults'] = None
) -> ValidationResult:
    """
    Pass/fail gate.

    PASS requires positive expectancy and, when Monte Carlo results are
    given, simulated ES95 and VaR99 below 1.2x their historical values.
    Profit factor and max drawdown are noted but don't gate.
    """
    notes: List[str] = []
    pnl_net_positive = trade_metrics.expectancy > 0
    notes.append("PnL net positive: PASS" if pnl_net_positive else "PnL net positive: FAIL (expectancy <= 0)")

    es95_improved = True
    var99_improved = True
    if monte_carlo_results is not None:
        summary = monte_carlo_results.summary
        es95_improved = summary.es95_mean < risk_metrics.es_95 * MC_TAIL_TOLERANCE
        var99_improved = summary.var99_mean < risk_metrics.var_99 * MC_TAIL_TOLERANCE
        notes.append(f"ES95 under stress within {MC_TAIL_TOLERANCE}x historical: {'PASS' if es95_improved else 'FAIL'}")
        notes.append(f"VaR99 under stress within {MC_TAIL_TOLERANCE}x historical: {'PASS' if var99_improved else 'FAIL'}")
    else:
        notes.append("Monte Carlo not run - skipping ES95/VaR99 validation")

    pf = trade_metrics.profit_factor
    notes.append(f"Profit factor {pf:.2f}: {'ACCEPTABLE' if pf >= 1.0 else 'LOW'}")
    dd_pct = risk_metrics.max_drawdown_percentage
    if dd_pct <= MAX_DRAWDOWN_LIMIT:
        notes.append(f"Max drawdown {dd_pct * 100:.2f}%: PASS")
    else:
        notes.append(f"Max drawdown {dd_pct * 100:.2f}%: FAIL (> {MAX_DRAWDOWN_LIMIT:.0%})")

    return ValidationResult(
        es95_improved=es95_improved,
        var99_improved=var99_improved,
        pnl_net_positive=pnl_net_positive,
        validation_passed=pnl_net_positive and es95_improved and var99_improved,
        validation_notes="\n".join(notes),
    )


def calculate_and_save_metrics(
    trades: Sequence[TradeResult],
    initial_capital: float,
    monte_carlo_results: Optional['MonteCarloResults'] = None,
    costs: Optional[CostParams] = None,
    store: Optional['RunStore'] = None,
    run_id: Optional[str] = None
) -> MetricsRecord:
    """
    Compute the full metrics record for a ledger and optionally persist it.

    Raises:
        ValueError: If the ledger is empty or initial_capital is not positive
    """
    if not trades:
        raise ValueError("No trades found for backtest run")
    if initial_capital <= 0:
        raise ValueError(f"initial_capital must be positive, got {initial_capital}")

    trade_metrics = calculate_trade_metrics(trades)
    risk_metrics = calculate_risk_metrics(trades, initial_capital)
    record = MetricsRecord(
        trade=trade_metrics,
        risk=risk_metrics,
        cost=calculate_cost_metrics(trades, costs),
        breakers=calculate_breaker_stats(trades),
        validation=validate_results(trade_metrics, risk_metrics, monte_carlo_results),
        monte_carlo_summary=monte_carlo_results.summary.to_dict() if monte_carlo_results is not None else None,
    )

    if store is not None and run_id is not None:
        store.save_metrics(run_id, record)
    logger.info(
        f"Metrics computed for {len(trades)} trades. "
        f"Validation: {'PASSED' if record.validation.validation_passed else 'FAILED'}"
    )
    return record
