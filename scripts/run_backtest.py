#!/usr/bin/env python3
"""Script to run a breakout backtest (engine, Monte Carlo, metrics) from command line."""

import argparse
import sys
import threading
from pathlib import Path

from tqdm import tqdm

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from adapters.data.bar_store import BarStore
from config.config_loader import drop_none
from config.schema import load_run_config
from engine.backtest_engine import RunCancelled
from engine.logging_setup import setup_run_logging
from validation.pipeline import BacktestPipeline
from validation.state import RunStore


def build_overrides(args: argparse.Namespace) -> dict:
    """Map CLI flags onto the nested run config shape (unset flags dropped)."""
    overrides = {
        'name': args.name,
        'symbols': args.symbols,
        'start_date': args.start_date,
        'end_date': args.end_date,
        'initial_capital': args.capital,
        'monte_carlo': {
            'num_scenarios': args.scenarios,
            'seed': args.seed,
            'max_workers': args.workers,
        },
    }
    if args.no_breakers:
        overrides['apply_breakers'] = False
    if args.no_monte_carlo:
        overrides['monte_carlo']['enabled'] = False
    return drop_none(overrides)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run an ATR breakout backtest with circuit breakers')
    parser.add_argument('--config', type=str, help='Run config YAML (merged over config/defaults.yml)')
    parser.add_argument('--data-dir', type=str, required=True, help='Directory with <SYMBOL>.csv or <SYMBOL>.parquet files')
    parser.add_argument('--symbols', nargs='+', help='Symbol universe (overrides config)')
    parser.add_argument('--start-date', type=str, help='First day, YYYY-MM-DD (inclusive)')
    parser.add_argument('--end-date', type=str, help='Last day, YYYY-MM-DD (inclusive)')
    parser.add_argument('--capital', type=float, help='Initial capital')
    parser.add_argument('--name', type=str, help='Run name')
    parser.add_argument('--scenarios', type=int, help='Monte Carlo scenario count')
    parser.add_argument('--seed', type=int, help='Monte Carlo seed')
    parser.add_argument('--workers', type=int, help='Monte Carlo worker threads')
    parser.add_argument('--no-breakers', action='store_true', help='Track but do not enforce circuit breakers')
    parser.add_argument('--no-monte-carlo', action='store_true', help='Skip the Monte Carlo stress test')
    parser.add_argument('--state-dir', type=str, default='.backtest_runs', help='Where run records are stored')
    parser.add_argument('--log-dir', type=str, default='data/logs', help='Where log files are written')
    args = parser.parse_args(argv)

    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        return 1

    config = load_run_config(config_path, build_overrides(args))
    log_file = setup_run_logging(Path(args.log_dir), run_name=config.name)
    if log_file:
        print(f"Logging to {log_file}")

    bars = BarStore.from_directory(Path(args.data_dir), config.symbols)
    missing = [s for s in config.symbols if s not in bars.symbols]
    if missing:
        print(f"Warning: no data for {', '.join(missing)}")

    pipeline = BacktestPipeline(config, bars, RunStore(Path(args.state_dir)))
    cancel_event = threading.Event()

    print(f"\nRunning {config.name}: {', '.join(config.symbols)} {config.start_date} -> {config.end_date}")
    outcome = {}

    with tqdm(total=100, desc='Backtest', unit='%') as bar:
        def on_progress(pct: float):
            bar.update(max(0.0, pct - bar.n))

        def work():
            try:
                outcome['result'] = pipeline.run(on_progress=on_progress, cancel_event=cancel_event)
            except Exception as e:
                outcome['error'] = e

        # Ctrl-C lands on the main thread; the worker stops at the next day or batch
        worker = threading.Thread(target=work, name='backtest-pipeline', daemon=True)
        worker.start()
        try:
            while worker.is_alive():
                worker.join(0.2)
        except KeyboardInterrupt:
            cancel_event.set()
            worker.join()
            print("\nCancelled.")
            return 130

    error = outcome.get('error')
    if isinstance(error, RunCancelled):
        print("\nCancelled.")
        return 130
    if isinstance(error, ValueError):
        print(f"\nRun failed: {error}")
        return 1
    if error is not None:
        raise error
    result = outcome['result']

    totals = result.backtest.totals()
    metrics = result.metrics
    print("\n" + "=" * 60)
    print(f"RUN {result.run.run_id} - {result.run.status.upper()}")
    print("=" * 60)
    print(f"Trades:          {totals.total_trades} ({totals.winning_trades} W / {totals.losing_trades} L)")
    print(f"Final equity:    {totals.final_equity:,.2f}")
    print(f"Net PnL:         {totals.total_pnl:,.2f} ({totals.total_pnl_percentage:.2f}%)")
    print(f"Fees/slippage:   {totals.total_fees:,.2f} / {totals.total_slippage:,.2f}")
    if result.backtest.halted:
        print("Campaign drawdown stop hit - run halted early")
    print(f"Hit rate:        {metrics.trade.hit_rate:.2%}")
    print(f"Profit factor:   {metrics.trade.profit_factor:.2f}")
    print(f"Sharpe/Sortino:  {metrics.risk.sharpe_ratio:.2f} / {metrics.risk.sortino_ratio:.2f}")
    print(f"Max drawdown:    {metrics.risk.max_drawdown_percentage:.2%}")
    if result.monte_carlo is not None:
        summary = result.monte_carlo.summary
        print(f"MC ES95 / VaR99: {summary.es95_mean:.4f} / {summary.var99_mean:.4f} (seed {result.monte_carlo.seed})")
    print("\nValidation:")
    for line in metrics.validation.validation_notes.splitlines():
        print(f"  {line}")
    print(f"\nVerdict: {'PASSED' if metrics.validation.validation_passed else 'FAILED'}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
