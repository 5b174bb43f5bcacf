"""Run logging: a DEBUG file log per run plus WARNING+ on the console."""

from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
import logging

PACKAGE_LOGGERS = ('engine', 'metrics', 'validation', 'adapters')


def setup_run_logging(
    log_dir: Optional[Path] = None,
    run_name: str = 'backtest',
    console_level: int = logging.WARNING,
    loggers: Iterable[str] = PACKAGE_LOGGERS
) -> Optional[Path]:
    """Attach file and console handlers to the package loggers.

    Idempotent: loggers that already have handlers are left alone.

    Returns:
        Path of the log file, or None if logging was already configured
    """
    targets = [logging.getLogger(name) for name in loggers]
    if all(logger.handlers for logger in targets):
        return None

    log_dir = Path(log_dir) if log_dir is not None else Path('data/logs')
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_filename = log_dir / f'{run_name}_{timestamp}.log'

    file_handler = logging.FileHandler(log_filename, mode='w', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    for logger in targets:
        if logger.handlers:
            continue
        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.setLevel(logging.DEBUG)

    logging.getLogger('engine').info(f"Logging initialized. Log file: {log_filename}")
    return log_filename
