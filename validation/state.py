"""Backtest run records and their JSON persistence."""

from dataclasses import dataclass, asdict, field
from typing import Optional, Dict, Any, List, Iterable, TYPE_CHECKING
from pathlib import Path
from datetime import datetime
import json
import logging
import math
import shutil
import numpy as np

from engine.models import TradeResult
from metrics.metrics import MetricsRecord

if TYPE_CHECKING:
    from validation.monte_carlo.simulator import MonteCarloResults

logger = logging.getLogger(__name__)

TRADE_BATCH_SIZE = 100

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class RunRecord:
    """Lifecycle and summary of one backtest run."""
    run_id: str
    name: str
    status: str = STATUS_PENDING
    progress_percentage: float = 0.0
    error_message: Optional[str] = None
    apply_breakers: bool = True
    config: Dict[str, Any] = field(default_factory=dict)
    totals: Optional[Dict[str, Any]] = None
    halted: bool = False
    monte_carlo_ran: bool = False
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunRecord':
        return cls(**data)

    def mark_running(self):
        self.status = STATUS_RUNNING
        self.started_at = datetime.now().isoformat()

    def mark_completed(self, totals: Dict[str, Any]):
        self.status = STATUS_COMPLETED
        self.progress_percentage = 100.0
        self.totals = totals
        self.completed_at = datetime.now().isoformat()

    def mark_failed(self, error_message: str):
        self.status = STATUS_FAILED
        self.error_message = error_message
        self.completed_at = datetime.now().isoformat()


def _to_json_safe(value):
    """Convert numpy scalars and non-finite floats into plain JSON values."""
    if isinstance(value, dict):
        return {str(k): _to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json_safe(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


class RunStore:
    """Stores each run as a directory of JSON documents.

    Layout::

        <state_dir>/<run_id>/run.json
        <state_dir>/<run_id>/trades/batch_0000.json ...
        <state_dir>/<run_id>/scenarios.json
        <state_dir>/<run_id>/metrics.json
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """
        Args:
            state_dir: Root directory. Defaults to .backtest_runs/
        """
        if state_dir is None:
            state_dir = Path.cwd() / ".backtest_runs"
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _run_path(self, run_id: str) -> Path:
        return self.state_dir / run_id.replace("/", "_").replace("\\", "_")

    def run_dir(self, run_id: str) -> Path:
        path = self._run_path(run_id)
        path.mkdir(exist_ok=True)
        return path

    def _write(self, path: Path, payload: Any):
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, 'w') as f:
            json.dump(_to_json_safe(payload), f, indent=2, default=str)
        tmp.replace(path)

    def _read(self, path: Path) -> Any:
        with open(path, 'r') as f:
            return json.load(f)

    def save_run(self, record: RunRecord):
        self._write(self.run_dir(record.run_id) / "run.json", record.to_dict())

    def load_run(self, run_id: str) -> Optional[RunRecord]:
        path = self._run_path(run_id) / "run.json"
        if not path.exists():
            return None
        return RunRecord.from_dict(self._read(path))

    def list_runs(self) -> List[RunRecord]:
        records = []
        for path in sorted(self.state_dir.glob("*/run.json")):
            records.append(RunRecord.from_dict(self._read(path)))
        return records

    def delete_run(self, run_id: str) -> bool:
        """Remove a run with its trades, scenarios and metrics. False if it does not exist."""
        path = self._run_path(run_id)
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        logger.info(f"Deleted run {run_id}")
        return True

    def save_trades(self, run_id: str, trades: Iterable[TradeResult], batch_size: int = TRADE_BATCH_SIZE) -> int:
        """Write the ledger in batches; replaces any earlier trades of the run."""
        trades_dir = self.run_dir(run_id) / "trades"
        trades_dir.mkdir(exist_ok=True)
        for old in trades_dir.glob("batch_*.json"):
            old.unlink()

        rows = [t.to_dict() for t in trades]
        for number, start in enumerate(range(0, len(rows), batch_size)):
            self._write(trades_dir / f"batch_{number:04d}.json", rows[start:start + batch_size])
        logger.debug(f"Saved {len(rows)} trades for run {run_id}")
        return len(rows)

    def load_trades(self, run_id: str) -> List[TradeResult]:
        trades_dir = self._run_path(run_id) / "trades"
        trades: List[TradeResult] = []
        for path in sorted(trades_dir.glob("batch_*.json")):
            trades.extend(TradeResult.from_dict(row) for row in self._read(path))
        return trades

    def save_scenarios(self, run_id: str, results: 'MonteCarloResults'):
        payload = results.to_dict()
        payload['scenarios'] = [s.to_dict() for s in results.scenarios]
        self._write(self.run_dir(run_id) / "scenarios.json", payload)

    def load_scenarios(self, run_id: str) -> Optional[Dict[str, Any]]:
        path = self._run_path(run_id) / "scenarios.json"
        return self._read(path) if path.exists() else None

    def save_metrics(self, run_id: str, record: MetricsRecord):
        self._write(self.run_dir(run_id) / "metrics.json", record.to_dict())

    def load_metrics(self, run_id: str) -> Optional[MetricsRecord]:
        path = self._run_path(run_id) / "metrics.json"
        return MetricsRecord.from_dict(self._read(path)) if path.exists() else None
