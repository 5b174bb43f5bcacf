"""In-memory bar store queryable by symbol and calendar day."""

from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging
import pandas as pd

from adapters.data.data_loader import DataLoader
from engine.indicators import bars_from_frame
from engine.models import Bar

logger = logging.getLogger(__name__)


class BarStore:
    """Holds one OHLCV DataFrame per symbol.

    Frames must have a DatetimeIndex; they are sorted on construction so
    ``get_bars`` always yields bars in time order.
    """

    def __init__(self, frames: Dict[str, pd.DataFrame]):
        self.frames: Dict[str, pd.DataFrame] = {}
        for symbol, df in frames.items():
            if not isinstance(df.index, pd.DatetimeIndex):
                raise ValueError(f"Bars for {symbol} must have a DatetimeIndex")
            self.frames[symbol.upper()] = df.sort_index()

    @classmethod
    def from_directory(
        cls,
        data_dir: Path,
        symbols: Iterable[str],
        loader: Optional[DataLoader] = None
    ) -> 'BarStore':
        """Load ``<data_dir>/<SYMBOL>.csv`` (or .parquet) for each symbol.

        Symbols without a file are skipped with a warning; the engine treats
        them as having no bars.
        """
        loader = loader or DataLoader()
        data_dir = Path(data_dir)
        frames = {}
        for symbol in symbols:
            path = next(
                (p for p in (data_dir / f"{symbol}.parquet", data_dir / f"{symbol}.csv") if p.exists()),
                None,
            )
            if path is None:
                logger.warning(f"No data file for {symbol} in {data_dir}")
                continue
            frames[symbol] = loader.load(path)
        return cls(frames)

    @property
    def symbols(self) -> List[str]:
        return list(self.frames)

    def get_bars(self, symbol: str, day: pd.Timestamp) -> List[Bar]:
        """Bars of ``symbol`` whose timestamp falls on calendar ``day``."""
        df = self.frames.get(symbol.upper())
        if df is None or df.empty:
            return []
        start = pd.Timestamp(day).normalize()
        end = start + pd.Timedelta(days=1)
        day_df = df[(df.index >= start) & (df.index < end)]
        return list(bars_from_frame(day_df))
