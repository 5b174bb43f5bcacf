"""OHLCV data loader for per-symbol minute bars.

Supports:
- CSV files (comma, tab, semicolon separated)
- Parquet files
- Common column naming conventions (OPEN, open, <OPEN>, o, ...)
- DATE + TIME column pairs
- Numeric timestamps (Unix seconds/milliseconds)
"""

from pathlib import Path
import pandas as pd
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class DataLoader:
    """Loads OHLCV bars into a timestamp-indexed DataFrame."""

    COLUMN_ALIASES = {
        'open': ['open', 'o', 'open_price'],
        'high': ['high', 'h', 'high_price'],
        'low': ['low', 'l', 'low_price'],
        'close': ['close', 'c', 'close_price'],
        'volume': ['volume', 'vol', 'v', 'tickvol'],
    }
    TIMESTAMP_ALIASES = ['timestamp', 'datetime', 'date', 'time', 'open_time', 'timestamp_ms']

    def load(self, file_path: Path, **kwargs) -> pd.DataFrame:
        """
        Load OHLCV data from CSV or Parquet file.

        Args:
            file_path: Path to data file
            **kwargs: Additional arguments for pandas read functions

        Returns:
            DataFrame with datetime index and columns
            ['open', 'high', 'low', 'close', 'volume']
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Data file not found: {file_path}")

        if file_path.suffix.lower() == '.parquet':
            df = pd.read_parquet(file_path, **kwargs)
        else:
            if 'sep' not in kwargs and 'delimiter' not in kwargs:
                kwargs['sep'] = self._detect_separator(file_path)
            df = pd.read_csv(file_path, **kwargs)

        df = self._standardize_columns(df)
        df = self._process_timestamp(df, file_path)
        return self._finalize_dataframe(df, file_path)

    def _detect_separator(self, file_path: Path) -> str:
        with open(file_path, 'r', encoding='utf-8') as f:
            header = f.readline()
        counts = {sep: header.count(sep) for sep in [',', ';', '\t']}
        sep = max(counts, key=counts.get)
        logger.debug(f"Loading CSV with separator: '{sep}'")
        return sep

    @staticmethod
    def _clean_column_name(col) -> str:
        return str(col).strip().strip('<>').lower()

    def _standardize_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        """Rename OHLCV aliases to canonical lowercase names."""
        rename = {}
        for col in df.columns:
            cleaned = self._clean_column_name(col)
            for canonical, aliases in self.COLUMN_ALIASES.items():
                if cleaned in aliases and canonical not in rename.values():
                    rename[col] = canonical
                    break
        return df.rename(columns=rename)

    def _process_timestamp(self, df: pd.DataFrame, file_path: Path) -> pd.DataFrame:
        """Build the datetime index."""
        if isinstance(df.index, pd.DatetimeIndex):
            return df

        df, combined = self._combine_date_time(df)
        if combined:
            return df

        for col in df.columns:
            if self._clean_column_name(col) in self.TIMESTAMP_ALIASES:
                df.index = self._parse_timestamp_series(df[col])
                df.index.name = 'timestamp'
                return df.drop(columns=[col])

        raise ValueError(
            f"Could not determine timestamp/index for {file_path}. "
            f"Expected: datetime index, timestamp column or DATE+TIME columns. "
            f"Columns: {df.columns.tolist()}"
        )

    def _combine_date_time(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, bool]:
        """Combine DATE and TIME columns into datetime index."""
        date_col: Optional[str] = None
        time_col: Optional[str] = None
        for col in df.columns:
            cleaned = self._clean_column_name(col)
            if cleaned == 'date' and date_col is None:
                date_col = col
            elif cleaned == 'time' and time_col is None:
                time_col = col

        if not (date_col and time_col):
            return df, False

        datetime_series = pd.to_datetime(
            df[date_col].astype(str) + ' ' + df[time_col].astype(str), errors='coerce'
        )
        df = df.drop(columns=[date_col, time_col])
        df.index = pd.DatetimeIndex(datetime_series, name='timestamp')
        return df, True

    def _parse_timestamp_series(self, series: pd.Series) -> pd.DatetimeIndex:
        """Parse strings or Unix seconds/milliseconds into a DatetimeIndex."""
        if pd.api.types.is_numeric_dtype(series):
            unit = 'ms' if series.dropna().iloc[0] > 1e12 else 's'
            return pd.DatetimeIndex(pd.to_datetime(series, unit=unit, errors='coerce'))
        return pd.DatetimeIndex(pd.to_datetime(series, errors='coerce'))

    def _finalize_dataframe(self, df: pd.DataFrame, file_path: Path) -> pd.DataFrame:
        """Validate, clean, and select columns."""
        if 'volume' not in df.columns:
            df['volume'] = 0.0

        missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(
                f"{file_path.name} missing required columns: {missing}. "
                f"Available columns: {df.columns.tolist()}"
            )

        df = df[REQUIRED_COLUMNS].astype(float)

        initial_len = len(df)
        df = df[df.index.notna()]
        removed = initial_len - len(df)
        if removed > 0:
            logger.warning(f"Removed {removed} rows with invalid timestamps from {file_path.name}")

        if df.index.tz is not None:
            df.index = df.index.tz_convert('UTC').tz_localize(None)

        df = df[~df.index.duplicated(keep='last')].sort_index()

        if len(df) == 0:
            raise ValueError("No valid data remaining after processing")

        logger.info(f"Successfully loaded {len(df)} bars from {file_path.name}")
        logger.debug(f"Date range: {df.index[0]} to {df.index[-1]}")
        return df
