"""Tests for bar loading and the per-day bar store."""

import pandas as pd
import pytest

from adapters.data import BarStore, DataLoader


def test_load_date_time_csv(tmp_path):
    path = tmp_path / "AAA.csv"
    path.write_text(
        "<DATE>\t<TIME>\t<OPEN>\t<HIGH>\t<LOW>\t<CLOSE>\t<TICKVOL>\n"
        "2024-01-02\t09:31:00\t10\t11\t9\t10.5\t100\n"
        "2024-01-02\t09:30:00\t10\t11\t9\t10.0\t100\n"
        "2024-01-02\t09:31:00\t10\t12\t9\t11.0\t120\n"
    )
    df = DataLoader().load(path)
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert df.index.is_monotonic_increasing
    # duplicate timestamps keep the last row
    assert len(df) == 2
    assert df["close"].iloc[-1] == 11.0


def test_load_epoch_milliseconds(tmp_path):
    path = tmp_path / "BBB.csv"
    start = int(pd.Timestamp("2024-01-02 00:00").timestamp() * 1000)
    rows = "\n".join(f"{start + i * 60000},1,2,0.5,1.5" for i in range(3))
    path.write_text("timestamp,o,h,l,c\n" + rows + "\n")
    df = DataLoader().load(path)
    assert df.index[0] == pd.Timestamp("2024-01-02 00:00")
    assert (df["volume"] == 0.0).all()


def test_missing_file_and_columns(tmp_path):
    with pytest.raises(FileNotFoundError):
        DataLoader().load(tmp_path / "nope.csv")
    path = tmp_path / "bad.csv"
    path.write_text("timestamp,open,close\n2024-01-02 00:00,1,1\n")
    with pytest.raises(ValueError):
        DataLoader().load(path)


def test_bar_store_slices_calendar_days(tmp_path):
    idx = pd.date_range("2024-01-02 23:58", periods=4, freq="min")
    frame = pd.DataFrame(
        {"open": 1.0, "high": 2.0, "low": 0.5, "close": [1.0, 1.1, 1.2, 1.3], "volume": 1.0}, index=idx
    )
    frame.to_csv(tmp_path / "AAA.csv", index_label="timestamp")

    store = BarStore.from_directory(tmp_path, ["AAA", "MISSING"])
    assert store.symbols == ["AAA"]
    day1 = store.get_bars("aaa", pd.Timestamp("2024-01-02"))
    day2 = store.get_bars("AAA", pd.Timestamp("2024-01-03"))
    assert [b.close for b in day1] == [1.0, 1.1]
    assert [b.close for b in day2] == [1.2, 1.3]
    assert store.get_bars("MISSING", pd.Timestamp("2024-01-02")) == []


def test_bar_store_requires_datetime_index():
    with pytest.raises(ValueError):
        BarStore({"AAA": pd.DataFrame({"close": [1.0]})})
