"""历史 K 线加载。

CSV 格式：表头 + `timestamp,open,high,low,close,volume`，timestamp 为毫秒时间戳。
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pandas as pd

from shared.models.models import Candle
from shared.utils.logging import setup_logger

REQUIRED_COLS = ["timestamp", "open", "high", "low", "close", "volume"]

_LOGGER = setup_logger("data-loader")


def format_display_time(timestamp_ms: int, utc_offset_hours: float = 2.0) -> str:
    """毫秒时间戳 -> `YYYY-MM-DD HH:MM:SS`（按固定 UTC 偏移展示）。"""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc) + timedelta(hours=utc_offset_hours)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def frame_to_candles(df: pd.DataFrame, utc_offset_hours: float = 2.0) -> list[Candle]:
    """DataFrame -> 按时间升序的 Candle 列表。"""
    missing = [c for c in REQUIRED_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle frame missing columns: {', '.join(missing)}")
    if df.empty:
        return []

    df = df.sort_values("timestamp").reset_index(drop=True)
    candles: list[Candle] = []
    for row in df.itertuples(index=False):
        ts = int(row.timestamp)
        candles.append(
            Candle(
                timestamp=ts,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
                display_time=format_display_time(ts, utc_offset_hours),
            )
        )
    return candles


def load_candles_from_csv(path: str | Path, utc_offset_hours: float = 2.0) -> list[Candle]:
    """从 CSV 读取 K 线。

    Raises
    ------
    FileNotFoundError
        文件不存在。
    ValueError
        缺少必需列或数值无法解析。
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Candle CSV not found: {csv_path}")

    df = pd.read_csv(csv_path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    before = len(df)
    df = df.dropna(subset=[c for c in REQUIRED_COLS if c in df.columns])
    if len(df) < before:
        _LOGGER.warning("Dropped %s incomplete rows from %s", before - len(df), csv_path)

    candles = frame_to_candles(df, utc_offset_hours)
    _LOGGER.info("Loaded %s candles from %s", len(candles), csv_path)
    return candles


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    """Candle 列表 -> DataFrame（含 rsi/ema 列），便于导出与分析。"""
    rows = [
        {
            "timestamp": c.timestamp,
            "display_time": c.display_time,
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
            "rsi": c.rsi,
            "ema": c.ema,
        }
        for c in candles
    ]
    return pd.DataFrame(rows)
