"""RSI 因子（Wilder 平滑）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from shared.models.models import Candle
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("factor-rsi")


def _wilder_average(values: pd.Series, period: int) -> pd.Series:
    """首个值取前 `period` 个价差的简单均值，之后按 alpha=1/period 递推（adjust=False）。"""
    seeded = pd.concat(
        [pd.Series([values.iloc[1 : period + 1].mean()]), values.iloc[period + 1 :]],
        ignore_index=True,
    )
    return seeded.ewm(alpha=1.0 / period, adjust=False).mean()


def compute_rsi(candles: list[Candle], period: int) -> None:
    """原地计算 RSI。

    - 前 `period` 个价差的简单均值作为初始 avg gain/loss，RSI 首次写在下标 `period`；
    - 之后按 Wilder 平滑：avg = (avg * (period - 1) + 新值) / period；
    - avg loss 为 0 时 RSI 为 100；
    - 前 `period` 根 K 线的 RSI 置为 None；
    - K 线数量不足 `period + 1` 时不做任何修改。
    """
    if len(candles) < period + 1:
        _LOGGER.debug("RSI skipped: %s candles < period + 1 (%s)", len(candles), period + 1)
        return

    close = pd.Series([c.close for c in candles], dtype=float)
    delta = close.diff()
    avg_gain = _wilder_average(delta.clip(lower=0.0), period)
    avg_loss = _wilder_average((-delta).clip(lower=0.0), period)

    rs = avg_gain / avg_loss
    rsi = (100.0 - (100.0 / (1.0 + rs))).where(avg_loss != 0, 100.0)

    for c in candles[:period]:
        c.rsi = None
    for c, value in zip(candles[period:], rsi.tolist()):
        c.rsi = float(value)


@dataclass(frozen=True)
class RSIFactor:
    """相对强弱指数（RSI，Wilder 版本）。"""

    period: int = 14
    name: str = "rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("RSI period must be > 0")
        object.__setattr__(self, "params", {"period": self.period})

    def compute(self, candles: list[Candle]) -> list[Candle]:
        compute_rsi(candles, self.period)
        return candles
