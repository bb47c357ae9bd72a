"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from shared.models.models import Candle
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("factor-ema")


def compute_ema(candles: list[Candle], period: int) -> None:
    """原地计算 EMA：下标 0 以收盘价为种子，此后无预热缺口。"""
    if not candles:
        _LOGGER.debug("EMA skipped: no candles")
        return

    # span=period 即 multiplier = 2 / (period + 1)；adjust=False 时首值即 close[0]
    ema = pd.Series([c.close for c in candles], dtype=float).ewm(span=period, adjust=False).mean()
    for c, value in zip(candles, ema.tolist()):
        c.ema = float(value)


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA）。"""

    period: int = 14
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(self, "params", {"period": self.period})

    def compute(self, candles: list[Candle]) -> list[Candle]:
        compute_ema(candles, self.period)
        return candles
