"""入场条件与审计信号。"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import ReversalMode
from shared.models.models import Direction


def check_rsi_reversal(
    mode: ReversalMode,
    direction: Direction,
    rsi_current: float,
    rsi_prev1: float,
    rsi_prev2: float,
    oversold: float,
    overbought: float,
) -> bool:
    """RSI 反转确认。

    区间条件看前一根：多头要求 prev1 < oversold，空头要求 prev1 > overbought。
    - strict：当前与前一步 RSI 都朝反转方向严格变化；
    - relaxed：只要求最近一步；
    - zone_only：只看区间。
    """
    if direction is Direction.LONG:
        in_zone = rsi_prev1 < oversold
        last_step = rsi_current > rsi_prev1
        prior_step = rsi_prev1 > rsi_prev2
    else:
        in_zone = rsi_prev1 > overbought
        last_step = rsi_current < rsi_prev1
        prior_step = rsi_prev1 < rsi_prev2

    if mode == "strict":
        return in_zone and last_step and prior_step
    if mode == "relaxed":
        return in_zone and last_step
    if mode == "zone_only":
        return in_zone
    raise ValueError(f"Unknown RSI reversal mode: {mode}")


def check_ema_distance(direction: Direction, close: float, ema: float, distance_percent: float) -> bool:
    """EMA 距离过滤：多头要求 EMA 高于收盘价至少 distance%，空头反之。"""
    if direction is Direction.LONG:
        return ema > close * (1 + distance_percent / 100)
    return ema < close * (1 - distance_percent / 100)


@dataclass(frozen=True)
class EntrySignal:
    """单根 K 线上某方向的入场判定明细。"""

    direction: Direction
    timestamp: int
    time: str
    close: float
    ema: float
    rsi_current: float
    rsi_prev1: float
    rsi_prev2: float
    reversal_ok: bool
    distance_ok: bool
    has_open_position: bool

    @property
    def can_enter(self) -> bool:
        return not self.has_open_position and self.reversal_ok and self.distance_ok


@dataclass(frozen=True)
class AveragingSignal:
    """加仓事件明细。"""

    direction: Direction
    original_entry_price: float
    original_entry_time: str
    averaging_price: float
    averaging_time: str
    price_change_percent: float
    new_average_price: float
    ema: float
    rsi: float
