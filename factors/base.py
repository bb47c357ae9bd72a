"""因子（Factors/Indicators）抽象协议。

约定：因子层是“纯计算 + 原地写入”，输入按时间升序的 Candle 列表，
把指标值写到每根 K 线对应字段上，并返回同一个列表便于链式调用。
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from shared.models.models import Candle


class Factor(Protocol):
    """因子协议：`compute(candles) -> candles`。"""

    name: str
    params: Mapping[str, Any]

    def compute(self, candles: list[Candle]) -> list[Candle]:
        """对输入 candles 原地写入因子值并返回 candles。"""
