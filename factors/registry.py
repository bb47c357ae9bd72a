"""因子注册表：字符串 -> 因子实现。"""

from __future__ import annotations

from typing import Any

from factors.base import Factor
from factors.ema import EMAFactor
from factors.rsi import RSIFactor
from shared.config.schema import StrategyParameters
from shared.models.models import Candle

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def build_factors(cfg: Any) -> list[Factor]:
    """从配置构建因子列表。

    支持形态：
    - factors: [{name: "rsi", params: {...}}, ...]
    - 直接传入 list[dict]
    """
    if cfg is None:
        return []

    items = cfg
    if isinstance(cfg, dict):
        items = cfg.get("factors") or []
    if not isinstance(items, list):
        raise ValueError("factors config must be a list")

    factors: list[Factor] = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("factor item must be a dict")
        name = str(item.get("name") or item.get("type") or "")
        params = item.get("params") or {}
        if not name:
            raise ValueError("factor item missing name")
        if not isinstance(params, dict):
            raise ValueError("factor params must be a dict")
        cls = get_factor_cls(name)
        factors.append(cls(**params))
    return factors


def apply_factors(candles: list[Candle], factors: list[Factor]) -> list[Candle]:
    for f in factors:
        candles = f.compute(candles)
    return candles


def enrich_candles(candles: list[Candle], params: StrategyParameters) -> list[Candle]:
    """按策略参数写入 RSI/EMA。"""
    factors = build_factors(
        [
            {"name": "rsi", "params": {"period": params.rsi_period}},
            {"name": "ema", "params": {"period": params.ema_period}},
        ]
    )
    return apply_factors(candles, factors)


# 默认注册
register_factor("rsi", RSIFactor)
register_factor("ema", EMAFactor)
