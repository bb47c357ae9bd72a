"""仓位 PnL 计算（百分比口径）。

约定：PnL 以“占名义存款的百分比”表示：
    pnl% = (有利价差 / 均价) * 100 * 仓位占比
仓位占比只有两档：未加仓 25%，加仓后 50%。
"""

from __future__ import annotations

import math

from shared.models.models import Direction, Position

BASE_POSITION_FRACTION = 0.25
AVERAGED_POSITION_FRACTION = 0.5


def average_entry_price(position: Position) -> float:
    """开仓均价：未加仓为开仓价，加仓后为两次成交价的中点。"""
    if position.has_averaging:
        if position.averaging_price is None:
            raise ValueError(f"Averaged {position.direction.value} position has no averaging price")
        return (position.entry_price + position.averaging_price) / 2
    return position.entry_price


def position_fraction(position: Position) -> float:
    return AVERAGED_POSITION_FRACTION if position.has_averaging else BASE_POSITION_FRACTION


def favorable_delta(direction: Direction, avg_price: float, price: float) -> float:
    """有利方向的价差：多头 price - avg，空头 avg - price。"""
    if direction is Direction.LONG:
        return price - avg_price
    return avg_price - price


def pnl_percent(direction: Direction, avg_price: float, price: float, fraction: float) -> float:
    """计算毛 PnL%。

    Raises
    ------
    ValueError
        均价非正或非有限值（不允许 NaN 流入阈值比较）。
    """
    if not math.isfinite(avg_price) or avg_price <= 0:
        raise ValueError(f"Invalid average price for PnL computation: {avg_price!r}")
    return (favorable_delta(direction, avg_price, price) / avg_price) * 100 * fraction


def commission_for(fraction: float, commission_percent: float) -> float:
    """按仓位档位折算的手续费（百分比口径）。"""
    return commission_percent * fraction


def position_pnl(position: Position, price: float) -> float:
    """按当前价格计算持仓的毛 PnL%。"""
    return pnl_percent(
        position.direction,
        average_entry_price(position),
        price,
        position_fraction(position),
    )


def net_unrealized_pnl(position: Position | None, commission_percent: float) -> float:
    """持仓的浮动 PnL 扣除按档位折算的手续费；无持仓返回 0。"""
    if position is None:
        return 0.0
    return position.unrealized_pnl_percent - commission_for(position_fraction(position), commission_percent)


def adverse_move_percent(position: Position, price: float) -> float:
    """相对开仓价的不利波动百分比（正数表示亏损方向）。"""
    entry = position.entry_price
    if not math.isfinite(entry) or entry <= 0:
        raise ValueError(f"Invalid entry price for PnL computation: {entry!r}")
    return (-favorable_delta(position.direction, entry, price) / entry) * 100
