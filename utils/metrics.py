"""回测绩效指标计算（百分比口径）。"""

from __future__ import annotations

from statistics import mean
from typing import Iterable

from shared.models.models import Cycle, Position


def compute_trade_metrics(trades: Iterable[Position]) -> dict:
    """计算交易维度指标（胜率、盈亏比、最大回撤、交易数）。

    最大回撤基于按输入顺序累加 pnl_percent 得到的收益曲线。
    """
    pnls = [float(t.pnl_percent or 0.0) for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total_trades = len(pnls)
    win_rate = (len(wins) / total_trades * 100) if total_trades else 0.0
    total_profit = sum(wins)
    total_loss_abs = abs(sum(losses))
    profit_factor = (
        (total_profit / total_loss_abs)
        if total_loss_abs > 0
        else (float("inf") if total_profit > 0 else 0.0)
    )

    peak = 0.0
    running = 0.0
    max_dd = 0.0
    for p in pnls:
        running += p
        peak = max(peak, running)
        max_dd = max(max_dd, peak - running)

    return {
        "total_trades": total_trades,
        "win_rate": win_rate,
        "profit_factor": profit_factor,
        "max_drawdown": max_dd,
        "avg_trade_pnl": mean(pnls) if pnls else 0.0,
    }


def compute_cycle_metrics(cycles: list[Cycle]) -> dict:
    """按周期汇总：周期数、已实现/浮动 PnL、平均已结束周期 PnL、强平次数，并合并交易指标。"""
    closed = [c for c in cycles if not c.is_active]
    open_ = [c for c in cycles if c.is_active]
    realized = sum(c.realized_pnl for c in cycles)
    unrealized = sum(c.unrealized_pnl for c in open_)

    closed_trades = [t for c in cycles for t in c.all_trades if t.exit_time is not None]
    trade_metrics = compute_trade_metrics(closed_trades)

    return {
        "total_cycles": len(cycles),
        "closed_cycles": len(closed),
        "open_cycles": len(open_),
        "total_realized_pnl": realized,
        "total_unrealized_pnl": unrealized,
        "total_pnl": realized + unrealized,
        "avg_cycle_pnl": mean(c.realized_pnl for c in closed) if closed else 0.0,
        "forced_closures": sum(1 for c in cycles if c.force_closed),
        **trade_metrics,
    }
