"""时间分仓回放（TimeShiftRunner）。

把存款拆成 N 份，第 k 份从首根 K 线起偏移 (k-1) * interval 天入场；
每份在自己的 K 线切片上独立完整回放（不缩放，按 100% 名义计算），
汇总时再按 1/N 的权重缩放 PnL，计数类指标直接求和。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from engine.combined_runner import CombinedStrategyRunner, RunResult
from shared.config.schema import StrategyParameters, TimeShiftParameters
from shared.models.models import Candle
from shared.utils.logging import setup_logger

MS_PER_DAY = 24 * 60 * 60 * 1000
MIN_TRAILING_CANDLES = 10


@dataclass
class DepositPartResult:
    """单份存款的回放结果（未缩放）。"""

    part_id: int
    start_offset_days: float
    actual_start_index: int
    actual_start_time: str
    strategy_results: RunResult
    deposit_fraction: float


@dataclass
class TimeShiftResult:
    """分仓汇总结果；PnL 字段已按各份存款占比缩放。"""

    enabled: bool
    params: TimeShiftParameters
    parts: list[DepositPartResult] = field(default_factory=list)
    total_realized_pnl: float = 0.0
    total_unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    weighted_average_return: float = 0.0
    active_parts: int = 0
    total_cycles: int = 0
    total_closed_cycles: int = 0
    total_open_cycles: int = 0
    total_forced_closures: int = 0
    first_entry_time: str = ""
    last_entry_time: str = ""
    total_trading_days: int = 0

    def to_summary(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "deposit_parts": self.params.deposit_parts,
            "entry_interval_days": self.params.entry_interval_days,
            "active_parts": self.active_parts,
            "total_realized_pnl": self.total_realized_pnl,
            "total_unrealized_pnl": self.total_unrealized_pnl,
            "total_pnl": self.total_pnl,
            "weighted_average_return": self.weighted_average_return,
            "total_cycles": self.total_cycles,
            "total_closed_cycles": self.total_closed_cycles,
            "total_open_cycles": self.total_open_cycles,
            "total_forced_closures": self.total_forced_closures,
            "first_entry_time": self.first_entry_time,
            "last_entry_time": self.last_entry_time,
            "total_trading_days": self.total_trading_days,
            "parts": [
                {
                    "part_id": p.part_id,
                    "start_offset_days": p.start_offset_days,
                    "actual_start_index": p.actual_start_index,
                    "actual_start_time": p.actual_start_time,
                    "deposit_fraction": p.deposit_fraction,
                    **p.strategy_results.to_summary(),
                }
                for p in self.parts
            ],
        }


def find_start_index(candles: list[Candle], offset_days: float) -> int:
    """第一根时间戳 >= 首根 + offset 的 K 线下标；找不到时返回最后一根。"""
    if offset_days == 0:
        return 0
    target = candles[0].timestamp + offset_days * MS_PER_DAY
    for i, c in enumerate(candles):
        if c.timestamp >= target:
            return i
    return len(candles) - 1


def trading_days(candles: list[Candle]) -> int:
    if len(candles) < 2:
        return 0
    span = abs(candles[-1].timestamp - candles[0].timestamp)
    return math.ceil(span / MS_PER_DAY)


class TimeShiftRunner:
    """时间分仓回放器。

    Parameters
    ----------
    strategy_params:
        策略参数（各份共用）。
    time_shift_params:
        分仓参数；`enabled=False` 时退化为一次全量回放。
    """

    def __init__(
        self,
        strategy_params: StrategyParameters,
        time_shift_params: TimeShiftParameters,
        *,
        record_signals: bool = False,
    ):
        self.strategy_params = strategy_params
        self.params = time_shift_params
        self.record_signals = record_signals
        self.logger = setup_logger("time-shift")

    def _run_slice(self, candles: list[Candle]) -> RunResult:
        # 每份使用独立 runner/CycleManager，各份之间无共享可变状态
        return CombinedStrategyRunner(self.strategy_params, record_signals=self.record_signals).run(candles)

    def run(self, candles: list[Candle]) -> TimeShiftResult:
        if not candles:
            raise ValueError("candles must not be empty")
        if not self.params.enabled:
            return self._run_single(candles)
        return self._run_shifted(candles)

    def _run_single(self, candles: list[Candle]) -> TimeShiftResult:
        result = self._run_slice(candles)
        part = DepositPartResult(
            part_id=1,
            start_offset_days=0,
            actual_start_index=0,
            actual_start_time=candles[0].display_time,
            strategy_results=result,
            deposit_fraction=1.0,
        )
        return self._aggregate([part], candles, enabled=False)

    def _run_shifted(self, candles: list[Candle]) -> TimeShiftResult:
        n_parts = self.params.deposit_parts
        fraction = 1 / n_parts
        self.logger.info(
            "Time-shifted backtest: %s parts, every %s days, %.1f%% each",
            n_parts,
            self.params.entry_interval_days,
            fraction * 100,
        )

        parts: list[DepositPartResult] = []
        for part_id in range(1, n_parts + 1):
            offset = (part_id - 1) * self.params.entry_interval_days
            start_index = find_start_index(candles, offset)
            if start_index >= len(candles) - MIN_TRAILING_CANDLES:
                self.logger.info(
                    "Part %s skipped: start index %s too close to end (%s candles)",
                    part_id,
                    start_index,
                    len(candles),
                )
                continue

            part_candles = candles[start_index:]
            self.logger.info(
                "Part %s: start index %s (%s), %s candles",
                part_id,
                start_index,
                part_candles[0].display_time,
                len(part_candles),
            )
            result = self._run_slice(part_candles)
            parts.append(
                DepositPartResult(
                    part_id=part_id,
                    start_offset_days=offset,
                    actual_start_index=start_index,
                    actual_start_time=part_candles[0].display_time,
                    strategy_results=result,
                    deposit_fraction=fraction,
                )
            )

        if not parts:
            raise RuntimeError(
                f"No active deposit parts: all {n_parts} parts start within "
                f"{MIN_TRAILING_CANDLES} candles of the end of data"
            )
        return self._aggregate(parts, candles, enabled=True)

    def _aggregate(self, parts: list[DepositPartResult], candles: list[Candle], *, enabled: bool) -> TimeShiftResult:
        realized = sum(p.strategy_results.total_realized_pnl * p.deposit_fraction for p in parts)
        unrealized = sum(p.strategy_results.total_unrealized_pnl * p.deposit_fraction for p in parts)
        total = realized + unrealized
        entry_times = sorted(p.actual_start_time for p in parts)

        result = TimeShiftResult(
            enabled=enabled,
            params=self.params,
            parts=parts,
            total_realized_pnl=realized,
            total_unrealized_pnl=unrealized,
            total_pnl=total,
            # 各份权重相同，加权平均收益即总 PnL
            weighted_average_return=total,
            active_parts=len(parts),
            total_cycles=sum(len(p.strategy_results.cycles) for p in parts),
            total_closed_cycles=sum(
                sum(1 for c in p.strategy_results.cycles if not c.is_active) for p in parts
            ),
            total_open_cycles=sum(sum(1 for c in p.strategy_results.cycles if c.is_active) for p in parts),
            total_forced_closures=sum(p.strategy_results.forced_closures for p in parts),
            first_entry_time=entry_times[0],
            last_entry_time=entry_times[-1],
            total_trading_days=trading_days(candles),
        )
        if enabled:
            self.logger.info(
                "Time-shifted backtest done: %s/%s parts, total PnL %.3f%%, %s cycles (%s closed), %s forced",
                result.active_parts,
                self.params.deposit_parts,
                result.total_pnl,
                result.total_cycles,
                result.total_closed_cycles,
                result.total_forced_closures,
            )
        return result
