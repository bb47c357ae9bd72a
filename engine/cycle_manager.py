"""交易周期管理（CycleManager）。

职责：
- 持有“当前活跃周期”，同一时刻至多一个活跃周期；
- 已实现 PnL 永远从周期内已平仓记录重新求和，浮动 PnL 每次评估重算；
- 按总 PnL（已实现 + 浮动）判断并执行强制平仓；
- 追加结构化的周期事件日志（渲染交给外部）。

周期内交易列表采用“开仓追加、平仓按 (开仓时间, 开仓价) 定位原地覆盖”的槽位模式。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from shared.models.models import Candle, Cycle, CycleAction, CycleLogEntry, Direction, Position
from shared.utils.logging import setup_logger
from strategy.position_engine import close_position
from utils.pnl import net_unrealized_pnl

DEFAULT_FORCE_CLOSE_REASON = "PROFIT_THRESHOLD_REACHED"

_CLOSE_ACTIONS = {
    CycleAction.LONG_CLOSED,
    CycleAction.SHORT_CLOSED,
    CycleAction.FORCE_CLOSE,
    CycleAction.CYCLE_END,
}


@dataclass(frozen=True)
class CyclePnlCheck:
    """一次周期 PnL 评估的结果。"""

    realized_pnl: float
    unrealized_pnl: float
    total: float
    should_force_close: bool
    threshold: float


@dataclass(frozen=True)
class CycleStats:
    cycle_number: int
    realized_pnl: float
    trades_count: int
    is_active: bool


def _now_display() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def describe_open_positions(open_long: Position | None, open_short: Position | None) -> str:
    parts = [p.describe() for p in (open_long, open_short) if p is not None]
    return " | ".join(parts) if parts else "none"


class CycleManager:
    """周期管理器。

    Parameters
    ----------
    profit_threshold:
        周期总 PnL（百分比）严格超过该值时强制平仓。
    commission_percent:
        每个仓位档位单位的手续费百分比，用于浮动 PnL 折算与强制平仓。
    """

    def __init__(self, profit_threshold: float = 0.5, commission_percent: float = 0.0):
        self.logger = setup_logger("cycle-manager")
        self._profit_threshold = float(profit_threshold)
        self.commission_percent = float(commission_percent)
        self._cycles: list[Cycle] = []
        self._next_id = 0

    @property
    def profit_threshold(self) -> float:
        return self._profit_threshold

    def reset(self) -> None:
        """清空所有周期并重置编号。"""
        self._cycles = []
        self._next_id = 0

    def _new_cycle(self, start_time: str) -> Cycle:
        self._next_id += 1
        cycle = Cycle(id=self._next_id, start_time=start_time)
        self._cycles.append(cycle)
        return cycle

    def _active_cycle(self) -> Cycle | None:
        for cycle in self._cycles:
            if cycle.is_active:
                return cycle
        return None

    def get_current_cycle(self) -> Cycle:
        """返回唯一活跃周期；不存在时惰性创建（此时没有 K 线时间可用，用当前时间）。"""
        cycle = self._active_cycle()
        if cycle is None:
            cycle = self._new_cycle(_now_display())
        return cycle

    def get_all_cycles(self) -> list[Cycle]:
        return list(self._cycles)

    def get_current_cycle_stats(self) -> CycleStats:
        cycle = self.get_current_cycle()
        return CycleStats(
            cycle_number=cycle.id,
            realized_pnl=cycle.realized_pnl,
            trades_count=cycle.trade_count,
            is_active=cycle.is_active,
        )

    # ---- PnL ----

    @staticmethod
    def recompute_realized(cycle: Cycle) -> float:
        """已实现 PnL = 周期内所有已平仓记录 pnl_percent 之和。"""
        cycle.realized_pnl = sum(
            t.pnl_percent or 0.0 for t in cycle.long_trades + cycle.short_trades if t.exit_time is not None
        )
        return cycle.realized_pnl

    def check_cycle_pnl(
        self,
        open_long: Position | None,
        open_short: Position | None,
        current_candle: Candle | None = None,
    ) -> CyclePnlCheck:
        """重算当前周期已实现/浮动 PnL 并判断是否需要强制平仓。

        多次调用（状态不变时）结果一致。`current_candle` 仅用于调试日志。
        """
        cycle = self.get_current_cycle()
        realized = self.recompute_realized(cycle)
        unrealized = net_unrealized_pnl(open_long, self.commission_percent) + net_unrealized_pnl(
            open_short, self.commission_percent
        )
        cycle.unrealized_pnl = unrealized
        total = realized + unrealized
        should_force_close = total > self._profit_threshold
        if should_force_close and current_candle is not None:
            self.logger.debug(
                "Cycle %s over threshold at %s: %.4f%% realized + %.4f%% unrealized > %.4f%%",
                cycle.id,
                current_candle.display_time,
                realized,
                unrealized,
                self._profit_threshold,
            )
        return CyclePnlCheck(
            realized_pnl=realized,
            unrealized_pnl=unrealized,
            total=total,
            should_force_close=should_force_close,
            threshold=self._profit_threshold,
        )

    # ---- 交易记录 ----

    def add_trade(self, position: Position) -> None:
        """开仓：追加到当前周期对应方向列表。"""
        self.get_current_cycle().trades_for(position.direction).append(position)

    def _replace_open_record(self, cycle: Cycle, open_position: Position, closed: Position) -> bool:
        trades = cycle.trades_for(open_position.direction)
        for idx, t in enumerate(trades):
            if t.key == open_position.key and t.exit_time is None:
                trades[idx] = closed
                return True
        self.logger.error(
            "Cycle %s: open %s record not found (entry %s @ %s); closed trade not recorded",
            cycle.id,
            open_position.direction.value,
            open_position.entry_time,
            open_position.entry_price,
        )
        return False

    def record_closed_trade(self, open_position: Position, closed: Position) -> None:
        """常规平仓：用已平仓记录覆盖周期内对应开仓记录，并重算已实现 PnL。"""
        cycle = self.get_current_cycle()
        self._replace_open_record(cycle, open_position, closed)
        self.recompute_realized(cycle)

    def force_close_cycle(
        self,
        open_long: Position | None,
        open_short: Position | None,
        current_candle: Candle,
        reason: str = DEFAULT_FORCE_CLOSE_REASON,
        commission_percent: float | None = None,
    ) -> tuple[Position | None, Position | None]:
        """按当前收盘价平掉所有持仓并结束当前周期。

        Returns
        -------
        tuple
            (closed_long, closed_short)，未持仓的一侧为 None。
        """
        commission = self.commission_percent if commission_percent is None else commission_percent
        cycle = self.get_current_cycle()

        closed: dict[Direction, Position | None] = {Direction.LONG: None, Direction.SHORT: None}
        slots = ((open_long, open_short), (open_short, open_long))
        for position, opposite in slots:
            if position is None:
                continue
            record = close_position(position, current_candle, reason, commission, opposite)
            self._replace_open_record(cycle, position, record)
            closed[position.direction] = record

        realized = self.recompute_realized(cycle)
        cycle.unrealized_pnl = 0.0

        for record in closed.values():
            if record is None:
                continue
            action = CycleAction.LONG_CLOSED if record.direction is Direction.LONG else CycleAction.SHORT_CLOSED
            self.log_cycle_event(
                action,
                f"{reason}: {record.entry_price} -> {record.exit_price} | PnL {record.pnl_percent:.2f}%",
                price=record.exit_price,
                pnl=record.pnl_percent,
                time=current_candle.display_time,
            )
        self.log_cycle_event(
            CycleAction.FORCE_CLOSE,
            f"{reason}: cycle PnL {realized:.2f}% > {self._profit_threshold}%",
            price=current_candle.close,
            pnl=realized,
            time=current_candle.display_time,
        )

        cycle.is_active = False
        cycle.end_time = current_candle.display_time
        cycle.force_closed = True
        cycle.final_pnl = realized
        cycle.logs.append(
            CycleLogEntry(
                timestamp=current_candle.display_time,
                action=CycleAction.CYCLE_END,
                details=f"Cycle {cycle.id} force closed",
                price=current_candle.close,
                pnl=realized,
                cycle_pnl=realized,
                open_positions="none",
            )
        )
        return closed[Direction.LONG], closed[Direction.SHORT]

    # ---- 周期生命周期 ----

    def end_cycle(self, candle: Candle) -> Cycle | None:
        """自然结束当前活跃周期（无活跃周期时返回 None）。"""
        cycle = self._active_cycle()
        if cycle is None:
            return None
        self.log_cycle_event(CycleAction.CYCLE_END, f"Cycle {cycle.id} ended", time=candle.display_time)
        cycle.is_active = False
        cycle.end_time = candle.display_time
        return cycle

    def start_new_cycle(self, current_candle: Candle) -> Cycle:
        """先结束仍活跃的周期，再以新编号开启下一个周期。"""
        self.end_cycle(current_candle)
        cycle = self._new_cycle(current_candle.display_time)
        self.log_cycle_event(
            CycleAction.CYCLE_START,
            f"Cycle {cycle.id} started",
            price=current_candle.close,
            time=current_candle.display_time,
        )
        return cycle

    # ---- 事件日志 ----

    def log_cycle_event(
        self,
        action: CycleAction,
        details: str,
        price: float | None = None,
        pnl: float | None = None,
        open_long: Position | None = None,
        open_short: Position | None = None,
        time: str | None = None,
    ) -> CycleLogEntry:
        """向当前周期追加一条事件；平仓类事件先重算已实现 PnL 再记录。"""
        cycle = self._active_cycle() or self.get_current_cycle()
        if action in _CLOSE_ACTIONS:
            self.recompute_realized(cycle)
        if time is None:
            ref = open_long or open_short
            time = ref.current_time if ref is not None else None
        entry = CycleLogEntry(
            timestamp=time if time is not None else _now_display(),
            action=action,
            details=details,
            price=price,
            pnl=pnl,
            cycle_pnl=cycle.realized_pnl,
            open_positions=describe_open_positions(open_long, open_short),
        )
        cycle.logs.append(entry)
        return entry
