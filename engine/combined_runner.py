"""多空组合策略回放（CombinedStrategyRunner）。

逐根 K 线推进，单根 K 线内的处理顺序固定：
    盯市 -> 周期 PnL 检查/强制平仓 -> 多头出场或加仓 -> 空头出场或加仓 -> 多头入场 -> 空头入场
同一根 K 线上某方向平仓后不会再次入场；强制平仓会消耗掉整根 K 线。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from engine.cycle_manager import CycleManager
from shared.config.schema import StrategyParameters
from shared.models.models import Candle, Cycle, CycleAction, Direction, Position
from shared.utils.logging import setup_logger
from strategy.position_engine import CandleWindow, PositionEngine
from strategy.signals import AveragingSignal, EntrySignal
from utils.pnl import net_unrealized_pnl

FORCE_CLOSE_REASON = "CYCLE_PROFIT_THRESHOLD_REACHED"

_ENTRY_ACTIONS = {Direction.LONG: CycleAction.LONG_ENTRY, Direction.SHORT: CycleAction.SHORT_ENTRY}
_AVERAGING_ACTIONS = {Direction.LONG: CycleAction.LONG_AVERAGING, Direction.SHORT: CycleAction.SHORT_AVERAGING}
_CLOSED_ACTIONS = {Direction.LONG: CycleAction.LONG_CLOSED, Direction.SHORT: CycleAction.SHORT_CLOSED}


@dataclass(frozen=True)
class CycleStat:
    cycle_id: int
    pnl: float
    trades: int
    force_closed: bool


@dataclass
class RunResult:
    """单次回放结果。PnL 字段均为存款百分比。"""

    cycles: list[Cycle]
    closed_trades: list[Position]
    long_closed_trades: list[Position]
    short_closed_trades: list[Position]
    open_long: Position | None
    open_short: Position | None
    total_realized_pnl: float
    total_unrealized_pnl: float
    total_pnl: float
    forced_closures: int
    averaging_signals: list[AveragingSignal] = field(default_factory=list)
    entry_signals: list[EntrySignal] = field(default_factory=list)

    @property
    def cycle_stats(self) -> list[CycleStat]:
        return [
            CycleStat(
                cycle_id=c.id,
                pnl=c.final_pnl if c.final_pnl is not None else c.realized_pnl,
                trades=c.trade_count,
                force_closed=c.force_closed,
            )
            for c in self.cycles
        ]

    def to_summary(self) -> dict[str, Any]:
        return {
            "total_realized_pnl": self.total_realized_pnl,
            "total_unrealized_pnl": self.total_unrealized_pnl,
            "total_pnl": self.total_pnl,
            "forced_closures": self.forced_closures,
            "cycles": len(self.cycles),
            "closed_trades": len(self.closed_trades),
            "long_closed_trades": len(self.long_closed_trades),
            "short_closed_trades": len(self.short_closed_trades),
            "open_long": self.open_long is not None,
            "open_short": self.open_short is not None,
        }


class CombinedStrategyRunner:
    """在一段已计算好 RSI/EMA 的 K 线上回放多空组合策略。

    每次 `run` 都使用独立的 CycleManager，因此同一个 runner 可以被多次调用。

    Parameters
    ----------
    params:
        策略参数。
    record_signals:
        是否收集逐根 K 线的入场判定明细（数据量较大，默认关闭）。
    """

    def __init__(self, params: StrategyParameters, *, record_signals: bool = False):
        self.params = params
        self.record_signals = record_signals
        self.logger = setup_logger("combined-runner")
        self.engines = {d: PositionEngine(d, params) for d in Direction}
        self.cycle_manager = self._new_cycle_manager()

    def _new_cycle_manager(self) -> CycleManager:
        return CycleManager(
            profit_threshold=self.params.cycle_profit_threshold,
            commission_percent=self.params.commission_percent,
        )

    def run(self, candles: list[Candle]) -> RunResult:
        if not candles:
            raise ValueError("candles must not be empty")

        cm = self._new_cycle_manager()
        self.cycle_manager = cm
        slots: dict[Direction, Position | None] = {Direction.LONG: None, Direction.SHORT: None}
        closed_by_dir: dict[Direction, list[Position]] = {Direction.LONG: [], Direction.SHORT: []}
        all_closed: list[Position] = []
        averaging_signals: list[AveragingSignal] = []
        entry_signals: list[EntrySignal] = []
        forced_closures = 0

        def _record_closed(record: Position | None) -> None:
            if record is None:
                return
            closed_by_dir[record.direction].append(record)
            all_closed.append(record)

        def _force_close(candle: Candle, total: float) -> None:
            nonlocal forced_closures
            closed_long, closed_short = cm.force_close_cycle(
                slots[Direction.LONG],
                slots[Direction.SHORT],
                candle,
                FORCE_CLOSE_REASON,
                self.params.commission_percent,
            )
            _record_closed(closed_long)
            _record_closed(closed_short)
            slots[Direction.LONG] = None
            slots[Direction.SHORT] = None
            forced_closures += 1
            self.logger.debug(
                "Cycle forced closure at %s: total %.4f%% > %.4f%%",
                candle.display_time,
                total,
                cm.profit_threshold,
            )
            cm.start_new_cycle(candle)

        cm.start_new_cycle(candles[0])

        for i in range(2, len(candles)):
            window = CandleWindow(candles[i - 2], candles[i - 1], candles[i])
            if not window.is_ready:
                continue
            current = window.current

            for direction, position in slots.items():
                if position is not None:
                    self.engines[direction].mark_to_market(position, current)

            check = cm.check_cycle_pnl(slots[Direction.LONG], slots[Direction.SHORT], current)
            if check.should_force_close:
                _force_close(current, check.total)
                continue

            consumed = False
            closed_now: set[Direction] = set()
            for direction in Direction:
                position = slots[direction]
                if position is None:
                    continue
                engine = self.engines[direction]
                opposite = slots[direction.opposite]
                closed = engine.evaluate_exit(position, window, opposite)
                if closed is None:
                    signal = engine.evaluate_averaging(position, window)
                    if signal is not None:
                        averaging_signals.append(signal)
                        cm.log_cycle_event(
                            _AVERAGING_ACTIONS[direction],
                            f"{signal.original_entry_price} + {signal.averaging_price} = avg "
                            f"{signal.new_average_price:.2f} (move {signal.price_change_percent:.1f}%)",
                            price=signal.averaging_price,
                            open_long=slots[Direction.LONG],
                            open_short=slots[Direction.SHORT],
                            time=current.display_time,
                        )
                    continue

                cm.record_closed_trade(position, closed)
                _record_closed(closed)
                slots[direction] = None
                closed_now.add(direction)
                cm.log_cycle_event(
                    _CLOSED_ACTIONS[direction],
                    f"{closed.entry_price} -> {closed.exit_price} | PnL {closed.pnl_percent:.2f}%",
                    price=closed.exit_price,
                    pnl=closed.pnl_percent,
                    open_long=slots[Direction.LONG],
                    open_short=slots[Direction.SHORT],
                    time=current.display_time,
                )

                post = cm.check_cycle_pnl(slots[Direction.LONG], slots[Direction.SHORT], current)
                if post.should_force_close:
                    _force_close(current, post.total)
                    consumed = True
                    break
            if consumed:
                continue

            for direction in Direction:
                engine = self.engines[direction]
                if slots[direction] is not None:
                    if self.record_signals:
                        entry_signals.append(engine.entry_signal(window, has_open_position=True))
                    continue
                if direction in closed_now:
                    continue
                opened, signal = engine.evaluate_entry(window, slots[direction.opposite])
                if self.record_signals:
                    entry_signals.append(signal)
                if opened is None:
                    continue
                slots[direction] = opened
                cm.add_trade(opened)
                cm.log_cycle_event(
                    _ENTRY_ACTIONS[direction],
                    f"Entry: {current.close} | RSI: {current.rsi:.1f}",
                    price=current.close,
                    pnl=0.0,
                    open_long=slots[Direction.LONG],
                    open_short=slots[Direction.SHORT],
                    time=current.display_time,
                )

        open_long, open_short = slots[Direction.LONG], slots[Direction.SHORT]
        last = candles[-1]
        cycle = cm.get_current_cycle()
        if cycle.is_active and open_long is None and open_short is None:
            cm.end_cycle(last)
        else:
            cm.check_cycle_pnl(open_long, open_short, last)
            self.logger.debug(
                "Cycle %s remains open: long=%s short=%s",
                cycle.id,
                open_long is not None,
                open_short is not None,
            )

        total_realized = sum(t.pnl_percent or 0.0 for t in all_closed)
        total_unrealized = net_unrealized_pnl(open_long, self.params.commission_percent) + net_unrealized_pnl(
            open_short, self.params.commission_percent
        )
        return RunResult(
            cycles=cm.get_all_cycles(),
            closed_trades=all_closed,
            long_closed_trades=closed_by_dir[Direction.LONG],
            short_closed_trades=closed_by_dir[Direction.SHORT],
            open_long=open_long,
            open_short=open_short,
            total_realized_pnl=total_realized,
            total_unrealized_pnl=total_unrealized,
            total_pnl=total_realized + total_unrealized,
            forced_closures=forced_closures,
            averaging_signals=averaging_signals,
            entry_signals=entry_signals,
        )
