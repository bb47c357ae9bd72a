from __future__ import annotations

import logging

from engine.cycle_manager import CycleManager
from shared.models.models import Candle, CycleAction, Direction, Position
from strategy.position_engine import close_position


def _c(i: int, close: float) -> Candle:
    return Candle(
        timestamp=i * 3_600_000,
        open=close,
        high=close,
        low=close,
        close=close,
        volume=1.0,
        display_time=f"2024-01-01 {i:02d}:00:00",
        rsi=50.0,
        ema=close,
    )


def _open(direction: Direction, i: int, price: float = 100.0) -> Position:
    return Position(
        direction=direction,
        entry_time=f"2024-01-01 {i:02d}:00:00",
        entry_price=price,
        entry_ema=price,
        entry_rsi=50.0,
        average_price=price,
    )


def test_check_cycle_pnl_is_idempotent():
    cm = CycleManager(profit_threshold=0.5)
    cm.start_new_cycle(_c(0, 100))
    long = _open(Direction.LONG, 1)
    cm.add_trade(long)
    long.unrealized_pnl_percent = 0.2

    first = cm.check_cycle_pnl(long, None)
    second = cm.check_cycle_pnl(long, None)
    assert first == second
    assert not first.should_force_close


def test_closed_profit_plus_open_profit_triggers_force_close():
    cm = CycleManager(profit_threshold=0.5)
    cm.start_new_cycle(_c(0, 100))

    long = _open(Direction.LONG, 1)
    cm.add_trade(long)
    closed = close_position(long, _c(2, 101.2), "EMA_TOUCH_WITH_PROFIT", 0.0)
    cm.record_closed_trade(long, closed)
    assert abs(cm.get_current_cycle().realized_pnl - 0.3) < 1e-9

    short = _open(Direction.SHORT, 3)
    cm.add_trade(short)
    short.unrealized_pnl_percent = 0.25

    check = cm.check_cycle_pnl(None, short)
    assert abs(check.total - 0.55) < 1e-9
    assert check.should_force_close


def test_threshold_is_strictly_greater():
    cm = CycleManager(profit_threshold=0.25)
    cm.start_new_cycle(_c(0, 100))
    long = _open(Direction.LONG, 1)
    cm.add_trade(long)
    long.unrealized_pnl_percent = 0.25
    assert not cm.check_cycle_pnl(long, None).should_force_close


def test_record_closed_trade_overwrites_in_place():
    cm = CycleManager()
    cm.start_new_cycle(_c(0, 100))
    first = _open(Direction.LONG, 1, 100.0)
    cm.add_trade(first)
    cm.record_closed_trade(first, close_position(first, _c(2, 101), "EMA_TOUCH_WITH_PROFIT", 0.0))
    second = _open(Direction.LONG, 3, 99.0)
    cm.add_trade(second)

    cycle = cm.get_current_cycle()
    assert len(cycle.long_trades) == 2
    assert cycle.long_trades[0].exit_time == "2024-01-01 02:00:00"
    assert cycle.long_trades[1].exit_time is None
    assert abs(cycle.realized_pnl - 0.25) < 1e-9


def test_missing_open_record_is_logged_and_skipped(caplog):
    cm = CycleManager()
    cm.start_new_cycle(_c(0, 100))
    stray = _open(Direction.SHORT, 1)

    with caplog.at_level(logging.ERROR, logger="cycle-manager"):
        cm.record_closed_trade(stray, close_position(stray, _c(2, 99), "EMA_TOUCH_WITH_PROFIT", 0.0))

    assert "record not found" in caplog.text
    cycle = cm.get_current_cycle()
    assert cycle.short_trades == []
    assert cycle.realized_pnl == 0.0


def test_force_close_cycle_closes_both_slots_and_ends_cycle():
    cm = CycleManager(profit_threshold=0.5)
    cm.start_new_cycle(_c(0, 100))
    long = _open(Direction.LONG, 1)
    short = _open(Direction.SHORT, 2)
    cm.add_trade(long)
    cm.add_trade(short)

    closed_long, closed_short = cm.force_close_cycle(long, short, _c(3, 101), "CYCLE_PROFIT_THRESHOLD_REACHED")
    assert closed_long.reason == "CYCLE_PROFIT_THRESHOLD_REACHED"
    assert abs(closed_long.pnl_percent - 0.25) < 1e-9
    assert abs(closed_short.pnl_percent + 0.25) < 1e-9
    assert closed_long.opposite_on_exit.entry_time == short.entry_time

    cycle = cm.get_all_cycles()[0]
    assert not cycle.is_active
    assert cycle.force_closed
    assert cycle.end_time == "2024-01-01 03:00:00"
    assert abs(cycle.final_pnl) < 1e-9
    assert [t.exit_time for t in cycle.long_trades + cycle.short_trades] == ["2024-01-01 03:00:00"] * 2

    actions = [e.action for e in cycle.logs]
    assert actions[0] is CycleAction.CYCLE_START
    assert actions[-3:] == [CycleAction.SHORT_CLOSED, CycleAction.FORCE_CLOSE, CycleAction.CYCLE_END]
    assert CycleAction.LONG_CLOSED in actions


def test_force_close_with_single_open_slot():
    cm = CycleManager()
    cm.start_new_cycle(_c(0, 100))
    short = _open(Direction.SHORT, 1)
    cm.add_trade(short)
    closed_long, closed_short = cm.force_close_cycle(None, short, _c(2, 99))
    assert closed_long is None
    assert closed_short.reason == "PROFIT_THRESHOLD_REACHED"


def test_start_new_cycle_ends_previous_one():
    cm = CycleManager()
    first = cm.start_new_cycle(_c(0, 100))
    second = cm.start_new_cycle(_c(5, 100))
    assert (first.id, second.id) == (1, 2)
    assert not first.is_active
    assert first.end_time == "2024-01-01 05:00:00"
    assert first.logs[-1].action is CycleAction.CYCLE_END
    assert second.is_active
    assert [c.id for c in cm.get_all_cycles() if c.is_active] == [2]


def test_get_current_cycle_is_created_lazily_and_reset_clears():
    cm = CycleManager()
    cycle = cm.get_current_cycle()
    assert cycle.id == 1 and cycle.is_active
    assert cm.get_current_cycle() is cycle

    stats = cm.get_current_cycle_stats()
    assert stats.cycle_number == 1 and stats.trades_count == 0 and stats.is_active

    cm.reset()
    assert cm.get_all_cycles() == []
    assert cm.get_current_cycle().id == 1


def test_log_cycle_event_snapshots_state():
    cm = CycleManager()
    cm.start_new_cycle(_c(0, 100))
    long = _open(Direction.LONG, 1)
    long.current_time = "2024-01-01 01:00:00"
    cm.add_trade(long)

    entry = cm.log_cycle_event(CycleAction.LONG_ENTRY, "Entry", price=100.0, pnl=0.0, open_long=long)
    assert entry.timestamp == "2024-01-01 01:00:00"
    assert entry.open_positions.startswith("LONG@100.0")
    assert entry.cycle_pnl == 0.0
    assert cm.get_current_cycle().logs[-1] is entry


def test_log_timestamps_come_from_candle_even_when_blank():
    def _run() -> list[str]:
        cm = CycleManager()
        blank = Candle(timestamp=0, open=100, high=100, low=100, close=100, volume=1.0, rsi=50.0, ema=100.0)
        cm.start_new_cycle(blank)
        cm.start_new_cycle(blank)
        return [e.timestamp for c in cm.get_all_cycles() for e in c.logs] + [c.start_time for c in cm.get_all_cycles()]

    stamps = _run()
    assert stamps == [""] * len(stamps)
    assert _run() == stamps
