"""核心数据结构：Candle/Position/Cycle 及周期事件日志。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Direction(str, Enum):
    """持仓方向。"""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class CycleAction(str, Enum):
    """周期事件类型。"""

    CYCLE_START = "CYCLE_START"
    LONG_ENTRY = "LONG_ENTRY"
    SHORT_ENTRY = "SHORT_ENTRY"
    LONG_AVERAGING = "LONG_AVERAGING"
    SHORT_AVERAGING = "SHORT_AVERAGING"
    LONG_CLOSED = "LONG_CLOSED"
    SHORT_CLOSED = "SHORT_CLOSED"
    FORCE_CLOSE = "FORCE_CLOSE"
    CYCLE_END = "CYCLE_END"


@dataclass
class Candle:
    """K 线数据。

    `rsi`/`ema` 由因子层原地写入；预热期内 RSI 为 None。
    `timestamp` 为毫秒时间戳，`display_time` 由数据层格式化。
    """

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    display_time: str = ""
    rsi: float | None = None
    ema: float | None = None

    @property
    def has_indicators(self) -> bool:
        return self.rsi is not None and self.ema is not None


@dataclass(frozen=True)
class PositionSnapshot:
    """对向仓位在开/平仓时刻的快照（审计用）。"""

    entry_price: float
    entry_time: str
    has_averaging: bool
    unrealized_pnl: float | None = None


@dataclass
class Position:
    """单方向持仓。

    开仓时创建；加仓与逐根 K 线盯市时原地更新；平仓后由周期持有且不再修改。
    所有 PnL 字段单位为“占名义存款的百分比”。
    """

    direction: Direction
    entry_time: str
    entry_price: float
    entry_ema: float
    entry_rsi: float
    has_averaging: bool = False
    averaging_price: float | None = None
    averaging_time: str | None = None
    averaging_ema: float | None = None
    exit_time: str | None = None
    exit_price: float | None = None
    exit_ema: float | None = None
    average_price: float | None = None
    position_size_fraction: float = 0.25
    gross_pnl_percent: float | None = None
    commission_rate: float | None = None
    commission_amount: float | None = None
    pnl_percent: float | None = None
    reason: str | None = None
    current_price: float | None = None
    current_time: str | None = None
    unrealized_pnl_percent: float = 0.0
    opposite_on_entry: PositionSnapshot | None = None
    opposite_on_exit: PositionSnapshot | None = None

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    @property
    def key(self) -> tuple[str, float]:
        """周期内定位记录用的稳定标识（开仓时间 + 开仓价）。"""
        return (self.entry_time, self.entry_price)

    def snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            entry_price=self.entry_price,
            entry_time=self.entry_time,
            has_averaging=self.has_averaging,
            unrealized_pnl=self.unrealized_pnl_percent,
        )

    def describe(self) -> str:
        avg = " avg" if self.has_averaging else ""
        return f"{self.direction.value}@{self.entry_price}{avg} ({self.unrealized_pnl_percent:+.2f}%)"


@dataclass(frozen=True)
class CycleLogEntry:
    """周期事件日志条目（只追加）。"""

    timestamp: str
    action: CycleAction
    details: str
    price: float | None
    pnl: float | None
    cycle_pnl: float
    open_positions: str


@dataclass
class Cycle:
    """交易周期：多空两个槽位的一段连续交易。

    `realized_pnl` 永远由已平仓记录重新求和得到，不做增量累加。
    """

    id: int
    start_time: str
    end_time: str | None = None
    long_trades: list[Position] = field(default_factory=list)
    short_trades: list[Position] = field(default_factory=list)
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    is_active: bool = True
    force_closed: bool = False
    final_pnl: float | None = None
    logs: list[CycleLogEntry] = field(default_factory=list)

    def trades_for(self, direction: Direction) -> list[Position]:
        return self.long_trades if direction is Direction.LONG else self.short_trades

    @property
    def all_trades(self) -> list[Position]:
        return sorted(self.long_trades + self.short_trades, key=lambda t: t.entry_time)

    @property
    def trade_count(self) -> int:
        return len(self.long_trades) + len(self.short_trades)

    @property
    def total_pnl(self) -> float:
        return self.realized_pnl + (self.unrealized_pnl if self.is_active else 0.0)
