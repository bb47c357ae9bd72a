"""单方向持仓状态机（多/空对称）。

状态：NONE -> OPEN -> OPEN_AVERAGED -> CLOSED。
引擎本身不保存持仓，槽位状态由调用方持有并逐根 K 线传入；
平仓产生一份新的已平仓记录，原开仓对象不再被引用。
"""

from __future__ import annotations

from dataclasses import replace
from typing import NamedTuple

from shared.config.schema import StrategyParameters
from shared.models.models import Candle, Direction, Position
from strategy.signals import AveragingSignal, EntrySignal, check_ema_distance, check_rsi_reversal
from utils.pnl import (
    AVERAGED_POSITION_FRACTION,
    BASE_POSITION_FRACTION,
    adverse_move_percent,
    average_entry_price,
    commission_for,
    position_fraction,
    position_pnl,
)

EXIT_REASON_EMA_TOUCH = "EMA_TOUCH_WITH_PROFIT"


class CandleWindow(NamedTuple):
    """当前 K 线及其前两根。"""

    prev2: Candle
    prev1: Candle
    current: Candle

    @property
    def is_ready(self) -> bool:
        """三根 K 线的 RSI/EMA 都已就绪（预热期内返回 False）。"""
        return all(c.has_indicators for c in self)


def close_position(
    position: Position,
    candle: Candle,
    reason: str,
    commission_percent: float,
    opposite: Position | None = None,
) -> Position:
    """按 K 线收盘价生成已平仓记录（常规平仓与强制平仓共用同一公式）。"""
    fraction = position_fraction(position)
    gross = position_pnl(position, candle.close)
    commission = commission_for(fraction, commission_percent)
    return replace(
        position,
        exit_time=candle.display_time,
        exit_price=candle.close,
        exit_ema=candle.ema,
        average_price=average_entry_price(position),
        position_size_fraction=fraction,
        gross_pnl_percent=gross,
        commission_rate=commission_percent,
        commission_amount=commission,
        pnl_percent=gross - commission,
        reason=reason,
        current_price=candle.close,
        current_time=candle.display_time,
        opposite_on_exit=opposite.snapshot() if opposite is not None else None,
    )


class PositionEngine:
    """单方向的入场/加仓/出场判定。

    Parameters
    ----------
    direction:
        LONG 或 SHORT；两者只在价差符号、RSI 区间与 EMA 穿越方向上不同。
    params:
        策略参数。
    """

    def __init__(self, direction: Direction, params: StrategyParameters):
        self.direction = direction
        self.params = params

    # ---- 入场 ----

    def entry_signal(self, window: CandleWindow, *, has_open_position: bool = False) -> EntrySignal:
        cur, prev1, prev2 = window.current, window.prev1, window.prev2
        p = self.params
        reversal_ok = check_rsi_reversal(
            p.rsi_reversal_mode,
            self.direction,
            cur.rsi,
            prev1.rsi,
            prev2.rsi,
            p.rsi_oversold,
            p.rsi_overbought,
        )
        distance_ok = check_ema_distance(self.direction, cur.close, cur.ema, p.ema_distance_percent)
        return EntrySignal(
            direction=self.direction,
            timestamp=cur.timestamp,
            time=cur.display_time,
            close=cur.close,
            ema=cur.ema,
            rsi_current=cur.rsi,
            rsi_prev1=prev1.rsi,
            rsi_prev2=prev2.rsi,
            reversal_ok=reversal_ok,
            distance_ok=distance_ok,
            has_open_position=has_open_position,
        )

    def open_position(self, candle: Candle, opposite: Position | None = None) -> Position:
        return Position(
            direction=self.direction,
            entry_time=candle.display_time,
            entry_price=candle.close,
            entry_ema=candle.ema,
            entry_rsi=candle.rsi,
            average_price=candle.close,
            position_size_fraction=BASE_POSITION_FRACTION,
            current_price=candle.close,
            current_time=candle.display_time,
            unrealized_pnl_percent=0.0,
            opposite_on_entry=opposite.snapshot() if opposite is not None else None,
        )

    def evaluate_entry(
        self, window: CandleWindow, opposite: Position | None = None
    ) -> tuple[Position | None, EntrySignal]:
        """无持仓时评估入场；满足 反转 AND 距离 两个条件即按收盘价开 25% 仓。"""
        signal = self.entry_signal(window)
        if not signal.can_enter:
            return None, signal
        return self.open_position(window.current, opposite), signal

    # ---- 盯市 ----

    def mark_to_market(self, position: Position, candle: Candle) -> float:
        """按收盘价刷新持仓浮动 PnL%，返回最新值。"""
        pnl = position_pnl(position, candle.close)
        position.average_price = average_entry_price(position)
        position.position_size_fraction = position_fraction(position)
        position.unrealized_pnl_percent = pnl
        position.current_price = candle.close
        position.current_time = candle.display_time
        return pnl

    # ---- 出场 ----

    def crossed_ema_adverse(self, window: CandleWindow) -> bool:
        """价格从有利一侧穿到 EMA 另一侧（出场方向）。"""
        prev, cur = window.prev1, window.current
        if self.direction is Direction.LONG:
            return prev.close > prev.ema and cur.close <= cur.ema
        return prev.close < prev.ema and cur.close >= cur.ema

    def crossed_ema_recovery(self, window: CandleWindow) -> bool:
        """价格朝回归方向穿越 EMA（加仓方向，与出场相反）。"""
        prev, cur = window.prev1, window.current
        if self.direction is Direction.LONG:
            return prev.close <= prev.ema and cur.close > cur.ema
        return prev.close >= prev.ema and cur.close < cur.ema

    def should_exit(self, position: Position, window: CandleWindow) -> bool:
        pnl = position_pnl(position, window.current.close)
        return self.crossed_ema_adverse(window) and pnl >= self.params.min_profit_percent

    def evaluate_exit(
        self, position: Position, window: CandleWindow, opposite: Position | None = None
    ) -> Position | None:
        """满足 EMA 穿越 + 最小利润 时返回已平仓记录，否则返回 None。"""
        if not self.should_exit(position, window):
            return None
        return close_position(
            position,
            window.current,
            EXIT_REASON_EMA_TOUCH,
            self.params.commission_percent,
            opposite,
        )

    # ---- 加仓 ----

    def evaluate_averaging(self, position: Position, window: CandleWindow) -> AveragingSignal | None:
        """未加仓时：不利波动 >= 阈值 且 朝回归方向穿越 EMA，则按收盘价加仓到 50%。"""
        if position.has_averaging:
            return None
        cur = window.current
        move = adverse_move_percent(position, cur.close)
        if move < self.params.averaging_threshold or not self.crossed_ema_recovery(window):
            return None

        position.has_averaging = True
        position.averaging_price = cur.close
        position.averaging_time = cur.display_time
        position.averaging_ema = cur.ema
        position.position_size_fraction = AVERAGED_POSITION_FRACTION
        position.average_price = average_entry_price(position)
        return AveragingSignal(
            direction=self.direction,
            original_entry_price=position.entry_price,
            original_entry_time=position.entry_time,
            averaging_price=cur.close,
            averaging_time=cur.display_time,
            price_change_percent=move,
            new_average_price=position.average_price,
            ema=cur.ema,
            rsi=cur.rsi,
        )
