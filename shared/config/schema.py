"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回测中“隐蔽爆炸”；
- 策略/时间分仓参数在构造时完成校验，引擎内部不再做防御性检查。
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ReversalMode = Literal["strict", "relaxed", "zone_only"]


class StrategyParameters(BaseModel):
    """双向 RSI/EMA 策略参数。

    说明：
    - 百分比字段均为“百分数”（0.5 表示 0.5%）；
    - `commission_percent` 按仓位档位计：实际手续费 = commission_percent * 仓位占比。
    """

    rsi_period: int = Field(default=10, gt=0)
    rsi_oversold: float = Field(default=35.0, ge=0, le=100)
    rsi_overbought: float = Field(default=70.0, ge=0, le=100)
    # strict: RSI 连续两根同向；relaxed: 最近一根同向；zone_only: 只看区间
    rsi_reversal_mode: ReversalMode = "strict"
    ema_period: int = Field(default=183, gt=0)
    ema_distance_percent: float = Field(default=0.15, ge=0)
    min_profit_percent: float = Field(default=0.5, ge=0)
    averaging_threshold: float = Field(default=0.5, ge=0)
    cycle_profit_threshold: float = Field(default=0.5, ge=0)
    commission_percent: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_rsi_zones(self) -> "StrategyParameters":
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError("rsi_oversold must be below rsi_overbought")
        return self


class TimeShiftParameters(BaseModel):
    """时间分仓参数：把存款拆成 N 份，每隔 interval 天入场一份。"""

    enabled: bool = False
    deposit_parts: int = Field(default=10, ge=1)
    entry_interval_days: float = Field(default=7, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class BacktestConfig(BaseModel):
    """回测配置。"""

    data_path: str
    symbol: Optional[str] = None
    display_utc_offset_hours: float = 2.0
    artifacts_dir: Optional[str] = None

    strategy: StrategyParameters = Field(default_factory=StrategyParameters)
    time_shift: TimeShiftParameters = Field(default_factory=TimeShiftParameters)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _unwrap_strategy_params(cls, data: Any) -> Any:
        # 兼容 `strategy: {params: {...}}` 写法
        if not isinstance(data, dict):
            return data
        strat = data.get("strategy")
        if isinstance(strat, dict) and set(strat.keys()) == {"params"} and isinstance(strat["params"], dict):
            data = dict(data)
            data["strategy"] = dict(strat["params"])
        return data


class MainConfig(BaseModel):
    """应用总配置。"""

    symbol: str
    timeframe: str = "1h"
    backtest: BacktestConfig

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
