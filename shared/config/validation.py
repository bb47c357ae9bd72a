"""配置 Schema 校验。

目标：
- 在启动阶段尽早失败，给出 "did you mean" 级别的 typo 提示；
- 只做键名/类型层面的快速检查，取值范围交给 pydantic schema。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from shared.config.schema import StrategyParameters, TimeShiftParameters

STRATEGY_KEYS = set(StrategyParameters.model_fields.keys())
TIME_SHIFT_KEYS = set(TimeShiftParameters.model_fields.keys())


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _require(block: dict[str, Any], key: str, *, ctx: str) -> Any:
    if key not in block:
        raise ValueError(f"Missing required config key: {ctx}.{key}")
    return block[key]


def _expect_dict(val: Any, *, ctx: str) -> dict[str, Any]:
    if not isinstance(val, dict):
        raise ValueError(f"{ctx} must be a dict")
    return val


def _expect_str(val: Any, *, ctx: str) -> str:
    if not isinstance(val, str) or not val.strip():
        raise ValueError(f"{ctx} must be a non-empty string")
    return val


def _expect_bool(val: Any, *, ctx: str) -> bool:
    if isinstance(val, bool):
        return val
    raise ValueError(f"{ctx} must be a bool")


def _expect_number(val: Any, *, ctx: str) -> float:
    if isinstance(val, (int, float)) and not isinstance(val, bool):
        return float(val)
    raise ValueError(f"{ctx} must be a number")


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")

    _ensure_allowed_keys(cfg, allowed={"symbol", "timeframe", "backtest"}, ctx="config")
    _expect_str(_require(cfg, "symbol", ctx="config"), ctx="config.symbol")
    if "timeframe" in cfg:
        _expect_str(cfg["timeframe"], ctx="config.timeframe")

    backtest = _expect_dict(_require(cfg, "backtest", ctx="config"), ctx="config.backtest")
    _validate_backtest(backtest)


def _validate_backtest(bt: dict[str, Any]) -> None:
    allowed = {
        "data_path",
        "symbol",
        "display_utc_offset_hours",
        "artifacts_dir",
        "strategy",
        "time_shift",
    }
    _ensure_allowed_keys(bt, allowed=allowed, ctx="config.backtest")
    _expect_str(_require(bt, "data_path", ctx="config.backtest"), ctx="config.backtest.data_path")

    if bt.get("symbol") is not None:
        _expect_str(bt["symbol"], ctx="config.backtest.symbol")
    if bt.get("display_utc_offset_hours") is not None:
        _expect_number(bt["display_utc_offset_hours"], ctx="config.backtest.display_utc_offset_hours")

    if bt.get("strategy") is not None:
        strategy = _expect_dict(bt["strategy"], ctx="config.backtest.strategy")
        if set(strategy.keys()) == {"params"}:
            strategy = _expect_dict(strategy["params"], ctx="config.backtest.strategy.params")
        _ensure_allowed_keys(strategy, allowed=STRATEGY_KEYS, ctx="config.backtest.strategy")
        if "rsi_reversal_mode" in strategy:
            _expect_str(strategy["rsi_reversal_mode"], ctx="config.backtest.strategy.rsi_reversal_mode")

    if bt.get("time_shift") is not None:
        ts = _expect_dict(bt["time_shift"], ctx="config.backtest.time_shift")
        _ensure_allowed_keys(ts, allowed=TIME_SHIFT_KEYS, ctx="config.backtest.time_shift")
        if ts.get("enabled") is not None:
            _expect_bool(ts["enabled"], ctx="config.backtest.time_shift.enabled")
        if ts.get("deposit_parts") is not None:
            _expect_number(ts["deposit_parts"], ctx="config.backtest.time_shift.deposit_parts")
        if ts.get("entry_interval_days") is not None:
            _expect_number(ts["entry_interval_days"], ctx="config.backtest.time_shift.entry_interval_days")
