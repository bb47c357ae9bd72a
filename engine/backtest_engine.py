"""单次回测引擎（BacktestEngine）。

目标是“一眼能看懂”：配置 → 数据 → 因子 → 分仓回放 → 指标 → 产物。
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import pandas as pd

from engine.base_engine import BaseEngine, EngineResult
from engine.time_shift import TimeShiftResult, TimeShiftRunner
from factors.registry import enrich_candles
from market_data.loader import load_candles_from_csv
from shared.config.config_loader import MainConfig, load_config
from shared.models.models import Cycle, Position
from shared.utils.logging import setup_logger
from utils.metrics import compute_cycle_metrics


def _trade_row(part_id: int, cycle_id: int | None, t: Position) -> dict[str, Any]:
    row = asdict(t)
    row["direction"] = t.direction.value
    row.pop("opposite_on_entry", None)
    row.pop("opposite_on_exit", None)
    return {"part_id": part_id, "cycle_id": cycle_id, **row}


def _cycle_row(part_id: int, c: Cycle) -> dict[str, Any]:
    return {
        "part_id": part_id,
        "cycle_id": c.id,
        "status": "OPEN" if c.is_active else "CLOSED",
        "start_time": c.start_time,
        "end_time": c.end_time,
        "trade_count": c.trade_count,
        "realized_pnl": c.realized_pnl,
        "unrealized_pnl": c.unrealized_pnl if c.is_active else 0.0,
        "total_pnl": c.total_pnl,
        "force_closed": c.force_closed,
        "final_pnl": c.final_pnl,
    }


def _export_trades_csv(result: TimeShiftResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = []
    for part in result.parts:
        for cycle in part.strategy_results.cycles:
            for t in cycle.all_trades:
                rows.append(_trade_row(part.part_id, cycle.id, t))
    pd.DataFrame(rows).to_csv(path, index=False)


def _export_cycles_csv(result: TimeShiftResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [_cycle_row(p.part_id, c) for p in result.parts for c in p.strategy_results.cycles]
    pd.DataFrame(rows).to_csv(path, index=False)


def _export_cycle_logs_csv(result: TimeShiftResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = []
    for part in result.parts:
        for cycle in part.strategy_results.cycles:
            for entry in cycle.logs:
                row = asdict(entry)
                row["action"] = entry.action.value
                rows.append({"part_id": part.part_id, "cycle_id": cycle.id, **row})
    pd.DataFrame(rows).to_csv(path, index=False)


def build_backtest_summary(result: TimeShiftResult) -> dict[str, Any]:
    """分仓结果 + 每份的周期/交易指标。"""
    summary = result.to_summary()
    for part_summary, part in zip(summary["parts"], result.parts):
        part_summary["metrics"] = compute_cycle_metrics(part.strategy_results.cycles)
    return summary


class BacktestEngine(BaseEngine):
    """单次回测引擎。

    Notes
    -----
    - 分仓开关由 `backtest.time_shift.enabled` 决定，关闭时即普通单次回放；
    - CLI 统一由仓库根目录 `main.py` 承担。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        artifacts_dir: str | Path | None = None,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._artifacts_dir = artifacts_dir
        self.result: TimeShiftResult | None = None

    def _load_cfg(self) -> MainConfig:
        if self._cfg_obj is not None:
            return self._cfg_obj
        return load_config(self._cfg_path)

    def run(self) -> EngineResult:
        cfg = self._load_cfg()
        bt_cfg = cfg.backtest
        logger = setup_logger("backtest")

        candles = load_candles_from_csv(bt_cfg.data_path, bt_cfg.display_utc_offset_hours)
        if not candles:
            raise ValueError(f"No candles loaded from {bt_cfg.data_path}")
        enrich_candles(candles, bt_cfg.strategy)

        runner = TimeShiftRunner(bt_cfg.strategy, bt_cfg.time_shift)
        result = runner.run(candles)
        self.result = result

        summary = build_backtest_summary(result)
        summary["symbol"] = bt_cfg.symbol or cfg.symbol
        summary["candles"] = len(candles)
        logger.info(
            "Backtest %s: total PnL %.3f%% (realized %.3f%%, unrealized %.3f%%), %s cycles, %s forced closures",
            summary["symbol"],
            result.total_pnl,
            result.total_realized_pnl,
            result.total_unrealized_pnl,
            result.total_cycles,
            result.total_forced_closures,
        )

        artifacts = self._write_artifacts(result, summary, self._artifacts_dir or bt_cfg.artifacts_dir)
        return EngineResult(summary=summary, artifacts=artifacts)

    @staticmethod
    def _write_artifacts(
        result: TimeShiftResult, summary: dict[str, Any], artifacts_dir: str | Path | None
    ) -> dict[str, Any] | None:
        if not artifacts_dir:
            return None
        out_dir = Path(artifacts_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        paths = {
            "dir": str(out_dir),
            "trades_csv": str(out_dir / "trades.csv"),
            "cycles_csv": str(out_dir / "cycles.csv"),
            "cycle_logs_csv": str(out_dir / "cycle_logs.csv"),
            "summary_json": str(out_dir / "summary.json"),
        }
        _export_trades_csv(result, Path(paths["trades_csv"]))
        _export_cycles_csv(result, Path(paths["cycles_csv"]))
        _export_cycle_logs_csv(result, Path(paths["cycle_logs_csv"]))
        Path(paths["summary_json"]).write_text(
            json.dumps(summary, ensure_ascii=False, indent=2, default=str), encoding="utf-8"
        )
        return paths
