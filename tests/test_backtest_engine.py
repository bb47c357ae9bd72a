from __future__ import annotations

import json
import math
from pathlib import Path

import pandas as pd
import pytest

from engine.backtest_engine import BacktestEngine
from shared.config.schema import BacktestConfig, MainConfig, StrategyParameters, TimeShiftParameters

HOUR_MS = 3_600_000


def _write_candles(path: Path, n: int = 300) -> Path:
    ts0 = 1_700_000_000_000
    rows = []
    for i in range(n):
        close = 100 + 3 * math.sin(i / 6) + 0.5 * math.sin(i / 1.7)
        rows.append(
            {
                "timestamp": ts0 + i * HOUR_MS,
                "open": close,
                "high": close + 0.2,
                "low": close - 0.2,
                "close": close,
                "volume": 1.0,
            }
        )
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def _cfg(data_path: Path, **time_shift) -> MainConfig:
    return MainConfig(
        symbol="TESTUSDT",
        backtest=BacktestConfig(
            data_path=str(data_path),
            strategy=StrategyParameters(
                rsi_period=5,
                rsi_oversold=40,
                rsi_overbought=60,
                rsi_reversal_mode="relaxed",
                ema_period=20,
                ema_distance_percent=0.1,
                min_profit_percent=0.1,
                commission_percent=0.05,
            ),
            time_shift=TimeShiftParameters(**time_shift),
        ),
    )


def test_backtest_engine_runs_and_writes_artifacts(tmp_path: Path):
    data = _write_candles(tmp_path / "candles.csv")
    out_dir = tmp_path / "out"
    cfg = _cfg(data, enabled=True, deposit_parts=3, entry_interval_days=2)

    res = BacktestEngine(cfg_obj=cfg, artifacts_dir=out_dir).run()

    summary = res.summary
    assert summary["symbol"] == "TESTUSDT"
    assert summary["candles"] == 300
    assert summary["enabled"] is True
    assert summary["active_parts"] == 3
    assert len(summary["parts"]) == 3
    assert "metrics" in summary["parts"][0]
    assert abs(summary["total_pnl"] - (summary["total_realized_pnl"] + summary["total_unrealized_pnl"])) < 1e-9

    assert res.artifacts is not None
    for key in ("trades_csv", "cycles_csv", "cycle_logs_csv", "summary_json"):
        assert Path(res.artifacts[key]).exists()
    saved = json.loads(Path(res.artifacts["summary_json"]).read_text(encoding="utf-8"))
    assert saved["active_parts"] == 3

    cycles = pd.read_csv(res.artifacts["cycles_csv"])
    assert set(cycles["part_id"]) == {1, 2, 3}
    logs = pd.read_csv(res.artifacts["cycle_logs_csv"])
    assert "CYCLE_START" in set(logs["action"])


def test_backtest_engine_without_time_shift_and_without_artifacts(tmp_path: Path):
    data = _write_candles(tmp_path / "candles.csv", n=120)
    res = BacktestEngine(cfg_obj=_cfg(data, enabled=False)).run()
    assert res.artifacts is None
    assert res.summary["enabled"] is False
    assert res.summary["parts"][0]["deposit_fraction"] == 1.0


def test_backtest_engine_loads_yaml_config(tmp_path: Path):
    data = _write_candles(tmp_path / "candles.csv", n=60)
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        f"symbol: TESTUSDT\nbacktest:\n  data_path: {data.as_posix()}\n  strategy:\n    rsi_period: 5\n    ema_period: 10\n",
        encoding="utf-8",
    )
    res = BacktestEngine(cfg_path=str(cfg_path)).run()
    assert res.summary["symbol"] == "TESTUSDT"
    assert res.summary["candles"] == 60


def test_backtest_engine_rejects_empty_data(tmp_path: Path):
    data = tmp_path / "empty.csv"
    data.write_text("timestamp,open,high,low,close,volume\n", encoding="utf-8")
    with pytest.raises(ValueError):
        BacktestEngine(cfg_obj=_cfg(data)).run()
