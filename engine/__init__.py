"""执行引擎层（engine）。

- `cycle_manager`：交易周期与强制平仓；
- `combined_runner`：多空组合策略逐根 K 线回放；
- `time_shift`：时间分仓回放与按存款占比汇总；
- `backtest_engine`：配置 → 数据 → 回放 → 产物 的统一入口（`run() -> EngineResult`）。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
