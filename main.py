"""DualCycle 统一命令行入口。

该模块提供单一入口 `main.py`，通过子命令驱动不同任务：

- `backtest`：历史回测（是否启用时间分仓由配置 `backtest.time_shift.enabled` 决定）。
- `test`：运行 pytest。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any

from engine.backtest_engine import BacktestEngine


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (backtest/test)
    artifacts_dir: 可选，覆盖配置中的产物输出目录
    """
    config: str
    task: str
    artifacts_dir: str | None = None
    pytest_args: list[str] | None = None


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="dualcycle", description="DualCycle 统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... backtest`（全局）与 `python main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_backtest = sub.add_parser("backtest", help="历史回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument("--artifacts-dir", type=str, default=None, help="产物输出目录")

    p_test = sub.add_parser("test", help="运行 pytest")
    _add_config_arg(p_test, default=argparse.SUPPRESS)
    p_test.add_argument("pytest_args", nargs="*", help="透传给 pytest 的参数")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    """解析命令行参数；未给子命令时默认 backtest。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "backtest",
        artifacts_dir=getattr(ns, "artifacts_dir", None),
        pytest_args=list(getattr(ns, "pytest_args", None) or []),
    )


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的结果（backtest 返回 summary dict）。"""
    args = parse_args(argv)

    if args.task == "backtest":
        return BacktestEngine(cfg_path=args.config, artifacts_dir=args.artifacts_dir).run().summary

    if args.task == "test":
        import pytest

        return pytest.main(["-q", *(args.pytest_args or [])])

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
