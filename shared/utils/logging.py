"""统一日志入口。"""

import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "dualcycle", level: int = logging.INFO) -> logging.Logger:
    """获取带控制台 handler 的命名 logger（重复调用不会叠加 handler）。"""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        # 控制台 handler
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(ch)
    return logger
