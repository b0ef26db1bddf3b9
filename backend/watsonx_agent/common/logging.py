"""
日志配置

基于 loguru 的日志初始化：控制台彩色输出 + 可选的轮转文件输出。
每个输入项的日志通过 ``logger.bind(item_index=...)`` 携带上下文。
"""

import os
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "item={extra[item_index]} | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | item={extra[item_index]} | "
    "{name}:{function}:{line} | {message}"
)


def setup_logging(level: str = "INFO", log_dir: str | None = "logs"):
    """
    配置 loguru 日志

    设置日志格式、级别、输出文件等
    """
    logger.configure(extra={"item_index": "-", "trace_name": "-"})

    # 移除默认的 handler
    logger.remove()

    # 添加控制台输出（带颜色）
    logger.add(sink=sys.stderr, format=LOG_FORMAT, level=level, colorize=True)

    if not log_dir:
        return

    try:
        os.makedirs(log_dir, exist_ok=True)
        logger.add(
            os.path.join(log_dir, "agent.log"),
            rotation="100 MB",  # 文件大小达到 100MB 时轮转
            retention="30 days",  # 保留 30 天的日志
            compression="zip",  # 压缩旧日志
            format=FILE_LOG_FORMAT,
            level=level,
        )
    except (PermissionError, OSError):
        # 无法创建日志文件时，只使用控制台输出
        logger.warning(f"Cannot write logs to {log_dir}, console logging only")
