"""统一日志系统

所有日志器都挂在 "scoutmind" 命名空间下。Rich 控制台处理器只在命名空间根上配置一次，
模块日志器不带处理器、向上传播。CLI 可在运行时调整控制台级别或追加文件输出。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "scoutmind"

# 全局控制台实例（CLI 的表格输出也走这里）
console = Console()

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_console_handler: RichHandler | None = None


def get_log_level() -> int:
    """从环境变量 SCOUT_LOG_LEVEL 获取控制台日志级别，默认 INFO"""
    level_str = os.getenv("SCOUT_LOG_LEVEL", "INFO").upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def _root_logger() -> logging.Logger:
    global _console_handler

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _console_handler is not None:
        return root

    _console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=os.getenv("LOG_SHOW_LOCALS", "false").lower() == "true",
        markup=False,
    )
    _console_handler.setLevel(get_log_level())
    _console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    # 根日志器放行所有级别，由各处理器自行过滤
    root.setLevel(logging.DEBUG)
    root.addHandler(_console_handler)
    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """获取统一配置的日志器

    Args:
        name: 日志器名称，通常使用 __name__；不在 scoutmind 命名空间下的名称会被挂到其下

    Example:
        >>> from scoutmind.common.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("[Planner] 开始生成提取计划")
    """
    root = _root_logger()
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return root.getChild(name)


def set_log_level(level: int | str) -> None:
    """调整控制台输出级别（文件输出不受影响）"""
    if isinstance(level, str):
        level = LOG_LEVEL_MAP.get(level.upper(), logging.INFO)
    _root_logger()
    _console_handler.setLevel(level)


def setup_file_logging(log_file: str | Path, level: int = logging.DEBUG) -> logging.Handler:
    """为整个命名空间追加文件输出

    Args:
        log_file: 日志文件路径，父目录不存在时自动创建
        level: 文件日志级别

    Returns:
        新增的处理器，调用方可用于移除
    """
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    _root_logger().addHandler(file_handler)
    return file_handler
