"""异步重试工具"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from ..logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_retry(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "",
) -> T:
    """带指数退避的异步重试

    第 n 次失败后等待 delay * backoff_factor ** (n - 1) 秒再重试，
    全部失败时抛出最后一次的异常。

    Args:
        func: 无参协程工厂（每次重试都会重新调用）
        max_attempts: 最大尝试次数
        delay: 初始等待秒数
        backoff_factor: 退避倍数
        retry_on: 需要重试的异常类型，其它异常直接抛出
        label: 日志标签

    Returns:
        func 的返回值
    """
    if max_attempts < 1:
        raise ValueError("max_attempts 必须 >= 1")

    attempt = 0
    current_delay = delay
    while True:
        attempt += 1
        try:
            return await func()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(f"[Retry] {label} 第 {attempt} 次失败，放弃: {exc}")
                raise
            logger.debug(f"[Retry] {label} 第 {attempt} 次失败，{current_delay:.1f}s 后重试: {exc}")
            await asyncio.sleep(current_delay)
            current_delay *= backoff_factor
