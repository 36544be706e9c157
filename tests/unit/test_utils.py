"""通用工具单元测试"""

from unittest.mock import AsyncMock, patch

import pytest
from scoutmind.common.constants import HTML_TRUNCATION_MARKER
from scoutmind.common.utils import truncate_html, with_retry


class TestTruncateHtml:
    """HTML 截断测试"""

    def test_short_html_unchanged(self):
        """测试未超长时原样返回"""
        assert truncate_html("<p>x</p>", 100) == "<p>x</p>"

    def test_truncates_with_marker(self):
        """测试超长时截断并追加标记"""
        assert truncate_html("abcdef", 3) == "abc" + HTML_TRUNCATION_MARKER

    def test_separator(self):
        """测试截断内容与标记之间的分隔符"""
        assert truncate_html("abcdef", 3, separator="\n") == "abc\n" + HTML_TRUNCATION_MARKER


class TestWithRetry:
    """异步重试测试"""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        """测试第一次成功直接返回"""
        func = AsyncMock(return_value="ok")
        assert await with_retry(func, max_attempts=3, delay=0) == "ok"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """测试失败后重试成功"""
        func = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"])
        with patch("scoutmind.common.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await with_retry(func, max_attempts=3, delay=1.0, backoff_factor=2.0) == "ok"
        assert func.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        """测试全部失败时抛出最后一次异常"""
        func = AsyncMock(side_effect=[ConnectionError("first"), ConnectionError("last")])
        with pytest.raises(ConnectionError, match="last"):
            await with_retry(func, max_attempts=2, delay=0)

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        """测试不在 retry_on 中的异常不重试"""
        func = AsyncMock(side_effect=ValueError("bad"))
        with pytest.raises(ValueError):
            await with_retry(func, max_attempts=3, delay=0, retry_on=(ConnectionError,))
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_max_attempts(self):
        """测试 max_attempts 小于 1"""
        with pytest.raises(ValueError):
            await with_retry(AsyncMock(), max_attempts=0)
