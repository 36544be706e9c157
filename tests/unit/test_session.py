"""浏览器会话单元测试（playwright 全部打桩）"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from scoutmind.common.browser import BrowserSession, create_browser_session
from scoutmind.common.exceptions import BrowserError


def _fake_playwright():
    page = MagicMock(name="page")
    page.goto = AsyncMock()

    context = MagicMock(name="context")
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock(name="playwright")
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context, page


class TestBrowserSession:
    def test_page_before_start_raises(self):
        session = BrowserSession(headless=True)
        assert not session.started
        with pytest.raises(BrowserError):
            _ = session.page

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        starter, playwright, browser, context, page = _fake_playwright()
        with patch("scoutmind.common.browser.session.async_playwright", return_value=starter):
            async with create_browser_session(
                headless=True, viewport=(800, 600), user_agent="scout-test"
            ) as session:
                assert session.page is page
                assert session.context is context
                await session.navigate("https://example.com")

        playwright.chromium.launch.assert_awaited_once_with(headless=True)
        browser.new_context.assert_awaited_once_with(
            viewport={"width": 800, "height": 600}, user_agent="scout-test"
        )
        page.goto.assert_awaited_once_with("https://example.com", wait_until="domcontentloaded")
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert not session.started

    @pytest.mark.asyncio
    async def test_close_continues_after_failure(self):
        starter, playwright, browser, context, _ = _fake_playwright()
        context.close.side_effect = RuntimeError("already closed")
        with patch("scoutmind.common.browser.session.async_playwright", return_value=starter):
            session = await BrowserSession(headless=True).start()
            await session.close()

        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
