"""浏览器会话

CLI 在真实浏览器中运行流水线时使用：同一个上下文既供抓取器开新页，
也持有用于查询和高亮的主页面。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from ..config import config
from ..exceptions import BrowserError
from ..logger import get_logger

logger = get_logger(__name__)


class BrowserSession:
    """Chromium 会话（一个上下文、一个主页面），可作为 async with 使用"""

    def __init__(
        self,
        headless: bool | None = None,
        viewport: tuple[int, int] | None = None,
        user_agent: str | None = None,
    ):
        self.headless = config.browser.headless if headless is None else headless
        self.viewport = viewport or (config.browser.viewport_width, config.browser.viewport_height)
        self.user_agent = user_agent

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def started(self) -> bool:
        return self._page is not None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserError("浏览器会话尚未启动")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise BrowserError("浏览器会话尚未启动")
        return self._context

    async def start(self) -> BrowserSession:
        if self.started:
            return self

        width, height = self.viewport
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        context_options: dict = {"viewport": {"width": width, "height": height}}
        if self.user_agent:
            context_options["user_agent"] = self.user_agent
        self._context = await self._browser.new_context(**context_options)
        self._context.set_default_timeout(config.browser.timeout_ms)
        self._page = await self._context.new_page()
        logger.debug(f"[Browser] 会话已启动 headless={self.headless} viewport={width}x{height}")
        return self

    async def close(self) -> None:
        """按 上下文 -> 浏览器 -> playwright 的顺序释放资源"""
        for resource, closer in (
            (self._context, "close"),
            (self._browser, "close"),
            (self._playwright, "stop"),
        ):
            if resource is None:
                continue
            try:
                await getattr(resource, closer)()
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"[Browser] 释放资源失败（忽略）: {exc}")
        self._page = self._context = self._browser = self._playwright = None
        logger.debug("[Browser] 会话已关闭")

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> None:
        await self.page.goto(url, wait_until=wait_until)

    async def __aenter__(self) -> BrowserSession:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


@asynccontextmanager
async def create_browser_session(
    headless: bool | None = None,
    viewport: tuple[int, int] | None = None,
    user_agent: str | None = None,
) -> AsyncIterator[BrowserSession]:
    """启动会话，退出时无论成功与否都会关闭"""
    async with BrowserSession(headless=headless, viewport=viewport, user_agent=user_agent) as session:
        yield session
