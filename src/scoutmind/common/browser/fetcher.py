"""页面抓取协作者

编排器只通过 PageFetcher 协议获取 HTML 样本。抓取必须有硬超时，
并区分超时 / 网络错误 / HTTP 状态码错误三种失败。
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import config
from ..exceptions import (
    FetchHTTPError,
    FetchNetworkError,
    FetchTimeoutError,
    URLValidationError,
)
from ..logger import get_logger
from ..utils.retry import with_retry
from ..validators import validate_url

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

logger = get_logger(__name__)

ERROR_TIMEOUT = "timeout"
ERROR_NETWORK = "network"
ERROR_HTTP = "http"


@dataclass
class FetchResult:
    """抓取结果"""

    success: bool
    html_content: str | None = None
    error: str | None = None
    error_type: str | None = None  # timeout / network / http
    status: int | None = None
    error_body: str | None = None  # HTTP 错误时响应体前 500 字符

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class PageFetcher(Protocol):
    """页面抓取协议"""

    async def fetch(self, url: str) -> FetchResult: ...


class PlaywrightPageFetcher:
    """在独立的新页面中加载 URL 并返回 HTML

    网络错误按指数退避重试；超时与 HTTP 错误不重试。
    """

    def __init__(
        self,
        context: "BrowserContext",
        timeout_ms: int | None = None,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
    ):
        self.context = context
        self.timeout_ms = timeout_ms or config.browser.fetch_timeout_ms
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def fetch(self, url: str) -> FetchResult:
        try:
            url = validate_url(url)
        except URLValidationError as exc:
            logger.error(f"[Fetcher] {exc}")
            return FetchResult(success=False, error=str(exc))

        logger.info(f"[Fetcher] 抓取 HTML 样本: {url}")
        try:
            html = await with_retry(
                lambda: self._load(url),
                max_attempts=self.max_attempts,
                delay=self.retry_delay,
                retry_on=(FetchNetworkError,),
                label=f"fetch {url}",
            )
        except FetchTimeoutError as exc:
            logger.error(f"[Fetcher] 抓取超时: {url}")
            return FetchResult(success=False, error=f"Fetch timed out: {exc}", error_type=ERROR_TIMEOUT)
        except FetchHTTPError as exc:
            logger.error(f"[Fetcher] 抓取失败: {url} 状态码 {exc.status}")
            return FetchResult(
                success=False,
                error=f"Fetch failed: {exc.status}",
                error_type=ERROR_HTTP,
                status=exc.status,
                error_body=exc.body,
            )
        except FetchNetworkError as exc:
            logger.error(f"[Fetcher] 网络错误: {url} ({exc.reason})")
            return FetchResult(
                success=False, error=f"Fetch exception: {exc.reason}", error_type=ERROR_NETWORK
            )

        logger.info(f"[Fetcher] 抓取完成: {len(html)} 字符")
        return FetchResult(success=True, html_content=html)

    async def _load(self, url: str) -> str:
        page = await self.context.new_page()
        try:
            return await asyncio.wait_for(self._goto(page, url), timeout=self.timeout_ms / 1000)
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as exc:
            raise FetchTimeoutError(url, self.timeout_ms) from exc
        finally:
            await page.close()

    async def _goto(self, page, url: str) -> str:
        try:
            response = await page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError:
            raise
        except PlaywrightError as exc:
            raise FetchNetworkError(url, str(exc)) from exc

        if response is not None and response.status >= 400:
            try:
                body = (await response.text())[:500]
            except PlaywrightError:
                body = None
            raise FetchHTTPError(url, response.status, body)
        return await page.content()


class StaticPageFetcher:
    """从内存映射返回 HTML（测试 / 离线运行）"""

    def __init__(self, pages: dict[str, str] | None = None):
        self.pages = dict(pages or {})

    async def fetch(self, url: str) -> FetchResult:
        html = self.pages.get(url)
        if html is None:
            return FetchResult(
                success=False, error="Fetch failed: 404", error_type=ERROR_HTTP, status=404
            )
        return FetchResult(success=True, html_content=html)
