"""浏览器协作者：页面抓取、页面查询、会话管理"""

from .fetcher import FetchResult, PageFetcher, PlaywrightPageFetcher, StaticPageFetcher
from .page_query import HtmlPageQuery, PageQuery, PlaywrightPageQuery, is_xpath
from .session import BrowserSession, create_browser_session

__all__ = [
    "FetchResult",
    "PageFetcher",
    "PlaywrightPageFetcher",
    "StaticPageFetcher",
    "PageQuery",
    "PlaywrightPageQuery",
    "HtmlPageQuery",
    "is_xpath",
    "BrowserSession",
    "create_browser_session",
]
