"""页面查询协作者

Agent 只通过 PageQuery 协议访问页面：统计选择器命中数、读取文本/属性、
取 outerHTML、以及可选的高亮副作用。所有方法都可能失败，调用方自行兜底。

- PlaywrightPageQuery: 基于 playwright 的实时页面
- HtmlPageQuery: 基于 lxml + cssselect 的静态 HTML（离线 / 测试）
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import lxml.html
from cssselect import SelectorError as CSSSyntaxError
from lxml import etree

from ..exceptions import SelectorError
from ..logger import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = get_logger(__name__)

XPATH_PREFIXES = ("/", "./", "(")
HIGHLIGHT_ATTR = "data-scoutmind-highlight"


def is_xpath(selector: str) -> bool:
    """以 / ./ ( 开头视为 XPath，否则视为 CSS"""
    return selector.strip().startswith(XPATH_PREFIXES)


@runtime_checkable
class PageQuery(Protocol):
    """页面查询协议"""

    async def find_by_selector(self, selector: str) -> int: ...

    async def read_field(
        self,
        selector: str,
        attribute: str | None = None,
        index: int = 0,
        sub_selector: str | None = None,
    ) -> str | None: ...

    async def outer_html(self, selector: str, limit: int | None = None) -> list[str]: ...

    async def page_html(self) -> str: ...

    async def page_url(self) -> str: ...

    async def highlight(self, selector: str, label: str) -> int: ...

    async def clear_highlights(self, selector: str | None = None) -> None: ...


# ============================================================================
# Playwright 实现
# ============================================================================


# 注入的高亮样式：outline 不影响布局
_HIGHLIGHT_JS = """
(elements, [attr, label]) => {
    for (const el of elements) {
        el.setAttribute(attr, label);
        el.style.outline = '2px solid #ff6b00';
        el.style.outlineOffset = '1px';
        el.title = label;
    }
    return elements.length;
}
"""

_CLEAR_JS = """
(elements, [attr]) => {
    for (const el of elements) {
        if (!el.hasAttribute(attr)) continue;
        el.removeAttribute(attr);
        el.style.outline = '';
        el.style.outlineOffset = '';
        el.removeAttribute('title');
    }
    return elements.length;
}
"""


class PlaywrightPageQuery:
    """playwright Page 上的页面查询"""

    def __init__(self, page: "Page", element_timeout_ms: int | None = None):
        from ..config import config

        self.page = page
        self.element_timeout_ms = element_timeout_ms or config.browser.element_timeout_ms

    def _locator(self, selector: str, root: "Page | Locator | None" = None) -> "Locator":
        root = root or self.page
        if is_xpath(selector) and not selector.startswith("xpath="):
            return root.locator(f"xpath={selector}")
        return root.locator(selector)

    async def find_by_selector(self, selector: str) -> int:
        return await self._locator(selector).count()

    async def read_field(
        self,
        selector: str,
        attribute: str | None = None,
        index: int = 0,
        sub_selector: str | None = None,
    ) -> str | None:
        target = self._locator(selector).nth(index)
        if sub_selector:
            inner = self._locator(sub_selector, root=target)
            if await inner.count() > 0:
                target = inner.first
            elif not await target.evaluate(
                "(el, sel) => { try { return el.matches(sel); } catch (e) { return false; } }",
                sub_selector,
            ):
                return None

        if await target.count() == 0:
            return None
        if attribute:
            return await target.get_attribute(attribute, timeout=self.element_timeout_ms)
        text = await target.text_content(timeout=self.element_timeout_ms)
        return text.strip() if text is not None else None

    async def outer_html(self, selector: str, limit: int | None = None) -> list[str]:
        items = await self._locator(selector).evaluate_all(
            "(els) => els.map((el) => el.outerHTML)"
        )
        if limit is not None:
            items = items[:limit]
        return list(items)

    async def page_html(self) -> str:
        return await self.page.content()

    async def page_url(self) -> str:
        return self.page.url

    async def highlight(self, selector: str, label: str) -> int:
        locator = self._locator(selector)
        count = await locator.evaluate_all(_HIGHLIGHT_JS, [HIGHLIGHT_ATTR, label])
        logger.debug(f"[PageQuery] 高亮 {count} 个元素: {selector}")
        return int(count or 0)

    async def clear_highlights(self, selector: str | None = None) -> None:
        target = selector or f"[{HIGHLIGHT_ATTR}]"
        await self._locator(target).evaluate_all(_CLEAR_JS, [HIGHLIGHT_ATTR])


# ============================================================================
# 静态 HTML 实现
# ============================================================================


class HtmlPageQuery:
    """静态 HTML 文档上的页面查询（lxml + cssselect）

    高亮只做记录，不修改文档。
    """

    def __init__(self, html: str, url: str = ""):
        self.html = html or ""
        self.url = url
        self.document = lxml.html.document_fromstring(self.html.strip() or "<html></html>")
        self.highlights: dict[str, str] = {}

    def _select(self, selector: str, root: etree._Element | None = None) -> list[etree._Element]:
        root = root if root is not None else self.document
        selector = selector.strip()
        expression = selector[len("xpath="):] if selector.startswith("xpath=") else selector
        # 在条目子树内查找时，以 / 开头的 XPath 也相对于条目（与 playwright 的 locator 一致）
        if root is not self.document and expression.startswith("/"):
            expression = "." + expression
        try:
            if selector.startswith("xpath=") or is_xpath(selector):
                found = root.xpath(expression)
            else:
                found = root.cssselect(selector)
        except (etree.XPathError, CSSSyntaxError, ValueError) as exc:
            raise SelectorError(selector, f"选择器语法错误 ({exc})") from exc
        if not isinstance(found, list):
            return []
        return [el for el in found if isinstance(el, etree._Element)]

    def _matches(self, element: etree._Element, selector: str) -> bool:
        return any(el is element for el in self._select(selector))

    async def find_by_selector(self, selector: str) -> int:
        return len(self._select(selector))

    async def read_field(
        self,
        selector: str,
        attribute: str | None = None,
        index: int = 0,
        sub_selector: str | None = None,
    ) -> str | None:
        elements = self._select(selector)
        if index >= len(elements):
            return None
        target = elements[index]

        if sub_selector:
            inner = self._select(sub_selector, root=target)
            # 相对 XPath 和 CSS 都只在子树内查找；自身匹配时读自身
            inner = [el for el in inner if el is not target]
            if inner:
                target = inner[0]
            elif not self._matches(target, sub_selector):
                return None

        if attribute:
            return target.get(attribute)
        return target.text_content().strip()

    async def outer_html(self, selector: str, limit: int | None = None) -> list[str]:
        elements = self._select(selector)
        if limit is not None:
            elements = elements[:limit]
        return [lxml.html.tostring(el, encoding="unicode", with_tail=False) for el in elements]

    async def page_html(self) -> str:
        return self.html

    async def page_url(self) -> str:
        return self.url

    async def highlight(self, selector: str, label: str) -> int:
        count = len(self._select(selector))
        if count:
            self.highlights[selector] = label
        return count

    async def clear_highlights(self, selector: str | None = None) -> None:
        if selector is None:
            self.highlights.clear()
        else:
            self.highlights.pop(selector, None)


__all__ = [
    "PageQuery",
    "PlaywrightPageQuery",
    "HtmlPageQuery",
    "is_xpath",
    "HIGHLIGHT_ATTR",
]
