"""页面查询协作者单元测试"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from scoutmind.common.browser import HtmlPageQuery, PageQuery, PlaywrightPageQuery, is_xpath
from scoutmind.common.exceptions import SelectorError


class TestIsXpath:
    """XPath 判断测试"""

    @pytest.mark.parametrize("selector", ["//h1", "./span", "(//a)[1]"])
    def test_xpath(self, selector):
        assert is_xpath(selector)

    @pytest.mark.parametrize("selector", ["h1", "div.product > h2", "[data-id='1']"])
    def test_css(self, selector):
        assert not is_xpath(selector)


class TestHtmlPageQuery:
    """静态 HTML 页面查询测试"""

    def test_implements_protocol(self, sample_page):
        """测试满足 PageQuery 协议"""
        assert isinstance(sample_page, PageQuery)

    @pytest.mark.asyncio
    async def test_find_by_css_and_xpath(self, sample_page):
        """测试 CSS 与 XPath 计数"""
        assert await sample_page.find_by_selector("div.product") == 2
        assert await sample_page.find_by_selector("//div[@class='product']") == 2
        assert await sample_page.find_by_selector("xpath=//h1") == 1
        assert await sample_page.find_by_selector("table") == 0

    @pytest.mark.asyncio
    async def test_invalid_selector_raises(self, sample_page):
        """测试语法错误的选择器"""
        with pytest.raises(SelectorError):
            await sample_page.find_by_selector("div[")
        with pytest.raises(SelectorError):
            await sample_page.find_by_selector("//div[")

    @pytest.mark.asyncio
    async def test_read_text_and_attribute(self, sample_page):
        """测试读取文本和属性"""
        assert await sample_page.read_field("h1") == "Hello"
        assert await sample_page.read_field("a.link", "href", index=1) == (
            "https://shop.example.com/gadget"
        )
        assert await sample_page.read_field("h2.name", index=5) is None

    @pytest.mark.asyncio
    async def test_read_with_sub_selector(self, sample_page):
        """测试条目内子选择器"""
        assert await sample_page.read_field("div.product", sub_selector="h2.name") == "Widget"
        assert await sample_page.read_field("div.product", index=1, sub_selector=".price") == "$99"
        assert await sample_page.read_field("div.product", sub_selector="table") is None

    @pytest.mark.asyncio
    async def test_xpath_sub_selector_scoped_to_item(self, sample_page):
        """测试以 / 开头的 XPath 子选择器只在各自条目内查找"""
        assert await sample_page.read_field("div.product", index=0, sub_selector="//h2") == "Widget"
        assert await sample_page.read_field("div.product", index=1, sub_selector="//h2") == "Gadget"
        assert (
            await sample_page.read_field(
                "div.product", index=1, sub_selector="xpath=//a", attribute="href"
            )
            == "https://shop.example.com/gadget"
        )
        assert await sample_page.read_field("div.product", sub_selector="//h1") is None

    @pytest.mark.asyncio
    async def test_sub_selector_matching_element_itself(self, sample_page):
        """测试子选择器匹配条目自身时读取自身"""
        assert await sample_page.read_field("h1", sub_selector="h1") == "Hello"

    @pytest.mark.asyncio
    async def test_outer_html(self, sample_page):
        """测试 outerHTML 与数量限制"""
        parts = await sample_page.outer_html("h2.name", limit=1)
        assert parts == ['<h2 class="name">Widget</h2>']

    @pytest.mark.asyncio
    async def test_page_html_and_url(self, sample_page, sample_html):
        """测试整页 HTML 与 URL"""
        assert await sample_page.page_html() == sample_html
        assert await sample_page.page_url() == "https://shop.example.com/list"

    @pytest.mark.asyncio
    async def test_highlight_bookkeeping(self, sample_page):
        """测试高亮只做记录"""
        assert await sample_page.highlight("h2.name", "Product name") == 2
        assert await sample_page.highlight("table", "Nothing") == 0
        assert sample_page.highlights == {"h2.name": "Product name"}
        await sample_page.clear_highlights()
        assert sample_page.highlights == {}

    @pytest.mark.asyncio
    async def test_empty_document(self):
        """测试空文档"""
        page = HtmlPageQuery("")
        assert await page.find_by_selector("h1") == 0


class TestPlaywrightPageQuery:
    """playwright 页面查询测试（mock Page）"""

    @pytest.mark.asyncio
    async def test_xpath_gets_prefix(self):
        """测试 XPath 选择器加上 xpath= 前缀"""
        page = MagicMock()
        locator = MagicMock()
        locator.count = AsyncMock(return_value=3)
        page.locator.return_value = locator

        query = PlaywrightPageQuery(page)
        assert await query.find_by_selector("//li") == 3
        page.locator.assert_called_with("xpath=//li")

        await query.find_by_selector("li.item")
        page.locator.assert_called_with("li.item")

    @pytest.mark.asyncio
    async def test_highlight_returns_count(self):
        """测试高亮返回元素数"""
        page = MagicMock()
        locator = MagicMock()
        locator.evaluate_all = AsyncMock(return_value=2)
        page.locator.return_value = locator

        query = PlaywrightPageQuery(page)
        assert await query.highlight("h2", "Product name") == 2
        args = locator.evaluate_all.await_args.args
        assert args[1][1] == "Product name"
