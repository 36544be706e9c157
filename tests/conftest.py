"""pytest 全局配置和 fixtures

提供测试所需的基础设施：脚本化的 LLM provider、离线页面查询等。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scoutmind.common.browser import HtmlPageQuery  # noqa: E402
from scoutmind.common.config import config  # noqa: E402
from scoutmind.common.llm import GatewayConfig, LLMResponse, ModelGateway, QueryOptions  # noqa: E402


# ============================================================================
# 全局开关
# ============================================================================


@pytest.fixture(autouse=True)
def disable_llm_trace(monkeypatch):
    """测试期间不写 LLM 追踪文件"""
    monkeypatch.setattr(config.llm, "trace_enabled", False)


# ============================================================================
# 脚本化 provider
# ============================================================================


class ScriptedProvider:
    """按顺序返回预设响应的 provider

    responses 中的元素可以是字符串、LLMResponse 或异常；
    也可以传入 responder(prompt, options) 按提示词内容决定响应。
    最后一个预设响应会被重复使用。
    """

    def __init__(
        self,
        responses: list | None = None,
        responder: Callable[[str, QueryOptions], object] | None = None,
        model: str = "test-model",
    ):
        self.responses = list(responses or [])
        self.responder = responder
        self.model = model
        self.prompts: list[str] = []
        self.options: list[QueryOptions] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def query(self, prompt: str, options: QueryOptions) -> LLMResponse:
        self.prompts.append(prompt)
        self.options.append(options)
        if self.responder is not None:
            item = self.responder(prompt, options)
        elif len(self.responses) > 1:
            item = self.responses.pop(0)
        elif self.responses:
            item = self.responses[0]
        else:
            item = ""

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse(text=str(item), model=self.model)


@pytest.fixture
def make_gateway():
    """创建只注册了一个脚本化 provider 的网关

    Returns:
        工厂函数：(responses=None, responder=None, fallback_provider=None) -> (gateway, provider)
    """

    def _make(
        responses: list | None = None,
        responder: Callable[[str, QueryOptions], object] | None = None,
        fallback_provider: str | None = None,
    ) -> tuple[ModelGateway, ScriptedProvider]:
        gateway = ModelGateway(GatewayConfig(fallback_provider=fallback_provider))
        provider = ScriptedProvider(responses=responses, responder=responder)
        gateway.register_provider("scripted", provider)
        return gateway, provider

    return _make


# ============================================================================
# 页面
# ============================================================================

SAMPLE_HTML = """
<html>
  <body>
    <h1>Hello</h1>
    <div class="product" data-id="1">
      <h2 class="name">Widget</h2>
      <span class="price">$1,234.56</span>
      <a class="link" href="/products/widget">Details</a>
    </div>
    <div class="product" data-id="2">
      <h2 class="name">Gadget</h2>
      <span class="price">$99</span>
      <a class="link" href="https://shop.example.com/gadget">Details</a>
    </div>
  </body>
</html>
"""


@pytest.fixture
def sample_html() -> str:
    return SAMPLE_HTML


@pytest.fixture
def sample_page() -> HtmlPageQuery:
    """基于 SAMPLE_HTML 的离线页面查询"""
    return HtmlPageQuery(SAMPLE_HTML, url="https://shop.example.com/list")


@pytest.fixture
def scripted_provider():
    """ScriptedProvider 工厂"""
    return ScriptedProvider
