"""自定义异常类

定义项目中使用的所有自定义异常。Agent 内部捕获这些异常并转换为带
success 标记的结果对象，只有编排器顶层会兜底处理剩余异常。
"""

from __future__ import annotations


class ScoutMindError(Exception):
    """ScoutMind 基础异常类

    所有自定义异常的基类。
    """
    pass


class GatewayError(ScoutMindError):
    """模型网关错误（provider 不可达、凭证错误、配额不足等）"""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ProviderNotFoundError(GatewayError):
    """请求的 provider 未注册"""

    def __init__(self, provider: str, available: list[str] | None = None):
        available = available or []
        super().__init__(
            f"LLM provider '{provider}' not found. Available: {', '.join(available)}",
            provider=provider,
        )
        self.available = available


class PlanParseError(ScoutMindError):
    """提取计划解析失败

    可降级为部分计划，不是致命错误。
    """

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response


class SelectorError(ScoutMindError):
    """选择器未生成或未匹配到元素"""

    def __init__(self, selector: str | None, message: str = "选择器无效"):
        super().__init__(f"{message}: {selector}")
        self.selector = selector


class ExtractionError(ScoutMindError):
    """DOM 提取与模型提取均失败"""
    pass


class JSONParseError(ExtractionError):
    """无法从 LLM 响应中解析 JSON"""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(f"JSON parse error: {message}")
        self.raw_response = raw_response


class RecoveryExhaustedError(ScoutMindError):
    """字段恢复次数耗尽（非致命，仅记录）"""

    def __init__(self, field_id: str, attempts: int):
        super().__init__(f"字段 {field_id} 恢复失败，已尝试 {attempts} 次")
        self.field_id = field_id
        self.attempts = attempts


class OrchestrationError(ScoutMindError):
    """编排流程错误"""
    pass


class BrowserError(ScoutMindError):
    """浏览器相关错误的基类"""
    pass


class PageLoadError(BrowserError):
    """页面加载失败"""

    def __init__(self, url: str, message: str = "页面加载失败"):
        super().__init__(f"{message}: {url}")
        self.url = url


class FetchTimeoutError(PageLoadError):
    """抓取页面超时"""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(url, f"页面抓取超时 ({timeout_ms}ms)")
        self.timeout_ms = timeout_ms


class FetchNetworkError(PageLoadError):
    """抓取页面时网络错误"""

    def __init__(self, url: str, reason: str = "网络错误"):
        super().__init__(url, reason)
        self.reason = reason


class FetchHTTPError(PageLoadError):
    """抓取页面返回错误状态码"""

    def __init__(self, url: str, status: int, body: str | None = None):
        super().__init__(url, f"HTTP 状态码 {status}")
        self.status = status
        self.body = body


class ValidationError(ScoutMindError):
    """输入验证失败"""
    pass


class URLValidationError(ValidationError):
    """URL 验证失败"""

    def __init__(self, url: str, reason: str = "格式无效"):
        super().__init__(f"URL 验证失败: {url}, 原因: {reason}")
        self.url = url
        self.reason = reason


class ConfigError(ScoutMindError):
    """配置相关错误"""
    pass


class SettingsStoreError(ConfigError):
    """设置存储读写失败"""

    def __init__(self, path: str, message: str = "设置文件读写失败"):
        super().__init__(f"{message}: {path}")
        self.path = path
