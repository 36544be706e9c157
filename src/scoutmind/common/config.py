"""配置管理"""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# 加载 .env 文件
load_dotenv()


class LLMConfig(BaseModel):
    """LLM 网关配置"""

    # 默认 provider（ollama / openai / mistral / anthropic）
    provider: str = Field(default_factory=lambda: os.getenv("SCOUT_LLM_PROVIDER", "ollama"))
    # 失败时的备用 provider（可选）
    fallback_provider: str | None = Field(
        default_factory=lambda: os.getenv("SCOUT_LLM_FALLBACK_PROVIDER", None)
    )
    temperature: float = Field(
        default_factory=lambda: float(os.getenv("SCOUT_LLM_TEMPERATURE", "0.7"))
    )
    max_tokens: int = Field(default_factory=lambda: int(os.getenv("SCOUT_LLM_MAX_TOKENS", "2048")))
    request_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("SCOUT_LLM_TIMEOUT", "120"))
    )
    trace_enabled: bool = Field(
        default_factory=lambda: os.getenv("LLM_TRACE_ENABLED", "false").lower() == "true"
    )
    trace_file: str = Field(
        default_factory=lambda: os.getenv("LLM_TRACE_FILE", "output/llm_trace.jsonl")
    )
    trace_max_chars: int = Field(default_factory=lambda: int(os.getenv("LLM_TRACE_MAX_CHARS", "20000")))


class OllamaConfig(BaseModel):
    """本地 Ollama 配置"""

    base_url: str = Field(
        default_factory=lambda: os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    model: str = Field(default_factory=lambda: os.getenv("OLLAMA_MODEL", "llama2"))


class ExternalConfig(BaseModel):
    """远程 API provider 配置（均走 OpenAI 兼容接口）"""

    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_api_base: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    )
    openai_model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"))

    mistral_api_key: str = Field(default_factory=lambda: os.getenv("MISTRAL_API_KEY", ""))
    mistral_api_base: str = Field(
        default_factory=lambda: os.getenv("MISTRAL_API_BASE", "https://api.mistral.ai/v1")
    )
    mistral_model: str = Field(default_factory=lambda: os.getenv("MISTRAL_MODEL", "mistral-tiny"))

    anthropic_api_key: str = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""))
    # Anthropic 的 OpenAI SDK 兼容端点
    anthropic_api_base: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_BASE", "https://api.anthropic.com/v1/")
    )
    anthropic_model: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_MODEL", "claude-3-sonnet-20240229")
    )


class BrowserConfig(BaseModel):
    """浏览器配置"""

    headless: bool = Field(default_factory=lambda: os.getenv("HEADLESS", "true").lower() == "true")
    viewport_width: int = Field(default_factory=lambda: int(os.getenv("VIEWPORT_WIDTH", "1280")))
    viewport_height: int = Field(default_factory=lambda: int(os.getenv("VIEWPORT_HEIGHT", "720")))
    timeout_ms: int = Field(default_factory=lambda: int(os.getenv("STEP_TIMEOUT_MS", "30000")))
    # 抓取 HTML 样本的硬超时
    fetch_timeout_ms: int = Field(default_factory=lambda: int(os.getenv("FETCH_TIMEOUT_MS", "30000")))
    # 读取单个元素属性/文本的超时
    element_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("ELEMENT_TIMEOUT_MS", "2000"))
    )


class PlannerConfig(BaseModel):
    """规划 Agent 配置"""

    max_html_sample_length: int = Field(
        default_factory=lambda: int(os.getenv("PLANNER_MAX_HTML", "30000"))
    )
    temperature: float = 0.3
    refine_temperature: float = 0.2
    max_tokens: int = 2048


class SelectorConfig(BaseModel):
    """选择器 Agent 配置"""

    temperature: float = 0.2
    max_tokens: int = 1024
    # generate / refine 提示词中 HTML 样本的上限
    max_html_length: int = Field(
        default_factory=lambda: int(os.getenv("SELECTOR_MAX_HTML", "30000"))
    )
    robust_html_limit: int = 30000
    convert_temperature: float = 0.0
    convert_max_tokens: int = 256


class ExtractorConfig(BaseModel):
    """提取 Agent 配置"""

    fallback_to_model: bool = Field(
        default_factory=lambda: os.getenv("EXTRACTOR_FALLBACK_TO_MODEL", "true").lower() == "true"
    )
    max_elements_per_batch: int = Field(
        default_factory=lambda: int(os.getenv("EXTRACTOR_MAX_ELEMENTS", "100"))
    )
    truncate_html_at: int = Field(
        default_factory=lambda: int(os.getenv("EXTRACTOR_TRUNCATE_HTML", "50000"))
    )
    temperature: float = 0.2
    max_tokens: int = 4096


class RecoveryConfig(BaseModel):
    """恢复 Agent 配置"""

    max_html_length: int = 10000
    temperature: float = 0.3
    # 每个字段最多尝试恢复的次数
    max_attempts_per_field: int = Field(
        default_factory=lambda: int(os.getenv("RECOVERY_MAX_ATTEMPTS", "2"))
    )


class SettingsConfig(BaseModel):
    """持久化设置配置"""

    settings_file: str = Field(
        default_factory=lambda: os.getenv("SCOUT_SETTINGS_FILE", ".scoutmind/settings.json")
    )


class Config(BaseModel):
    """全局配置"""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    external: ExternalConfig = Field(default_factory=ExternalConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    selector: SelectorConfig = Field(default_factory=SelectorConfig)
    extractor: ExtractorConfig = Field(default_factory=ExtractorConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    settings: SettingsConfig = Field(default_factory=SettingsConfig)

    @classmethod
    def load(cls) -> "Config":
        """加载配置"""
        return cls()


# 全局配置实例
config = Config.load()
