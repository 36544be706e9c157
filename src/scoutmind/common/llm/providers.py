"""内置 LLM provider

所有 provider 都通过 OpenAI 兼容的 chat 接口访问：
- ollama: 本地 http://localhost:11434/v1
- openai / mistral: 官方 /v1 接口
- anthropic: OpenAI SDK 兼容端点
"""

from __future__ import annotations

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from openai import APIStatusError, AsyncOpenAI

from ..constants import PROVIDER_OLLAMA
from ..logger import get_logger
from .gateway import (
    ApiKeyValidation,
    GatewayConfig,
    LLMResponse,
    ProviderSettings,
    QueryOptions,
    TokenUsage,
)

logger = get_logger(__name__)

# Ollama 的 OpenAI 兼容接口不校验 key，但客户端要求非空
_OLLAMA_PLACEHOLDER_KEY = "ollama"


def _openai_compatible_base(provider_id: str, base_url: str) -> str:
    """Ollama 配置的是服务根地址，需要补上 /v1"""
    base_url = base_url.rstrip("/")
    if provider_id == PROVIDER_OLLAMA and not base_url.endswith("/v1"):
        return f"{base_url}/v1"
    return base_url


class ChatModelProvider:
    """基于 langchain ChatOpenAI 的 provider"""

    def __init__(self, provider_id: str, gateway_config: GatewayConfig):
        self.provider_id = provider_id
        self._settings: ProviderSettings | None = None
        self._llm: ChatOpenAI | None = None
        self._defaults = gateway_config
        self.update_config(gateway_config)

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------

    def update_config(self, gateway_config: GatewayConfig) -> None:
        """根据新快照重建客户端（只替换引用）"""
        settings = gateway_config.providers.get(self.provider_id)
        if settings is None:
            logger.warning(f"[Provider:{self.provider_id}] 新配置中没有该 provider，保留旧配置")
            return

        llm = None
        api_key = settings.api_key or (
            _OLLAMA_PLACEHOLDER_KEY if self.provider_id == PROVIDER_OLLAMA else ""
        )
        if api_key:
            llm = ChatOpenAI(
                api_key=api_key,
                base_url=_openai_compatible_base(self.provider_id, settings.base_url),
                model=settings.model,
                temperature=gateway_config.temperature,
                max_tokens=gateway_config.max_tokens,
                timeout=gateway_config.request_timeout_s,
            )

        self._defaults = gateway_config
        self._settings = settings
        self._llm = llm

    @property
    def settings(self) -> ProviderSettings | None:
        return self._settings

    # ------------------------------------------------------------------
    # 调用
    # ------------------------------------------------------------------

    async def query(self, prompt: str, options: QueryOptions) -> LLMResponse:
        llm = self._llm
        settings = self._settings
        if llm is None or settings is None:
            error = f"No API key found for {self.provider_id}. Please set one in the settings."
            logger.error(f"[Provider:{self.provider_id}] {error}")
            return LLMResponse(error=error, provider=self.provider_id)

        messages: list[BaseMessage] = []
        if options.system_prompt:
            messages.append(SystemMessage(content=options.system_prompt))
        messages.append(HumanMessage(content=prompt))

        call_kwargs: dict = {}
        if options.model:
            call_kwargs["model"] = options.model
        if options.temperature is not None:
            call_kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            call_kwargs["max_tokens"] = options.max_tokens

        logger.debug(
            f"[Provider:{self.provider_id}] model={options.model or settings.model} "
            f"temperature={call_kwargs.get('temperature', self._defaults.temperature)}"
        )
        response = await llm.ainvoke(messages, **call_kwargs)

        usage = None
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata:
            usage = TokenUsage(
                prompt_tokens=int(usage_metadata.get("input_tokens", 0) or 0),
                completion_tokens=int(usage_metadata.get("output_tokens", 0) or 0),
                total_tokens=int(usage_metadata.get("total_tokens", 0) or 0),
            )

        metadata = getattr(response, "response_metadata", None) or {}
        return LLMResponse(
            text=str(response.content or ""),
            usage=usage,
            model=metadata.get("model_name") or options.model or settings.model,
            provider=self.provider_id,
        )

    async def validate_api_key(self, provider_id: str, api_key: str) -> ApiKeyValidation:
        """通过列出模型来校验 API Key"""
        settings = self._settings
        if settings is None:
            return ApiKeyValidation(
                success=False,
                provider=provider_id,
                error=f"Unknown provider: {provider_id}",
            )

        client = AsyncOpenAI(
            api_key=api_key,
            base_url=_openai_compatible_base(provider_id, settings.base_url),
            timeout=self._defaults.request_timeout_s,
        )
        try:
            await client.models.list()
        except APIStatusError as exc:
            return ApiKeyValidation(
                success=False,
                provider=provider_id,
                message=f"API key validation failed with status {exc.status_code}",
            )
        except Exception as exc:  # noqa: BLE001
            error = f"Error validating {provider_id} API key: {exc}"
            logger.error(f"[Provider:{self.provider_id}] {error}")
            return ApiKeyValidation(success=False, provider=provider_id, error=error)
        finally:
            await client.close()

        return ApiKeyValidation(
            success=True,
            provider=provider_id,
            message=f"API key for {provider_id} is valid.",
        )
