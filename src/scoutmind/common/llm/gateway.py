"""模型网关

把多个 LLM provider（本地 Ollama、远程 OpenAI / Mistral / Anthropic）统一成
`query(prompt, options) -> LLMResponse` 一种调用形状：

- provider 注册表按 id 索引，第一个注册的 provider 成为默认；
- 调用失败（抛异常或返回 error）时可切换到 fallback provider 重试一次；
- 配置通过整体替换快照的方式更新，调用中途不会看到半更新的状态。
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

from ..config import Config, config as global_config
from ..constants import EXTERNAL_PROVIDERS, PROVIDER_OLLAMA
from ..exceptions import GatewayError
from ..logger import get_logger

if TYPE_CHECKING:
    from ..settings import SettingsStore

logger = get_logger(__name__)


# ============================================================================
# 数据结构
# ============================================================================


@dataclass(frozen=True)
class QueryOptions:
    """单次调用的覆盖参数"""

    provider: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    fallback_provider: str | None = None


@dataclass
class TokenUsage:
    """token 用量"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    """统一的网关响应

    没有 error 即视为调用成功（text 为空字符串也算成功，调用方需自行判断内容）。
    """

    text: str = ""
    usage: TokenUsage | None = None
    model: str | None = None
    error: str | None = None
    provider: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ApiKeyValidation:
    """API Key 校验结果"""

    success: bool
    provider: str
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProviderSettings:
    """单个 provider 的端点 / 凭证 / 默认模型"""

    base_url: str
    api_key: str = ""
    model: str = ""


@dataclass(frozen=True)
class GatewayConfig:
    """网关配置快照（不可变，更新时整体替换）"""

    default_provider: str | None = None
    fallback_provider: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2048
    request_timeout_s: float = 120.0
    providers: dict[str, ProviderSettings] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls,
        cfg: Config | None = None,
        settings_store: "SettingsStore | None" = None,
    ) -> "GatewayConfig":
        """从全局配置构建快照，设置存储中的值优先"""
        cfg = cfg or global_config

        def _setting(key: str, default: Any) -> Any:
            if settings_store is None:
                return default
            value = settings_store.get(key)
            return default if value in (None, "") else value

        ext = cfg.external
        providers = {
            PROVIDER_OLLAMA: ProviderSettings(
                base_url=_setting("ollama_base_url", cfg.ollama.base_url),
                model=_setting("ollama_model", cfg.ollama.model),
            ),
            "openai": ProviderSettings(
                base_url=_setting("openai_base_url", ext.openai_api_base),
                api_key=_setting("openai_api_key", ext.openai_api_key),
                model=_setting("openai_model", ext.openai_model),
            ),
            "mistral": ProviderSettings(
                base_url=_setting("mistral_base_url", ext.mistral_api_base),
                api_key=_setting("mistral_api_key", ext.mistral_api_key),
                model=_setting("mistral_model", ext.mistral_model),
            ),
            "anthropic": ProviderSettings(
                base_url=_setting("anthropic_base_url", ext.anthropic_api_base),
                api_key=_setting("anthropic_api_key", ext.anthropic_api_key),
                model=_setting("anthropic_model", ext.anthropic_model),
            ),
        }
        return cls(
            default_provider=_setting("llm_provider", cfg.llm.provider),
            fallback_provider=_setting("fallback_provider", cfg.llm.fallback_provider),
            temperature=cfg.llm.temperature,
            max_tokens=cfg.llm.max_tokens,
            request_timeout_s=cfg.llm.request_timeout_s,
            providers=providers,
        )


# ============================================================================
# Provider 协议
# ============================================================================


@runtime_checkable
class LLMProvider(Protocol):
    """provider 能力集合：必须有 query，可选 update_config / validate_api_key"""

    async def query(self, prompt: str, options: QueryOptions) -> LLMResponse: ...


QueryFunc = Callable[[str, QueryOptions], Awaitable[LLMResponse]]


class _FunctionProvider:
    """把一个普通的 async 函数包装成 provider"""

    def __init__(self, func: QueryFunc):
        self._func = func
        self.__name__ = getattr(func, "__name__", "function_provider")

    async def query(self, prompt: str, options: QueryOptions) -> LLMResponse:
        return await self._func(prompt, options)


# ============================================================================
# 网关
# ============================================================================


class ModelGateway:
    """多 provider 的 LLM 网关"""

    def __init__(self, gateway_config: GatewayConfig | None = None):
        self._config = gateway_config or GatewayConfig()
        self._providers: dict[str, LLMProvider] = {}
        self._default_provider_id: str | None = None

    # ------------------------------------------------------------------
    # 注册表
    # ------------------------------------------------------------------

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def default_provider(self) -> str | None:
        return self._default_provider_id

    def register_provider(self, provider_id: str, provider: LLMProvider | QueryFunc) -> None:
        """注册 provider；第一个注册的成为默认（除非配置里指定了默认）"""
        if not provider_id:
            raise GatewayError("provider id 不能为空")

        if not callable(getattr(provider, "query", None)) and inspect.iscoroutinefunction(provider):
            provider = _FunctionProvider(provider)
        elif not callable(getattr(provider, "query", None)):
            logger.error(f"[Gateway] 尝试注册无效 provider: {provider_id}")
            raise GatewayError(
                f"Invalid provider instance for: {provider_id}. Must have a query method.",
                provider=provider_id,
            )

        self._providers[provider_id] = provider
        logger.debug(f"[Gateway] 已注册 provider: {provider_id}")

        configured = self._config.default_provider
        if configured and configured == provider_id:
            self._default_provider_id = provider_id
        elif self._default_provider_id is None:
            self._default_provider_id = provider_id

    def get_provider(self, provider_id: str) -> LLMProvider | None:
        return self._providers.get(provider_id)

    def provider_ids(self) -> list[str]:
        return list(self._providers.keys())

    # ------------------------------------------------------------------
    # 调用
    # ------------------------------------------------------------------

    async def query(self, prompt: str, options: QueryOptions | None = None) -> LLMResponse:
        """向 provider 发起一次调用

        失败（抛异常或返回 error）且指定了不同的 fallback_provider 时，
        清空 fallback 后对其重试一次。取消（CancelledError）直接向上传播。
        """
        options = options or QueryOptions()
        target_id = options.provider or self._default_provider_id

        if not target_id:
            logger.error("[Gateway] 没有指定 provider，且没有默认 provider")
            return LLMResponse(error="No LLM provider available for query.")

        provider = self._providers.get(target_id)
        if provider is None:
            error = (
                f"LLM provider '{target_id}' not found. "
                f"Available: {', '.join(self._providers) or 'none'}"
            )
            logger.error(f"[Gateway] {error}")
            response = LLMResponse(error=error, provider=target_id)
        else:
            logger.debug(f"[Gateway] 调用 provider={target_id} prompt_len={len(prompt)}")
            try:
                response = await provider.query(prompt, options)
            except Exception as exc:  # noqa: BLE001
                error = f"Error querying provider {target_id}: {exc or type(exc).__name__}"
                logger.error(f"[Gateway] {error}")
                response = LLMResponse(error=error)
            response.provider = target_id

        if response.ok:
            logger.debug(f"[Gateway] provider={target_id} 返回 {len(response.text or '')} 字符")
            return response

        fallback = options.fallback_provider
        if fallback and fallback != target_id:
            logger.info(f"[Gateway] provider={target_id} 失败，切换到 fallback: {fallback}")
            return await self.query(
                prompt,
                replace(options, provider=fallback, fallback_provider=None),
            )
        return response

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------

    def update_config(
        self,
        *,
        default_provider: str | None = None,
        fallback_provider: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        providers: dict[str, ProviderSettings] | None = None,
    ) -> GatewayConfig:
        """热更新配置：构建新快照后整体替换，再下发给支持 update_config 的 provider"""
        current = self._config
        merged_providers = dict(current.providers)
        if providers:
            merged_providers.update(providers)

        new_config = replace(
            current,
            default_provider=default_provider or current.default_provider,
            fallback_provider=(
                fallback_provider if fallback_provider is not None else current.fallback_provider
            ),
            temperature=temperature if temperature is not None else current.temperature,
            max_tokens=max_tokens if max_tokens is not None else current.max_tokens,
            providers=merged_providers,
        )
        self._config = new_config

        if default_provider:
            if default_provider not in self._providers:
                logger.warning(f"[Gateway] 默认 provider '{default_provider}' 尚未注册")
            self._default_provider_id = default_provider
            logger.info(f"[Gateway] 默认 provider 更新为: {default_provider}")

        for provider_id, provider in list(self._providers.items()):
            updater = getattr(provider, "update_config", None)
            if callable(updater):
                updater(new_config)
                logger.debug(f"[Gateway] 已下发新配置到 provider: {provider_id}")
        return new_config

    async def validate_api_key(self, provider_id: str, api_key: str) -> ApiKeyValidation:
        """校验 API Key（仅支持实现了 validate_api_key 的 provider）"""
        provider = self._providers.get(provider_id)
        validator = getattr(provider, "validate_api_key", None) if provider else None
        if not callable(validator):
            error = (
                f"API key validation is not supported for {provider_id} "
                "or the provider is not registered."
            )
            logger.error(f"[Gateway] {error}")
            return ApiKeyValidation(success=False, provider=provider_id, error=error)
        return await validator(provider_id, api_key)


def build_gateway(
    settings_store: "SettingsStore | None" = None,
    gateway_config: GatewayConfig | None = None,
) -> ModelGateway:
    """按配置创建网关并注册内置 provider

    ollama 总是注册；远程 provider 只有配置了 API Key 才注册。
    """
    from .providers import ChatModelProvider

    gateway_config = gateway_config or GatewayConfig.from_config(settings_store=settings_store)
    gateway = ModelGateway(gateway_config)

    for provider_id in (PROVIDER_OLLAMA, *EXTERNAL_PROVIDERS):
        settings = gateway_config.providers.get(provider_id)
        if settings is None:
            continue
        if provider_id != PROVIDER_OLLAMA and not settings.api_key:
            continue
        gateway.register_provider(provider_id, ChatModelProvider(provider_id, gateway_config))

    logger.info(
        f"[Gateway] 已注册 provider: {', '.join(gateway.provider_ids())}，"
        f"默认: {gateway.default_provider}"
    )
    return gateway
