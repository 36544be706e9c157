"""模型网关单元测试"""

import asyncio

import pytest
from scoutmind.common.exceptions import GatewayError
from scoutmind.common.llm import (
    ApiKeyValidation,
    GatewayConfig,
    LLMResponse,
    ModelGateway,
    ProviderSettings,
    QueryOptions,
    build_gateway,
)
from scoutmind.common.llm.providers import ChatModelProvider, _openai_compatible_base


class TestRegistry:
    """provider 注册表测试"""

    def test_first_registered_becomes_default(self, scripted_provider):
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider())
        gateway.register_provider("b", scripted_provider())
        assert gateway.default_provider == "a"
        assert gateway.provider_ids() == ["a", "b"]

    def test_get_provider(self, scripted_provider):
        gateway = ModelGateway()
        provider = scripted_provider()
        gateway.register_provider("a", provider)
        assert gateway.get_provider("a") is provider
        assert gateway.get_provider("missing") is None

    def test_configured_default_wins(self, scripted_provider):
        gateway = ModelGateway(GatewayConfig(default_provider="b"))
        gateway.register_provider("a", scripted_provider())
        gateway.register_provider("b", scripted_provider())
        assert gateway.default_provider == "b"

    def test_invalid_provider_rejected(self, scripted_provider):
        gateway = ModelGateway()
        with pytest.raises(GatewayError):
            gateway.register_provider("bad", object())
        with pytest.raises(GatewayError):
            gateway.register_provider("", scripted_provider())

    @pytest.mark.asyncio
    async def test_function_provider(self, scripted_provider):
        """测试注册 async 函数作为 provider"""

        async def echo(prompt, options):
            return LLMResponse(text=prompt.upper())

        gateway = ModelGateway()
        gateway.register_provider("echo", echo)
        response = await gateway.query("hi")
        assert response.text == "HI"
        assert response.provider == "echo"


class TestQuery:
    """调用与 fallback 测试"""

    @pytest.mark.asyncio
    async def test_default_provider_used(self, scripted_provider):
        gateway = ModelGateway()
        provider = scripted_provider(["hello"])
        gateway.register_provider("a", provider)

        response = await gateway.query("prompt")

        assert response.ok
        assert response.text == "hello"
        assert response.provider == "a"
        assert provider.prompts == ["prompt"]

    @pytest.mark.asyncio
    async def test_no_provider(self, scripted_provider):
        response = await ModelGateway().query("prompt")
        assert response.error == "No LLM provider available for query."

    @pytest.mark.asyncio
    async def test_missing_provider(self, scripted_provider):
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider())
        response = await gateway.query("prompt", QueryOptions(provider="zzz"))
        assert not response.ok
        assert "'zzz' not found" in response.error
        assert "Available: a" in response.error

    @pytest.mark.asyncio
    async def test_exception_falls_back_once(self, scripted_provider):
        """测试 provider 抛异常时切换到 fallback，且只重试一次"""
        primary = scripted_provider([RuntimeError("boom")])
        backup = scripted_provider(["from backup"])
        gateway = ModelGateway()
        gateway.register_provider("a", primary)
        gateway.register_provider("b", backup)

        response = await gateway.query("prompt", QueryOptions(fallback_provider="b"))

        assert response.ok
        assert response.text == "from backup"
        assert response.provider == "b"
        assert primary.call_count == 1
        assert backup.call_count == 1
        assert backup.options[0].fallback_provider is None

    @pytest.mark.asyncio
    async def test_error_response_falls_back(self, scripted_provider):
        """测试 provider 返回 error 时同样切换"""
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider([LLMResponse(error="quota")]))
        gateway.register_provider("b", scripted_provider(["ok"]))

        response = await gateway.query("prompt", QueryOptions(fallback_provider="b"))

        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_failing_fallback_does_not_loop(self, scripted_provider):
        """测试 fallback 也失败时返回其错误，不会无限重试"""
        primary = scripted_provider([RuntimeError("first")])
        backup = scripted_provider([RuntimeError("second")])
        gateway = ModelGateway()
        gateway.register_provider("a", primary)
        gateway.register_provider("b", backup)

        response = await gateway.query("prompt", QueryOptions(fallback_provider="b"))

        assert not response.ok
        assert "second" in response.error
        assert primary.call_count == 1
        assert backup.call_count == 1

    @pytest.mark.asyncio
    async def test_fallback_same_as_target_ignored(self, scripted_provider):
        primary = scripted_provider([RuntimeError("boom")])
        gateway = ModelGateway()
        gateway.register_provider("a", primary)

        response = await gateway.query("prompt", QueryOptions(fallback_provider="a"))

        assert not response.ok
        assert primary.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_primary_falls_back(self, scripted_provider):
        gateway = ModelGateway()
        gateway.register_provider("b", scripted_provider(["ok"]))
        response = await gateway.query("prompt", QueryOptions(provider="x", fallback_provider="b"))
        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, scripted_provider):
        """测试取消不会被转换成错误响应"""
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider([asyncio.CancelledError()]))
        with pytest.raises(asyncio.CancelledError):
            await gateway.query("prompt")


class _ConfigurableProvider:
    def __init__(self):
        self.received: list[GatewayConfig] = []

    async def query(self, prompt: str, options: QueryOptions) -> LLMResponse:
        return LLMResponse(text="ok")

    def update_config(self, gateway_config: GatewayConfig) -> None:
        self.received.append(gateway_config)


class TestConfig:
    """配置快照测试"""

    def test_update_config_replaces_snapshot(self, scripted_provider):
        original = GatewayConfig(temperature=0.7)
        gateway = ModelGateway(original)

        new_config = gateway.update_config(temperature=0.1, fallback_provider="b")

        assert gateway.config is new_config
        assert new_config is not original
        assert new_config.temperature == 0.1
        assert new_config.fallback_provider == "b"
        assert original.temperature == 0.7

    def test_update_config_propagates_to_providers(self, scripted_provider):
        gateway = ModelGateway()
        provider = _ConfigurableProvider()
        gateway.register_provider("a", provider)

        new_config = gateway.update_config(max_tokens=100)

        assert provider.received == [new_config]

    def test_update_default_provider(self, scripted_provider):
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider())
        gateway.register_provider("b", scripted_provider())
        gateway.update_config(default_provider="b")
        assert gateway.default_provider == "b"

    def test_update_merges_providers(self, scripted_provider):
        gateway = ModelGateway(
            GatewayConfig(providers={"openai": ProviderSettings(base_url="https://a")})
        )
        gateway.update_config(providers={"mistral": ProviderSettings(base_url="https://m")})
        assert set(gateway.config.providers) == {"openai", "mistral"}

    @pytest.mark.asyncio
    async def test_validate_api_key_unsupported(self, scripted_provider):
        gateway = ModelGateway()
        gateway.register_provider("a", scripted_provider())
        result = await gateway.validate_api_key("a", "sk-test")
        assert isinstance(result, ApiKeyValidation)
        assert not result.success
        assert "not supported" in result.error


class TestBuiltinProviders:
    """内置 provider 测试（不发起网络请求）"""

    def test_ollama_base_gets_v1(self):
        assert _openai_compatible_base("ollama", "http://localhost:11434") == (
            "http://localhost:11434/v1"
        )
        assert _openai_compatible_base("ollama", "http://localhost:11434/v1/") == (
            "http://localhost:11434/v1"
        )
        assert _openai_compatible_base("openai", "https://api.openai.com/v1") == (
            "https://api.openai.com/v1"
        )

    def test_build_gateway_skips_providers_without_key(self):
        gateway_config = GatewayConfig(
            providers={
                "ollama": ProviderSettings(base_url="http://localhost:11434", model="llama3"),
                "openai": ProviderSettings(base_url="https://api.openai.com/v1", model="gpt-4o"),
                "mistral": ProviderSettings(
                    base_url="https://api.mistral.ai/v1", api_key="key", model="mistral-small"
                ),
            }
        )
        gateway = build_gateway(gateway_config=gateway_config)
        assert gateway.provider_ids() == ["ollama", "mistral"]
        assert gateway.default_provider == "ollama"

    @pytest.mark.asyncio
    async def test_provider_without_key_returns_error(self):
        gateway_config = GatewayConfig(
            providers={"openai": ProviderSettings(base_url="https://api.openai.com/v1")}
        )
        provider = ChatModelProvider("openai", gateway_config)
        response = await provider.query("hi", QueryOptions())
        assert not response.ok
        assert "No API key found for openai" in response.error
