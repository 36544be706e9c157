"""LLM 网关模块"""

from .gateway import (
    ApiKeyValidation,
    GatewayConfig,
    LLMProvider,
    LLMResponse,
    ModelGateway,
    ProviderSettings,
    QueryOptions,
    TokenUsage,
    build_gateway,
)
from .trace_logger import append_llm_trace, read_llm_traces

__all__ = [
    "ApiKeyValidation",
    "GatewayConfig",
    "LLMProvider",
    "LLMResponse",
    "ModelGateway",
    "ProviderSettings",
    "QueryOptions",
    "TokenUsage",
    "build_gateway",
    "append_llm_trace",
    "read_llm_traces",
]
