"""Agent 公共基类：通过模型网关发起调用并记录追踪"""

from __future__ import annotations

import copy
import time
from typing import Any, TypeVar

from ..common.llm import LLMResponse, ModelGateway, QueryOptions, append_llm_trace
from ..common.logger import get_logger

logger = get_logger(__name__)

AgentT = TypeVar("AgentT", bound="BaseAgent")


class BaseAgent:
    """无状态的请求/响应式 Agent

    provider / fallback_provider 为 None 时使用网关默认配置。
    """

    component = "Agent"

    def __init__(
        self,
        gateway: ModelGateway,
        provider: str | None = None,
        fallback_provider: str | None = None,
    ):
        if gateway is None:
            raise ValueError(f"{type(self).__name__} 需要 ModelGateway 实例")
        self.gateway = gateway
        self.provider = provider
        self.fallback_provider = fallback_provider

    def with_provider(
        self: AgentT,
        provider: str | None,
        fallback_provider: str | None = None,
    ) -> AgentT:
        """返回绑定了指定 provider 的浅拷贝（本实例不变）"""
        clone = copy.copy(self)
        clone.provider = provider
        if fallback_provider is not None:
            clone.fallback_provider = fallback_provider
        return clone

    def _options(
        self,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
    ) -> QueryOptions:
        return QueryOptions(
            provider=self.provider,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
            fallback_provider=self.fallback_provider or self.gateway.config.fallback_provider,
        )

    async def _ask(
        self,
        prompt: str,
        *,
        operation: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        trace_input: dict[str, Any] | None = None,
    ) -> LLMResponse:
        """调用网关；无论成功与否都记录一条追踪"""
        options = self._options(
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )
        logger.debug(f"[{self.component}] {operation}: provider={options.provider or 'default'}")
        started = time.perf_counter()
        response = await self.gateway.query(prompt, options)
        duration_ms = int((time.perf_counter() - started) * 1000)
        append_llm_trace(
            component=f"{self.component}.{operation}",
            payload={
                "model": response.model,
                "provider": response.provider,
                "duration_ms": duration_ms,
                "input": {
                    "system_prompt": system_prompt,
                    "prompt": prompt,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                    **(trace_input or {}),
                },
                "output": {
                    "raw_response": response.text,
                    "error": response.error,
                },
            },
        )
        return response
