"""ScoutMind - 基于 LLM 的网页数据提取流水线"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .agents.orchestrator import Orchestrator as Orchestrator
    from .common.llm.gateway import ModelGateway as ModelGateway
    from .common.llm.gateway import build_gateway as build_gateway

__all__ = [
    "__version__",
    "Orchestrator",
    "ModelGateway",
    "build_gateway",
]


def __getattr__(name: str) -> Any:
    """延迟导出，避免导入包时就加载 playwright / langchain 等重依赖"""
    if name == "Orchestrator":
        from .agents.orchestrator import Orchestrator

        return Orchestrator
    if name in {"ModelGateway", "build_gateway"}:
        from .common.llm.gateway import ModelGateway, build_gateway

        return ModelGateway if name == "ModelGateway" else build_gateway
    raise AttributeError(f"module 'scoutmind' has no attribute '{name}'")
