"""提取流水线 Agent：规划、选择器、提取、校验、恢复与编排"""

from .base import BaseAgent
from .extractor import ExtractorAgent, apply_transform
from .models import (
    ExtractionPlan,
    ExtractionResult,
    ExtractorSelectors,
    FieldDefinition,
    MultiSelectorResult,
    MultiSelectorTarget,
    OrchestrationIssue,
    OrchestrationResult,
    PaginationStrategy,
    PlanParseOutcome,
    RecoveryAttemptResult,
    SchemaFieldConfig,
    SelectorConversion,
    SelectorResult,
    ValidationIssue,
    ValidationResult,
)
from .orchestrator import Orchestrator, PipelineState
from .planner import PlannerAgent, parse_plan_text
from .recovery import RecoveryAgent, RecoveryStrategy
from .selector import SelectorAgent, parse_selector_text
from .validator import ValidatorAgent

__all__ = [
    "BaseAgent",
    "PlannerAgent",
    "SelectorAgent",
    "ExtractorAgent",
    "ValidatorAgent",
    "RecoveryAgent",
    "RecoveryStrategy",
    "Orchestrator",
    "PipelineState",
    "parse_plan_text",
    "parse_selector_text",
    "apply_transform",
    "ExtractionPlan",
    "ExtractionResult",
    "ExtractorSelectors",
    "FieldDefinition",
    "MultiSelectorResult",
    "MultiSelectorTarget",
    "OrchestrationIssue",
    "OrchestrationResult",
    "PaginationStrategy",
    "PlanParseOutcome",
    "RecoveryAttemptResult",
    "SchemaFieldConfig",
    "SelectorConversion",
    "SelectorResult",
    "ValidationIssue",
    "ValidationResult",
]
