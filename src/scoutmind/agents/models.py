"""Agent 数据模型定义

每个阶段产出一个新的结果对象，下游只读不改。
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..common.constants import ISSUE_VALIDATION


def now_iso() -> str:
    return datetime.now().isoformat()


# ============================================================================
# 计划
# ============================================================================


class PlanParseOutcome(str, Enum):
    """计划文本的解析程度"""

    PARSED = "parsed"  # 所有段落都找到了
    PARTIAL = "partial"  # 找到部分段落
    UNPARSEABLE = "unparseable"  # 一个段落也没找到


@dataclass
class FieldDefinition:
    """字段定义

    name 在同一个计划内唯一，同时作为校验 / 编排阶段的字段 id。
    """

    name: str  # 字段名称（如 "title", "price"）
    type: str = "string"  # string / number / boolean / url / image / date ...
    description: str | None = None  # 字段描述
    is_list: bool = False  # 是否为列表字段
    extraction_notes: str | None = None  # 提取备注，包含 "optional" 即为可选字段

    @property
    def label(self) -> str:
        return self.description or self.name

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SchemaFieldConfig:
    """字段的提取配置"""

    selector: str | None = None  # 相对于条目元素的子选择器，None 表示读取条目自身
    attribute: str | None = None  # 读取的属性，None 表示读取文本
    transform: str | None = None  # number / boolean / trim / lowercase / uppercase / url

    @classmethod
    def from_value(cls, value: Any) -> "SchemaFieldConfig":
        """兼容 LLM 给出的各种写法：dict 或单独的选择器字符串"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(selector=value or None)
        if isinstance(value, dict):
            return cls(
                selector=value.get("selector") or None,
                attribute=value.get("attribute") or None,
                transform=value.get("transform") or None,
            )
        return cls()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"selector": self.selector}
        if self.attribute is not None:
            data["attribute"] = self.attribute
        if self.transform is not None:
            data["transform"] = self.transform
        return data


@dataclass
class PaginationStrategy:
    """分页策略"""

    pagination_type: str | None = None  # next-button / url-pattern / page-numbers
    next_page_selector: str | None = None
    page_number_pattern: str | None = None  # 如 "/page/{n}"
    page_numbers_selector: str | None = None
    max_pages: int = 10
    has_more_data_indicator: str | None = None  # "没有更多结果" 提示的选择器
    has_pagination: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractionPlan:
    """提取计划"""

    success: bool = False
    extraction_goal: str | None = None
    data_structure: str | None = None
    key_fields: list[FieldDefinition] = field(default_factory=list)
    target_elements: list[str] = field(default_factory=list)
    extraction_strategy: str | None = None
    potential_challenges: list[str] = field(default_factory=list)
    schema: dict[str, SchemaFieldConfig] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    is_multi_page: bool = False
    pagination_strategy: PaginationStrategy | None = None
    parse_outcome: PlanParseOutcome = PlanParseOutcome.UNPARSEABLE

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> "ExtractionPlan":
        return cls(success=False, error=error, **kwargs)

    @property
    def target_url(self) -> str | None:
        return self.metadata.get("target_url")

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.key_fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "extraction_goal": self.extraction_goal,
            "data_structure": self.data_structure,
            "key_fields": [f.to_dict() for f in self.key_fields],
            "target_elements": list(self.target_elements),
            "extraction_strategy": self.extraction_strategy,
            "potential_challenges": list(self.potential_challenges),
            "schema": (
                {name: cfg.to_dict() for name, cfg in self.schema.items()}
                if self.schema is not None
                else None
            ),
            "metadata": dict(self.metadata),
            "error": self.error,
            "is_multi_page": self.is_multi_page,
            "pagination_strategy": (
                self.pagination_strategy.to_dict() if self.pagination_strategy else None
            ),
            "parse_outcome": self.parse_outcome.value,
        }


# ============================================================================
# 选择器
# ============================================================================


@dataclass
class SelectorResult:
    """单次选择器生成结果"""

    success: bool
    css_selectors: list[str] = field(default_factory=list)
    xpath_selectors: list[str] = field(default_factory=list)
    explanation: str | None = None
    is_robust: bool = False
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def best_selector(self) -> str | None:
        """首选 CSS，其次 XPath"""
        if self.css_selectors:
            return self.css_selectors[0]
        if self.xpath_selectors:
            return self.xpath_selectors[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SelectorConversion:
    """CSS / XPath 互转结果"""

    success: bool
    original_selector: str
    converted_selector: str | None
    original_type: str  # css / xpath
    target_type: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MultiSelectorTarget:
    """批量生成选择器的单个目标"""

    name: str
    type: str | None = None
    description: str | None = None


@dataclass
class MultiSelectorResult:
    """批量选择器结果，success 表示所有目标都成功"""

    success: bool
    field_selectors: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    explanation: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# 提取
# ============================================================================


@dataclass
class ExtractorSelectors:
    """提取时使用的条目选择器"""

    css: str | None = None
    xpath: str | None = None
    container_selector: str | None = None


@dataclass
class ExtractionResult:
    """提取结果

    metadata.extraction_method 区分 dom（确定性）和 model（模型推断）两种来源；
    metadata.data_found 区分"流程完成但没有数据"。
    """

    success: bool
    data: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# 校验
# ============================================================================


@dataclass
class ValidationIssue:
    """单条校验问题（只记录，不阻断）"""

    dp_id: str
    issue: str
    value: Any = None
    original_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"dp_id": self.dp_id, "issue": self.issue, "value": self.value}
        if self.original_count is not None:
            data["original_count"] = self.original_count
        return data


@dataclass
class ValidationResult:
    """校验结果，success 等价于没有任何问题"""

    validated_data: dict[str, Any] = field(default_factory=dict)
    validation_issues: list[ValidationIssue] = field(default_factory=list)
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "validated_data": dict(self.validated_data),
            "validation_issues": [i.to_dict() for i in self.validation_issues],
            "success": self.success,
            "error": self.error,
        }


# ============================================================================
# 恢复
# ============================================================================


@dataclass
class RecoveryAttemptResult:
    """一次恢复尝试的结果，alternative_selectors 只包含已验证能命中元素的选择器"""

    recovery_successful: bool = False
    alternative_selectors: list[str] = field(default_factory=list)
    strategy_used: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# 编排
# ============================================================================


@dataclass
class OrchestrationIssue:
    """带来源标记的问题"""

    type: str  # planning / selection / extraction / validation / orchestration
    issue: str
    dp_id: str = "N/A"
    value: Any = None
    original_count: int | None = None

    @classmethod
    def from_validation(cls, issue: ValidationIssue) -> "OrchestrationIssue":
        return cls(
            type=ISSUE_VALIDATION,
            issue=issue.issue,
            dp_id=issue.dp_id,
            value=issue.value,
            original_count=issue.original_count,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "dp_id": self.dp_id, "issue": self.issue}
        if self.value is not None:
            data["value"] = self.value
        if self.original_count is not None:
            data["original_count"] = self.original_count
        return data


@dataclass
class OrchestrationResult:
    """一次请求的最终产物"""

    success: bool
    plan: ExtractionPlan | None = None
    selectors: dict[str, str | None] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    issues: list[OrchestrationIssue] = field(default_factory=list)
    error: str | None = None
    html_sample_used: bool = False
    # 字段 -> "dom" 或 "model"，表示最终值来自选择器还是模型提取
    extraction_methods: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "plan": self.plan.to_dict() if self.plan else None,
            "selectors": dict(self.selectors),
            "data": dict(self.data),
            "issues": [i.to_dict() for i in self.issues],
            "error": self.error,
            "html_sample_used": self.html_sample_used,
            "extraction_methods": dict(self.extraction_methods),
        }
