"""校验 Agent

按计划中声明的字段类型清洗原始提取值：
- 先对齐列表 / 标量形状，再规整空白，最后按类型清洗；
- 每个异常都记录为一条 ValidationIssue，但始终给出尽力而为的值；
- 对自身输出再次校验得到相同结果（幂等）。

纯本地计算，不调用模型。
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

from dateutil import parser as date_parser

from ..common.constants import FALSY_TOKENS, TRUTHY_TOKENS
from ..common.logger import get_logger
from ..common.validators import is_http_url
from .models import ExtractionPlan, FieldDefinition, ValidationIssue, ValidationResult

logger = get_logger(__name__)

ISSUE_EXPECTED_LIST = "Type mismatch: Expected list, got single item."
ISSUE_EXPECTED_SINGLE = "Type mismatch: Expected single item, got list."
ISSUE_LIST_EMPTY = "List empty after validation/cleaning."
ISSUE_REQUIRED = "Required item is missing, null, or empty after validation."

NUMBER_TYPES = {"number", "integer", "int", "float", "price", "currency"}
BOOLEAN_TYPES = {"boolean", "bool"}
URL_TYPES = {"url", "link", "image", "image_url", "href"}
DATE_TYPES = {"date", "datetime"}

_CURRENCY_RE = re.compile(r"[$,€£¥\s]")
_NUMBER_PREFIX_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_WHITESPACE_RE = re.compile(r"\s+")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class ValidatorAgent:
    """校验 Agent"""

    component = "Validator"

    def validate_data(
        self,
        raw_data: dict[str, Any],
        plan: ExtractionPlan,
        target_url: str | None = None,
    ) -> ValidationResult:
        """校验并清洗提取结果，不向外抛异常

        Args:
            raw_data: 字段 id -> 原始值
            plan: 提取计划（字段类型、是否列表、是否可选）
            target_url: 用于补全相对 URL，默认取 plan.metadata["target_url"]
        """
        if not isinstance(raw_data, dict):
            return ValidationResult(success=False, error="Raw data must be a mapping of field ids")
        if plan is None or not plan.key_fields:
            return ValidationResult(
                success=False, error="Validation requires a plan with key fields"
            )

        base_url = target_url or plan.target_url
        validated: dict[str, Any] = {}
        issues: list[ValidationIssue] = []

        for field_def in plan.key_fields:
            raw = raw_data.get(field_def.name)
            try:
                validated[field_def.name] = self._validate_field(field_def, raw, base_url, issues)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[Validator] 字段 {field_def.name} 校验异常: {exc}")
                issues.append(
                    ValidationIssue(field_def.name, f"Validation error: {exc}", value=raw)
                )
                validated[field_def.name] = raw

        if issues:
            logger.info(f"[Validator] 校验完成，发现 {len(issues)} 个问题")
        else:
            logger.info("[Validator] 校验完成，没有问题")
        return ValidationResult(
            validated_data=validated,
            validation_issues=issues,
            success=not issues,
        )

    # ------------------------------------------------------------------
    # 单字段
    # ------------------------------------------------------------------

    def _validate_field(
        self,
        field_def: FieldDefinition,
        value: Any,
        base_url: str | None,
        issues: list[ValidationIssue],
    ) -> Any:
        dp_id = field_def.name
        field_type = (field_def.type or "string").strip().lower()

        if value is not None:
            if field_def.is_list and not isinstance(value, list):
                issues.append(ValidationIssue(dp_id, ISSUE_EXPECTED_LIST, value=value))
                value = [value]
            elif not field_def.is_list and isinstance(value, list):
                issues.append(ValidationIssue(dp_id, ISSUE_EXPECTED_SINGLE, value=value))
                value = value[0] if value else None

        if isinstance(value, list):
            original_count = len(value)
            cleaned = []
            for item in value:
                item = self._clean_value(dp_id, field_type, item, base_url, issues)
                if item is not None:
                    cleaned.append(item)
            if original_count and not cleaned:
                issues.append(
                    ValidationIssue(dp_id, ISSUE_LIST_EMPTY, original_count=original_count)
                )
            value = cleaned
        elif value is not None:
            value = self._clean_value(dp_id, field_type, value, base_url, issues)

        notes = (field_def.extraction_notes or "").lower()
        if "optional" not in notes and _is_empty(value):
            issues.append(ValidationIssue(dp_id, ISSUE_REQUIRED, value=value))
        return value

    def _clean_value(
        self,
        dp_id: str,
        field_type: str,
        value: Any,
        base_url: str | None,
        issues: list[ValidationIssue],
    ) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = _WHITESPACE_RE.sub(" ", value).strip()
            if not value:
                return None

        if field_type in NUMBER_TYPES:
            return self._clean_number(dp_id, field_type, value, issues)
        if field_type in BOOLEAN_TYPES:
            return self._clean_boolean(dp_id, value, issues)
        if field_type in URL_TYPES:
            return self._clean_url(dp_id, value, base_url, issues)
        if field_type in DATE_TYPES:
            return self._clean_date(dp_id, value, issues)
        return self._clean_string(dp_id, value, issues)

    # ------------------------------------------------------------------
    # 各类型清洗
    # ------------------------------------------------------------------

    def _clean_number(
        self, dp_id: str, field_type: str, value: Any, issues: list[ValidationIssue]
    ) -> Any:
        number: float | None = None
        if isinstance(value, bool):
            number = None
        elif isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            match = _NUMBER_PREFIX_RE.match(_CURRENCY_RE.sub("", value))
            if match:
                try:
                    number = float(match.group())
                except ValueError:
                    number = None

        if number is None or number != number:
            issues.append(
                ValidationIssue(
                    dp_id, f"Invalid number format: could not parse '{value}'.", value=value
                )
            )
            return value

        if field_type in ("integer", "int") and number.is_integer():
            return int(number)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return number

    def _clean_boolean(self, dp_id: str, value: Any, issues: list[ValidationIssue]) -> Any:
        if isinstance(value, bool):
            return value
        token = str(value).strip().lower()
        if token in TRUTHY_TOKENS:
            return True
        if token in FALSY_TOKENS:
            return False
        issues.append(ValidationIssue(dp_id, f"Invalid boolean value: '{value}'.", value=value))
        return value

    def _clean_url(
        self,
        dp_id: str,
        value: Any,
        base_url: str | None,
        issues: list[ValidationIssue],
    ) -> Any:
        if isinstance(value, str):
            if is_http_url(value):
                return value
            if base_url:
                resolved = urljoin(base_url, value)
                if is_http_url(resolved):
                    return resolved
        issues.append(ValidationIssue(dp_id, f"Invalid URL format: '{value}'.", value=value))
        return value

    def _clean_date(self, dp_id: str, value: Any, issues: list[ValidationIssue]) -> Any:
        if isinstance(value, str):
            try:
                return date_parser.parse(value).isoformat()
            except (ValueError, OverflowError):
                pass
        issues.append(ValidationIssue(dp_id, f"Invalid date format: '{value}'.", value=value))
        return value

    def _clean_string(self, dp_id: str, value: Any, issues: list[ValidationIssue]) -> Any:
        if isinstance(value, str):
            return value
        converted = str(value)
        issues.append(
            ValidationIssue(
                dp_id,
                f"Expected string, converted from {type(value).__name__}.",
                value=converted,
            )
        )
        return converted
