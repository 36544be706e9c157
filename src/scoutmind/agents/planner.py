"""规划 Agent

把自然语言目标和 HTML 样本交给 LLM，得到一份文本形式的计划，
再用固定的段落语法解析成 ExtractionPlan：

    Extraction Goal / Data Structure / Key Fields /
    Target Elements / Extraction Strategy / Potential Challenges

解析是尽力而为的：找不到的段落留空，只有在一个字段都没找到时才判定失败。
"""

from __future__ import annotations

import re
from dataclasses import replace

from ..common.config import config
from ..common.exceptions import GatewayError, PlanParseError
from ..common.logger import get_logger
from ..common.protocol import parse_json_dict_from_llm
from ..common.utils import get_prompt_path, render_template, truncate_html
from .base import BaseAgent
from .models import (
    ExtractionPlan,
    FieldDefinition,
    PaginationStrategy,
    PlanParseOutcome,
    SchemaFieldConfig,
    now_iso,
)

logger = get_logger(__name__)

PROMPT_TEMPLATE_PATH = get_prompt_path("planner.yaml")
NO_KEY_FIELDS_ERROR = "No key fields identified in plan"


# ============================================================================
# 段落语法
# ============================================================================

_GOAL_RE = re.compile(r"Extraction Goal:?\s*([^\n]+)", re.IGNORECASE)
_STRUCTURE_RE = re.compile(r"Data Structure:?\s*([^\n]+)", re.IGNORECASE)
_FIELDS_RE = re.compile(
    r"Key Fields:?\s*([\s\S]*?)(?=Target Elements:|Extraction Strategy:|Potential Challenges:|\Z)",
    re.IGNORECASE,
)
_ELEMENTS_RE = re.compile(
    r"Target Elements:?\s*([\s\S]*?)(?=Extraction Strategy:|Potential Challenges:|\Z)",
    re.IGNORECASE,
)
_STRATEGY_RE = re.compile(
    r"Extraction Strategy:?\s*([\s\S]*?)(?=Potential Challenges:|\Z)", re.IGNORECASE
)
_CHALLENGES_RE = re.compile(r"Potential Challenges:?\s*([\s\S]*?)\Z", re.IGNORECASE)

# 第一个 key 带引号的 JSON 代码块视为 schema
_SCHEMA_RE = re.compile(r"```(?:json)?\s*({\s*\"[^}]+\"[\s\S]*?})\s*```")
_FENCED_BLOCK_RE = re.compile(r"```[\s\S]*?```")

_BULLET_RE = re.compile(r"^(?:[-*•+]|\d+[.)])\s*")
_FIELD_LINE_RE = re.compile(
    r"^(?P<name>[^:\[\]]+?)\s*(?:\[(?P<type>[^\]]+)\])?\s*(?::\s*(?P<description>.*))?$"
)
_LIST_TYPE_RE = re.compile(r"^(?:list|array)\b(?:\s+of\s+|\s*<\s*)?(?P<inner>[\w ]*?)\s*>?$")
_OPTIONAL_RE = re.compile(r"\boptional\b", re.IGNORECASE)

# 声明类型 -> 提取配置
_TYPE_CONFIGS: dict[str, dict[str, str]] = {
    "number": {"transform": "number"},
    "integer": {"transform": "number"},
    "boolean": {"transform": "boolean"},
    "url": {"attribute": "href", "transform": "url"},
    "link": {"attribute": "href", "transform": "url"},
    "image": {"attribute": "src"},
    "img": {"attribute": "src"},
    "date": {"transform": "trim"},
    "datetime": {"transform": "trim"},
}
_DEFAULT_TYPE_CONFIG = {"transform": "trim"}
_KNOWN_TYPES = {"string", "text", *_TYPE_CONFIGS}


def _section_lines(section: str) -> list[str]:
    lines = []
    for raw in section.strip().splitlines():
        line = _BULLET_RE.sub("", raw.strip()).strip()
        if line:
            lines.append(line)
    return lines


def _normalize_type(raw_type: str | None) -> tuple[str, bool]:
    """返回 (类型, 是否列表)"""
    if not raw_type:
        return "string", False
    value = raw_type.strip().lower()
    if value.endswith("[]"):
        return (value[:-2].strip() or "string"), True
    match = _LIST_TYPE_RE.match(value)
    if match:
        inner = match.group("inner").strip() or "string"
        # list of urls -> url
        if inner.endswith("s") and inner[:-1] in _KNOWN_TYPES:
            inner = inner[:-1]
        return inner, True
    return value, False


def parse_field_line(line: str) -> FieldDefinition | None:
    """解析一行 `name [type] : description`

    不符合格式的行按名称保留，类型为 string。
    """
    text = line.strip().replace("**", "")
    if not text or text.startswith(("```", "{", "}", '"')):
        return None

    match = _FIELD_LINE_RE.match(text)
    if not match:
        name = text.strip("`'\" ")
        return FieldDefinition(name=name) if name else None

    name = match.group("name").strip().strip("`'\"").strip()
    if not name:
        return None
    field_type, is_list = _normalize_type(match.group("type"))
    description = (match.group("description") or "").strip() or None
    notes = "optional" if description and _OPTIONAL_RE.search(description) else None
    return FieldDefinition(
        name=name,
        type=field_type,
        description=description,
        is_list=is_list,
        extraction_notes=notes,
    )


def _split_inline_fields(line: str) -> list[str]:
    """`title [string], price [number]` 这种单行多字段的写法"""
    if line.count("[") >= 2 and ":" not in line:
        return [part.strip() for part in line.split(",") if part.strip()]
    return [line]


def parse_key_fields(section: str) -> list[FieldDefinition]:
    fields: list[FieldDefinition] = []
    seen: set[str] = set()
    for line in _section_lines(section):
        for part in _split_inline_fields(line):
            field_def = parse_field_line(part)
            if field_def is None:
                continue
            if field_def.name in seen:
                logger.debug(f"[Planner] 忽略重复字段: {field_def.name}")
                continue
            seen.add(field_def.name)
            fields.append(field_def)
    return fields


def parse_schema_block(text: str) -> dict[str, SchemaFieldConfig] | None:
    """提取内嵌的 JSON schema 代码块，解析失败返回 None"""
    match = _SCHEMA_RE.search(text)
    if not match:
        return None
    data = parse_json_dict_from_llm(match.group(1))
    if data is None:
        logger.warning("[Planner] 内嵌的 JSON schema 解析失败，改为根据字段生成")
        return None
    return {str(name): SchemaFieldConfig.from_value(value) for name, value in data.items()}


def parse_plan_text(text: str) -> ExtractionPlan:
    """按段落语法解析计划文本（纯函数）

    - 每个段落独立匹配，找不到的留空；
    - parse_outcome 标记解析程度；
    - 没有任何字段时 success=False。
    """
    text = text or ""
    schema = parse_schema_block(text)
    body = _FENCED_BLOCK_RE.sub("", text)

    found = 0
    plan = ExtractionPlan(schema=schema)

    goal = _GOAL_RE.search(body)
    if goal:
        found += 1
        plan.extraction_goal = goal.group(1).strip()

    structure = _STRUCTURE_RE.search(body)
    if structure:
        found += 1
        plan.data_structure = structure.group(1).strip()

    fields_section = _FIELDS_RE.search(body)
    if fields_section:
        found += 1
        plan.key_fields = parse_key_fields(fields_section.group(1))

    elements = _ELEMENTS_RE.search(body)
    if elements:
        found += 1
        plan.target_elements = _section_lines(elements.group(1))

    strategy = _STRATEGY_RE.search(body)
    if strategy:
        found += 1
        plan.extraction_strategy = strategy.group(1).strip() or None

    challenges = _CHALLENGES_RE.search(body)
    if challenges:
        found += 1
        plan.potential_challenges = _section_lines(challenges.group(1))

    if found == 6:
        plan.parse_outcome = PlanParseOutcome.PARSED
    elif found:
        plan.parse_outcome = PlanParseOutcome.PARTIAL
    else:
        plan.parse_outcome = PlanParseOutcome.UNPARSEABLE

    plan.success = bool(plan.key_fields)
    if not plan.success:
        plan.error = NO_KEY_FIELDS_ERROR
    return plan


def schema_from_fields(fields: list[FieldDefinition]) -> dict[str, SchemaFieldConfig]:
    """根据字段声明类型生成提取配置"""
    schema: dict[str, SchemaFieldConfig] = {}
    for field_def in fields:
        cfg = _TYPE_CONFIGS.get(field_def.type.lower(), _DEFAULT_TYPE_CONFIG)
        schema[field_def.name] = SchemaFieldConfig(selector=None, **cfg)
    return schema


# ============================================================================
# 分页策略
# ============================================================================

_SELECTOR_VALUE = r"[`']?((?:\.|#|/)[^`'\n]+)[`']?"
_NEXT_PAGE_RE = re.compile(
    r"next\s+page\s+(?:button|link|selector):?\s*" + _SELECTOR_VALUE, re.IGNORECASE
)
_PAGE_PATTERN_RES = (
    re.compile(r"pagination\s+pattern:?\s*([^.\n]+)", re.IGNORECASE),
    re.compile(r"page\s+url\s+pattern:?\s*([^\n]+)", re.IGNORECASE),
)
_PAGE_NUMBERS_RE = re.compile(
    r"page\s+numbers\s+(?:are\s+in|selector):?\s*" + _SELECTOR_VALUE, re.IGNORECASE
)
_MAX_PAGES_RE = re.compile(r"(?:max|maximum|total)\s+(?:of\s+)?(\d+)\s+pages", re.IGNORECASE)
_NO_MORE_RE = re.compile(
    r"no\s+more\s+results\s+indicator:?\s*" + _SELECTOR_VALUE, re.IGNORECASE
)
_EMPTY_VALUES = {"unknown", "none", "n/a", "na", "-"}


def parse_pagination_strategy(text: str) -> PaginationStrategy:
    """从多页计划文本中解析分页策略"""
    strategy = PaginationStrategy()
    text = text or ""

    match = _NEXT_PAGE_RE.search(text)
    if match:
        strategy.next_page_selector = match.group(1).strip()
        strategy.has_pagination = True
        strategy.pagination_type = "next-button"

    for pattern_re in _PAGE_PATTERN_RES:
        match = pattern_re.search(text)
        if not match:
            continue
        value = match.group(1).strip().strip("`'\"").strip()
        if value and value.lower() not in _EMPTY_VALUES:
            strategy.page_number_pattern = value
            strategy.has_pagination = True
            strategy.pagination_type = strategy.pagination_type or "url-pattern"
            break

    match = _PAGE_NUMBERS_RE.search(text)
    if match:
        strategy.page_numbers_selector = match.group(1).strip()
        strategy.has_pagination = True
        strategy.pagination_type = strategy.pagination_type or "page-numbers"

    match = _MAX_PAGES_RE.search(text)
    if match:
        strategy.max_pages = int(match.group(1))

    match = _NO_MORE_RE.search(text)
    if match:
        strategy.has_more_data_indicator = match.group(1).strip()

    return strategy


def summarize_plan(plan: ExtractionPlan) -> str:
    """把计划压缩成几行文字，供 refine 提示词使用"""
    fields = ", ".join(f"{f.name} [{f.type}]" for f in plan.key_fields)
    return "\n".join(
        [
            f"- Goal: {plan.extraction_goal}",
            f"- Data Structure: {plan.data_structure}",
            f"- Fields: {fields}",
            f"- Target Elements: {', '.join(plan.target_elements)}",
        ]
    )


# ============================================================================
# Agent
# ============================================================================


class PlannerAgent(BaseAgent):
    """规划 Agent"""

    component = "Planner"

    def _finish(
        self,
        plan: ExtractionPlan,
        metadata: dict,
    ) -> ExtractionPlan:
        plan.metadata = metadata
        if plan.schema is None and plan.key_fields:
            plan.schema = schema_from_fields(plan.key_fields)
        return plan

    async def _query_plan(self, prompt: str, operation: str, temperature: float, trace_input: dict):
        system_prompt = render_template(PROMPT_TEMPLATE_PATH, section="system_prompt")
        response = await self._ask(
            prompt,
            operation=operation,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=config.planner.max_tokens,
            trace_input=trace_input,
        )
        if response.error:
            raise GatewayError(response.error, provider=response.provider)
        if not response.text.strip():
            raise PlanParseError(f"Failed to get valid response from LLM for {operation}")
        return response

    async def create_plan(
        self,
        target_url: str,
        goal: str,
        html_sample: str,
        *,
        max_html_sample_length: int | None = None,
    ) -> ExtractionPlan:
        """生成提取计划"""
        cap = max_html_sample_length or config.planner.max_html_sample_length
        logger.info(f"[Planner] 生成提取计划: {goal[:80]} ({target_url})")

        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="create_plan",
                variables={
                    "target_url": target_url,
                    "extraction_goal": goal,
                    "html_sample": truncate_html(html_sample, cap, separator="\n"),
                },
            )
            response = await self._query_plan(
                prompt,
                "plan creation",
                config.planner.temperature,
                {"target_url": target_url, "extraction_goal": goal},
            )
            plan = parse_plan_text(response.text)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Planner] 生成计划失败: {exc}")
            return ExtractionPlan.failure(str(exc))

        plan = self._finish(
            plan,
            {
                "timestamp": now_iso(),
                "target_url": target_url,
                "extraction_goal": goal,
                "model": response.model,
            },
        )
        if plan.success:
            logger.info(
                f"[Planner] 计划已生成: {len(plan.key_fields)} 个字段 ({plan.parse_outcome.value})"
            )
        else:
            logger.warning(f"[Planner] 计划不完整: {plan.error}")
        return plan

    async def refine_plan(
        self,
        current: ExtractionPlan,
        new_html: str,
        feedback: str,
        *,
        max_html_sample_length: int | None = None,
    ) -> ExtractionPlan:
        """根据反馈和新的 HTML 样本修订计划，返回新计划"""
        cap = max_html_sample_length or config.planner.max_html_sample_length
        original_timestamp = current.metadata.get("timestamp")
        logger.info(f"[Planner] 修订计划 (原计划: {original_timestamp})")

        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="refine_plan",
                variables={
                    "plan_summary": summarize_plan(current),
                    "feedback": feedback,
                    "html_sample": truncate_html(new_html, cap // 2, separator="\n"),
                },
            )
            response = await self._query_plan(
                prompt,
                "plan refinement",
                config.planner.refine_temperature,
                {"feedback": feedback, "original_plan_timestamp": original_timestamp},
            )
            plan = parse_plan_text(response.text)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Planner] 修订计划失败: {exc}")
            return ExtractionPlan.failure(str(exc))

        metadata = {"target_url": "", "extraction_goal": "", **current.metadata}
        metadata.update(
            {
                "timestamp": now_iso(),
                "model": response.model,
                "refined": True,
                "original_plan_timestamp": original_timestamp,
            }
        )
        plan = self._finish(plan, metadata)
        logger.info(f"[Planner] 计划已修订: {len(plan.key_fields)} 个字段")
        return plan

    async def create_multi_page_plan(
        self,
        main_url: str,
        data_to_collect: str,
        html_sample: str,
        pagination_pattern: str = "unknown",
        *,
        max_html_sample_length: int | None = None,
    ) -> ExtractionPlan:
        """生成分页提取计划：先解析分页策略，再生成内容计划并合并"""
        cap = max_html_sample_length or config.planner.max_html_sample_length
        logger.info(f"[Planner] 生成多页计划: {main_url}")

        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="multi_page_plan",
                variables={
                    "main_page_url": main_url,
                    "data_to_collect": data_to_collect,
                    "pagination_pattern": pagination_pattern,
                    "html_sample": truncate_html(html_sample, cap, separator="\n"),
                },
            )
            response = await self._query_plan(
                prompt,
                "multi-page planning",
                config.planner.temperature,
                {"main_page_url": main_url, "pagination_pattern": pagination_pattern},
            )
            strategy = parse_pagination_strategy(response.text)

            content_plan = await self.create_plan(
                main_url,
                data_to_collect,
                html_sample,
                max_html_sample_length=cap,
            )
            if not content_plan.success:
                raise PlanParseError(
                    content_plan.error
                    or "Failed to create base content plan for multi-page extraction."
                )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Planner] 生成多页计划失败: {exc}")
            return ExtractionPlan.failure(str(exc), is_multi_page=True)

        plan = replace(
            content_plan,
            is_multi_page=True,
            pagination_strategy=strategy,
            metadata={**content_plan.metadata, "extraction_goal": f"Multi-page: {data_to_collect}"},
        )
        logger.info(
            f"[Planner] 多页计划已生成: 分页类型={strategy.pagination_type}, 最多 {strategy.max_pages} 页"
        )
        return plan
