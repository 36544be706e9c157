"""编排器

一次请求的阶段依次为：
FetchSample -> Plan -> SelectPerField -> Highlight -> ExtractInitial -> RecoverFailed
-> ModelFallback -> Validate -> Assemble

阶段之间严格串行，阶段内部（多字段选择器生成、多字段恢复）并发执行。
编排器是唯一兜底捕获异常的地方：任何阶段失败都会转换为带部分结果的 OrchestrationResult。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from ..common.browser import HtmlPageQuery, PageFetcher, PageQuery
from ..common.config import config
from ..common.constants import (
    ISSUE_EXTRACTION,
    ISSUE_ORCHESTRATION,
    ISSUE_SELECTION,
)
from ..common.exceptions import OrchestrationError
from ..common.llm import ModelGateway
from ..common.logger import get_logger
from ..common.validators import validate_instruction, validate_url
from .extractor import METHOD_DOM, METHOD_MODEL, ExtractorAgent
from .models import (
    ExtractionPlan,
    ExtractorSelectors,
    FieldDefinition,
    OrchestrationIssue,
    OrchestrationResult,
    SchemaFieldConfig,
)
from .planner import PlannerAgent
from .recovery import RecoveryAgent
from .selector import SelectorAgent
from .validator import ValidatorAgent

logger = get_logger(__name__)

STAGE_FETCH = "fetch_sample"
STAGE_PLAN = "plan"
STAGE_SELECT = "select_per_field"
STAGE_HIGHLIGHT = "highlight"
STAGE_EXTRACT = "extract_initial"
STAGE_RECOVER = "recover_failed"
STAGE_MODEL_FALLBACK = "model_fallback"
STAGE_VALIDATE = "validate"
STAGE_ASSEMBLE = "assemble"


@dataclass
class PipelineState:
    """单次请求的累积状态，失败时据此返回部分结果"""

    instruction: str
    target_url: str
    stage: str = STAGE_FETCH
    html_sample: str | None = None
    plan: ExtractionPlan | None = None
    selectors: dict[str, str | None] = field(default_factory=dict)
    raw_data: dict[str, Any] = field(default_factory=dict)
    field_errors: dict[str, str] = field(default_factory=dict)
    recovery_attempts: dict[str, int] = field(default_factory=dict)
    extraction_methods: dict[str, str] = field(default_factory=dict)
    failures_reported: bool = False
    validated_data: dict[str, Any] | None = None
    issues: list[OrchestrationIssue] = field(default_factory=list)

    def add_issue(self, issue_type: str, issue: str, dp_id: str = "N/A", value: Any = None) -> None:
        self.issues.append(OrchestrationIssue(type=issue_type, issue=issue, dp_id=dp_id, value=value))

    @property
    def data(self) -> dict[str, Any]:
        if self.validated_data is not None:
            return dict(self.validated_data)
        return dict(self.raw_data)


@dataclass
class _RequestAgents:
    planner: PlannerAgent
    selector: SelectorAgent
    extractor: ExtractorAgent
    recovery: RecoveryAgent


@dataclass
class _RecoveryOutcome:
    field_id: str
    selector: str | None = None
    value: Any = None
    attempts: int = 0
    error: str | None = None

    @property
    def recovered(self) -> bool:
        return self.selector is not None


class Orchestrator:
    """提取流水线编排器

    Args:
        gateway: 模型网关，所有 Agent 共享
        fetcher: 页面抓取协作者，用于获取 HTML 样本
        max_attempts_per_field: 每个字段最多恢复次数，默认取配置
        model_fallback: 恢复失败的字段是否交给模型从 HTML 中直接提取，默认取配置
    """

    def __init__(
        self,
        gateway: ModelGateway,
        fetcher: PageFetcher,
        *,
        planner: PlannerAgent | None = None,
        selector: SelectorAgent | None = None,
        extractor: ExtractorAgent | None = None,
        validator: ValidatorAgent | None = None,
        recovery: RecoveryAgent | None = None,
        max_attempts_per_field: int | None = None,
        model_fallback: bool | None = None,
    ):
        if gateway is None:
            raise ValueError("Orchestrator 需要 ModelGateway 实例")
        if fetcher is None:
            raise ValueError("Orchestrator 需要 PageFetcher 实例")
        self.gateway = gateway
        self.fetcher = fetcher
        self.planner = planner or PlannerAgent(gateway)
        self.selector = selector or SelectorAgent(gateway)
        self.extractor = extractor or ExtractorAgent(gateway)
        self.validator = validator or ValidatorAgent()
        self.recovery = recovery or RecoveryAgent(gateway)
        self.max_attempts_per_field = (
            max_attempts_per_field
            if max_attempts_per_field is not None
            else config.recovery.max_attempts_per_field
        )
        self.model_fallback = (
            model_fallback if model_fallback is not None else config.extractor.fallback_to_model
        )

    def _agents_for(self, provider_hint: str | None) -> _RequestAgents:
        if not provider_hint:
            return _RequestAgents(self.planner, self.selector, self.extractor, self.recovery)
        return _RequestAgents(
            planner=self.planner.with_provider(provider_hint),
            selector=self.selector.with_provider(provider_hint),
            extractor=self.extractor.with_provider(provider_hint),
            recovery=self.recovery.with_provider(provider_hint),
        )

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def process_request(
        self,
        instruction: str,
        target_url: str,
        page: PageQuery | None = None,
        provider_hint: str | None = None,
    ) -> OrchestrationResult:
        """执行一次完整的提取请求

        page 为 None 时在抓取到的 HTML 样本上离线查询。
        取消（CancelledError）不会被捕获。
        """
        state = PipelineState(instruction=instruction, target_url=target_url)
        agents = self._agents_for(provider_hint)
        logger.info(
            f"[Orchestrator] 开始处理请求: {target_url} (provider={provider_hint or 'default'})"
        )

        try:
            state.instruction = validate_instruction(instruction)
            state.target_url = validate_url(target_url)

            await self._fetch_sample(state)
            if page is None:
                page = HtmlPageQuery(state.html_sample or "", state.target_url)

            await self._plan(state, agents)
            await self._select_per_field(state, agents)
            await self._highlight(state, page)
            await self._extract_initial(state, agents, page)
            await self._recover_failed(state, agents, page)
            await self._model_fallback(state, agents, page)
            self._report_failed_fields(state)
            self._validate(state)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            logger.error(f"[Orchestrator] 阶段 {state.stage} 失败: {message}")
            self._report_failed_fields(state)
            state.add_issue(ISSUE_ORCHESTRATION, message)
            return OrchestrationResult(
                success=False,
                plan=state.plan,
                selectors=dict(state.selectors),
                data=state.data,
                issues=list(state.issues),
                error=f"Orchestration failed: {message}",
                html_sample_used=state.html_sample is not None,
                extraction_methods=dict(state.extraction_methods),
            )

        state.stage = STAGE_ASSEMBLE
        logger.info(
            f"[Orchestrator] 请求完成: {len(state.data)} 个字段, {len(state.issues)} 个问题"
        )
        return OrchestrationResult(
            success=True,
            plan=state.plan,
            selectors=dict(state.selectors),
            data=state.data,
            issues=list(state.issues),
            html_sample_used=state.html_sample is not None,
            extraction_methods=dict(state.extraction_methods),
        )

    # ------------------------------------------------------------------
    # 各阶段
    # ------------------------------------------------------------------

    async def _fetch_sample(self, state: PipelineState) -> None:
        state.stage = STAGE_FETCH
        result = await self.fetcher.fetch(state.target_url)
        if not result.success:
            raise OrchestrationError(f"Failed to fetch page content: {result.error}")
        state.html_sample = result.html_content or ""
        logger.info(f"[Orchestrator] 已获取 HTML 样本: {len(state.html_sample)} 字符")

    async def _plan(self, state: PipelineState, agents: _RequestAgents) -> None:
        state.stage = STAGE_PLAN
        plan = await agents.planner.create_plan(
            state.target_url, state.instruction, state.html_sample or ""
        )
        state.plan = plan
        if not plan.success or not plan.key_fields:
            raise OrchestrationError(
                f"Planning failed: {plan.error or 'No data points identified.'}"
            )
        logger.info(f"[Orchestrator] 计划包含 {len(plan.key_fields)} 个字段")

    async def _select_per_field(self, state: PipelineState, agents: _RequestAgents) -> None:
        state.stage = STAGE_SELECT
        fields = state.plan.key_fields
        results = await asyncio.gather(
            *(
                agents.selector.generate_selectors(
                    f.label, state.html_sample or "", extraction_goal=state.instruction
                )
                for f in fields
            )
        )
        for f, result in zip(fields, results):
            if not result.success:
                state.selectors[f.name] = None
                state.add_issue(
                    ISSUE_SELECTION, f"Selector generation failed: {result.error}", dp_id=f.name
                )
                continue
            state.selectors[f.name] = result.best_selector
            if result.best_selector is None:
                state.add_issue(ISSUE_SELECTION, "No selector found in model response", dp_id=f.name)

    async def _highlight(self, state: PipelineState, page: PageQuery) -> None:
        state.stage = STAGE_HIGHLIGHT
        try:
            await page.clear_highlights()
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[Orchestrator] 清除高亮失败: {exc}")

        for f in state.plan.key_fields:
            selector = state.selectors.get(f.name)
            if not selector:
                continue
            try:
                await page.highlight(selector, f.label)
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"[Orchestrator] 高亮字段 {f.name} 失败: {exc}")

    async def _extract_initial(
        self,
        state: PipelineState,
        agents: _RequestAgents,
        page: PageQuery,
    ) -> None:
        state.stage = STAGE_EXTRACT
        values, errors = await agents.extractor.extract_field_values(
            page, state.selectors, state.plan.schema
        )
        state.raw_data.update(values)
        state.extraction_methods.update({field_id: METHOD_DOM for field_id in values})

        # 失败字段只记入 field_errors，问题在恢复结束后统一上报
        for f in state.plan.key_fields:
            if state.selectors.get(f.name) is None:
                state.field_errors[f.name] = "No selector available for field"
            elif f.name in errors:
                state.field_errors[f.name] = errors[f.name]

    async def _recover_failed(
        self,
        state: PipelineState,
        agents: _RequestAgents,
        page: PageQuery,
    ) -> None:
        state.stage = STAGE_RECOVER
        if not state.field_errors or self.max_attempts_per_field <= 0:
            return

        failed = [f for f in state.plan.key_fields if f.name in state.field_errors]
        logger.info(f"[Orchestrator] {len(failed)} 个字段进入恢复流程")
        outcomes = await asyncio.gather(
            *(self._recover_field(state, agents, page, f) for f in failed)
        )

        for outcome in outcomes:
            state.recovery_attempts[outcome.field_id] = outcome.attempts
            if not outcome.recovered:
                continue
            state.selectors[outcome.field_id] = outcome.selector
            state.raw_data[outcome.field_id] = outcome.value
            state.extraction_methods[outcome.field_id] = METHOD_DOM
            state.field_errors.pop(outcome.field_id, None)
            logger.info(
                f"[Orchestrator] 字段 {outcome.field_id} 已恢复: {outcome.selector} "
                f"(第 {outcome.attempts} 次尝试)"
            )

    async def _recover_field(
        self,
        state: PipelineState,
        agents: _RequestAgents,
        page: PageQuery,
        field_def: FieldDefinition,
    ) -> _RecoveryOutcome:
        original_error = state.field_errors[field_def.name]
        failed_selector = state.selectors.get(field_def.name)
        error_message = original_error
        field_config = (state.plan.schema or {}).get(field_def.name)

        attempts = 0
        while attempts < self.max_attempts_per_field:
            attempts += 1
            result = await agents.recovery.attempt_recovery(
                field_def, failed_selector, error_message, state.html_sample or "", page
            )
            if not result.recovery_successful:
                continue
            for candidate in result.alternative_selectors:
                try:
                    value = await agents.extractor.read_field_value(page, candidate, field_config)
                except Exception as exc:  # noqa: BLE001
                    failed_selector, error_message = candidate, str(exc)
                    continue
                return _RecoveryOutcome(
                    field_id=field_def.name, selector=candidate, value=value, attempts=attempts
                )

        return _RecoveryOutcome(field_id=field_def.name, attempts=attempts, error=original_error)

    async def _model_fallback(
        self,
        state: PipelineState,
        agents: _RequestAgents,
        page: PageQuery,
    ) -> None:
        """选择器路径全部失败的字段，交给提取 Agent 的模型路径从页面 HTML 中读取"""
        state.stage = STAGE_MODEL_FALLBACK
        if not state.field_errors or not self.model_fallback:
            return

        failed = [f for f in state.plan.key_fields if f.name in state.field_errors]
        plan_schema = state.plan.schema or {}
        # 子选择器已被证明无效，只保留属性和转换
        schema = {
            f.name: SchemaFieldConfig(
                attribute=plan_schema[f.name].attribute if f.name in plan_schema else None,
                transform=plan_schema[f.name].transform if f.name in plan_schema else None,
            )
            for f in failed
        }
        logger.info(f"[Orchestrator] {len(failed)} 个字段使用模型提取")

        result = await agents.extractor.extract(
            page, ExtractorSelectors(), schema, state.instruction, fallback_to_model=True
        )
        if not result.success:
            logger.warning(f"[Orchestrator] 模型提取失败: {result.error}")
            return

        for f in failed:
            value = _collect_model_value(result.data, f)
            if value is None:
                continue
            state.raw_data[f.name] = value
            state.extraction_methods[f.name] = METHOD_MODEL
            state.field_errors.pop(f.name, None)
            logger.info(f"[Orchestrator] 字段 {f.name} 由模型提取补全")

    def _report_failed_fields(self, state: PipelineState) -> None:
        """为仍然失败的字段各记录一条 extraction 问题（只执行一次）"""
        if state.failures_reported or state.plan is None:
            return
        state.failures_reported = True
        for f in state.plan.key_fields:
            error = state.field_errors.get(f.name)
            if error is None:
                continue
            attempts = state.recovery_attempts.get(f.name, 0)
            if attempts:
                message = f"Recovery exhausted after {attempts} attempt(s): {error}"
            else:
                message = f"Extraction failed: {error}"
            state.add_issue(ISSUE_EXTRACTION, message, dp_id=f.name)

    def _validate(self, state: PipelineState) -> None:
        state.stage = STAGE_VALIDATE
        result = self.validator.validate_data(
            state.raw_data, state.plan, target_url=state.target_url
        )
        if result.error:
            raise OrchestrationError(f"Validation failed: {result.error}")
        state.validated_data = result.validated_data
        state.issues.extend(OrchestrationIssue.from_validation(i) for i in result.validation_issues)


def _collect_model_value(items: list[dict[str, Any]], field_def: FieldDefinition) -> Any:
    """从模型返回的条目中取出字段值；列表字段合并所有条目，否则取第一个非空值"""
    values: list[Any] = []
    for item in items:
        value = item.get(field_def.name)
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, list):
            values.extend(v for v in value if v is not None)
        else:
            values.append(value)

    if not values:
        return None
    if field_def.is_list:
        return values
    return values[0]
