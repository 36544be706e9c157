"""恢复 Agent

字段选择器失效时，按顺序尝试恢复策略获取备选选择器，
每个候选都在页面上实际验证，只接受至少命中一个元素的选择器。
"""

from __future__ import annotations

from typing import Awaitable, Callable

from ..common.browser.page_query import PageQuery
from ..common.config import config
from ..common.exceptions import GatewayError
from ..common.llm import ModelGateway
from ..common.logger import get_logger
from ..common.protocol import extract_fenced_block, parse_json_list_from_llm
from ..common.utils import get_prompt_path, render_template
from .base import BaseAgent
from .models import FieldDefinition, RecoveryAttemptResult

logger = get_logger(__name__)

PROMPT_TEMPLATE_PATH = get_prompt_path("recovery.yaml")

# (字段, 失效选择器, 错误信息, HTML 样本) -> 候选选择器
RecoveryStrategy = Callable[
    [FieldDefinition, "str | None", "str | None", str], Awaitable[list[str]]
]


def strategy_name(strategy: RecoveryStrategy) -> str:
    return getattr(strategy, "__name__", type(strategy).__name__)


class RecoveryAgent(BaseAgent):
    """恢复 Agent

    strategies 为空时只使用内置的模型策略。
    """

    component = "Recovery"

    def __init__(
        self,
        gateway: ModelGateway,
        provider: str | None = None,
        fallback_provider: str | None = None,
        strategies: list[RecoveryStrategy] | None = None,
    ):
        super().__init__(gateway, provider, fallback_provider)
        self._custom_strategies = list(strategies) if strategies else None

    @property
    def strategies(self) -> list[RecoveryStrategy]:
        # 内置策略绑定到当前实例，with_provider 之后使用新的 provider
        if self._custom_strategies is not None:
            return list(self._custom_strategies)
        return [self.alternative_selectors_via_model]

    async def attempt_recovery(
        self,
        field: FieldDefinition,
        failed_selector: str | None,
        error_message: str | None,
        html: str,
        page: PageQuery,
    ) -> RecoveryAttemptResult:
        """依次执行策略，第一个得到有效选择器的策略胜出"""
        limit = config.recovery.max_html_length
        html_sample = html or ""
        if len(html_sample) > limit:
            html_sample = html_sample[:limit] + "..."

        logger.info(f"[Recovery] 开始恢复字段 {field.name}（失效选择器: {failed_selector}）")
        for strategy in self.strategies:
            name = strategy_name(strategy)
            try:
                candidates = await strategy(field, failed_selector, error_message, html_sample)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[Recovery] 策略 {name} 执行失败，跳过: {exc}")
                continue

            accepted: list[str] = []
            for candidate in candidates or []:
                if not isinstance(candidate, str) or not candidate.strip():
                    continue
                candidate = candidate.strip()
                if candidate in accepted:
                    continue
                if await self.test_selector(page, candidate):
                    accepted.append(candidate)
                else:
                    logger.debug(f"[Recovery] 候选选择器未命中: {candidate}")

            if accepted:
                logger.info(f"[Recovery] 策略 {name} 找到 {len(accepted)} 个有效选择器")
                return RecoveryAttemptResult(
                    recovery_successful=True,
                    alternative_selectors=accepted,
                    strategy_used=name,
                )
            logger.info(f"[Recovery] 策略 {name} 没有得到有效选择器")

        logger.warning(f"[Recovery] 字段 {field.name} 所有策略均未成功")
        return RecoveryAttemptResult(recovery_successful=False)

    async def test_selector(self, page: PageQuery, selector: str) -> bool:
        """选择器至少命中一个元素才算有效，任何异常都视为无效"""
        try:
            return await page.find_by_selector(selector) > 0
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[Recovery] 测试选择器出错 ({selector}): {exc}")
            return False

    # ------------------------------------------------------------------
    # 内置策略
    # ------------------------------------------------------------------

    async def alternative_selectors_via_model(
        self,
        field: FieldDefinition,
        failed_selector: str | None,
        error_message: str | None,
        html_sample: str,
    ) -> list[str]:
        """让模型给出 3 个备选 CSS 选择器（JSON 数组）"""
        prompt = render_template(
            PROMPT_TEMPLATE_PATH,
            section="alternative_selectors",
            variables={
                "description": field.label,
                "field_type": field.type,
                "is_list": field.is_list,
                "failed_selector": failed_selector or "N/A",
                "error_message": error_message,
                "extraction_notes": field.extraction_notes,
                "html_sample": html_sample,
            },
        )
        response = await self._ask(
            prompt,
            operation="alternative_selectors",
            temperature=config.recovery.temperature,
            trace_input={"field": field.name, "failed_selector": failed_selector},
        )
        if response.error:
            raise GatewayError(response.error, provider=response.provider)

        text = extract_fenced_block(response.text) or response.text
        parsed = parse_json_list_from_llm(text)
        if parsed is None:
            logger.warning("[Recovery] 模型输出不是 JSON 数组")
            return []
        if not all(isinstance(item, str) for item in parsed):
            logger.warning("[Recovery] 模型输出的数组包含非字符串元素")
            return []
        return parsed
