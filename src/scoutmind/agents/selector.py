"""选择器 Agent

根据字段描述和 HTML 让 LLM 给出 CSS / XPath 选择器，并从自由文本中解析出来。
支持改进、稳健选择器、CSS/XPath 互转以及多字段批量生成。
所有方法都返回结果对象，不向外抛异常。
"""

from __future__ import annotations

import asyncio
import re

from ..common.browser.page_query import is_xpath
from ..common.config import config
from ..common.exceptions import GatewayError, SelectorError
from ..common.logger import get_logger
from ..common.utils import get_prompt_path, render_template, truncate_html
from .base import BaseAgent
from .models import (
    MultiSelectorResult,
    MultiSelectorTarget,
    SelectorConversion,
    SelectorResult,
    now_iso,
)

logger = get_logger(__name__)

PROMPT_TEMPLATE_PATH = get_prompt_path("selector.yaml")
SELECTOR_TYPES = ("css", "xpath")


# ============================================================================
# 解析
# ============================================================================

# css: `div.title` / XPath selector: `//h1`
_FENCED_RE = re.compile(r"\b(css|xpath)(?:\s+selectors?)?\s*:?\s*`([^`\n]+)`", re.IGNORECASE)
# 单独一行的小标题: "CSS Selectors:"
_HEADING_RE = re.compile(r"^(css|xpath)(?:\s+selectors?)?\s*:?$", re.IGNORECASE)
# 行内写法: "CSS: div.title"
_INLINE_RE = re.compile(r"^(css|xpath)(?:\s+selectors?)?\s*:\s*(.+)$", re.IGNORECASE)
# 小标题下的条目: "Primary: div.title"
_LABELED_RE = re.compile(
    r"^(?:primary|alternate|alternative|fallback|backup|secondary|option)\b[^:]*:\s*(.+)$",
    re.IGNORECASE,
)
# 其它段落标题会结束当前小标题
_OTHER_HEADER_RE = re.compile(r"^[A-Za-z][\w /()'-]*:")
_EXPLANATION_RE = re.compile(
    r"(?:explanation|selector logic):?\s*([\s\S]*?)(?=css selectors|xpath selectors|\Z)",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^(?:[-*•+]|\d+[.)])\s*")
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_PLACEHOLDER_RE = re.compile(r"^\[(?:main|alternative|alternate)\b[^\]]*\]$", re.IGNORECASE)
_EMPTY_VALUES = {"n/a", "na", "none", "null", "-"}


def _clean_value(raw: str) -> str:
    value = raw.strip()
    fenced = _BACKTICK_RE.search(value)
    if fenced:
        return fenced.group(1).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return value.strip()


def _accept(kind: str, value: str) -> bool:
    """过滤空值、占位符以及以另一种选择器名称开头的值"""
    if not value or value.lower() in _EMPTY_VALUES or _PLACEHOLDER_RE.match(value):
        return False
    other = "xpath" if kind == "css" else "css"
    return not value.lower().startswith(other)


def parse_selector_text(text: str) -> SelectorResult:
    """从 LLM 文本中解析选择器（纯函数）

    同时识别 `css: \\`sel\\`` 形式和按小标题分组的裸写形式，
    按首次出现的顺序去重。
    """
    text = text or ""
    found: dict[str, list[str]] = {"css": [], "xpath": []}

    def add(kind: str, raw: str) -> None:
        kind = kind.lower()
        value = _clean_value(raw)
        if _accept(kind, value) and value not in found[kind]:
            found[kind].append(value)

    for match in _FENCED_RE.finditer(text):
        add(match.group(1), match.group(2))

    section: str | None = None
    for raw_line in text.splitlines():
        line = _BULLET_RE.sub("", raw_line.strip().replace("**", "")).strip()
        if not line:
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            section = heading.group(1).lower()
            continue

        inline = _INLINE_RE.match(line)
        if inline:
            add(inline.group(1), inline.group(2))
            section = None
            continue

        if section is None:
            continue
        labeled = _LABELED_RE.match(line)
        if labeled:
            add(section, labeled.group(1))
        elif line.startswith("`"):
            add(section, line)
        elif _OTHER_HEADER_RE.match(line):
            section = None

    explanation = None
    match = _EXPLANATION_RE.search(text)
    if match:
        explanation = match.group(1).strip() or None

    return SelectorResult(
        success=True,
        css_selectors=found["css"],
        xpath_selectors=found["xpath"],
        explanation=explanation,
    )


def strip_wrapping_quotes(text: str) -> str:
    """去掉一层包裹的反引号或引号"""
    value = text.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "`'\"":
        return value[1:-1]
    return value


# ============================================================================
# Agent
# ============================================================================


class SelectorAgent(BaseAgent):
    """选择器 Agent"""

    component = "Selector"

    async def _query_selectors(
        self,
        prompt: str,
        operation: str,
        trace_input: dict,
    ) -> tuple[SelectorResult, str | None]:
        """发起调用并解析；返回 (结果, 模型名)"""
        system_prompt = render_template(PROMPT_TEMPLATE_PATH, section="system_prompt")
        response = await self._ask(
            prompt,
            operation=operation,
            system_prompt=system_prompt,
            temperature=config.selector.temperature,
            max_tokens=config.selector.max_tokens,
            trace_input=trace_input,
        )
        if response.error:
            raise GatewayError(response.error, provider=response.provider)
        if not response.text.strip():
            raise SelectorError(operation, "Failed to get valid response from LLM for")
        return parse_selector_text(response.text), response.model

    async def generate_selectors(
        self,
        description: str,
        html: str,
        *,
        preferred_type: str = "css",
        robustness: str = "medium",
        extraction_goal: str | None = None,
    ) -> SelectorResult:
        """为一个目标生成选择器"""
        logger.info(f"[Selector] 生成选择器: {description[:80]}")
        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="generate",
                variables={
                    "target_data": description,
                    "extraction_goal": extraction_goal or description,
                    "preferred_type": preferred_type,
                    "robustness": robustness,
                    "html_sample": truncate_html(html, config.selector.max_html_length, separator="\n"),
                },
            )
            result, model = await self._query_selectors(
                prompt, "selector generation", {"target_description": description}
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Selector] 生成选择器失败: {exc}")
            return SelectorResult(success=False, error=str(exc))

        result.metadata = {
            "timestamp": now_iso(),
            "target_description": description,
            "preferred_type": preferred_type,
            "robustness_level": robustness,
            "model": model,
        }
        logger.info(
            f"[Selector] 得到 {len(result.css_selectors)} 个 CSS / "
            f"{len(result.xpath_selectors)} 个 XPath 选择器"
        )
        return result

    async def improve_selectors(
        self,
        current: SelectorResult,
        html: str,
        feedback: str,
    ) -> SelectorResult:
        """根据反馈改进已有选择器"""
        logger.info("[Selector] 根据反馈改进选择器")
        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="refine",
                variables={
                    "current_css": current.css_selectors[0] if current.css_selectors else "N/A",
                    "current_xpath": (
                        current.xpath_selectors[0] if current.xpath_selectors else "N/A"
                    ),
                    "target_data": feedback,
                    "html_context": truncate_html(html, config.selector.max_html_length, separator="\n"),
                },
            )
            result, model = await self._query_selectors(
                prompt, "selector improvement", {"feedback": feedback}
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Selector] 改进选择器失败: {exc}")
            return SelectorResult(success=False, error=str(exc))

        result.metadata = {
            "timestamp": now_iso(),
            "improved_from": current.metadata.get("timestamp"),
            "model": model,
            "feedback": feedback[:100],
        }
        return result

    async def generate_robust_selectors(self, description: str, html: str) -> SelectorResult:
        """生成偏向结构稳定性的选择器（ID、data 属性、结构锚点、多个备选）"""
        logger.info(f"[Selector] 生成稳健选择器: {description[:80]}")
        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="robust",
                variables={
                    "target_description": description,
                    "html_sample": (html or "")[: config.selector.robust_html_limit],
                },
            )
            result, model = await self._query_selectors(
                prompt, "robust selectors", {"target_description": description}
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Selector] 生成稳健选择器失败: {exc}")
            return SelectorResult(success=False, error=str(exc))

        result.is_robust = True
        result.metadata = {
            "timestamp": now_iso(),
            "target_description": description,
            "robustness_level": "high",
            "model": model,
        }
        return result

    async def convert_selector(self, selector: str, target_type: str) -> SelectorConversion:
        """CSS 与 XPath 互转；已经是目标类型时直接返回，不调用模型"""
        target_type = (target_type or "").lower()
        original_type = "xpath" if is_xpath(selector) else "css"
        if target_type not in SELECTOR_TYPES:
            return SelectorConversion(
                success=False,
                original_selector=selector,
                converted_selector=None,
                original_type=original_type,
                target_type=target_type,
                error=f"Unsupported selector type: {target_type}",
            )
        if original_type == target_type:
            return SelectorConversion(
                success=True,
                original_selector=selector,
                converted_selector=selector,
                original_type=original_type,
                target_type=target_type,
            )

        logger.info(f"[Selector] 转换选择器 {original_type} -> {target_type}: {selector}")
        try:
            prompt = render_template(
                PROMPT_TEMPLATE_PATH,
                section="convert",
                variables={
                    "original_type": original_type.upper(),
                    "target_type": target_type.upper(),
                    "selector": selector,
                },
            )
            response = await self._ask(
                prompt,
                operation="selector conversion",
                system_prompt=render_template(PROMPT_TEMPLATE_PATH, section="system_prompt"),
                temperature=config.selector.convert_temperature,
                max_tokens=config.selector.convert_max_tokens,
                trace_input={"selector": selector, "target_type": target_type},
            )
            if response.error:
                raise GatewayError(response.error, provider=response.provider)
            converted = strip_wrapping_quotes(response.text)
            if not converted:
                raise SelectorError(
                    selector, "Failed to get valid response from LLM for selector conversion"
                )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Selector] 转换选择器失败: {exc}")
            return SelectorConversion(
                success=False,
                original_selector=selector,
                converted_selector=None,
                original_type=original_type,
                target_type=target_type,
                error=str(exc),
            )

        return SelectorConversion(
            success=True,
            original_selector=selector,
            converted_selector=converted,
            original_type=original_type,
            target_type=target_type,
        )

    async def generate_multi_selectors(
        self,
        targets: list[MultiSelectorTarget],
        html: str,
        *,
        preferred_type: str = "css",
    ) -> MultiSelectorResult:
        """逐个目标独立生成选择器，单个目标失败不影响其它目标"""
        logger.info(f"[Selector] 批量生成选择器: {len(targets)} 个目标")
        results = await asyncio.gather(
            *(
                self.generate_selectors(
                    target.description or target.name, html, preferred_type=preferred_type
                )
                for target in targets
            )
        )

        field_selectors: dict[str, dict[str, list[str]]] = {}
        failed: list[str] = []
        for target, result in zip(targets, results):
            if result.success:
                field_selectors[target.name] = {
                    "css": list(result.css_selectors),
                    "xpath": list(result.xpath_selectors),
                }
            else:
                logger.warning(f"[Selector] 目标 {target.name} 生成失败: {result.error}")
                failed.append(target.name)
                field_selectors[target.name] = {"css": [], "xpath": []}

        return MultiSelectorResult(
            success=not failed,
            field_selectors=field_selectors,
            explanation=(
                "Generated independently per target; "
                "combined explanation not available with current approach."
            ),
            error=f"Selector generation failed for: {', '.join(failed)}" if failed else None,
            metadata={
                "timestamp": now_iso(),
                "target_count": len(targets),
                "preferred_type": preferred_type,
            },
        )
