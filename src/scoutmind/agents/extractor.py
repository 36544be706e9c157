"""提取 Agent

两条路径：
1. DOM 路径：用条目选择器定位元素，按 schema 逐字段读取并做转换（确定性）；
2. 模型路径：DOM 路径没有数据时，把相关 HTML 交给 LLM 输出 JSON。

所有失败都以 ExtractionResult(success=False) 返回。
"""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import urlsplit

from ..common.browser.page_query import PageQuery
from ..common.config import config
from ..common.constants import TRUTHY_TOKENS
from ..common.exceptions import ExtractionError, GatewayError, JSONParseError
from ..common.logger import get_logger
from ..common.protocol import parse_json_from_llm
from ..common.utils import get_prompt_path, render_template, truncate_html
from .base import BaseAgent
from .models import ExtractionResult, ExtractorSelectors, SchemaFieldConfig, now_iso

logger = get_logger(__name__)

PROMPT_TEMPLATE_PATH = get_prompt_path("extractor.yaml")

METHOD_DOM = "dom"
METHOD_MODEL = "model"

_NON_NUMERIC_RE = re.compile(r"[^0-9.-]+")
# 只取开头能解析的部分，"1.2.3" -> 1.2
_NUMBER_PREFIX_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def _origin(page_url: str) -> str | None:
    parts = urlsplit(page_url or "")
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def apply_transform(value: Any, transform: str | None, page_url: str = "") -> Any:
    """对读取到的原始文本做转换

    number 去掉非数字字符后解析，解析失败为 None；
    boolean 只认 true / yes / 1 / on；
    url 把根相对路径补全为页面 origin + 路径。
    """
    if value is None or not transform:
        return value
    text = str(value)
    kind = transform.strip().lower()

    if kind == "number":
        match = _NUMBER_PREFIX_RE.match(_NON_NUMERIC_RE.sub("", text))
        return float(match.group()) if match else None
    if kind == "boolean":
        return text.strip().lower() in TRUTHY_TOKENS
    if kind == "trim":
        return text.strip()
    if kind == "lowercase":
        return text.lower()
    if kind == "uppercase":
        return text.upper()
    if kind == "url":
        origin = _origin(page_url)
        if origin is None:
            return text
        if text.startswith("//"):
            return f"{urlsplit(page_url).scheme}:{text}"
        if text.startswith("/"):
            return f"{origin}{text}"
        return text

    logger.debug(f"[Extractor] 未知转换类型: {transform}")
    return value


class ExtractorAgent(BaseAgent):
    """提取 Agent"""

    component = "Extractor"

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    async def extract(
        self,
        page: PageQuery,
        selectors: ExtractorSelectors,
        schema: dict[str, SchemaFieldConfig] | None,
        goal: str,
        *,
        fallback_to_model: bool | None = None,
    ) -> ExtractionResult:
        """按计划提取数据，不向外抛异常"""
        if fallback_to_model is None:
            fallback_to_model = config.extractor.fallback_to_model

        try:
            dom_result = await self._extract_from_dom(page, selectors, schema)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"[Extractor] DOM 提取异常: {exc}")
            dom_result = ExtractionResult(success=False, error=str(exc))

        dom_result.metadata.setdefault("timestamp", now_iso())
        dom_result.metadata.setdefault("extraction_method", METHOD_DOM)

        if dom_result.success and dom_result.data:
            dom_result.metadata["data_found"] = True
            logger.info(f"[Extractor] DOM 提取到 {len(dom_result.data)} 条数据")
            return dom_result

        if not fallback_to_model:
            dom_result.metadata["data_found"] = bool(dom_result.data)
            return dom_result

        logger.info(
            f"[Extractor] DOM 路径没有数据（{dom_result.error or '空结果'}），使用模型提取"
        )
        try:
            return await self._extract_with_model(page, selectors, schema, goal, dom_result)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"[Extractor] 模型提取失败: {exc}")
            return ExtractionResult(
                success=False,
                error=str(exc),
                metadata={
                    "timestamp": now_iso(),
                    "extraction_method": METHOD_MODEL,
                    "data_found": False,
                },
            )

    async def extract_field_values(
        self,
        page: PageQuery,
        field_selectors: dict[str, str | None],
        schema: dict[str, SchemaFieldConfig] | None = None,
    ) -> tuple[dict[str, Any], dict[str, str]]:
        """按字段在整页读取值

        Returns:
            (values, errors)：一个匹配为标量，多个匹配为列表；
            没有匹配或读取异常的字段进入 errors。选择器为 None 的字段跳过。
        """
        schema = schema or {}
        page_url = await page.page_url()
        values: dict[str, Any] = {}
        errors: dict[str, str] = {}

        for field_id, selector in field_selectors.items():
            if not selector:
                continue
            try:
                values[field_id] = await self.read_field_value(
                    page, selector, schema.get(field_id), page_url
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"[Extractor] 字段 {field_id} 读取失败: {exc}")
                errors[field_id] = str(exc)

        logger.info(f"[Extractor] 读取字段 {len(values)} 个，失败 {len(errors)} 个")
        return values, errors

    async def read_field_value(
        self,
        page: PageQuery,
        selector: str,
        field_config: SchemaFieldConfig | None = None,
        page_url: str | None = None,
    ) -> Any:
        """读取单个字段在整页上的所有匹配

        Raises:
            ExtractionError: 选择器没有匹配任何元素
        """
        field_config = field_config or SchemaFieldConfig()
        if page_url is None:
            page_url = await page.page_url()

        count = await page.find_by_selector(selector)
        if count == 0:
            raise ExtractionError(f"No elements found for selector: {selector}")

        items = []
        for index in range(min(count, config.extractor.max_elements_per_batch)):
            raw = await page.read_field(selector, field_config.attribute, index=index)
            items.append(apply_transform(raw, field_config.transform, page_url))
        return items[0] if len(items) == 1 else items

    # ------------------------------------------------------------------
    # DOM 路径
    # ------------------------------------------------------------------

    async def _match_selector(
        self,
        page: PageQuery,
        selectors: ExtractorSelectors,
    ) -> tuple[str | None, str | None, int]:
        """先 CSS 后 XPath，返回 (选择器, 类型, 匹配数)"""
        for selector, selector_type in ((selectors.css, "css"), (selectors.xpath, "xpath")):
            if not selector:
                continue
            count = await page.find_by_selector(selector)
            if count > 0:
                return selector, selector_type, count
        return None, None, 0

    async def _extract_from_dom(
        self,
        page: PageQuery,
        selectors: ExtractorSelectors,
        schema: dict[str, SchemaFieldConfig] | None,
    ) -> ExtractionResult:
        selectors_used = {"css": selectors.css, "xpath": selectors.xpath, "selector_type": None}
        selector, selector_type, count = await self._match_selector(page, selectors)
        selectors_used["selector_type"] = selector_type

        if selector is None:
            return ExtractionResult(
                success=False,
                error="No elements found using the provided selectors",
                metadata={"selectors_used": selectors_used, "elements_found": 0},
            )
        if not schema:
            return ExtractionResult(
                success=False,
                error="No schema provided for DOM extraction",
                metadata={"selectors_used": selectors_used, "elements_found": count},
            )

        page_url = await page.page_url()
        data: list[dict[str, Any]] = []
        for index in range(min(count, config.extractor.max_elements_per_batch)):
            item: dict[str, Any] = {}
            for name, field_config in schema.items():
                raw = await page.read_field(
                    selector,
                    field_config.attribute,
                    index=index,
                    sub_selector=field_config.selector,
                )
                item[name] = apply_transform(raw, field_config.transform, page_url)
            if any(value is not None for value in item.values()):
                data.append(item)

        return ExtractionResult(
            success=True,
            data=data,
            metadata={
                "timestamp": now_iso(),
                "extraction_method": METHOD_DOM,
                "selectors_used": selectors_used,
                "elements_found": count,
                "elements_extracted": len(data),
            },
        )

    # ------------------------------------------------------------------
    # 模型路径
    # ------------------------------------------------------------------

    async def _html_context(self, page: PageQuery, selectors: ExtractorSelectors) -> str:
        """匹配元素的 outerHTML，其次容器，最后整页"""
        candidates = [
            (selectors.css, config.extractor.max_elements_per_batch),
            (selectors.xpath, config.extractor.max_elements_per_batch),
            (selectors.container_selector, 1),
        ]
        for selector, limit in candidates:
            if not selector:
                continue
            try:
                parts = await page.outer_html(selector, limit)
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"[Extractor] 读取 outerHTML 失败 ({selector}): {exc}")
                continue
            if parts:
                return "\n".join(parts)
        return await page.page_html()

    async def _extract_with_model(
        self,
        page: PageQuery,
        selectors: ExtractorSelectors,
        schema: dict[str, SchemaFieldConfig] | None,
        goal: str,
        dom_result: ExtractionResult,
    ) -> ExtractionResult:
        html = await self._html_context(page, selectors)
        limit = config.extractor.truncate_html_at
        if len(html) > limit:
            html = truncate_html(html, limit)

        schema_json = json.dumps(
            {name: cfg.to_dict() for name, cfg in (schema or {}).items()},
            ensure_ascii=False,
            indent=2,
        )
        prompt = render_template(
            PROMPT_TEMPLATE_PATH,
            section="extract_data",
            variables={
                "extraction_goal": goal,
                "schema": schema_json,
                "css_selector": selectors.css or "Not provided",
                "xpath_selector": selectors.xpath or "Not provided",
                "html_content": html,
            },
        )
        response = await self._ask(
            prompt,
            operation="extract_data",
            system_prompt=render_template(PROMPT_TEMPLATE_PATH, section="system_prompt"),
            temperature=config.extractor.temperature,
            max_tokens=config.extractor.max_tokens,
            trace_input={"extraction_goal": goal, "html_length": len(html)},
        )
        if response.error:
            raise GatewayError(response.error, provider=response.provider)

        metadata = {
            "timestamp": now_iso(),
            "extraction_method": METHOD_MODEL,
            "model": response.model,
            "selectors_used": dom_result.metadata.get("selectors_used"),
        }
        try:
            parsed = parse_json_from_llm(response.text)
        except JSONParseError as exc:
            logger.error(f"[Extractor] 模型输出无法解析为 JSON: {exc}")
            return ExtractionResult(
                success=False,
                error=str(exc),
                metadata={**metadata, "data_found": False},
            )

        if isinstance(parsed, dict):
            parsed = [parsed]
        data = [item if isinstance(item, dict) else {"value": item} for item in parsed]
        metadata["data_found"] = bool(data)
        logger.info(f"[Extractor] 模型提取到 {len(data)} 条数据")
        return ExtractionResult(success=True, data=data, metadata=metadata)
