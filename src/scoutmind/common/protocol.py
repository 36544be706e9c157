"""LLM 输出中的 JSON 解析

模型常在 JSON 前后加说明文字或代码块，也会输出全角引号和末尾多余逗号。
提取、规划、恢复三个 Agent 都通过这里解析模型返回的 JSON。
"""

from __future__ import annotations

import json
import re
from typing import Any

from .exceptions import JSONParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]+?)\s*```", re.IGNORECASE)
_OPENER_RE = re.compile(r"[\[{]")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_QUOTE_TABLE = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'", "\u00a0": " "})

_decoder = json.JSONDecoder()


def _repair(text: str) -> str:
    """全角引号转半角，去掉 } 和 ] 前多余的逗号"""
    return _TRAILING_COMMA_RE.sub(r"\1", text.translate(_QUOTE_TABLE))


def _decode_at(text: str, index: int) -> Any:
    """从 index 处解码一个 JSON 值，忽略其后的内容；原文失败时修复后再试一次"""
    try:
        return _decoder.raw_decode(text, index)[0]
    except json.JSONDecodeError:
        return _decoder.raw_decode(_repair(text[index:]))[0]


def extract_fenced_block(text: str) -> str | None:
    """提取第一个 ``` 代码块的内容"""
    match = _FENCE_RE.search(text or "")
    return match.group(1) if match else None


def parse_json_from_llm(text: str) -> Any:
    """从模型输出中取出第一个完整的 JSON 对象或数组

    先尝试第一个代码块，再按出现顺序尝试每个 { 或 [ 起始位置。

    Raises:
        JSONParseError: 找不到可解析的 JSON 时，raw_response 保留原文
    """
    raw = text or ""
    last_error = "no JSON object or array found in response"

    sources = [raw]
    fenced = extract_fenced_block(raw)
    if fenced:
        sources.insert(0, fenced)

    for source in sources:
        for match in _OPENER_RE.finditer(source):
            try:
                return _decode_at(source, match.start())
            except json.JSONDecodeError as exc:
                last_error = str(exc)

    raise JSONParseError(last_error, raw_response=raw)


def parse_json_list_from_llm(text: str) -> list[Any] | None:
    """解析 JSON 数组，失败或不是数组时返回 None"""
    try:
        data = parse_json_from_llm(text)
    except JSONParseError:
        return None
    return data if isinstance(data, list) else None


def parse_json_dict_from_llm(text: str) -> dict[str, Any] | None:
    """解析 JSON 对象，失败或不是对象时返回 None"""
    try:
        data = parse_json_from_llm(text)
    except JSONParseError:
        return None
    return data if isinstance(data, dict) else None
