"""用户输入校验

流水线入口（CLI 与编排器）在做任何网络请求之前先校验 URL 和提取指令。
"""

from __future__ import annotations

import re
from urllib.parse import ParseResult, urlparse

from .constants import MAX_INSTRUCTION_LENGTH, MAX_URL_LENGTH, VALID_URL_SCHEMES
from .exceptions import URLValidationError, ValidationError

# 指令会原样进入提示词，拒绝明显的脚本注入内容
_UNSAFE_INSTRUCTION = re.compile(r"<script|javascript:|data:text/html", re.IGNORECASE)


def _url_problem(parsed: ParseResult) -> str | None:
    if not parsed.scheme:
        return "缺少协议 (http/https)"
    if parsed.scheme.lower() not in VALID_URL_SCHEMES:
        return f"不支持的协议: {parsed.scheme}"
    if not parsed.netloc:
        return "缺少域名"
    return None


def validate_url(url: str, allow_empty: bool = False) -> str:
    """校验目标 URL，返回去除首尾空白后的值

    Raises:
        URLValidationError: 为空（且不允许为空）、过长、无法解析、协议不是 http(s) 或缺少域名
    """
    url = (url or "").strip()
    if not url:
        if allow_empty:
            return ""
        raise URLValidationError("", "URL 不能为空")

    if len(url) > MAX_URL_LENGTH:
        raise URLValidationError(url, f"URL 长度超过 {MAX_URL_LENGTH} 字符")

    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise URLValidationError(url, f"URL 解析失败: {exc}") from exc

    problem = _url_problem(parsed)
    if problem:
        raise URLValidationError(url, problem)
    return url


def is_http_url(value: object) -> bool:
    """value 是否为绝对 http(s) URL（只判断，不抛异常）"""
    if not isinstance(value, str) or not value:
        return False
    try:
        return _url_problem(urlparse(value)) is None
    except ValueError:
        return False


def validate_instruction(instruction: str, max_length: int = MAX_INSTRUCTION_LENGTH) -> str:
    """校验自然语言提取指令，返回去除首尾空白后的值"""
    instruction = (instruction or "").strip()
    if not instruction:
        raise ValidationError("提取指令不能为空")
    if len(instruction) > max_length:
        raise ValidationError(f"提取指令不能超过 {max_length} 字符")
    if _UNSAFE_INSTRUCTION.search(instruction):
        raise ValidationError("提取指令包含不允许的内容")
    return instruction
