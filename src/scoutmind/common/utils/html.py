"""HTML 文本工具"""

from __future__ import annotations

from ..constants import HTML_TRUNCATION_MARKER


def truncate_html(html: str, limit: int, separator: str = "") -> str:
    """超过 limit 时截断并追加截断标记

    Args:
        html: 原始 HTML
        limit: 最大字符数
        separator: 截断内容与标记之间的分隔符（规划 Agent 使用换行）
    """
    html = html or ""
    if limit < 0 or len(html) <= limit:
        return html
    return html[:limit] + separator + HTML_TRUNCATION_MARKER
