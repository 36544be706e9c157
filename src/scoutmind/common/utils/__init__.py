"""通用工具模块"""

from .html import truncate_html
from .paths import get_prompt_path, get_repo_root
from .prompt_template import render_template, render_text
from .retry import with_retry

__all__ = [
    "get_prompt_path",
    "get_repo_root",
    "render_template",
    "render_text",
    "truncate_html",
    "with_retry",
]
