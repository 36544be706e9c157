"""YAML 提示词模板

prompts/ 下每个文件是 section 名到模板文本的映射，section 按 Jinja2 渲染。
文件内容按路径缓存，修改提示词后需要重启进程。
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import jinja2
import yaml

from ..exceptions import ConfigError

_env = jinja2.Environment(autoescape=False, keep_trailing_newline=True)


@lru_cache(maxsize=32)
def _load_sections(file_path: str) -> dict[str, str]:
    path = Path(file_path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"无法加载提示词文件 {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"提示词文件顶层必须是映射: {path}")

    sections: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(value, str):
            value = yaml.safe_dump(value, allow_unicode=True, sort_keys=False)
        sections[str(key)] = value
    return sections


def get_template_sections(file_path: str | Path) -> list[str]:
    """列出模板文件中的全部 section"""
    return list(_load_sections(str(file_path)))


def render_text(text: str, variables: dict[str, Any] | None = None) -> str:
    """渲染一段模板文本；没有变量时原样返回"""
    if not variables:
        return text
    return _env.from_string(text).render(**variables)


def render_template(
    file_path: str | Path,
    section: str,
    variables: dict[str, Any] | None = None,
) -> str:
    """渲染模板文件中的一个 section（section 不存在时返回空字符串）"""
    content = _load_sections(str(file_path)).get(section, "")
    return render_text(content, variables)
