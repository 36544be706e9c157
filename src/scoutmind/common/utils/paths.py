"""提示词目录定位"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

PROMPTS_DIR_ENV = "SCOUT_PROMPTS_DIR"


@lru_cache(maxsize=1)
def get_repo_root() -> Path:
    """从本文件向上查找第一个带 prompts/ 的目录"""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / "prompts").is_dir():
            return candidate
    return Path.cwd()


def get_prompt_path(name: str) -> str:
    """返回提示词文件的绝对路径

    设置了 SCOUT_PROMPTS_DIR 时优先从该目录查找。
    """
    override = os.getenv(PROMPTS_DIR_ENV)
    prompts_dir = Path(override) if override else get_repo_root() / "prompts"
    return str((prompts_dir / name).resolve())
