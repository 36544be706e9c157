"""LLM 调用追踪

每次模型调用向追踪文件追加一行 JSON（JSON Lines），记录组件、provider、
提示词和原始输出，便于用 tail / grep 排查。单个字符串超过 trace_max_chars 时截断。
写入失败只记 debug 日志，不影响调用方。
"""

from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import config
from ..logger import get_logger

logger = get_logger(__name__)
_TRACE_WRITE_LOCK = threading.Lock()

# 截断下限，避免配置过小导致提示词完全不可读
MIN_TRACE_CHARS = 2000


def trace_file_path() -> Path:
    path = Path(config.llm.trace_file)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def append_llm_trace(component: str, payload: dict[str, Any]) -> None:
    """追加一条追踪记录（未启用追踪时什么都不做）"""
    if not config.llm.trace_enabled:
        return

    max_chars = max(MIN_TRACE_CHARS, int(config.llm.trace_max_chars))
    record = {
        "timestamp": datetime.now().isoformat(),
        "component": component,
        **_truncate(payload, max_chars),
    }
    line = json.dumps(record, ensure_ascii=False, default=str)

    path = trace_file_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _TRACE_WRITE_LOCK, path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except OSError as exc:
        logger.debug(f"[LLMTrace] 写入失败（忽略）: {exc}")


def read_llm_traces(path: str | Path | None = None) -> list[dict[str, Any]]:
    """读取追踪文件，跳过无法解析的行"""
    path = Path(path) if path is not None else trace_file_path()
    if not path.exists():
        return []

    records: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"[LLMTrace] 跳过损坏的追踪行: {line[:80]}")
            continue
        if isinstance(item, dict):
            records.append(item)
    return records


def _truncate(value: Any, max_chars: int) -> Any:
    if isinstance(value, str):
        if len(value) <= max_chars:
            return value
        return value[:max_chars] + f"...[truncated {len(value) - max_chars} chars]"
    if isinstance(value, dict):
        return {str(k): _truncate(v, max_chars) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate(v, max_chars) for v in value]
    return value
