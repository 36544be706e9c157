"""持久化设置存储

网关在启动和热更新时从这里读取凭证、端点和模型名。
核心流程只依赖 get / set 两个方法，不关心存储格式。
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .exceptions import SettingsStoreError
from .logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class SettingsStore(Protocol):
    """键值设置存储"""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemorySettingsStore:
    """内存设置存储（测试 / 临时运行）"""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)


class JsonFileSettingsStore:
    """JSON 文件设置存储

    每次 set 都整体写回文件：先写同目录临时文件，再 os.replace 替换，
    读者不会看到写了一半的文件。
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise SettingsStoreError(str(self.path), f"设置文件读取失败 ({exc})") from exc
        if not isinstance(data, dict):
            raise SettingsStoreError(str(self.path), "设置文件内容必须是 JSON 对象")
        logger.debug(f"[Settings] 已加载 {len(data)} 项设置: {self.path}")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            updated = {**self._data, key: value}
            self._write(updated)
            self._data = updated
        logger.debug(f"[Settings] 已保存设置: {key}")

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def _write(self, data: dict[str, Any]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise SettingsStoreError(str(self.path), f"设置文件写入失败 ({exc})") from exc
