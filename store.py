"""
控制状态持久化

所有 key 保存在同一个 JSON 文件中。每次写入先写临时文件再 os.replace，
进程在写入过程中退出也不会留下半个文件。
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable

from core.interface import StateStore

logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """状态读写失败"""


class JsonStateStore(StateStore):
    """基于本地 JSON 文件的 key-value 存储"""

    def __init__(self, path: str = "monitor_state.json"):
        """
        初始化存储

        Args:
            path: 状态文件路径（相对于当前工作目录）
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info(f"[初始化] 状态文件不存在，将在首次写入时创建: {self.path}")
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateStoreError(f"读取状态文件失败: {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StateStoreError(f"状态文件格式错误: {self.path}")

        logger.info(f"[加载] 已加载状态文件: {self.path}")
        return data

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {key: self._data[key] for key in keys if key in self._data}

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            data = dict(self._data)
            data[key] = value
            self._write(data)
            self._data = data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StateStoreError(f"写入状态文件失败: {self.path}: {e}") from e
