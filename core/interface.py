from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Sequence
from core.model import AnnouncementEntry, Subscriber

class AnnouncementSource(ABC):
    exchange: str

    @abstractmethod
    def fetch_snapshot(self) -> Sequence[AnnouncementEntry]:
        """返回当前第一页公告（新的在前），任何失败都返回空列表"""
        ...

    def close(self) -> None:
        """释放连接等资源"""

class StateStore(ABC):
    @abstractmethod
    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """一次性读取多个 key，不存在的 key 不出现在结果中"""
        ...

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        """写入一个 key，写入失败必须抛出异常"""
        ...

class WakeScheduler(ABC):
    @abstractmethod
    def arm(self, at: float) -> None:
        """在 at（unix 时间戳）唤醒一次，替换之前未触发的唤醒"""
        ...

    @abstractmethod
    def cancel(self) -> None:
        ...

    @property
    @abstractmethod
    def next_wake_at(self) -> Optional[float]:
        ...

class Notifier(ABC):
    @abstractmethod
    def dispatch(self, entry: AnnouncementEntry, subscribers: Sequence[Subscriber]) -> int:
        """
        把公告推送给所有订阅者，等待全部完成后返回成功数量。
        单个订阅者失败只记录日志，不影响其他订阅者，也不向上抛出。
        """
        ...
