from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class AnnouncementEntry:
    id: int
    title: str
    code: str
    publish_date: str


@dataclass(frozen=True)
class Subscriber:
    url: str
    secret: Optional[str] = None   # 为空时不发送 secret header

    def to_dict(self) -> dict:
        return {"url": self.url, "secret": self.secret}

    @classmethod
    def from_dict(cls, data: dict) -> "Subscriber":
        return cls(url=data["url"], secret=data.get("secret") or None)


@dataclass(frozen=True)
class ControlState:
    is_monitoring: bool = False
    last_seen_id: Optional[int] = None
    subscribers: Tuple[Subscriber, ...] = field(default_factory=tuple)
    watch_list: Tuple[str, ...] = field(default_factory=tuple)
