"""
Webhook 通知器实现

负责把上币公告并发推送到所有注册的 webhook。每个订阅者一个任务，
单个订阅者失败只记录日志，不影响其他订阅者，也不会抛给调用方。
"""

import re
import logging
import requests
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional, Sequence
from urllib.parse import quote

from core.interface import Notifier
from core.model import AnnouncementEntry, Subscriber

logger = logging.getLogger(__name__)

# 与 JavaScript encodeURIComponent 保持一致的保留字符
_URI_COMPONENT_SAFE = "!*'()"

_LAST_SEGMENT_PATTERN = re.compile(r'([^/]+)$')


class WebhookNotifier(Notifier):
    """Webhook 通知器"""

    ANNOUNCEMENT_BASE_URL = "https://www.binance.com/zh-CN/support/announcement"
    SECRET_HEADER = "X-Webhook-Secret"

    def __init__(
        self,
        timeout: int = 10,
        max_workers: Optional[int] = None,
        secret_header: str = SECRET_HEADER,
        announcement_base_url: str = ANNOUNCEMENT_BASE_URL
    ):
        """
        初始化通知器

        Args:
            timeout: 请求超时时间（秒）
            max_workers: 并发推送的最大线程数，为 None 时每个订阅者一个线程
            secret_header: 携带订阅者 secret 的 header 名
            announcement_base_url: 公告详情页的基础 URL
        """
        self.timeout = timeout
        self.max_workers = max_workers if max_workers and max_workers > 0 else None
        self.secret_header = secret_header
        self.announcement_base_url = announcement_base_url.rstrip("/")

    def dispatch(self, entry: AnnouncementEntry, subscribers: Sequence[Subscriber]) -> int:
        """
        推送一条公告到所有订阅者

        Args:
            entry: 上币公告
            subscribers: 订阅者列表

        Returns:
            推送成功的订阅者数量
        """
        if not subscribers:
            logger.info(f"[推送] 没有订阅者，跳过: {entry.title[:30]}...")
            return 0

        payload = self.build_payload(entry)
        workers = self.max_workers or len(subscribers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="webhook") as pool:
            futures = [pool.submit(self._deliver, subscriber, payload) for subscriber in subscribers]

        succeeded = 0
        for subscriber, future in zip(subscribers, futures):
            try:
                if future.result():
                    succeeded += 1
            except Exception:
                logger.exception(f"[失败] 推送到 {subscriber.url} 时发生未知错误")

        logger.info(f"[推送] {entry.title[:30]}... 成功 {succeeded}/{len(subscribers)}")
        return succeeded

    def _deliver(self, subscriber: Subscriber, payload: dict) -> bool:
        headers = {"Content-Type": "application/json"}
        if subscriber.secret:
            headers[self.secret_header] = subscriber.secret

        try:
            response = requests.post(
                subscriber.url,
                json=payload,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"[失败] 推送到 {subscriber.url} 失败: {e}")
            return False

        if not response.ok:
            logger.error(
                f"[失败] 推送到 {subscriber.url} 失败: {response.status_code} {response.reason}"
            )
            return False
        return True

    def build_payload(self, entry: AnnouncementEntry) -> dict:
        """
        构建推送内容

        Args:
            entry: 公告对象

        Returns:
            webhook JSON 内容
        """
        return {
            "timestamp": _utc_timestamp(),
            "announcement": {
                "title": entry.title,
                "code": entry.code,
                "url": self.announcement_url(entry),
                "publishDate": entry.publish_date,
            },
        }

    def announcement_url(self, entry: AnnouncementEntry) -> str:
        """标题编码后与 code 的最后一段拼接成公告详情页 URL"""
        encoded_title = quote(entry.title, safe=_URI_COMPONENT_SAFE)
        return f"{self.announcement_base_url}/{encoded_title}-{extract_code(entry.code)}"


def extract_code(raw_code: str) -> str:
    """取 code 字段中最后一个 / 之后的部分，没有时返回空字符串"""
    match = _LAST_SEGMENT_PATTERN.search(raw_code)
    return match.group(1) if match else ""


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
