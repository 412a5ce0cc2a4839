"""
上币公告监听主程序

工作流程（每次唤醒执行一次）：
1. 从 Binance 获取最新一页上币公告
2. 与上次记录的最新公告 ID 对比，找出新公告
3. 标题包含上币标记的公告推送到所有 webhook
4. 保存最新公告 ID
5. 如果仍在监听，安排下一次唤醒

监听开关、最新公告 ID、webhook 列表和关注币种都会持久化，重启后自动恢复。
"""

import os
import time
import logging
import argparse
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import dotenv
import uvicorn

from config import MonitorConfig, load_config
from core.interface import AnnouncementSource, Notifier, StateStore, WakeScheduler
from core.model import ControlState, Subscriber
from exchange.binance import BinanceListingFeed
from scheduler import TimerWakeScheduler
from server import create_app
from store import JsonStateStore, StateStoreError
from tagger import ListingTitleTagger
from webhook import WebhookNotifier

logger = logging.getLogger(__name__)

# 持久化 key
KEY_IS_MONITORING = "is_monitoring"
KEY_LAST_SEEN_ID = "last_seen_id"
KEY_SUBSCRIBERS = "subscribers"
KEY_WATCH_LIST = "watch_list"

STATE_KEYS = (KEY_IS_MONITORING, KEY_LAST_SEEN_ID, KEY_SUBSCRIBERS, KEY_WATCH_LIST)


class ListingMonitor:
    """
    上币公告监听器

    所有状态变更（唤醒周期和管理操作）都在同一把锁下执行，
    同一时间只会处理一个唤醒或一个管理请求。
    """

    def __init__(
        self,
        store: StateStore,
        feed: AnnouncementSource,
        notifier: Notifier,
        scheduler: WakeScheduler,
        tagger: Optional[ListingTitleTagger] = None,
        polling_interval: float = 3.0,
        clock=time.time
    ):
        """
        初始化监听器

        Args:
            store: 状态存储
            feed: 公告数据源
            notifier: 推送器
            scheduler: 唤醒定时器，唤醒时应调用 on_wake()
            tagger: 上币公告识别器
            polling_interval: 轮询间隔（秒）
            clock: 返回当前 unix 时间戳的函数
        """
        self.store = store
        self.feed = feed
        self.notifier = notifier
        self.scheduler = scheduler
        self.tagger = tagger or ListingTitleTagger()
        self.polling_interval = polling_interval
        self._clock = clock
        self._lock = threading.RLock()
        self.state = ControlState()

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def restore(self) -> ControlState:
        """从存储中一次性恢复状态，监听中则重新安排唤醒"""
        with self._lock:
            stored = self.store.get(STATE_KEYS)

            last_seen_id = stored.get(KEY_LAST_SEEN_ID)
            self.state = ControlState(
                is_monitoring=bool(stored.get(KEY_IS_MONITORING, False)),
                last_seen_id=int(last_seen_id) if last_seen_id is not None else None,
                subscribers=tuple(
                    Subscriber.from_dict(item) for item in stored.get(KEY_SUBSCRIBERS, [])
                ),
                watch_list=tuple(stored.get(KEY_WATCH_LIST, [])),
            )

            logger.info(
                f"[恢复] 监听中: {self.state.is_monitoring} | "
                f"最新公告ID: {self.state.last_seen_id} | "
                f"webhook: {len(self.state.subscribers)} 个"
            )

            if self.state.is_monitoring:
                self._arm_next()
            return self.state

    def start(self) -> bool:
        """
        开始监听

        Returns:
            False 表示已经在监听中
        """
        with self._lock:
            if self.state.is_monitoring:
                return False

            self.store.put(KEY_IS_MONITORING, True)
            self.state = replace(self.state, is_monitoring=True)
            self._arm_next()
            logger.info("[监听] 已开始")
            return True

    def stop(self) -> None:
        """停止监听，正在执行的周期会先执行完"""
        with self._lock:
            self.store.put(KEY_IS_MONITORING, False)
            self.state = replace(self.state, is_monitoring=False)
            self.scheduler.cancel()
            logger.info("[监听] 已停止")

    # ------------------------------------------------------------------
    # 监听周期
    # ------------------------------------------------------------------

    def on_wake(self) -> None:
        """定时器回调"""
        with self._lock:
            if not self.state.is_monitoring:
                logger.info("[周期] 监听已停止，忽略本次唤醒")
                return
            self.run_cycle()

    def run_cycle(self) -> int:
        """
        执行一次监听周期

        任何获取、对比、推送过程中的异常都在这里记录，不会向外抛出；
        无论成功与否，只要仍在监听就会安排下一次唤醒。

        Returns:
            本次推送的公告数量
        """
        with self._lock:
            notified = 0
            try:
                entries = self.feed.fetch_snapshot()
                if not entries:
                    logger.info("[周期] 没有获取到公告")
                    return 0

                latest_id = entries[0].id
                last_seen_id = self.state.last_seen_id

                if last_seen_id is None:
                    # 首次运行只记录基线，不推送历史公告
                    self._save_last_seen(latest_id)
                    logger.info(f"[初始化] 记录基线公告ID: {latest_id}")
                elif latest_id != last_seen_id:
                    subscribers = self.state.subscribers
                    for entry in entries:
                        if entry.id == last_seen_id:
                            break
                        if self.tagger.is_listing(entry.title):
                            logger.info(f"[新公告] {entry.id} {entry.title}")
                            self.notifier.dispatch(entry, subscribers)
                            notified += 1
                    self._save_last_seen(latest_id)
                    logger.info(f"[周期] 推送 {notified} 条公告，最新公告ID: {latest_id}")
                else:
                    logger.debug(f"[周期] 没有新公告，最新公告ID: {latest_id}")
            except StateStoreError as e:
                logger.critical(f"[错误] 保存最新公告ID失败，下次唤醒可能重复推送: {e}")
            except Exception:
                logger.exception("[错误] 监听周期执行失败")
            finally:
                if self.state.is_monitoring:
                    self._arm_next()
            return notified

    def _save_last_seen(self, latest_id: int) -> None:
        self.store.put(KEY_LAST_SEEN_ID, latest_id)
        self.state = replace(self.state, last_seen_id=latest_id)

    def _arm_next(self) -> None:
        self.scheduler.arm(self._clock() + self.polling_interval)

    # ------------------------------------------------------------------
    # webhook 管理
    # ------------------------------------------------------------------

    def add_subscriber(self, url: str, secret: Optional[str] = None) -> Subscriber:
        """注册 webhook，相同 URL 会覆盖原来的 secret"""
        with self._lock:
            subscriber = Subscriber(url=url, secret=secret or None)
            subscribers = [s for s in self.state.subscribers if s.url != url]
            subscribers.append(subscriber)
            self._save_subscribers(subscribers)
            logger.info(f"[webhook] 已注册: {url}")
            return subscriber

    def list_subscribers(self) -> List[Subscriber]:
        with self._lock:
            return list(self.state.subscribers)

    def remove_subscriber(self, url: str) -> bool:
        """
        删除 webhook

        Returns:
            True 表示确实删除了
        """
        with self._lock:
            subscribers = [s for s in self.state.subscribers if s.url != url]
            removed = len(subscribers) != len(self.state.subscribers)
            self._save_subscribers(subscribers)
            if removed:
                logger.info(f"[webhook] 已删除: {url}")
            return removed

    def _save_subscribers(self, subscribers: Sequence[Subscriber]) -> None:
        self.store.put(KEY_SUBSCRIBERS, [s.to_dict() for s in subscribers])
        self.state = replace(self.state, subscribers=tuple(subscribers))

    # ------------------------------------------------------------------
    # 关注币种
    # ------------------------------------------------------------------

    def set_watch_list(self, coins: Sequence[str]) -> List[str]:
        with self._lock:
            watch_list = list(dict.fromkeys(coins))
            self._save_watch_list(watch_list)
            return watch_list

    def get_watch_list(self) -> List[str]:
        with self._lock:
            return list(self.state.watch_list)

    def clear_watch_list(self) -> List[str]:
        with self._lock:
            self._save_watch_list([])
            return []

    def _save_watch_list(self, watch_list: List[str]) -> None:
        self.store.put(KEY_WATCH_LIST, watch_list)
        self.state = replace(self.state, watch_list=tuple(watch_list))

    def status(self) -> dict:
        with self._lock:
            next_wake_at = self.scheduler.next_wake_at
            return {
                "isMonitoring": self.state.is_monitoring,
                "lastSeenId": self.state.last_seen_id,
                "webhooks": len(self.state.subscribers),
                "watchList": list(self.state.watch_list),
                "pollingInterval": self.polling_interval,
                "nextWakeAt": (
                    datetime.fromtimestamp(next_wake_at, tz=timezone.utc).isoformat() if next_wake_at else None
                ),
            }


def build_monitor(config: MonitorConfig) -> ListingMonitor:
    """根据配置组装监听器"""
    scheduler = TimerWakeScheduler()
    monitor = ListingMonitor(
        store=JsonStateStore(config.state_path),
        feed=BinanceListingFeed(
            base_url=config.feed_base_url,
            catalog_id=config.feed_catalog_id,
            page_size=config.feed_page_size,
            timeout=config.feed_timeout
        ),
        notifier=WebhookNotifier(
            timeout=config.notify_timeout,
            max_workers=config.notify_max_workers,
            secret_header=config.notify_secret_header,
            announcement_base_url=config.announcement_base_url
        ),
        scheduler=scheduler,
        tagger=ListingTitleTagger(config.listing_markers),
        polling_interval=config.polling_interval_seconds
    )
    scheduler.bind(monitor.on_wake)
    return monitor


def main():
    """主入口"""
    parser = argparse.ArgumentParser(description='Binance 上币公告 webhook 推送')
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='配置文件路径 (默认: config.yaml)')
    parser.add_argument('--once', action='store_true',
                        help='只执行一次监听周期，不启动管理接口')
    args = parser.parse_args()

    dotenv.load_dotenv()  # 加载环境变量文件（如果存在）
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    config = load_config(args.config)
    logging.getLogger().setLevel(config.log_level)

    monitor = build_monitor(config)

    try:
        if args.once:
            monitor.restore()
            monitor.scheduler.cancel()
            notified = monitor.run_cycle()
            print(f"[完成] 推送 {notified} 条公告，最新公告ID: {monitor.state.last_seen_id}")
            return

        monitor.restore()
        uvicorn.run(create_app(monitor), host=config.server_host, port=config.server_port)
    except KeyboardInterrupt:
        print("\n\n[退出] 收到中断信号，正在退出...")
    finally:
        monitor.scheduler.cancel()
        monitor.feed.close()


if __name__ == "__main__":
    main()
