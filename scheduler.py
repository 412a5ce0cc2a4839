"""
唤醒定时器

同一时间只有一个待触发的唤醒，重新 arm 会替换之前的唤醒。
进程重启后由 ListingMonitor.restore() 根据持久化的监听状态重新 arm。
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from core.interface import WakeScheduler

logger = logging.getLogger(__name__)


class TimerWakeScheduler(WakeScheduler):
    """基于 threading.Timer 的唤醒定时器"""

    def __init__(self, callback: Optional[Callable[[], None]] = None):
        """
        Args:
            callback: 唤醒时调用的函数，也可以稍后通过 bind() 设置
        """
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._wake_at: Optional[float] = None

    def bind(self, callback: Callable[[], None]) -> None:
        self._callback = callback

    @property
    def next_wake_at(self) -> Optional[float]:
        with self._lock:
            return self._wake_at

    def arm(self, at: float) -> None:
        if self._callback is None:
            raise RuntimeError("TimerWakeScheduler 未绑定回调")

        delay = max(0.0, at - time.time())
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(delay, lambda: self._fire(timer))
            timer.daemon = True
            self._timer = timer
            self._wake_at = at
            timer.start()

        next_time_str = datetime.fromtimestamp(at).strftime("%Y-%m-%d %H:%M:%S")
        logger.debug(f"[定时] 下次唤醒时间: {next_time_str}")

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._wake_at = None

    def _fire(self, timer: threading.Timer) -> None:
        with self._lock:
            # 已被替换或取消的定时器不再触发
            if self._timer is not timer:
                return
            self._timer = None
            self._wake_at = None

        try:
            self._callback()
        except Exception:
            logger.exception("[定时] 唤醒回调执行失败")
