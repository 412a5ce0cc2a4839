"""
运行配置

从 config.yaml 读取，环境变量（可写在 .env 中）覆盖部分参数：
- POLLING_INTERVAL: 轮询间隔（毫秒）
- STATE_FILE: 状态文件路径
- LOG_LEVEL: 日志级别
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL_MS = 3000


@dataclass
class MonitorConfig:
    polling_interval_ms: int = DEFAULT_POLLING_INTERVAL_MS

    feed_base_url: Optional[str] = None
    feed_catalog_id: int = 48
    feed_page_size: int = 20
    feed_timeout: int = 10

    listing_markers: List[str] = field(default_factory=lambda: ["Binance Will List"])

    notify_timeout: int = 10
    notify_max_workers: Optional[int] = None
    notify_secret_header: str = "X-Webhook-Secret"
    announcement_base_url: str = "https://www.binance.com/zh-CN/support/announcement"

    state_path: str = "monitor_state.json"

    server_host: str = "0.0.0.0"
    server_port: int = 8787

    log_level: str = "INFO"

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval_ms / 1000


def load_config(config_file: str = "config.yaml") -> MonitorConfig:
    """
    加载运行配置

    配置文件不存在或无法解析时使用默认参数，环境变量总是生效。

    Args:
        config_file: 配置文件路径

    Returns:
        MonitorConfig
    """
    config = MonitorConfig()
    path = Path(config_file)

    if not path.exists():
        logger.warning(f"[警告] 配置文件不存在: {path}，使用默认参数")
    else:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
            _apply_file_config(config, raw)
        except (OSError, yaml.YAMLError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"[错误] 加载配置失败: {e}，使用默认参数")
            config = MonitorConfig()

    _apply_env_overrides(config)

    logger.info(f"[配置] 轮询间隔: {config.polling_interval_ms} 毫秒")
    logger.info(f"[配置] 上币标记: {config.listing_markers}")
    logger.info(f"[配置] 状态文件: {config.state_path}")
    return config


def _apply_file_config(config: MonitorConfig, raw: dict) -> None:
    monitor = raw.get('monitor') or {}
    feed = raw.get('feed') or {}
    listing = raw.get('listing') or {}
    notify = raw.get('notify') or {}
    state = raw.get('state') or {}
    server = raw.get('server') or {}
    logging_config = raw.get('logging') or {}

    config.polling_interval_ms = _interval_ms(
        monitor.get('polling_interval_ms', config.polling_interval_ms)
    )

    config.feed_base_url = feed.get('base_url', config.feed_base_url)
    config.feed_catalog_id = int(feed.get('catalog_id', config.feed_catalog_id))
    config.feed_page_size = int(feed.get('page_size', config.feed_page_size))
    config.feed_timeout = int(feed.get('timeout', config.feed_timeout))

    markers = listing.get('markers')
    if markers is not None:
        if not isinstance(markers, list):
            raise ValueError("listing.markers 必须是列表")
        config.listing_markers = [str(m) for m in markers]

    config.notify_timeout = int(notify.get('timeout', config.notify_timeout))
    config.notify_max_workers = _max_workers(notify.get('max_workers'))
    config.notify_secret_header = notify.get('secret_header', config.notify_secret_header)
    config.announcement_base_url = notify.get(
        'announcement_base_url', config.announcement_base_url
    )

    config.state_path = str(state.get('path', config.state_path))

    config.server_host = server.get('host', config.server_host)
    config.server_port = int(server.get('port', config.server_port))

    config.log_level = str(logging_config.get('level', config.log_level)).upper()


def _apply_env_overrides(config: MonitorConfig) -> None:
    polling_interval = os.getenv("POLLING_INTERVAL")
    if polling_interval:
        config.polling_interval_ms = _interval_ms(polling_interval)

    state_file = os.getenv("STATE_FILE")
    if state_file:
        config.state_path = state_file

    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        config.log_level = log_level.upper()


def _interval_ms(value) -> int:
    """非法或非正数的间隔回退到默认值"""
    try:
        interval = int(value)
    except (TypeError, ValueError):
        logger.warning(f"[警告] 轮询间隔无效: {value!r}，使用默认值 {DEFAULT_POLLING_INTERVAL_MS}")
        return DEFAULT_POLLING_INTERVAL_MS
    if interval <= 0:
        logger.warning(f"[警告] 轮询间隔必须为正数: {interval}，使用默认值 {DEFAULT_POLLING_INTERVAL_MS}")
        return DEFAULT_POLLING_INTERVAL_MS
    return interval


def _max_workers(value) -> Optional[int]:
    """留空或小于 1 时回退为每个订阅者一个线程"""
    if value is None or value == "":
        return None
    try:
        workers = int(value)
    except (TypeError, ValueError):
        logger.warning(f"[警告] 推送线程数无效: {value!r}，改为每个订阅者一个线程")
        return None
    if workers < 1:
        logger.warning(f"[警告] 推送线程数必须大于 0: {workers}，改为每个订阅者一个线程")
        return None
    return workers
