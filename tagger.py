"""
上币公告识别

标题包含任意一个标记字符串（区分大小写）即视为上币公告。
"""

import logging
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_LISTING_MARKERS = ["Binance Will List"]


class ListingTitleTagger:
    """基于标记字符串的标题识别器"""

    def __init__(self, markers: Optional[Iterable[str]] = None):
        """
        初始化识别器

        Args:
            markers: 标记字符串列表，默认使用 DEFAULT_LISTING_MARKERS
        """
        if markers is None:
            markers = DEFAULT_LISTING_MARKERS
        self.markers: List[str] = [m for m in markers if m]
        if not self.markers:
            logger.warning("[识别] 没有配置任何上币标记，所有公告都不会推送")

    def is_listing(self, title: str) -> bool:
        """
        判断标题是否为上币公告

        Args:
            title: 公告标题

        Returns:
            True 表示包含上币标记
        """
        return any(marker in title for marker in self.markers)
