"""
Binance 上币公告数据源

监听的公告类型:
- 新币上线 (catalogId: 48) https://www.binance.com/zh-CN/support/announcement/list/48

只拉取第一页（20 条），新的在前。请求失败或返回结构异常时返回空列表，
由监听周期当作"本轮没有新公告"处理，重试节奏完全由轮询间隔决定。
"""

import logging
import requests
from typing import Sequence, List, Optional
from datetime import datetime, timezone
from core.interface import AnnouncementSource
from core.model import AnnouncementEntry

logger = logging.getLogger(__name__)


class BinanceListingFeed(AnnouncementSource):
    """Binance 上币公告数据源"""

    exchange = "Binance"

    # Binance 公告API端点
    BASE_URL = "https://www.binance.com/bapi/composite/v1/public/cms/article/list/query"

    # 新币上线分类
    LISTING_CATALOG_ID = 48

    # Binance API 单次请求最大支持 20 条
    MAX_PAGE_SIZE = 20

    def __init__(
        self,
        base_url: Optional[str] = None,
        catalog_id: int = LISTING_CATALOG_ID,
        page_size: int = MAX_PAGE_SIZE,
        timeout: int = 10
    ):
        """
        初始化 Binance 上币公告源

        Args:
            base_url: API 地址，默认使用 BASE_URL
            catalog_id: 公告分类ID
            page_size: 每次拉取数量（最大20）
            timeout: API请求超时时间（秒）
        """
        self.base_url = base_url or self.BASE_URL
        self.catalog_id = catalog_id
        self.page_size = min(page_size, self.MAX_PAGE_SIZE)
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36',
            'Accept': 'application/json',
            'Accept-Language': 'zh-CN,zh;q=0.9,en;q=0.8',
        })

    def fetch_snapshot(self) -> Sequence[AnnouncementEntry]:
        """
        拉取最新一页公告

        Returns:
            AnnouncementEntry 列表，新的在前；失败时为空列表
        """
        params = {
            "type": 1,
            "catalogId": self.catalog_id,
            "pageNo": 1,
            "pageSize": self.page_size,
        }

        try:
            response = self.session.get(
                self.base_url,
                params=params,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.warning(f"[{self.exchange}] 获取公告失败: {e}")
            return []
        except ValueError as e:
            logger.warning(f"[{self.exchange}] 公告响应不是合法 JSON: {e}")
            return []

        articles = self._extract_articles(data)
        return self._parse_articles(articles)

    def _extract_articles(self, data) -> List[dict]:
        """
        从响应中取出目标分类的文章列表，结构不符合预期时返回空列表

        Args:
            data: API返回的 JSON

        Returns:
            文章列表
        """
        if not isinstance(data, dict):
            logger.warning(f"[{self.exchange}] 公告响应结构异常: {type(data).__name__}")
            return []

        code = data.get("code")
        if code is not None and code != "000000":
            logger.warning(f"[{self.exchange}] API返回错误代码: {code}")
            return []

        payload = data.get("data")
        if not isinstance(payload, dict):
            logger.warning(f"[{self.exchange}] 公告响应 data 字段结构异常: {type(payload).__name__}")
            return []

        catalogs = payload.get("catalogs")
        if not isinstance(catalogs, list) or not catalogs:
            logger.warning(f"[{self.exchange}] API未返回任何 catalog 数据")
            return []

        # 查找匹配的 catalog，找不到时使用第一个
        target_catalog = catalogs[0]
        for catalog in catalogs:
            if isinstance(catalog, dict) and catalog.get("catalogId") == self.catalog_id:
                target_catalog = catalog
                break

        if not isinstance(target_catalog, dict):
            return []

        articles = target_catalog.get("articles")
        if not isinstance(articles, list):
            return []
        return articles

    def _parse_articles(self, articles: List[dict]) -> List[AnnouncementEntry]:
        """
        解析文章数据为 AnnouncementEntry，保持 API 返回的顺序

        Args:
            articles: API返回的文章列表

        Returns:
            AnnouncementEntry 列表
        """
        entries = []

        for article in articles[:self.page_size]:
            if not isinstance(article, dict):
                continue

            article_id = article.get("id")
            if isinstance(article_id, bool) or not isinstance(article_id, int):
                logger.debug(f"[{self.exchange}] 跳过缺少 id 的公告: {article}")
                continue

            entries.append(AnnouncementEntry(
                id=article_id,
                title=str(article.get("title") or ""),
                code=str(article.get("code") or ""),
                publish_date=self._publish_date(article)
            ))

        return entries

    @staticmethod
    def _publish_date(article: dict) -> str:
        """优先使用 publishDate，否则把 releaseDate（毫秒）转成 ISO 8601"""
        publish_date = article.get("publishDate")
        if publish_date:
            return str(publish_date)

        timestamp = article.get("releaseDate")
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()
        return ""

    def close(self) -> None:
        self.session.close()

    def __del__(self):
        """关闭会话"""
        if hasattr(self, 'session'):
            self.session.close()
