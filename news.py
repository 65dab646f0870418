#!/usr/bin/env python3
"""
News sources: the Google News search RSS feed and the NewsAPI archive.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
import re

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger, Capabilities
from feeds import entry_timestamp, fetch_bytes, get_entry_value, parse_feed, parse_date_string
from utils import RateLimiter

logger = get_logger("news")

NEWS_API_URL = "https://newsapi.org/v2/everything"
NEWS_API_QUERY = "인공지능 OR AI OR ChatGPT OR GPT OR LLM OR 머신러닝"
NEWS_API_PAGE_SIZE = 100
NEWS_API_MAX_ARTICLES = 500
DEFAULT_NEWS_SOURCE = "Google News"

_SOURCE_SUFFIX_RE = re.compile(r" - ([^-]+)$")


def extract_source(title: Optional[str]) -> str:
    """Publisher name from a Google News title such as ``"Headline - Publisher"``."""
    if not title:
        return DEFAULT_NEWS_SOURCE
    match = _SOURCE_SUFFIX_RE.search(title)
    if not match:
        return DEFAULT_NEWS_SOURCE
    return match.group(1).strip() or DEFAULT_NEWS_SOURCE


class NewsClient:
    """Fetches AI news from the search feed and, for backfills, from NewsAPI."""

    def __init__(self, session: ClientSession, capabilities: Capabilities,
                 api_key: Optional[str] = None, page_limiter: Optional[RateLimiter] = None,
                 feed_url: Optional[str] = None, feed_limit: Optional[int] = None):
        self.session = session
        self.capabilities = capabilities
        self.api_key = api_key if api_key is not None else config.NEWS_API_KEY
        self.page_limiter = page_limiter or RateLimiter.every(config.BACKFILL_DELAY_SECONDS)
        self.feed_url = feed_url or config.NEWS_FEED_URL
        self.feed_limit = feed_limit or config.NEWS_FEED_LIMIT

    async def fetch_feed(self) -> List[Dict[str, Any]]:
        """Latest items from the news search feed, capped at the configured limit."""
        content = await fetch_bytes(self.session, self.feed_url, label="news feed")
        if content is None:
            return []
        feed = await parse_feed(content)
        if getattr(feed, 'bozo', False) and not feed.entries:
            logger.warning(f"News feed could not be parsed: {getattr(feed, 'bozo_exception', 'unknown error')}")
            return []

        now_ts = int(datetime.now(timezone.utc).timestamp())
        items = []
        for entry in feed.entries[:self.feed_limit]:
            title = get_entry_value(entry, 'title')
            items.append({
                'title': title or "No Title",
                'link': get_entry_value(entry, 'link') or "#",
                'pub_date': entry_timestamp(entry) or now_ts,
                'source': extract_source(title),
            })
        return items

    async def fetch_api_page(self, page: int, start: str, end: Optional[str] = None) -> List[Dict[str, Any]]:
        """One NewsAPI result page for the AI query between ``start`` and ``end`` (YYYY-MM-DD)."""
        if not self.capabilities.news_api:
            logger.warning("News API key not configured")
            return []

        params = {
            'apiKey': self.api_key,
            'q': NEWS_API_QUERY,
            'language': 'ko',
            'sortBy': 'publishedAt',
            'pageSize': NEWS_API_PAGE_SIZE,
            'page': page,
            'from': start,
        }
        if end:
            params['to'] = end
        try:
            async with self.session.get(f"{NEWS_API_URL}?{urlencode(params)}",
                                        timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"News API error: HTTP {response.status} {body[:300]}")
                    return []
                data = await response.json()
        except (ClientError, TimeoutError, ValueError) as e:
            logger.error(f"News API request failed: {e}")
            return []

        if data.get('status') != "ok":
            logger.error(f"News API status not ok: {data.get('message') or data.get('status')}")
            return []

        articles = []
        for article in data.get('articles') or []:
            url = article.get('url')
            if not url:
                continue
            articles.append({
                'title': article.get('title') or "No Title",
                'link': url,
                'pub_date': parse_date_string(article.get('publishedAt') or '') or 0,
                'source': (article.get('source') or {}).get('name') or DEFAULT_NEWS_SOURCE,
            })
        logger.info(f"News API: fetched {len(articles)} articles (page {page})")
        return articles

    async def fetch_historical(self, start: str, end: Optional[str] = None,
                               max_articles: int = NEWS_API_MAX_ARTICLES) -> List[Dict[str, Any]]:
        """Walk NewsAPI pages until ``max_articles`` or a short page."""
        if not self.capabilities.news_api:
            logger.warning("News API key not configured, skipping historical fetch")
            return []

        all_news: List[Dict[str, Any]] = []
        page = 1
        while len(all_news) < max_articles:
            await self.page_limiter.acquire()
            articles = await self.fetch_api_page(page, start, end)
            all_news.extend(articles)
            if len(articles) < NEWS_API_PAGE_SIZE:
                break
            page += 1

        logger.info(f"News API: total fetched {len(all_news)} articles")
        return all_news[:max_articles]
