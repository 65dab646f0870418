#!/usr/bin/env python3
"""
Trend fetcher.

This module runs the fetch/upsert/retention cycle: it seeds the channel
registry, polls every active channel's feed and the news search feed, keeps
items published after the cutoff and upserts them. It also drives the
historical backfill through the YouTube Data API and NewsAPI, and the
duplicate cleanup that collapses shorts/watch variants of the same video.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from config import Config, config, get_logger
from models import DatabaseQueue
from news import NewsClient
from telemetry import trace_span
from youtube import YouTubeClient, plan_duplicate_removal

logger = get_logger("fetcher")

DUPLICATE_REPORT_LIMIT = 20


def parse_day(value: Any) -> datetime:
    """Parse a ``YYYY-MM-DD`` (or full ISO-8601) date into an aware UTC datetime.

    Raises:
        ValueError: when the value is not a date
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("startDate is required (YYYY-MM-DD)")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def compute_cutoff(initial_load: bool = False, now: Optional[datetime] = None,
                   cfg: Config = config) -> int:
    """Publish-date threshold for a fetch.

    Initial loads go back to the configured initial load date; routine runs
    keep everything since yesterday's local midnight.
    """
    if initial_load:
        return int(cfg.INITIAL_LOAD_DATE.timestamp())
    try:
        tz = ZoneInfo(cfg.SCHEDULER_TIMEZONE)
    except Exception:
        tz = timezone.utc
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    yesterday = (local_now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(yesterday.timestamp())


class TrendsFetcher:
    """Collects videos and news into the database."""

    def __init__(self, db: DatabaseQueue, youtube: YouTubeClient, news: NewsClient, cfg: Config = config):
        self.db = db
        self.youtube = youtube
        self.news = news
        self.config = cfg

    async def seed_channels(self) -> int:
        inserted = await self.db.execute('seed_channels', channels=self.config.SEED_CHANNELS)
        if inserted:
            logger.debug(f"Seeded {inserted} new channels")
        return inserted

    @trace_span("fetcher.refresh", tracer_name="fetcher",
                attr_from_args=lambda self, initial_load=False: {"fetch.initial_load": bool(initial_load)})
    async def refresh(self, initial_load: bool = False) -> Dict[str, Any]:
        """Fetch every active channel and the news feed, then upsert what passed the cutoff.

        Returns:
            Dict with fetched counts and the upsert outcome per table
        """
        await self.seed_channels()
        channels = await self.db.execute('list_active_channels')
        cutoff_ts = compute_cutoff(initial_load, cfg=self.config)
        logger.info(f"📡 Refreshing {len(channels)} channels (initial load: {initial_load}, "
                    f"cutoff: {datetime.fromtimestamp(cutoff_ts, tz=timezone.utc).isoformat()})")

        videos: List[Dict[str, Any]] = []
        for channel in channels:
            try:
                videos.extend(await self.youtube.fetch_channel_feed(channel, cutoff_ts))
            except Exception as e:
                logger.error(f"❌ YouTube fetch failed for {channel['name']}: {e}")

        try:
            news = await self.news.fetch_feed()
        except Exception as e:
            logger.error(f"❌ News fetch failed: {e}")
            news = []

        video_result = await self._save_videos(videos)
        news_result = await self._save_news(news)
        logger.info(f"✅ Updated {len(videos)} videos and {len(news)} news items")
        return {
            'videos': len(videos),
            'news': len(news),
            'videoResult': video_result,
            'newsResult': news_result,
        }

    async def _save_videos(self, videos: List[Dict[str, Any]]) -> Dict[str, int]:
        if not videos:
            return {'inserted': 0, 'updated': 0, 'pruned': 0}
        return await self.db.execute('upsert_videos', items=videos, max_rows=self.config.MAX_STORED_ROWS)

    async def _save_news(self, news: List[Dict[str, Any]]) -> Dict[str, int]:
        if not news:
            return {'inserted': 0, 'updated': 0, 'pruned': 0}
        return await self.db.execute('upsert_news', items=news, max_rows=self.config.MAX_STORED_ROWS)

    async def delete_before_initial_load(self) -> int:
        return await self.db.execute('delete_videos_before',
                                     cutoff_ts=int(self.config.INITIAL_LOAD_DATE.timestamp()))

    def backfill_status(self) -> Dict[str, Any]:
        return {
            'youtube': {
                'configured': self.youtube.capabilities.youtube_api,
                'description': "Set YOUTUBE_API_KEY in .env",
            },
            'news': {
                'configured': self.news.capabilities.news_api,
                'description': "Set NEWS_API_KEY in .env",
            },
        }

    @trace_span("fetcher.backfill", tracer_name="fetcher")
    async def backfill(self, start_date: str, end_date: Optional[str] = None) -> Dict[str, Any]:
        """Load history between two ``YYYY-MM-DD`` dates.

        Videos come from the Data API search per active channel; without an
        API key a routine feed refresh runs instead. News comes from NewsAPI
        when configured.

        Raises:
            ValueError: when a date cannot be parsed
        """
        start = parse_day(start_date)
        end = parse_day(end_date) if end_date else None
        logger.info(f"Backfill from {start_date} to {end_date or 'now'}")

        youtube_configured = self.youtube.capabilities.youtube_api
        news_configured = self.news.capabilities.news_api
        results = {
            'youtube': {'configured': youtube_configured, 'count': 0, 'rssCount': 0},
            'news': {'configured': news_configured, 'count': 0},
        }

        if youtube_configured:
            channels = await self.db.execute('list_active_channels')
            videos = await self.youtube.fetch_historical_videos(channels, start, end)
            await self._save_videos(videos)
            results['youtube']['count'] = len(videos)
        else:
            logger.info("YouTube API not configured, refreshing from channel feeds instead")
            refreshed = await self.refresh()
            results['youtube']['rssCount'] = refreshed['videos']

        if news_configured:
            news = await self.news.fetch_historical(start.date().isoformat(),
                                                    end.date().isoformat() if end else None)
            await self._save_news(news)
            results['news']['count'] = len(news)

        logger.info(f"✅ Backfill complete: {results}")
        return results

    async def _missing_channels(self) -> Dict[str, Any]:
        channels = await self.db.execute('list_active_channels')
        counts = await self.db.execute('count_videos_by_source')
        missing = [channel for channel in channels if not counts.get(channel['name'])]
        return {'channels': channels, 'counts': counts, 'missing': missing}

    async def missing_channels_report(self) -> Dict[str, Any]:
        """Active channels that have no stored videos yet."""
        state = await self._missing_channels()
        return {
            'totalRegistered': len(state['channels']),
            'missing': [channel['name'] for channel in state['missing']],
            'existing': [{'source': source, 'count': count} for source, count in state['counts'].items()],
        }

    @trace_span("fetcher.backfill_missing", tracer_name="fetcher")
    async def backfill_missing(self, start_date: Optional[str] = None) -> Dict[str, Any]:
        """Backfill only the active channels without any stored video.

        Starts at ``start_date`` or, when omitted, the initial load date.
        """
        start = parse_day(start_date) if start_date else self.config.INITIAL_LOAD_DATE
        state = await self._missing_channels()
        results: Dict[str, int] = {}
        total = 0
        for channel in state['missing']:
            logger.info(f"Backfilling {channel['name']}")
            videos = await self.youtube.fetch_historical_videos([channel], start)
            await self._save_videos(videos)
            results[channel['name']] = len(videos)
            total += len(videos)

        stats = await self.db.execute('get_stats')
        return {
            'channelsProcessed': len(state['missing']),
            'results': results,
            'totalNewVideos': total,
            'totalVideosInDb': stats['videos']['count'],
        }

    async def duplicate_report(self) -> Dict[str, Any]:
        """How many stored videos share a video id with another row."""
        plan = plan_duplicate_removal(await self.db.execute('find_video_duplicates'))
        duplicates = [{'videoId': video_id, 'count': count} for video_id, count in plan['groups'].items()]
        return {
            'total': plan['total'],
            'unique': plan['unique'],
            'duplicateCount': len(duplicates),
            'duplicates': duplicates[:DUPLICATE_REPORT_LIMIT],
        }

    @trace_span("fetcher.cleanup_duplicates", tracer_name="fetcher")
    async def cleanup_duplicates(self) -> Dict[str, Any]:
        """Delete all but the canonical row of every duplicate group."""
        plan = plan_duplicate_removal(await self.db.execute('find_video_duplicates'))
        removed = await self.db.execute('delete_videos', ids=plan['remove_ids'])
        stats = await self.db.execute('get_stats')
        logger.info(f"Cleaned up {removed} duplicate videos")
        return {
            'message': f"Cleaned up {removed} duplicate videos",
            'before': plan['total'],
            'after': stats['videos']['count'],
            'removed': removed,
        }
