#!/usr/bin/env python3
"""
YouTube link handling and data sources.

Covers canonical-link normalization (shorts to watch URLs), video identifier
extraction, channel registration validation, the public channel RSS feed and
the YouTube Data API v3 (search for backfill, videos for metadata).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode
import re

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger, Capabilities, VALID_CATEGORIES
from errors import ChannelValidationError
from feeds import entry_timestamp, fetch_bytes, get_entry_value, parse_feed, parse_date_string
from utils import RateLimiter, format_duration

logger = get_logger("youtube")

FEED_URL_TEMPLATE = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
THUMBNAIL_URL_TEMPLATE = "https://img.youtube.com/vi/{video_id}/mqdefault.jpg"
DATA_API_BASE = "https://www.googleapis.com/youtube/v3"

SEARCH_PAGE_SIZE = 50
HISTORICAL_MAX_PER_CHANNEL = 100

_SHORTS_LINK_RE = re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]+)")
_VIDEO_ID_PATTERNS = (
    re.compile(r"youtube\.com/watch\?v=([a-zA-Z0-9_-]+)"),
    re.compile(r"youtu\.be/([a-zA-Z0-9_-]+)"),
    re.compile(r"youtube\.com/shorts/([a-zA-Z0-9_-]+)"),
)
_DUPLICATE_KEY_PATTERNS = (
    re.compile(r"/shorts/([a-zA-Z0-9_-]+)"),
    re.compile(r"[?&]v=([a-zA-Z0-9_-]+)"),
)
_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def normalize_youtube_link(link: str) -> str:
    """Rewrite ``/shorts/<id>`` links to the canonical ``watch?v=<id>`` form."""
    if not link:
        return link
    match = _SHORTS_LINK_RE.search(link)
    if match:
        return WATCH_URL_TEMPLATE.format(video_id=match.group(1))
    return link


def extract_video_id(url: str) -> Optional[str]:
    """Return the video identifier from watch, youtu.be or shorts links."""
    if not url:
        return None
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def extract_duplicate_key(link: str) -> Optional[str]:
    """Video identifier used to group stored rows that point at the same video."""
    if not link:
        return None
    for pattern in _DUPLICATE_KEY_PATTERNS:
        match = pattern.search(link)
        if match:
            return match.group(1)
    return None


def pick_canonical_video(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Choose which of several duplicate rows to keep.

    A ``/watch?v=`` link wins over any other shape; ties go to the latest
    publish date.
    """
    return sorted(
        rows,
        key=lambda row: ("/watch?v=" in (row.get('link') or ''), row.get('pub_date') or 0),
        reverse=True,
    )[0]


def plan_duplicate_removal(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Group rows by video identifier and list the ids that should be deleted.

    Returns:
        Dict with keys: total, unique, groups (videoId -> row count, duplicates only),
        remove_ids
    """
    groups: Dict[str, List[Dict[str, Any]]] = {}
    total = 0
    for row in rows:
        total += 1
        key = extract_duplicate_key(row.get('link') or '')
        if not key:
            continue
        groups.setdefault(key, []).append(row)

    remove_ids: List[int] = []
    duplicate_counts: Dict[str, int] = {}
    for key, members in groups.items():
        if len(members) < 2:
            continue
        duplicate_counts[key] = len(members)
        keeper = pick_canonical_video(members)
        remove_ids.extend(row['id'] for row in members if row['id'] != keeper['id'])

    return {
        'total': total,
        'unique': len(groups),
        'groups': duplicate_counts,
        'remove_ids': remove_ids,
    }


def validate_channel(channel_id: Any, name: Any, category: Any) -> Dict[str, str]:
    """Validate a channel registration and return the cleaned values.

    Raises:
        ChannelValidationError: when a field is missing, the identifier is not
            a 24-character ``UC...`` channel id, or the category is unknown.
    """
    channel_id = str(channel_id or '').strip()
    name = str(name or '').strip()
    category = str(category or '').strip()

    missing = [field for field, value in (('channelId', channel_id), ('name', name), ('category', category)) if not value]
    if missing:
        raise ChannelValidationError(
            "channelId, name, and category are required",
            {'missing': missing},
        )
    if not channel_id.startswith("UC") or len(channel_id) != 24:
        raise ChannelValidationError(
            "Invalid YouTube channel ID format (should start with UC and be 24 characters)",
            {'channelId': channel_id},
        )
    if category not in VALID_CATEGORIES:
        raise ChannelValidationError(
            f"category must be one of: {', '.join(VALID_CATEGORIES)}",
            {'category': category},
        )
    return {'channel_id': channel_id, 'name': name, 'category': category}


def parse_iso8601_duration(value: str) -> int:
    """Convert a Data API duration such as ``PT1H2M3S`` into seconds."""
    match = _ISO_DURATION_RE.match(value or '')
    if not match:
        return 0
    parts = {k: int(v) for k, v in match.groupdict().items() if v}
    return (
        parts.get('days', 0) * 86400
        + parts.get('hours', 0) * 3600
        + parts.get('minutes', 0) * 60
        + parts.get('seconds', 0)
    )


def _iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class YouTubeClient:
    """Channel feed and Data API access over a shared aiohttp session."""

    def __init__(self, session: ClientSession, capabilities: Capabilities,
                 api_key: Optional[str] = None, channel_limiter: Optional[RateLimiter] = None):
        self.session = session
        self.capabilities = capabilities
        self.api_key = api_key if api_key is not None else config.YOUTUBE_API_KEY
        self.channel_limiter = channel_limiter or RateLimiter.every(config.YOUTUBE_API_DELAY_SECONDS)

    async def fetch_channel_feed(self, channel: Dict[str, Any], cutoff_ts: int) -> List[Dict[str, Any]]:
        """Fetch a channel's RSS feed and keep entries published at or after ``cutoff_ts``.

        Entries without a publish date are treated as published now.
        """
        name = channel['name']
        url = FEED_URL_TEMPLATE.format(channel_id=channel['channel_id'])
        content = await fetch_bytes(self.session, url, label=f"channel {name}")
        if content is None:
            return []

        feed = await parse_feed(content)
        if getattr(feed, 'bozo', False) and not feed.entries:
            logger.warning(f"Feed for {name} could not be parsed: {getattr(feed, 'bozo_exception', 'unknown error')}")
            return []

        now_ts = int(datetime.now(timezone.utc).timestamp())
        items = []
        for entry in feed.entries:
            video_id = (get_entry_value(entry, 'yt_videoid')
                        or str(get_entry_value(entry, 'id') or '').replace("yt:video:", ""))
            if not video_id:
                continue
            pub_ts = entry_timestamp(entry) or now_ts
            if pub_ts < cutoff_ts:
                continue
            items.append({
                'title': get_entry_value(entry, 'title') or "No Title",
                'link': get_entry_value(entry, 'link') or WATCH_URL_TEMPLATE.format(video_id=video_id),
                'pub_date': pub_ts,
                'source': name,
                'thumbnail': THUMBNAIL_URL_TEMPLATE.format(video_id=video_id),
            })
        logger.debug(f"{name}: {len(items)} of {len(feed.entries)} entries after cutoff")
        return items

    async def _api_get(self, endpoint: str, params: Dict[str, Any], label: str) -> Optional[Dict[str, Any]]:
        query = dict(params, key=self.api_key)
        url = f"{DATA_API_BASE}/{endpoint}?{urlencode(query)}"
        try:
            async with self.session.get(url, timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"YouTube API error for {label}: HTTP {response.status} {body[:300]}")
                    return None
                return await response.json()
        except (ClientError, TimeoutError) as e:
            logger.error(f"YouTube API request failed for {label}: {e}")
            return None

    async def fetch_channel_videos(self, channel: Dict[str, Any], published_after: str,
                                   published_before: str,
                                   max_results: int = HISTORICAL_MAX_PER_CHANNEL) -> List[Dict[str, Any]]:
        """Search a channel's uploads in a date window, newest first, up to ``max_results``."""
        if not self.capabilities.youtube_api:
            logger.warning("YouTube API key not configured")
            return []

        name = channel['name']
        videos: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params = {
                'channelId': channel['channel_id'],
                'part': 'snippet',
                'type': 'video',
                'order': 'date',
                'maxResults': min(max_results - len(videos), SEARCH_PAGE_SIZE),
                'publishedAfter': published_after,
                'publishedBefore': published_before,
            }
            if page_token:
                params['pageToken'] = page_token
            data = await self._api_get('search', params, name)
            if not data:
                break
            for item in data.get('items', []):
                video_id = (item.get('id') or {}).get('videoId')
                snippet = item.get('snippet') or {}
                if not video_id:
                    continue
                videos.append({
                    'title': snippet.get('title') or "No Title",
                    'link': WATCH_URL_TEMPLATE.format(video_id=video_id),
                    'pub_date': parse_date_string(snippet.get('publishedAt') or '') or 0,
                    'source': name,
                    'thumbnail': THUMBNAIL_URL_TEMPLATE.format(video_id=video_id),
                })
            page_token = data.get('nextPageToken')
            if not page_token or len(videos) >= max_results:
                break

        logger.info(f"YouTube API: fetched {len(videos)} videos from {name}")
        return videos

    async def fetch_historical_videos(self, channels: List[Dict[str, Any]], start: datetime,
                                      end: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Backfill every channel in ``channels`` between ``start`` and ``end`` (default now)."""
        if not self.capabilities.youtube_api:
            logger.warning("YouTube API key not configured, skipping historical fetch")
            return []

        published_after = _iso_utc(start)
        published_before = _iso_utc(end or datetime.now(timezone.utc))
        all_videos: List[Dict[str, Any]] = []
        for channel in channels:
            await self.channel_limiter.acquire()
            all_videos.extend(await self.fetch_channel_videos(channel, published_after, published_before))
        logger.info(f"YouTube API: total fetched {len(all_videos)} videos")
        return all_videos

    async def fetch_video_details(self, video_id: str) -> Optional[Dict[str, str]]:
        """Title, description, channel and formatted duration for one video via the Data API."""
        if not self.capabilities.youtube_api:
            return None
        data = await self._api_get('videos', {'part': 'snippet,contentDetails', 'id': video_id}, video_id)
        items = (data or {}).get('items') or []
        if not items:
            return None
        snippet = items[0].get('snippet') or {}
        details = items[0].get('contentDetails') or {}
        seconds = parse_iso8601_duration(details.get("duration") or "")
        return {
            'title': snippet.get('title') or '',
            'description': snippet.get('description') or '',
            'channel_name': snippet.get('channelTitle') or '',
            'duration': format_duration(seconds) if seconds else '',
        }
