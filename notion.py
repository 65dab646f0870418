#!/usr/bin/env python3
"""
Notes-database sync.

Creates one Notion page per summarized video: database properties for
title, source, summary, link and publish date, and a page body made of a
bookmark, a divider and the summary split into bullet and paragraph blocks.
There is no idempotency check, so syncing the same video twice creates two
pages.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger, Capabilities
from models import DatabaseQueue
from telemetry import trace_span
from utils import RateLimiter

logger = get_logger("notion")

NOTION_API_BASE = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
RICH_TEXT_LIMIT = 2000
BULLET_PREFIXES = ("- ", "• ")


def format_database_id(database_id: str) -> str:
    """Hyphenate a bare 32-character database id."""
    if len(database_id) == 32 and "-" not in database_id:
        return (f"{database_id[:8]}-{database_id[8:12]}-{database_id[12:16]}-"
                f"{database_id[16:20]}-{database_id[20:]}")
    return database_id


def _rich_text(content: str) -> List[Dict[str, Any]]:
    return [{"type": "text", "text": {"content": content[:RICH_TEXT_LIMIT]}}]


def summary_to_blocks(summary: str) -> List[Dict[str, Any]]:
    """One block per non-blank line: bullets for ``- ``/``• `` lines, paragraphs otherwise."""
    blocks = []
    for line in (summary or "").split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.startswith(BULLET_PREFIXES):
            blocks.append({
                "object": "block",
                "type": "bulleted_list_item",
                "bulleted_list_item": {"rich_text": _rich_text(trimmed[2:])},
            })
        else:
            blocks.append({
                "object": "block",
                "type": "paragraph",
                "paragraph": {"rich_text": _rich_text(trimmed)},
            })
    return blocks


def page_properties(video: Dict[str, Any]) -> Dict[str, Any]:
    pub_date = datetime.fromtimestamp(int(video.get('pub_date') or 0), tz=timezone.utc)
    return {
        "Title": {"title": [{"text": {"content": video['title'][:RICH_TEXT_LIMIT]}}]},
        "Source": {"select": {"name": video.get('source') or "Unknown"}},
        "Summary": {"rich_text": [{"text": {"content": video['summary'][:RICH_TEXT_LIMIT]}}]},
        "Link": {"url": video['link']},
        "PubDate": {"date": {"start": pub_date.date().isoformat()}},
    }


def page_children(video: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Bookmark and divider followed by the summary blocks; empty when the summary has no content."""
    content = summary_to_blocks(video['summary'])
    if not content:
        return []
    return [
        {"object": "block", "type": "bookmark", "bookmark": {"url": video['link']}},
        {"object": "block", "type": "divider", "divider": {}},
    ] + content


def local_midnight_timestamp(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> int:
    """Epoch seconds of today's midnight in the schedule timezone."""
    try:
        tz = ZoneInfo(tz_name or config.SCHEDULER_TIMEZONE)
    except Exception:
        tz = timezone.utc
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp())


class NotionSync:
    """Pushes summarized videos to the notes database through the REST API."""

    def __init__(self, db: DatabaseQueue, session: ClientSession, capabilities: Capabilities,
                 api_key: Optional[str] = None, database_id: Optional[str] = None,
                 limiter: Optional[RateLimiter] = None):
        self.db = db
        self.session = session
        self.capabilities = capabilities
        self.api_key = api_key or config.NOTION_TRENDS_API_KEY
        self.database_id = format_database_id(database_id or config.NOTION_TRENDS_DB_ID or "")
        self.limiter = limiter or RateLimiter.every(config.NOTION_DELAY_SECONDS)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        url = f"{NOTION_API_BASE}/{endpoint}"
        try:
            async with self.session.request(method, url, headers=self.headers, json=payload,
                                            timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Notion {method} {endpoint} failed: HTTP {response.status} {body[:300]}")
                    return None
                return await response.json()
        except (ClientError, TimeoutError, ValueError) as e:
            logger.error(f"Notion {method} {endpoint} failed: {e}")
            return None

    async def create_page(self, video: Dict[str, Any]) -> Optional[str]:
        payload = {
            "parent": {"database_id": self.database_id},
            "properties": page_properties(video),
        }
        page = await self._request("POST", "pages", payload)
        return page.get("id") if page else None

    async def append_blocks(self, page_id: str, blocks: List[Dict[str, Any]]) -> bool:
        if not blocks:
            return True
        result = await self._request("PATCH", f"blocks/{page_id}/children", {"children": blocks})
        return result is not None

    async def add_video(self, video: Dict[str, Any]) -> bool:
        page_id = await self.create_page(video)
        if not page_id:
            return False
        if not await self.append_blocks(page_id, page_children(video)):
            return False
        logger.info(f"📝 Added to notes: {video['title'][:50]}")
        return True

    async def _sync(self, videos: List[Dict[str, Any]]) -> Dict[str, int]:
        success = failed = 0
        for video in videos:
            await self.limiter.acquire()
            if await self.add_video(video):
                success += 1
            else:
                failed += 1
        logger.info(f"📝 Notes sync complete: {success}/{len(videos)} success")
        return {'total': len(videos), 'success': success, 'failed': failed}

    @trace_span("notion.sync_recent", tracer_name="notion",
                attr_from_args=lambda self, limit=None: {"notion.limit": int(limit or 0)})
    async def sync_recent(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Sync the most recently published summarized videos, up to ``limit``."""
        if not self.capabilities.notion:
            logger.warning("Notes database not configured; skipping sync")
            return {'total': 0, 'success': 0, 'failed': 0}
        videos = await self.db.execute('select_notion_candidates', limit=limit or config.NOTION_SYNC_LIMIT)
        logger.info(f"📝 Syncing {len(videos)} recent videos to notes")
        return await self._sync(videos)

    async def sync_today(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Sync videos stored since local midnight that already have a summary."""
        if not self.capabilities.notion:
            logger.warning("Notes database not configured; skipping sync")
            return {'total': 0, 'success': 0, 'failed': 0}
        videos = await self.db.execute('select_notion_candidates',
                                       limit=limit or config.NOTION_SYNC_LIMIT,
                                       since_ts=local_midnight_timestamp())
        logger.info(f"📝 Syncing {len(videos)} of today's videos to notes")
        return await self._sync(videos)
