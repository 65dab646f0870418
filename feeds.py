#!/usr/bin/env python3
"""
Feed retrieval and parsing shared by the YouTube and news sources.

HTTP retrieval uses aiohttp with bounded retries; parsing runs feedparser in
a worker thread; publish dates are resolved from whichever date field an
entry carries.
"""

from asyncio import TimeoutError, get_running_loop
from calendar import timegm
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional
import re

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from utils import RetryHelper

logger = get_logger("feeds")

HTTP_OK = 200

DATE_FIELDS = (
    'published',
    'updated',
    'created',
    'modified',
    'date',
    'pubDate',
    'pubdate',
    'issued',
)


async def fetch_bytes(
    session: ClientSession,
    url: str,
    *,
    label: str = "",
    headers: Optional[dict] = None,
    retry_helper: Optional[RetryHelper] = None,
) -> Optional[bytes]:
    """GET a URL with retries; returns the body or None when every attempt fails."""
    label = label or url
    helper = retry_helper or RetryHelper(max_retries=config.MAX_RETRIES, base_delay=config.RETRY_DELAY_BASE)
    request_headers = {"User-Agent": config.USER_AGENT}
    if headers:
        request_headers.update(headers)
    timeout = ClientTimeout(total=config.HTTP_TIMEOUT)

    for attempt in range(helper.max_retries + 1):
        try:
            async with session.get(url, headers=request_headers, timeout=timeout) as response:
                if response.status != HTTP_OK:
                    # Non-2xx answers are not transient enough to retry
                    logger.error(f"Error fetching {label}: HTTP {response.status}")
                    return None
                return await response.read()
        except TimeoutError as e:
            logger.warning("Timeout fetching %s (attempt %d/%d): %s", label, attempt + 1, helper.max_retries + 1, e)
        except ClientError as e:
            logger.warning("Error fetching %s (attempt %d/%d): %s", label, attempt + 1, helper.max_retries + 1, e)
        if attempt < helper.max_retries:
            await helper.sleep_for_attempt(attempt)

    logger.error(f"Failed to fetch {label} after {helper.max_retries + 1} attempts")
    return None


async def parse_feed(content: bytes) -> Any:
    """Parse feed bytes with feedparser off the event loop."""
    loop = get_running_loop()
    return await loop.run_in_executor(None, feedparser.parse, content)


def get_entry_value(entry, field: str) -> Any:
    """Safely fetch feedparser entry fields with attribute or dict access."""
    if not field or entry is None:
        return None
    try:
        value = getattr(entry, field)
    except AttributeError:
        value = None
    if value is not None:
        return value
    getter = getattr(entry, 'get', None)
    if callable(getter):
        try:
            return getter(field)
        except KeyError:
            return None
    return None


def entry_timestamp(entry) -> Optional[int]:
    """Resolve an entry's publish time as a Unix timestamp, or None if it has none.

    Tries each known date field and its feedparser ``*_parsed`` variant in order.
    """
    for field in DATE_FIELDS:
        timestamp = date_value_to_timestamp(get_entry_value(entry, field))
        if timestamp:
            return timestamp
        timestamp = date_value_to_timestamp(get_entry_value(entry, f"{field}_parsed"))
        if timestamp:
            return timestamp
    return None


def date_value_to_timestamp(value: Any) -> Optional[int]:
    """Convert assorted date representations into a Unix timestamp."""
    if value in (None, ''):
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        timestamp = int(value)
        return timestamp if timestamp > 0 else None

    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())

    if isinstance(value, (list, tuple)):
        # feedparser's *_parsed values are UTC struct_time tuples
        try:
            return int(timegm(tuple(value)))
        except (OverflowError, ValueError, TypeError):
            return None

    if isinstance(value, str):
        return parse_date_string(value)

    return None


def parse_date_string(date_str: str) -> Optional[int]:
    """Parse ISO-8601, RFC-822 and a few loose formats into a Unix timestamp."""
    text = date_str.strip()
    if not text:
        return None

    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    except ValueError:
        pass

    try:
        dt = parsedate_to_datetime(text)
        if dt:
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return int(dt.timestamp())
    except (TypeError, ValueError, OverflowError, IndexError):
        pass

    try:
        time_struct = feedparser._parse_date(text)
        if time_struct:
            return int(timegm(time_struct))
    except (ValueError, TypeError, AttributeError, OverflowError):
        pass

    match = re.match(r'^(\d{4})-(\d{2})-(\d{2})$', text)
    if match:
        year, month, day = map(int, match.groups())
        try:
            return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())
        except ValueError:
            return None
    return None
