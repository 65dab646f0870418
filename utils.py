#!/usr/bin/env python3
"""
Utility classes and functions for the trends pipeline.

Shared rate limiting, retry backoff, and text helpers used by the fetcher,
the summarizers and the distribution adapters.
"""

from asyncio import Lock, sleep
from time import monotonic
from typing import Optional
import re

from bs4 import BeautifulSoup

from config import get_logger

logger = get_logger("utils")


class RateLimiter:
    """A minimum-interval rate limiter for sequential upstream calls.

    The first acquire() returns immediately; later calls sleep until at least
    ``min_interval`` seconds have passed since the previous acquire. Tests pass
    ``RateLimiter(0)`` to disable waiting entirely.
    """

    def __init__(self, requests_per_minute: float):
        """Initialize the rate limiter.

        Args:
            requests_per_minute: Maximum number of requests allowed per minute.
                                If 0 or negative, no rate limiting is applied.
        """
        self.requests_per_minute = requests_per_minute
        self.min_interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0
        self.last_request_time: Optional[float] = None
        self._lock = Lock()

    @classmethod
    def every(cls, seconds: float) -> "RateLimiter":
        """Build a limiter that spaces calls ``seconds`` apart."""
        if seconds <= 0:
            return cls(0)
        return cls(60.0 / seconds)

    async def acquire(self):
        """Wait, if needed, so consecutive calls respect the configured interval."""
        if self.min_interval <= 0:
            return

        async with self._lock:
            now = monotonic()
            if self.last_request_time is not None:
                time_since_last = now - self.last_request_time
                if time_since_last < self.min_interval:
                    wait_time = self.min_interval - time_since_last
                    logger.debug(f"Rate limiting: waiting {wait_time:.2f} seconds")
                    await sleep(wait_time)
            self.last_request_time = monotonic()


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds for a 0-based attempt number."""
        delay = self.base_delay * (2 ** attempt)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def html_to_text(html_content: str, max_length: Optional[int] = None) -> str:
    """Strip an HTML page down to whitespace-collapsed visible text.

    Script and style elements are dropped entirely; every other tag is replaced
    by a space so adjacent blocks do not run together.
    """
    if not html_content:
        return ""
    try:
        soup = BeautifulSoup(html_content, 'html.parser')
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        text = soup.get_text(" ")
    except Exception as e:
        logger.error(f"Error extracting text from HTML: {e}")
        return ""
    text = re.sub(r"\s+", " ", text).strip()
    if max_length is not None:
        text = text[:max_length]
    return text


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as ``m:ss`` (minutes are not wrapped into hours)."""
    if not seconds or seconds < 0:
        return "0:00"
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"
