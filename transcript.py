#!/usr/bin/env python3
"""
Caption and metadata extraction for YouTube videos.

Captions come from the youtube-transcript-api client first and from the
caption track list embedded in the watch page second. Metadata comes from
the Data API when it is configured, otherwise from the watch page's JSON-LD
or meta tags.
"""

from asyncio import get_running_loop
from typing import Any, Dict, List, Optional
import html
import json
import re

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from youtube_transcript_api import YouTubeTranscriptApi

from config import config, get_logger
from youtube import WATCH_URL_TEMPLATE, YouTubeClient

logger = get_logger("transcript")

PREFERRED_LANGUAGES = ["ko", "en"]
PAGE_HEADERS = {"Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7"}
CAPTION_HEADERS = {"Accept": "text/xml, application/xml, */*"}

_CAPTION_TRACKS_RE = re.compile(r'"captionTracks":(\[.*?\])')
_TEXT_NODE_RE = re.compile(r"<text[^>]*>([^<]*)</text>")


def parse_transcript_xml(xml: str) -> str:
    """Flatten a timedtext XML payload into one space-joined string."""
    texts = []
    for match in _TEXT_NODE_RE.finditer(xml or ''):
        text = html.unescape(match.group(1))
        text = text.replace("\\n", " ").replace("\n", " ").strip()
        if text:
            texts.append(text)
    return " ".join(texts)


def choose_caption_track(tracks: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Korean track first, then any English variant, then whatever comes first."""
    if not tracks:
        return None
    for track in tracks:
        if track.get('languageCode') in ("ko", "ko-KR"):
            return track
    for track in tracks:
        if str(track.get('languageCode') or '').startswith("en"):
            return track
    return tracks[0]


async def _get_text(session: ClientSession, url: str, headers: Dict[str, str], label: str) -> Optional[str]:
    request_headers = {"User-Agent": config.USER_AGENT}
    request_headers.update(headers)
    try:
        async with session.get(url, headers=request_headers,
                               timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as response:
            if response.status != 200:
                logger.info(f"{label}: HTTP {response.status}")
                return None
            return await response.text()
    except (ClientError, TimeoutError) as e:
        logger.info(f"{label}: {e}")
        return None


class TranscriptExtractor:
    """Fetches caption text for a video, or None when no captions are reachable."""

    def __init__(self, session: ClientSession, transcript_api: Any = None):
        self.session = session
        self.transcript_api = transcript_api or YouTubeTranscriptApi()

    def _fetch_structured(self, video_id: str) -> Optional[str]:
        fetched = self.transcript_api.fetch(video_id, languages=PREFERRED_LANGUAGES)
        text = " ".join(snippet.text for snippet in fetched if snippet.text)
        return text.strip() or None

    async def via_client(self, video_id: str) -> Optional[str]:
        loop = get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._fetch_structured, video_id)
        except Exception as e:
            # The client raises a family of "no transcript" errors; all mean "try the next source"
            logger.info(f"No transcript via client for {video_id}: {type(e).__name__}")
            return None
        if text:
            logger.info(f"Transcript client: {len(text)} chars for {video_id}")
        return text

    async def via_page(self, video_id: str) -> Optional[str]:
        page = await _get_text(self.session, WATCH_URL_TEMPLATE.format(video_id=video_id),
                               PAGE_HEADERS, f"Watch page for {video_id}")
        if not page:
            return None

        match = _CAPTION_TRACKS_RE.search(page)
        if not match:
            logger.info(f"No caption tracks in page for {video_id}")
            return None
        try:
            tracks = json.loads(match.group(1))
        except ValueError as e:
            logger.info(f"Unreadable caption track list for {video_id}: {e}")
            return None

        track = choose_caption_track(tracks)
        if not track or not track.get('baseUrl'):
            return None
        logger.info(f"Page: found {track.get('languageCode')} captions for {video_id}")

        xml = await _get_text(self.session, track['baseUrl'], CAPTION_HEADERS, f"Caption payload for {video_id}")
        transcript = parse_transcript_xml(xml or '')
        if transcript:
            logger.info(f"Page: {len(transcript)} chars for {video_id}")
            return transcript
        return None

    async def get_transcript(self, video_id: str) -> Optional[str]:
        transcript = await self.via_client(video_id)
        if transcript:
            return transcript
        return await self.via_page(video_id)


def parse_video_page(page: str) -> Optional[Dict[str, str]]:
    """Title/description/channel/duration from a watch page's JSON-LD or meta tags."""
    soup = BeautifulSoup(page, 'html.parser')

    for script in soup.find_all('script', type='application/ld+json'):
        try:
            data = json.loads(script.string or '')
        except ValueError:
            continue
        candidates = data if isinstance(data, list) else [data]
        for candidate in candidates:
            if isinstance(candidate, dict) and candidate.get('@type') == 'VideoObject':
                author = candidate.get('author')
                return {
                    'title': candidate.get('name') or '',
                    'description': candidate.get('description') or '',
                    'channel_name': author.get('name', '') if isinstance(author, dict) else '',
                    'duration': candidate.get('duration') or '',
                }

    title = soup.find('meta', attrs={'name': 'title'})
    description = soup.find('meta', attrs={'name': 'description'})
    channel = soup.find('link', attrs={'itemprop': 'name'})
    if title or description:
        return {
            'title': title.get('content', '') if title else '',
            'description': description.get('content', '') if description else '',
            'channel_name': channel.get('content', '') if channel else '',
            'duration': '',
        }
    return None


class VideoInfoExtractor:
    """Video metadata for the last-resort summary."""

    def __init__(self, session: ClientSession, youtube: YouTubeClient):
        self.session = session
        self.youtube = youtube

    async def get_video_info(self, video_id: str) -> Optional[Dict[str, str]]:
        details = await self.youtube.fetch_video_details(video_id)
        if details and details.get('title') and details.get('description'):
            return details

        page = await _get_text(self.session, WATCH_URL_TEMPLATE.format(video_id=video_id),
                               PAGE_HEADERS, f"Watch page for {video_id}")
        if not page:
            return None
        info = parse_video_page(page)
        if info:
            logger.info(f"Page metadata found for {video_id}")
        return info
