#!/usr/bin/env python3
"""
Video and news summarization.

Videos go through a fallback chain: captions, then an audio summary, then a
summary of the video's title and description. Each stage runs only when the
previous one produced nothing. News articles are summarized from their page
text, or from the headline alone when the page yields too little text.
"""

from typing import Any, Dict, List, Optional
import yaml

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger, Capabilities
from errors import ContentFilterError
from llm_client import chat_completion
from models import DatabaseQueue, SUMMARY_FAILED, SUMMARY_INVALID_URL, SUMMARY_UNAVAILABLE
from telemetry import trace_span
from utils import RateLimiter, html_to_text
from youtube import extract_video_id

logger = get_logger("summarizer")

TRANSCRIPT_SUMMARY_MAX_LENGTH = 500
VIDEO_DESCRIPTION_MAX_CHARS = 2000
NEWS_BODY_MAX_CHARS = 10000
NEWS_BODY_MIN_CHARS = 100
RESULT_PREVIEW_CHARS = 100

NEWS_PAGE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
}

REQUIRED_PROMPTS = ("transcript", "audio", "video_info", "news")


def load_prompts(prompt_path: Optional[str] = None) -> Dict[str, str]:
    """Load prompts from prompt.yaml configuration file."""
    prompt_path = prompt_path or config.PROMPT_CONFIG_PATH
    try:
        with open(prompt_path, 'r', encoding='utf-8') as f:
            prompts = yaml.safe_load(f)
    except FileNotFoundError:
        logger.error(f"Prompt configuration file not found at {prompt_path}")
        return {}
    except PermissionError:
        logger.error(f"No permission to read prompt configuration file at {prompt_path}")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in prompt configuration file: {e}")
        return {}
    except OSError as e:
        logger.error(f"OS error reading prompt configuration file: {e}")
        return {}
    prompts = prompts or {}
    missing = [key for key in REQUIRED_PROMPTS if key not in prompts]
    if missing:
        logger.warning(f"Prompt file {prompt_path} is missing: {', '.join(missing)}")
    return prompts


def _batch_result(processed: int = 0, success: int = 0, failed: int = 0,
                  results: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {'processed': processed, 'success': success, 'failed': failed, 'results': results or []}


class VideoSummarizer:
    """Produces and stores one summary per pending video.

    The caption, audio and metadata sources are injected so the chain can be
    exercised with fakes.
    """

    def __init__(self, db: DatabaseQueue, llm_client: Any, capabilities: Capabilities,
                 transcripts: Any, video_info: Any, audio: Any = None,
                 prompts: Optional[Dict[str, str]] = None, limiter: Optional[RateLimiter] = None,
                 model: Optional[str] = None):
        self.db = db
        self.llm_client = llm_client
        self.capabilities = capabilities
        self.transcripts = transcripts
        self.video_info = video_info
        self.audio = audio
        self.prompts = prompts if prompts is not None else load_prompts()
        self.limiter = limiter or RateLimiter.every(config.SUMMARY_DELAY_SECONDS)
        self.model = model

    async def _complete(self, prompt: str, purpose: str) -> Optional[str]:
        return await chat_completion(
            [{"role": "user", "content": prompt}],
            client=self.llm_client,
            model=self.model,
            purpose=purpose,
        )

    async def summarize_transcript(self, transcript: str, title: str) -> Optional[str]:
        prompt = self.prompts['transcript'].format(
            max_length=TRANSCRIPT_SUMMARY_MAX_LENGTH,
            title=title,
            text=transcript[:config.TRANSCRIPT_MAX_CHARS],
        )
        return await self._complete(prompt, "transcript summary")

    async def summarize_video_info(self, info: Dict[str, str], video: Dict[str, Any]) -> Optional[str]:
        prompt = self.prompts['video_info'].format(
            title=info.get('title') or video['title'],
            channel=info.get('channel_name') or video.get('source') or '',
            duration=info.get('duration') or '',
            description=info['description'][:VIDEO_DESCRIPTION_MAX_CHARS],
        )
        return await self._complete(prompt, "video info summary")

    @trace_span("summarizer.video", tracer_name="summarizer",
                attr_from_args=lambda self, video: {"video.link": video.get('link', '')})
    async def summarize_video(self, video: Dict[str, Any]) -> Optional[str]:
        """Run the fallback chain for one video.

        Returns the summary, a sentinel for terminal states, or None when the
        LLM produced nothing (the row stays pending).
        """
        video_id = extract_video_id(video['link'])
        if not video_id:
            return SUMMARY_INVALID_URL

        transcript = await self.transcripts.get_transcript(video_id)
        if transcript:
            logger.info(f"Using transcript for {video_id}")
            return await self.summarize_transcript(transcript, video['title'])

        if self.audio is not None and self.capabilities.audio:
            logger.info(f"No transcript, trying audio analysis for {video_id}")
            audio_summary = await self.audio.summarize_from_audio(video_id, video['title'])
            if audio_summary:
                logger.info(f"Audio analysis successful for {video_id}")
                return audio_summary

        logger.info(f"Falling back to video info for {video_id}")
        info = await self.video_info.get_video_info(video_id)
        if not info or not info.get('description'):
            return SUMMARY_UNAVAILABLE
        return await self.summarize_video_info(info, video)

    async def summarize_and_save(self, video: Dict[str, Any]) -> Dict[str, Any]:
        """Summarize one video and persist the outcome.

        Returns:
            Dict with title, status and a short summary preview
        """
        title = video['title']
        try:
            summary = await self.summarize_video(video)
        except ContentFilterError as e:
            logger.warning(f"Content filtered for {title}: {e}")
            await self.db.execute('update_video_summary', video_id=video['id'], summary=SUMMARY_FAILED)
            return {'title': title, 'status': 'filtered', 'summary': SUMMARY_FAILED}
        except Exception as e:
            logger.error(f"❌ Summary failed for {title}: {e}")
            await self.db.execute('update_video_summary', video_id=video['id'], summary=SUMMARY_FAILED)
            return {'title': title, 'status': f'error: {e}', 'summary': SUMMARY_FAILED}

        if summary is None:
            return {'title': title, 'status': 'error: empty response'}

        await self.db.execute('update_video_summary', video_id=video['id'], summary=summary)
        if summary == SUMMARY_INVALID_URL:
            return {'title': title, 'status': 'invalid_url', 'summary': summary}
        if summary == SUMMARY_UNAVAILABLE:
            return {'title': title, 'status': 'unavailable', 'summary': summary}
        logger.info(f"Summarized: {title[:50]}")
        return {'title': title, 'status': 'success', 'summary': summary[:RESULT_PREVIEW_CHARS]}

    async def summarize_batch(self, limit: int) -> Dict[str, Any]:
        """Summarize up to ``limit`` pending videos, newest first, pacing LLM calls."""
        if not self.capabilities.llm:
            logger.warning("LLM not configured; skipping video summaries")
            return _batch_result()

        videos = await self.db.execute('list_pending_videos', limit=limit)
        logger.info(f"🧠 Summarizing {len(videos)} videos")
        results = []
        success = failed = 0
        for video in videos:
            await self.limiter.acquire()
            result = await self.summarize_and_save(video)
            results.append(result)
            if result['status'] in ('success', 'unavailable'):
                success += 1
            else:
                failed += 1
        logger.info(f"Video summaries complete: {success} success, {failed} failed")
        return _batch_result(len(videos), success, failed, results)

    async def status(self) -> Dict[str, Any]:
        counts = await self.db.execute('count_summaries', table='videos')
        pending = await self.db.execute('list_pending_videos', limit=10)
        return {
            'llmConfigured': self.capabilities.llm,
            'pendingCount': counts['pending'],
            'summarizedCount': counts['summarized'],
            'failedCount': counts['failed'],
            'pendingVideos': [{'title': v['title'], 'source': v['source']} for v in pending],
        }


class NewsSummarizer:
    """Summarizes pending news articles from their page text."""

    def __init__(self, db: DatabaseQueue, llm_client: Any, session: ClientSession,
                 capabilities: Capabilities, prompts: Optional[Dict[str, str]] = None,
                 limiter: Optional[RateLimiter] = None, model: Optional[str] = None):
        self.db = db
        self.llm_client = llm_client
        self.session = session
        self.capabilities = capabilities
        self.prompts = prompts if prompts is not None else load_prompts()
        self.limiter = limiter or RateLimiter.every(config.SUMMARY_DELAY_SECONDS)
        self.model = model

    async def fetch_article_text(self, url: str) -> str:
        headers = {"User-Agent": config.USER_AGENT}
        headers.update(NEWS_PAGE_HEADERS)
        try:
            async with self.session.get(url, headers=headers,
                                        timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as response:
                if response.status != 200:
                    logger.warning(f"Failed to fetch {url}: HTTP {response.status}")
                    return ""
                page = await response.text(errors='replace')
        except (ClientError, TimeoutError) as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return ""
        return html_to_text(page, max_length=NEWS_BODY_MAX_CHARS)

    async def summarize_news(self, item: Dict[str, Any]) -> Optional[str]:
        content = await self.fetch_article_text(item['link'])
        if len(content) < NEWS_BODY_MIN_CHARS:
            logger.info(f"Little or no content for news {item['id']}, summarizing from title")
            content = f"(본문 없음) 제목: {item['title']}"
        prompt = self.prompts['news'].format(title=item['title'], source=item['source'], content=content)
        return await chat_completion(
            [{"role": "user", "content": prompt}],
            client=self.llm_client,
            model=self.model,
            purpose="news summary",
        )

    async def summarize_and_save(self, item: Dict[str, Any]) -> Dict[str, Any]:
        title = item['title']
        try:
            summary = await self.summarize_news(item)
        except Exception as e:
            logger.error(f"❌ News summary failed for {title}: {e}")
            return {'title': title, 'status': f'error: {e}'}
        if not summary:
            return {'title': title, 'status': 'error: empty response'}
        await self.db.execute('update_news_summary', news_id=item['id'], summary=summary)
        logger.info(f"Summarized news: {title[:50]}")
        return {'title': title, 'status': 'success', 'summary': summary[:RESULT_PREVIEW_CHARS]}

    async def summarize_batch(self, limit: int) -> Dict[str, Any]:
        if not self.capabilities.llm:
            logger.warning("LLM not configured; skipping news summaries")
            return _batch_result()

        items = await self.db.execute('list_pending_news', limit=limit)
        logger.info(f"🧠 Summarizing {len(items)} news items")
        results = []
        success = failed = 0
        for item in items:
            await self.limiter.acquire()
            result = await self.summarize_and_save(item)
            results.append(result)
            if result['status'] == 'success':
                success += 1
            else:
                failed += 1
        return _batch_result(len(items), success, failed, results)

    async def status(self) -> Dict[str, Any]:
        counts = await self.db.execute('count_summaries', table='news')
        return {
            'llmConfigured': self.capabilities.llm,
            'pendingCount': counts['pending'],
            'summarizedCount': counts['summarized'],
            'totalCount': counts['total'],
        }
