#!/usr/bin/env python3
"""
Application context.

Builds every shared dependency once at start-up (capability set, database
worker, HTTP session, LLM clients, rate limiters) and wires the pipeline
components from them. The HTTP server, the scheduler and the command-line
entry point all work from one AppContext.
"""

from typing import Any, Optional

from aiohttp import ClientSession, ClientTimeout

from audio import AudioSummarizer
from config import Config, config, get_logger, Capabilities
from fetcher import TrendsFetcher
from llm_client import create_client, model_name_for
from mailer import DigestMailer
from models import DatabaseQueue
from news import NewsClient
from notion import NotionSync
from summarizer import NewsSummarizer, VideoSummarizer, load_prompts
from transcript import TranscriptExtractor, VideoInfoExtractor
from utils import RateLimiter
from youtube import YouTubeClient

logger = get_logger("context")


class AppContext:
    """Holds the long-lived clients and the components built on top of them."""

    def __init__(self, cfg: Config, capabilities: Capabilities, db: DatabaseQueue,
                 session: ClientSession, llm_client: Any = None):
        self.config = cfg
        self.capabilities = capabilities
        self.db = db
        self.session = session
        self.llm_client = llm_client
        prompts = load_prompts(cfg.PROMPT_CONFIG_PATH)
        model = model_name_for(cfg)

        self.youtube = YouTubeClient(session, capabilities, api_key=cfg.YOUTUBE_API_KEY,
                                     channel_limiter=RateLimiter.every(cfg.YOUTUBE_API_DELAY_SECONDS))
        self.news = NewsClient(session, capabilities, api_key=cfg.NEWS_API_KEY,
                               page_limiter=RateLimiter.every(cfg.BACKFILL_DELAY_SECONDS),
                               feed_url=cfg.NEWS_FEED_URL, feed_limit=cfg.NEWS_FEED_LIMIT)
        self.fetcher = TrendsFetcher(db, self.youtube, self.news, cfg)

        audio = None
        if capabilities.audio and prompts.get('audio'):
            audio = AudioSummarizer(prompts['audio'], api_key=cfg.GEMINI_API_KEY, model_name=cfg.GEMINI_MODEL)
        self.video_summarizer = VideoSummarizer(
            db, llm_client, capabilities,
            transcripts=TranscriptExtractor(session),
            video_info=VideoInfoExtractor(session, self.youtube),
            audio=audio,
            prompts=prompts,
            limiter=RateLimiter.every(cfg.SUMMARY_DELAY_SECONDS),
            model=model,
        )
        self.news_summarizer = NewsSummarizer(
            db, llm_client, session, capabilities,
            prompts=prompts,
            limiter=RateLimiter.every(cfg.SUMMARY_DELAY_SECONDS),
            model=model,
        )
        self.mailer = DigestMailer(db, capabilities, templates_dir=cfg.TEMPLATES_DIR)
        self.notion = NotionSync(db, session, capabilities,
                                 api_key=cfg.NOTION_TRENDS_API_KEY,
                                 database_id=cfg.NOTION_TRENDS_DB_ID,
                                 limiter=RateLimiter.every(cfg.NOTION_DELAY_SECONDS))

    @classmethod
    async def create(cls, cfg: Optional[Config] = None) -> "AppContext":
        """Validate configuration, start the database worker and open the HTTP session."""
        cfg = cfg or config
        capabilities = cfg.capabilities()
        db = DatabaseQueue(cfg.DATABASE_PATH)
        await db.start()
        session = ClientSession(timeout=ClientTimeout(total=cfg.HTTP_TIMEOUT))
        llm_client = create_client(cfg) if capabilities.llm else None
        logger.info(f"Application context ready ({capabilities})")
        return cls(cfg, capabilities, db, session, llm_client)

    async def close(self) -> None:
        if self.llm_client is not None:
            try:
                await self.llm_client.close()
            except Exception as e:
                logger.debug(f"Error closing LLM client: {e}")
        if not self.session.closed:
            await self.session.close()
        await self.db.stop()
        logger.info("Application context closed")
