#!/usr/bin/env python3
"""
AI Trends Orchestrator

This script sequences the trends pipeline:
1. Fetch new videos and news from channel and news feeds
2. Summarize pending videos (captions, audio, metadata fallbacks) and news
3. Distribute summaries to the notes database and the email digest

Supports single-step runs for manual execution, the daily job, the HTTP
server and the scheduled mode. Every step runs under a per-job lock so an
overlapping trigger is skipped instead of racing on the same rows.
"""

import asyncio
import sys
import time
import argparse
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web

from config import config, get_logger
from context import AppContext
from errors import JobBusyError
from scheduler import create_scheduler
from server import create_app
from telemetry import init_telemetry, get_tracer, trace_span

logger = get_logger("orchestrator")
init_telemetry("trends-pipeline-orchestrator")
_tracer = get_tracer("orchestrator")


class TrendsOrchestrator:
    """Runs pipeline steps against one AppContext."""

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, job: str) -> asyncio.Lock:
        if job not in self._locks:
            self._locks[job] = asyncio.Lock()
        return self._locks[job]

    def is_running(self, job: str) -> bool:
        return self.lock_for(job).locked()

    async def exclusive(self, job: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` while holding the job's lock.

        Raises:
            JobBusyError: when the lock is already held
        """
        lock = self.lock_for(job)
        if lock.locked():
            raise JobBusyError(job)
        async with lock:
            return await func(*args, **kwargs)

    async def _step(self, job: str, label: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> bool:
        try:
            await self.exclusive(job, func, *args, **kwargs)
            return True
        except JobBusyError:
            logger.warning(f"⏭️ {label} skipped: previous run still in progress")
            return False
        except Exception as e:
            logger.error(f"❌ {label} failed: {e}")
            return False

    @trace_span("run_refresh", tracer_name="orchestrator",
                attr_from_args=lambda self, initial_load=False: {"fetch.initial_load": bool(initial_load)})
    async def run_refresh(self, initial_load: bool = False) -> bool:
        logger.info("📡 Running trends refresh")
        return await self._step("refresh", "Refresh", self.ctx.fetcher.refresh, initial_load=initial_load)

    @trace_span("run_summarize", tracer_name="orchestrator")
    async def run_summarize(self, limit: Optional[int] = None) -> bool:
        logger.info("🧠 Running video summarizer")
        return await self._step("summarize", "Video summarizer", self.ctx.video_summarizer.summarize_batch,
                                limit or config.DAILY_SUMMARY_LIMIT)

    @trace_span("run_summarize_news", tracer_name="orchestrator")
    async def run_summarize_news(self, limit: Optional[int] = None) -> bool:
        logger.info("🧠 Running news summarizer")
        return await self._step("summarize-news", "News summarizer", self.ctx.news_summarizer.summarize_batch,
                                limit or config.DAILY_SUMMARY_LIMIT)

    async def _send_email(self, sample: bool = False) -> bool:
        if sample:
            return await self.ctx.mailer.send_sample()
        return await self.ctx.mailer.send_digest()

    @trace_span("run_email", tracer_name="orchestrator")
    async def run_email(self, sample: bool = False) -> bool:
        logger.info("📬 Running email digest")
        if not self.ctx.capabilities.email:
            logger.info("ℹ️ Email digest skipped: not configured")
            return False
        try:
            return await self.exclusive("email", self._send_email, sample)
        except JobBusyError:
            logger.warning("⏭️ Email digest skipped: previous run still in progress")
            return False
        except Exception as e:
            logger.error(f"❌ Email digest failed: {e}")
            return False

    @trace_span("run_notion", tracer_name="orchestrator")
    async def run_notion(self, limit: Optional[int] = None, today_only: bool = False) -> bool:
        logger.info("📝 Running notes sync")
        if not self.ctx.capabilities.notion:
            logger.info("ℹ️ Notes sync skipped: not configured")
            return False
        func = self.ctx.notion.sync_today if today_only else self.ctx.notion.sync_recent
        return await self._step("notion", "Notes sync", func, limit)

    async def run_distribute(self) -> bool:
        """Scheduled distribution: today's summaries to notes, then the digest."""
        notion_ok = await self.run_notion(today_only=True) if self.ctx.capabilities.notion else True
        email_ok = await self.run_email() if self.ctx.capabilities.email else True
        return notion_ok and email_ok

    @trace_span("pipeline.daily", tracer_name="orchestrator")
    async def run_daily(self) -> Dict[str, Any]:
        """Refresh, summarize, sync notes and send the digest in sequence.

        A failing step is reported but does not stop the later ones, and
        nothing already done is rolled back.
        """
        return await self.exclusive("daily", self._run_daily_steps)

    async def _run_daily_steps(self) -> Dict[str, Any]:
        logger.info("🚀 Starting daily trends job")
        start_time = time.time()
        results = []
        caps = self.ctx.capabilities

        try:
            fetched = await self.exclusive("refresh", self.ctx.fetcher.refresh)
            results.append({'step': 'refresh', 'success': True,
                            'detail': f"{fetched['videos']} videos, {fetched['news']} news"})
        except Exception as e:
            logger.error(f"❌ Refresh failed: {e}")
            results.append({'step': 'refresh', 'success': False, 'detail': str(e)})

        if caps.llm:
            try:
                summary = await self.exclusive("summarize", self.ctx.video_summarizer.summarize_batch,
                                               config.DAILY_SUMMARY_LIMIT)
                results.append({'step': 'summarize', 'success': True,
                                'detail': f"{summary['success']}/{summary['processed']} succeeded"})
            except Exception as e:
                logger.error(f"❌ Video summarizer failed: {e}")
                results.append({'step': 'summarize', 'success': False, 'detail': str(e)})
        else:
            results.append({'step': 'summarize', 'success': False, 'detail': "LLM not configured"})

        if caps.notion:
            try:
                synced = await self.exclusive("notion", self.ctx.notion.sync_recent, config.NOTION_SYNC_LIMIT)
                results.append({'step': 'notion', 'success': True,
                                'detail': f"{synced['success']}/{synced['total']} synced"})
            except Exception as e:
                logger.error(f"❌ Notes sync failed: {e}")
                results.append({'step': 'notion', 'success': False, 'detail': str(e)})
        else:
            results.append({'step': 'notion', 'success': False, 'detail': "Notes database not configured"})

        if caps.email:
            try:
                sent = await self.exclusive("email", self.ctx.mailer.send_digest)
                results.append({'step': 'email', 'success': bool(sent),
                                'detail': "digest sent" if sent else "digest not sent"})
            except Exception as e:
                logger.error(f"❌ Email digest failed: {e}")
                results.append({'step': 'email', 'success': False, 'detail': str(e)})
        else:
            results.append({'step': 'email', 'success': False, 'detail': "Email not configured"})

        logger.info(f"🎉 Daily job finished in {time.time() - start_time:.1f}s: {results}")
        return {'success': True, 'results': results}

    async def check_status(self) -> Dict[str, Any]:
        """Counts per table, summary progress and the capability set."""
        logger.info("📊 Checking system status")
        stats = await self.ctx.db.execute('get_stats')
        videos = await self.ctx.db.execute('count_summaries', table='videos')
        news = await self.ctx.db.execute('count_summaries', table='news')
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'capabilities': self.ctx.capabilities.as_dict(),
            'channels': stats['channels'],
            'videos': dict(videos, count=stats['videos']['count']),
            'news': dict(news, count=stats['news']['count']),
        }

    def print_status(self, status: Dict[str, Any]) -> None:
        print("\n📊 AI Trends Status")
        print(f"⏰ {status['timestamp']}")
        enabled = [name for name, on in status['capabilities'].items() if on]
        print(f"🔌 Integrations: {', '.join(enabled) or 'none'}")
        print(f"📺 Channels: {status['channels']}")
        for table in ('videos', 'news'):
            counts = status[table]
            print(f"💾 {table.capitalize()}: {counts['count']} "
                  f"(summarized {counts['summarized']}, pending {counts['pending']}, failed {counts['failed']})")


async def _with_context(action: Callable[[TrendsOrchestrator], Awaitable[Any]]) -> Any:
    ctx = await AppContext.create()
    try:
        return await action(TrendsOrchestrator(ctx))
    finally:
        await ctx.close()


async def run_server() -> None:
    """Serve the HTTP endpoints until interrupted."""
    ctx = await AppContext.create()
    orchestrator = TrendsOrchestrator(ctx)
    runner = web.AppRunner(create_app(orchestrator))
    await runner.setup()
    site = web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT)
    await site.start()
    logger.info(f"🌐 Serving on http://{config.SERVER_HOST}:{config.SERVER_PORT}")
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        await ctx.close()


async def run_scheduled_mode(with_server: bool = True) -> None:
    """Run the daily schedule from trends.yaml, serving the HTTP endpoints alongside."""
    scheduler = create_scheduler()
    status = scheduler.get_schedule_status()
    if not status['schedule_active']:
        logger.error("❌ No schedule configured in trends.yaml")
        logger.info("💡 Example:\n   schedule:\n     timezone: Asia/Seoul\n     jobs:\n       refresh: \"00:00\"")
        return

    ctx = await AppContext.create()
    orchestrator = TrendsOrchestrator(ctx)
    runner = None
    if with_server:
        runner = web.AppRunner(create_app(orchestrator))
        await runner.setup()
        await web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT).start()
        logger.info(f"🌐 Serving on http://{config.SERVER_HOST}:{config.SERVER_PORT}")
    try:
        await scheduler.run_scheduled_pipeline(orchestrator)
    finally:
        if runner is not None:
            await runner.cleanup()
        await ctx.close()


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='AI Trends Orchestrator')
    parser.add_argument('mode', choices=['serve', 'scheduled', 'run', 'refresh', 'summarize', 'summarize-news',
                                         'email', 'notion', 'cleanup', 'backfill', 'status', 'schedule-status'],
                        help='Operation mode')
    parser.add_argument('--initial-load', action='store_true',
                        help='Refresh from the initial load date instead of yesterday')
    parser.add_argument('--limit', type=int,
                        help='Batch size for summarize/summarize-news/notion')
    parser.add_argument('--test', action='store_true',
                        help='Send the sample digest instead of the real one')
    parser.add_argument('--start-date', type=str,
                        help='Backfill start date (YYYY-MM-DD)')
    parser.add_argument('--end-date', type=str,
                        help='Backfill end date (YYYY-MM-DD, default today)')
    parser.add_argument('--no-server', action='store_true',
                        help='In scheduled mode, do not serve the HTTP endpoints')

    args = parser.parse_args()

    try:
        if args.mode == 'serve':
            asyncio.run(run_server())

        elif args.mode == 'scheduled':
            asyncio.run(run_scheduled_mode(with_server=not args.no_server))

        elif args.mode == 'schedule-status':
            create_scheduler().print_schedule_status()

        elif args.mode == 'status':
            async def _status(orchestrator: TrendsOrchestrator):
                orchestrator.print_status(await orchestrator.check_status())
            asyncio.run(_with_context(_status))

        elif args.mode == 'run':
            result = asyncio.run(_with_context(lambda o: o.run_daily()))
            sys.exit(0 if all(step['success'] for step in result['results']) else 1)

        elif args.mode == 'refresh':
            success = asyncio.run(_with_context(lambda o: o.run_refresh(initial_load=args.initial_load)))
            sys.exit(0 if success else 1)

        elif args.mode == 'summarize':
            success = asyncio.run(_with_context(lambda o: o.run_summarize(args.limit)))
            sys.exit(0 if success else 1)

        elif args.mode == 'summarize-news':
            success = asyncio.run(_with_context(lambda o: o.run_summarize_news(args.limit)))
            sys.exit(0 if success else 1)

        elif args.mode == 'email':
            success = asyncio.run(_with_context(lambda o: o.run_email(sample=args.test)))
            sys.exit(0 if success else 1)

        elif args.mode == 'notion':
            success = asyncio.run(_with_context(lambda o: o.run_notion(args.limit)))
            sys.exit(0 if success else 1)

        elif args.mode == 'cleanup':
            result = asyncio.run(_with_context(lambda o: o.ctx.fetcher.cleanup_duplicates()))
            logger.info(f"✅ {result['message']}")

        elif args.mode == 'backfill':
            if not args.start_date:
                parser.error("backfill requires --start-date")
            result = asyncio.run(_with_context(
                lambda o: o.exclusive("refresh", o.ctx.fetcher.backfill, args.start_date, args.end_date)))
            logger.info(f"✅ Backfill results: {result}")

    except KeyboardInterrupt:
        logger.info("👋 Orchestrator shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
