#!/usr/bin/env python3
"""
HTTP endpoints for the trends pipeline (aiohttp.web).

No authentication at the application layer. Each route exposes one narrow
action; GET variants of action routes report configuration or status.
Disabled integrations answer 503, malformed input 400 and a job that is
already running 409.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web

from config import get_logger
from errors import ChannelValidationError, JobBusyError
from youtube import validate_channel

logger = get_logger("server")

ORCHESTRATOR_KEY = web.AppKey("orchestrator", object)

DEFAULT_BATCH_LIMIT = 5
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

routes = web.RouteTableDef()


def iso_timestamp(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def video_json(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'title': row['title'],
        'link': row['link'],
        'pubDate': iso_timestamp(row['pub_date']),
        'source': row['source'],
        'thumbnail': row.get('thumbnail'),
        'summary': row.get('summary'),
        'emailSent': row.get('email_sent', False),
        'createdAt': iso_timestamp(row.get('created_at')),
    }


def news_json(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'title': row['title'],
        'link': row['link'],
        'pubDate': iso_timestamp(row['pub_date']),
        'source': row['source'],
        'summary': row.get('summary'),
        'createdAt': iso_timestamp(row.get('created_at')),
    }


def channel_json(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'channelId': row['channel_id'],
        'name': row['name'],
        'category': row['category'],
        'active': row['active'],
        'createdAt': iso_timestamp(row.get('created_at')),
    }


def _error(message: str, status: int, **extra) -> web.Response:
    return web.json_response(dict(extra, error=message), status=status)


def _not_configured(name: str) -> web.Response:
    return _error(f"{name} not configured", 503)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    """Request body as a dict; an empty or unreadable body counts as ``{}``."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _positive_int(raw: Any, default: int, name: str, maximum: Optional[int] = None) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f'{{"error": "{name} must be an integer"}}',
                                 content_type="application/json")
    value = max(1, value)
    return min(value, maximum) if maximum else value


def _flag(request: web.Request, name: str) -> bool:
    return request.query.get(name, "").lower() == "true"


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except JobBusyError as e:
        logger.warning(f"{request.method} {request.path}: {e}")
        return _error(str(e), 409)
    except ChannelValidationError as e:
        return _error(str(e), 400, details=e.details)
    except Exception as e:
        logger.error(f"❌ {request.method} {request.path} failed: {e}")
        return _error(str(e), 500)


def _orchestrator(request: web.Request):
    return request.app[ORCHESTRATOR_KEY]


@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    ctx = _orchestrator(request).ctx
    return web.json_response({
        'status': 'ok',
        'capabilities': ctx.capabilities.as_dict(),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })


@routes.post("/api/trends/refresh")
async def refresh(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    fetcher = orchestrator.ctx.fetcher
    db = orchestrator.ctx.db
    initial_load = _flag(request, "initialLoad")
    cleanup = _flag(request, "cleanup")
    reset_failed = _flag(request, "resetFailed")

    async def _run() -> Dict[str, Any]:
        payload: Dict[str, Any] = {'success': True}
        if cleanup:
            payload['deletedCount'] = await fetcher.delete_before_initial_load()
        if reset_failed:
            payload['resetCount'] = await db.execute('reset_failed_summaries')
        payload['fetched'] = await fetcher.refresh(initial_load=initial_load)
        if reset_failed:
            payload['message'] = f"Reset {payload['resetCount']} failed summaries"
        elif cleanup:
            payload['message'] = f"Deleted {payload['deletedCount']} old videos, then refreshed"
        elif initial_load:
            payload['message'] = "AI Trends data refreshed (initial load)"
        else:
            payload['message'] = "AI Trends data refreshed (previous day only)"
        return payload

    return web.json_response(await orchestrator.exclusive("refresh", _run))


@routes.post("/api/trends/update")
async def update(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    fetched = await orchestrator.exclusive("refresh", orchestrator.ctx.fetcher.refresh)
    return web.json_response({'success': True, 'message': "Trends updated successfully", 'fetched': fetched})


@routes.get("/api/trends/summarize")
async def summarize_status(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).ctx.video_summarizer.status())


@routes.post("/api/trends/summarize")
async def summarize(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    if not orchestrator.ctx.capabilities.llm:
        return _not_configured("LLM")
    body = await _read_json(request)
    limit = _positive_int(body.get('limit'), DEFAULT_BATCH_LIMIT, "limit")
    result = await orchestrator.exclusive("summarize", orchestrator.ctx.video_summarizer.summarize_batch, limit)
    return web.json_response(result)


@routes.get("/api/trends/news/summarize")
async def news_summarize_status(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).ctx.news_summarizer.status())


@routes.post("/api/trends/news/summarize")
async def news_summarize(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    if not orchestrator.ctx.capabilities.llm:
        return _not_configured("LLM")
    body = await _read_json(request)
    limit = _positive_int(body.get('limit'), DEFAULT_BATCH_LIMIT, "limit")
    result = await orchestrator.exclusive("summarize-news", orchestrator.ctx.news_summarizer.summarize_batch, limit)
    return web.json_response(result)


@routes.get("/api/trends/news")
async def news_page(request: web.Request) -> web.Response:
    page = _positive_int(request.query.get("page"), 1, "page")
    page_size = _positive_int(request.query.get("pageSize"), DEFAULT_PAGE_SIZE, "pageSize", MAX_PAGE_SIZE)
    result = await _orchestrator(request).ctx.db.execute('get_news_page', page=page, page_size=page_size)
    result['items'] = [news_json(row) for row in result['items']]
    return web.json_response(result)


@routes.get("/api/trends/videos")
async def videos_page(request: web.Request) -> web.Response:
    page = _positive_int(request.query.get("page"), 1, "page")
    page_size = _positive_int(request.query.get("pageSize"), DEFAULT_PAGE_SIZE, "pageSize", MAX_PAGE_SIZE)
    source = request.query.get("source") or None
    result = await _orchestrator(request).ctx.db.execute('get_videos_page', page=page,
                                                         page_size=page_size, source=source)
    result['items'] = [video_json(row) for row in result['items']]
    return web.json_response(result)


@routes.get("/api/trends/send-email")
async def send_email_status(request: web.Request) -> web.Response:
    return web.json_response({
        'configured': _orchestrator(request).ctx.capabilities.email,
        'endpoint': "POST /api/trends/send-email",
    })


@routes.post("/api/trends/send-email")
async def send_email(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    if not orchestrator.ctx.capabilities.email:
        return _not_configured("Email")
    body = await _read_json(request)
    mailer = orchestrator.ctx.mailer
    if body.get('test'):
        sent = await orchestrator.exclusive("email", mailer.send_sample)
        return web.json_response({'success': sent, 'mode': "test"})
    sent = await orchestrator.exclusive("email", mailer.send_digest)
    return web.json_response({'success': sent})


@routes.get("/api/trends/sync-notion")
async def sync_notion_status(request: web.Request) -> web.Response:
    return web.json_response({
        'configured': _orchestrator(request).ctx.capabilities.notion,
        'endpoint': "POST /api/trends/sync-notion",
    })


@routes.post("/api/trends/sync-notion")
async def sync_notion(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    if not orchestrator.ctx.capabilities.notion:
        return _not_configured("Notes database")
    body = await _read_json(request)
    limit = _positive_int(body.get('limit'), orchestrator.ctx.config.NOTION_SYNC_LIMIT, "limit")
    result = await orchestrator.exclusive("notion", orchestrator.ctx.notion.sync_recent, limit)
    return web.json_response(result)


@routes.get("/api/trends/daily")
async def daily_description(request: web.Request) -> web.Response:
    return web.json_response({
        'endpoint': "POST /api/trends/daily",
        'description': "Runs refresh → summarize → notes sync → email digest in sequence",
    })


@routes.post("/api/trends/daily")
async def daily(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).run_daily())


@routes.get("/api/trends/stats")
async def stats(request: web.Request) -> web.Response:
    raw = await _orchestrator(request).ctx.db.execute('get_stats')
    payload: Dict[str, Any] = {'channels': raw['channels']}
    for table in ('videos', 'news'):
        payload[table] = {
            'count': raw[table]['count'],
            'oldest': iso_timestamp(raw[table]['oldest']),
            'latest': iso_timestamp(raw[table]['latest']),
        }
    return web.json_response(payload)


@routes.get("/api/trends/channel-stats")
async def channel_stats(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).ctx.db.execute('get_channel_stats'))


@routes.get("/api/trends/cleanup")
async def cleanup_report(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).ctx.fetcher.duplicate_report())


@routes.post("/api/trends/cleanup")
async def cleanup(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    result = await orchestrator.exclusive("refresh", orchestrator.ctx.fetcher.cleanup_duplicates)
    return web.json_response(dict(result, success=True))


@routes.get("/api/trends/backfill")
async def backfill_status(request: web.Request) -> web.Response:
    return web.json_response(_orchestrator(request).ctx.fetcher.backfill_status())


@routes.post("/api/trends/backfill")
async def backfill(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    body = await _read_json(request)
    start_date = body.get('startDate')
    if not start_date:
        return _error("startDate is required (YYYY-MM-DD)", 400)
    try:
        results = await orchestrator.exclusive("refresh", orchestrator.ctx.fetcher.backfill,
                                                start_date, body.get('endDate'))
    except ValueError as e:
        return _error(f"Invalid date: {e}", 400)
    return web.json_response({'success': True, 'message': "Backfill completed", 'results': results})


@routes.get("/api/trends/backfill-missing")
async def backfill_missing_report(request: web.Request) -> web.Response:
    return web.json_response(await _orchestrator(request).ctx.fetcher.missing_channels_report())


@routes.post("/api/trends/backfill-missing")
async def backfill_missing(request: web.Request) -> web.Response:
    orchestrator = _orchestrator(request)
    if not orchestrator.ctx.capabilities.youtube_api:
        return _not_configured("YouTube API")
    body = await _read_json(request)
    try:
        result = await orchestrator.exclusive("refresh", orchestrator.ctx.fetcher.backfill_missing,
                                              body.get('startDate'))
    except ValueError as e:
        return _error(f"Invalid date: {e}", 400)
    return web.json_response(dict(result, success=True))


@routes.post("/api/admin/reset-english-summaries")
async def reset_english_summaries(request: web.Request) -> web.Response:
    titles = await _orchestrator(request).ctx.db.execute('reset_english_summaries')
    if not titles:
        return web.json_response({'success': True, 'message': "No English summaries found to reset.", 'count': 0})
    return web.json_response({
        'success': True,
        'message': f"Reset {len(titles)} summaries.",
        'count': len(titles),
        'resetTitles': titles,
    })


@routes.get("/api/channels")
async def list_channels(request: web.Request) -> web.Response:
    channels = await _orchestrator(request).ctx.db.execute('list_channels')
    return web.json_response([channel_json(row) for row in channels])


@routes.post("/api/channels")
async def add_channel(request: web.Request) -> web.Response:
    body = await _read_json(request)
    channel = validate_channel(body.get('channelId'), body.get('name'), body.get('category'))
    added = await _orchestrator(request).ctx.db.execute('add_channel', **channel)
    if not added:
        return _error("Failed to add channel", 500)
    return web.json_response({'success': True, 'message': f"Channel {channel['name']} added"})


@routes.delete("/api/channels")
async def remove_channel(request: web.Request) -> web.Response:
    channel_id = request.query.get("channelId")
    if not channel_id:
        return _error("channelId is required", 400)
    removed = await _orchestrator(request).ctx.db.execute('remove_channel', channel_id=channel_id)
    if not removed:
        return _error(f"Channel {channel_id} not found", 404)
    return web.json_response({'success': True, 'message': f"Channel {channel_id} removed"})


def create_app(orchestrator) -> web.Application:
    """Build the aiohttp application around a TrendsOrchestrator."""
    app = web.Application(middlewares=[error_middleware])
    app[ORCHESTRATOR_KEY] = orchestrator
    app.add_routes(routes)
    return app
