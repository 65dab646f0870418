import asyncio
from datetime import datetime, timezone

import pytest

from models import (
    DatabaseQueue,
    SENTINEL_SUMMARIES,
    SUMMARY_FAILED,
    SUMMARY_NO_TRANSCRIPT,
    SUMMARY_UNAVAILABLE,
)


def _video(video_id, pub_date, source="Fireship", shorts=False):
    link = (f"https://www.youtube.com/shorts/{video_id}" if shorts
            else f"https://www.youtube.com/watch?v={video_id}")
    return {'title': f"Video {video_id}", 'link': link, 'pub_date': pub_date, 'source': source,
            'thumbnail': f"https://img.youtube.com/vi/{video_id}/mqdefault.jpg"}


@pytest.mark.asyncio
async def test_shorts_and_watch_links_collapse_into_one_row(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        first = await db.execute('upsert_videos', items=[_video("AAA", 100, shorts=True)])
        second = await db.execute('upsert_videos', items=[_video("AAA", 200)])
        assert first['inserted'] == 1
        assert second == {'inserted': 0, 'updated': 1, 'pruned': 0}

        page = await db.execute('get_videos_page', page=1, page_size=10)
        assert page['total'] == 1
        assert page['items'][0]['link'] == "https://www.youtube.com/watch?v=AAA"
        assert page['items'][0]['pub_date'] == 200
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_upsert_never_touches_summary_or_email_flag(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video("AAA", 100)])
        [row] = await db.execute('list_pending_videos', limit=10)
        await db.execute('update_video_summary', video_id=row['id'], summary="요약")
        await db.execute('mark_videos_emailed', ids=[row['id']])

        refreshed = dict(_video("AAA", 150), title="Renamed")
        await db.execute('upsert_videos', items=[refreshed])

        [stored] = (await db.execute('get_videos_page', page=1, page_size=10))['items']
        assert stored['title'] == "Renamed"
        assert stored['summary'] == "요약"
        assert stored['email_sent'] is True
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_retention_keeps_most_recently_published(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        items = [_video(f"V{i:03d}", 1000 + i) for i in range(10)]
        result = await db.execute('upsert_videos', items=items, max_rows=4)
        assert result['inserted'] == 10
        assert result['pruned'] == 6

        page = await db.execute('get_videos_page', page=1, page_size=10)
        assert page['total'] == 4
        assert [item['pub_date'] for item in page['items']] == [1009, 1008, 1007, 1006]
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_news_retention_is_independent_of_videos(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video("AAA", 1)])
        news = [{'title': f"기사 {i} - 매체", 'link': f"https://news.example.com/{i}",
                 'pub_date': 100 + i, 'source': "매체"} for i in range(5)]
        result = await db.execute('upsert_news', items=news, max_rows=3)
        assert result['pruned'] == 2
        stats = await db.execute('get_stats')
        assert stats['news']['count'] == 3
        assert stats['videos']['count'] == 1
        assert stats['news']['oldest'] == 102
        assert stats['news']['latest'] == 104
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_sentinels_are_excluded_from_distribution_and_can_be_reset(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video(f"S{i}", 100 + i) for i in range(6)])
        rows = await db.execute('list_pending_videos', limit=10)
        summaries = list(SENTINEL_SUMMARIES) + ["실제 요약"]
        for row, summary in zip(rows, summaries):
            await db.execute('update_video_summary', video_id=row['id'], summary=summary)

        candidates = await db.execute('select_email_candidates')
        assert [c['summary'] for c in candidates] == ["실제 요약"]
        notion = await db.execute('select_notion_candidates', limit=10)
        assert [c['summary'] for c in notion] == ["실제 요약"]

        counts = await db.execute('count_summaries', table='videos')
        assert counts == {'pending': 1, 'summarized': 1, 'failed': 4, 'total': 6}

        reset = await db.execute('reset_failed_summaries')
        assert reset == 4
        pending = await db.execute('list_pending_videos', limit=10)
        assert len(pending) == 5
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_notion_candidates_since_filters_on_creation_time(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video("AAA", 100)])
        [row] = await db.execute('list_pending_videos', limit=1)
        await db.execute('update_video_summary', video_id=row['id'], summary="요약")

        future = int(datetime.now(timezone.utc).timestamp()) + 3600
        assert await db.execute('select_notion_candidates', limit=10, since_ts=future) == []
        assert len(await db.execute('select_notion_candidates', limit=10, since_ts=0)) == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_reset_english_summaries_returns_titles(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video("EN", 100), _video("KO", 200)])
        rows = {row['title']: row for row in await db.execute('list_pending_videos', limit=10)}
        await db.execute('update_video_summary', video_id=rows["Video EN"]['id'],
                         summary="- Main topic: agents\n- Key points: ...")
        await db.execute('update_video_summary', video_id=rows["Video KO"]['id'], summary="에이전트 요약")

        assert await db.execute('reset_english_summaries') == ["Video EN"]
        assert await db.execute('reset_english_summaries') == []
        [pending] = await db.execute('list_pending_videos', limit=10)
        assert pending['title'] == "Video EN"
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_seeding_does_not_reactivate_removed_channels(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        seeds = [
            {'channel_id': "UCsBjURrPoezykLs9EqgamOA", 'name': "Fireship", 'category': "global"},
            {'channel_id': "UCQNE2JmbasNYbjGAcuBiRRg", 'name': "조코딩 JoCoding", 'category': "korean"},
        ]
        assert await db.execute('seed_channels', channels=seeds) == 2
        assert await db.execute('remove_channel', channel_id="UCsBjURrPoezykLs9EqgamOA") is True
        assert await db.execute('seed_channels', channels=seeds) == 0

        active = await db.execute('list_active_channels')
        assert [c['name'] for c in active] == ["조코딩 JoCoding"]
        assert len(await db.execute('list_channels')) == 2

        # explicit registration does bring it back
        assert await db.execute('add_channel', channel_id="UCsBjURrPoezykLs9EqgamOA",
                                name="Fireship", category="global") is True
        assert len(await db.execute('list_active_channels')) == 2
        assert await db.execute('remove_channel', channel_id="UCunknownunknownunknown1") is False
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_channel_stats_and_paging(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('seed_channels', channels=[
            {'channel_id': "UCsBjURrPoezykLs9EqgamOA", 'name': "Fireship", 'category': "global"},
            {'channel_id': "UCbfYPyITQ-7l4upoX8nvctg", 'name': "Two Minute Papers", 'category': "global"},
        ])
        await db.execute('upsert_videos', items=[_video(f"F{i}", 100 + i) for i in range(3)])

        stats = await db.execute('get_channel_stats')
        assert stats['channels'][0] == {'name': "Fireship", 'count': 3}
        assert stats['totalVideos'] == 3
        assert stats['channelsWithData'] == 1
        assert stats['channelsWithoutData'] == 1

        page = await db.execute('get_videos_page', page=2, page_size=2, source="Fireship")
        assert page['total'] == 3
        assert page['totalPages'] == 2
        assert len(page['items']) == 1
        empty = await db.execute('get_videos_page', page=1, page_size=2, source="Nobody")
        assert empty['items'] == [] and empty['total'] == 0
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_delete_videos_before_cutoff(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[_video("OLD", 100), _video("NEW", 300)])
        assert await db.execute('delete_videos_before', cutoff_ts=200) == 1
        [row] = (await db.execute('get_videos_page', page=1, page_size=10))['items']
        assert row['title'] == "Video NEW"
    finally:
        await db.stop()


def test_sentinel_constants_are_distinct():
    assert len(set(SENTINEL_SUMMARIES)) == len(SENTINEL_SUMMARIES)
    assert SUMMARY_UNAVAILABLE in SENTINEL_SUMMARIES
    assert SUMMARY_FAILED in SENTINEL_SUMMARIES
    assert SUMMARY_NO_TRANSCRIPT in SENTINEL_SUMMARIES


@pytest.mark.asyncio
async def test_stop_releases_waiting_operations_with_an_error(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    pending = asyncio.create_task(db.execute('get_stats'))
    await db.stop()

    with pytest.raises(Exception, match="Database worker stopped"):
        await pending
