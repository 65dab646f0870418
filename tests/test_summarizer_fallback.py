import pytest

from conftest import FakeLLM
from models import DatabaseQueue, SUMMARY_FAILED, SUMMARY_INVALID_URL, SUMMARY_UNAVAILABLE
from summarizer import NewsSummarizer, VideoSummarizer
from utils import RateLimiter


class FakeTranscripts:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def get_transcript(self, video_id):
        self.calls.append(video_id)
        if self.error is not None:
            raise self.error
        return self.text


class FakeAudio:
    def __init__(self, summary=None):
        self.summary = summary
        self.calls = []

    async def summarize_from_audio(self, video_id, title):
        self.calls.append(video_id)
        return self.summary


class FakeVideoInfo:
    def __init__(self, info=None):
        self.info = info
        self.calls = []

    async def get_video_info(self, video_id):
        self.calls.append(video_id)
        return self.info


class ContentFiltered(Exception):
    def __init__(self):
        super().__init__("filtered")
        self.body = {"error": {"code": "content_filter", "message": "Content filtered"}}


def _summarizer(db, caps, prompts, llm=None, transcripts=None, audio=None, video_info=None):
    return VideoSummarizer(
        db, llm or FakeLLM(), caps,
        transcripts=transcripts or FakeTranscripts(),
        video_info=video_info or FakeVideoInfo(),
        audio=audio,
        prompts=prompts,
        limiter=RateLimiter(0),
        model="test-model",
    )


async def _seed(db, link="https://www.youtube.com/watch?v=AAA", title="AI 에이전트 입문"):
    await db.execute('upsert_videos', items=[{'title': title, 'link': link, 'pub_date': 100, 'source': "Fireship"}])
    [row] = await db.execute('list_pending_videos', limit=1)
    return row


@pytest.mark.asyncio
async def test_transcript_short_circuits_later_stages(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        llm = FakeLLM(reply="자막 기반 요약")
        transcripts = FakeTranscripts(text="오늘은 에이전트를 만들어 봅니다")
        audio = FakeAudio(summary="오디오 요약")
        info = FakeVideoInfo({'title': "t", 'description': "d"})
        summarizer = _summarizer(db, all_capabilities, prompts, llm, transcripts, audio, info)

        result = await summarizer.summarize_batch(limit=5)

        assert result['processed'] == 1 and result['success'] == 1
        assert transcripts.calls == ["AAA"]
        assert audio.calls == []
        assert info.calls == []
        assert len(llm.prompts) == 1
        assert "오늘은 에이전트를 만들어 봅니다" in llm.prompts[0]
        assert "AI 에이전트 입문" in llm.prompts[0]
        counts = await db.execute('count_summaries', table='videos')
        assert counts['summarized'] == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_audio_summary_is_stored_without_text_llm_call(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        row = await _seed(db)
        llm = FakeLLM()
        audio = FakeAudio(summary="오디오 요약")
        info = FakeVideoInfo({'title': "t", 'description': "d"})
        summarizer = _summarizer(db, all_capabilities, prompts, llm, FakeTranscripts(), audio, info)

        result = await summarizer.summarize_and_save(row)

        assert result['status'] == 'success'
        assert audio.calls == ["AAA"]
        assert info.calls == []
        assert llm.prompts == []
        [stored] = await db.execute('select_email_candidates')
        assert stored['summary'] == "오디오 요약"
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_audio_is_skipped_when_not_configured(tmp_path, no_capabilities, prompts):
    no_capabilities.llm = True
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        row = await _seed(db)
        llm = FakeLLM(reply="메타데이터 요약")
        audio = FakeAudio(summary="오디오 요약")
        info = FakeVideoInfo({'title': "Agents", 'description': "설명", 'channel_name': "Fireship",
                              'duration': "12:34"})
        summarizer = _summarizer(db, no_capabilities, prompts, llm, FakeTranscripts(), audio, info)

        summary = await summarizer.summarize_video(row)

        assert summary == "메타데이터 요약"
        assert audio.calls == []
        assert info.calls == ["AAA"]
        assert "12:34" in llm.prompts[0]
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_missing_description_is_marked_unavailable_and_counted_as_success(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        summarizer = _summarizer(db, all_capabilities, prompts,
                                 video_info=FakeVideoInfo({'title': "t", 'description': ""}))

        result = await summarizer.summarize_batch(limit=5)

        assert result['success'] == 1 and result['failed'] == 0
        assert result['results'][0]['status'] == 'unavailable'
        assert await db.execute('list_pending_videos', limit=5) == []
        assert await db.execute('select_email_candidates') == []
        counts = await db.execute('count_summaries', table='videos')
        assert counts['failed'] == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_unparseable_link_gets_invalid_url_marker(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        row = await _seed(db, link="https://example.com/not-a-video")
        transcripts = FakeTranscripts(text="unused")
        summarizer = _summarizer(db, all_capabilities, prompts, transcripts=transcripts)

        result = await summarizer.summarize_and_save(row)

        assert result['status'] == 'invalid_url'
        assert result['summary'] == SUMMARY_INVALID_URL
        assert transcripts.calls == []
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_empty_llm_response_leaves_row_pending(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        summarizer = _summarizer(db, all_capabilities, prompts, llm=FakeLLM(reply=None),
                                 transcripts=FakeTranscripts(text="자막"))

        result = await summarizer.summarize_batch(limit=5)

        assert result['failed'] == 1
        assert len(await db.execute('list_pending_videos', limit=5)) == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_truncated_empty_reply_stays_pending_and_is_not_mailed(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        summarizer = _summarizer(db, all_capabilities, prompts, llm=FakeLLM(reply="", finish_reason="length"),
                                 transcripts=FakeTranscripts(text="자막"))

        result = await summarizer.summarize_batch(limit=1)

        assert result['success'] == 0 and result['failed'] == 1
        assert len(await db.execute('list_pending_videos', limit=5)) == 1
        assert await db.execute('select_email_candidates') == []
        counts = await db.execute('count_summaries', table='videos')
        assert counts['summarized'] == 0
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_errors_write_failed_marker(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        row = await _seed(db)
        summarizer = _summarizer(db, all_capabilities, prompts,
                                 transcripts=FakeTranscripts(error=RuntimeError("boom")))

        result = await summarizer.summarize_and_save(row)

        assert result['summary'] == SUMMARY_FAILED
        assert result['status'].startswith('error')
        assert await db.execute('list_pending_videos', limit=5) == []
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_content_filter_writes_failed_marker(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        row = await _seed(db)
        summarizer = _summarizer(db, all_capabilities, prompts, llm=FakeLLM(error=ContentFiltered()),
                                 transcripts=FakeTranscripts(text="자막"))

        result = await summarizer.summarize_and_save(row)

        assert result['status'] == 'filtered'
        counts = await db.execute('count_summaries', table='videos')
        assert counts['failed'] == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_reset_then_batch_of_one_retries_a_single_failure(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_videos', items=[
            {'title': f"영상 {i}", 'link': f"https://www.youtube.com/watch?v=V{i}", 'pub_date': 100 + i,
             'source': "Fireship"} for i in range(3)
        ])
        for row in await db.execute('list_pending_videos', limit=10):
            await db.execute('update_video_summary', video_id=row['id'], summary=SUMMARY_UNAVAILABLE)

        assert await db.execute('reset_failed_summaries') == 3
        summarizer = _summarizer(db, all_capabilities, prompts, llm=FakeLLM(reply="새 요약"),
                                 transcripts=FakeTranscripts(text="자막"))
        result = await summarizer.summarize_batch(limit=1)

        assert result['processed'] == 1
        assert result['results'][0]['title'] == "영상 2"
        assert len(await db.execute('list_pending_videos', limit=10)) == 2
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_batch_is_a_no_op_without_llm(tmp_path, no_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        transcripts = FakeTranscripts(text="자막")
        summarizer = _summarizer(db, no_capabilities, prompts, transcripts=transcripts)

        result = await summarizer.summarize_batch(limit=5)

        assert result == {'processed': 0, 'success': 0, 'failed': 0, 'results': []}
        assert transcripts.calls == []
        status = await summarizer.status()
        assert status['llmConfigured'] is False
        assert status['pendingCount'] == 1
    finally:
        await db.stop()


class OfflineNewsSummarizer(NewsSummarizer):
    async def fetch_article_text(self, url):
        return "에이전트 프레임워크 출시 소식. " * 20


@pytest.mark.asyncio
async def test_truncated_news_reply_stays_pending(tmp_path, all_capabilities, prompts):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await db.execute('upsert_news', items=[{'title': "AI 뉴스 - 매체", 'link': "https://news.example.com/1",
                                                'pub_date': 100, 'source': "매체"}])
        llm = FakeLLM(reply="", finish_reason="length")
        summarizer = OfflineNewsSummarizer(db, llm, None, all_capabilities, prompts=prompts,
                                           limiter=RateLimiter(0), model="test-model")

        result = await summarizer.summarize_batch(limit=1)

        assert result['success'] == 0 and result['failed'] == 1
        assert len(llm.prompts) == 1
        counts = await db.execute('count_summaries', table='news')
        assert counts['pending'] == 1 and counts['summarized'] == 0
    finally:
        await db.stop()
