import smtplib
from email.header import decode_header, make_header

import pytest

from config import Capabilities
from mailer import DigestMailer, digest_subject, korean_short_date
from models import DatabaseQueue, SUMMARY_FAILED


class RecordingTransport:
    def __init__(self, error=None):
        self.messages = []
        self.error = error

    def __call__(self, message):
        if self.error is not None:
            raise self.error
        self.messages.append(message)


def _subject(message):
    return str(make_header(decode_header(message["Subject"])))


def _html(message):
    return message.get_payload()[0].get_payload(decode=True).decode("utf-8")


async def _seed(db):
    await db.execute('upsert_videos', items=[
        {'title': "<Agents> & tools", 'link': "https://www.youtube.com/watch?v=A", 'pub_date': 1751371200,
         'source': "Fireship"},
        {'title': "Broken", 'link': "https://www.youtube.com/watch?v=B", 'pub_date': 100, 'source': "Fireship"},
        {'title': "Pending", 'link': "https://www.youtube.com/watch?v=C", 'pub_date': 50, 'source': "Fireship"},
    ])
    rows = {row['title']: row for row in await db.execute('list_pending_videos', limit=10)}
    await db.execute('update_video_summary', video_id=rows["<Agents> & tools"]['id'],
                     summary="**핵심 주제**\n도구 호출")
    await db.execute('update_video_summary', video_id=rows["Broken"]['id'], summary=SUMMARY_FAILED)


@pytest.mark.asyncio
async def test_digest_is_sent_then_marked(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        transport = RecordingTransport()
        mailer = DigestMailer(db, Capabilities(email=True), transport=transport)

        assert await mailer.send_digest() is True

        [message] = transport.messages
        assert "(1개 영상)" in _subject(message)
        html = _html(message)
        assert "&lt;Agents&gt; &amp; tools" in html
        assert "도구 호출" in html
        assert "Broken" not in html
        assert await db.execute('select_email_candidates') == []

        # a second run has nothing new
        assert await mailer.send_digest() is True
        assert "(새 영상 없음)" in _subject(transport.messages[1])
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_failed_send_leaves_videos_unsent(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        mailer = DigestMailer(db, Capabilities(email=True),
                              transport=RecordingTransport(error=smtplib.SMTPAuthenticationError(535, b"bad")))

        assert await mailer.send_digest() is False
        assert len(await db.execute('select_email_candidates')) == 1
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_disabled_email_sends_nothing(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        transport = RecordingTransport()
        mailer = DigestMailer(db, Capabilities(), transport=transport)
        assert await mailer.send_digest() is False
        assert await mailer.send_sample() is False
        assert transport.messages == []
    finally:
        await db.stop()


@pytest.mark.asyncio
async def test_sample_digest_does_not_touch_database(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        await _seed(db)
        transport = RecordingTransport()
        mailer = DigestMailer(db, Capabilities(email=True), transport=transport)

        assert await mailer.send_sample() is True
        assert _subject(transport.messages[0]).endswith("(2개 영상) [테스트]")
        assert len(await db.execute('select_email_candidates')) == 1
    finally:
        await db.stop()


def test_subjects():
    assert digest_subject("2025년 7월 1일", 3) == "🤖 AI Trends Daily - 2025년 7월 1일 (3개 영상)"
    assert digest_subject("2025년 7월 1일", 0) == "🤖 AI Trends Daily - 2025년 7월 1일 (새 영상 없음)"


def test_short_date_uses_schedule_timezone():
    # 2025-07-01 12:00 UTC is still July 1 in Seoul
    assert korean_short_date(1751371200) == "2025. 7. 1."
    assert korean_short_date(None) == ""
