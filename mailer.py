#!/usr/bin/env python3
"""
Daily email digest.

Selects every video with a real summary that has not been mailed yet,
renders one HTML digest with Jinja2 and sends it over SMTP (SSL). Rows are
marked as sent only after the send succeeds, so a crash between sending and
marking results in the same videos being mailed again the next day.
"""

from asyncio import get_running_loop
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo
import smtplib

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import config, get_logger, Capabilities
from models import DatabaseQueue
from telemetry import trace_span

logger = get_logger("mailer")

SENDER_NAME = "AI Trends"
DIGEST_TEMPLATE = "digest_email.html"
EMPTY_DIGEST_TEMPLATE = "empty_digest_email.html"

SAMPLE_VIDEOS = [
    {
        'title': "AI 시대 개발자 생존 전략 - 코딩을 넘어서",
        'link': "https://www.youtube.com/watch?v=sample1",
        'source': "조코딩 JoCoding",
        'summary': (
            "**핵심 주제**\n"
            "AI가 코딩을 대체하는 시대, 개발자는 어떻게 살아남아야 하는가\n\n"
            "**주요 내용**\n"
            "• AI 도구 활용 능력이 핵심 역량으로 부상\n"
            "• 문제 정의와 아키텍처 설계 능력의 중요성\n"
            "• 도메인 전문성과 비즈니스 이해도가 차별화 포인트\n"
            "• 커뮤니케이션과 협업 능력이 더욱 중요해짐\n\n"
            "**결론**\n"
            "코딩 스킬보다 문제 해결 능력과 AI 활용 능력을 키워야 한다."
        ),
    },
    {
        'title': "Next.js 16 새로운 기능 총정리",
        'link': "https://www.youtube.com/watch?v=sample2",
        'source': "Web Dev Simplified",
        'summary': (
            "**핵심 주제**\n"
            "Next.js 16의 주요 변경사항과 새로운 기능 소개\n\n"
            "**주요 내용**\n"
            "• Turbopack 정식 출시로 빌드 속도 대폭 개선\n"
            "• Server Actions 안정화\n"
            "• 새로운 캐싱 전략과 성능 최적화\n"
            "• React 19 완벽 지원\n\n"
            "**결론**\n"
            "프로덕션 환경에서 Turbopack 사용이 권장된다."
        ),
    },
]


def _timezone() -> Any:
    try:
        return ZoneInfo(config.SCHEDULER_TIMEZONE)
    except Exception:
        logger.warning(f"Invalid timezone '{config.SCHEDULER_TIMEZONE}', using UTC for digest dates")
        return timezone.utc


def korean_long_date(moment: Optional[datetime] = None) -> str:
    """Date as shown in the digest header, e.g. ``2025년 7월 1일``."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(_timezone())
    return f"{moment.year}년 {moment.month}월 {moment.day}일"


def korean_short_date(timestamp: Any) -> str:
    """Per-video publish date, e.g. ``2025. 7. 1.``."""
    if not timestamp:
        return ""
    moment = datetime.fromtimestamp(int(timestamp), tz=timezone.utc).astimezone(_timezone())
    return f"{moment.year}. {moment.month}. {moment.day}."


def digest_subject(date_str: str, count: int, sample: bool = False) -> str:
    if count == 0:
        return f"🤖 AI Trends Daily - {date_str} (새 영상 없음)"
    subject = f"🤖 AI Trends Daily - {date_str} ({count}개 영상)"
    return f"{subject} [테스트]" if sample else subject


def smtp_transport(message: MIMEMultipart) -> None:
    """Send a prepared message through the configured SMTP-over-SSL server."""
    with smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT, timeout=config.HTTP_TIMEOUT) as server:
        server.login(config.GMAIL_USER, config.GMAIL_APP_PASSWORD)
        server.sendmail(config.GMAIL_USER, [config.EMAIL_TO], message.as_string())


class DigestMailer:
    """Renders and sends the daily digest."""

    def __init__(self, db: DatabaseQueue, capabilities: Capabilities,
                 transport: Optional[Callable[[MIMEMultipart], None]] = None,
                 templates_dir: Optional[str] = None):
        self.db = db
        self.capabilities = capabilities
        self.transport = transport or smtp_transport
        self.env = Environment(
            loader=FileSystemLoader(templates_dir or config.TEMPLATES_DIR),
            autoescape=select_autoescape(['html']),
        )
        self.env.filters['short_date'] = korean_short_date

    def render(self, videos: List[Dict[str, Any]], date_str: str) -> str:
        if not videos:
            return self.env.get_template(EMPTY_DIGEST_TEMPLATE).render(date=date_str)
        return self.env.get_template(DIGEST_TEMPLATE).render(videos=videos, date=date_str)

    def build_message(self, subject: str, html: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((SENDER_NAME, config.GMAIL_USER or ""))
        message["To"] = config.EMAIL_TO or ""
        message.attach(MIMEText(html, "html", "utf-8"))
        return message

    async def _send(self, subject: str, html: str) -> bool:
        message = self.build_message(subject, html)
        loop = get_running_loop()
        try:
            await loop.run_in_executor(None, self.transport, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ Failed to send email '{subject}': {e}")
            return False
        logger.info(f"📬 Sent email: {subject}")
        return True

    @trace_span("mailer.send_digest", tracer_name="mailer")
    async def send_digest(self) -> bool:
        """Send the unsent summaries (or a "nothing new" note) and mark them as sent."""
        if not self.capabilities.email:
            logger.warning("Email not configured; skipping digest")
            return False

        videos = await self.db.execute('select_email_candidates')
        date_str = korean_long_date()
        subject = digest_subject(date_str, len(videos))
        if not videos:
            logger.info("No new videos to send")

        if not await self._send(subject, self.render(videos, date_str)):
            return False

        if videos:
            marked = await self.db.execute('mark_videos_emailed', ids=[v['id'] for v in videos])
            logger.info(f"Marked {marked} videos as emailed")
        return True

    async def send_sample(self) -> bool:
        """Send the digest layout filled with two fixed sample videos."""
        if not self.capabilities.email:
            logger.warning("Email not configured; skipping sample digest")
            return False
        now_ts = int(datetime.now(timezone.utc).timestamp())
        videos = [dict(video, pub_date=now_ts) for video in SAMPLE_VIDEOS]
        date_str = korean_long_date()
        return await self._send(digest_subject(date_str, len(videos), sample=True),
                                self.render(videos, date_str))
