from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from scheduler import ScheduleEntry, TrendsScheduler

SEOUL = ZoneInfo("Asia/Seoul")


def test_entry_parsing():
    assert ScheduleEntry("6:30").time.hour == 6
    assert ScheduleEntry('"01:05"', "summarize").time.minute == 5
    for bad in ("24:00", "12:60", "noon", "1:2:3"):
        with pytest.raises(ValueError):
            ScheduleEntry(bad)


def test_next_occurrence_is_in_schedule_timezone():
    entry = ScheduleEntry("02:00", "distribute")
    # 16:30 UTC on July 1 is 01:30 on July 2 in Seoul
    now = datetime(2025, 7, 1, 16, 30, tzinfo=timezone.utc)
    assert entry.next_occurrence(now, SEOUL) == datetime(2025, 7, 1, 17, 0, tzinfo=timezone.utc)
    # once past, it rolls over to the next day
    later = datetime(2025, 7, 1, 17, 0, tzinfo=timezone.utc)
    assert entry.next_occurrence(later, SEOUL) == datetime(2025, 7, 2, 17, 0, tzinfo=timezone.utc)


def _scheduler(tmp_path, text):
    path = tmp_path / "trends.yaml"
    path.write_text(text, encoding="utf-8")
    return TrendsScheduler(str(path))


def test_default_jobs_when_schedule_missing(tmp_path):
    scheduler = _scheduler(tmp_path, "channels: []\n")
    status = scheduler.get_schedule_status()
    assert status['schedule_active'] is True
    assert status['schedule_jobs'] == {'refresh': "00:00", 'summarize': "01:00", 'distribute': "02:00"}


def test_configured_jobs_and_timezone(tmp_path):
    scheduler = _scheduler(tmp_path, (
        "schedule:\n"
        "  timezone: UTC\n"
        "  jobs:\n"
        "    refresh: \"06:00\"\n"
        "    summarize: \"06:00\"\n"
        "    distribute: \"\"\n"
        "    bogus: \"07:00\"\n"
    ))
    assert scheduler.schedule_timezone_name == "UTC"
    assert [entry.job for entry in scheduler.schedule_entries] == ['refresh', 'summarize']

    when, jobs = scheduler.get_next_run_event(datetime(2025, 7, 1, 5, 0, tzinfo=timezone.utc))
    assert when == datetime(2025, 7, 1, 6, 0, tzinfo=timezone.utc)
    assert jobs == ['refresh', 'summarize']


def test_next_event_picks_earliest_job(tmp_path):
    scheduler = _scheduler(tmp_path, "schedule:\n  timezone: Asia/Seoul\n")
    # 15:30 UTC is 00:30 in Seoul, so summarize at 01:00 is next
    when, jobs = scheduler.get_next_run_event(datetime(2025, 7, 1, 15, 30, tzinfo=timezone.utc))
    assert jobs == ['summarize']
    assert when == datetime(2025, 7, 1, 16, 0, tzinfo=timezone.utc)


class FakeOrchestrator:
    def __init__(self, busy=()):
        self.busy = set(busy)
        self.calls = []

    def is_running(self, job):
        return job in self.busy

    async def run_refresh(self):
        self.calls.append('refresh')
        return True

    async def run_summarize(self, limit=None):
        self.calls.append(('summarize', limit))
        return True

    async def run_distribute(self):
        self.calls.append('distribute')
        return True


@pytest.mark.asyncio
async def test_dispatch_skips_jobs_still_running(tmp_path):
    scheduler = _scheduler(tmp_path, "")
    orchestrator = FakeOrchestrator(busy={'summarize'})

    assert await scheduler.dispatch(orchestrator, 'refresh') is True
    assert await scheduler.dispatch(orchestrator, 'summarize') is False
    assert await scheduler.dispatch(orchestrator, 'distribute') is True
    assert await scheduler.dispatch(orchestrator, 'unknown') is False
    assert orchestrator.calls == ['refresh', 'distribute']
