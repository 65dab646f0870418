#!/usr/bin/env python3
"""
Daily Trends Scheduler

This module runs the trends pipeline on the daily timetable defined in the
trends.yaml configuration file. It supports:

- One local time per job (refresh, summarize, distribute)
- Flexible time format parsing (HH:MM, H:MM, etc.)
- A schedule timezone (Asia/Seoul unless configured otherwise)
- Skipping a job whose previous run still holds its lock
- Status reporting and logging
"""

import asyncio
import yaml
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo
from typing import List, Optional, Dict, Any, Tuple
from pathlib import Path

from config import config, get_logger
from telemetry import init_telemetry, get_tracer, trace_span

logger = get_logger("scheduler")

init_telemetry("trends-pipeline-scheduler")
_tracer = get_tracer("scheduler")

DEFAULT_JOBS = {
    'refresh': "00:00",
    'summarize': "01:00",
    'distribute': "02:00",
}


class ScheduleEntry:
    """A job bound to a local time of day."""

    def __init__(self, time_str: str, job: str = "refresh"):
        """
        Args:
            time_str: Time in format "HH:MM", "H:MM", etc.
            job: Name of the job to start at that time

        Raises:
            ValueError: If time format is invalid
        """
        self.time_str = str(time_str).strip().strip('"\'')
        self.job = job
        self.time = self._parse_time(time_str)

    def _parse_time(self, time_str: str) -> time:
        try:
            parts = str(time_str).strip().strip('"\'').split(':')
            if len(parts) != 2:
                raise ValueError(f"Time must be in HH:MM format, got: {time_str}")
            hour = int(parts[0])
            minute = int(parts[1])
            if not (0 <= hour <= 23):
                raise ValueError(f"Hour must be 0-23, got: {hour}")
            if not (0 <= minute <= 59):
                raise ValueError(f"Minute must be 0-59, got: {minute}")
            return time(hour=hour, minute=minute)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid time format '{time_str}': {e}")

    def next_occurrence(self, from_time: Optional[datetime] = None, tz=None) -> datetime:
        """Get the next occurrence of this scheduled time in UTC.

        The reference time is converted to the schedule timezone, the next
        local occurrence is computed there and returned converted back to UTC.
        """
        if tz is None:
            tz = timezone.utc
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        ref_local = from_time.astimezone(tz)
        candidate_local = datetime.combine(ref_local.date(), self.time, tzinfo=tz)
        if candidate_local <= ref_local:
            candidate_local = candidate_local + timedelta(days=1)
        return candidate_local.astimezone(timezone.utc)

    def __str__(self) -> str:
        return f"ScheduleEntry({self.job}@{self.time_str})"

    def __repr__(self) -> str:
        return self.__str__()


class TrendsScheduler:
    """Daily scheduler for the trends pipeline."""

    JOBS = tuple(DEFAULT_JOBS)

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or config.TRENDS_CONFIG_PATH
        self.schedule_entries: List[ScheduleEntry] = []
        self.schedule_timezone_name = "UTC"
        self.schedule_timezone = timezone.utc
        self._set_timezone(config.SCHEDULER_TIMEZONE)
        self._load_schedule()

    def _set_timezone(self, tz_name: Optional[str]) -> None:
        if not tz_name:
            return
        try:
            self.schedule_timezone = ZoneInfo(str(tz_name))
            self.schedule_timezone_name = str(tz_name)
        except Exception:
            logger.error(f"Invalid schedule timezone '{tz_name}', keeping '{self.schedule_timezone_name}'")

    def _load_schedule(self):
        """Load the job timetable from the YAML file, defaulting every missing job."""
        jobs: Dict[str, Any] = dict(DEFAULT_JOBS)
        try:
            config_data = {}
            if Path(self.config_path).exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    config_data = yaml.safe_load(f) or {}
            else:
                logger.warning(f"Config file not found: {self.config_path}, using default schedule")

            schedule = config_data.get('schedule') if isinstance(config_data, dict) else None
            if isinstance(schedule, dict):
                self._set_timezone(schedule.get('timezone') or schedule.get('tz'))
                configured = schedule.get('jobs') or {}
                if isinstance(configured, dict):
                    for job, when in configured.items():
                        if job not in self.JOBS:
                            logger.warning(f"Unknown scheduled job '{job}', ignoring")
                            continue
                        jobs[job] = when
                else:
                    logger.error("Schedule 'jobs' must be a mapping of job name to HH:MM, ignoring")
        except Exception as e:
            logger.error(f"Error loading schedule from {self.config_path}: {e}")

        entries: List[ScheduleEntry] = []
        for job, when in jobs.items():
            if when in (None, "", False):
                logger.info(f"Job '{job}' disabled in schedule")
                continue
            try:
                entries.append(ScheduleEntry(when, job))
            except ValueError as e:
                logger.error(f"Failed to parse schedule for {job}: {e}")
        self.schedule_entries = entries

        if self.schedule_entries:
            times_str = ", ".join(f"{entry.job} {entry.time_str}" for entry in self.schedule_entries)
            logger.info(f"Scheduled jobs ({self.schedule_timezone_name}): {times_str}")

    def get_next_run_event(self, from_time: Optional[datetime] = None) -> Tuple[Optional[datetime], List[str]]:
        """Earliest upcoming run and every job due at that instant."""
        if not self.schedule_entries:
            return None, []
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        candidates = [(entry.next_occurrence(from_time, self.schedule_timezone), entry.job)
                      for entry in self.schedule_entries]
        earliest = min(when for when, _ in candidates)
        jobs = [job for when, job in candidates if when == earliest]
        return earliest, [job for job in self.JOBS if job in jobs]

    def seconds_until_next_run(self, from_time: Optional[datetime] = None) -> Optional[float]:
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        next_run, _ = self.get_next_run_event(from_time)
        if next_run is None:
            return None
        return (next_run - from_time).total_seconds()

    def get_schedule_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        next_run, jobs = self.get_next_run_event(now)
        seconds_until = self.seconds_until_next_run(now)
        return {
            'current_time': now.isoformat(),
            'schedule_entries_count': len(self.schedule_entries),
            'schedule_jobs': {entry.job: entry.time_str for entry in self.schedule_entries},
            'next_run_time': next_run.isoformat() if next_run else None,
            'next_jobs': jobs,
            'seconds_until_next_run': seconds_until,
            'minutes_until_next_run': round(seconds_until / 60, 1) if seconds_until is not None else None,
            'schedule_active': len(self.schedule_entries) > 0,
            'schedule_timezone': self.schedule_timezone_name,
        }

    def print_schedule_status(self):
        status = self.get_schedule_status()

        print("\n🕐 Scheduler Status")
        print(f"⏰ Current time: {status['current_time']}")
        print(f"🌍 Timezone: {status['schedule_timezone']}")

        if status['schedule_active']:
            for job, when in status['schedule_jobs'].items():
                print(f"🎯 {job}: {when}")
            if status['next_run_time']:
                print(f"⏭️ Next run: {status['next_run_time']} ({', '.join(status['next_jobs'])})")
                print(f"⏳ Time until next run: {status['minutes_until_next_run']:.1f} minutes")
        else:
            print("❌ No schedule configured")

    async def dispatch(self, orchestrator, job: str) -> bool:
        """Start one scheduled job unless its previous run still holds the lock."""
        if orchestrator.is_running(job):
            logger.warning(f"⏭️ Scheduled {job} skipped: previous run still in progress")
            return False
        if job == 'refresh':
            return await orchestrator.run_refresh()
        if job == 'summarize':
            return await orchestrator.run_summarize(config.DAILY_SUMMARY_LIMIT)
        if job == 'distribute':
            return await orchestrator.run_distribute()
        logger.error(f"Unknown scheduled job '{job}'")
        return False

    @trace_span("scheduler.main_loop", tracer_name="scheduler")
    async def run_scheduled_pipeline(self, orchestrator):
        """Run the scheduled jobs forever.

        Args:
            orchestrator: TrendsOrchestrator instance to drive
        """
        if not self.schedule_entries:
            logger.error("No schedule configured - cannot run in scheduled mode")
            return

        logger.info(f"🚀 Starting scheduler with {len(self.schedule_entries)} daily jobs")
        self.print_schedule_status()

        if config.SCHEDULER_RUN_IMMEDIATELY:
            logger.info("🎬 Running refresh and summarize immediately on startup (SCHEDULER_RUN_IMMEDIATELY=true)")
            await self.dispatch(orchestrator, 'refresh')
            await self.dispatch(orchestrator, 'summarize')

        while True:
            try:
                next_time, jobs = self.get_next_run_event()
                if next_time is None:
                    logger.error("No next run time calculated - stopping scheduler")
                    break

                # one second of slack so we never wake just before the boundary
                seconds_until = (next_time - datetime.now(timezone.utc)).total_seconds()
                sleep_time = max(1, seconds_until + 1)
                logger.info(f"😴 Sleeping {sleep_time / 60:.1f} minutes until {', '.join(jobs)} "
                            f"(timezone: {self.schedule_timezone_name})")
                await self._sleep_until(next_time, sleep_time, jobs)

                for job in jobs:
                    logger.info(f"⏰ Starting scheduled {job}")
                    success, duration = await self._run_job_with_span(orchestrator, next_time, job)
                    if success:
                        logger.info(f"✅ Scheduled {job} completed in {duration:.1f}s")
                    else:
                        logger.error(f"❌ Scheduled {job} did not complete after {duration:.1f}s")

            except asyncio.CancelledError:
                logger.info("📶 Scheduler cancelled - shutting down")
                break
            except Exception as e:
                logger.error(f"💥 Error in scheduled run: {e}")
                await asyncio.sleep(60)

    @trace_span(
        "scheduler.sleep",
        tracer_name="scheduler",
        attr_from_args=lambda self, next_time, sleep_time, jobs: {
            "sleep.seconds": float(sleep_time),
            "scheduled.at": next_time.isoformat(),
            "scheduled.jobs": ",".join(jobs),
        },
    )
    async def _sleep_until(self, next_time: datetime, sleep_time: float, jobs: List[str]):
        await asyncio.sleep(sleep_time)

    @trace_span(
        "scheduler.job_run",
        tracer_name="scheduler",
        attr_from_args=lambda self, orchestrator, next_time, job: {
            "scheduled.at": next_time.isoformat(),
            "scheduled.job": job,
        },
    )
    async def _run_job_with_span(self, orchestrator, next_time: datetime, job: str):
        start_time = datetime.now(timezone.utc)
        success = await self.dispatch(orchestrator, job)
        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        return success, duration


def create_scheduler(config_path: Optional[str] = None) -> TrendsScheduler:
    """Create a TrendsScheduler reading the given (or default) trends.yaml."""
    return TrendsScheduler(config_path)
