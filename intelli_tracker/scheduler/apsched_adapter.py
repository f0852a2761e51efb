"""APScheduler wrapper exposing higher level helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import RunModeSetting, ScheduleConfig, ScheduleType
from ..logging_conf import configure_logging

JOB_PREFIX = "run::"


class APSchedulerAdapter:
    """Manage APScheduler jobs that trigger tracker runs."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_run(
        self,
        schedule: ScheduleConfig,
        mode: RunModeSetting,
        callback: Callable[[str], object],
    ) -> str:
        trigger = build_trigger(schedule)
        job_id = f"{JOB_PREFIX}{mode.value}"
        # a run still in progress makes the next firing a no-op, never a second run
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            args=[mode.value],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", mode=mode.value, schedule=schedule.model_dump(mode="json"))
        return job_id


def build_trigger(schedule: ScheduleConfig):
    if schedule.type is ScheduleType.CRON:
        return CronTrigger.from_crontab(str(schedule.value))
    if schedule.type is ScheduleType.INTERVAL:
        if isinstance(schedule.value, (int, float)):
            return IntervalTrigger(seconds=float(schedule.value))
        if isinstance(schedule.value, dict):
            return IntervalTrigger(**schedule.value)
        raise ValueError("Interval schedule requires seconds or kwargs dict")
    if schedule.type is ScheduleType.ONCE:
        if schedule.value:
            run_date = datetime.fromisoformat(str(schedule.value))
        else:
            run_date = datetime.now()
        return DateTrigger(run_date=run_date)
    raise ValueError(f"Unknown schedule type: {schedule.type}")


__all__ = ["APSchedulerAdapter", "build_trigger"]
