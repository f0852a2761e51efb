from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from intelli_tracker.config import RunModeSetting, ScheduleConfig, ScheduleType
from intelli_tracker.scheduler import APSchedulerAdapter
from intelli_tracker.scheduler.apsched_adapter import build_trigger


class StubScheduler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def add_job(self, callback, trigger, id, args, replace_existing, max_instances, coalesce):  # noqa: A002
        self.calls.append(
            {
                "id": id,
                "args": args,
                "callback": callback,
                "replace_existing": replace_existing,
                "max_instances": max_instances,
                "coalesce": coalesce,
            }
        )

    def start(self) -> None:
        self.calls.append({"event": "started"})

    def shutdown(self, wait=False) -> None:  # noqa: ARG002
        self.calls.append({"event": "shutdown"})


def test_build_triggers() -> None:
    assert isinstance(build_trigger(ScheduleConfig(type=ScheduleType.CRON, value="*/5 * * * *")), CronTrigger)

    interval = build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value=30))
    assert isinstance(interval, IntervalTrigger)
    assert interval.interval.total_seconds() == 30

    kwargs_interval = build_trigger(ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2}))
    assert kwargs_interval.interval.total_seconds() == 120

    future = (datetime.now() + timedelta(minutes=5)).isoformat()
    assert isinstance(build_trigger(ScheduleConfig(type=ScheduleType.ONCE, value=future)), DateTrigger)


def test_interval_rejects_text() -> None:
    schedule = ScheduleConfig(type=ScheduleType.INTERVAL, value=5)
    schedule.value = "fast"
    with pytest.raises(ValueError):
        build_trigger(schedule)


def test_schedule_run_registers_single_instance_job() -> None:
    stub = StubScheduler()
    adapter = APSchedulerAdapter(scheduler=stub)
    fired: list[str] = []

    job_id = adapter.schedule_run(
        ScheduleConfig(type=ScheduleType.INTERVAL, value=60), RunModeSetting.STORE, fired.append
    )
    adapter.start()
    adapter.start()

    assert job_id == "run::store"
    first = stub.calls[0]
    assert first["args"] == ["store"]
    assert first["max_instances"] == 1
    assert first["coalesce"] is True
    first["callback"](*first["args"])
    assert fired == ["store"]

    adapter.shutdown()
    adapter.shutdown()
    events = [call.get("event") for call in stub.calls[1:]]
    assert events == ["started", "shutdown"]
