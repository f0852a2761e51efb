"""Scheduling helpers for recurring runs."""

from .apsched_adapter import APSchedulerAdapter

__all__ = ["APSchedulerAdapter"]
