"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    FetchSettings,
    ReportSettings,
    RunModeSetting,
    ScheduleConfig,
    ScheduleType,
    SourceEndpoints,
    StoreSettings,
    TrackerConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "FetchSettings",
    "ReportSettings",
    "RunModeSetting",
    "ScheduleConfig",
    "ScheduleType",
    "SourceEndpoints",
    "StoreSettings",
    "TrackerConfig",
]
