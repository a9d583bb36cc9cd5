"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    AppConfig,
    ExportConfig,
    FingerprintConfig,
    ScheduleConfig,
    ScheduleType,
    SheetsConfig,
    StorageConfig,
)

__all__ = [
    "AppConfig",
    "ConfigLocator",
    "ConfigRepository",
    "ExportConfig",
    "FingerprintConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SheetsConfig",
    "StorageConfig",
]
