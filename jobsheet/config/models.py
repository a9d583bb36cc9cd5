"""Pydantic models used across jobsheet configuration flow."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ScheduleType(str, Enum):
    """Scheduler modes for periodic export cycles."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """Configuration describing when an export cycle should run."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=3600,
        description="Cron expression, interval seconds or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class StorageConfig(BaseModel):
    """Locations of the listing store and export ledger, relative to the data dir."""

    listings_db: Path = Field(default=Path("listings.db"))
    exports_db: Path = Field(default=Path("exports.db"))
    busy_timeout: float = 30.0

    @field_validator("listings_db", "exports_db", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolve(self, path: Path, base_dir: Path) -> Path:
        if not path.is_absolute():
            return (base_dir / path).resolve()
        return path


class SheetsConfig(BaseModel):
    """Sink selection and Google Sheets parameters."""

    backend: Literal["google", "csv"] = "csv"
    spreadsheet_id: str | None = None
    tab: str = "Jobs"
    title_template: str = "Job Listings - {date}"
    access_token_env: str = "JOBSHEET_SHEETS_TOKEN"
    credentials_file: Path | None = None
    timeout: float = 60.0

    @field_validator("title_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        try:
            value.format(date="2000-01-01")
        except (KeyError, IndexError) as exc:
            raise ValueError("title_template may only reference {date}") from exc
        return value


class ExportConfig(BaseModel):
    """Export cycle controls."""

    sink_timeout: float = 120.0
    lease_ttl_seconds: float = 3600.0
    lease_poll_interval: float = 0.5
    recover_on_start: bool = True

    @model_validator(mode="after")
    def _validate_positive(self) -> "ExportConfig":
        if self.sink_timeout <= 0:
            raise ValueError("sink_timeout must be > 0")
        if self.lease_ttl_seconds <= 0:
            raise ValueError("lease_ttl_seconds must be > 0")
        if self.lease_poll_interval <= 0:
            raise ValueError("lease_poll_interval must be > 0")
        return self


class FingerprintConfig(BaseModel):
    """Fingerprint digest settings. Changing them invalidates stored identities."""

    algorithm: Literal["sha256", "sha224"] = "sha256"
    length: int | None = None

    @field_validator("length")
    @classmethod
    def _check_length(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("length must be > 0")
        return value


class AppConfig(BaseModel):
    """Top level settings persisted in ``data/jobsheet.yaml``."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    fingerprint: FingerprintConfig = Field(default_factory=FingerprintConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    enable_progress_bar: bool = True
    thread_pool_workers: int = 2


__all__ = [
    "AppConfig",
    "ExportConfig",
    "FingerprintConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SheetsConfig",
    "StorageConfig",
]
