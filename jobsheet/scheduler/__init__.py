"""Scheduling helpers."""

from .apsched_adapter import EXPORT_JOB_ID, APSchedulerAdapter

__all__ = ["APSchedulerAdapter", "EXPORT_JOB_ID"]
