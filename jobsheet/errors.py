"""Exception hierarchy shared by the store, ledger and export path."""

from __future__ import annotations


class JobsheetError(Exception):
    """Base class for all jobsheet errors."""


class StoreUnavailableError(JobsheetError):
    """Raised when a store or ledger is used before ``init()``."""


class StoreError(JobsheetError):
    """Genuine persistence failure; the operation must not be assumed complete."""


class SinkError(JobsheetError):
    """Spreadsheet sink transport error or timeout."""


class ExportBusyError(JobsheetError):
    """Another export cycle currently holds the export lease."""

    def __init__(self, owner: str | None = None) -> None:
        self.owner = owner
        message = "Another export cycle is in progress"
        if owner:
            message += f" (lease held by {owner})"
        super().__init__(message)


__all__ = [
    "ExportBusyError",
    "JobsheetError",
    "SinkError",
    "StoreError",
    "StoreUnavailableError",
]
