"""Spreadsheet sink Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

Row = Sequence[str]


class BaseSink(ABC):
    """Uniform sink contract enabling plug-and-play spreadsheet targets."""

    @abstractmethod
    def create_sheet(self, title: str) -> str:
        """Create an empty sheet and return its identifier."""

    @abstractmethod
    def write_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        """Overwrite the sheet starting at the first cell."""

    @abstractmethod
    def append_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        """Append rows below existing content."""

    def sheet_url(self, sheet_id: str) -> str | None:
        """Human-facing link for ``sheet_id``; ``None`` lets the ledger derive one."""

        return None

    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["BaseSink", "Row"]
