"""Local CSV sink; each "sheet" is one file in the outputs directory."""

from __future__ import annotations

import csv
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from ...errors import SinkError
from .base import BaseSink, Row


class CsvSink(BaseSink):
    """Write rows to ``<slug>-<run tag>.csv`` files."""

    def __init__(self, output_dir: Path, run_tag: str | None = None) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_tag = run_tag

    def _path(self, sheet_id: str) -> Path:
        return self.output_dir / f"{sheet_id}.csv"

    def create_sheet(self, title: str) -> str:
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", title.strip()).strip("_") or "sheet"
        run_tag = self.run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        sheet_id = f"{slug}-{run_tag}"
        path = self._path(sheet_id)
        try:
            path.touch(exist_ok=False)
        except FileExistsError as exc:
            raise SinkError(f"Sheet already exists: {path}") from exc
        except OSError as exc:
            raise SinkError(f"Unable to create sheet {path}: {exc}") from exc
        return sheet_id

    def write_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        self._write(sheet_id, rows, mode="w")

    def append_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        if not self._path(sheet_id).exists():
            raise SinkError(f"Unknown sheet: {sheet_id}")
        self._write(sheet_id, rows, mode="a")

    def _write(self, sheet_id: str, rows: Sequence[Row], mode: str) -> None:
        try:
            with self._path(sheet_id).open(mode, encoding="utf-8", newline="") as stream:
                csv.writer(stream).writerows(rows)
        except OSError as exc:
            raise SinkError(f"Unable to write sheet {sheet_id}: {exc}") from exc

    def sheet_url(self, sheet_id: str) -> str:
        return self._path(sheet_id).resolve().as_uri()


__all__ = ["CsvSink"]
