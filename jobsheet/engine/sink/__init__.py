"""Sink SPI and implementations."""

from .base import BaseSink
from .csv_sink import CsvSink
from .google_sheets import GoogleSheetsSink
from .rows import HEADER, listing_row

__all__ = ["BaseSink", "CsvSink", "GoogleSheetsSink", "HEADER", "listing_row"]
