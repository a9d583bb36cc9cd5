"""Row layout shared by every sink. Column order is part of the contract."""

from __future__ import annotations

from datetime import date

from ..listings import ProspleListing, SeekListing
from ..store import ListingRecord

HEADER: tuple[str, ...] = (
    "Title",
    "Company",
    "Location",
    "Salary",
    "Start Date",
    "URL",
    "Description",
    "Source",
    "Added Date",
    "Pushed",
)

DESCRIPTION_PREVIEW_CHARS = 200


def _format_date(value: date | str) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _description(listing: SeekListing | ProspleListing) -> str:
    if isinstance(listing, SeekListing):
        return listing.description or ""
    # Prosple pages only carry the long form; show its opening paragraph.
    first_paragraph = (listing.full_description or "").split("\n")[0]
    if len(first_paragraph) > DESCRIPTION_PREVIEW_CHARS:
        return first_paragraph[:DESCRIPTION_PREVIEW_CHARS] + "..."
    return first_paragraph


def listing_row(record: ListingRecord) -> tuple[str, ...]:
    listing = record.listing()
    return (
        listing.title,
        listing.company,
        listing.location_text,
        listing.salary or "",
        _format_date(listing.date_value),
        listing.url or "",
        _description(listing),
        record.source,
        record.created_at.date().isoformat(),
        "Yes" if record.pushed else "No",
    )


__all__ = ["DESCRIPTION_PREVIEW_CHARS", "HEADER", "listing_row"]
