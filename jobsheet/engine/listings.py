"""Raw listing variants produced by crawlers and their canonical projection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer, field_validator
from pydantic.alias_generators import to_camel


class SourceTag(str, Enum):
    """Crawler sources understood by the store."""

    SEEK = "seek"
    PROSPLE = "prosple"


@dataclass(frozen=True, slots=True)
class CanonicalListing:
    """Five-field projection used as the identity of a listing."""

    title: str
    company: str
    url: str
    date: date | str
    description: str


def _prefer(primary: str | None, fallback: str | None) -> str:
    """Full description wins when non-empty, otherwise the short one."""

    if primary and primary.strip():
        return primary
    return fallback or ""


def _join_locations(value: str | list[str] | None) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return ", ".join(part for part in value if part)


def structured_date(value: date | datetime) -> date:
    """Return the calendar date of a structured value (aware datetimes in UTC)."""

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


class _ListingBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    title: str = ""
    company: str = ""
    salary: str | None = None
    url: str | None = None
    full_description: str | None = None

    @field_validator("title", "company", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe payload stored alongside the fingerprint."""

        return self.model_dump(mode="json", by_alias=True)


class SeekListing(_ListingBase):
    """Listing scraped from a Seek search result card plus detail panel."""

    source: Literal["seek"] = "seek"
    job_id: str | None = None
    locations: str | list[str] = ""
    work_arrangement: str | None = None
    description: str | None = None
    listing_date: str | None = None
    is_premium: bool = False
    classification: str | None = None
    sub_classification: str | None = None

    @property
    def location_text(self) -> str:
        return _join_locations(self.locations)

    @property
    def date_value(self) -> date | str:
        return self.listing_date or ""

    def canonical(self) -> CanonicalListing:
        return CanonicalListing(
            title=self.title,
            company=self.company,
            url=self.url or "",
            date=self.date_value,
            description=_prefer(self.full_description, self.description),
        )


class ProspleListing(_ListingBase):
    """Listing scraped from a Prosple graduate programme page."""

    source: Literal["prosple"] = "prosple"
    location: str | list[str] = ""
    start_date: datetime | date | str | None = None
    badges: list[str] = Field(default_factory=list)
    timing_info: str | None = None
    data_node: str | None = None

    @field_serializer("start_date")
    def _serialize_start_date(self, value: datetime | date | str | None) -> str | None:
        # Structured dates persist as the calendar day the fingerprint uses.
        if isinstance(value, (datetime, date)):
            return structured_date(value).isoformat()
        return value

    @property
    def location_text(self) -> str:
        return _join_locations(self.location)

    @property
    def date_value(self) -> date | str:
        if isinstance(self.start_date, (datetime, date)):
            return structured_date(self.start_date)
        return self.start_date or ""

    def canonical(self) -> CanonicalListing:
        return CanonicalListing(
            title=self.title,
            company=self.company,
            url=self.url or "",
            date=self.date_value,
            description=self.full_description or "",
        )


RawListing = Annotated[Union[SeekListing, ProspleListing], Field(discriminator="source")]

_RAW_LISTING_ADAPTER: TypeAdapter[RawListing] = TypeAdapter(RawListing)


def parse_listing(payload: Mapping[str, Any], source: SourceTag | str | None = None) -> SeekListing | ProspleListing:
    """Validate a crawler payload into its tagged variant.

    ``source`` overrides any ``source`` key present in the payload. Raises
    ``pydantic.ValidationError`` (a ``ValueError``) for unknown tags or
    malformed fields.
    """

    data = dict(payload)
    if source is not None:
        data["source"] = SourceTag(source).value
    return _RAW_LISTING_ADAPTER.validate_python(data)


__all__ = [
    "CanonicalListing",
    "ProspleListing",
    "RawListing",
    "SeekListing",
    "SourceTag",
    "parse_listing",
    "structured_date",
]
