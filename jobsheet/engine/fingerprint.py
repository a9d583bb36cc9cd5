"""Content fingerprints used as the storage identity of a listing."""

from __future__ import annotations

import hashlib
import re
from datetime import date
from typing import Iterable, Literal, TypeVar

import structlog

from .listings import CanonicalListing, ProspleListing, SeekListing

FINGERPRINT_DELIMITER = "|"
SUPPORTED_ALGORITHMS = ("sha256", "sha224")

_WHITESPACE = re.compile(r"\s+")
_SPECIAL = re.compile(r"[^\w\s]")

ListingT = TypeVar("ListingT", SeekListing, ProspleListing)

logger = structlog.get_logger("jobsheet.fingerprint")


def normalize_text(value: str | None) -> str:
    """Lowercase, trim, collapse whitespace and drop punctuation."""

    if not value:
        return ""
    text = _WHITESPACE.sub(" ", value.lower().strip())
    return _SPECIAL.sub("", text)


def normalize_date(value: date | str | None) -> str:
    """Render structured dates as ISO days; compare free text literally."""

    if not value:
        return ""
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    return _WHITESPACE.sub("", str(value).lower().strip())


def canonical_string(canonical: CanonicalListing) -> str:
    return FINGERPRINT_DELIMITER.join(
        (
            normalize_text(canonical.title),
            normalize_text(canonical.company),
            normalize_text(canonical.url),
            normalize_date(canonical.date),
            normalize_text(canonical.description),
        )
    )


class FingerprintGenerator:
    """Map listings to hex digests of their normalised canonical form."""

    def __init__(
        self,
        algorithm: Literal["sha256", "sha224"] = "sha256",
        length: int | None = None,
    ) -> None:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}")
        if length is not None and length <= 0:
            raise ValueError("Fingerprint length must be positive")
        self.algorithm = algorithm
        self.length = length

    def fingerprint(self, listing: SeekListing | ProspleListing) -> str:
        payload = canonical_string(listing.canonical()).encode("utf-8")
        digest = hashlib.new(self.algorithm, payload).hexdigest()
        if self.length is not None:
            return digest[: self.length]
        return digest

    def verify(self, listing: SeekListing | ProspleListing, fingerprint: str) -> bool:
        return self.fingerprint(listing) == fingerprint

    def group_by_fingerprint(self, listings: Iterable[ListingT]) -> dict[str, list[ListingT]]:
        groups: dict[str, list[ListingT]] = {}
        for listing in listings:
            groups.setdefault(self.fingerprint(listing), []).append(listing)
        return groups

    def find_duplicates(self, listings: Iterable[ListingT]) -> list[tuple[str, list[ListingT]]]:
        return [
            (fp, members)
            for fp, members in self.group_by_fingerprint(listings).items()
            if len(members) > 1
        ]

    def unique_listings(self, listings: Iterable[ListingT]) -> list[ListingT]:
        """Drop in-batch duplicates, keeping the first occurrence."""

        seen: set[str] = set()
        unique: list[ListingT] = []
        total = 0
        for listing in listings:
            total += 1
            fp = self.fingerprint(listing)
            if fp in seen:
                logger.debug(
                    "batch_duplicate_dropped",
                    title=listing.title,
                    company=listing.company,
                    fingerprint=fp[:8],
                )
                continue
            seen.add(fp)
            unique.append(listing)
        if total != len(unique):
            logger.info("batch_duplicates_removed", removed=total - len(unique), kept=len(unique))
        return unique


_DEFAULT_GENERATOR = FingerprintGenerator()


def fingerprint(listing: SeekListing | ProspleListing) -> str:
    """SHA-256 fingerprint with the default settings."""

    return _DEFAULT_GENERATOR.fingerprint(listing)


__all__ = [
    "FINGERPRINT_DELIMITER",
    "FingerprintGenerator",
    "canonical_string",
    "fingerprint",
    "normalize_date",
    "normalize_text",
]
