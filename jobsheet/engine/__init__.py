"""Engine components: fingerprint → store → sink → ledger → mark."""

from .fingerprint import FingerprintGenerator, fingerprint
from .listings import CanonicalListing, ProspleListing, RawListing, SeekListing, SourceTag, parse_listing
from .store import BulkInsertResult, ListingRecord, ListingStore
from .ledger import ExportLedger, ExportRecord
from .lease import ExportLease
from .thread_pool import ThreadPoolManager
from .coordinator import ExportCoordinator, ExportResult, ExportState, ExportStatus, RecoveryResult

__all__ = [
    "BulkInsertResult",
    "CanonicalListing",
    "ExportCoordinator",
    "ExportLease",
    "ExportLedger",
    "ExportRecord",
    "ExportResult",
    "ExportState",
    "ExportStatus",
    "FingerprintGenerator",
    "ListingRecord",
    "ListingStore",
    "ProspleListing",
    "RawListing",
    "RecoveryResult",
    "SeekListing",
    "SourceTag",
    "ThreadPoolManager",
    "fingerprint",
    "parse_listing",
]
