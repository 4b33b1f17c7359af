"""Engine components orchestrating normalise → persist → export."""

from .dedup import MemberStore, UpsertResult
from .ingestion import IngestionCoordinator, IngestionReport, TargetReport
from .records import MemberRecord, StoredRow, normalize_record
from .thread_pool import PersistWorkerPool, ShutdownToken

__all__ = [
    "IngestionCoordinator",
    "IngestionReport",
    "MemberRecord",
    "MemberStore",
    "PersistWorkerPool",
    "ShutdownToken",
    "StoredRow",
    "TargetReport",
    "UpsertResult",
    "normalize_record",
]
