from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Protocol


# Engine-owned status values; externally reported values are free-form strings.
INITIALIZING = "initializing"
WAITING_FOR_PARENT = "waiting_for_parent"
SKIPPED_RECONCILE = "skipped_reconcile"
VALIDATION_FAILED = "validation_failed"
# Every status in the "skipped" family shares this prefix (skipped_reconcile, skipped_timeout, ...).
SKIPPED_PREFIX = "skipped"

# Common values reported by the CD layer; kept for display and tests, not enforced.
RUNNING = "running"
SUCCEEDED = "succeeded"
FAILED = "failed"


class SkipState(str, Enum):
    # Older component runs never set is_skipped; UNKNOWN is read as not skipped.
    NOT_SKIPPED = "not_skipped"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"

    @classmethod
    def from_column(cls, value: bool | None) -> SkipState:
        if value is None:
            return cls.UNKNOWN
        return cls.SKIPPED if value else cls.NOT_SKIPPED

    def to_column(self) -> bool | None:
        if self is SkipState.UNKNOWN:
            return None
        return self is SkipState.SKIPPED


class ReconcileRecord(Protocol):
    status: str
    end_date_time: datetime | None


def is_open(record: ReconcileRecord) -> bool:
    # A run stays live until it is closed by end time or retired by the sweeper.
    return record.end_date_time is None and record.status != SKIPPED_RECONCILE
