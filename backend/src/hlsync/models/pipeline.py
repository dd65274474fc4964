"""Models for sync_status rows and per-record write outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel


class SkipReason(str, Enum):
    MISSING_TEAMS = "missing_teams"              # payload lacks a home/away team id
    MISSING_TEAMS_IN_DB = "missing_teams_in_db"  # team row not in the store
    MISSING_MATCH = "missing_match"              # dependent row whose match is not in the store
    DATABASE_ERROR = "database_error"
    EXCEPTION = "exception"


@dataclass
class WriteResult:
    """Outcome of one write.

    ``ok`` is False as soon as any row was rejected; ``count`` still holds
    the rows that did land and ``failed`` the conflict keys of those that
    did not.
    """

    ok: bool
    count: int = 0
    reason: SkipReason | None = None
    error: str | None = None
    failed: list[tuple] = field(default_factory=list)

    @classmethod
    def written(cls, count: int = 1) -> WriteResult:
        return cls(True, count=count)

    @classmethod
    def skipped(cls, reason: SkipReason, error: str | None = None) -> WriteResult:
        return cls(False, reason=reason, error=error)

    @property
    def skipped_count(self) -> int:
        if self.ok:
            return 0
        return len(self.failed) or 1


class SyncStatus(BaseModel):
    table_name: str
    status: str = "running"  # running, completed, failed
    records_synced: int = 0
    total_records: int = 0
    error_message: str | None = None
    last_sync: str | None = None
