"""Idempotent upserts into Supabase with dependency checks.

Every write goes through ``UpsertWriter.upsert`` and comes back as a
``WriteResult``; store failures never escape a single record. Matches are
only written once both teams exist, and highlights/events/lineups only once
their match exists.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from types import ModuleType
from typing import Any, Iterable

from postgrest.exceptions import APIError
from pydantic import BaseModel

from hlsync import db
from hlsync.models.matches import Highlight, League, Match, MatchEvent, MatchLineup, Team
from hlsync.models.pipeline import SkipReason, SyncStatus, WriteResult
from hlsync.models.standings import Standing, TeamForm

logger = logging.getLogger(__name__)

# Conflict keys per table
CONFLICT_KEYS: dict[str, str] = {
    "leagues": "id",
    "teams": "id",
    "matches": "id",
    "highlights": "id",
    "match_events": "id",
    "match_lineups": "match_id,team_id",
    "standings": "league_id,season,team_id",
    "team_form": "team_id,season",
    "sync_status": "table_name",
}

# api_data keys filled by attach_to_match, kept when a match is re-upserted
ATTACHED_KEYS = ("events", "lineups", "statistics", "headToHead")

_FK_VIOLATION = "23503"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_fk_violation(exc: APIError) -> bool:
    if str(exc.code or "") == _FK_VIOLATION:
        return True
    return "foreign key" in str(exc.message or "").lower()


def _as_row(row: BaseModel | dict) -> dict[str, Any]:
    if isinstance(row, BaseModel):
        return row.model_dump(mode="json")
    return dict(row)


def _key_of(row: dict, conflict_key: str) -> tuple:
    return tuple(row.get(c) for c in conflict_key.split(","))


def _dedupe(rows: list[dict], conflict_key: str) -> list[dict]:
    """Keep the last row per conflict key; Postgres rejects repeats in one upsert."""
    by_key: dict[tuple, dict] = {}
    for r in rows:
        by_key[_key_of(r, conflict_key)] = r
    return list(by_key.values())


class UpsertWriter:
    """Writes row models to the store, remembering which parents exist.

    ``store`` is anything exposing the ``hlsync.db`` functions; tests pass an
    in-memory fake.
    """

    def __init__(self, store: ModuleType | Any = db) -> None:
        self.store = store
        self._team_ids: set[int] = set()
        self._match_ids: set[int] = set()

    # ── Core ─────────────────────────────────────────────────────────────

    def upsert(
        self,
        table: str,
        rows: Iterable[BaseModel | dict],
        conflict_key: str | None = None,
        fk_reason: SkipReason = SkipReason.DATABASE_ERROR,
    ) -> WriteResult:
        """Upsert rows, stamping ``updated_at``.

        When the store rejects a multi-row batch, the rows are retried one by
        one so only the offending ones are dropped. A foreign-key violation is
        reported as ``fk_reason``, any other store error as
        ``database_error``, anything unexpected as ``exception``.
        """
        conflict_key = conflict_key or CONFLICT_KEYS[table]
        stamp = _now_iso()
        payload = [{**_as_row(r), "updated_at": stamp} for r in rows]
        if not payload:
            return WriteResult.written(0)
        payload = _dedupe(payload, conflict_key)

        try:
            self.store.upsert_rows(table, payload, on_conflict=conflict_key)
        except APIError as e:
            if len(payload) > 1:
                logger.warning(
                    "Batch of %d row(s) rejected by %s (%s), retrying row by row",
                    len(payload), table, e.message,
                )
                return self._upsert_each(table, payload, conflict_key, fk_reason)
            return self._rejected(table, e, fk_reason, _key_of(payload[0], conflict_key))
        except Exception as e:
            logger.error("Unexpected error upserting into %s: %s", table, e, exc_info=True)
            return WriteResult.skipped(SkipReason.EXCEPTION, str(e))

        return WriteResult.written(len(payload))

    def _rejected(self, table: str, e: APIError, fk_reason: SkipReason, key: tuple) -> WriteResult:
        if is_fk_violation(e):
            logger.warning("FK violation upserting %s %s: %s", table, key, e.message)
            reason = fk_reason
        else:
            logger.error("Database error upserting %s %s: %s", table, key, e.message)
            reason = SkipReason.DATABASE_ERROR
        return WriteResult(False, reason=reason, error=e.message, failed=[key])

    def _upsert_each(
        self,
        table: str,
        payload: list[dict],
        conflict_key: str,
        fk_reason: SkipReason,
    ) -> WriteResult:
        written = 0
        rejected: WriteResult | None = None
        failed: list[tuple] = []
        for row in payload:
            try:
                self.store.upsert_rows(table, [row], on_conflict=conflict_key)
            except APIError as e:
                rejected = self._rejected(table, e, fk_reason, _key_of(row, conflict_key))
                failed.extend(rejected.failed)
                continue
            except Exception as e:
                logger.error("Unexpected error upserting %s %s: %s", table, _key_of(row, conflict_key), e, exc_info=True)
                rejected = WriteResult.skipped(SkipReason.EXCEPTION, str(e))
                failed.append(_key_of(row, conflict_key))
                continue
            written += 1

        if rejected is None:
            return WriteResult.written(written)
        return WriteResult(False, count=written, reason=rejected.reason, error=rejected.error, failed=failed)

    # ── Parent lookups ───────────────────────────────────────────────────

    def missing_team_ids(self, team_ids: Iterable[int]) -> set[int]:
        """Team ids that exist neither in this run nor in the store."""
        unknown = {t for t in team_ids if t not in self._team_ids}
        if not unknown:
            return set()
        found = self.store.select_all("teams", "id", [("id", "in_", sorted(unknown))])
        existing = {r["id"] for r in found}
        self._team_ids |= existing
        return unknown - existing

    def match_exists(self, match_id: int) -> bool:
        if match_id in self._match_ids:
            return True
        if self.store.select_rows("matches", "id", {"id": match_id}):
            self._match_ids.add(match_id)
            return True
        return False

    # ── Entities ─────────────────────────────────────────────────────────

    def write_league(self, league: League) -> WriteResult:
        return self.upsert("leagues", [league])

    def write_teams(self, teams: Iterable[Team]) -> WriteResult:
        teams = list(teams)
        result = self.upsert("teams", teams)
        if result.ok:
            self._team_ids |= {t.id for t in teams}
        elif result.count:
            rejected = set(result.failed)
            self._team_ids |= {t.id for t in teams if (t.id,) not in rejected}
        return result

    def write_match(self, match: Match) -> WriteResult:
        """Write a match once both of its teams exist; otherwise nothing is written."""
        missing = self.missing_team_ids([match.home_team_id, match.away_team_id])
        if missing:
            logger.warning("Match %d skipped, teams not in database: %s", match.id, sorted(missing))
            return WriteResult.skipped(SkipReason.MISSING_TEAMS_IN_DB, f"teams {sorted(missing)}")

        row = _as_row(match)
        existing = self.store.select_rows("matches", "id,api_data", {"id": match.id})
        if existing:
            old = existing[0].get("api_data") or {}
            kept = {k: old[k] for k in ATTACHED_KEYS if k in old}
            row["api_data"] = {**(row.get("api_data") or {}), **kept}

        result = self.upsert("matches", [row], fk_reason=SkipReason.MISSING_TEAMS_IN_DB)
        if result.ok:
            self._match_ids.add(match.id)
        return result

    def _write_dependents(self, table: str, match_id: int, rows: list[BaseModel]) -> WriteResult:
        if not rows:
            return WriteResult.written(0)
        if not self.match_exists(match_id):
            logger.debug("%s for match %d skipped, match not in database", table, match_id)
            return WriteResult.skipped(SkipReason.MISSING_MATCH, f"match {match_id}")
        return self.upsert(table, rows, fk_reason=SkipReason.MISSING_MATCH)

    def write_highlights(self, match_id: int, highlights: list[Highlight]) -> WriteResult:
        return self._write_dependents("highlights", match_id, highlights)

    def write_events(self, match_id: int, events: list[MatchEvent]) -> WriteResult:
        return self._write_dependents("match_events", match_id, events)

    def write_lineups(self, match_id: int, lineups: list[MatchLineup]) -> WriteResult:
        return self._write_dependents("match_lineups", match_id, lineups)

    def write_standings(self, standings: list[Standing]) -> WriteResult:
        return self.upsert("standings", standings, fk_reason=SkipReason.MISSING_TEAMS_IN_DB)

    def write_team_forms(self, forms: list[TeamForm]) -> WriteResult:
        return self.upsert("team_form", forms, fk_reason=SkipReason.MISSING_TEAMS_IN_DB)

    def attach_to_match(
        self,
        match_id: int,
        key: str,
        payload: Any,
        flag: str | None = None,
    ) -> WriteResult:
        """Merge extra provider data into ``matches.api_data[key]`` and set a ``has_*`` flag."""
        try:
            rows = self.store.select_rows("matches", "id,api_data", {"id": match_id})
            if not rows:
                return WriteResult.skipped(SkipReason.MISSING_MATCH, f"match {match_id}")
            api_data = {**(rows[0].get("api_data") or {}), key: payload}
            values: dict[str, Any] = {"api_data": api_data, "updated_at": _now_iso()}
            if flag:
                values[flag] = True
            self.store.update_rows("matches", values, {"id": match_id})
        except APIError as e:
            logger.error("Database error attaching %s to match %d: %s", key, match_id, e.message)
            return WriteResult.skipped(SkipReason.DATABASE_ERROR, e.message)
        except Exception as e:
            logger.error("Error attaching %s to match %d: %s", key, match_id, e, exc_info=True)
            return WriteResult.skipped(SkipReason.EXCEPTION, str(e))
        return WriteResult.written()

    def set_match_flag(self, match_id: int, flag: str, value: bool = True) -> WriteResult:
        try:
            self.store.update_rows("matches", {flag: value, "updated_at": _now_iso()}, {"id": match_id})
        except APIError as e:
            logger.error("Database error flagging match %d %s: %s", match_id, flag, e.message)
            return WriteResult.skipped(SkipReason.DATABASE_ERROR, e.message)
        return WriteResult.written()

    def set_sync_status(
        self,
        table: str,
        status: str,
        records_synced: int = 0,
        total_records: int = 0,
        error: str | None = None,
    ) -> WriteResult:
        row = SyncStatus(
            table_name=table,
            status=status,
            records_synced=records_synced,
            total_records=total_records,
            error_message=error[:2000] if error else None,
            last_sync=_now_iso(),
        )
        return self.upsert("sync_status", [row])
