"""Shared pytest fixtures and in-memory stand-ins for Supabase and the API."""

from __future__ import annotations

import copy
import os
from collections import defaultdict
from typing import Any

import pytest
from postgrest.exceptions import APIError

# Set required environment variables before any imports
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("HIGHLIGHTLY_API_KEY", "test-api-key")

from hlsync.ingestion.highlightly_client import unwrap  # noqa: E402
from hlsync.ingestion.writer import CONFLICT_KEYS  # noqa: E402

VOLATILE_COLUMNS = ("updated_at", "last_sync", "computed_at")


class FakeStore:
    """In-memory replacement for ``hlsync.db``.

    Upserts merge into existing rows like ``ON CONFLICT DO UPDATE`` and the
    matches → teams foreign key is enforced with a real postgrest APIError.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple, dict]] = defaultdict(dict)
        self.upserts: list[tuple[str, int]] = []

    # -- helpers ----------------------------------------------------------

    def rows(self, table: str) -> list[dict]:
        return list(self.tables[table].values())

    def insert(self, table: str, *rows: dict) -> None:
        keys = CONFLICT_KEYS[table].split(",")
        for r in rows:
            self.tables[table][tuple(r[k] for k in keys)] = dict(r)

    def snapshot(self) -> dict[str, list[dict]]:
        """All tables with volatile timestamp columns dropped, for comparisons."""
        return {
            table: sorted(
                ({k: v for k, v in r.items() if k not in VOLATILE_COLUMNS} for r in rows.values()),
                key=repr,
            )
            for table, rows in self.tables.items()
        }

    @staticmethod
    def _project(row: dict, columns: str) -> dict:
        if columns.strip() == "*":
            return dict(row)
        return {c.strip(): row.get(c.strip()) for c in columns.split(",")}

    @staticmethod
    def _matches(row: dict, filters: list[tuple[str, str, Any]] | None) -> bool:
        for col, op, val in filters or []:
            v = row.get(col)
            if op == "eq" and v != val:
                return False
            if op == "in_" and v not in val:
                return False
            if op == "is_" and v is not None:
                return False
            if op == "gte" and (v is None or v < val):
                return False
            if op == "lte" and (v is None or v > val):
                return False
        return True

    def _check_fk(self, table: str, row: dict) -> None:
        if table != "matches":
            return
        for col in ("home_team_id", "away_team_id"):
            if (row.get(col),) not in self.tables["teams"]:
                raise APIError({
                    "message": f'insert or update on table "matches" violates foreign key constraint "matches_{col}_fkey"',
                    "code": "23503",
                    "hint": None,
                    "details": f"Key ({col})=({row.get(col)}) is not present in table \"teams\".",
                })

    # -- hlsync.db interface ---------------------------------------------

    def upsert_rows(self, table: str, rows: list[dict], on_conflict: str) -> list[dict]:
        for r in rows:
            self._check_fk(table, r)
        keys = on_conflict.split(",")
        for r in rows:
            key = tuple(r[k] for k in keys)
            self.tables[table][key] = {**self.tables[table].get(key, {}), **copy.deepcopy(r)}
        self.upserts.append((table, len(rows)))
        return rows

    def select_rows(self, table: str, columns: str = "*", filters: dict | None = None) -> list[dict]:
        return [
            self._project(r, columns)
            for r in self.rows(table)
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]

    def select_all(
        self,
        table: str,
        columns: str = "*",
        filters: list[tuple[str, str, Any]] | None = None,
        order_col: str = "id",
    ) -> list[dict]:
        found = [r for r in self.rows(table) if self._matches(r, filters)]
        found.sort(key=lambda r: (r.get(order_col) is None, r.get(order_col)))
        return [self._project(r, columns) for r in found]

    def update_rows(self, table: str, values: dict, filters: dict) -> list[dict]:
        updated = []
        for r in self.rows(table):
            if all(r.get(k) == v for k, v in filters.items()):
                r.update(copy.deepcopy(values))
                updated.append(r)
        return updated

    def count_rows(self, table: str) -> int:
        return len(self.tables[table])


class FakeClient:
    """Scripted Highlightly client keyed by endpoint.

    A route is either a JSON body or a callable ``(params) -> body``.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = routes or {}
        self.calls: list[tuple[str, dict]] = []

    def fetch(self, endpoint: str, params: dict | None = None) -> Any:
        params = dict(params or {})
        self.calls.append((endpoint, params))
        route = self.routes.get(endpoint)
        if callable(route):
            return route(params)
        return copy.deepcopy(route)

    def call(self, endpoint: str, params: dict | None = None) -> Any:
        return unwrap(self.fetch(endpoint, params))

    def calls_to(self, endpoint: str) -> list[dict]:
        return [p for e, p in self.calls if e == endpoint]


class FakeClock:
    """Monotonic clock whose ``sleep`` just advances time."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_match():
    """A finished Premier League match in the current API shape."""
    return {
        "id": 1001,
        "round": "Regular Season - 4",
        "date": "2024-09-14T14:00:00.000Z",
        "league": {"id": 33973, "name": "Premier League", "season": 2024},
        "homeTeam": {"id": 10, "name": "Arsenal", "logo": "https://img/10.png"},
        "awayTeam": {"id": 20, "name": "Chelsea", "logo": "https://img/20.png"},
        "state": {
            "description": "Finished",
            "clock": 90,
            "score": {"current": "2 - 1", "penalties": None},
        },
    }


@pytest.fixture
def sample_team():
    return {"id": 10, "name": "Arsenal", "logo": "https://img/10.png"}
