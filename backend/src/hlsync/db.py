"""Supabase client helpers.

The writer and the sync stages only talk to the store through the functions
below, so tests can swap this module for an in-memory stand-in.
"""

from __future__ import annotations

from typing import Any

from supabase import Client, create_client

from hlsync.config import get_settings

PAGE_SIZE = 1000

_client: Client | None = None


def get_client() -> Client:
    """Return a singleton Supabase client."""
    global _client
    if _client is None:
        s = get_settings()
        _client = create_client(s.supabase_url, s.supabase_key)
    return _client


def _table(name: str):
    """Return a table query builder scoped to the configured schema."""
    return get_client().schema(get_settings().supabase_schema).table(name)


def _apply_filters(q, filters: list[tuple[str, str, Any]] | None):
    for col, op, val in filters or []:
        if op == "eq":
            q = q.eq(col, val)
        elif op == "is_":
            q = q.is_(col, val)
        elif op == "in_":
            q = q.in_(col, val)
        elif op == "gte":
            q = q.gte(col, val)
        elif op == "lte":
            q = q.lte(col, val)
        else:
            raise ValueError(f"Unsupported filter op: {op}")
    return q


def upsert_rows(table: str, rows: list[dict], on_conflict: str) -> list[dict]:
    """Upsert rows into a table, returning the upserted records."""
    if not rows:
        return []
    return (
        _table(table)
        .upsert(rows, on_conflict=on_conflict)
        .execute()
        .data
    )


def select_rows(
    table: str,
    columns: str = "*",
    filters: dict | None = None,
) -> list[dict]:
    """Simple select with optional equality filters."""
    q = _table(table).select(columns)
    for k, v in (filters or {}).items():
        q = q.eq(k, v)
    return q.execute().data


def select_all(
    table: str,
    columns: str = "*",
    filters: list[tuple[str, str, Any]] | None = None,
    order_col: str = "id",
) -> list[dict]:
    """Fetch all rows from a table with pagination (Supabase caps at 1000)."""
    all_rows: list[dict] = []
    offset = 0

    while True:
        q = _table(table).select(columns).order(order_col).range(offset, offset + PAGE_SIZE - 1)
        rows = _apply_filters(q, filters).execute().data
        all_rows.extend(rows)
        if len(rows) < PAGE_SIZE:
            break
        offset += PAGE_SIZE

    return all_rows


def update_rows(
    table: str,
    values: dict,
    filters: dict,
) -> list[dict]:
    """Update rows matching equality filters. Returns updated records."""
    q = _table(table).update(values)
    for k, v in filters.items():
        q = q.eq(k, v)
    return q.execute().data


def count_rows(table: str) -> int:
    """Exact row count of a table."""
    resp = _table(table).select("*", count="exact", head=True).execute()
    return resp.count or 0
