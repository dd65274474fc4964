"""Sync orchestrator: Highlightly → Supabase, one stage after another.

Stage order:
  leagues → teams → matches → highlights → events → lineups → statistics → h2h
  → standings → form

Each stage records itself in ``sync_status`` (running, then completed or
failed). A failing stage is logged and the remaining stages still run.
Records are processed one at a time; a bad record is counted under its skip
reason and never aborts the batch.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterator

from hlsync.ingestion.form import recompute_team_form
from hlsync.ingestion.highlightly_client import (
    PRIORITY_LEAGUES,
    HighlightlyClient,
    LeagueConfig,
    as_list,
)
from hlsync.ingestion.normalize import (
    SkipRecord,
    infer_season,
    match_teams,
    normalize_events,
    normalize_highlight,
    normalize_league,
    normalize_lineups,
    normalize_match,
    normalize_standings,
    normalize_team,
)
from hlsync.ingestion.writer import UpsertWriter
from hlsync.models.pipeline import SkipReason, WriteResult

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = (
    "leagues",
    "teams",
    "matches",
    "highlights",
    "events",
    "lineups",
    "statistics",
    "h2h",
    "standings",
    "form",
)

# Stage → sync_status.table_name
_STATUS_TABLE: dict[str, str] = {
    "leagues": "leagues",
    "teams": "teams",
    "matches": "matches",
    "highlights": "highlights",
    "events": "match_events",
    "lineups": "match_lineups",
    "statistics": "match_statistics",
    "h2h": "match_head_to_head",
    "standings": "standings",
    "form": "team_form",
}

# Per-match detail endpoints: stage → (endpoint template, matches flag column)
_DETAIL_STAGES: dict[str, tuple[str, str]] = {
    "events": ("/events/{id}", "has_events"),
    "lineups": ("/lineups/{id}", "has_lineups"),
    "statistics": ("/statistics/{id}", "has_statistics"),
}

# Head-to-head is fetched per team pair and kept under api_data.headToHead
H2H_ENDPOINT = "/head-2-head"
H2H_KEY = "headToHead"
H2H_FLAG = "has_head_to_head"

ProgressCallback = Callable[[str, str], None]


@dataclass
class SyncContext:
    """Everything a sync run needs; nothing is kept at module level."""

    client: HighlightlyClient
    writer: UpsertWriter
    leagues: list[LeagueConfig] = field(default_factory=lambda: list(PRIORITY_LEAGUES))
    seasons: list[str] = field(default_factory=list)
    dates: list[str] = field(default_factory=list)  # YYYY-MM-DD; empty → paginate whole season
    page_size: int = 100
    max_pages: int = 100
    force: bool = False
    progress: ProgressCallback | None = None
    seasons_explicit: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self.seasons_explicit = bool(self.seasons)
        if not self.seasons:
            days = {infer_season(date.fromisoformat(d)) for d in self.dates}
            self.seasons = sorted(days) or [infer_season(date.today())]

    def match_windows(self, league: LeagueConfig) -> list[tuple[str, dict[str, Any]]]:
        """(season, /matches params) pairs for a league.

        Each date is queried under its own season unless seasons were given
        explicitly. Without dates every season is paginated whole.
        """
        if not self.dates:
            return [(s, {"leagueId": league.id, "season": s}) for s in self.seasons]
        windows = []
        for d in self.dates:
            seasons = self.seasons if self.seasons_explicit else [infer_season(date.fromisoformat(d))]
            windows.extend((s, {"leagueId": league.id, "season": s, "date": d}) for s in seasons)
        return windows

    def notify(self, stage: str, message: str) -> None:
        if self.progress:
            self.progress(stage, message)


def resolve_leagues(keys: list[str] | None) -> list[LeagueConfig]:
    """Pick priority leagues by id or (case-insensitive) name; all when empty."""
    if not keys:
        return list(PRIORITY_LEAGUES)
    selected: list[LeagueConfig] = []
    for key in keys:
        k = key.strip().lower()
        match = next(
            (lg for lg in PRIORITY_LEAGUES if str(lg.id) == k or lg.name.lower() == k),
            None,
        )
        if match is None:
            available = ", ".join(f"{lg.id} ({lg.name})" for lg in PRIORITY_LEAGUES)
            raise ValueError(f"Unknown league {key!r}. Available: {available}")
        if match not in selected:
            selected.append(match)
    return selected


def iter_pages(
    client: HighlightlyClient,
    endpoint: str,
    params: dict[str, Any],
    page_size: int = 100,
    max_pages: int = 100,
) -> Iterator[list[dict]]:
    """Yield one list of records per page of a limit/offset endpoint.

    With ``pagination.total`` in the body there is more while
    ``offset + limit < total``; without it a full page means more.
    """
    offset = 0
    for _ in range(max_pages):
        body = client.fetch(endpoint, {**params, "limit": page_size, "offset": offset})
        if body is None:
            return
        records = [r for r in as_list(body) if isinstance(r, dict)]
        if records:
            yield records

        pagination = body.get("pagination") if isinstance(body, dict) else None
        if isinstance(pagination, dict) and pagination.get("total") is not None:
            limit = int(pagination.get("limit") or page_size)
            page_offset = int(pagination.get("offset") or offset)
            has_more = page_offset + limit < int(pagination["total"])
        else:
            limit = page_size
            has_more = len(records) >= page_size
        if not has_more:
            return
        offset += limit

    logger.warning("Stopped %s %s after %d pages", endpoint, params, max_pages)


# ── Stats ────────────────────────────────────────────────────────────────────


def _new_league_stats() -> dict[str, Any]:
    return {
        "matches_processed": 0,
        "matches_saved": 0,
        "unique_teams": set(),
        "highlights": 0,
        "events": 0,
        "lineups": 0,
        "statistics": 0,
        "h2h": 0,
        "standings": 0,
        "skips": Counter(),
    }


def _new_stats() -> dict[str, Any]:
    return {
        "stages": {},
        "per_league": defaultdict(_new_league_stats),
        "skips": Counter(),
        "errors": 0,
    }


def _record_skip(stats: dict, league: LeagueConfig | None, result: WriteResult) -> None:
    reason = (result.reason or SkipReason.EXCEPTION).value
    n = result.skipped_count or 1
    stats["skips"][reason] += n
    if league is not None:
        stats["per_league"][league.name]["skips"][reason] += n


def _written_team_ids(teams: list, result: WriteResult) -> set[int]:
    if not result.ok and not result.count:
        return set()
    rejected = set(result.failed)
    return {t.id for t in teams if (t.id,) not in rejected}


def _finalize(stats: dict) -> dict[str, Any]:
    per_league: dict[str, dict] = {}
    for name, ls in stats["per_league"].items():
        processed = ls["matches_processed"]
        per_league[name] = {
            **ls,
            "unique_teams": len(ls["unique_teams"]),
            "success_rate": round(100.0 * ls["matches_saved"] / processed, 1) if processed else 0.0,
            "skips": dict(ls["skips"]),
        }
    stats["per_league"] = per_league
    stats["skips"] = dict(stats["skips"])
    stats["matches_processed"] = sum(ls["matches_processed"] for ls in per_league.values())
    stats["matches_saved"] = sum(ls["matches_saved"] for ls in per_league.values())
    return stats


def _league_seasons(ctx: SyncContext) -> Iterator[tuple[LeagueConfig, str]]:
    for league in ctx.leagues:
        for season in ctx.seasons:
            yield league, season


# ── Stages ───────────────────────────────────────────────────────────────────


def sync_leagues(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    written = 0
    for cfg in ctx.leagues:
        raw = ctx.client.call(f"/leagues/{cfg.id}")
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        if not isinstance(raw, dict) or raw.get("id") is None:
            logger.warning("No league payload for %s (%d), using configured values", cfg.name, cfg.id)
            raw = {"id": cfg.id, "name": cfg.name, "country": {"name": cfg.country}}

        result = ctx.writer.write_league(normalize_league(raw, fallback_name=cfg.name))
        if result.ok:
            written += 1
        else:
            _record_skip(stats, cfg, result)
        ctx.notify("leagues", f"{cfg.name}: {'ok' if result.ok else result.reason.value}")
    return written, len(ctx.leagues)


def sync_teams(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    written = total = 0
    for league in ctx.leagues:
        for page in iter_pages(ctx.client, "/teams", {"leagueId": league.id}, ctx.page_size, ctx.max_pages):
            teams = []
            for raw in page:
                try:
                    teams.append(normalize_team(raw, league.id))
                except SkipRecord as e:
                    _record_skip(stats, league, WriteResult.skipped(e.reason, e.detail))
            total += len(page)
            result = ctx.writer.write_teams(teams)
            written += result.count
            stats["per_league"][league.name]["unique_teams"].update(_written_team_ids(teams, result))
            if not result.ok:
                _record_skip(stats, league, result)
        ctx.notify("teams", f"{league.name}: {len(stats['per_league'][league.name]['unique_teams'])} teams")
    return written, total


def _sync_match(ctx: SyncContext, raw: dict, league: LeagueConfig, season: str, stats: dict) -> WriteResult:
    ls = stats["per_league"][league.name]
    ls["matches_processed"] += 1
    try:
        match = normalize_match(raw, league.id, season)
        home, away = match_teams(raw)
        teams = [normalize_team(home, league.id), normalize_team(away, league.id)]
        team_result = ctx.writer.write_teams(teams)
        ls["unique_teams"].update(_written_team_ids(teams, team_result))
        result = ctx.writer.write_match(match)
    except SkipRecord as e:
        logger.warning("Skipping match %s: %s", raw.get("id"), e)
        result = WriteResult.skipped(e.reason, e.detail)
    except Exception as e:
        logger.error("Error processing match %s: %s", raw.get("id"), e, exc_info=True)
        result = WriteResult.skipped(SkipReason.EXCEPTION, str(e))

    if result.ok:
        ls["matches_saved"] += 1
    else:
        _record_skip(stats, league, result)
    return result


def sync_matches(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    saved = processed = 0
    for league in ctx.leagues:
        for season, params in ctx.match_windows(league):
            for page in iter_pages(ctx.client, "/matches", params, ctx.page_size, ctx.max_pages):
                for raw in page:
                    processed += 1
                    if _sync_match(ctx, raw, league, season, stats).ok:
                        saved += 1
        ls = stats["per_league"][league.name]
        ctx.notify(
            "matches",
            f"{league.name} {', '.join(ctx.seasons)}: {ls['matches_saved']}/{ls['matches_processed']} saved",
        )
    return saved, processed


def sync_highlights(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    written = total = 0
    for league, season in _league_seasons(ctx):
        params = {"leagueId": league.id, "season": season}
        for page in iter_pages(ctx.client, "/highlights", params, ctx.page_size, ctx.max_pages):
            by_match: dict[int, list] = defaultdict(list)
            for raw in page:
                hl = normalize_highlight(raw)
                if hl is not None:
                    by_match[hl.match_id].append(hl)
            total += len(page)

            for match_id, rows in by_match.items():
                result = ctx.writer.write_highlights(match_id, rows)
                if not result.ok:
                    _record_skip(stats, league, result)
                    continue
                written += result.count
                stats["per_league"][league.name]["highlights"] += result.count
                ctx.writer.set_match_flag(match_id, "has_highlights")
        ctx.notify("highlights", f"{league.name} {season}: {stats['per_league'][league.name]['highlights']}")
    return written, total


def _stored_matches(ctx: SyncContext, finished_only: bool = True) -> list[dict]:
    filters: list[tuple[str, str, Any]] = [
        ("league_id", "in_", [lg.id for lg in ctx.leagues]),
        ("season", "in_", list(ctx.seasons)),
    ]
    if finished_only:
        filters.insert(0, ("status", "eq", "finished"))
    return ctx.writer.store.select_all(
        "matches",
        f"id,league_id,home_team_id,away_team_id,has_events,has_lineups,has_statistics,{H2H_FLAG}",
        filters,
        order_col="id",
    )


def _sync_match_detail(ctx: SyncContext, stage: str, stats: dict) -> tuple[int, int]:
    endpoint, flag = _DETAIL_STAGES[stage]
    leagues = {lg.id: lg for lg in ctx.leagues}
    candidates = _stored_matches(ctx)
    pending = [m for m in candidates if ctx.force or not m.get(flag)]
    logger.info("%s: %d finished matches, %d to fetch", stage, len(candidates), len(pending))

    done = 0
    for m in pending:
        match_id = m["id"]
        league = leagues.get(m["league_id"])
        raw = ctx.client.call(endpoint.format(id=match_id))
        if raw is None:
            continue

        try:
            if stage == "events":
                result = ctx.writer.write_events(match_id, normalize_events(as_list(raw), match_id))
            elif stage == "lineups":
                rows = normalize_lineups(raw, match_id, m["home_team_id"], m["away_team_id"])
                result = ctx.writer.write_lineups(match_id, rows)
            else:
                result = WriteResult.written()
            if result.ok:
                result = ctx.writer.attach_to_match(match_id, stage, raw, flag)
        except Exception as e:
            logger.error("Error syncing %s for match %d: %s", stage, match_id, e, exc_info=True)
            result = WriteResult.skipped(SkipReason.EXCEPTION, str(e))

        if result.ok:
            done += 1
            if league is not None:
                stats["per_league"][league.name][stage] += 1
        else:
            _record_skip(stats, league, result)

    ctx.notify(stage, f"{done}/{len(pending)} matches")
    return done, len(pending)


def sync_events(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    return _sync_match_detail(ctx, "events", stats)


def sync_lineups(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    return _sync_match_detail(ctx, "lineups", stats)


def sync_statistics(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    return _sync_match_detail(ctx, "statistics", stats)


def sync_head_to_head(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    """Attach head-to-head history to every stored match of the selected seasons.

    The endpoint is keyed by team pair, so each pair is fetched once per run
    whichever side is at home.
    """
    leagues = {lg.id: lg for lg in ctx.leagues}
    candidates = _stored_matches(ctx, finished_only=False)
    pending = [m for m in candidates if ctx.force or not m.get(H2H_FLAG)]
    logger.info("h2h: %d matches, %d to fetch", len(candidates), len(pending))

    by_pair: dict[frozenset, Any] = {}
    done = 0
    for m in pending:
        match_id = m["id"]
        league = leagues.get(m["league_id"])
        pair = frozenset((m["home_team_id"], m["away_team_id"]))
        if pair not in by_pair:
            by_pair[pair] = ctx.client.call(
                H2H_ENDPOINT,
                {"teamIdOne": m["home_team_id"], "teamIdTwo": m["away_team_id"]},
            )
        raw = by_pair[pair]
        if raw is None:
            continue

        result = ctx.writer.attach_to_match(match_id, H2H_KEY, raw, H2H_FLAG)
        if result.ok:
            done += 1
            if league is not None:
                stats["per_league"][league.name]["h2h"] += 1
        else:
            _record_skip(stats, league, result)

    ctx.notify("h2h", f"{done}/{len(pending)} matches, {len(by_pair)} pairs")
    return done, len(pending)


def sync_standings(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    written = total = 0
    for league, season in _league_seasons(ctx):
        raw = ctx.client.call("/standings", {"leagueId": league.id, "season": season})
        if raw is None:
            continue
        teams, rows = normalize_standings(raw, league.id, season)
        total += len(rows)
        if teams:
            ctx.writer.write_teams(teams)
        result = ctx.writer.write_standings(rows)
        written += result.count
        stats["per_league"][league.name]["standings"] += result.count
        if not result.ok:
            _record_skip(stats, league, result)
        ctx.notify("standings", f"{league.name} {season}: {len(rows)} rows")
    return written, total


def sync_form(ctx: SyncContext, stats: dict) -> tuple[int, int]:
    form_stats = recompute_team_form(ctx.writer)
    stats["form"] = form_stats
    ctx.notify("form", f"{form_stats['written']}/{form_stats['forms']} rows")
    if form_stats["errors"]:
        stats["skips"][form_stats["reason"]] += form_stats["errors"]
        if not form_stats["written"]:
            raise RuntimeError("team_form upsert failed")
    return form_stats["written"], form_stats["forms"]


_STAGE_FUNCS: dict[str, Callable[[SyncContext, dict], tuple[int, int]]] = {
    "leagues": sync_leagues,
    "teams": sync_teams,
    "matches": sync_matches,
    "highlights": sync_highlights,
    "events": sync_events,
    "lineups": sync_lineups,
    "statistics": sync_statistics,
    "h2h": sync_head_to_head,
    "standings": sync_standings,
    "form": sync_form,
}


# ── Run ──────────────────────────────────────────────────────────────────────


def _run_stage(ctx: SyncContext, name: str, stats: dict) -> None:
    table = _STATUS_TABLE[name]
    ctx.notify(name, "starting")
    ctx.writer.set_sync_status(table, "running")
    try:
        written, total = _STAGE_FUNCS[name](ctx, stats)
    except Exception as e:
        logger.error("Stage %s failed: %s", name, e, exc_info=True)
        ctx.writer.set_sync_status(table, "failed", error=str(e))
        stats["stages"][name] = {"status": "failed", "records": 0, "total": 0, "error": str(e)}
        stats["errors"] += 1
        return

    ctx.writer.set_sync_status(table, "completed", records_synced=written, total_records=total)
    stats["stages"][name] = {"status": "completed", "records": written, "total": total}
    logger.info("Stage %s completed: %d/%d records", name, written, total)


def run(ctx: SyncContext, stages: list[str] | None = None) -> dict[str, Any]:
    """Run the requested stages (default: all) in canonical order.

    Returns a summary dict with per-stage counts, a ``per_league`` breakdown,
    skip-reason counts and the number of failed stages.
    """
    requested = set(stages or STAGES)
    unknown = requested - set(STAGES)
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(sorted(unknown))}. Available: {', '.join(STAGES)}")

    stats = _new_stats()
    logger.info(
        "Sync starting: leagues=%s seasons=%s dates=%s stages=%s",
        [lg.id for lg in ctx.leagues], ctx.seasons, ctx.dates or "all", sorted(requested),
    )
    for name in STAGES:
        if name in requested:
            _run_stage(ctx, name, stats)

    return _finalize(stats)
