"""Team form rollup: last-N finished matches per team, folded chronologically."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import polars as pl

from hlsync.ingestion.writer import UpsertWriter
from hlsync.models.standings import TeamForm

logger = logging.getLogger(__name__)

FORM_WINDOW = 10

MATCH_COLUMNS = "id,league_id,season,home_team_id,away_team_id,match_date,home_score,away_score,status"

_SCHEMA: dict[str, Any] = {
    "id": pl.Int64,
    "league_id": pl.Int64,
    "season": pl.Utf8,
    "home_team_id": pl.Int64,
    "away_team_id": pl.Int64,
    "match_date": pl.Utf8,
    "home_score": pl.Int64,
    "away_score": pl.Int64,
}


def _to_frame(matches: list[dict]) -> pl.DataFrame:
    rows = [
        {
            **{k: m.get(k) for k in _SCHEMA},
            "season": str(m["season"]) if m.get("season") is not None else None,
        }
        for m in matches
    ]
    return pl.DataFrame(rows, schema=_SCHEMA)


def unpivot_to_team_perspective(df: pl.DataFrame) -> pl.DataFrame:
    """Two rows per match, one from each team's point of view, sorted chronologically."""
    shared = [pl.col("id").alias("match_id"), pl.col("league_id"), pl.col("season"), pl.col("match_date")]

    home = df.select(
        *shared,
        pl.col("home_team_id").alias("team_id"),
        pl.col("away_team_id").alias("opponent_id"),
        pl.lit(True).alias("is_home"),
        pl.col("home_score").alias("goals_for"),
        pl.col("away_score").alias("goals_against"),
    )
    away = df.select(
        *shared,
        pl.col("away_team_id").alias("team_id"),
        pl.col("home_team_id").alias("opponent_id"),
        pl.lit(False).alias("is_home"),
        pl.col("away_score").alias("goals_for"),
        pl.col("home_score").alias("goals_against"),
    )

    return (
        pl.concat([home, away])
        .with_columns(
            pl.when(pl.col("goals_for") > pl.col("goals_against"))
            .then(pl.lit("W"))
            .when(pl.col("goals_for") == pl.col("goals_against"))
            .then(pl.lit("D"))
            .otherwise(pl.lit("L"))
            .alias("result"),
        )
        .sort(["team_id", "match_date", "match_id"])
    )


def compute_team_form(
    matches: list[dict],
    window: int = FORM_WINDOW,
    computed_at: datetime | None = None,
) -> list[TeamForm]:
    """Build TeamForm rows from finished match rows.

    One row per team and season, over that season's last ``window``
    matches. Matches without both scores are ignored. ``form_string`` runs
    oldest first, most recent last; ``league_id`` is that of the team's most
    recent counted match in the season.
    """
    if not matches:
        return []
    computed_at = computed_at or datetime.now(timezone.utc)

    df = _to_frame(matches).filter(
        pl.col("home_score").is_not_null()
        & pl.col("away_score").is_not_null()
        & pl.col("season").is_not_null()
    )
    if df.is_empty():
        return []

    recent = (
        unpivot_to_team_perspective(df)
        .group_by(["team_id", "season"], maintain_order=True)
        .tail(window)
    )

    summary = (
        recent.group_by(["team_id", "season"], maintain_order=True)
        .agg(
            pl.col("league_id").last(),
            pl.len().alias("last_10_played"),
            (pl.col("result") == "W").sum().alias("last_10_won"),
            (pl.col("result") == "D").sum().alias("last_10_drawn"),
            (pl.col("result") == "L").sum().alias("last_10_lost"),
            pl.col("goals_for").sum().alias("last_10_goals_for"),
            pl.col("goals_against").sum().alias("last_10_goals_against"),
            (pl.col("goals_against") == 0).sum().alias("last_10_clean_sheets"),
            (pl.col("goals_for") == 0).sum().alias("last_10_failed_to_score"),
            pl.col("result").alias("form_string"),
            pl.struct(
                "match_id", "match_date", "opponent_id", "is_home",
                "goals_for", "goals_against", "result",
            ).alias("recent_matches"),
        )
        .with_columns(pl.col("form_string").list.join(""))
    )

    return [TeamForm(computed_at=computed_at, **row) for row in summary.to_dicts()]


def recompute_team_form(writer: UpsertWriter, window: int = FORM_WINDOW) -> dict[str, Any]:
    """Full scan of finished matches, then upsert every team's form row."""
    matches = writer.store.select_all(
        "matches",
        MATCH_COLUMNS,
        [("status", "eq", "finished")],
        order_col="id",
    )
    logger.info("Computing team form from %d finished matches", len(matches))

    forms = compute_team_form(matches, window=window)
    result = writer.write_team_forms(forms)
    if not result.ok:
        logger.error(
            "Team form upsert rejected %d row(s) (%s): %s",
            result.skipped_count, result.reason.value, result.error,
        )

    return {
        "matches_scanned": len(matches),
        "forms": len(forms),
        "written": result.count,
        "errors": result.skipped_count,
        "reason": result.reason.value if result.reason else None,
    }
