"""Models for league standings and the derived team form rollup."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class Standing(BaseModel):
    league_id: int
    season: str
    team_id: int
    position: int
    points: int = 0

    # Overall
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0

    # Home
    home_played: int = 0
    home_won: int = 0
    home_drawn: int = 0
    home_lost: int = 0
    home_goals_for: int = 0
    home_goals_against: int = 0

    # Away
    away_played: int = 0
    away_won: int = 0
    away_drawn: int = 0
    away_lost: int = 0
    away_goals_for: int = 0
    away_goals_against: int = 0

    form_string: str | None = None
    group_name: str | None = None
    status: str | None = None
    api_data: dict[str, Any] | None = None


class TeamForm(BaseModel):
    team_id: int
    season: str
    league_id: int | None = None
    last_10_played: int = 0
    last_10_won: int = 0
    last_10_drawn: int = 0
    last_10_lost: int = 0
    last_10_goals_for: int = 0
    last_10_goals_against: int = 0
    last_10_clean_sheets: int = 0
    last_10_failed_to_score: int = 0
    form_string: str = ""  # oldest first, most recent last
    recent_matches: list[dict[str, Any]] = []
    computed_at: datetime
