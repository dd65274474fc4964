"""Models for leagues, teams, matches and the per-match tables."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


class League(BaseModel):
    id: int
    name: str
    logo: str | None = None
    country_code: str | None = None
    country_name: str | None = None
    country_logo: str | None = None
    current_season: str | None = None
    api_data: dict[str, Any] | None = None


class Team(BaseModel):
    id: int
    name: str
    logo: str | None = None
    league_id: int | None = None  # soft reference, a team can play in several leagues
    api_data: dict[str, Any] | None = None


class Match(BaseModel):
    id: int
    league_id: int
    season: str
    home_team_id: int
    away_team_id: int
    match_date: str | None = None  # ISO 8601, UTC
    match_time: str | None = None  # HH:MM, UTC
    status: MatchStatus = MatchStatus.SCHEDULED
    home_score: int | None = None
    away_score: int | None = None
    round: str | None = None
    venue: str | None = None
    api_data: dict[str, Any] | None = None


class Highlight(BaseModel):
    id: int
    match_id: int
    title: str | None = None
    url: str | None = None
    embed_url: str | None = None
    thumbnail: str | None = None
    duration: int | None = None
    views: int = 0
    quality: str | None = None
    source: str | None = None
    api_data: dict[str, Any] | None = None


class MatchEvent(BaseModel):
    id: str  # derived: match_minute_added_type_player, sanitized
    match_id: int
    team_id: int | None = None
    player_id: int | None = None
    player_name: str | None = None
    assist_player_id: int | None = None
    assist_player_name: str | None = None
    event_type: str = "unknown"
    minute: int | None = None
    added_time: int = 0
    description: str | None = None
    api_data: dict[str, Any] | None = None


class MatchLineup(BaseModel):
    match_id: int
    team_id: int
    is_home: bool
    formation: str | None = None
    starting_eleven: list[Any] = []
    substitutes: list[Any] = []
    coach: Any = None
    api_data: dict[str, Any] | None = None
