"""Map Highlightly payloads onto our table rows.

The provider has changed its JSON shapes several times. Every field is read
through an ordered list of known shapes; the first one that yields a value
wins, otherwise a default applies. Nothing in here talks to the network or
the database.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable

from hlsync.models.matches import (
    Highlight,
    League,
    Match,
    MatchEvent,
    MatchLineup,
    MatchStatus,
    Team,
)
from hlsync.models.pipeline import SkipReason
from hlsync.models.standings import Standing

logger = logging.getLogger(__name__)


class SkipRecord(Exception):
    """A provider record that cannot be turned into a row."""

    def __init__(self, reason: SkipReason, detail: str = "") -> None:
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


# ── Generic helpers ──────────────────────────────────────────────────────────


def _dig(obj: Any, *path: str) -> Any:
    """Follow a key path through nested dicts, None if any hop is missing."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _first(*values: Any) -> Any:
    """First value that is not None."""
    for v in values:
        if v is not None:
            return v
    return None


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        m = re.match(r"^\s*(-?\d+)", value)
        return int(m.group(1)) if m else None
    return None


def _sanitize_id(raw: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "", raw)


# ── Scores ───────────────────────────────────────────────────────────────────

_SCORE_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")

ScorePair = tuple[int | None, int | None]


def parse_score_string(value: Any) -> ScorePair:
    """Parse "H - A" into (home, away); anything else gives (None, None)."""
    if not isinstance(value, str):
        return None, None
    m = _SCORE_RE.match(value)
    if not m:
        return None, None
    return int(m.group(1)), int(m.group(2))


def _pair(home: Any, away: Any) -> ScorePair:
    return _to_int(home), _to_int(away)


# Priority order: current API first, legacy shapes after
_SCORE_SHAPES: list[tuple[str, Callable[[dict], ScorePair]]] = [
    ("state.score.current", lambda m: parse_score_string(_dig(m, "state", "score", "current"))),
    ("homeScore/awayScore", lambda m: _pair(m.get("homeScore"), m.get("awayScore"))),
    ("state.result", lambda m: parse_score_string(_dig(m, "state", "result"))),
    ("score.home/away", lambda m: _pair(_dig(m, "score", "home"), _dig(m, "score", "away"))),
    ("goals.home/away", lambda m: _pair(_dig(m, "goals", "home"), _dig(m, "goals", "away"))),
]


def extract_score(raw: dict) -> ScorePair:
    for _label, shape in _SCORE_SHAPES:
        home, away = shape(raw)
        if home is not None and away is not None:
            return home, away
    return None, None


# ── Status ───────────────────────────────────────────────────────────────────

# Checked in this order; the first group with a hit wins. The loose live
# words ("half", "break") come last so "abandoned in second half" is cancelled.
_STATUS_VOCABULARY: list[tuple[MatchStatus, tuple[str, ...], frozenset[str]]] = [
    (
        MatchStatus.FINISHED,
        ("finished", "full time", "after extra time", "after penalties"),
        frozenset({"ft", "aet", "pen"}),
    ),
    (
        MatchStatus.POSTPONED,
        ("postponed", "suspended", "interrupted", "delayed"),
        frozenset({"pst", "susp", "int"}),
    ),
    (
        MatchStatus.CANCELLED,
        ("cancelled", "canceled", "abandoned"),
        frozenset({"canc", "abd"}),
    ),
    (
        MatchStatus.LIVE,
        ("live", "in progress", "half", "extra time", "penalties", "break"),
        frozenset({"1h", "2h", "ht", "et", "bt", "p"}),
    ),
]


def classify_status(text: Any) -> MatchStatus:
    """Classify a free-text provider status. Unknown text is ``scheduled``."""
    if not isinstance(text, str) or not text.strip():
        return MatchStatus.SCHEDULED
    lowered = text.strip().lower()
    for status, phrases, codes in _STATUS_VOCABULARY:
        if lowered in codes or any(p in lowered for p in phrases):
            return status
    return MatchStatus.SCHEDULED


def _status_text(raw: dict) -> str | None:
    result = _dig(raw, "state", "result")
    if isinstance(result, str) and parse_score_string(result) != (None, None):
        result = None
    status = raw.get("status")
    if isinstance(status, dict):
        status = _first(status.get("long"), status.get("short"))
    return _first(
        _dig(raw, "state", "description"),
        result,
        status,
        _dig(raw, "fixture", "status", "long"),
        _dig(raw, "fixture", "status", "short"),
    )


# ── Dates & seasons ──────────────────────────────────────────────────────────


def parse_kickoff(value: Any, time_value: Any = None) -> datetime | None:
    """Parse a provider date (ISO string, date + time, or epoch) as UTC."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip().replace("Z", "+00:00")
    if "T" not in text and " " not in text and isinstance(time_value, str) and time_value:
        text = f"{text}T{time_value.strip()}"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable kickoff %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def infer_season(day: date | datetime) -> str:
    """Season start year: January-May belong to the season started the year before."""
    return str(day.year - 1 if day.month <= 5 else day.year)


# ── Leagues & teams ──────────────────────────────────────────────────────────


def normalize_league(raw: dict, fallback_name: str | None = None) -> League:
    country = raw.get("country") if isinstance(raw.get("country"), dict) else {}
    seasons = [
        _to_int(s.get("season") if isinstance(s, dict) else s)
        for s in raw.get("seasons") or []
    ]
    seasons = [s for s in seasons if s is not None]
    return League(
        id=_to_int(raw.get("id")),
        name=raw.get("name") or fallback_name or f"League-{raw.get('id')}",
        logo=raw.get("logo"),
        country_code=country.get("code"),
        country_name=country.get("name"),
        country_logo=country.get("logo"),
        current_season=str(max(seasons)) if seasons else None,
        api_data=raw,
    )


def normalize_team(raw: dict, league_id: int | None = None) -> Team:
    team_id = _to_int(raw.get("id"))
    if team_id is None:
        raise SkipRecord(SkipReason.MISSING_TEAMS, "team without id")
    return Team(
        id=team_id,
        name=raw.get("name") or f"Unknown-{team_id}",
        logo=raw.get("logo"),
        league_id=league_id,
        api_data=raw,
    )


def match_teams(raw: dict) -> tuple[dict | None, dict | None]:
    """Home and away team objects of a match payload."""
    home = _first(raw.get("homeTeam"), _dig(raw, "teams", "home"))
    away = _first(raw.get("awayTeam"), _dig(raw, "teams", "away"))
    return (
        home if isinstance(home, dict) else None,
        away if isinstance(away, dict) else None,
    )


# ── Matches ──────────────────────────────────────────────────────────────────


def normalize_match(
    raw: dict,
    league_id: int | None = None,
    season: str | None = None,
) -> Match:
    """Build a matches row. Raises SkipRecord when a team reference is missing."""
    match_id = _to_int(raw.get("id"))
    if match_id is None:
        raise SkipRecord(SkipReason.EXCEPTION, "match without id")

    home, away = match_teams(raw)
    home_id = _to_int(home.get("id")) if home else None
    away_id = _to_int(away.get("id")) if away else None
    if home_id is None or away_id is None:
        raise SkipRecord(SkipReason.MISSING_TEAMS, f"match {match_id}")

    league_id = _first(league_id, _to_int(_dig(raw, "league", "id")))
    if league_id is None:
        raise SkipRecord(SkipReason.EXCEPTION, f"match {match_id} without league")

    kickoff = _first(
        parse_kickoff(raw.get("date"), raw.get("time")),
        parse_kickoff(_dig(raw, "fixture", "date")),
        parse_kickoff(raw.get("timestamp")),
    )

    payload_season = _first(_dig(raw, "league", "season"), raw.get("season"))
    if season is None and payload_season is not None:
        season = str(payload_season)
    if season is None and kickoff is not None:
        season = infer_season(kickoff)
    if season is None:
        raise SkipRecord(SkipReason.EXCEPTION, f"match {match_id} without season or date")

    home_score, away_score = extract_score(raw)
    venue = _first(raw.get("venue"), _dig(raw, "fixture", "venue"))
    if isinstance(venue, dict):
        venue = venue.get("name")
    round_ = raw.get("round")

    return Match(
        id=match_id,
        league_id=league_id,
        season=str(season),
        home_team_id=home_id,
        away_team_id=away_id,
        match_date=kickoff.isoformat() if kickoff else None,
        match_time=kickoff.strftime("%H:%M") if kickoff else None,
        status=classify_status(_status_text(raw)),
        home_score=home_score,
        away_score=away_score,
        round=str(round_) if round_ is not None else None,
        venue=venue if isinstance(venue, str) else None,
        api_data=raw,
    )


# ── Highlights ───────────────────────────────────────────────────────────────


def normalize_highlight(raw: dict, match_id: int | None = None) -> Highlight | None:
    """Build a highlights row, None when the record has no id or match."""
    highlight_id = _to_int(raw.get("id"))
    match_id = _first(match_id, _to_int(_dig(raw, "match", "id")), _to_int(raw.get("matchId")))
    if highlight_id is None or match_id is None:
        return None
    return Highlight(
        id=highlight_id,
        match_id=match_id,
        title=raw.get("title"),
        url=_first(raw.get("url"), raw.get("videoUrl")),
        embed_url=_first(raw.get("embedUrl"), raw.get("embed_url")),
        thumbnail=_first(raw.get("thumbnail"), raw.get("thumbnailUrl"), raw.get("imgUrl")),
        duration=_to_int(raw.get("duration")),
        views=_to_int(_first(raw.get("views"), raw.get("viewCount"))) or 0,
        quality=raw.get("quality"),
        source=raw.get("source"),
        api_data=raw,
    )


# ── Events ───────────────────────────────────────────────────────────────────


def parse_minute(raw: dict) -> tuple[int | None, int]:
    """Return (minute, added_time) from the several time encodings."""
    t = raw.get("time")
    if isinstance(t, dict):
        return _to_int(t.get("elapsed")), _to_int(t.get("extra")) or 0
    if isinstance(t, str):
        m = re.match(r"^\s*(\d+)\s*'?\s*(?:\+\s*(\d+))?", t)
        if m:
            return int(m.group(1)), int(m.group(2) or 0)
    if isinstance(t, (int, float)) and not isinstance(t, bool):
        return int(t), _to_int(raw.get("addedTime")) or 0
    return _to_int(raw.get("minute")), _to_int(raw.get("addedTime")) or 0


def _person(value: Any) -> tuple[int | None, str | None]:
    if isinstance(value, dict):
        return _to_int(value.get("id")), value.get("name")
    if isinstance(value, str) and value.strip():
        return None, value.strip()
    return None, None


def normalize_events(raw_events: list[dict], match_id: int) -> list[MatchEvent]:
    """Build match_events rows with stable ids, in feed order."""
    rows: list[MatchEvent] = []
    seen: dict[str, int] = {}

    for ev in raw_events:
        if not isinstance(ev, dict):
            continue
        minute, added = parse_minute(ev)
        player_id, player_name = _person(ev.get("player"))
        assist_id, assist_name = _person(ev.get("assist"))
        event_type = ev.get("type") or "unknown"
        team = ev.get("team") if isinstance(ev.get("team"), dict) else {}

        base_id = _sanitize_id(
            f"{match_id}_{minute if minute is not None else 0}_{added}_{event_type}_{player_name or ''}"
        )
        seen[base_id] = seen.get(base_id, 0) + 1
        event_id = base_id if seen[base_id] == 1 else f"{base_id}_{seen[base_id]}"

        rows.append(MatchEvent(
            id=event_id,
            match_id=match_id,
            team_id=_to_int(team.get("id")),
            player_id=player_id,
            player_name=player_name,
            assist_player_id=assist_id,
            assist_player_name=assist_name,
            event_type=str(event_type),
            minute=minute,
            added_time=added,
            description=_first(ev.get("description"), ev.get("detail")),
            api_data=ev,
        ))

    return rows


# ── Lineups ──────────────────────────────────────────────────────────────────


def _flatten(players: Any) -> list:
    """initialLineup comes grouped by formation line; flatten one level."""
    if not isinstance(players, list):
        return []
    flat: list = []
    for p in players:
        if isinstance(p, list):
            flat.extend(p)
        else:
            flat.append(p)
    return flat


def normalize_lineups(
    raw: Any,
    match_id: int,
    home_team_id: int,
    away_team_id: int,
) -> list[MatchLineup]:
    """Build one match_lineups row per side."""
    if not isinstance(raw, dict):
        return []
    rows: list[MatchLineup] = []

    if raw.get("homeTeam") or raw.get("awayTeam"):
        for side, fallback_id, is_home in [
            ("homeTeam", home_team_id, True),
            ("awayTeam", away_team_id, False),
        ]:
            lineup = raw.get(side)
            if not isinstance(lineup, dict):
                continue
            rows.append(MatchLineup(
                match_id=match_id,
                team_id=_first(_to_int(lineup.get("id")), fallback_id),
                is_home=is_home,
                formation=lineup.get("formation"),
                starting_eleven=_flatten(_first(lineup.get("initialLineup"), lineup.get("startXI"))),
                substitutes=_flatten(lineup.get("substitutes")),
                coach=lineup.get("coach"),
                api_data=lineup,
            ))
        return rows

    for entry in raw.get("lineups") or []:
        if not isinstance(entry, dict):
            continue
        team_id = _to_int(_dig(entry, "team", "id"))
        if team_id is None:
            continue
        rows.append(MatchLineup(
            match_id=match_id,
            team_id=team_id,
            is_home=team_id == home_team_id,
            formation=entry.get("formation"),
            starting_eleven=_flatten(entry.get("startXI")),
            substitutes=_flatten(entry.get("substitutes")),
            coach=entry.get("coach"),
            api_data=entry,
        ))
    return rows


# ── Standings ────────────────────────────────────────────────────────────────


def _split(block: Any, prefix: str) -> dict[str, int]:
    block = block if isinstance(block, dict) else {}
    return {
        f"{prefix}played": _to_int(block.get("games")) or 0,
        f"{prefix}won": _to_int(block.get("wins")) or 0,
        f"{prefix}drawn": _to_int(block.get("draws")) or 0,
        f"{prefix}lost": _to_int(block.get("loses")) or 0,
        f"{prefix}goals_for": _to_int(block.get("scoredGoals")) or 0,
        f"{prefix}goals_against": _to_int(block.get("receivedGoals")) or 0,
    }


def _standing_groups(raw: Any) -> list[tuple[str | None, list]]:
    if isinstance(raw, list):
        return [(None, raw)]
    if not isinstance(raw, dict):
        return []
    if isinstance(raw.get("groups"), list):
        return [
            (g.get("name"), g.get("standings") or [])
            for g in raw["groups"] if isinstance(g, dict)
        ]
    if isinstance(raw.get("standings"), list):
        return [(None, raw["standings"])]
    return []


def normalize_standings(
    raw: Any,
    league_id: int,
    season: str,
) -> tuple[list[Team], list[Standing]]:
    """Build standings rows plus the teams they reference."""
    teams: dict[int, Team] = {}
    rows: list[Standing] = []

    for group_name, entries in _standing_groups(raw):
        for s in entries:
            if not isinstance(s, dict):
                continue
            team_raw = s.get("team") if isinstance(s.get("team"), dict) else {}
            team_id = _to_int(team_raw.get("id"))
            position = _to_int(s.get("position"))
            if team_id is None or position is None:
                continue
            teams[team_id] = normalize_team(team_raw, league_id)

            total = s.get("total") if isinstance(s.get("total"), dict) else {}
            rows.append(Standing(
                league_id=league_id,
                season=season,
                team_id=team_id,
                position=position,
                points=_to_int(s.get("points")) or 0,
                played=_to_int(_first(total.get("games"), s.get("played"))) or 0,
                won=_to_int(_first(total.get("wins"), s.get("won"))) or 0,
                drawn=_to_int(_first(total.get("draws"), s.get("drawn"))) or 0,
                lost=_to_int(_first(total.get("loses"), s.get("lost"))) or 0,
                goals_for=_to_int(_first(total.get("scoredGoals"), s.get("goalsFor"))) or 0,
                goals_against=_to_int(_first(total.get("receivedGoals"), s.get("goalsAgainst"))) or 0,
                **_split(s.get("home"), "home_"),
                **_split(s.get("away"), "away_"),
                form_string=s.get("form"),
                group_name=group_name or "Main",
                status=s.get("status"),
                api_data=s,
            ))

    return list(teams.values()), rows
