"""Tests for mapping provider payloads onto row models."""

from __future__ import annotations

from datetime import date

import pytest

from hlsync.ingestion.normalize import (
    SkipRecord,
    classify_status,
    extract_score,
    infer_season,
    normalize_events,
    normalize_highlight,
    normalize_league,
    normalize_lineups,
    normalize_match,
    normalize_standings,
    normalize_team,
    parse_kickoff,
    parse_minute,
    parse_score_string,
)
from hlsync.models.matches import MatchStatus
from hlsync.models.pipeline import SkipReason


class TestScores:
    def test_parse_score_string(self):
        assert parse_score_string("2 - 1") == (2, 1)
        assert parse_score_string("0-0") == (0, 0)

    def test_unparseable_score_is_null(self):
        assert parse_score_string("N/A") == (None, None)
        assert parse_score_string("") == (None, None)
        assert parse_score_string(None) == (None, None)

    def test_current_shape_wins(self):
        raw = {"state": {"score": {"current": "3 - 2"}}, "homeScore": 0, "awayScore": 0}
        assert extract_score(raw) == (3, 2)

    @pytest.mark.parametrize("raw", [
        {"homeScore": 1, "awayScore": 4},
        {"state": {"result": "1 - 4"}},
        {"score": {"home": "1", "away": "4"}},
        {"goals": {"home": 1, "away": 4}},
    ])
    def test_legacy_shapes(self, raw):
        assert extract_score(raw) == (1, 4)

    def test_missing_score(self):
        assert extract_score({"state": {"score": {"current": "N/A"}}}) == (None, None)


class TestStatus:
    @pytest.mark.parametrize("text, expected", [
        ("Match Finished", MatchStatus.FINISHED),
        ("Finished after penalties", MatchStatus.FINISHED),
        ("FT", MatchStatus.FINISHED),
        ("2nd Half", MatchStatus.LIVE),
        ("Half Time", MatchStatus.LIVE),
        ("In Progress", MatchStatus.LIVE),
        ("HT", MatchStatus.LIVE),
        ("Postponed", MatchStatus.POSTPONED),
        ("Suspended", MatchStatus.POSTPONED),
        ("Cancelled", MatchStatus.CANCELLED),
        ("Abandoned", MatchStatus.CANCELLED),
        ("Abandoned in second half", MatchStatus.CANCELLED),
        ("Suspended at half time", MatchStatus.POSTPONED),
        ("Interrupted during break", MatchStatus.POSTPONED),
        ("Not Started", MatchStatus.SCHEDULED),
        ("Something odd", MatchStatus.SCHEDULED),
        ("", MatchStatus.SCHEDULED),
        (None, MatchStatus.SCHEDULED),
    ])
    def test_classify(self, text, expected):
        assert classify_status(text) == expected


class TestDates:
    def test_season_inference(self):
        assert infer_season(date(2025, 3, 1)) == "2024"
        assert infer_season(date(2025, 5, 31)) == "2024"
        assert infer_season(date(2025, 6, 1)) == "2025"
        assert infer_season(date(2024, 8, 17)) == "2024"

    def test_kickoff_iso_z(self):
        dt = parse_kickoff("2024-09-14T14:00:00.000Z")
        assert dt.isoformat() == "2024-09-14T14:00:00+00:00"

    def test_kickoff_date_plus_time(self):
        dt = parse_kickoff("2024-09-14", "16:30")
        assert (dt.hour, dt.minute) == (16, 30)

    def test_kickoff_offset_converted_to_utc(self):
        dt = parse_kickoff("2024-09-14T20:00:00+02:00")
        assert dt.hour == 18

    def test_kickoff_epoch(self):
        assert parse_kickoff(0).year == 1970

    def test_kickoff_garbage(self):
        assert parse_kickoff("soon") is None
        assert parse_kickoff(None) is None


class TestLeagueAndTeam:
    def test_league_current_season(self):
        league = normalize_league({
            "id": 33973,
            "name": "Premier League",
            "country": {"code": "GB", "name": "England", "logo": "https://img/gb.svg"},
            "seasons": [{"season": 2022}, {"season": 2024}, {"season": 2023}],
        })
        assert league.current_season == "2024"
        assert league.country_name == "England"

    def test_league_fallback_name(self):
        assert normalize_league({"id": 1}, fallback_name="Cup").name == "Cup"

    def test_team_without_name(self):
        team = normalize_team({"id": 77}, league_id=1)
        assert team.name == "Unknown-77"
        assert team.league_id == 1

    def test_team_without_id(self):
        with pytest.raises(SkipRecord):
            normalize_team({"name": "Nobody"})


class TestMatch:
    def test_current_shape(self, sample_match):
        match = normalize_match(sample_match, 33973, "2024")
        assert match.id == 1001
        assert (match.home_team_id, match.away_team_id) == (10, 20)
        assert (match.home_score, match.away_score) == (2, 1)
        assert match.status == MatchStatus.FINISHED
        assert match.match_date == "2024-09-14T14:00:00+00:00"
        assert match.match_time == "14:00"
        assert match.round == "Regular Season - 4"
        assert match.api_data == sample_match

    def test_season_from_payload(self, sample_match):
        assert normalize_match(sample_match, 33973).season == "2024"

    def test_season_inferred_from_date(self, sample_match):
        del sample_match["league"]["season"]
        sample_match["date"] = "2025-02-01T15:00:00Z"
        assert normalize_match(sample_match, 33973).season == "2024"

    def test_unplayed_match_has_null_scores(self, sample_match):
        sample_match["state"] = {"description": "Not started", "score": {"current": None}}
        match = normalize_match(sample_match, 33973, "2024")
        assert (match.home_score, match.away_score) == (None, None)
        assert match.status == MatchStatus.SCHEDULED

    def test_legacy_teams_shape(self, sample_match):
        del sample_match["homeTeam"], sample_match["awayTeam"]
        sample_match["teams"] = {"home": {"id": 1}, "away": {"id": 2}}
        match = normalize_match(sample_match, 33973, "2024")
        assert (match.home_team_id, match.away_team_id) == (1, 2)

    def test_missing_team_raises(self, sample_match):
        del sample_match["awayTeam"]
        with pytest.raises(SkipRecord) as exc:
            normalize_match(sample_match, 33973, "2024")
        assert exc.value.reason == SkipReason.MISSING_TEAMS


class TestHighlights:
    def test_alternate_field_names(self):
        hl = normalize_highlight({
            "id": 5,
            "match": {"id": 1001},
            "videoUrl": "https://v/5.mp4",
            "thumbnailUrl": "https://t/5.jpg",
            "embedUrl": "https://e/5",
        })
        assert hl.match_id == 1001
        assert hl.url == "https://v/5.mp4"
        assert hl.thumbnail == "https://t/5.jpg"
        assert hl.views == 0

    def test_without_match_is_dropped(self):
        assert normalize_highlight({"id": 5}) is None


class TestEvents:
    @pytest.mark.parametrize("raw, expected", [
        ({"time": "45+2"}, (45, 2)),
        ({"time": "90'"}, (90, 0)),
        ({"time": 23}, (23, 0)),
        ({"time": {"elapsed": 90, "extra": 4}}, (90, 4)),
        ({"minute": 12, "addedTime": 1}, (12, 1)),
        ({}, (None, 0)),
    ])
    def test_parse_minute(self, raw, expected):
        assert parse_minute(raw) == expected

    def test_ids_are_stable_and_unique(self):
        raw = [
            {"time": "45+2", "type": "Goal", "player": {"id": 7, "name": "Bukayo Saka"},
             "assist": "Martin Ødegaard", "team": {"id": 10}},
            {"time": "45+2", "type": "Goal", "player": {"id": 7, "name": "Bukayo Saka"}, "team": {"id": 10}},
            {"time": "60", "type": "Yellow Card", "player": "Cole Palmer", "team": {"id": 20}},
        ]
        events = normalize_events(raw, 1001)

        assert [e.id for e in events] == [
            "1001_45_2_Goal_BukayoSaka",
            "1001_45_2_Goal_BukayoSaka_2",
            "1001_60_0_YellowCard_ColePalmer",
        ]
        assert events[0].player_id == 7
        assert events[0].assist_player_name == "Martin Ødegaard"
        assert events[2].player_id is None
        assert events[2].team_id == 20
        assert normalize_events(raw, 1001)[1].id == events[1].id


class TestLineups:
    def test_home_away_shape_flattens_and_falls_back(self):
        raw = {
            "homeTeam": {
                "id": 10,
                "formation": "4-3-3",
                "initialLineup": [[{"name": "Raya"}], [{"name": "White"}, {"name": "Saliba"}]],
                "substitutes": [{"name": "Havertz"}],
                "coach": {"name": "Arteta"},
            },
            "awayTeam": {"formation": "4-2-3-1", "initialLineup": [{"name": "Sanchez"}]},
        }
        home, away = normalize_lineups(raw, 1001, 10, 20)
        assert home.is_home and home.team_id == 10
        assert [p["name"] for p in home.starting_eleven] == ["Raya", "White", "Saliba"]
        assert home.coach == {"name": "Arteta"}
        assert not away.is_home and away.team_id == 20

    def test_list_shape(self):
        raw = {"lineups": [
            {"team": {"id": 20}, "formation": "4-4-2", "startXI": [{"name": "A"}], "substitutes": []},
            {"team": {"id": 10}, "formation": "3-5-2", "startXI": [{"name": "B"}], "substitutes": []},
        ]}
        rows = normalize_lineups(raw, 1001, 10, 20)
        assert {(r.team_id, r.is_home) for r in rows} == {(10, True), (20, False)}

    def test_empty(self):
        assert normalize_lineups(None, 1, 10, 20) == []


class TestStandings:
    def test_groups_and_splits(self):
        raw = {"groups": [
            {"name": "Group A", "standings": [{
                "position": 1, "points": 10,
                "team": {"id": 10, "name": "Arsenal"},
                "total": {"games": 4, "wins": 3, "draws": 1, "loses": 0, "scoredGoals": 8, "receivedGoals": 2},
                "home": {"games": 2, "wins": 2, "draws": 0, "loses": 0, "scoredGoals": 5, "receivedGoals": 1},
                "away": {"games": 2, "wins": 1, "draws": 1, "loses": 0, "scoredGoals": 3, "receivedGoals": 1},
            }]},
            {"name": "Group B", "standings": [{"position": 1, "points": 9, "team": {"id": 40}}]},
        ]}
        teams, rows = normalize_standings(raw, 2486, "2024")

        assert {t.id for t in teams} == {10, 40}
        first = rows[0]
        assert (first.played, first.won, first.drawn, first.goals_for) == (4, 3, 1, 8)
        assert (first.home_won, first.away_drawn) == (2, 1)
        assert first.group_name == "Group A"
        assert rows[1].group_name == "Group B"
        assert rows[1].played == 0

    def test_bare_list(self):
        _, rows = normalize_standings(
            [{"position": 2, "points": 4, "played": 2, "won": 1, "team": {"id": 3}}], 1, "2024",
        )
        assert (rows[0].position, rows[0].played, rows[0].won) == (2, 2, 1)
        assert rows[0].group_name == "Main"
