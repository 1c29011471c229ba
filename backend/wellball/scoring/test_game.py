import pytest

from wellball.scoring.game import (
    AttemptLog,
    ChallengeWon,
    GameMode,
    GameState,
    GameStatus,
    ShotAttempt,
    Team,
    TeamScores,
    parse_team,
)
from wellball.scoring.shots import (
    ShotSource,
    ShotType,
    build_shot_key,
    derive_shot_key,
    display_label,
    parse_shot_key,
    to_bonus_type,
)


def test_nested_freestyle_shape() -> None:
    game = GameState.from_doc("g1", {"createdBy": "u1", "freestyle": {"targetScore": 7, "pointsForWin": 2}})
    assert game.mode is GameMode.FREESTYLE
    assert game.freestyle.target_score == 7
    assert game.freestyle.points_for_win == 2
    assert game.roles.main == "u1"


def test_flat_and_short_freestyle_shapes() -> None:
    flat = GameState.from_doc("g1", {"roles": {"main": "u1"}, "freestyleTarget": "5", "freestylePoints": None})
    assert flat.mode is GameMode.FREESTYLE
    assert (flat.freestyle.target_score, flat.freestyle.points_for_win) == (5, 0)

    short = GameState.from_doc("g1", {"roles": {"main": "u1"}, "freestyle": {"target": 3, "points": -4}})
    assert (short.freestyle.target_score, short.freestyle.points_for_win) == (3, 0)


def test_sparse_document_gets_defaults() -> None:
    game = GameState.from_doc("g1", {"status": "paused?", "clockSeconds": -5, "challengeScore": {"A": "x"}})
    assert game.mode is GameMode.SEQUENCE
    assert game.status is GameStatus.LIVE
    assert game.clock.seconds == 0
    assert game.clock.running is False
    assert game.challenge_score == TeamScores()
    assert game.tracker_locks.get(Team.A) is None
    assert game.auto_mode.enabled is False
    assert game.roles.main == "unknown"


def test_doc_round_trip_and_patch() -> None:
    game = GameState.from_doc(
        "g1",
        {
            "roles": {"main": "u1"},
            "teamAIds": ["a1"],
            "teamBIds": ["b1"],
            "mode": "sequence",
            "sequenceChallengeIds": ["c1", "c2"],
            "trackerLocks": {"A": {"uid": "t1", "updatedAt": 3.0}, "B": {"uid": ""}},
        },
    )
    assert GameState.from_doc("g1", game.to_doc()) == game
    assert game.tracker_locks.get(Team.A).uid == "t1"
    assert game.tracker_locks.get(Team.B) is None

    scored = game.with_specialty(Team.B, "money", True)
    assert scored.patch_from(game) == {"moneyUsed": {"A": False, "B": True}}
    assert game.patch_from(game) == {}


def test_challenge_won_defaults_base_points() -> None:
    won = ChallengeWon.from_doc({"team": "b", "atIndex": 1, "pointsForWin": 4, "winLogId": ""})
    assert won.team is Team.B
    assert won.base_points == 4
    assert won.win_log_id is None
    assert ChallengeWon.from_doc(None) is None


def test_shot_attempt_validation() -> None:
    attempt = ShotAttempt(player_id="a1", shot_type="long", made=True, source="auto", confidence=0.9)
    assert attempt.shot_type is ShotType.LONG
    assert attempt.source is ShotSource.AUTO

    with pytest.raises(ValueError):
        ShotAttempt(player_id="", shot_type="mid", made=True)
    with pytest.raises(ValueError):
        ShotAttempt(player_id="a1", shot_type="mid", made="yes")
    with pytest.raises(ValueError):
        ShotAttempt(player_id="a1", shot_type="mid", made=True, confidence=1.2)
    with pytest.raises(ValueError):
        ShotAttempt(player_id="a1", shot_type="layup", made=True)


def test_attempt_log_points() -> None:
    log = AttemptLog.from_doc(
        "l1", {"playerId": "a1", "team": "A", "shotType": "mid", "made": True, "moneyball": True}
    )
    assert log.points == 2
    assert log.specialty == "money"
    assert log.source is ShotSource.MANUAL

    with pytest.raises(ValueError):
        parse_team("C")


def test_shot_keys() -> None:
    assert build_shot_key("mid", "corner") == "mid_corner"
    assert build_shot_key("long", "gc") == "gamechanger"
    assert build_shot_key("long", None) is None
    assert parse_shot_key("long_top") == ("long", "top")
    assert parse_shot_key("gc") == ("gamechanger", "gc")
    assert parse_shot_key(None) == (None, None)

    assert derive_shot_key("bonus_long", None) == "long_unknown"
    assert derive_shot_key("bonus_gc", "top") == "gc"
    assert derive_shot_key("bonus", "wing") is None
    assert derive_shot_key("mid", "wing", provided="mid_elbow") == "mid_elbow"

    assert display_label("long_wing") == "Long-range Wing"
    assert display_label("gamechanger") == "Gamechanger"
    assert to_bonus_type("long") is ShotType.BONUS_LONG
    assert to_bonus_type(None) is ShotType.BONUS_GC
