import asyncio

import pytest

from wellball.auto.fusion import (
    DetectionSignal,
    RosterEntry,
    RosterIndex,
    fuse_signals,
    load_roster,
)
from wellball.scoring.engine import ScoringEngine
from wellball.scoring.game import Caller, FreestyleConfig, Team
from wellball.store.documents import InMemoryDocumentStore

ROSTER = RosterIndex(
    [
        RosterEntry("a1", Team.A, "7"),
        RosterEntry("a2", Team.A, "23"),
        RosterEntry("b1", Team.B, "23"),
    ]
)


def _release(t: int = 1000, jersey: str = "7", **kw) -> DetectionSignal:
    kw.setdefault("conf", {"shooter": 0.9, "zone": 0.8})
    kw.setdefault("shot_range", "mid")
    kw.setdefault("zone", "corner")
    return DetectionSignal(kind="release", t=t, ball_track_id="ball-1", jersey_no=jersey, source_cam="cam-left", **kw)


def test_release_and_net_fuse_into_a_made_shot() -> None:
    signals = [
        _release(),
        DetectionSignal(kind="net", t=1100, ball_track_id="ball-1", conf={"outcome": 0.95}, source_cam="cam-rim"),
    ]
    [p] = fuse_signals(signals, ROSTER)

    assert p.player_id == "a1"
    assert p.team == "A"
    assert p.made is True
    assert p.shot_type == "mid"
    assert p.zone == "corner"
    assert p.t == 1000
    assert p.confidence == pytest.approx(0.4 * 0.9 + 0.4 * 0.95 + 0.2 * 0.8)
    assert p.evidence["cams"] == ["cam-left", "cam-rim"]

    event = p.to_event()
    assert event["type"] == "shot"
    assert event["shotKey"] == "mid_corner"
    assert event["sourceCamera"] == "cam-left"
    assert event["playerId"] == "a1"


def test_rim_without_net_is_a_miss() -> None:
    signals = [_release(), DetectionSignal(kind="rim", t=1050, ball_track_id="ball-1", conf={"outcome": 0.8})]
    [p] = fuse_signals(signals, ROSTER)
    assert p.made is False
    assert p.confidence_parts["outcome"] == 0.8


def test_cluster_without_a_release_is_dropped() -> None:
    assert fuse_signals([DetectionSignal(kind="net", t=10, ball_track_id="ball-1")], ROSTER) == []


def test_proposal_ids_are_stable_across_batches() -> None:
    signals = [_release(), DetectionSignal(kind="net", t=1100, ball_track_id="ball-1")]
    first = fuse_signals(signals, ROSTER)
    again = fuse_signals(list(reversed(signals)), ROSTER)
    assert [p.shot_id for p in first] == [p.shot_id for p in again]
    assert len(first[0].shot_id) == 16


def test_separate_windows_give_separate_shots_oldest_first() -> None:
    signals = [_release(t=5000, jersey="23", team="B"), _release(t=1000)]
    proposals = fuse_signals(signals, ROSTER, window_ms=320)
    assert [p.t for p in proposals] == [1000, 5000]
    assert proposals[1].player_id == "b1"


def test_shared_jersey_needs_a_team_hint() -> None:
    [p] = fuse_signals([_release(jersey="23")], ROSTER)
    assert p.player_id is None

    [p] = fuse_signals([_release(jersey="23", team="A")], ROSTER)
    assert p.player_id == "a2"


def test_bonus_round_maps_to_bonus_types() -> None:
    [p] = fuse_signals([_release(shot_range="long")], ROSTER, bonus_active=True)
    assert p.shot_type == "bonus_long"
    assert p.to_event()["shotKey"] == "long_corner"


def test_moneyball_needs_enough_confidence() -> None:
    [weak] = fuse_signals([_release(moneyball=True, conf={"moneyball": 0.5})], ROSTER)
    assert weak.moneyball is False
    [strong] = fuse_signals([_release(moneyball=True, conf={"moneyball": 0.7})], ROSTER)
    assert strong.moneyball is True


def test_bad_input_is_rejected() -> None:
    with pytest.raises(ValueError):
        DetectionSignal(kind="dunk", t=0, ball_track_id="x")
    with pytest.raises(ValueError):
        fuse_signals([], ROSTER, window_ms=0)


def test_signal_from_camel_case_payload() -> None:
    s = DetectionSignal.from_dict(
        {"kind": "release", "t": 12, "ballTrackId": "b9", "jerseyNo": 7, "range": "long", "sourceCam": "c1"}
    )
    assert (s.ball_track_id, s.jersey_no, s.shot_range, s.source_cam) == ("b9", "7", "long", "c1")


def test_roster_loaded_from_player_profiles() -> None:
    async def scenario() -> None:
        store = InMemoryDocumentStore()
        await store.set("players/a1", {"jerseyNumber": 7, "facePhotoUrl": "https://img/a1.jpg"})
        await store.set("players/b1", {"jerseyNumber": "12"})
        game = await ScoringEngine(store).create_game(
            Caller("main-op"),
            team_a_ids=["a1"],
            team_b_ids=["b1", "b2"],
            mode="freestyle",
            freestyle=FreestyleConfig(target_score=5, points_for_win=1),
        )
        roster = await load_roster(store, game)
        assert roster.resolve("7").player_id == "a1"
        assert roster.resolve("7").has_face_photo
        assert roster.resolve("12").team is Team.B
        assert roster.resolve("99") is None
        assert len(roster.entries) == 3

    asyncio.run(scenario())
