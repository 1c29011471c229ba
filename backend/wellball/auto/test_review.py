import asyncio

import pytest

from wellball.auto.review import ReviewQueue, build_review_doc
from wellball.errors import ClockGated, ReviewItemNotFound, ReviewItemResolved
from wellball.scoring.clock import ClockController
from wellball.scoring.engine import ScoringEngine
from wellball.scoring.game import Caller, FreestyleConfig
from wellball.scoring.shots import ShotSource
from wellball.store.documents import InMemoryDocumentStore

MAIN = Caller("main-op")

EVENT = {
    "type": "shot",
    "playerId": "a1",
    "team": "A",
    "shotType": "mid",
    "made": True,
    "confidence": 0.72,
    "zone": "corner",
    "sourceCamera": "cam-1",
}


async def _setup(*, clock_running: bool = True):
    store = InMemoryDocumentStore(clock=lambda: 500.0)
    engine = ScoringEngine(store)
    game = await engine.create_game(
        MAIN,
        team_a_ids=["a1", "a2"],
        team_b_ids=["b1"],
        mode="freestyle",
        freestyle=FreestyleConfig(target_score=10, points_for_win=1),
    )
    if clock_running:
        await ClockController(store).start_clock(game.game_id)
    return store, engine, ReviewQueue(store, engine=engine), game.game_id


def test_review_doc_carries_the_shot_payload() -> None:
    doc = build_review_doc({**EVENT, "confidence": 1.7}, "ev1", "low_confidence", created_at=1.0, created_by="system")
    assert doc["confidence"] == 1.0
    assert doc["shotKey"] == "mid_corner"
    assert doc["state"] == "unresolved"
    assert doc["resolved"] is False

    doc = build_review_doc({**EVENT, "zone": None, "confidence": "??"}, "ev1", "bad_shape", created_at=1.0, created_by="s")
    assert doc["confidence"] == 0.0
    assert doc["shotKey"] == "mid_unknown"

    with pytest.raises(ValueError):
        build_review_doc(EVENT, "ev1", "because", created_at=1.0, created_by="s")


def test_approve_logs_a_review_shot_once() -> None:
    async def scenario() -> None:
        _store, engine, queue, gid = await _setup()
        rid = await queue.push(gid, EVENT, "ev1", "low_confidence")
        assert [i.review_id for i in await queue.list_open(gid)] == [rid]

        result = await queue.approve(gid, rid, MAIN)
        log = result.attempt_log
        assert log.source is ShotSource.REVIEW
        assert log.confidence == 0.72
        assert dict(log.evidence) == {"reviewId": rid, "eventId": "ev1"}
        assert result.game.challenge_score.a == 1

        item = await queue.get(gid, rid)
        assert item.state == "approved"
        assert item.data["logId"] == log.log_id
        assert item.data["resolvedBy"] == MAIN.uid
        assert await queue.list_open(gid) == []

        with pytest.raises(ReviewItemResolved):
            await queue.approve(gid, rid, MAIN)
        assert len(await engine.list_attempts(gid)) == 1

    asyncio.run(scenario())


def test_edit_then_approve() -> None:
    async def scenario() -> None:
        _store, _engine, queue, gid = await _setup()
        rid = await queue.push(gid, {**EVENT, "made": False}, "ev2", "low_confidence")

        with pytest.raises(ValueError):
            await queue.edit_and_approve(gid, rid, MAIN, {"confidence": 1.0})
        assert (await queue.get(gid, rid)).state == "unresolved"

        result = await queue.edit_and_approve(gid, rid, MAIN, {"playerId": "a2", "made": True})
        assert result.attempt_log.source is ShotSource.REVIEW_EDIT
        assert result.attempt_log.player_id == "a2"
        assert result.attempt_log.evidence["edited"] is True

        item = await queue.get(gid, rid)
        assert item.state == "approved_edit"
        assert item.data["editPatch"] == {"playerId": "a2", "made": True}

    asyncio.run(scenario())


def test_engine_rejection_releases_the_claim() -> None:
    async def scenario() -> None:
        store, _engine, queue, gid = await _setup(clock_running=False)
        rid = await queue.push(gid, EVENT, "ev3", "blocked")

        with pytest.raises(ClockGated):
            await queue.approve(gid, rid, MAIN)
        item = await queue.get(gid, rid)
        assert item.state == "unresolved"
        assert "clock" in item.data["lastError"]

        await ClockController(store).start_clock(gid)
        await queue.approve(gid, rid, MAIN)
        assert (await queue.get(gid, rid)).state == "approved"

    asyncio.run(scenario())


def test_malformed_item_fails_without_consuming_it() -> None:
    async def scenario() -> None:
        _store, _engine, queue, gid = await _setup()
        rid = await queue.push(gid, {**EVENT, "made": "yes"}, "ev4", "bad_shape")
        with pytest.raises(ValueError):
            await queue.approve(gid, rid, MAIN)
        assert (await queue.get(gid, rid)).state == "unresolved"

        await queue.edit_and_approve(gid, rid, MAIN, {"made": True})

    asyncio.run(scenario())


def test_reject_is_terminal() -> None:
    async def scenario() -> None:
        _store, engine, queue, gid = await _setup()
        rid = await queue.push(gid, EVENT, "ev5", "low_confidence")
        item = await queue.reject(gid, rid, MAIN, "wrong player")
        assert item.state == "rejected"
        assert item.data["rejectReason"] == "wrong player"

        with pytest.raises(ReviewItemResolved):
            await queue.approve(gid, rid, MAIN)
        assert await engine.list_attempts(gid) == []

        with pytest.raises(ReviewItemNotFound):
            await queue.get(gid, "missing")

    asyncio.run(scenario())


def test_concurrent_approvals_log_once() -> None:
    async def scenario() -> None:
        _store, engine, queue, gid = await _setup()
        rid = await queue.push(gid, EVENT, "ev6", "low_confidence")
        results = await asyncio.gather(
            queue.approve(gid, rid, MAIN), queue.approve(gid, rid, MAIN), return_exceptions=True
        )
        assert sum(isinstance(r, ReviewItemResolved) for r in results) == 1
        assert len(await engine.list_attempts(gid)) == 1

    asyncio.run(scenario())
