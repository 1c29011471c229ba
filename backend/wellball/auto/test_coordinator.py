import asyncio

import pytest

from wellball.auto.coordinator import AutoIngestCoordinator, EventStatus, auto_event_path
from wellball.auto.fusion import DetectionSignal
from wellball.auto.review import ReviewQueue
from wellball.config import Settings
from wellball.errors import InvalidThresholdConfig, NotMainOperator
from wellball.scoring.challenges import create_challenge
from wellball.scoring.clock import ClockController
from wellball.scoring.court import CourtConfig, SpotMeta, save_court_config
from wellball.scoring.engine import ScoringEngine
from wellball.scoring.game import Caller, FreestyleConfig
from wellball.scoring.shots import ShotSource
from wellball.store.documents import InMemoryDocumentStore

MAIN = Caller("main-op")


def _event(**kw) -> dict:
    event = {"type": "shot", "playerId": "a1", "shotType": "mid", "made": True, "confidence": 0.92}
    event.update(kw)
    return event


async def _setup(*, clock_running: bool = True, enabled: bool = True, challenge_rule=None, **auto):
    store = InMemoryDocumentStore(clock=lambda: 2000.0)
    engine = ScoringEngine(store)
    if challenge_rule is None:
        game = await engine.create_game(
            MAIN,
            team_a_ids=["a1", "a2"],
            team_b_ids=["b1"],
            mode="freestyle",
            freestyle=FreestyleConfig(target_score=10, points_for_win=1),
        )
    else:
        cid = await create_challenge(store, MAIN, name="Strict", target_score=10, shot_rule=challenge_rule)
        game = await engine.create_game(MAIN, team_a_ids=["a1", "a2"], team_b_ids=["b1"], challenge_ids=[cid])
    gid = game.game_id
    if clock_running:
        await ClockController(store).start_clock(gid)
    coordinator = AutoIngestCoordinator(
        store, engine=engine, review=ReviewQueue(store, engine=engine), settings=Settings()
    )
    await coordinator.set_auto_mode(gid, MAIN, enabled=enabled, **auto)
    return store, engine, coordinator, gid


async def _event_doc(store: InMemoryDocumentStore, gid: str, eid: str) -> dict:
    return (await store.get(auto_event_path(gid, eid))).data


def test_high_confidence_event_is_ingested() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        eid, created = await coordinator.submit_auto_event(gid, _event(spotNumber=2, sourceCamera="cam-1"))
        assert created
        assert (await _event_doc(store, gid, eid))["status"] == "pending"

        assert await coordinator.process_event(gid, eid) is EventStatus.INGESTED

        doc = await _event_doc(store, gid, eid)
        assert doc["status"] == "ingested"
        assert doc["ingestedBy"] == MAIN.uid
        [log] = await engine.list_attempts(gid)
        assert doc["logId"] == log.log_id
        assert log.source is ShotSource.AUTO
        assert log.confidence == 0.92
        assert log.shot_key == "mid_corner"
        assert log.evidence == {"eventId": eid, "camera": "cam-1"}
        assert (await engine.get_game(gid)).challenge_score.a == 1

    asyncio.run(scenario())


def test_mid_confidence_goes_to_review_and_can_be_approved() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        eid, _ = await coordinator.submit_auto_event(gid, _event(confidence=0.7))
        assert await coordinator.process_event(gid, eid) is EventStatus.QUEUED

        doc = await _event_doc(store, gid, eid)
        review = ReviewQueue(store, engine=engine)
        [item] = await review.list_open(gid)
        assert doc["reviewId"] == item.review_id
        assert item.reason == "low_confidence"
        assert item.event_id == eid
        assert await engine.list_attempts(gid) == []

        result = await review.approve(gid, item.review_id, MAIN)
        assert result.attempt_log.source is ShotSource.REVIEW
        assert result.attempt_log.evidence["eventId"] == eid

    asyncio.run(scenario())


def test_low_confidence_is_ignored() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        eid, _ = await coordinator.submit_auto_event(gid, _event(confidence=0.2))
        assert await coordinator.process_event(gid, eid) is EventStatus.IGNORED
        assert await engine.list_attempts(gid) == []
        assert await ReviewQueue(store, engine=engine).list_open(gid) == []

    asyncio.run(scenario())


def test_threshold_boundaries_are_inclusive() -> None:
    async def scenario() -> None:
        _store, _engine, coordinator, gid = await _setup(ingest_threshold=0.8, review_threshold=0.5)
        at_ingest, _ = await coordinator.submit_auto_event(gid, _event(confidence=0.8))
        at_review, _ = await coordinator.submit_auto_event(gid, _event(confidence=0.5))
        assert await coordinator.process_event(gid, at_ingest) is EventStatus.INGESTED
        assert await coordinator.process_event(gid, at_review) is EventStatus.QUEUED

    asyncio.run(scenario())


def test_disabled_mode_marks_events_disabled() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup(enabled=False)
        eid, _ = await coordinator.submit_auto_event(gid, _event())
        assert await coordinator.process_event(gid, eid) is EventStatus.DISABLED
        assert await engine.list_attempts(gid) == []

    asyncio.run(scenario())


def test_stopped_clock_blocks_events() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup(clock_running=False)
        eid, _ = await coordinator.submit_auto_event(gid, _event())
        assert await coordinator.process_event(gid, eid) is EventStatus.BLOCKED
        assert "clock_stopped" in (await _event_doc(store, gid, eid))["error"]
        assert await engine.list_attempts(gid) == []

    asyncio.run(scenario())


def test_ungated_coordinator_still_meets_the_engine_gate() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup(clock_running=False, gate_by_clock=False)
        eid, _ = await coordinator.submit_auto_event(gid, _event())
        assert await coordinator.process_event(gid, eid) is EventStatus.QUEUED
        [item] = await ReviewQueue(store, engine=engine).list_open(gid)
        assert item.reason == "blocked"

    asyncio.run(scenario())


def test_bad_shape_and_engine_rejections_are_queued() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        review = ReviewQueue(store, engine=engine)

        bad, _ = await coordinator.submit_auto_event(gid, {"type": "shot", "playerId": "a1", "confidence": 0.99})
        assert await coordinator.process_event(gid, bad) is EventStatus.QUEUED

        stranger, _ = await coordinator.submit_auto_event(gid, _event(playerId="zz"))
        assert await coordinator.process_event(gid, stranger) is EventStatus.QUEUED

        bogus_type, _ = await coordinator.submit_auto_event(gid, _event(shotType="hook"))
        assert await coordinator.process_event(gid, bogus_type) is EventStatus.QUEUED

        reasons = {i.event_id: i.reason for i in await review.list_open(gid)}
        assert reasons == {bad: "bad_shape", stranger: "blocked", bogus_type: "bad_shape"}
        assert await engine.list_attempts(gid) == []

    asyncio.run(scenario())


def test_strict_rule_violation_is_queued_with_reason() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup(
            challenge_rule={"mode": "allow", "items": ["long_*"], "validation": "strict"}
        )
        eid, _ = await coordinator.submit_auto_event(gid, _event())
        assert await coordinator.process_event(gid, eid) is EventStatus.QUEUED
        assert (await _event_doc(store, gid, eid))["error"] == "not_in_allowlist"
        [item] = await ReviewQueue(store, engine=engine).list_open(gid)
        assert item.reason == "rule_violation"

    asyncio.run(scenario())


def test_events_are_processed_once() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        eid, created = await coordinator.submit_auto_event(gid, _event(), event_id="cam-evt-1")
        assert (eid, created) == ("cam-evt-1", True)
        assert await coordinator.submit_auto_event(gid, _event(confidence=0.1), event_id="cam-evt-1") == (
            "cam-evt-1",
            False,
        )

        other = AutoIngestCoordinator(store, engine=engine)
        results = await asyncio.gather(coordinator.process_event(gid, eid), other.process_event(gid, eid))
        assert sorted(r is None for r in results) == [False, True]
        assert len(await engine.list_attempts(gid)) == 1

        assert await coordinator.process_event(gid, "missing") is None

    asyncio.run(scenario())


def test_drain_processes_pending_oldest_first() -> None:
    async def scenario() -> None:
        _store, engine, coordinator, gid = await _setup()
        await coordinator.submit_auto_event(gid, _event(ts=20), event_id="late")
        await coordinator.submit_auto_event(gid, _event(ts=10, confidence=0.3), event_id="early")
        results = await coordinator.drain_pending(gid)
        assert results == [("early", EventStatus.IGNORED), ("late", EventStatus.INGESTED)]
        assert await coordinator.drain_pending(gid) == []

    asyncio.run(scenario())


def test_auto_mode_validation() -> None:
    async def scenario() -> None:
        _store, _engine, coordinator, gid = await _setup()
        with pytest.raises(InvalidThresholdConfig):
            await coordinator.set_auto_mode(gid, MAIN, enabled=True, ingest_threshold=0.5, review_threshold=0.6)
        with pytest.raises(InvalidThresholdConfig):
            await coordinator.set_auto_mode(gid, MAIN, enabled=True, ingest_threshold="high")
        with pytest.raises(InvalidThresholdConfig):
            await coordinator.set_auto_mode(gid, MAIN, enabled=True, ingest_threshold=float("nan"))
        with pytest.raises(NotMainOperator):
            await coordinator.set_auto_mode(gid, Caller("helper"), enabled=False)

        config = await coordinator.set_auto_mode(gid, MAIN, enabled=True, ingest_threshold=1, review_threshold=0)
        assert (config.ingest_threshold, config.review_threshold) == (1.0, 0.0)

    asyncio.run(scenario())


def test_signals_are_fused_and_deduplicated() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        await store.set("players/a2", {"jerseyNumber": 11})
        signals = [
            DetectionSignal(
                kind="release",
                t=4000,
                ball_track_id="ball-7",
                jersey_no="11",
                shot_range="long",
                zone="top",
                conf={"shooter": 0.95, "zone": 0.9},
                source_cam="cam-2",
            ),
            DetectionSignal(kind="net", t=4100, ball_track_id="ball-7", conf={"outcome": 0.99}),
        ]
        [eid] = await coordinator.submit_signals(gid, signals)
        assert await coordinator.submit_signals(gid, signals) == []

        assert await coordinator.process_event(gid, eid) is EventStatus.INGESTED
        [log] = await engine.list_attempts(gid)
        assert (log.player_id, log.shot_type.value, log.shot_key) == ("a2", "long", "long_top")

    asyncio.run(scenario())


def test_court_changes_reach_a_watching_coordinator() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        coordinator.start(gid)
        await coordinator.context_for(gid)

        court = CourtConfig()
        await save_court_config(store, gid, CourtConfig(spot_map={**court.spot_map, 2: SpotMeta(2, "long", "corner")}))
        eid, _ = await coordinator.submit_auto_event(gid, _event(spotNumber=2, shotType=None))
        await asyncio.sleep(0.01)
        await coordinator.wait_idle()
        coordinator.stop()

        [log] = await engine.list_attempts(gid)
        assert log.shot_key == "long_corner"
        assert (await _event_doc(store, gid, eid))["status"] == "ingested"

    asyncio.run(scenario())


def test_watching_processes_new_events_until_stopped() -> None:
    async def scenario() -> None:
        store, engine, coordinator, gid = await _setup()
        coordinator.start(gid)

        eid, _ = await coordinator.submit_auto_event(gid, _event())
        await asyncio.sleep(0.01)
        await coordinator.wait_idle()
        assert (await _event_doc(store, gid, eid))["status"] == "ingested"

        coordinator.stop()
        later, _ = await coordinator.submit_auto_event(gid, _event())
        await asyncio.sleep(0.01)
        await coordinator.wait_idle()
        assert (await _event_doc(store, gid, later))["status"] == "pending"
        assert len(await engine.list_attempts(gid)) == 1

    asyncio.run(scenario())


def test_court_changes_apply_between_submits() -> None:
    async def scenario() -> None:
        store, _engine, coordinator, gid = await _setup()
        first, _ = await coordinator.submit_auto_event(gid, _event(spotNumber=1, shotType=None))
        assert (await _event_doc(store, gid, first))["zone"] == "corner"

        court = CourtConfig()
        await save_court_config(store, gid, CourtConfig(spot_map={**court.spot_map, 2: SpotMeta(2, "long", "wing")}))
        second, _ = await coordinator.submit_auto_event(gid, _event(spotNumber=2, shotType=None))
        doc = await _event_doc(store, gid, second)
        assert (doc["shotType"], doc["zone"], doc["shotKey"]) == ("long", "wing", "long_wing")

    asyncio.run(scenario())


def test_roster_changes_reach_a_watching_coordinator() -> None:
    async def scenario() -> None:
        store, _engine, coordinator, gid = await _setup()
        coordinator.start(gid)
        await coordinator.context_for(gid)

        def release(t: int, jersey: str) -> list[DetectionSignal]:
            return [
                DetectionSignal(
                    kind="release",
                    t=t,
                    ball_track_id=f"ball-{t}",
                    jersey_no=jersey,
                    shot_range="mid",
                    zone="wing",
                    conf={"shooter": 0.9, "zone": 0.9},
                ),
                DetectionSignal(kind="net", t=t + 50, ball_track_id=f"ball-{t}", conf={"outcome": 0.9}),
            ]

        await store.set("players/a2", {"jerseyNumber": 11})
        [eid] = await coordinator.submit_signals(gid, release(1000, "11"))
        assert (await _event_doc(store, gid, eid))["playerId"] == "a2"

        await store.set("players/b2", {"jerseyNumber": 7})
        await store.update(f"games/{gid}", {"teamBIds": ["b1", "b2"]})
        [eid] = await coordinator.submit_signals(gid, release(5000, "7"))
        assert (await _event_doc(store, gid, eid))["playerId"] == "b2"

        await asyncio.sleep(0.01)
        await coordinator.wait_idle()
        coordinator.stop()

    asyncio.run(scenario())


class _DeletesWhileDeciding(AutoIngestCoordinator):
    async def _decide(self, game_id, event_id, event):
        await self._store.delete(auto_event_path(game_id, event_id))
        return await super()._decide(game_id, event_id, event)


def test_event_deleted_mid_processing_is_dropped() -> None:
    async def scenario() -> None:
        store, engine, _coordinator, gid = await _setup()
        coordinator = _DeletesWhileDeciding(store, engine=engine, settings=Settings())
        eid, _ = await coordinator.submit_auto_event(gid, _event())

        assert await coordinator.process_event(gid, eid) is None
        assert not (await store.get(auto_event_path(gid, eid))).exists
        assert len(await engine.list_attempts(gid)) == 1

    asyncio.run(scenario())
