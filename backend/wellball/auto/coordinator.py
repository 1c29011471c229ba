"""
Auto-ingest coordinator: turns pending camera events into shots, review
items, or a terminal status.

Each event is claimed in its own transaction (``pending -> processing``)
before anything else happens, so several coordinators can watch the same
game and an event is still handled once. Losing a claim is normal and silent.
After the claim the decision procedure always ends in a terminal status;
nothing is left in ``processing``.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping

from wellball.auto.fusion import DetectionSignal, RosterIndex, ShotProposal, fuse_signals, load_roster
from wellball.auto.review import ReviewQueue, build_review_doc, clamp01, review_queue_path
from wellball.config import Settings, get_settings
from wellball.errors import (
    BadEventShape,
    DocumentNotFound,
    EventAlreadyClaimed,
    EventNotFound,
    InvalidThresholdConfig,
    NotMainOperator,
    ShotRuleViolation,
    WellballError,
)
from wellball.logger import setup_logger
from wellball.scoring.clock import gate_reason
from wellball.scoring.court import CourtConfig, apply_court_mapping, court_config_path, load_court_config
from wellball.scoring.engine import ScoringEngine, game_path, load_game
from wellball.scoring.game import AutoModeConfig, Caller, GameState, ShotAttempt
from wellball.scoring.shots import ShotSource
from wellball.store.documents import InMemoryDocumentStore, Transaction, get_store

logger = setup_logger(__name__)


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    INGESTED = "ingested"
    QUEUED = "queued"
    IGNORED = "ignored"
    BLOCKED = "blocked"
    DISABLED = "disabled"


def auto_events_path(game_id: str) -> str:
    return f"games/{game_id}/auto_events"


def auto_event_path(game_id: str, event_id: str) -> str:
    return f"games/{game_id}/auto_events/{event_id}"


def check_event_shape(event: Mapping[str, Any]) -> None:
    if event.get("type") != "shot":
        raise BadEventShape("event type must be 'shot'")
    if not isinstance(event.get("playerId"), str) or not event.get("playerId"):
        raise BadEventShape("playerId must be a non-empty string")
    if not isinstance(event.get("shotType"), str):
        raise BadEventShape("shotType must be a string")
    if not isinstance(event.get("made"), bool):
        raise BadEventShape("made must be a boolean")
    confidence = event.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise BadEventShape("confidence must be a number")


def _threshold(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidThresholdConfig(f"{name} must be a number, got {value!r}")
    x = float(value)
    if math.isnan(x) or not 0.0 <= x <= 1.0:
        raise InvalidThresholdConfig(f"{name} must be between 0 and 1, got {value!r}")
    return x


@dataclass
class IngestContext:
    """Per-game court calibration and roster, owned by one coordinator."""

    court: CourtConfig = field(default_factory=CourtConfig)
    roster: RosterIndex = field(default_factory=RosterIndex)
    player_ids: tuple[str, ...] = ()

    @classmethod
    async def load(cls, store, game: GameState) -> IngestContext:
        return cls(
            court=await load_court_config(store, game.game_id),
            roster=await load_roster(store, game),
            player_ids=(*game.team_a_ids, *game.team_b_ids),
        )


class AutoIngestCoordinator:
    """
    Routes camera events for any number of games.

    ``identity`` is who the coordinator records shots as; when None it acts
    for each game's main operator.
    """

    def __init__(
        self,
        store: InMemoryDocumentStore | None = None,
        *,
        engine: ScoringEngine | None = None,
        review: ReviewQueue | None = None,
        settings: Settings | None = None,
        identity: Caller | None = None,
    ) -> None:
        self._store = store or get_store()
        self._settings = settings or get_settings()
        self._engine = engine or ScoringEngine(self._store, settings=self._settings)
        self._review = review or ReviewQueue(self._store, engine=self._engine)
        self._identity = identity
        self._contexts: dict[str, IngestContext] = {}
        self._watching: set[str] = set()
        self._unsubscribers: list = []
        self._tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    # --- configuration ---

    async def set_auto_mode(
        self,
        game_id: str,
        caller: Caller,
        *,
        enabled: bool,
        ingest_threshold: Any = None,
        review_threshold: Any = None,
        gate_by_clock: bool = True,
    ) -> AutoModeConfig:
        ingest = _threshold(
            "ingestThreshold", self._settings.ingest_threshold if ingest_threshold is None else ingest_threshold
        )
        review = _threshold(
            "reviewThreshold", self._settings.review_threshold if review_threshold is None else review_threshold
        )
        if review > ingest:
            raise InvalidThresholdConfig(f"reviewThreshold {review} must be <= ingestThreshold {ingest}")

        async def body(tx: Transaction) -> AutoModeConfig:
            game = await load_game(tx, game_id)
            if not game.is_main(caller.uid):
                raise NotMainOperator(caller.uid)
            config = AutoModeConfig(
                enabled=bool(enabled),
                ingest_threshold=ingest,
                review_threshold=review,
                gate_by_clock=bool(gate_by_clock),
                updated_at=self._store.now(),
                updated_by=caller.uid,
            )
            updated = replace(game, auto_mode=config)
            tx.update(game_path(game_id), updated.patch_from(game))
            return config

        config = await self._store.run_transaction(body)
        logger.info(
            "game %s: auto mode %s (ingest %.2f, review %.2f, gate by clock %s)",
            game_id,
            "on" if config.enabled else "off",
            config.ingest_threshold,
            config.review_threshold,
            config.gate_by_clock,
        )
        return config

    async def context_for(self, game_id: str) -> IngestContext:
        """
        Court calibration and roster for ``game_id``. Cached only while the
        game is watched, where subscriptions keep it current; otherwise read
        fresh on every call.
        """
        ctx = self._contexts.get(game_id)
        if ctx is None:
            game = await load_game(self._store, game_id)
            ctx = await IngestContext.load(self._store, game)
            if game_id in self._watching:
                self._contexts[game_id] = ctx
        return ctx

    # --- submission ---

    async def submit_auto_event(self, game_id: str, event: Mapping[str, Any], event_id: str | None = None) -> tuple[str, bool]:
        """
        Queue a detector event as ``pending``. Resubmitting an existing
        ``event_id`` changes nothing; returns ``(event_id, created)``.
        """
        ctx = await self.context_for(game_id)
        doc = apply_court_mapping(event, ctx.court)
        eid = event_id or self._store.new_id()
        path = auto_event_path(game_id, eid)

        async def body(tx: Transaction) -> bool:
            snap = await tx.get(path)
            if snap.exists:
                return False
            now = self._store.now()
            tx.set(path, {**doc, "status": EventStatus.PENDING.value, "ts": doc.get("ts") or now, "createdAt": now})
            return True

        created = await self._store.run_transaction(body)
        if not created:
            logger.debug("game %s: duplicate auto event %s ignored", game_id, eid)
        return eid, created

    async def submit_proposals(self, game_id: str, proposals: Iterable[ShotProposal]) -> list[str]:
        """Queue fused proposals under their content ids; returns the ids that were new."""
        created = []
        for proposal in proposals:
            eid, is_new = await self.submit_auto_event(game_id, proposal.to_event(), event_id=proposal.shot_id)
            if is_new:
                created.append(eid)
        return created

    async def submit_signals(self, game_id: str, signals: Iterable[DetectionSignal]) -> list[str]:
        game = await load_game(self._store, game_id)
        ctx = await self.context_for(game_id)
        proposals = fuse_signals(
            signals,
            ctx.roster,
            bonus_active=game.bonus_active,
            window_ms=self._settings.fusion_window_ms,
            moneyball_floor=self._settings.moneyball_floor,
        )
        return await self.submit_proposals(game_id, proposals)

    # --- processing ---

    async def _claim(self, game_id: str, event_id: str) -> dict:
        path = auto_event_path(game_id, event_id)

        async def body(tx: Transaction) -> dict:
            snap = await tx.get(path)
            if not snap.exists:
                raise EventNotFound(event_id)
            if (snap.data.get("status") or EventStatus.PENDING.value) != EventStatus.PENDING.value:
                raise EventAlreadyClaimed(event_id)
            tx.update(
                path,
                {
                    "status": EventStatus.PROCESSING.value,
                    "processingBy": self._identity.uid if self._identity else "system",
                    "processingAt": self._store.now(),
                },
            )
            return snap.data

        return await self._store.run_transaction(body)

    async def _finish(self, game_id: str, event_id: str, status: EventStatus, **extra: Any) -> EventStatus:
        await self._store.update(
            auto_event_path(game_id, event_id), {"status": status.value, f"{status.value}At": self._store.now(), **extra}
        )
        return status

    async def _queue_for_review(
        self, game_id: str, event_id: str, event: Mapping[str, Any], reason: str, error: str | None = None
    ) -> EventStatus:
        now = self._store.now()
        doc = build_review_doc(
            event, event_id, reason, created_at=now, created_by=self._identity.uid if self._identity else "system"
        )
        event_path = auto_event_path(game_id, event_id)

        async def body(tx: Transaction) -> str:
            review_id = tx.create(review_queue_path(game_id), doc)
            patch = {"status": EventStatus.QUEUED.value, "reviewId": review_id, "queuedAt": now}
            if error:
                patch["error"] = error
            tx.update(event_path, patch)
            return review_id

        review_id = await self._store.run_transaction(body)
        logger.info("game %s: event %s queued for review %s (%s)", game_id, event_id, review_id, reason)
        return EventStatus.QUEUED

    async def _ingest(self, game_id: str, event_id: str, event: Mapping[str, Any], game: GameState) -> EventStatus:
        evidence = {"eventId": event_id}
        if event.get("sourceCamera"):
            evidence["camera"] = event["sourceCamera"]
        spot = event.get("spotNumber")
        try:
            attempt = ShotAttempt(
                player_id=event["playerId"],
                shot_type=event["shotType"],
                made=event["made"],
                moneyball=bool(event.get("moneyball", False)),
                source=ShotSource.AUTO,
                confidence=clamp01(event["confidence"]),
                evidence=evidence,
                zone=event.get("zone"),
                shot_key=event.get("shotKey"),
                spot_number=spot if isinstance(spot, int) and not isinstance(spot, bool) else None,
                start_spot_id=event.get("startSpotId"),
                shot_spot_id=event.get("shotSpotId"),
            )
        except ValueError as e:
            return await self._queue_for_review(game_id, event_id, event, "bad_shape", str(e))

        caller = self._identity or Caller(game.roles.main)
        try:
            result = await self._engine.record_shot(game_id, attempt, caller)
        except ShotRuleViolation as e:
            return await self._queue_for_review(game_id, event_id, event, "rule_violation", e.reason or str(e))
        except WellballError as e:
            return await self._queue_for_review(game_id, event_id, event, "blocked", str(e))

        return await self._finish(
            game_id, event_id, EventStatus.INGESTED, logId=result.attempt_log.log_id, ingestedBy=caller.uid
        )

    async def _decide(self, game_id: str, event_id: str, event: Mapping[str, Any]) -> EventStatus:
        game = await load_game(self._store, game_id)
        auto = game.auto_mode
        if not auto.enabled:
            return await self._finish(game_id, event_id, EventStatus.DISABLED)

        if auto.gate_by_clock:
            reason = gate_reason(game)
            if reason:
                return await self._finish(
                    game_id, event_id, EventStatus.BLOCKED, error=f"Clock not running or game paused ({reason})"
                )

        try:
            check_event_shape(event)
        except BadEventShape as e:
            return await self._queue_for_review(game_id, event_id, event, "bad_shape", str(e))

        confidence = clamp01(event["confidence"])
        if confidence >= auto.ingest_threshold:
            return await self._ingest(game_id, event_id, event, game)
        if confidence >= auto.review_threshold:
            return await self._queue_for_review(game_id, event_id, event, "low_confidence")
        return await self._finish(game_id, event_id, EventStatus.IGNORED)

    async def process_event(self, game_id: str, event_id: str) -> EventStatus | None:
        """Claim and route one event; None when another processor has it or it was deleted."""
        try:
            event = await self._claim(game_id, event_id)
        except (EventAlreadyClaimed, EventNotFound) as e:
            logger.debug("game %s: skipping event %s: %s", game_id, event_id, e)
            return None

        try:
            status = await self._decide(game_id, event_id, event)
        except DocumentNotFound:
            logger.warning("game %s: event %s was deleted while processing", game_id, event_id)
            return None
        except Exception as e:
            logger.exception("game %s: processing event %s failed", game_id, event_id)
            return await self._finish(game_id, event_id, EventStatus.BLOCKED, error=str(e))
        logger.info("game %s: event %s -> %s", game_id, event_id, status.value)
        return status

    async def drain_pending(self, game_id: str, limit: int = 50) -> list[tuple[str, EventStatus | None]]:
        """One polling pass over pending events, oldest first."""
        snaps = await self._store.query(
            auto_events_path(game_id),
            where=[("status", "==", EventStatus.PENDING.value)],
            order_by=("ts", "asc"),
            limit=limit,
        )
        return [(s.id, await self.process_event(game_id, s.id)) for s in snaps]

    # --- subscription mode ---

    def start(self, game_id: str) -> None:
        """Process pending events for ``game_id`` as they arrive. Needs a running loop."""
        self._loop = asyncio.get_running_loop()
        loop = self._loop
        self._watching.add(game_id)

        def on_court(changes) -> None:
            for change in changes:
                ctx = self._contexts.get(game_id)
                if ctx is not None:
                    ctx.court = CourtConfig.from_doc(change.data)

        def on_game(changes) -> None:
            # Roster edits rebuild the context on next use.
            for change in changes:
                data = change.data or {}
                ids = (*(data.get("teamAIds") or ()), *(data.get("teamBIds") or ()))
                ctx = self._contexts.get(game_id)
                if ctx is not None and ids != ctx.player_ids:
                    self._contexts.pop(game_id, None)

        def on_players(changes) -> None:
            ctx = self._contexts.get(game_id)
            if ctx is not None and any(change.id in ctx.player_ids for change in changes):
                self._contexts.pop(game_id, None)

        def on_pending(changes) -> None:
            for change in changes:
                if change.type == "added":
                    loop.call_soon_threadsafe(self._spawn, game_id, change.id)

        self._unsubscribers.append(self._store.on_snapshot(court_config_path(game_id), on_court))
        self._unsubscribers.append(self._store.on_snapshot(game_path(game_id), on_game))
        self._unsubscribers.append(self._store.on_snapshot("players", on_players))
        self._unsubscribers.append(
            self._store.on_snapshot(
                auto_events_path(game_id), on_pending, where=[("status", "==", EventStatus.PENDING.value)]
            )
        )
        logger.info("auto coordinator watching game %s", game_id)

    def _spawn(self, game_id: str, event_id: str) -> None:
        task = asyncio.ensure_future(self.process_event(game_id, event_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def stop(self) -> None:
        """Detach every subscription. Events already claimed run to completion."""
        while self._unsubscribers:
            self._unsubscribers.pop()()
        self._contexts.clear()
        self._watching.clear()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
