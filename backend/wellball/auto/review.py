"""
Human review of camera events that could not be ingested automatically.

Resolution is claimed in a transaction (``unresolved -> resolving``) before
the shot is sent to the scoring engine, so two reviewers approving the same
item log it once. If the engine rejects the shot the claim is released and
the rejection goes back to the reviewer, who can edit and retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from wellball.errors import ReviewItemNotFound, ReviewItemResolved, WellballError
from wellball.logger import setup_logger
from wellball.scoring.engine import ScoringEngine, ShotResult
from wellball.scoring.game import Caller, ShotAttempt
from wellball.scoring.shots import ShotSource, derive_shot_key
from wellball.store.documents import InMemoryDocumentStore, Transaction, get_store

logger = setup_logger(__name__)

REVIEW_REASONS = ("low_confidence", "rule_violation", "blocked", "bad_shape")

UNRESOLVED = "unresolved"
RESOLVING = "resolving"
APPROVED = "approved"
APPROVED_EDIT = "approved_edit"
REJECTED = "rejected"

EDITABLE_FIELDS = frozenset(
    {"playerId", "shotType", "made", "moneyball", "zone", "shotKey", "spotNumber", "startSpotId", "shotSpotId"}
)


def review_queue_path(game_id: str) -> str:
    return f"games/{game_id}/review_queue"


def review_item_path(game_id: str, review_id: str) -> str:
    return f"games/{game_id}/review_queue/{review_id}"


def clamp01(value: Any) -> float:
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0.0
    if x != x:
        return 0.0
    return max(0.0, min(1.0, x))


def build_review_doc(event: Mapping[str, Any], event_id: str, reason: str, *, created_at: float, created_by: str) -> dict:
    """Review item for an auto event, carrying the full shot payload."""
    if reason not in REVIEW_REASONS:
        raise ValueError(f"unknown review reason {reason!r}")
    shot_type = event.get("shotType")
    zone = event.get("zone")
    return {
        "eventId": event_id,
        "reason": reason,
        "playerId": event.get("playerId"),
        "team": event.get("team"),
        "shotType": shot_type,
        "made": event.get("made"),
        "moneyball": bool(event.get("moneyball", False)),
        "confidence": clamp01(event.get("confidence", 0)),
        "zone": zone,
        "shotKey": derive_shot_key(
            shot_type if isinstance(shot_type, str) else None,
            zone if isinstance(zone, str) else None,
            event.get("shotKey"),
        ),
        "spotNumber": event.get("spotNumber"),
        "startSpotId": event.get("startSpotId"),
        "shotSpotId": event.get("shotSpotId"),
        "sourceCamera": event.get("sourceCamera"),
        "state": UNRESOLVED,
        "resolved": False,
        "createdAt": created_at,
        "createdBy": created_by,
    }


@dataclass(frozen=True)
class ReviewItem:
    review_id: str
    event_id: str | None
    reason: str
    state: str
    data: Mapping[str, Any]

    @property
    def resolved(self) -> bool:
        return self.state in (APPROVED, APPROVED_EDIT, REJECTED)

    @classmethod
    def from_doc(cls, review_id: str, data: Mapping[str, Any]) -> ReviewItem:
        state = data.get("state") or (data.get("decision") if data.get("resolved") else UNRESOLVED)
        return cls(
            review_id=review_id,
            event_id=data.get("eventId"),
            reason=str(data.get("reason") or ""),
            state=str(state),
            data=dict(data),
        )

    def to_attempt(self, source: ShotSource, evidence: Mapping[str, Any]) -> ShotAttempt:
        d = self.data
        spot = d.get("spotNumber")
        return ShotAttempt(
            player_id=d.get("playerId") or "",
            shot_type=d.get("shotType"),
            made=d.get("made"),
            moneyball=bool(d.get("moneyball", False)),
            source=source,
            confidence=clamp01(d.get("confidence", 0)) if d.get("confidence") is not None else None,
            evidence=evidence,
            zone=d.get("zone"),
            shot_key=d.get("shotKey"),
            spot_number=spot if isinstance(spot, int) and not isinstance(spot, bool) else None,
            start_spot_id=d.get("startSpotId"),
            shot_spot_id=d.get("shotSpotId"),
        )


class ReviewQueue:
    def __init__(self, store: InMemoryDocumentStore | None = None, *, engine: ScoringEngine | None = None) -> None:
        self._store = store or get_store()
        self._engine = engine or ScoringEngine(self._store)

    async def push(
        self, game_id: str, event: Mapping[str, Any], event_id: str, reason: str, *, created_by: str = "system"
    ) -> str:
        doc = build_review_doc(event, event_id, reason, created_at=self._store.now(), created_by=created_by)
        review_id = await self._store.add(review_queue_path(game_id), doc)
        logger.info("game %s: event %s queued for review (%s)", game_id, event_id, reason)
        return review_id

    async def get(self, game_id: str, review_id: str) -> ReviewItem:
        snap = await self._store.get(review_item_path(game_id, review_id))
        if not snap.exists:
            raise ReviewItemNotFound(review_id)
        return ReviewItem.from_doc(review_id, snap.data)

    async def list_open(self, game_id: str) -> list[ReviewItem]:
        snaps = await self._store.query(
            review_queue_path(game_id), where=[("state", "==", UNRESOLVED)], order_by=("createdAt", "asc")
        )
        return [ReviewItem.from_doc(s.id, s.data) for s in snaps]

    async def _transition(self, game_id: str, review_id: str, patch: Mapping[str, Any]) -> ReviewItem:
        """Move an unresolved item on, or raise if someone got there first."""
        path = review_item_path(game_id, review_id)

        async def body(tx: Transaction) -> ReviewItem:
            snap = await tx.get(path)
            if not snap.exists:
                raise ReviewItemNotFound(review_id)
            item = ReviewItem.from_doc(review_id, snap.data)
            if item.state != UNRESOLVED:
                raise ReviewItemResolved(review_id, item.state)
            tx.update(path, dict(patch))
            return item

        return await self._store.run_transaction(body)

    async def _resolve_with_shot(
        self, game_id: str, review_id: str, caller: Caller, *, source: ShotSource, patch: Mapping[str, Any] | None
    ) -> ShotResult:
        item = await self._transition(game_id, review_id, {"state": RESOLVING, "resolvingBy": caller.uid})
        path = review_item_path(game_id, review_id)
        if patch:
            item = ReviewItem.from_doc(review_id, {**item.data, **patch, "state": RESOLVING})

        evidence: dict[str, Any] = {"reviewId": review_id}
        if item.event_id:
            evidence["eventId"] = item.event_id
        if patch:
            evidence["edited"] = True

        try:
            result = await self._engine.record_shot(game_id, item.to_attempt(source, evidence), caller)
        except (WellballError, ValueError) as e:
            await self._store.update(path, {"state": UNRESOLVED, "resolvingBy": None, "lastError": str(e)})
            logger.info("game %s: review %s not applied: %s", game_id, review_id, e)
            raise

        decision = APPROVED_EDIT if patch else APPROVED
        resolved = {
            "state": decision,
            "resolved": True,
            "resolvedAt": self._store.now(),
            "resolvedBy": caller.uid,
            "decision": decision,
            "logId": result.attempt_log.log_id,
            "lastError": None,
        }
        if patch:
            resolved["editPatch"] = dict(patch)
        await self._store.update(path, resolved)
        logger.info("game %s: review %s %s by %s", game_id, review_id, decision, caller.uid)
        return result

    async def approve(self, game_id: str, review_id: str, caller: Caller) -> ShotResult:
        return await self._resolve_with_shot(game_id, review_id, caller, source=ShotSource.REVIEW, patch=None)

    async def edit_and_approve(
        self, game_id: str, review_id: str, caller: Caller, patch: Mapping[str, Any]
    ) -> ShotResult:
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not editable: {', '.join(sorted(unknown))}")
        return await self._resolve_with_shot(
            game_id, review_id, caller, source=ShotSource.REVIEW_EDIT, patch=dict(patch)
        )

    async def reject(self, game_id: str, review_id: str, caller: Caller, reason: str = "rejected") -> ReviewItem:
        now = self._store.now()
        await self._transition(
            game_id,
            review_id,
            {
                "state": REJECTED,
                "resolved": True,
                "resolvedAt": now,
                "resolvedBy": caller.uid,
                "decision": REJECTED,
                "rejectReason": reason,
            },
        )
        logger.info("game %s: review %s rejected by %s", game_id, review_id, caller.uid)
        return await self.get(game_id, review_id)
