from __future__ import annotations

from functools import lru_cache

from fastapi import Header, HTTPException

from wellball.auto.coordinator import AutoIngestCoordinator
from wellball.auto.review import ReviewQueue
from wellball.scoring.clock import ClockController
from wellball.scoring.engine import ScoringEngine
from wellball.scoring.game import Caller
from wellball.store.documents import get_store
from wellball.tracking.presence import PresenceManager


@lru_cache(maxsize=1)
def get_engine() -> ScoringEngine:
    return ScoringEngine(get_store())


@lru_cache(maxsize=1)
def get_clock() -> ClockController:
    return ClockController(get_store())


@lru_cache(maxsize=1)
def get_presence() -> PresenceManager:
    return PresenceManager(get_store())


@lru_cache(maxsize=1)
def get_review_queue() -> ReviewQueue:
    return ReviewQueue(get_store(), engine=get_engine())


@lru_cache(maxsize=1)
def get_coordinator() -> AutoIngestCoordinator:
    return AutoIngestCoordinator(get_store(), engine=get_engine(), review=get_review_queue())


def current_caller(x_caller_id: str | None = Header(default=None)) -> Caller:
    """Caller identity from the ``X-Caller-Id`` header."""
    if not x_caller_id or not x_caller_id.strip():
        raise HTTPException(status_code=401, detail="X-Caller-Id header is required")
    return Caller(x_caller_id.strip())
