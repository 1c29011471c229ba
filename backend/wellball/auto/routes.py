from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from wellball.auto.fusion import DetectionSignal
from wellball.auto.review import ReviewItem
from wellball.scoring.game import Caller
from wellball.scoring.routes import ShotResultDTO, shot_result_to_dto
from wellball.services import current_caller, get_coordinator, get_engine, get_review_queue

router = APIRouter(tags=["auto"])


class AutoModeRequest(BaseModel):
    enabled: bool
    # Left untyped so a malformed value reaches the threshold check.
    ingest_threshold: Any = None
    review_threshold: Any = None
    gate_by_clock: bool = True


class AutoModeDTO(BaseModel):
    enabled: bool
    ingest_threshold: float
    review_threshold: float
    gate_by_clock: bool


class AutoEventRequest(BaseModel):
    event: dict[str, Any]
    event_id: str | None = None


class SubmittedDTO(BaseModel):
    event_id: str
    created: bool


class SignalsRequest(BaseModel):
    signals: list[dict[str, Any]] = Field(default_factory=list)


class ProcessedDTO(BaseModel):
    event_id: str
    status: str | None


class ReviewItemDTO(BaseModel):
    review_id: str
    event_id: str | None
    reason: str
    state: str
    player_id: str | None
    shot_type: str | None
    made: bool | None
    confidence: float | None
    shot_key: str | None


class EditRequest(BaseModel):
    patch: dict[str, Any]


class RejectRequest(BaseModel):
    reason: str = "rejected"


def _review_to_dto(item: ReviewItem) -> ReviewItemDTO:
    d = item.data
    made = d.get("made")
    return ReviewItemDTO(
        review_id=item.review_id,
        event_id=item.event_id,
        reason=item.reason,
        state=item.state,
        player_id=d.get("playerId") if isinstance(d.get("playerId"), str) else None,
        shot_type=d.get("shotType") if isinstance(d.get("shotType"), str) else None,
        made=made if isinstance(made, bool) else None,
        confidence=d.get("confidence"),
        shot_key=d.get("shotKey"),
    )


@router.put("/games/{game_id}/auto-mode", response_model=AutoModeDTO)
async def set_auto_mode(game_id: str, req: AutoModeRequest, caller: Caller = Depends(current_caller)) -> AutoModeDTO:
    config = await get_coordinator().set_auto_mode(
        game_id,
        caller,
        enabled=req.enabled,
        ingest_threshold=req.ingest_threshold,
        review_threshold=req.review_threshold,
        gate_by_clock=req.gate_by_clock,
    )
    return AutoModeDTO(
        enabled=config.enabled,
        ingest_threshold=config.ingest_threshold,
        review_threshold=config.review_threshold,
        gate_by_clock=config.gate_by_clock,
    )


@router.post("/games/{game_id}/auto-events", response_model=SubmittedDTO)
async def submit_auto_event(game_id: str, req: AutoEventRequest) -> SubmittedDTO:
    event_id, created = await get_coordinator().submit_auto_event(game_id, req.event, event_id=req.event_id)
    return SubmittedDTO(event_id=event_id, created=created)


@router.post("/games/{game_id}/signals", response_model=list[str])
async def submit_signals(game_id: str, req: SignalsRequest) -> list[str]:
    try:
        signals = [DetectionSignal.from_dict(s) for s in req.signals]
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return await get_coordinator().submit_signals(game_id, signals)


@router.post("/games/{game_id}/auto-events/{event_id}/process", response_model=ProcessedDTO)
async def process_event(game_id: str, event_id: str) -> ProcessedDTO:
    status = await get_coordinator().process_event(game_id, event_id)
    return ProcessedDTO(event_id=event_id, status=status.value if status else None)


@router.post("/games/{game_id}/auto-events/drain", response_model=list[ProcessedDTO])
async def drain_pending(game_id: str, limit: int = 50) -> list[ProcessedDTO]:
    await get_engine().get_game(game_id)
    results = await get_coordinator().drain_pending(game_id, limit=limit)
    return [ProcessedDTO(event_id=eid, status=s.value if s else None) for eid, s in results]


@router.get("/games/{game_id}/review", response_model=list[ReviewItemDTO])
async def list_review_items(game_id: str) -> list[ReviewItemDTO]:
    return [_review_to_dto(i) for i in await get_review_queue().list_open(game_id)]


@router.post("/games/{game_id}/review/{review_id}/approve", response_model=ShotResultDTO)
async def approve(game_id: str, review_id: str, caller: Caller = Depends(current_caller)) -> ShotResultDTO:
    try:
        result = await get_review_queue().approve(game_id, review_id, caller)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return shot_result_to_dto(result)


@router.post("/games/{game_id}/review/{review_id}/edit", response_model=ShotResultDTO)
async def edit_and_approve(
    game_id: str, review_id: str, req: EditRequest, caller: Caller = Depends(current_caller)
) -> ShotResultDTO:
    try:
        result = await get_review_queue().edit_and_approve(game_id, review_id, caller, req.patch)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return shot_result_to_dto(result)


@router.post("/games/{game_id}/review/{review_id}/reject", response_model=ReviewItemDTO)
async def reject(
    game_id: str, review_id: str, req: RejectRequest, caller: Caller = Depends(current_caller)
) -> ReviewItemDTO:
    return _review_to_dto(await get_review_queue().reject(game_id, review_id, caller, req.reason))
