from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from wellball.scoring.game import Caller, TeamLocks, parse_team
from wellball.services import current_caller, get_presence

router = APIRouter(tags=["tracking"])


class TeamRequest(BaseModel):
    team: str = Field(..., description="A | B")


class AssignRequest(BaseModel):
    uid: str | None = Field(default=None, description="Tracker uid, or null to clear the lock")


class LocksDTO(BaseModel):
    A: str | None
    B: str | None


class TrackerDTO(BaseModel):
    uid: str
    team: str | None
    last_seen: float | None


class TeamReadinessDTO(BaseModel):
    team: str
    lock_uid: str | None
    holder_online: bool
    online_trackers: list[str]
    ready: bool


def _locks_to_dto(locks: TeamLocks) -> LocksDTO:
    return LocksDTO(A=locks.a.uid if locks.a else None, B=locks.b.uid if locks.b else None)


def _team(value: str):
    try:
        return parse_team(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/games/{game_id}/trackers/join", response_model=TrackerDTO)
async def join(game_id: str, req: TeamRequest, caller: Caller = Depends(current_caller)) -> TrackerDTO:
    p = await get_presence().join(game_id, caller, _team(req.team))
    return TrackerDTO(uid=p.uid, team=p.team.value if p.team else None, last_seen=p.last_seen)


@router.post("/games/{game_id}/trackers/claim", response_model=LocksDTO)
async def claim_team(game_id: str, req: TeamRequest, caller: Caller = Depends(current_caller)) -> LocksDTO:
    return _locks_to_dto(await get_presence().claim_team(game_id, caller, _team(req.team)))


@router.put("/games/{game_id}/locks/{team}", response_model=LocksDTO)
async def assign_team(
    game_id: str, team: str, req: AssignRequest, caller: Caller = Depends(current_caller)
) -> LocksDTO:
    return _locks_to_dto(await get_presence().assign_team(game_id, caller, _team(team), req.uid))


@router.post("/games/{game_id}/trackers/heartbeat", response_model=LocksDTO)
async def heartbeat(game_id: str, caller: Caller = Depends(current_caller)) -> LocksDTO:
    return _locks_to_dto(await get_presence().heartbeat(game_id, caller))


@router.post("/games/{game_id}/trackers/leave", response_model=LocksDTO)
async def leave(game_id: str, caller: Caller = Depends(current_caller)) -> LocksDTO:
    return _locks_to_dto(await get_presence().leave(game_id, caller))


@router.get("/games/{game_id}/trackers", response_model=list[TrackerDTO])
async def list_trackers(game_id: str) -> list[TrackerDTO]:
    trackers = await get_presence().list_trackers(game_id)
    return [TrackerDTO(uid=t.uid, team=t.team.value if t.team else None, last_seen=t.last_seen) for t in trackers]


@router.get("/games/{game_id}/readiness", response_model=list[TeamReadinessDTO])
async def readiness(game_id: str) -> list[TeamReadinessDTO]:
    teams = await get_presence().readiness(game_id)
    return [
        TeamReadinessDTO(
            team=r.team.value,
            lock_uid=r.lock.uid if r.lock else None,
            holder_online=r.holder_online,
            online_trackers=list(r.online_trackers),
            ready=r.ready,
        )
        for r in teams.values()
    ]
