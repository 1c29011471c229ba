from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from wellball.scoring.challenges import create_challenge, create_sequence
from wellball.scoring.clock import remaining_seconds
from wellball.scoring.court import CourtConfig, SpotMeta, load_court_config, save_court_config
from wellball.scoring.engine import ReverseResult, ShotResult
from wellball.scoring.game import (
    AttemptLog,
    Caller,
    FreestyleConfig,
    GameMode,
    GameState,
    ShotAttempt,
    WinLog,
    parse_team,
)
from wellball.scoring.rules import describe_rule
from wellball.scoring.stats import compute_player_stats
from wellball.services import current_caller, get_clock, get_engine
from wellball.store.documents import get_store

router = APIRouter(tags=["scoring"])


class FreestyleDTO(BaseModel):
    target_score: int = Field(..., ge=0)
    points_for_win: int = Field(..., ge=0)


class CreateGameRequest(BaseModel):
    team_a_ids: list[str] = Field(..., min_length=1)
    team_b_ids: list[str] = Field(..., min_length=1)
    mode: str = Field(default="sequence", description="sequence | freestyle")
    sequence_id: str | None = None
    challenge_ids: list[str] | None = None
    freestyle: FreestyleDTO | None = None
    clock_seconds: int | None = Field(default=None, ge=0)
    secondary: str | None = None
    event_id: str | None = None


class ShotRequest(BaseModel):
    player_id: str = Field(..., min_length=1)
    shot_type: str = Field(..., description="mid | long | gamechanger | bonus_mid | bonus_long | bonus_gc")
    made: bool
    moneyball: bool = False
    zone: str | None = None
    shot_key: str | None = None
    spot_number: int | None = Field(default=None, ge=1)
    start_spot_id: str | None = None
    shot_spot_id: str | None = None


class PauseRequest(BaseModel):
    paused: bool
    reason: str | None = None
    dispute: str | None = None


class SecondsRequest(BaseModel):
    seconds: int | None = Field(default=None, ge=0)


class BonusExpiryRequest(BaseModel):
    observed_overtime_count: int = Field(..., ge=0)


class CreateChallengeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    difficulty: str = "normal"
    target_score: int = Field(default=0, ge=0)
    points_for_win: int = Field(default=1, ge=0)
    shot_rule: dict[str, Any] | None = None


class CreateSequenceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    challenge_ids: list[str] = Field(default_factory=list)


class SpotDTO(BaseModel):
    shot_type: str
    zone: str


class CourtConfigDTO(BaseModel):
    spot_map: dict[int, SpotDTO]
    swap_sides: bool = False


class ChallengeWonDTO(BaseModel):
    team: str
    at_index: int
    points_for_win: int
    shutout: bool
    win_log_id: str | None


class GameDTO(BaseModel):
    game_id: str
    main: str
    secondary: str | None
    team_a_ids: list[str]
    team_b_ids: list[str]
    mode: str
    challenge_ids: list[str]
    current_challenge_index: int
    challenge_round: int
    challenge_score: dict[str, int]
    match_score: dict[str, int]
    challenge_won: ChallengeWonDTO | None
    money_used: dict[str, bool]
    gc_used: dict[str, bool]
    bonus_active: bool
    overtime_count: int
    clock_seconds: int
    clock_running: bool
    clock_remaining: int
    tracker_locks: dict[str, str | None]
    paused: bool
    pause_reason: str | None
    status: str


class AttemptLogDTO(BaseModel):
    log_id: str
    player_id: str
    team: str
    shot_type: str
    made: bool
    moneyball: bool
    points: int
    challenge_index: int
    challenge_round: int
    source: str
    confidence: float | None
    zone: str | None
    shot_key: str | None
    ts: float | None


class WinLogDTO(BaseModel):
    log_id: str
    team: str
    by_player_id: str
    challenge_index: int
    points_for_win: int
    shutout: bool


class ShotResultDTO(BaseModel):
    game: GameDTO
    log: AttemptLogDTO
    win: WinLogDTO | None
    rule_reason: str | None


class ReverseResultDTO(BaseModel):
    game: GameDTO
    removed_log_id: str
    removed_win_log_id: str | None
    win_reverted: bool


def _game_to_dto(g: GameState) -> GameDTO:
    cw = g.challenge_won
    return GameDTO(
        game_id=g.game_id,
        main=g.roles.main,
        secondary=g.roles.secondary,
        team_a_ids=list(g.team_a_ids),
        team_b_ids=list(g.team_b_ids),
        mode=g.mode.value,
        challenge_ids=list(g.challenge_ids),
        current_challenge_index=g.current_challenge_index,
        challenge_round=g.challenge_round,
        challenge_score=g.challenge_score.to_doc(),
        match_score=g.match_score.to_doc(),
        challenge_won=(
            ChallengeWonDTO(
                team=cw.team.value,
                at_index=cw.at_index,
                points_for_win=cw.points_for_win,
                shutout=cw.shutout,
                win_log_id=cw.win_log_id,
            )
            if cw
            else None
        ),
        money_used=g.money_used.to_doc(),
        gc_used=g.gc_used.to_doc(),
        bonus_active=g.bonus_active,
        overtime_count=g.overtime_count,
        clock_seconds=g.clock.seconds,
        clock_running=g.clock.running,
        clock_remaining=remaining_seconds(g.clock, get_store().now()),
        tracker_locks={k: (v["uid"] if v else None) for k, v in g.tracker_locks.to_doc().items()},
        paused=g.paused,
        pause_reason=g.pause_reason,
        status=g.status.value,
    )


def _log_to_dto(log: AttemptLog) -> AttemptLogDTO:
    return AttemptLogDTO(
        log_id=log.log_id,
        player_id=log.player_id,
        team=log.team.value,
        shot_type=log.shot_type.value,
        made=log.made,
        moneyball=log.moneyball,
        points=log.points,
        challenge_index=log.challenge_index,
        challenge_round=log.challenge_round,
        source=log.source.value,
        confidence=log.confidence,
        zone=log.zone,
        shot_key=log.shot_key,
        ts=log.ts,
    )


def _win_to_dto(w: WinLog) -> WinLogDTO:
    return WinLogDTO(
        log_id=w.log_id,
        team=w.team.value,
        by_player_id=w.by_player_id,
        challenge_index=w.challenge_index,
        points_for_win=w.points_for_win,
        shutout=w.shutout,
    )


def shot_result_to_dto(r: ShotResult) -> ShotResultDTO:
    return ShotResultDTO(
        game=_game_to_dto(r.game),
        log=_log_to_dto(r.attempt_log),
        win=_win_to_dto(r.win_log) if r.win_log else None,
        rule_reason=r.rule.reason if r.rule else None,
    )


def _reverse_to_dto(r: ReverseResult) -> ReverseResultDTO:
    return ReverseResultDTO(
        game=_game_to_dto(r.game),
        removed_log_id=r.removed_log.log_id,
        removed_win_log_id=r.removed_win_log_id,
        win_reverted=r.win_reverted,
    )


# --- games ---


@router.post("/games", response_model=GameDTO)
async def create_game(req: CreateGameRequest, caller: Caller = Depends(current_caller)) -> GameDTO:
    try:
        mode = GameMode(req.mode)
    except ValueError as e:
        raise HTTPException(status_code=422, detail="mode must be 'sequence' or 'freestyle'") from e
    freestyle = (
        FreestyleConfig(target_score=req.freestyle.target_score, points_for_win=req.freestyle.points_for_win)
        if req.freestyle
        else None
    )
    game = await get_engine().create_game(
        caller,
        team_a_ids=req.team_a_ids,
        team_b_ids=req.team_b_ids,
        mode=mode,
        sequence_id=req.sequence_id,
        challenge_ids=req.challenge_ids,
        freestyle=freestyle,
        clock_seconds=req.clock_seconds,
        secondary=req.secondary,
        event_id=req.event_id,
    )
    return _game_to_dto(game)


@router.get("/games/{game_id}", response_model=GameDTO)
async def get_game(game_id: str) -> GameDTO:
    return _game_to_dto(await get_engine().get_game(game_id))


@router.post("/games/{game_id}/shots", response_model=ShotResultDTO)
async def record_shot(game_id: str, req: ShotRequest, caller: Caller = Depends(current_caller)) -> ShotResultDTO:
    try:
        attempt = ShotAttempt(
            player_id=req.player_id,
            shot_type=req.shot_type,
            made=req.made,
            moneyball=req.moneyball,
            zone=req.zone,
            shot_key=req.shot_key,
            spot_number=req.spot_number,
            start_spot_id=req.start_spot_id,
            shot_spot_id=req.shot_spot_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return shot_result_to_dto(await get_engine().record_shot(game_id, attempt, caller))


@router.delete("/games/{game_id}/shots/{log_id}", response_model=ReverseResultDTO)
async def reverse_shot(game_id: str, log_id: str) -> ReverseResultDTO:
    return _reverse_to_dto(await get_engine().reverse_shot(game_id, log_id))


@router.post("/games/{game_id}/advance", response_model=GameDTO)
async def advance_challenge(game_id: str) -> GameDTO:
    return _game_to_dto(await get_engine().advance_challenge(game_id))


@router.post("/games/{game_id}/end", response_model=GameDTO)
async def end_game(game_id: str, caller: Caller = Depends(current_caller)) -> GameDTO:
    return _game_to_dto(await get_engine().end_game(game_id, caller))


@router.post("/games/{game_id}/pause", response_model=GameDTO)
async def set_paused(game_id: str, req: PauseRequest) -> GameDTO:
    game = await get_engine().set_paused(game_id, req.paused, reason=req.reason, dispute=req.dispute)
    return _game_to_dto(game)


@router.get("/games/{game_id}/logs", response_model=list[AttemptLogDTO])
async def list_logs(game_id: str, team: str | None = None, limit: int = 100) -> list[AttemptLogDTO]:
    try:
        team_key = parse_team(team) if team else None
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    await get_engine().get_game(game_id)
    logs = await get_engine().list_attempts(game_id, team=team_key, limit=limit)
    return [_log_to_dto(log) for log in logs]


@router.get("/games/{game_id}/stats")
async def player_stats(game_id: str) -> dict:
    engine = get_engine()
    await engine.get_game(game_id)
    logs = await engine.list_attempts(game_id, limit=None)
    wins = await engine.list_win_logs(game_id)
    return {pid: s.to_dict() for pid, s in compute_player_stats(logs, wins).items()}


# --- clock and rounds ---


@router.post("/games/{game_id}/clock/start", response_model=GameDTO)
async def start_clock(game_id: str) -> GameDTO:
    return _game_to_dto(await get_clock().start_clock(game_id))


@router.post("/games/{game_id}/clock/stop", response_model=GameDTO)
async def stop_clock(game_id: str) -> GameDTO:
    return _game_to_dto(await get_clock().stop_clock(game_id))


@router.post("/games/{game_id}/clock/seconds", response_model=GameDTO)
async def set_clock_seconds(game_id: str, req: SecondsRequest) -> GameDTO:
    if req.seconds is None:
        raise HTTPException(status_code=422, detail="seconds is required")
    return _game_to_dto(await get_clock().set_clock_seconds(game_id, req.seconds))


@router.post("/games/{game_id}/clock/reset", response_model=GameDTO)
async def reset_clock(game_id: str, req: SecondsRequest) -> GameDTO:
    return _game_to_dto(await get_clock().reset_clock(game_id, req.seconds))


@router.post("/games/{game_id}/bonus/start", response_model=GameDTO)
async def start_bonus(game_id: str) -> GameDTO:
    return _game_to_dto(await get_clock().start_bonus(game_id))


@router.post("/games/{game_id}/bonus/end", response_model=GameDTO)
async def end_bonus(game_id: str) -> GameDTO:
    return _game_to_dto(await get_clock().end_bonus(game_id))


@router.post("/games/{game_id}/bonus/expired")
async def bonus_expired(game_id: str, req: BonusExpiryRequest) -> dict:
    game = await get_clock().check_bonus_expiry(game_id, req.observed_overtime_count)
    if game is None:
        return {"overtime": False, "game": None}
    return {"overtime": True, "game": _game_to_dto(game)}


# --- challenges, sequences, court ---


@router.post("/challenges")
async def new_challenge(req: CreateChallengeRequest, caller: Caller = Depends(current_caller)) -> dict:
    challenge_id = await create_challenge(
        get_store(),
        caller,
        name=req.name,
        target_score=req.target_score,
        points_for_win=req.points_for_win,
        shot_rule=req.shot_rule,
        description=req.description,
        difficulty=req.difficulty,
    )
    snap = await get_store().get(f"challenges/{challenge_id}")
    return {"challenge_id": challenge_id, "rule": describe_rule(snap.data.get("shotRule"))}


@router.post("/sequences")
async def new_sequence(req: CreateSequenceRequest, caller: Caller = Depends(current_caller)) -> dict:
    sequence_id = await create_sequence(
        get_store(), caller, name=req.name, challenge_ids=req.challenge_ids, description=req.description
    )
    return {"sequence_id": sequence_id, "challenge_count": len(req.challenge_ids)}


def _court_to_dto(c: CourtConfig) -> CourtConfigDTO:
    return CourtConfigDTO(
        spot_map={n: SpotDTO(shot_type=m.shot_range, zone=m.zone) for n, m in sorted(c.spot_map.items())},
        swap_sides=c.swap_sides,
    )


@router.get("/games/{game_id}/court", response_model=CourtConfigDTO)
async def get_court(game_id: str) -> CourtConfigDTO:
    await get_engine().get_game(game_id)
    return _court_to_dto(await load_court_config(get_store(), game_id))


@router.put("/games/{game_id}/court", response_model=CourtConfigDTO)
async def put_court(game_id: str, req: CourtConfigDTO) -> CourtConfigDTO:
    await get_engine().get_game(game_id)
    config = CourtConfig(
        spot_map={n: SpotMeta(n, s.shot_type, s.zone) for n, s in req.spot_map.items()},
        swap_sides=req.swap_sides,
    )
    return _court_to_dto(await save_court_config(get_store(), game_id, config))
