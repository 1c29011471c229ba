"""
Canonical in-memory shapes for a game and its logs.

``GameState.from_doc`` is the one place stored documents are normalized
(legacy freestyle encodings, missing maps, missing locks); everything past it
works with these frozen dataclasses only.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from wellball.scoring.shots import ShotSource, ShotType, parse_shot_type


class Team(str, Enum):
    A = "A"
    B = "B"

    @property
    def other(self) -> Team:
        return Team.B if self is Team.A else Team.A


def parse_team(value: object) -> Team:
    if isinstance(value, Team):
        return value
    try:
        return Team(str(value).upper())
    except ValueError:
        raise ValueError("team must be 'A' or 'B'")


class GameMode(str, Enum):
    SEQUENCE = "sequence"
    FREESTYLE = "freestyle"


class GameStatus(str, Enum):
    LOBBY = "lobby"
    LIVE = "live"
    ENDED = "ended"


def _non_negative_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class Caller:
    """Stable identity of whoever is invoking an operation."""

    uid: str

    def __post_init__(self) -> None:
        if not self.uid:
            raise ValueError("caller uid must not be empty")


@dataclass(frozen=True)
class TeamScores:
    a: int = 0
    b: int = 0

    def __post_init__(self) -> None:
        if self.a < 0 or self.b < 0:
            raise ValueError("scores must be >= 0")

    def get(self, team: Team) -> int:
        return self.a if team is Team.A else self.b

    def with_value(self, team: Team, value: int) -> TeamScores:
        return replace(self, a=value) if team is Team.A else replace(self, b=value)

    def to_doc(self) -> dict:
        return {"A": self.a, "B": self.b}

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> TeamScores:
        data = data or {}
        return cls(_non_negative_int(data.get("A")), _non_negative_int(data.get("B")))


@dataclass(frozen=True)
class TeamFlags:
    a: bool = False
    b: bool = False

    def get(self, team: Team) -> bool:
        return self.a if team is Team.A else self.b

    def with_value(self, team: Team, value: bool) -> TeamFlags:
        return replace(self, a=value) if team is Team.A else replace(self, b=value)

    def to_doc(self) -> dict:
        return {"A": self.a, "B": self.b}

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> TeamFlags:
        data = data or {}
        return cls(bool(data.get("A", False)), bool(data.get("B", False)))


@dataclass(frozen=True)
class TrackerLock:
    uid: str
    updated_at: float | None = None

    def to_doc(self) -> dict:
        return {"uid": self.uid, "updatedAt": self.updated_at}

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> TrackerLock | None:
        if not data or not data.get("uid"):
            return None
        return cls(uid=str(data["uid"]), updated_at=data.get("updatedAt"))


@dataclass(frozen=True)
class TeamLocks:
    a: TrackerLock | None = None
    b: TrackerLock | None = None

    def get(self, team: Team) -> TrackerLock | None:
        return self.a if team is Team.A else self.b

    def with_value(self, team: Team, lock: TrackerLock | None) -> TeamLocks:
        return replace(self, a=lock) if team is Team.A else replace(self, b=lock)

    def to_doc(self) -> dict:
        return {t.value: (self.get(t).to_doc() if self.get(t) else None) for t in Team}

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> TeamLocks:
        data = data or {}
        return cls(TrackerLock.from_doc(data.get("A")), TrackerLock.from_doc(data.get("B")))


@dataclass(frozen=True)
class ChallengeWon:
    """
    Pending challenge win, cleared only by advancing the challenge.

    ``points_for_win`` is what was actually added to the match score
    (already doubled for a shutout).
    """

    team: Team
    at_index: int
    points_for_win: int
    base_points: int
    shutout: bool
    score_a: int
    score_b: int
    win_log_id: str | None
    attempt_log_id: str | None = None
    ts: float | None = None
    challenge_round: int = 0

    def to_doc(self) -> dict:
        return {
            "team": self.team.value,
            "atIndex": self.at_index,
            "pointsForWin": self.points_for_win,
            "basePoints": self.base_points,
            "shutout": self.shutout,
            "scoreA": self.score_a,
            "scoreB": self.score_b,
            "winLogId": self.win_log_id,
            "attemptLogId": self.attempt_log_id,
            "ts": self.ts,
            "challengeRound": self.challenge_round,
        }

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> ChallengeWon | None:
        if not data:
            return None
        awarded = _non_negative_int(data.get("pointsForWin"))
        return cls(
            team=parse_team(data.get("team")),
            at_index=int(data.get("atIndex") or 0),
            points_for_win=awarded,
            base_points=_non_negative_int(data.get("basePoints", awarded)),
            shutout=bool(data.get("shutout", False)),
            score_a=_non_negative_int(data.get("scoreA")),
            score_b=_non_negative_int(data.get("scoreB")),
            win_log_id=data.get("winLogId") or None,
            attempt_log_id=data.get("attemptLogId") or None,
            ts=data.get("ts"),
            challenge_round=_non_negative_int(data.get("challengeRound")),
        )


@dataclass(frozen=True)
class ClockState:
    """
    Stored clock: ``seconds`` is the baseline remaining at ``last_start_at``
    while running, or the frozen remaining time while stopped.
    """

    seconds: int = 90
    running: bool = False
    last_start_at: float | None = None

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError("clock seconds must be >= 0")


@dataclass(frozen=True)
class AutoModeConfig:
    enabled: bool = False
    ingest_threshold: float = 0.85
    review_threshold: float = 0.65
    gate_by_clock: bool = True
    updated_at: float | None = None
    updated_by: str | None = None

    def to_doc(self) -> dict:
        return {
            "enabled": self.enabled,
            "ingestThreshold": self.ingest_threshold,
            "reviewThreshold": self.review_threshold,
            "gateByClock": self.gate_by_clock,
            "updatedAt": self.updated_at,
            "updatedBy": self.updated_by,
        }

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> AutoModeConfig:
        if not data:
            return cls()
        return cls(
            enabled=bool(data.get("enabled", False)),
            ingest_threshold=float(data.get("ingestThreshold", 0.85)),
            review_threshold=float(data.get("reviewThreshold", 0.65)),
            gate_by_clock=bool(data.get("gateByClock", True)),
            updated_at=data.get("updatedAt"),
            updated_by=data.get("updatedBy"),
        )


@dataclass(frozen=True)
class FreestyleConfig:
    target_score: int = 0
    points_for_win: int = 0

    @classmethod
    def from_game_doc(cls, data: Mapping[str, Any]) -> FreestyleConfig | None:
        """
        Freestyle parameters have been stored as a nested
        ``freestyle: {targetScore, pointsForWin}`` map (also with short
        ``target``/``points`` keys) and as flat ``freestyleTarget`` /
        ``freestylePoints`` fields.
        """
        nested = data.get("freestyle")
        if isinstance(nested, Mapping):
            target = nested.get("targetScore", nested.get("target"))
            points = nested.get("pointsForWin", nested.get("points"))
        elif "freestyleTarget" in data or "freestylePoints" in data:
            target = data.get("freestyleTarget")
            points = data.get("freestylePoints")
        else:
            return None
        return cls(target_score=_non_negative_int(target), points_for_win=_non_negative_int(points))


@dataclass(frozen=True)
class Roles:
    main: str
    secondary: str | None = None


@dataclass(frozen=True)
class GameState:
    game_id: str
    roles: Roles
    team_a_ids: tuple[str, ...]
    team_b_ids: tuple[str, ...]
    mode: GameMode = GameMode.SEQUENCE
    sequence_id: str | None = None
    challenge_ids: tuple[str, ...] = ()
    freestyle: FreestyleConfig | None = None
    current_challenge_index: int = 0
    # Bumped by every advance; the index repeats when the last challenge is replayed.
    challenge_round: int = 0
    challenge_score: TeamScores = field(default_factory=TeamScores)
    match_score: TeamScores = field(default_factory=TeamScores)
    challenge_won: ChallengeWon | None = None
    money_used: TeamFlags = field(default_factory=TeamFlags)
    gc_used: TeamFlags = field(default_factory=TeamFlags)
    bonus_active: bool = False
    overtime_count: int = 0
    clock: ClockState = field(default_factory=ClockState)
    tracker_locks: TeamLocks = field(default_factory=TeamLocks)
    paused: bool = False
    pause_reason: str | None = None
    dispute: str | None = None
    status: GameStatus = GameStatus.LIVE
    auto_mode: AutoModeConfig = field(default_factory=AutoModeConfig)
    event_id: str | None = None
    created_at: float | None = None

    @property
    def is_ended(self) -> bool:
        return self.status is GameStatus.ENDED

    def is_main(self, uid: str) -> bool:
        return uid == self.roles.main

    def team_of(self, player_id: str) -> Team | None:
        if player_id in self.team_a_ids:
            return Team.A
        if player_id in self.team_b_ids:
            return Team.B
        return None

    def team_ids(self, team: Team) -> tuple[str, ...]:
        return self.team_a_ids if team is Team.A else self.team_b_ids

    def specialty_used(self, team: Team, specialty: str) -> bool:
        flags = self.money_used if specialty == "money" else self.gc_used
        return flags.get(team)

    def with_specialty(self, team: Team, specialty: str, used: bool) -> GameState:
        if specialty == "money":
            return replace(self, money_used=self.money_used.with_value(team, used))
        return replace(self, gc_used=self.gc_used.with_value(team, used))

    def to_doc(self) -> dict:
        return {
            "createdBy": self.roles.main,
            "roles": {"main": self.roles.main, "secondary": self.roles.secondary},
            "teamAIds": list(self.team_a_ids),
            "teamBIds": list(self.team_b_ids),
            "mode": self.mode.value,
            "sequenceId": self.sequence_id,
            "sequenceChallengeIds": list(self.challenge_ids),
            "freestyle": (
                {"targetScore": self.freestyle.target_score, "pointsForWin": self.freestyle.points_for_win}
                if self.freestyle
                else None
            ),
            "currentChallengeIndex": self.current_challenge_index,
            "challengeRound": self.challenge_round,
            "challengeScore": self.challenge_score.to_doc(),
            "matchScore": self.match_score.to_doc(),
            "challengeWon": self.challenge_won.to_doc() if self.challenge_won else None,
            "moneyUsed": self.money_used.to_doc(),
            "gcUsed": self.gc_used.to_doc(),
            "bonusActive": self.bonus_active,
            "overtimeCount": self.overtime_count,
            "clockSeconds": self.clock.seconds,
            "clockRunning": self.clock.running,
            "lastStartAt": self.clock.last_start_at,
            "trackerLocks": self.tracker_locks.to_doc(),
            "paused": self.paused,
            "pauseReason": self.pause_reason,
            "dispute": self.dispute,
            "status": self.status.value,
            "autoMode": self.auto_mode.to_doc(),
            "eventId": self.event_id,
            "createdAt": self.created_at,
        }

    def patch_from(self, before: GameState) -> dict:
        """Top-level document fields that differ from ``before``."""
        old, new = before.to_doc(), self.to_doc()
        return {k: v for k, v in new.items() if old.get(k) != v}

    @classmethod
    def from_doc(cls, game_id: str, data: Mapping[str, Any]) -> GameState:
        roles = data.get("roles") or {}
        main = roles.get("main") or data.get("createdBy") or "unknown"
        freestyle = FreestyleConfig.from_game_doc(data)
        raw_mode = data.get("mode")
        if raw_mode in (m.value for m in GameMode):
            mode = GameMode(raw_mode)
        else:
            mode = GameMode.FREESTYLE if freestyle is not None else GameMode.SEQUENCE
        try:
            status = GameStatus(data.get("status") or "live")
        except ValueError:
            status = GameStatus.LIVE
        seconds = data.get("clockSeconds")
        return cls(
            game_id=game_id,
            roles=Roles(main=str(main), secondary=roles.get("secondary")),
            team_a_ids=tuple(data.get("teamAIds") or ()),
            team_b_ids=tuple(data.get("teamBIds") or ()),
            mode=mode,
            sequence_id=data.get("sequenceId"),
            challenge_ids=tuple(data.get("sequenceChallengeIds") or ()),
            freestyle=freestyle,
            current_challenge_index=_non_negative_int(data.get("currentChallengeIndex")),
            challenge_round=_non_negative_int(data.get("challengeRound")),
            challenge_score=TeamScores.from_doc(data.get("challengeScore")),
            match_score=TeamScores.from_doc(data.get("matchScore")),
            challenge_won=ChallengeWon.from_doc(data.get("challengeWon")),
            money_used=TeamFlags.from_doc(data.get("moneyUsed")),
            gc_used=TeamFlags.from_doc(data.get("gcUsed")),
            bonus_active=bool(data.get("bonusActive", False)),
            overtime_count=_non_negative_int(data.get("overtimeCount")),
            clock=ClockState(
                seconds=_non_negative_int(90 if seconds is None else seconds),
                running=bool(data.get("clockRunning", False)),
                last_start_at=data.get("lastStartAt"),
            ),
            tracker_locks=TeamLocks.from_doc(data.get("trackerLocks")),
            paused=bool(data.get("paused", False)),
            pause_reason=data.get("pauseReason"),
            dispute=data.get("dispute"),
            status=status,
            auto_mode=AutoModeConfig.from_doc(data.get("autoMode")),
            event_id=data.get("eventId"),
            created_at=data.get("createdAt"),
        )


@dataclass(frozen=True)
class ShotAttempt:
    """
    A shot to record, from a tracker button, a camera event or a review.

    - shot_type: any ShotType (string values are accepted)
    - confidence: 0..1 for camera/review provenance, None for manual entry
    """

    player_id: str
    shot_type: ShotType
    made: bool
    moneyball: bool = False
    source: ShotSource = ShotSource.MANUAL
    confidence: float | None = None
    evidence: Mapping[str, Any] | None = None
    zone: str | None = None
    shot_key: str | None = None
    spot_number: int | None = None
    start_spot_id: str | None = None
    shot_spot_id: str | None = None

    def __post_init__(self) -> None:
        if not self.player_id:
            raise ValueError("player_id is required")
        object.__setattr__(self, "shot_type", parse_shot_type(self.shot_type))
        object.__setattr__(self, "source", ShotSource(self.source))
        if not isinstance(self.made, bool):
            raise ValueError("made must be a boolean")
        if self.confidence is not None and not (0.0 <= float(self.confidence) <= 1.0):
            raise ValueError("confidence must be between 0 and 1")


@dataclass(frozen=True)
class AttemptLog:
    log_id: str
    player_id: str
    team: Team
    shot_type: ShotType
    made: bool
    moneyball: bool
    challenge_index: int
    challenge_round: int = 0
    ts: float | None = None
    source: ShotSource = ShotSource.MANUAL
    confidence: float | None = None
    evidence: Mapping[str, Any] | None = None
    zone: str | None = None
    shot_key: str | None = None
    spot_number: int | None = None
    start_spot_id: str | None = None
    shot_spot_id: str | None = None
    recorded_by: str | None = None

    @property
    def points(self) -> int:
        return self.shot_type.points(made=self.made, moneyball=self.moneyball)

    @property
    def specialty(self) -> str | None:
        return self.shot_type.specialty(moneyball=self.moneyball)

    def to_doc(self) -> dict:
        return {
            "playerId": self.player_id,
            "team": self.team.value,
            "shotType": self.shot_type.value,
            "made": self.made,
            "moneyball": self.moneyball,
            "challengeIndex": self.challenge_index,
            "challengeRound": self.challenge_round,
            "ts": self.ts,
            "source": self.source.value,
            "confidence": self.confidence,
            "evidence": dict(self.evidence) if self.evidence else None,
            "zone": self.zone,
            "shotKey": self.shot_key,
            "spotNumber": self.spot_number,
            "startSpotId": self.start_spot_id,
            "shotSpotId": self.shot_spot_id,
            "recordedBy": self.recorded_by,
        }

    @classmethod
    def from_doc(cls, log_id: str, data: Mapping[str, Any]) -> AttemptLog:
        return cls(
            log_id=log_id,
            player_id=str(data.get("playerId")),
            team=parse_team(data.get("team")),
            shot_type=parse_shot_type(data.get("shotType")),
            made=bool(data.get("made")),
            moneyball=bool(data.get("moneyball", False)),
            challenge_index=int(data.get("challengeIndex") or 0),
            challenge_round=_non_negative_int(data.get("challengeRound")),
            ts=data.get("ts"),
            source=ShotSource(data.get("source") or "manual"),
            confidence=data.get("confidence"),
            evidence=data.get("evidence"),
            zone=data.get("zone"),
            shot_key=data.get("shotKey"),
            spot_number=data.get("spotNumber"),
            start_spot_id=data.get("startSpotId"),
            shot_spot_id=data.get("shotSpotId"),
            recorded_by=data.get("recordedBy"),
        )


WIN_LOG_TYPE = "challenge_win"


def is_win_log(data: Mapping[str, Any] | None) -> bool:
    return bool(data) and data.get("type") == WIN_LOG_TYPE


@dataclass(frozen=True)
class WinLog:
    log_id: str
    team: Team
    by_player_id: str
    challenge_index: int
    points_for_win: int
    shutout: bool
    attempt_log_id: str
    ts: float | None = None
    challenge_round: int = 0

    def to_doc(self) -> dict:
        return {
            "type": WIN_LOG_TYPE,
            "tag": "GameWinner",
            "team": self.team.value,
            "byPlayerId": self.by_player_id,
            "challengeIndex": self.challenge_index,
            "pointsForWin": self.points_for_win,
            "shutout": self.shutout,
            "attemptLogId": self.attempt_log_id,
            "ts": self.ts,
            "challengeRound": self.challenge_round,
        }

    @classmethod
    def from_doc(cls, log_id: str, data: Mapping[str, Any]) -> WinLog:
        return cls(
            log_id=log_id,
            team=parse_team(data.get("team")),
            by_player_id=str(data.get("byPlayerId")),
            challenge_index=int(data.get("challengeIndex") or 0),
            points_for_win=_non_negative_int(data.get("pointsForWin")),
            shutout=bool(data.get("shutout", False)),
            attempt_log_id=str(data.get("attemptLogId") or ""),
            ts=data.get("ts"),
            challenge_round=_non_negative_int(data.get("challengeRound")),
        )
