"""
Fuse raw per-camera detection signals into shot proposals.

Signals for one ball track that fall into the same fixed time window form a
cluster. A cluster needs at least one ``release`` signal (the shooter); a
``net`` signal anywhere in it means the shot was made. Each cluster yields
one proposal with a content-derived id, so fusing overlapping batches twice
produces the same ids and the auto-ingest claim drops the repeats.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

import numpy as np

from wellball.scoring.game import GameState, Team, parse_team
from wellball.scoring.shots import build_shot_key, to_bonus_type

SIGNAL_KINDS = ("release", "rim", "net")

# shooter / outcome / zone
CONFIDENCE_WEIGHTS = np.array([0.4, 0.4, 0.2])

DEFAULT_SHOOTER_CONF = 0.6
DEFAULT_ZONE_CONF = 0.7
DEFAULT_RIM_OUTCOME_CONF = 0.99
NO_RIM_OUTCOME_CONF = 0.7
JERSEY_VOTE_DEFAULT = 0.5


@dataclass(frozen=True)
class DetectionSignal:
    """
    One camera observation.

    - kind: 'release' (shooter seen letting go), 'rim' or 'net'
    - t: milliseconds on the detector clock
    - conf: per-aspect confidences ('shooter', 'zone', 'outcome', 'moneyball')
    """

    kind: str
    t: int
    ball_track_id: str
    player_track_id: str | None = None
    jersey_no: str | None = None
    player_id: str | None = None
    team: str | None = None
    shot_range: str | None = None
    zone: str | None = None
    spot_number: int | None = None
    moneyball: bool = False
    conf: Mapping[str, float] = field(default_factory=dict)
    source_cam: str | None = None
    clip_path: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in SIGNAL_KINDS:
            raise ValueError(f"unknown signal kind {self.kind!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DetectionSignal:
        jersey = data.get("jerseyNo")
        return cls(
            kind=str(data.get("kind")),
            t=int(data.get("t") or 0),
            ball_track_id=str(data.get("ballTrackId") or ""),
            player_track_id=data.get("playerTrackId"),
            jersey_no=str(jersey) if jersey not in (None, "") else None,
            player_id=data.get("playerId"),
            team=data.get("team"),
            shot_range=data.get("range") or data.get("shotRange"),
            zone=data.get("zone"),
            spot_number=data.get("spotNumber"),
            moneyball=bool(data.get("moneyball", False)),
            conf=dict(data.get("conf") or {}),
            source_cam=data.get("sourceCam"),
            clip_path=data.get("clipPath"),
        )


@dataclass(frozen=True)
class RosterEntry:
    player_id: str
    team: Team
    jersey_no: str | None
    has_face_photo: bool = False


class RosterIndex:
    """Jersey number -> roster players of a game."""

    def __init__(self, entries: Iterable[RosterEntry] = ()) -> None:
        self._entries = tuple(entries)
        self._by_jersey: dict[str, list[RosterEntry]] = {}
        for entry in self._entries:
            if entry.jersey_no:
                self._by_jersey.setdefault(entry.jersey_no, []).append(entry)

    @property
    def entries(self) -> tuple[RosterEntry, ...]:
        return self._entries

    @classmethod
    def for_game(cls, game: GameState, players: Mapping[str, Mapping[str, Any]]) -> RosterIndex:
        """``players`` maps player id to its profile (``jerseyNumber``, ``facePhotoUrl``)."""
        entries = []
        for team in Team:
            for pid in game.team_ids(team):
                profile = players.get(pid) or {}
                jersey = profile.get("jerseyNumber")
                entries.append(
                    RosterEntry(
                        player_id=pid,
                        team=team,
                        jersey_no=str(jersey) if jersey not in (None, "") else None,
                        has_face_photo=bool(profile.get("facePhotoUrl")),
                    )
                )
        return cls(entries)

    def resolve(self, jersey_no: str | None, team_hint: str | None = None) -> RosterEntry | None:
        """Unique player wearing ``jersey_no``, using ``team_hint`` when two teams share it."""
        if not jersey_no:
            return None
        candidates = self._by_jersey.get(jersey_no, [])
        if len(candidates) > 1 and team_hint in ("A", "B"):
            candidates = [c for c in candidates if c.team is parse_team(team_hint)]
        return candidates[0] if len(candidates) == 1 else None


async def load_roster(store, game: GameState) -> RosterIndex:
    players = {}
    for pid in (*game.team_a_ids, *game.team_b_ids):
        snap = await store.get(f"players/{pid}")
        if snap.exists:
            players[pid] = snap.data
    return RosterIndex.for_game(game, players)


@dataclass(frozen=True)
class ShotProposal:
    shot_id: str
    t: int
    player_id: str | None
    team: str | None
    shot_type: str
    made: bool
    moneyball: bool
    zone: str | None
    spot_number: int | None
    confidence: float
    confidence_parts: Mapping[str, float]
    evidence: Mapping[str, Any]

    def to_event(self) -> dict:
        """Auto-event document for the ingest queue."""
        cams = self.evidence.get("cams") or []
        shot_range = self.shot_type.replace("bonus_", "") if self.shot_type.startswith("bonus_") else self.shot_type
        return {
            "type": "shot",
            "playerId": self.player_id,
            "team": self.team,
            "shotType": self.shot_type,
            "made": self.made,
            "moneyball": self.moneyball,
            "confidence": self.confidence,
            "confidenceParts": dict(self.confidence_parts),
            "zone": self.zone,
            "shotKey": build_shot_key("gamechanger" if shot_range == "gc" else shot_range, self.zone),
            "spotNumber": self.spot_number,
            "sourceCamera": cams[0] if cams else None,
            "evidence": dict(self.evidence),
            "t": self.t,
        }


def proposal_id(t: int, player_track_id: str | None, ball_track_id: str, zone: str | None, made: bool) -> str:
    raw = f"{t}|{player_track_id or 'p?'}|{ball_track_id}|{zone or 'z?'}|{'1' if made else '0'}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()[:16]


def bucket_key(signal: DetectionSignal, window_ms: int) -> tuple[str, int]:
    return signal.ball_track_id, math.floor(signal.t / window_ms)


def _fuse_cluster(
    group: Sequence[DetectionSignal], roster: RosterIndex, *, bonus_active: bool, moneyball_floor: float
) -> ShotProposal | None:
    shooters = [s for s in group if s.kind == "release"]
    if not shooters:
        return None
    rim = next((s for s in group if s.kind in ("net", "rim")), None)

    votes: dict[str, float] = {}
    for s in shooters:
        if s.jersey_no:
            votes[s.jersey_no] = votes.get(s.jersey_no, 0.0) + s.conf.get("shooter", JERSEY_VOTE_DEFAULT)
    best_jersey = max(votes, key=lambda j: votes[j]) if votes else None
    shooter = next((s for s in shooters if s.jersey_no == best_jersey), shooters[0]) if best_jersey else shooters[0]

    mapped = roster.resolve(best_jersey, shooter.team)
    player_id = mapped.player_id if mapped else shooter.player_id
    team = mapped.team.value if mapped else shooter.team

    zone_signal = max(shooters, key=lambda s: s.conf.get("zone", 0.0))
    shot_range = zone_signal.shot_range or "mid"
    made = any(s.kind == "net" for s in group)
    moneyball = any(s.moneyball and s.conf.get("moneyball", 0.0) >= moneyball_floor for s in shooters)
    shot_type = to_bonus_type(shot_range).value if bonus_active else shot_range

    parts = {
        "shooter": float(shooter.conf.get("shooter", DEFAULT_SHOOTER_CONF)),
        "outcome": float(rim.conf.get("outcome", DEFAULT_RIM_OUTCOME_CONF)) if rim else NO_RIM_OUTCOME_CONF,
        "zone": float(zone_signal.conf.get("zone", DEFAULT_ZONE_CONF)),
    }
    overall = float(np.average([parts["shooter"], parts["outcome"], parts["zone"]], weights=CONFIDENCE_WEIGHTS))
    parts["moneyball"] = 0.9 if moneyball else 0.1

    t = min(s.t for s in group)
    return ShotProposal(
        shot_id=proposal_id(t, shooter.player_track_id, group[0].ball_track_id, zone_signal.zone or shot_range, made),
        t=t,
        player_id=player_id,
        team=team,
        shot_type=shot_type,
        made=made,
        moneyball=moneyball,
        zone=zone_signal.zone,
        spot_number=zone_signal.spot_number,
        confidence=min(1.0, max(0.0, overall)),
        confidence_parts=parts,
        evidence={
            "cams": list(dict.fromkeys(s.source_cam for s in group if s.source_cam)),
            "clipPaths": [s.clip_path for s in group if s.clip_path],
        },
    )


def fuse_signals(
    signals: Iterable[DetectionSignal],
    roster: RosterIndex,
    *,
    bonus_active: bool = False,
    window_ms: int = 320,
    moneyball_floor: float = 0.6,
) -> list[ShotProposal]:
    """One proposal per (ball track, time window) cluster that has a shooter, oldest first."""
    if window_ms <= 0:
        raise ValueError("window_ms must be > 0")
    buckets: dict[tuple[str, int], list[DetectionSignal]] = {}
    for signal in signals:
        if not signal.ball_track_id:
            continue
        buckets.setdefault(bucket_key(signal, window_ms), []).append(signal)

    proposals = []
    for group in buckets.values():
        proposal = _fuse_cluster(group, roster, bonus_active=bonus_active, moneyball_floor=moneyball_floor)
        if proposal is not None:
            proposals.append(proposal)
    proposals.sort(key=lambda p: p.t)
    return proposals
