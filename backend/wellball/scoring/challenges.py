from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from wellball.errors import InvalidGameSetup
from wellball.scoring.game import Caller, GameMode, GameState
from wellball.scoring.rules import ShotRule, describe_rule, normalize_shot_rule, rule_ranges, spots_for_rule

DIFFICULTIES = ("easy", "normal", "hard")


@dataclass(frozen=True)
class ChallengeSpec:
    """What the scoring engine needs from the active challenge."""

    target_score: int = 0
    points_for_win: int = 0
    shot_rule: ShotRule = field(default_factory=ShotRule)
    challenge_id: str | None = None
    name: str | None = None

    @classmethod
    def from_doc(cls, challenge_id: str, data: Mapping[str, Any]) -> ChallengeSpec:
        return cls(
            target_score=max(0, int(data.get("targetScore") or 0)),
            points_for_win=max(0, int(data.get("pointsForWin", 1) or 0)),
            shot_rule=normalize_shot_rule(data.get("shotRule")),
            challenge_id=challenge_id,
            name=data.get("name"),
        )


def challenge_path(challenge_id: str) -> str:
    return f"challenges/{challenge_id}"


def sequence_path(sequence_id: str) -> str:
    return f"sequences/{sequence_id}"


async def load_active_challenge(reader, game: GameState) -> ChallengeSpec:
    """
    Resolve the challenge at the game's cursor. ``reader`` is a store or an
    open transaction (anything with ``async get(path)``).

    A sequence slot pointing at a missing challenge yields target 0, which
    never triggers a win.
    """
    if game.mode is GameMode.FREESTYLE:
        fs = game.freestyle
        if fs is None:
            return ChallengeSpec()
        return ChallengeSpec(target_score=fs.target_score, points_for_win=fs.points_for_win)

    if game.current_challenge_index >= len(game.challenge_ids):
        return ChallengeSpec()
    challenge_id = game.challenge_ids[game.current_challenge_index]
    snap = await reader.get(challenge_path(challenge_id))
    if not snap.exists:
        return ChallengeSpec(challenge_id=challenge_id)
    return ChallengeSpec.from_doc(challenge_id, snap.data)


async def create_challenge(
    store,
    caller: Caller,
    *,
    name: str,
    target_score: int = 0,
    points_for_win: int = 1,
    shot_rule: Mapping[str, Any] | ShotRule | None = None,
    description: str = "",
    difficulty: str = "normal",
    active: bool = True,
) -> str:
    if not name or not name.strip():
        raise InvalidGameSetup("challenge name is required", "Challenge name is required.")
    rule = normalize_shot_rule(shot_rule)
    now = store.now()
    return await store.add(
        "challenges",
        {
            "name": name.strip(),
            "description": description or "",
            "difficulty": difficulty if difficulty in DIFFICULTIES else "normal",
            "targetScore": max(0, int(target_score or 0)),
            "pointsForWin": max(0, int(points_for_win or 0)),
            "shotRule": rule.to_doc(),
            "shotRuleDescription": describe_rule(rule),
            "tags": {"ranges": list(rule_ranges(rule)), "spots": list(spots_for_rule(rule))},
            "active": bool(active),
            "createdBy": caller.uid,
            "createdAt": now,
            "updatedAt": now,
        },
    )


async def create_sequence(store, caller: Caller, *, name: str, challenge_ids: Sequence[str], description: str = "") -> str:
    if not name or not name.strip():
        raise InvalidGameSetup("sequence name is required", "Sequence name is required.")
    ids = [c for c in challenge_ids if c]
    now = store.now()
    return await store.add(
        "sequences",
        {
            "name": name.strip(),
            "description": description or "",
            "challengeIds": ids,
            "challengeCount": len(ids),
            "createdBy": caller.uid,
            "createdAt": now,
            "updatedAt": now,
        },
    )


async def load_sequence_challenge_ids(store, sequence_id: str) -> tuple[str, ...]:
    snap = await store.get(sequence_path(sequence_id))
    if not snap.exists:
        raise InvalidGameSetup(f"sequence {sequence_id!r} not found", "Sequence not found.")
    ids = snap.data.get("challengeIds")
    return tuple(ids) if isinstance(ids, list) else ()
