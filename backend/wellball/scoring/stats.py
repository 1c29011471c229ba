from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from wellball.scoring.game import AttemptLog, WinLog
from wellball.scoring.shots import ShotType


@dataclass(frozen=True)
class Bucket:
    makes: int = 0
    attempts: int = 0

    @property
    def percentage(self) -> float:
        if self.attempts == 0:
            return 0.0
        return (self.makes / self.attempts) * 100.0

    def to_dict(self) -> dict:
        return {"makes": self.makes, "attempts": self.attempts, "pct": self.percentage}


@dataclass(frozen=True)
class PlayerStats:
    player_id: str
    overall: Bucket
    mid: Bucket
    long: Bucket
    moneyball: Bucket
    gamechanger: Bucket
    bonus: Bucket
    bonus_mid: Bucket
    bonus_long: Bucket
    bonus_gc: Bucket
    challenge_wins: int = 0

    def to_dict(self) -> dict:
        return {
            "playerId": self.player_id,
            "overall": self.overall.to_dict(),
            "mid": self.mid.to_dict(),
            "long": self.long.to_dict(),
            "moneyball": self.moneyball.to_dict(),
            "gamechanger": self.gamechanger.to_dict(),
            "bonus": self.bonus.to_dict(),
            "bonusMid": self.bonus_mid.to_dict(),
            "bonusLong": self.bonus_long.to_dict(),
            "bonusGc": self.bonus_gc.to_dict(),
            "challengeWins": self.challenge_wins,
        }


def _bucket(logs: list[AttemptLog]) -> Bucket:
    return Bucket(makes=sum(1 for log in logs if log.made), attempts=len(logs))


def _accumulate(player_id: str, logs: list[AttemptLog], wins: int) -> PlayerStats:
    mine = [log for log in logs if log.player_id == player_id]

    def of(*types: ShotType) -> list[AttemptLog]:
        return [log for log in mine if log.shot_type in types]

    # Overall is mid + long only; moneyball attempts count inside it.
    regular = of(ShotType.MID, ShotType.LONG)
    bonus = [log for log in mine if log.shot_type.is_bonus]

    return PlayerStats(
        player_id=player_id,
        overall=_bucket(regular),
        mid=_bucket(of(ShotType.MID)),
        long=_bucket(of(ShotType.LONG)),
        moneyball=_bucket([log for log in regular if log.moneyball]),
        gamechanger=_bucket(of(ShotType.GAMECHANGER)),
        bonus=_bucket(bonus),
        bonus_mid=_bucket(of(ShotType.BONUS_MID, ShotType.BONUS)),
        bonus_long=_bucket(of(ShotType.BONUS_LONG)),
        bonus_gc=_bucket(of(ShotType.BONUS_GC)),
        challenge_wins=wins,
    )


def compute_player_stats(logs: Iterable[AttemptLog], wins: Iterable[WinLog] = ()) -> dict[str, PlayerStats]:
    """Per-player shooting lines for a set of attempt logs, keyed by player id."""
    history = list(logs)
    win_counts: dict[str, int] = {}
    for w in wins:
        win_counts[w.by_player_id] = win_counts.get(w.by_player_id, 0) + 1

    player_ids = list(dict.fromkeys(log.player_id for log in history))
    return {pid: _accumulate(pid, history, win_counts.get(pid, 0)) for pid in player_ids}
