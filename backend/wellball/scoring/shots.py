from __future__ import annotations

from enum import Enum


class ShotType(str, Enum):
    """
    Every shot a tracker or camera can log.

    - MID / LONG: regular challenge shots (moneyball doubles a make)
    - GAMECHANGER: high-value challenge shot, once per challenge per team
    - BONUS_*: bonus-round shots, scored straight to the match total
    - BONUS: legacy single bonus type (worth the same as BONUS_MID)
    """

    MID = "mid"
    LONG = "long"
    GAMECHANGER = "gamechanger"
    BONUS_MID = "bonus_mid"
    BONUS_LONG = "bonus_long"
    BONUS_GC = "bonus_gc"
    BONUS = "bonus"

    @property
    def is_bonus(self) -> bool:
        return self in (ShotType.BONUS_MID, ShotType.BONUS_LONG, ShotType.BONUS_GC, ShotType.BONUS)

    @property
    def shot_range(self) -> str | None:
        """Range used by challenge rules: 'mid' | 'long' | 'gamechanger' (None for bonus shots)."""
        if self in (ShotType.MID, ShotType.LONG, ShotType.GAMECHANGER):
            return self.value
        return None

    def points(self, *, made: bool, moneyball: bool = False) -> int:
        if not made:
            return 0
        if self is ShotType.GAMECHANGER:
            return 5
        if self is ShotType.MID or self is ShotType.LONG:
            return 2 if moneyball else 1
        if self is ShotType.BONUS_MID:
            return 1
        if self is ShotType.BONUS_LONG:
            return 2
        if self is ShotType.BONUS_GC:
            return 4
        if self is ShotType.BONUS:
            return 1
        raise ValueError(f"unhandled shot type {self!r}")

    def specialty(self, *, moneyball: bool) -> str | None:
        """
        Which once-per-challenge resource an attempt consumes, if any.

        'money' for a moneyball mid/long, 'gc' for a gamechanger.
        """
        if self is ShotType.GAMECHANGER:
            return "gc"
        if moneyball and self in (ShotType.MID, ShotType.LONG):
            return "money"
        return None


class ShotSource(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    REVIEW = "review"
    REVIEW_EDIT = "review_edit"


ZONES: tuple[str, ...] = ("corner", "wing", "elbow", "top", "gc")
RANGES: tuple[str, ...] = ("mid", "long")

_ZONE_LABELS = {"corner": "Corner", "wing": "Wing", "elbow": "Elbow", "top": "Top"}
_RANGE_LABELS = {"mid": "Midrange", "long": "Long-range"}


def parse_shot_type(value: object) -> ShotType:
    if isinstance(value, ShotType):
        return value
    try:
        return ShotType(str(value))
    except ValueError:
        raise ValueError(f"unknown shot type {value!r}")


def to_bonus_type(shot_range: str | None) -> ShotType:
    if shot_range == "mid":
        return ShotType.BONUS_MID
    if shot_range == "long":
        return ShotType.BONUS_LONG
    return ShotType.BONUS_GC


def build_shot_key(shot_range: str | None, zone: str | None) -> str | None:
    """Canonical court key: 'mid_corner', 'long_top', ... or 'gamechanger'."""
    if shot_range == "gamechanger" or zone == "gc":
        return "gamechanger"
    if not shot_range or not zone:
        return None
    return f"{shot_range}_{zone}"


def parse_shot_key(shot_key: str | None) -> tuple[str | None, str | None]:
    """Inverse of build_shot_key: returns (range, zone)."""
    if not shot_key:
        return None, None
    if shot_key in ("gamechanger", "gc"):
        return "gamechanger", "gc"
    shot_range, _, zone = shot_key.partition("_")
    return shot_range or None, zone or None


def derive_shot_key(shot_type: str | None, zone: str | None, provided: str | None = None) -> str | None:
    """
    Descriptive key stored on review items when the detector didn't supply one.

    Bonus types map to their range; a missing zone becomes 'unknown'.
    """
    if provided:
        return provided
    if not shot_type:
        return None
    if shot_type in ("gamechanger", "bonus_gc"):
        return "gc"
    if shot_type in ("mid", "bonus_mid"):
        shot_range = "mid"
    elif shot_type in ("long", "bonus_long"):
        shot_range = "long"
    else:
        return None
    return f"{shot_range}_{zone or 'unknown'}"


def display_label(shot_key: str | None) -> str:
    if shot_key == "gamechanger":
        return "Gamechanger"
    shot_range, zone = parse_shot_key(shot_key)
    return f"{_RANGE_LABELS.get(shot_range or '', '')} {_ZONE_LABELS.get(zone or '', '')}".strip()
