from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from wellball.scoring.shots import build_shot_key, display_label


@dataclass(frozen=True)
class SpotMeta:
    """
    Court-location metadata for one numbered spot.

    - shot_range: 'mid' | 'long' | 'gamechanger'
    - zone: 'corner' | 'wing' | 'elbow' | 'top' | 'gc'
    """

    spot: int
    shot_range: str
    zone: str

    @property
    def shot_key(self) -> str | None:
        return build_shot_key(self.shot_range, self.zone)

    @property
    def label(self) -> str:
        return display_label(self.shot_key)


def _spot(n: int, shot_range: str, zone: str) -> tuple[int, SpotMeta]:
    return n, SpotMeta(n, shot_range, zone)


# Left/right pairs share a location: 1 & 15 long corner, 2 & 16 mid corner,
# 3 & 13 long wing, 4 & 14 mid wing, 5 & 11 long elbow, 6 & 12 mid elbow,
# 7 & 9 long top, 8 & 10 mid top, 17 & 18 gamechanger.
DEFAULT_SPOT_MAP: Mapping[int, SpotMeta] = dict(
    [
        _spot(1, "long", "corner"),
        _spot(15, "long", "corner"),
        _spot(2, "mid", "corner"),
        _spot(16, "mid", "corner"),
        _spot(3, "long", "wing"),
        _spot(13, "long", "wing"),
        _spot(4, "mid", "wing"),
        _spot(14, "mid", "wing"),
        _spot(5, "long", "elbow"),
        _spot(11, "long", "elbow"),
        _spot(6, "mid", "elbow"),
        _spot(12, "mid", "elbow"),
        _spot(7, "long", "top"),
        _spot(9, "long", "top"),
        _spot(8, "mid", "top"),
        _spot(10, "mid", "top"),
        _spot(17, "gamechanger", "gc"),
        _spot(18, "gamechanger", "gc"),
    ]
)

ALL_SPOT_IDS: tuple[int, ...] = tuple(sorted(DEFAULT_SPOT_MAP))


@dataclass(frozen=True)
class CourtConfig:
    """Per-game spot calibration, stored at ``games/{id}/config/court``."""

    spot_map: Mapping[int, SpotMeta] = field(default_factory=lambda: dict(DEFAULT_SPOT_MAP))
    swap_sides: bool = False
    updated_at: float | None = None

    @classmethod
    def from_doc(cls, data: Mapping[str, Any] | None) -> CourtConfig:
        """
        Merge stored overrides over the defaults. Entries missing a range or
        zone fall back to the default for that spot.
        """
        if not data:
            return cls()
        overrides = data.get("spotMap") or {}
        merged: dict[int, SpotMeta] = {}
        for raw_key in {*map(str, DEFAULT_SPOT_MAP), *map(str, overrides)}:
            try:
                n = int(raw_key)
            except ValueError:
                continue
            entry = overrides.get(raw_key) or overrides.get(n) or {}
            default = DEFAULT_SPOT_MAP.get(n)
            shot_range = entry.get("shotType") or (default.shot_range if default else None)
            zone = entry.get("zone") or (default.zone if default else None)
            if shot_range and zone:
                merged[n] = SpotMeta(n, shot_range, zone)
        return cls(
            spot_map=merged,
            swap_sides=bool(data.get("swapSides", False)),
            updated_at=data.get("updatedAt"),
        )

    def to_doc(self) -> dict:
        return {
            "spotMap": {
                str(n): {"shotType": m.shot_range, "zone": m.zone, "shotKey": m.shot_key}
                for n, m in sorted(self.spot_map.items())
            },
            "swapSides": self.swap_sides,
            "updatedAt": self.updated_at,
        }

    def spot_to_meta(self, spot: object) -> SpotMeta | None:
        try:
            n = int(spot)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None
        return self.spot_map.get(n)


def court_config_path(game_id: str) -> str:
    return f"games/{game_id}/config/court"


async def load_court_config(store, game_id: str) -> CourtConfig:
    snap = await store.get(court_config_path(game_id))
    return CourtConfig.from_doc(snap.data)


async def save_court_config(store, game_id: str, config: CourtConfig) -> CourtConfig:
    clean = CourtConfig(spot_map=config.spot_map, swap_sides=config.swap_sides, updated_at=store.now())
    await store.set(court_config_path(game_id), clean.to_doc(), merge=True)
    return clean


def apply_court_mapping(raw: Mapping[str, Any], court: CourtConfig) -> dict:
    """
    Normalize a raw detector payload before it is queued or ingested.

    Fills shotType from the spot number when missing, attaches zone/shotKey
    and maps the detector's ``moneyballDetected`` flag to ``moneyball``.
    """
    out = dict(raw)
    spot = out.get("spotNumber")
    meta = court.spot_to_meta(spot) if isinstance(spot, int) and not isinstance(spot, bool) else None

    if meta is not None:
        if not out.get("shotType"):
            out["shotType"] = meta.shot_range
        out["zone"] = meta.zone
        out["shotKey"] = meta.shot_key
        out["shotLabel"] = meta.label

    if "moneyballDetected" in out:
        out["moneyball"] = bool(out["moneyballDetected"])

    return out
