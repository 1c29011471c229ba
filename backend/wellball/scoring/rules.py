"""
Challenge shot rules.

A rule is a list of court patterns plus how hard to enforce them:

- ``mode``: 'allow' (shot must match a pattern) or 'deny' (must match none)
- ``items``: 'mid_*', 'long_*', 'gamechanger' or exact '<range>_<zone>' keys
- ``validation``: 'none' | 'soft' | 'strict'; only strict failures reject
- ``require_range`` / ``require_zone``: what the shot must carry

Manual entry often omits the zone while camera events carry it, so a shot
with an unknown zone is first matched as a range-only wildcard, and only a
strict rule turns a miss into a rejection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping

from wellball.scoring.court import ALL_SPOT_IDS, DEFAULT_SPOT_MAP, CourtConfig
from wellball.scoring.shots import build_shot_key, parse_shot_key

RuleMode = Literal["allow", "deny"]
Validation = Literal["none", "soft", "strict"]

WILDCARDS = frozenset({"mid_*", "long_*", "gamechanger"})


@dataclass(frozen=True)
class ShotRule:
    mode: RuleMode = "allow"
    items: tuple[str, ...] = ()
    validation: Validation = "soft"
    require_range: bool = True
    require_zone: bool = False

    def to_doc(self) -> dict:
        return {
            "mode": self.mode,
            "items": list(self.items),
            "validation": self.validation,
            "requireRange": self.require_range,
            "requireZone": self.require_zone,
        }


ANY_SHOT = ShotRule(validation="none")


@dataclass(frozen=True)
class Shot:
    """The part of an attempt a rule looks at. ``shot_type`` is the range."""

    shot_type: str | None = None
    zone: str | None = None
    shot_key: str | None = None


@dataclass(frozen=True)
class RuleResult:
    ok: bool
    reason: str | None = None
    matched: bool | None = None


def _validation(value: Any) -> Validation:
    if value == "strict":
        return "strict"
    if value == "none":
        return "none"
    return "soft"


def _spot_key(spot: int) -> str | None:
    meta = DEFAULT_SPOT_MAP.get(spot)
    return meta.shot_key if meta else None


def _spots_to_items(spot_ids: Iterable[Any]) -> tuple[str, ...]:
    """
    Convert picked spot ids into patterns, compressing a full range to its
    wildcard and adding 'gamechanger' when a GC spot was picked.
    """
    keys = set()
    for raw in spot_ids:
        try:
            key = _spot_key(int(raw))
        except (TypeError, ValueError):
            continue
        if key:
            keys.add(key)

    all_keys = {_spot_key(n) for n in ALL_SPOT_IDS}
    items: list[str] = []
    for shot_range in ("mid", "long"):
        every = sorted(k for k in all_keys if k and k.startswith(f"{shot_range}_"))
        picked = sorted(k for k in keys if k.startswith(f"{shot_range}_"))
        if picked and picked == every:
            items.append(f"{shot_range}_*")
        else:
            items.extend(picked)
    if "gamechanger" in keys:
        items.append("gamechanger")
    return tuple(items)


def normalize_shot_rule(raw: Mapping[str, Any] | ShotRule | None) -> ShotRule:
    """
    Single entry point for stored rules: accepts the pattern shape and the
    legacy ``{allowedSpotIds, requireRange: 'any'|'mid'|'long'}`` shape.
    """
    if isinstance(raw, ShotRule):
        return raw
    if not raw:
        return ShotRule()

    if isinstance(raw.get("allowedSpotIds"), list) or isinstance(raw.get("requireRange"), str):
        return ShotRule(
            mode="allow",
            items=_spots_to_items(raw.get("allowedSpotIds") or []),
            validation=_validation(raw.get("validation")),
            require_range=raw.get("requireRange") is not False,
            require_zone=bool(raw.get("requireZone")),
        )

    items = raw.get("items")
    return ShotRule(
        mode="deny" if raw.get("mode") == "deny" else "allow",
        items=tuple(str(i) for i in items) if isinstance(items, (list, tuple)) else (),
        validation=_validation(raw.get("validation")),
        require_range=raw.get("requireRange") is not False,
        require_zone=bool(raw.get("requireZone")),
    )


def coerce_shot_rule(rule_like: Any) -> ShotRule:
    """Turn editor shorthand (string, list of patterns, dict) into a rule."""
    if isinstance(rule_like, (ShotRule, Mapping)):
        return normalize_shot_rule(rule_like)

    if isinstance(rule_like, str):
        key = rule_like.strip().lower()
        if key in ("any", "none", ""):
            return ANY_SHOT
        if key in ("mid", "mid_*"):
            return ShotRule(items=("mid_*",))
        if key in ("long", "long_*"):
            return ShotRule(items=("long_*",))
        if key in ("gc", "gamechanger"):
            return ShotRule(items=("gamechanger",), require_range=False)
        if key == "no_gc":
            return ShotRule(mode="deny", items=("gamechanger",))
        return ShotRule(items=tuple(s.strip() for s in key.split(",") if s.strip()))

    if isinstance(rule_like, (list, tuple)):
        return ShotRule(items=tuple(str(i) for i in rule_like))

    return ANY_SHOT


def ensure_shot(value: Any, court: CourtConfig | None = None) -> Shot | None:
    """
    Normalize a spot number or a partial shot mapping into a Shot, deriving
    range/zone from the shot key (and vice versa) when one side is missing.
    """
    if isinstance(value, Shot):
        shot_type, zone, shot_key = value.shot_type, value.zone, value.shot_key
    elif isinstance(value, bool):
        return None
    elif isinstance(value, int) or (isinstance(value, str) and value.isdigit()):
        meta = (court or CourtConfig()).spot_to_meta(int(value))
        if meta is None:
            return None
        return Shot(shot_type=meta.shot_range, zone=meta.zone, shot_key=meta.shot_key)
    elif isinstance(value, Mapping):
        shot_type = value.get("shotType")
        zone = value.get("zone")
        shot_key = value.get("shotKey")
    else:
        return None

    if not shot_type and shot_key:
        shot_type, parsed_zone = parse_shot_key(shot_key)
        zone = zone or parsed_zone
    if not shot_key:
        if shot_type == "gamechanger":
            shot_key = "gamechanger"
        elif shot_type:
            shot_key = build_shot_key(shot_type, zone) or f"{shot_type}_*"
    return Shot(shot_type=shot_type, zone=zone, shot_key=shot_key)


def _match_one(pattern: str, shot: Shot) -> bool:
    if pattern == "gamechanger":
        return shot.shot_type == "gamechanger"
    if pattern == "mid_*":
        return shot.shot_type == "mid"
    if pattern == "long_*":
        return shot.shot_type == "long"
    if not shot.zone:
        return False
    return f"{shot.shot_type}_{shot.zone}" == pattern


def _soft_or_strict(rule: ShotRule, reason: str) -> RuleResult:
    if rule.validation == "strict":
        return RuleResult(ok=False, reason=reason, matched=False)
    return RuleResult(ok=True, reason=f"{reason}_soft", matched=False)


def matches(shot: Shot | None, rule: ShotRule | Mapping[str, Any] | None, *, degrade_when_zone_unknown: bool = True) -> RuleResult:
    rule = normalize_shot_rule(rule)
    shot = shot or Shot()

    if rule.validation == "none" or not rule.items:
        return RuleResult(ok=True)

    if rule.require_range and not shot.shot_type:
        return _soft_or_strict(rule, "missing_range")

    needs_exact_zone = any(item not in WILDCARDS for item in rule.items)
    zone_unknown = not shot.zone and shot.shot_type != "gamechanger"

    if needs_exact_zone and zone_unknown:
        if degrade_when_zone_unknown:
            assumed = Shot(shot_type=shot.shot_type)
            if any(_match_one(item, assumed) for item in rule.items):
                return RuleResult(ok=True, reason="zone_unknown_but_range_ok", matched=True)
        return _soft_or_strict(rule, "zone_required_but_unknown")

    any_match = any(_match_one(item, shot) for item in rule.items)
    if rule.mode == "allow":
        if any_match:
            return RuleResult(ok=True, matched=True)
        return _soft_or_strict(rule, "not_in_allowlist")
    if any_match:
        return _soft_or_strict(rule, "in_denylist")
    return RuleResult(ok=True, matched=True)


def describe_rule(rule: ShotRule | Mapping[str, Any] | None) -> str:
    r = normalize_shot_rule(rule)
    if r.validation == "none" or not r.items:
        return "Any shot allowed"
    joined = ", ".join(r.items)
    base = f"Allowed: {joined}" if r.mode == "allow" else f"Denied: {joined}"
    extra = []
    if r.require_zone:
        extra.append("zone required")
    if r.require_range:
        extra.append("range required")
    if r.validation != "soft":
        extra.append(r.validation)
    return f"{base} ({', '.join(extra)})" if extra else base


def describe_rule_short(rule: ShotRule | Mapping[str, Any] | None) -> str:
    r = normalize_shot_rule(rule)
    if r.validation == "none" or not r.items:
        return "Any"
    base = ", ".join(r.items) if r.mode == "allow" else f"No: {', '.join(r.items)}"
    flags = []
    if r.require_zone:
        flags.append("zone")
    if r.validation == "strict":
        flags.append("strict")
    return f"{base} ({'·'.join(flags)})" if flags else base


def _pattern_matches_key(pattern: str, shot_key: str | None) -> bool:
    if not shot_key:
        return False
    if pattern == "gamechanger":
        return shot_key == "gamechanger"
    if pattern in ("mid_*", "long_*"):
        return shot_key.startswith(pattern[:-1])
    return pattern == shot_key


def spots_for_rule(rule: ShotRule | Mapping[str, Any] | None) -> tuple[int, ...]:
    """Concrete spot ids a rule's patterns cover (used for search tags)."""
    r = normalize_shot_rule(rule)
    return tuple(n for n in ALL_SPOT_IDS if any(_pattern_matches_key(p, _spot_key(n)) for p in r.items))


def rule_ranges(rule: ShotRule | Mapping[str, Any] | None) -> tuple[str, ...]:
    r = normalize_shot_rule(rule)
    ranges: list[str] = []
    for item in r.items:
        if item == "gamechanger":
            tag = "gc"
        elif item.startswith("mid_"):
            tag = "mid"
        elif item.startswith("long_"):
            tag = "long"
        else:
            continue
        if tag not in ranges:
            ranges.append(tag)
    if not ranges and r.validation != "none":
        ranges = ["mid", "long"]
    return tuple(ranges)


def _preset(items: tuple[str, ...], *, mode: RuleMode = "allow", zone: bool = False, require_range: bool = True) -> ShotRule:
    return ShotRule(mode=mode, items=items, validation="soft", require_range=require_range, require_zone=zone)


RULE_PRESETS: Mapping[str, ShotRule] = {
    "ANY_SHOT": ANY_SHOT,
    "MID_ONLY": _preset(("mid_*",)),
    "LONG_ONLY": _preset(("long_*",)),
    "GC_ONLY": _preset(("gamechanger",), require_range=False),
    "NO_GC_DENY": _preset(("gamechanger",), mode="deny"),
    "CORNERS_ONLY": _preset(("mid_corner", "long_corner"), zone=True),
    "WINGS_ONLY": _preset(("mid_wing", "long_wing"), zone=True),
    "ELBOWS_ONLY": _preset(("mid_elbow", "long_elbow"), zone=True),
    "TOP_ONLY": _preset(("mid_top", "long_top"), zone=True),
    **{
        f"{r.upper()}_{z.upper()}_ONLY": _preset((f"{r}_{z}",), zone=True)
        for r in ("mid", "long")
        for z in ("corner", "wing", "elbow", "top")
    },
}
