from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings, read once from the environment (and a local .env file).
    """

    debug: bool = False
    log_dir: str | None = None

    default_clock_seconds: int = 90
    bonus_seconds: int = 180
    overtime_seconds: int = 60

    ingest_threshold: float = 0.85
    review_threshold: float = 0.65

    heartbeat_interval_s: float = 5.0
    tracker_stale_after_s: float = 15.0

    fusion_window_ms: int = 320
    moneyball_floor: float = 0.6

    transaction_attempts: int = 5

    def __post_init__(self) -> None:
        if self.bonus_seconds <= 0 or self.overtime_seconds <= 0:
            raise ValueError("bonus and overtime durations must be > 0")
        if not (0.0 <= self.review_threshold <= self.ingest_threshold <= 1.0):
            raise ValueError("thresholds must satisfy 0 <= review <= ingest <= 1")
        if self.fusion_window_ms <= 0:
            raise ValueError("fusion window must be > 0")
        if self.transaction_attempts <= 0:
            raise ValueError("transaction attempts must be > 0")

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            debug=os.getenv("WELLBALL_DEBUG", "False").lower() == "true",
            log_dir=os.getenv("WELLBALL_LOG_DIR") or None,
            default_clock_seconds=_env_int("WELLBALL_CLOCK_SECONDS", 90),
            bonus_seconds=_env_int("WELLBALL_BONUS_SECONDS", 180),
            overtime_seconds=_env_int("WELLBALL_OVERTIME_SECONDS", 60),
            ingest_threshold=_env_float("WELLBALL_INGEST_THRESHOLD", 0.85),
            review_threshold=_env_float("WELLBALL_REVIEW_THRESHOLD", 0.65),
            heartbeat_interval_s=_env_float("WELLBALL_HEARTBEAT_INTERVAL", 5.0),
            tracker_stale_after_s=_env_float("WELLBALL_TRACKER_STALE_AFTER", 15.0),
            fusion_window_ms=_env_int("WELLBALL_FUSION_WINDOW_MS", 320),
            moneyball_floor=_env_float("WELLBALL_MONEYBALL_FLOOR", 0.6),
            transaction_attempts=_env_int("WELLBALL_TRANSACTION_ATTEMPTS", 5),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
