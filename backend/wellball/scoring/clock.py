"""
Game clock and round state (bonus round, overtime).

The stored clock is a baseline plus the server time it was last started.
Remaining time is always derived from those two, never read back from a
value a client wrote earlier.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Callable

from wellball.config import Settings, get_settings
from wellball.errors import GameEnded
from wellball.logger import setup_logger
from wellball.scoring.game import ClockState, GameState, GameStatus
from wellball.store.documents import InMemoryDocumentStore, Transaction, get_store

logger = setup_logger(__name__)


def remaining_seconds(clock: ClockState, now: float) -> int:
    if not clock.running or clock.last_start_at is None:
        return clock.seconds
    elapsed = max(0.0, now - clock.last_start_at)
    return max(0, clock.seconds - math.floor(elapsed))


def start(clock: ClockState, now: float) -> ClockState:
    if clock.running:
        return clock
    return replace(clock, running=True, last_start_at=now)


def stop(clock: ClockState, now: float) -> ClockState:
    if not clock.running:
        return clock
    return ClockState(seconds=remaining_seconds(clock, now), running=False, last_start_at=None)


def set_seconds(clock: ClockState, seconds: int) -> ClockState:
    """
    New absolute baseline. A running clock keeps its start stamp, so time
    already elapsed since the last start counts against the new value.
    """
    return replace(clock, seconds=max(0, int(seconds)))


def reset(seconds: int) -> ClockState:
    return ClockState(seconds=max(0, int(seconds)), running=False, last_start_at=None)


def gate_reason(game: GameState) -> str | None:
    """Why camera/review shots are refused right now, or None when the gate is open."""
    if game.status is not GameStatus.LIVE:
        return "not_live"
    if not game.clock.running:
        return "clock_stopped"
    if game.paused:
        return "paused"
    return None


def start_bonus(game: GameState, now: float, bonus_seconds: int) -> GameState:
    # Stops and rearms the clock; the operator starts it.
    stopped = stop(game.clock, now)
    return replace(game, clock=replace(stopped, seconds=bonus_seconds), bonus_active=True)


def end_bonus(game: GameState) -> GameState:
    return replace(game, bonus_active=False)


@dataclass(frozen=True)
class RoundTransition:
    overtime_count: int
    clock: ClockState


def on_bonus_clock_zero(
    match_a: int, match_b: int, overtime_count: int, observed_count: int, *, overtime_seconds: int = 60
) -> RoundTransition | None:
    """
    Overtime escalation when the bonus clock runs out on a tied match.

    ``observed_count`` is the overtime count the observer saw when it noticed
    the clock at zero; if it no longer matches the stored count another
    observer already escalated, so nothing happens.
    """
    if match_a != match_b:
        return None
    if observed_count != overtime_count:
        return None
    return RoundTransition(overtime_count=overtime_count + 1, clock=reset(overtime_seconds))


class ClockController:
    """Persists clock and round transitions, one transaction each."""

    def __init__(self, store: InMemoryDocumentStore | None = None, *, settings: Settings | None = None) -> None:
        self._store = store or get_store()
        self._settings = settings or get_settings()

    async def _mutate(self, game_id: str, fn: Callable[[GameState, float], GameState | None]) -> GameState:
        # Imported here: the engine module imports gate_reason from this one.
        from wellball.scoring.engine import game_path, load_game

        async def body(tx: Transaction) -> GameState:
            game = await load_game(tx, game_id)
            if game.is_ended:
                raise GameEnded(game_id)
            updated = fn(game, self._store.now())
            if updated is None:
                return game
            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return updated

        return await self._store.run_transaction(body)

    async def start_clock(self, game_id: str) -> GameState:
        return await self._mutate(game_id, lambda g, now: replace(g, clock=start(g.clock, now)))

    async def stop_clock(self, game_id: str) -> GameState:
        return await self._mutate(game_id, lambda g, now: replace(g, clock=stop(g.clock, now)))

    async def set_clock_seconds(self, game_id: str, seconds: int) -> GameState:
        return await self._mutate(game_id, lambda g, _now: replace(g, clock=set_seconds(g.clock, seconds)))

    async def reset_clock(self, game_id: str, seconds: int | None = None) -> GameState:
        value = self._settings.default_clock_seconds if seconds is None else seconds
        return await self._mutate(game_id, lambda g, now: replace(g, clock=reset(value)))

    async def start_bonus(self, game_id: str) -> GameState:
        game = await self._mutate(game_id, lambda g, now: start_bonus(g, now, self._settings.bonus_seconds))
        logger.info("game %s: bonus round armed (%ds)", game_id, game.clock.seconds)
        return game

    async def end_bonus(self, game_id: str) -> GameState:
        return await self._mutate(game_id, lambda g, now: end_bonus(g))

    async def check_bonus_expiry(self, game_id: str, observed_overtime_count: int) -> GameState | None:
        """
        Called by whoever watches the clock tick to zero during the bonus
        round. Returns the updated game when overtime started, else None.
        """
        fired: list[RoundTransition] = []

        def escalate(game: GameState, now: float) -> GameState | None:
            fired.clear()
            if not game.bonus_active or remaining_seconds(game.clock, now) > 0:
                return None
            transition = on_bonus_clock_zero(
                game.match_score.a,
                game.match_score.b,
                game.overtime_count,
                observed_overtime_count,
                overtime_seconds=self._settings.overtime_seconds,
            )
            if transition is None:
                return None
            fired.append(transition)
            return replace(game, overtime_count=transition.overtime_count, clock=transition.clock)

        game = await self._mutate(game_id, escalate)
        if not fired:
            return None
        logger.info("game %s: tied at bonus buzzer, overtime %d", game_id, game.overtime_count)
        return game
