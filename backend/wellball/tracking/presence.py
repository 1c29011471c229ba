"""
Tracker presence and per-team tracker locks.

Locks are a convenience for two cooperating operators, not a security
boundary: the claim itself is a store transaction, nothing more. Locks never
expire on their own; a holder whose heartbeat went quiet is only reported as
offline by ``readiness``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Mapping

from wellball.config import Settings, get_settings
from wellball.errors import GameEnded, InvalidLockTransition, NotMainOperator, TransactionConflict
from wellball.logger import setup_logger
from wellball.scoring.engine import game_path, load_game
from wellball.scoring.game import Caller, GameState, Team, TeamLocks, TrackerLock, parse_team
from wellball.store.documents import InMemoryDocumentStore, Transaction, get_store

logger = setup_logger(__name__)


def trackers_path(game_id: str) -> str:
    return f"games/{game_id}/trackers"


def tracker_path(game_id: str, uid: str) -> str:
    return f"games/{game_id}/trackers/{uid}"


@dataclass(frozen=True)
class TrackerPresence:
    uid: str
    team: Team | None
    last_seen: float | None

    def is_online(self, now: float, stale_after_s: float) -> bool:
        return self.last_seen is not None and now - self.last_seen <= stale_after_s

    @classmethod
    def from_doc(cls, uid: str, data: Mapping | None) -> TrackerPresence:
        data = data or {}
        team = data.get("team")
        return cls(uid=uid, team=parse_team(team) if team in ("A", "B") else None, last_seen=data.get("lastSeen"))


@dataclass(frozen=True)
class TeamReadiness:
    team: Team
    lock: TrackerLock | None
    holder_online: bool
    online_trackers: tuple[str, ...]

    @property
    def ready(self) -> bool:
        return self.lock is not None and self.holder_online


class PresenceManager:
    def __init__(self, store: InMemoryDocumentStore | None = None, *, settings: Settings | None = None) -> None:
        self._store = store or get_store()
        self._settings = settings or get_settings()

    async def _update_locks(self, game_id: str, fn, *, presence=None) -> TeamLocks:
        """
        Apply ``fn`` to the game's locks in one transaction. ``presence``
        writes the caller's tracker doc in that same transaction, once the
        game is known to exist.
        """

        async def body(tx: Transaction) -> TeamLocks:
            game = await load_game(tx, game_id)
            now = self._store.now()
            locks = fn(game, now)
            if presence is not None:
                presence(tx, now)
            updated = replace(game, tracker_locks=locks)
            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return locks

        return await self._store.run_transaction(body)

    async def join(self, game_id: str, caller: Caller, team: Team | str) -> TrackerPresence:
        team = parse_team(team)

        async def body(tx: Transaction) -> float:
            await load_game(tx, game_id)
            now = self._store.now()
            tx.set(tracker_path(game_id, caller.uid), {"team": team.value, "lastSeen": now}, merge=True)
            return now

        now = await self._store.run_transaction(body)
        logger.info("game %s: %s joined as tracker for team %s", game_id, caller.uid, team.value)
        return TrackerPresence(uid=caller.uid, team=team, last_seen=now)

    async def claim_team(self, game_id: str, caller: Caller, team: Team | str) -> TeamLocks:
        """Take a free team slot (or refresh one already held by the caller)."""
        team = parse_team(team)

        def claim(game: GameState, now: float) -> TeamLocks:
            if game.is_ended:
                raise GameEnded(game_id)
            current = game.tracker_locks.get(team)
            if current is not None and current.uid != caller.uid:
                raise InvalidLockTransition(f"team {team.value} is locked by {current.uid!r}")
            return game.tracker_locks.with_value(team, TrackerLock(uid=caller.uid, updated_at=now))

        locks = await self._update_locks(game_id, claim)
        logger.info("game %s: %s claimed team %s", game_id, caller.uid, team.value)
        return locks

    async def assign_team(self, game_id: str, caller: Caller, team: Team | str, uid: str | None) -> TeamLocks:
        """Main operator's forced set (or clear, with ``uid=None``) of a team slot."""
        team = parse_team(team)

        def assign(game: GameState, now: float) -> TeamLocks:
            if game.is_ended:
                raise GameEnded(game_id)
            if not game.is_main(caller.uid):
                raise NotMainOperator(caller.uid)
            lock = TrackerLock(uid=uid, updated_at=now) if uid else None
            return game.tracker_locks.with_value(team, lock)

        locks = await self._update_locks(game_id, assign)
        logger.info("game %s: team %s lock set to %s by %s", game_id, team.value, uid, caller.uid)
        return locks

    async def heartbeat(self, game_id: str, caller: Caller) -> TeamLocks:
        def seen(tx: Transaction, now: float) -> None:
            tx.set(tracker_path(game_id, caller.uid), {"lastSeen": now}, merge=True)

        def refresh(game: GameState, now: float) -> TeamLocks:
            locks = game.tracker_locks
            for team in Team:
                lock = locks.get(team)
                if lock is not None and lock.uid == caller.uid:
                    locks = locks.with_value(team, TrackerLock(uid=caller.uid, updated_at=now))
            return locks

        return await self._update_locks(game_id, refresh, presence=seen)

    async def leave(self, game_id: str, caller: Caller) -> TeamLocks:
        def gone(tx: Transaction, now: float) -> None:
            tx.delete(tracker_path(game_id, caller.uid))

        def release(game: GameState, now: float) -> TeamLocks:
            locks = game.tracker_locks
            for team in Team:
                lock = locks.get(team)
                if lock is not None and lock.uid == caller.uid:
                    locks = locks.with_value(team, None)
            return locks

        locks = await self._update_locks(game_id, release, presence=gone)
        logger.info("game %s: %s left tracking", game_id, caller.uid)
        return locks

    async def list_trackers(self, game_id: str) -> list[TrackerPresence]:
        snaps = await self._store.query(trackers_path(game_id), order_by="lastSeen")
        return [TrackerPresence.from_doc(s.id, s.data) for s in snaps]

    async def readiness(self, game_id: str) -> dict[Team, TeamReadiness]:
        """Who is tracking each team right now; staleness is judged here, at read time."""
        game = await load_game(self._store, game_id)
        trackers = await self.list_trackers(game_id)
        now = self._store.now()
        stale_after = self._settings.tracker_stale_after_s
        online = {t.uid: t for t in trackers if t.is_online(now, stale_after)}

        out: dict[Team, TeamReadiness] = {}
        for team in Team:
            lock = game.tracker_locks.get(team)
            out[team] = TeamReadiness(
                team=team,
                lock=lock,
                holder_online=lock is not None and (lock.uid in online or game.is_main(lock.uid)),
                online_trackers=tuple(uid for uid, t in online.items() if t.team is team),
            )
        return out

    async def run_heartbeats(self, game_id: str, caller: Caller, stop: asyncio.Event) -> None:
        """Heartbeat on a fixed interval until ``stop`` is set."""
        interval = self._settings.heartbeat_interval_s
        while not stop.is_set():
            try:
                await self.heartbeat(game_id, caller)
            except TransactionConflict:
                logger.warning("game %s: heartbeat for %s lost to concurrent writes", game_id, caller.uid)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
