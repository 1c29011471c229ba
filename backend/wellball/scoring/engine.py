from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from wellball.config import Settings, get_settings
from wellball.errors import (
    AttemptNotFound,
    BonusNotActive,
    ChallengeCompleted,
    ClockGated,
    GameEnded,
    GameNotFound,
    InvalidGameSetup,
    NotAssignedTracker,
    NotMainOperator,
    ShotRuleViolation,
    SpecialtyAlreadyUsed,
    UnknownPlayer,
)
from wellball.logger import setup_logger
from wellball.scoring.challenges import ChallengeSpec, load_active_challenge, load_sequence_challenge_ids
from wellball.scoring.clock import gate_reason
from wellball.scoring.game import (
    AttemptLog,
    Caller,
    ChallengeWon,
    ClockState,
    FreestyleConfig,
    GameMode,
    GameState,
    GameStatus,
    Roles,
    ShotAttempt,
    Team,
    TeamFlags,
    TeamScores,
    WinLog,
    is_win_log,
)
from wellball.scoring.rules import RuleResult, Shot, matches
from wellball.scoring.shots import ZONES, ShotSource, parse_shot_key
from wellball.store.documents import InMemoryDocumentStore, Transaction, get_store

logger = setup_logger(__name__)


def game_path(game_id: str) -> str:
    return f"games/{game_id}"


def logs_path(game_id: str) -> str:
    return f"games/{game_id}/logs"


def log_path(game_id: str, log_id: str) -> str:
    return f"games/{game_id}/logs/{log_id}"


async def load_game(reader, game_id: str) -> GameState:
    snap = await reader.get(game_path(game_id))
    if not snap.exists:
        raise GameNotFound(game_id)
    return GameState.from_doc(game_id, snap.data)


@dataclass(frozen=True)
class ShotResult:
    game: GameState
    attempt_log: AttemptLog
    win_log: WinLog | None
    rule: RuleResult | None

    @property
    def points(self) -> int:
        return self.attempt_log.points


@dataclass(frozen=True)
class ReverseResult:
    game: GameState
    removed_log: AttemptLog
    removed_win_log_id: str | None
    win_reverted: bool


def _rule_shot(attempt: ShotAttempt) -> Shot:
    key_range, key_zone = parse_shot_key(attempt.shot_key)
    zone = attempt.zone if attempt.zone in ZONES else (key_zone if key_zone in ZONES else None)
    return Shot(shot_type=attempt.shot_type.shot_range or key_range, zone=zone, shot_key=attempt.shot_key)


class ScoringEngine:
    """
    Shot logging, undo and challenge progression for a game.

    Every public mutation is a single store transaction over the game document
    (plus its log subcollection). All preconditions are checked before any
    write, so a rejection leaves nothing behind.

    Point table (ShotType.points): gamechanger 5; mid/long 1, 2 with
    moneyball; bonus_mid 1, bonus_long 2, bonus_gc 4, legacy bonus 1.
    Bonus makes go to the match score, everything else to the challenge score.
    """

    def __init__(self, store: InMemoryDocumentStore | None = None, *, settings: Settings | None = None) -> None:
        self._store = store or get_store()
        self._settings = settings or get_settings()

    @property
    def store(self) -> InMemoryDocumentStore:
        return self._store

    # --- lifecycle ---

    async def create_game(
        self,
        caller: Caller,
        *,
        team_a_ids: Sequence[str],
        team_b_ids: Sequence[str],
        mode: GameMode | str = GameMode.SEQUENCE,
        sequence_id: str | None = None,
        challenge_ids: Sequence[str] | None = None,
        freestyle: FreestyleConfig | None = None,
        clock_seconds: int | None = None,
        secondary: str | None = None,
        event_id: str | None = None,
    ) -> GameState:
        mode = GameMode(mode)
        team_a, team_b = tuple(team_a_ids), tuple(team_b_ids)
        if not team_a or not team_b:
            raise InvalidGameSetup("each team needs at least one player", "Pick at least one player per team.")
        if len(set(team_a)) != len(team_a) or len(set(team_b)) != len(team_b):
            raise InvalidGameSetup("duplicate player on a roster", "A player was picked twice.")
        if set(team_a) & set(team_b):
            raise InvalidGameSetup("rosters overlap", "A player can only be on one team.")

        ids: tuple[str, ...] = ()
        if mode is GameMode.SEQUENCE:
            if challenge_ids is not None:
                ids = tuple(challenge_ids)
            elif sequence_id:
                ids = await load_sequence_challenge_ids(self._store, sequence_id)
            else:
                raise InvalidGameSetup("sequence mode needs a sequence", "Pick a sequence (or enable Freestyle).")
            freestyle = None
        elif freestyle is None:
            raise InvalidGameSetup("freestyle mode needs a target and win points", "Set the freestyle target and points.")

        seconds = self._settings.default_clock_seconds if clock_seconds is None else clock_seconds
        game = GameState(
            game_id=self._store.new_id(),
            roles=Roles(main=caller.uid, secondary=secondary),
            team_a_ids=team_a,
            team_b_ids=team_b,
            mode=mode,
            sequence_id=sequence_id,
            challenge_ids=ids,
            freestyle=freestyle,
            clock=ClockState(seconds=max(0, int(seconds))),
            status=GameStatus.LIVE,
            event_id=event_id,
            created_at=self._store.now(),
        )
        await self._store.set(game_path(game.game_id), game.to_doc())
        logger.info("game %s created by %s (%s, %d challenges)", game.game_id, caller.uid, mode.value, len(ids))
        return game

    async def get_game(self, game_id: str) -> GameState:
        return await load_game(self._store, game_id)

    async def end_game(self, game_id: str, caller: Caller) -> GameState:
        async def body(tx: Transaction) -> GameState:
            game = await load_game(tx, game_id)
            if not game.is_main(caller.uid):
                raise NotMainOperator(caller.uid)
            ended = replace(game, status=GameStatus.ENDED)
            patch = ended.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return ended

        return await self._store.run_transaction(body)

    async def set_paused(
        self, game_id: str, paused: bool, *, reason: str | None = None, dispute: str | None = None
    ) -> GameState:
        async def body(tx: Transaction) -> GameState:
            game = await load_game(tx, game_id)
            if game.is_ended:
                raise GameEnded(game_id)
            updated = replace(
                game,
                paused=bool(paused),
                pause_reason=reason if paused else None,
                dispute=dispute if paused else None,
            )
            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return updated

        return await self._store.run_transaction(body)

    # --- shots ---

    async def record_shot(self, game_id: str, attempt: ShotAttempt, caller: Caller) -> ShotResult:
        async def body(tx: Transaction) -> ShotResult:
            game = await load_game(tx, game_id)
            if game.is_ended:
                raise GameEnded(game_id)
            if game.challenge_won is not None:
                raise ChallengeCompleted(game.challenge_won.team.value, game.challenge_won.at_index)

            if attempt.source is not ShotSource.MANUAL:
                reason = gate_reason(game)
                if reason:
                    raise ClockGated(reason)

            team = game.team_of(attempt.player_id)
            if team is None:
                raise UnknownPlayer(attempt.player_id)

            if not game.is_main(caller.uid):
                lock = game.tracker_locks.get(team)
                if lock is None or lock.uid != caller.uid:
                    raise NotAssignedTracker(caller.uid, team.value)

            shot_type = attempt.shot_type
            if shot_type.is_bonus and not game.bonus_active:
                raise BonusNotActive(shot_type.value)

            specialty = shot_type.specialty(moneyball=attempt.moneyball)
            if specialty and game.specialty_used(team, specialty):
                raise SpecialtyAlreadyUsed(team.value, specialty)

            points = shot_type.points(made=attempt.made, moneyball=attempt.moneyball)

            challenge: ChallengeSpec | None = None
            rule_result: RuleResult | None = None
            if not shot_type.is_bonus:
                challenge = await load_active_challenge(tx, game)
                rule_result = matches(_rule_shot(attempt), challenge.shot_rule)
                if not rule_result.ok:
                    raise ShotRuleViolation(rule_result.reason)

            now = self._store.now()
            updated = game
            if points:
                if shot_type.is_bonus:
                    updated = replace(updated, match_score=updated.match_score.with_value(team, updated.match_score.get(team) + points))
                else:
                    updated = replace(
                        updated,
                        challenge_score=updated.challenge_score.with_value(team, updated.challenge_score.get(team) + points),
                    )
            if specialty:
                # Consumed on the attempt, made or missed.
                updated = updated.with_specialty(team, specialty, True)

            log_id = tx.new_id()
            win_log: WinLog | None = None
            if challenge is not None and attempt.made and challenge.target_score > 0:
                new_score = updated.challenge_score.get(team)
                if new_score >= challenge.target_score:
                    shutout = updated.challenge_score.get(team.other) == 0
                    awarded = challenge.points_for_win * (2 if shutout else 1)
                    win_log = WinLog(
                        log_id=tx.new_id(),
                        team=team,
                        by_player_id=attempt.player_id,
                        challenge_index=game.current_challenge_index,
                        points_for_win=awarded,
                        shutout=shutout,
                        attempt_log_id=log_id,
                        ts=now,
                        challenge_round=game.challenge_round,
                    )
                    updated = replace(
                        updated,
                        match_score=updated.match_score.with_value(team, updated.match_score.get(team) + awarded),
                        challenge_won=ChallengeWon(
                            team=team,
                            at_index=game.current_challenge_index,
                            points_for_win=awarded,
                            base_points=challenge.points_for_win,
                            shutout=shutout,
                            score_a=updated.challenge_score.a,
                            score_b=updated.challenge_score.b,
                            win_log_id=win_log.log_id,
                            attempt_log_id=log_id,
                            ts=now,
                            challenge_round=game.challenge_round,
                        ),
                    )

            log = AttemptLog(
                log_id=log_id,
                player_id=attempt.player_id,
                team=team,
                shot_type=shot_type,
                made=attempt.made,
                moneyball=attempt.moneyball,
                challenge_index=game.current_challenge_index,
                challenge_round=game.challenge_round,
                ts=now,
                source=attempt.source,
                confidence=attempt.confidence,
                evidence=attempt.evidence,
                zone=attempt.zone,
                shot_key=attempt.shot_key,
                spot_number=attempt.spot_number,
                start_spot_id=attempt.start_spot_id,
                shot_spot_id=attempt.shot_spot_id,
                recorded_by=caller.uid,
            )

            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            tx.set(log_path(game_id, log_id), log.to_doc())
            if win_log is not None:
                tx.set(log_path(game_id, win_log.log_id), win_log.to_doc())
            return ShotResult(game=updated, attempt_log=log, win_log=win_log, rule=rule_result)

        result = await self._store.run_transaction(body)
        logger.info(
            "game %s: %s %s %s by %s (+%d, %s)",
            game_id,
            result.attempt_log.team.value,
            result.attempt_log.shot_type.value,
            "made" if result.attempt_log.made else "missed",
            result.attempt_log.player_id,
            result.points,
            result.attempt_log.source.value,
        )
        if result.win_log is not None:
            logger.info(
                "game %s: team %s won challenge %d (+%d%s)",
                game_id,
                result.win_log.team.value,
                result.win_log.challenge_index,
                result.win_log.points_for_win,
                ", shutout" if result.win_log.shutout else "",
            )
        return result

    async def reverse_shot(self, game_id: str, log_id: str) -> ReverseResult:
        """
        Undo exactly one attempt: its points, the challenge win it produced
        (match points and win log), and any specialty it consumed.
        """

        async def body(tx: Transaction) -> ReverseResult:
            game = await load_game(tx, game_id)
            if game.is_ended:
                raise GameEnded(game_id)
            snap = await tx.get(log_path(game_id, log_id))
            if not snap.exists or is_win_log(snap.data):
                raise AttemptNotFound(log_id)
            log = AttemptLog.from_doc(log_id, snap.data)
            team = log.team
            current = (
                log.challenge_index == game.current_challenge_index and log.challenge_round == game.challenge_round
            )

            updated = game
            points = log.points
            if points:
                if log.shot_type.is_bonus:
                    updated = replace(
                        updated, match_score=updated.match_score.with_value(team, max(0, updated.match_score.get(team) - points))
                    )
                elif current:
                    updated = replace(
                        updated,
                        challenge_score=updated.challenge_score.with_value(
                            team, max(0, updated.challenge_score.get(team) - points)
                        ),
                    )

            cw = game.challenge_won
            removed_win_log_id = None
            win_reverted = (
                cw is not None
                and log.made
                and not log.shot_type.is_bonus
                and cw.team is team
                and cw.at_index == log.challenge_index
                and cw.challenge_round == log.challenge_round
            )
            if win_reverted:
                updated = replace(
                    updated,
                    match_score=updated.match_score.with_value(team, max(0, updated.match_score.get(team) - cw.points_for_win)),
                    challenge_won=None,
                )
                if cw.win_log_id:
                    tx.delete(log_path(game_id, cw.win_log_id))
                    removed_win_log_id = cw.win_log_id
                else:
                    logger.warning(
                        "game %s: win for team %s at challenge %d has no win log link; nothing to delete",
                        game_id,
                        team.value,
                        cw.at_index,
                    )

            if current:
                remaining = await tx.query(logs_path(game_id), where=[("challengeIndex", "==", log.challenge_index)])
                money, gc = TeamFlags(), TeamFlags()
                for other in remaining:
                    if other.id == log_id or is_win_log(other.data):
                        continue
                    prior = AttemptLog.from_doc(other.id, other.data)
                    if prior.challenge_round != log.challenge_round:
                        continue
                    if prior.specialty == "money":
                        money = money.with_value(prior.team, True)
                    elif prior.specialty == "gc":
                        gc = gc.with_value(prior.team, True)
                updated = replace(updated, money_used=money, gc_used=gc)

            tx.delete(log_path(game_id, log_id))
            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return ReverseResult(game=updated, removed_log=log, removed_win_log_id=removed_win_log_id, win_reverted=win_reverted)

        result = await self._store.run_transaction(body)
        logger.info(
            "game %s: undid %s %s by %s%s",
            game_id,
            result.removed_log.shot_type.value,
            "make" if result.removed_log.made else "miss",
            result.removed_log.player_id,
            " (challenge win reverted)" if result.win_reverted else "",
        )
        return result

    async def advance_challenge(self, game_id: str) -> GameState:
        """The only way out of a won challenge: next cursor, fresh scores and specialties."""

        async def body(tx: Transaction) -> GameState:
            game = await load_game(tx, game_id)
            if game.is_ended:
                raise GameEnded(game_id)
            cur = game.current_challenge_index
            if game.mode is GameMode.SEQUENCE:
                nxt = min(cur + 1, max(0, len(game.challenge_ids) - 1))
            else:
                nxt = cur + 1
            updated = replace(
                game,
                current_challenge_index=nxt,
                challenge_round=game.challenge_round + 1,
                challenge_score=TeamScores(),
                challenge_won=None,
                money_used=TeamFlags(),
                gc_used=TeamFlags(),
                bonus_active=False,
                overtime_count=0,
            )
            patch = updated.patch_from(game)
            if patch:
                tx.update(game_path(game_id), patch)
            return updated

        game = await self._store.run_transaction(body)
        logger.info("game %s: advanced to challenge %d", game_id, game.current_challenge_index)
        return game

    # --- reads ---

    async def list_attempts(
        self, game_id: str, *, team: Team | None = None, challenge_index: int | None = None, limit: int | None = 100
    ) -> list[AttemptLog]:
        """Attempt logs, newest first (win logs excluded)."""
        where = []
        if team is not None:
            where.append(("team", "==", team.value))
        if challenge_index is not None:
            where.append(("challengeIndex", "==", challenge_index))
        snaps = await self._store.query(logs_path(game_id), where=where, order_by=("ts", "desc"))
        logs = [AttemptLog.from_doc(s.id, s.data) for s in snaps if not is_win_log(s.data)]
        return logs[:limit] if limit is not None else logs

    async def list_win_logs(self, game_id: str) -> list[WinLog]:
        snaps = await self._store.query(logs_path(game_id), where=[("type", "==", "challenge_win")], order_by=("ts", "desc"))
        return [WinLog.from_doc(s.id, s.data) for s in snaps]
