"""
Named, expected outcomes of the scoring core.

Every rejection carries two messages: ``str(e)`` for logs and
``e.user_message`` for the operator who has to correct and retry.
"""

from __future__ import annotations


class WellballError(Exception):
    """Base class for every expected rejection."""

    status_code = 409

    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or message

    @property
    def code(self) -> str:
        return type(self).__name__


# --- Scoring engine ---


class GameNotFound(WellballError):
    status_code = 404

    def __init__(self, game_id: str) -> None:
        super().__init__(f"game {game_id!r} not found", "Game not found.")
        self.game_id = game_id


class GameEnded(WellballError):
    def __init__(self, game_id: str) -> None:
        super().__init__(f"game {game_id!r} has ended", "This game has ended; scoring is closed.")
        self.game_id = game_id


class ChallengeCompleted(WellballError):
    def __init__(self, team: str, challenge_index: int) -> None:
        super().__init__(
            f"challenge {challenge_index} already won by team {team}",
            'Challenge completed. Tap "Next Challenge" to continue.',
        )
        self.team = team
        self.challenge_index = challenge_index


class ClockGated(WellballError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"clock gate closed: {reason}", "Clock is not running or the game is paused.")
        self.reason = reason


class UnknownPlayer(WellballError):
    status_code = 422

    def __init__(self, player_id: str) -> None:
        super().__init__(f"player {player_id!r} is on neither team", "That player is not in this game.")
        self.player_id = player_id


class NotAssignedTracker(WellballError):
    status_code = 403

    def __init__(self, uid: str, team: str) -> None:
        super().__init__(
            f"caller {uid!r} does not hold the lock for team {team}",
            f"You're not the assigned tracker for Team {team}.",
        )
        self.uid = uid
        self.team = team


class BonusNotActive(WellballError):
    def __init__(self, shot_type: str) -> None:
        super().__init__(
            f"{shot_type} attempted outside the bonus round",
            "Bonus shots are only allowed during the bonus round.",
        )


class SpecialtyAlreadyUsed(WellballError):
    def __init__(self, team: str, specialty: str) -> None:
        label = "Moneyball" if specialty == "money" else "Gamechanger"
        super().__init__(
            f"team {team} already used {specialty} this challenge",
            f"{label} already used by Team {team} this challenge.",
        )
        self.team = team
        self.specialty = specialty


class ShotRuleViolation(WellballError):
    status_code = 422

    def __init__(self, reason: str | None) -> None:
        super().__init__(
            f"shot rejected by strict challenge rule: {reason}",
            "That shot is not allowed in this challenge.",
        )
        self.reason = reason


class AttemptNotFound(WellballError):
    status_code = 404

    def __init__(self, log_id: str) -> None:
        super().__init__(f"attempt log {log_id!r} not found", "That shot was already removed.")
        self.log_id = log_id


class InvalidGameSetup(WellballError):
    status_code = 422


class NotMainOperator(WellballError):
    status_code = 403

    def __init__(self, uid: str) -> None:
        super().__init__(
            f"caller {uid!r} is not the main operator",
            "Only the main operator can do that.",
        )
        self.uid = uid


# --- Presence & locks ---


class InvalidLockTransition(WellballError):
    def __init__(self, message: str, user_message: str | None = None) -> None:
        super().__init__(message, user_message or "That team is already being tracked by someone else.")


# --- Auto-ingest & review ---


class InvalidThresholdConfig(WellballError):
    status_code = 422

    def __init__(self, message: str) -> None:
        super().__init__(message, "Review threshold must be between 0 and the ingest threshold.")


class EventAlreadyClaimed(WellballError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"auto event {event_id!r} already claimed")
        self.event_id = event_id


class EventNotFound(WellballError):
    status_code = 404

    def __init__(self, event_id: str) -> None:
        super().__init__(f"auto event {event_id!r} not found", "Camera event not found.")
        self.event_id = event_id


class BadEventShape(WellballError):
    status_code = 422


class ReviewItemNotFound(WellballError):
    status_code = 404

    def __init__(self, review_id: str) -> None:
        super().__init__(f"review item {review_id!r} not found", "Review item not found.")
        self.review_id = review_id


class ReviewItemResolved(WellballError):
    def __init__(self, review_id: str, state: str) -> None:
        super().__init__(
            f"review item {review_id!r} is {state}",
            "Someone else already resolved this review item.",
        )
        self.review_id = review_id
        self.state = state


# --- Store ---


class DocumentNotFound(WellballError):
    status_code = 404

    def __init__(self, path: str) -> None:
        super().__init__(f"cannot update missing document {path!r}", "That record no longer exists.")
        self.path = path


class TransactionConflict(WellballError):
    status_code = 503

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"transaction aborted after {attempts} conflicting attempts",
            "The game was busy; please try again.",
        )
        self.attempts = attempts
