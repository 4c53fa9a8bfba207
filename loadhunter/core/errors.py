"""
Error taxonomy for the match lifecycle engine.

Validation and staleness errors are raised before any store call. Network
failures are raised after the attempted transition has been abandoned. None of
these are retried automatically; the dispatcher re-issues the action.
"""

from datetime import timedelta
from typing import Optional


class LoadHunterError(Exception):
    """Base class for all match lifecycle errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(LoadHunterError):
    """An intent is malformed (bad amount, missing recipient, empty field)."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class MatchNotFoundError(LoadHunterError):
    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        super().__init__(f"Match {match_id} not found")


class InvalidTransitionError(LoadHunterError):
    """The intent is not allowed from the match's current status."""

    def __init__(self, match_id: str, current_status: str, intent: str) -> None:
        self.match_id = match_id
        self.current_status = current_status
        self.intent = intent
        super().__init__(f"Cannot apply '{intent}' to match {match_id} in status '{current_status}'")


class StaleWindowError(LoadHunterError):
    """markUnreviewed was attempted after the restoration window closed."""

    def __init__(self, match_id: str, age: timedelta, window: timedelta) -> None:
        self.match_id = match_id
        self.age = age
        self.window = window
        minutes = int(window.total_seconds() // 60)
        super().__init__(
            f"Match {match_id} was matched more than {minutes} minutes ago and can no longer be marked unreviewed"
        )


class NetworkFailure(LoadHunterError):
    """A store or mail-service call failed.

    ``message_sent`` is True when the bid email had already gone out before the
    failure; that message is never recalled.
    """

    def __init__(self, message: str, message_sent: bool = False) -> None:
        self.message_sent = message_sent
        super().__init__(message)


class RaceConditionDetected(LoadHunterError):
    """A bid attempt lost the first-bid-wins race for its load."""

    def __init__(self, load_id: str, winning_bid_id: Optional[str] = None) -> None:
        self.load_id = load_id
        self.winning_bid_id = winning_bid_id
        super().__init__(f"Load {load_id} already has a sent bid")


class PresenceChannelFailure(LoadHunterError):
    """The presence channel for a load could not be established."""
