from __future__ import annotations

from datetime import datetime, timedelta

from loadhunter.core.errors import InvalidTransitionError, StaleWindowError
from loadhunter.models.match import LoadHuntMatch, MatchStatus
from loadhunter.utils.clock import as_naive_utc

RESTORABLE_STATUSES = frozenset({MatchStatus.SKIPPED.value, MatchStatus.WAITLIST.value})
DEFAULT_RESTORATION_WINDOW = timedelta(minutes=40)


class RestorationPolicy:
    """Skipped or waitlisted matches can be marked unreviewed for a short time.

    The window is measured from ``matched_at``, never from the skip or wait,
    so repeated skip/restore cycles cannot extend it.
    """

    def __init__(self, window: timedelta = DEFAULT_RESTORATION_WINDOW) -> None:
        self.window = window

    def check(self, match: LoadHuntMatch, now: datetime) -> None:
        if match.status not in RESTORABLE_STATUSES:
            raise InvalidTransitionError(match.id, match.status, "mark_unreviewed")

        age = as_naive_utc(now) - as_naive_utc(match.matched_at)
        if age >= self.window:
            raise StaleWindowError(match.id, age, self.window)

    def is_restorable(self, match: LoadHuntMatch, now: datetime) -> bool:
        try:
            self.check(match, now)
        except (InvalidTransitionError, StaleWindowError):
            return False
        return True
