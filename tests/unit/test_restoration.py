from datetime import timedelta

import pytest

from loadhunter.core.errors import InvalidTransitionError, StaleWindowError
from loadhunter.models import MatchStatus
from loadhunter.services.restoration import RestorationPolicy

from tests.conftest import T0, make_match


@pytest.fixture
def policy():
    return RestorationPolicy(window=timedelta(minutes=40))


def test_restorable_just_inside_the_window(policy):
    match = make_match("m", "load-x", "veh-1", T0, status=MatchStatus.SKIPPED.value)
    policy.check(match, T0 + timedelta(minutes=39, seconds=59))


def test_stale_just_outside_the_window(policy):
    match = make_match("m", "load-x", "veh-1", T0, status=MatchStatus.WAITLIST.value)
    with pytest.raises(StaleWindowError) as exc_info:
        policy.check(match, T0 + timedelta(minutes=40, seconds=1))
    assert "40 minutes" in exc_info.value.message


def test_window_closes_at_exactly_forty_minutes(policy):
    match = make_match("m", "load-x", "veh-1", T0, status=MatchStatus.SKIPPED.value)
    assert not policy.is_restorable(match, T0 + timedelta(minutes=40))


@pytest.mark.parametrize("status", [MatchStatus.ACTIVE.value, MatchStatus.UNDECIDED.value, MatchStatus.BID_SENT.value])
def test_only_skipped_or_waitlisted_matches_restore(policy, status):
    match = make_match("m", "load-x", "veh-1", T0, status=status)
    with pytest.raises(InvalidTransitionError):
        policy.check(match, T0 + timedelta(minutes=1))
