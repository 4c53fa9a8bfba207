import math
from datetime import datetime

import pytest

from loadhunter.models import ActionType, Load
from loadhunter.services.action_history import ActionHistoryService, BidSample
from loadhunter.services.lane_analytics import LaneAnalyticsService, compute_lane_average
from loadhunter.utils.geo import EARTH_RADIUS_MILES, haversine_miles

from tests.conftest import ATLANTA, MEMPHIS, make_match

MILES_PER_DEGREE_LAT = EARTH_RADIUS_MILES * math.pi / 180


def north_of(point, miles):
    return (point[0] + miles / MILES_PER_DEGREE_LAT, point[1])


def sample(amount, pickup, delivery, load_id="hist"):
    return BidSample(
        load_id=load_id,
        amount=amount,
        pickup_lat=pickup[0] if pickup else None,
        pickup_lng=pickup[1] if pickup else None,
        delivery_lat=delivery[0] if delivery else None,
        delivery_lng=delivery[1] if delivery else None,
        created_at=datetime(2026, 1, 5, 9, 0),
    )


def average(samples, radius=50.0):
    return compute_lane_average(ATLANTA[0], ATLANTA[1], MEMPHIS[0], MEMPHIS[1], samples, radius_miles=radius)


def test_nearby_bid_is_included_and_far_pickup_excluded():
    near = sample(1400, north_of(ATLANTA, 10), north_of(MEMPHIS, 5))
    far_pickup = sample(2600, north_of(ATLANTA, 60), MEMPHIS)

    result = average([near, far_pickup])

    assert result is not None
    assert result.average == 1400
    assert result.sample_size == 1
    assert result.radius_miles == 50.0


def test_both_ends_must_be_inside_radius():
    far_delivery = sample(1200, ATLANTA, north_of(MEMPHIS, 51))
    assert haversine_miles(*MEMPHIS, *north_of(MEMPHIS, 51)) > 50
    assert average([far_delivery]) is None


def test_radius_is_inclusive_just_under_the_edge():
    edge = sample(1300, north_of(ATLANTA, 49.99), north_of(MEMPHIS, 49.99))
    assert average([edge]).average == 1300


def test_no_qualifying_samples_returns_none():
    assert average([]) is None


def test_samples_without_coordinates_are_skipped():
    result = average([sample(900, None, MEMPHIS), sample(1100, ATLANTA, MEMPHIS)])
    assert result.average == 1100
    assert result.sample_size == 1


def test_current_lane_without_coordinates_returns_none():
    assert compute_lane_average(None, None, *MEMPHIS, [sample(1100, ATLANTA, MEMPHIS)]) is None


def test_average_rounds_half_up_to_whole_dollars():
    result = average([sample(1400, ATLANTA, MEMPHIS), sample(1501, ATLANTA, MEMPHIS)])
    assert result.average == 1451
    assert result.sample_size == 2


@pytest.mark.asyncio
async def test_lane_average_reads_bid_history(db, seeded, clock, dispatcher_one):
    history_load = Load(
        id="load-hist",
        origin_lat=north_of(ATLANTA, 10)[0],
        origin_lng=ATLANTA[1],
        destination_lat=north_of(MEMPHIS, 5)[0],
        destination_lng=MEMPHIS[1],
        created_at=clock(),
    )
    db.add(history_load)
    db.add(make_match("match-hist", "load-hist", "veh-1", clock()))
    await db.commit()

    history = ActionHistoryService(db, clock=clock)
    await history.append("match-hist", dispatcher_one, ActionType.BID, {"bid_amount": 1375, "recipient": "ops@broker.example"})
    # Non-bid actions and unpriced bids never count
    await history.append("match-hist", dispatcher_one, ActionType.SKIPPED, {"previous_status": "active"})
    await history.append("match-hist", dispatcher_one, ActionType.BID, {"recipient": "ops@broker.example"})

    load = await db.get(Load, "load-x")
    result = await LaneAnalyticsService(history).lane_average(load)

    assert result.average == 1375
    assert result.sample_size == 1


@pytest.mark.asyncio
async def test_lane_average_without_load_coordinates(db, clock):
    load = Load(id="load-nocoords", origin_city="Atlanta", origin_state="GA", created_at=clock())
    db.add(load)
    await db.commit()

    result = await LaneAnalyticsService(ActionHistoryService(db, clock=clock)).lane_average(load)

    assert result is None
