from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from loadhunter.models.load import Load
from loadhunter.schemas.load_hunter import LaneAverage
from loadhunter.services.action_history import ActionHistoryService, BidSample
from loadhunter.utils.geo import has_coordinates, haversine_miles

logger = logging.getLogger(__name__)

DEFAULT_LANE_RADIUS_MILES = 50.0


def compute_lane_average(
    pickup_lat: Optional[float],
    pickup_lng: Optional[float],
    delivery_lat: Optional[float],
    delivery_lng: Optional[float],
    samples: Iterable[BidSample],
    radius_miles: float = DEFAULT_LANE_RADIUS_MILES,
) -> Optional[LaneAverage]:
    """Average of historical bids whose pickup AND delivery lie within the radius.

    Returns None when the current lane lacks coordinates or nothing qualifies.
    This is a full scan over ``samples``.
    """
    if not has_coordinates(pickup_lat, pickup_lng) or not has_coordinates(delivery_lat, delivery_lng):
        return None

    kept = []
    for sample in samples:
        if not has_coordinates(sample.pickup_lat, sample.pickup_lng):
            continue
        if not has_coordinates(sample.delivery_lat, sample.delivery_lng):
            continue
        pickup_distance = haversine_miles(pickup_lat, pickup_lng, sample.pickup_lat, sample.pickup_lng)
        if pickup_distance > radius_miles:
            continue
        delivery_distance = haversine_miles(delivery_lat, delivery_lng, sample.delivery_lat, sample.delivery_lng)
        if delivery_distance > radius_miles:
            continue
        kept.append(sample.amount)

    if not kept:
        return None

    return LaneAverage(
        average=_round_currency(sum(kept) / len(kept)),
        sample_size=len(kept),
        radius_miles=radius_miles,
    )


def _round_currency(value: float) -> int:
    # Half-up, so $1,450.50 becomes $1,451
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class LaneAnalyticsService:
    def __init__(self, history: ActionHistoryService, radius_miles: float = DEFAULT_LANE_RADIUS_MILES) -> None:
        self.history = history
        self.radius_miles = radius_miles

    async def lane_average(self, load: Load) -> Optional[LaneAverage]:
        if not has_coordinates(load.origin_lat, load.origin_lng) or not has_coordinates(
            load.destination_lat, load.destination_lng
        ):
            logger.debug(f"No lane estimate for load {load.id}: missing coordinates")
            return None

        samples = await self.history.bid_samples()
        return compute_lane_average(
            load.origin_lat,
            load.origin_lng,
            load.destination_lat,
            load.destination_lng,
            samples,
            radius_miles=self.radius_miles,
        )
