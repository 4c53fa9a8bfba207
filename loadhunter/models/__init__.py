"""SQLAlchemy models for the Load Hunter core."""

from loadhunter.models.load import Load  # noqa: F401
from loadhunter.models.vehicle import Vehicle  # noqa: F401
from loadhunter.models.match import (  # noqa: F401
    ActionType,
    LoadBid,
    LoadBidStatus,
    LoadHuntMatch,
    MatchActionHistory,
    MatchStatus,
)
