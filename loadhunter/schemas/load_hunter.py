from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Dispatcher(BaseModel):
    """Identity of the dispatcher issuing an action."""
    id: Optional[str] = None
    email: str
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Coordinates(BaseModel):
    lat: float
    lng: float


# ---------- Intents ----------

class SkipIntent(BaseModel):
    kind: Literal["skip"] = "skip"


class WaitIntent(BaseModel):
    kind: Literal["wait"] = "wait"


class UndecidedIntent(BaseModel):
    kind: Literal["undecided"] = "undecided"


class MarkUnreviewedIntent(BaseModel):
    kind: Literal["mark_unreviewed"] = "mark_unreviewed"


class BidIntent(BaseModel):
    """Bid composed client-side. Amount and recipient are checked by the state machine."""
    kind: Literal["bid"] = "bid"
    amount: float
    recipient: Optional[str] = None
    cc: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None


MatchIntent = Annotated[
    Union[SkipIntent, WaitIntent, UndecidedIntent, MarkUnreviewedIntent, BidIntent],
    Field(discriminator="kind"),
]


class MatchIntentRequest(BaseModel):
    intent: MatchIntent


# ---------- Read models ----------

class MatchState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    vehicle_id: str
    distance_miles: Optional[float] = None
    matched_at: datetime
    status: str
    is_active: bool
    bid_rate: Optional[float] = None
    bid_by: Optional[str] = None
    bid_at: Optional[datetime] = None


class BidReceipt(BaseModel):
    """What the dispatcher is told after sending a bid.

    Deliberately carries no sent/duplicate distinction.
    """
    load_id: str
    match_id: str
    amount: float
    recipient: str
    submitted_at: datetime


class MatchTransition(BaseModel):
    previous_status: str
    match: MatchState
    bid: Optional[BidReceipt] = None


class ActionHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    match_id: str
    dispatcher_id: Optional[str] = None
    dispatcher_email: Optional[str] = None
    dispatcher_name: Optional[str] = None
    action_type: str
    action_details: Optional[Dict[str, Any]] = None
    created_at: datetime


class LoadBidRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    load_id: str
    match_id: str
    vehicle_id: Optional[str] = None
    dispatcher_email: Optional[str] = None
    dispatcher_name: Optional[str] = None
    bid_amount: float
    to_email: str
    cc_email: Optional[str] = None
    status: str
    created_at: datetime


class BidWarning(BaseModel):
    """Banner shown in the bid view when the load already has a sent bid."""
    load_id: str
    bid_id: str
    bidder_name: Optional[str] = None
    bidder_email: Optional[str] = None
    amount: float
    vehicle_id: Optional[str] = None
    vehicle_number: Optional[str] = None
    sent_at: datetime


class PresenceViewer(BaseModel):
    email: str
    name: str
    joined_at: datetime


class LaneAverage(BaseModel):
    average: int
    sample_size: int
    radius_miles: float


class DispatcherMetric(BaseModel):
    dispatcher_id: Optional[str] = None
    dispatcher_name: str = "Unknown"
    dispatcher_email: Optional[str] = None
    total_actions: int = 0
    bids_sent: int = 0
    skips: int = 0
    waitlist: int = 0
    undecided: int = 0
    views: int = 0


class DispatcherMetricsResponse(BaseModel):
    dispatchers: List[DispatcherMetric]
    total_actions: int
    total_bids: int
    total_skips: int
