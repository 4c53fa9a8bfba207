import enum

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, JSON, Numeric, String, func, text
from sqlalchemy.orm import relationship

from loadhunter.models.base import Base


class MatchStatus(str, enum.Enum):
    ACTIVE = "active"  # unreviewed
    SKIPPED = "skipped"
    WAITLIST = "waitlist"
    UNDECIDED = "undecided"
    BID_SENT = "bid_sent"


class ActionType(str, enum.Enum):
    VIEWED = "viewed"
    SKIPPED = "skipped"
    WAITLIST = "waitlist"
    UNDECIDED = "undecided"
    UNREVIEWED = "unreviewed"
    BID = "bid"


class LoadBidStatus(str, enum.Enum):
    SENT = "sent"
    DUPLICATE = "duplicate"


class LoadHuntMatch(Base):
    """Candidate pairing of one vehicle to one load.

    ``status`` is written only by the match state machine. ``matched_at`` never
    changes after insert and anchors the unreviewed-restoration window.
    """
    __tablename__ = "load_hunt_match"

    id = Column(String, primary_key=True)
    load_id = Column(String, ForeignKey("freight_load.id"), nullable=False, index=True)
    vehicle_id = Column(String, ForeignKey("fleet_vehicle.id"), nullable=False, index=True)
    distance_miles = Column(Float, nullable=True)  # Vehicle to pickup
    matched_at = Column(DateTime, nullable=False, server_default=func.now())
    status = Column(String, nullable=False, default=MatchStatus.ACTIVE.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Bid summary, filled when the match reaches bid_sent
    bid_rate = Column(Numeric(12, 2), nullable=True)
    bid_by = Column(String, nullable=True)
    bid_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    load = relationship("Load", lazy="joined")
    vehicle = relationship("Vehicle", lazy="joined")


class MatchActionHistory(Base):
    """One row per dispatcher action. Rows are never updated or deleted."""
    __tablename__ = "match_action_history"

    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("load_hunt_match.id"), nullable=False, index=True)
    dispatcher_id = Column(String, nullable=True)
    dispatcher_email = Column(String, nullable=True, index=True)
    dispatcher_name = Column(String, nullable=True)
    action_type = Column(String, nullable=False, index=True)
    action_details = Column(JSON, nullable=True)  # e.g. {"bid_amount": 1400}
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_match_action_history_match_created", "match_id", "created_at"),
    )


class LoadBid(Base):
    """A bid attempt tied to the load (not only the match).

    The partial unique index keeps at most one ``sent`` row per load at the
    store level.
    """
    __tablename__ = "load_bid"

    id = Column(String, primary_key=True)
    load_id = Column(String, ForeignKey("freight_load.id"), nullable=False, index=True)
    match_id = Column(String, ForeignKey("load_hunt_match.id"), nullable=False, index=True)
    vehicle_id = Column(String, ForeignKey("fleet_vehicle.id"), nullable=True)
    dispatcher_id = Column(String, nullable=True)
    dispatcher_email = Column(String, nullable=True)
    dispatcher_name = Column(String, nullable=True)
    bid_amount = Column(Numeric(12, 2), nullable=False)
    to_email = Column(String, nullable=False)
    cc_email = Column(String, nullable=True)
    status = Column(String, nullable=False)  # sent, duplicate
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    vehicle = relationship("Vehicle", lazy="joined")

    __table_args__ = (
        Index(
            "uq_load_bid_one_sent_per_load",
            "load_id",
            unique=True,
            postgresql_where=text("status = 'sent'"),
            sqlite_where=text("status = 'sent'"),
        ),
    )
