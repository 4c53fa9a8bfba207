from sqlalchemy import Column, DateTime, String, func

from loadhunter.models.base import Base


class Vehicle(Base):
    """Truck asset owned by fleet management; read-only here."""
    __tablename__ = "fleet_vehicle"

    id = Column(String, primary_key=True)
    vehicle_number = Column(String, nullable=True)
    asset_type = Column(String, nullable=True)  # size/class, e.g. "Large Straight"
    driver_1_id = Column(String, nullable=True)
    driver_2_id = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    bid_as = Column(String, nullable=True)  # Carrier name to present on bids, overrides carrier

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def bid_carrier(self) -> str | None:
        return self.bid_as or self.carrier
