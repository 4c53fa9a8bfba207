from sqlalchemy import Column, DateTime, Float, Numeric, String, func

from loadhunter.models.base import Base


class Load(Base):
    """A freight opportunity produced by load ingestion.

    Immutable once created except for the coordinate columns, which the
    ingestion path fills in after geocoding.
    """
    __tablename__ = "freight_load"

    id = Column(String, primary_key=True)
    source = Column(String, nullable=True)  # email, loadboard, manual
    customer = Column(String, nullable=True)

    origin_city = Column(String, nullable=True)
    origin_state = Column(String, nullable=True)
    origin_lat = Column(Float, nullable=True)
    origin_lng = Column(Float, nullable=True)

    destination_city = Column(String, nullable=True)
    destination_state = Column(String, nullable=True)
    destination_lat = Column(Float, nullable=True)
    destination_lng = Column(Float, nullable=True)

    posted_rate = Column(Numeric(12, 2), nullable=True)
    equipment_type = Column(String, nullable=True)
    weight = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def origin_label(self) -> str:
        return ", ".join(part for part in (self.origin_city, self.origin_state) if part) or "Unknown origin"

    @property
    def destination_label(self) -> str:
        return ", ".join(part for part in (self.destination_city, self.destination_state) if part) or "Unknown destination"
