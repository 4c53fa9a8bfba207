from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Matches the names used by the Alembic migrations
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
}


class Base(DeclarativeBase):
    """Declarative base for Load Hunter tables; each model names its table."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
