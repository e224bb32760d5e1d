"""Zone and pincode reference models."""
import uuid
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from shiprate.database import Base
from shiprate.db_types import UUIDType, JSONType


class Zone(Base):
    """
    Pricing zone identified by its canonical code (zoneA..zoneE).

    Pricing refers to zones by code only; pincodes are kept as membership
    data for administration.
    """
    __tablename__ = "zones"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    pincodes: Mapped[List[str]] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class Pincode(Base):
    """Postal reference row used by the zone resolver."""
    __tablename__ = "pincodes"

    pincode: Mapped[str] = mapped_column(String(6), primary_key=True)
    circle: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    district: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    region: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="NORTH, SOUTH, EAST, WEST, NORTHEAST, CENTRAL"
    )
    is_oda: Mapped[bool] = mapped_column(
        Boolean, default=False,
        comment="Out of delivery area (remote location)"
    )
