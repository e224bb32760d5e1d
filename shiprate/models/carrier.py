"""Carrier (courier partner) models and company enablement."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shiprate.database import Base
from shiprate.db_types import UUIDType, JSONType


class ServiceabilityMode(str, Enum):
    """How a carrier's reach is checked."""
    ALL = "ALL"                    # Serves every pincode
    PINCODE_LIST = "PINCODE_LIST"  # carrier_pincodes table
    API = "API"                    # Carrier HTTP endpoint


class Carrier(Base):
    """Courier partner that can appear in rate cards."""
    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    service_types: Mapped[List[str]] = mapped_column(JSONType, default=lambda: ["STANDARD"])

    serviceability_mode: Mapped[str] = mapped_column(
        String(20),
        default=ServiceabilityMode.ALL.value,
        comment="ALL, PINCODE_LIST, API"
    )
    serviceability_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    default_transit_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    pincodes: Mapped[List["CarrierPincode"]] = relationship(
        "CarrierPincode",
        back_populates="carrier",
        cascade="all, delete-orphan"
    )


class CarrierPincode(Base):
    """Serviceable pincode of a PINCODE_LIST carrier."""
    __tablename__ = "carrier_pincodes"
    __table_args__ = (
        UniqueConstraint("carrier_id", "pincode", name="uq_carrier_pincode"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("carriers.id", ondelete="CASCADE"),
        nullable=False
    )
    pincode: Mapped[str] = mapped_column(String(6), nullable=False, index=True)
    is_serviceable: Mapped[bool] = mapped_column(Boolean, default=True)
    pickup_available: Mapped[bool] = mapped_column(Boolean, default=True)

    carrier: Mapped["Carrier"] = relationship("Carrier", back_populates="pincodes")


class CompanyCarrier(Base):
    """Carrier enabled for a company."""
    __tablename__ = "company_carriers"
    __table_args__ = (
        UniqueConstraint("company_id", "carrier_id", name="uq_company_carrier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("carriers.id", ondelete="CASCADE"),
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int] = mapped_column(Integer, default=100)

    carrier: Mapped["Carrier"] = relationship("Carrier")
