"""Rate Card models: versioned pricing rule sets per company."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    String, Boolean, DateTime, Date, ForeignKey, Integer, Text,
    Numeric, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shiprate.database import Base
from shiprate.db_types import UUIDType


# ============================================
# ENUMS
# ============================================

class RateCardStatus(str, Enum):
    """Rate card lifecycle status."""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


class ServiceType(str, Enum):
    """Courier service level."""
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"
    ECONOMY = "ECONOMY"
    SAME_DAY = "SAME_DAY"
    NEXT_DAY = "NEXT_DAY"


class ZoneCode(str, Enum):
    """Zone classification for delivery."""
    A = "zoneA"  # Local / within city
    B = "zoneB"  # Within state
    C = "zoneC"  # Metro to metro
    D = "zoneD"  # Regional
    E = "zoneE"  # National / special states


class ZonePricingMode(str, Enum):
    """Which zone sub-structure a card prices with. Exactly one per card."""
    NONE = "NONE"
    FLAT = "FLAT"              # ZoneRule.additional_price
    MULTIPLIER = "MULTIPLIER"  # ZoneMultiplier.factor against freight


class FuelSurchargeBase(str, Enum):
    """Amount the fuel percentage is applied to."""
    FREIGHT = "freight"
    FREIGHT_ZONE = "freight+zone"


class ChargeType(str, Enum):
    """How a COD slab charge is calculated."""
    FLAT = "FLAT"
    PERCENTAGE = "PERCENTAGE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# RATE CARD
# ============================================

class RateCard(Base):
    """
    Rate card for a company.

    Holds base brackets, per-kg weight rules, zone pricing (flat or
    multiplier, never both) and the scalar surcharge settings. A locked card
    is never edited in place: edits go to a new version and the old one is
    marked INACTIVE.
    """
    __tablename__ = "rate_cards"
    __table_args__ = (
        UniqueConstraint("company_id", "name", "version", name="uq_rate_card_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)

    # Identification
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Status & validity
    status: Mapped[str] = mapped_column(
        String(50),
        default=RateCardStatus.DRAFT.value,
        nullable=False,
        comment="DRAFT, ACTIVE, INACTIVE, EXPIRED"
    )
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_locked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Referenced by a completed booking; edits create a new version"
    )

    # Zone pricing strategy
    zone_pricing_mode: Mapped[str] = mapped_column(
        String(20),
        default=ZonePricingMode.NONE.value,
        nullable=False,
        comment="NONE, FLAT, MULTIPLIER"
    )

    # Surcharge settings
    minimum_call: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    fuel_surcharge_percent: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=Decimal("0"))
    fuel_surcharge_base: Mapped[str] = mapped_column(
        String(20),
        default=FuelSurchargeBase.FREIGHT.value,
        comment="freight, freight+zone"
    )
    cod_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(6, 3), nullable=True,
        comment="Fallback COD percent when no slab matches"
    )
    cod_minimum_charge: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    remote_area_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    remote_area_surcharge: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    gst_percent: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=Decimal("18"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    # Relationships
    base_rates: Mapped[List["BaseRate"]] = relationship(
        "BaseRate",
        back_populates="rate_card",
        cascade="all, delete-orphan"
    )
    weight_rules: Mapped[List["WeightRule"]] = relationship(
        "WeightRule",
        back_populates="rate_card",
        cascade="all, delete-orphan"
    )
    zone_rules: Mapped[List["ZoneRule"]] = relationship(
        "ZoneRule",
        back_populates="rate_card",
        cascade="all, delete-orphan"
    )
    zone_multipliers: Mapped[List["ZoneMultiplier"]] = relationship(
        "ZoneMultiplier",
        back_populates="rate_card",
        cascade="all, delete-orphan"
    )
    cod_slabs: Mapped[List["CodSurchargeSlab"]] = relationship(
        "CodSurchargeSlab",
        back_populates="rate_card",
        cascade="all, delete-orphan",
        order_by="CodSurchargeSlab.sort_order"
    )

    def __repr__(self) -> str:
        return f"<RateCard(name='{self.name}', v{self.version}, status='{self.status}')>"


class BaseRate(Base):
    """Base price for a [min_weight, max_weight) bracket of one carrier/service."""
    __tablename__ = "rate_card_base_rates"
    __table_args__ = (
        Index("ix_base_rate_lookup", "rate_card_id", "carrier_code", "service_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    carrier_code: Mapped[str] = mapped_column(String(50), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    min_weight_kg: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    max_weight_kg: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    rate_card: Mapped["RateCard"] = relationship("RateCard", back_populates="base_rates")


class WeightRule(Base):
    """Per-kg price for weight in [min_weight, max_weight) above the base bracket."""
    __tablename__ = "rate_card_weight_rules"
    __table_args__ = (
        Index("ix_weight_rule_lookup", "rate_card_id", "carrier_code", "service_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    carrier_code: Mapped[str] = mapped_column(String(50), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    min_weight_kg: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    max_weight_kg: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    price_per_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    rate_card: Mapped["RateCard"] = relationship("RateCard", back_populates="weight_rules")


class ZoneRule(Base):
    """Flat zone add-on and transit days for one carrier/service (FLAT mode)."""
    __tablename__ = "rate_card_zone_rules"
    __table_args__ = (
        UniqueConstraint(
            "rate_card_id", "zone_code", "carrier_code", "service_type",
            name="uq_zone_rule"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    zone_code: Mapped[str] = mapped_column(String(10), nullable=False)
    carrier_code: Mapped[str] = mapped_column(String(50), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    additional_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    transit_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    rate_card: Mapped["RateCard"] = relationship("RateCard", back_populates="zone_rules")


class ZoneMultiplier(Base):
    """Multiplicative factor applied to freight for a zone (MULTIPLIER mode)."""
    __tablename__ = "rate_card_zone_multipliers"
    __table_args__ = (
        UniqueConstraint("rate_card_id", "zone_code", name="uq_zone_multiplier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    zone_code: Mapped[str] = mapped_column(String(10), nullable=False)
    factor: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=Decimal("1"))

    rate_card: Mapped["RateCard"] = relationship("RateCard", back_populates="zone_multipliers")


class CodSurchargeSlab(Base):
    """COD charge band on order value [min_value, max_value)."""
    __tablename__ = "rate_card_cod_slabs"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    min_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    max_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    charge_type: Mapped[str] = mapped_column(String(20), default=ChargeType.FLAT.value, comment="FLAT, PERCENTAGE")
    value: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)

    rate_card: Mapped["RateCard"] = relationship("RateCard", back_populates="cod_slabs")


# ============================================
# COMPANY ASSIGNMENT
# ============================================

class CompanyRateCardAssignment(Base):
    """Explicit default rate card of a company for one tier."""
    __tablename__ = "company_rate_card_assignments"
    __table_args__ = (
        UniqueConstraint("company_id", "tier", name="uq_company_tier_rate_card"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False, index=True)
    tier: Mapped[str] = mapped_column(String(50), default="STANDARD", nullable=False)
    rate_card_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("rate_cards.id", ondelete="CASCADE"),
        nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    rate_card: Mapped["RateCard"] = relationship("RateCard")
