# Models module: importing registers every table with Base.metadata
from shiprate.models.rate_card import (
    RateCard,
    BaseRate,
    WeightRule,
    ZoneRule,
    ZoneMultiplier,
    CodSurchargeSlab,
    CompanyRateCardAssignment,
    RateCardStatus,
    ServiceType,
    ZoneCode,
    ZonePricingMode,
    FuelSurchargeBase,
    ChargeType,
)
from shiprate.models.zone import Zone, Pincode
from shiprate.models.carrier import Carrier, CarrierPincode, CompanyCarrier, ServiceabilityMode
from shiprate.models.system_config import SystemConfiguration

__all__ = [
    "RateCard",
    "BaseRate",
    "WeightRule",
    "ZoneRule",
    "ZoneMultiplier",
    "CodSurchargeSlab",
    "CompanyRateCardAssignment",
    "RateCardStatus",
    "ServiceType",
    "ZoneCode",
    "ZonePricingMode",
    "FuelSurchargeBase",
    "ChargeType",
    "Zone",
    "Pincode",
    "Carrier",
    "CarrierPincode",
    "CompanyCarrier",
    "ServiceabilityMode",
    "SystemConfiguration",
]
