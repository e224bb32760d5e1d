"""
Carrier serviceability checks.

Modes:
- ALL: every pincode is serviceable
- PINCODE_LIST: the carrier's CarrierPincode rows, preloaded before ranking
- API: GET {serviceability_url}?pincode=...&pickup=... returning {"serviceable": bool}
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from shiprate.models.carrier import Carrier, ServiceabilityMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CarrierInfo:
    """Session-free view of a carrier, safe to share between concurrent checks."""
    id: uuid.UUID
    code: str
    name: str
    service_types: List[str] = field(default_factory=list)
    serviceability_mode: str = ServiceabilityMode.ALL.value
    serviceability_url: Optional[str] = None
    default_transit_days: Optional[int] = None
    # pincode -> pickup_available, only for PINCODE_LIST carriers
    listed_pincodes: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_model(cls, carrier: Carrier, listed_pincodes: Optional[Dict[str, bool]] = None) -> "CarrierInfo":
        return cls(
            id=carrier.id,
            code=carrier.code,
            name=carrier.name,
            service_types=list(carrier.service_types or []),
            serviceability_mode=carrier.serviceability_mode,
            serviceability_url=carrier.serviceability_url,
            default_transit_days=carrier.default_transit_days,
            listed_pincodes=dict(listed_pincodes or {}),
        )


class ServiceabilityChecker(ABC):
    """Answers whether a carrier can deliver to (or pick up from) a pincode."""

    @abstractmethod
    async def check_serviceability(self, carrier: CarrierInfo, pincode: str, pickup: bool = False) -> bool:
        ...


class HttpServiceabilityClient:
    """Async client for carrier serviceability endpoints."""

    def __init__(self, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def check(self, url: str, pincode: str, pickup: bool = False) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(
                url,
                params={"pincode": pincode, "pickup": "true" if pickup else "false"},
            )
            response.raise_for_status()
            result = response.json()
            return bool(result.get("serviceable"))


class CarrierServiceabilityChecker(ServiceabilityChecker):
    """Dispatches on the carrier's serviceability mode."""

    def __init__(self, http_client: Optional[HttpServiceabilityClient] = None):
        self.http_client = http_client or HttpServiceabilityClient()

    async def check_serviceability(self, carrier: CarrierInfo, pincode: str, pickup: bool = False) -> bool:
        mode = carrier.serviceability_mode

        if mode == ServiceabilityMode.PINCODE_LIST.value:
            if pincode not in carrier.listed_pincodes:
                return False
            return carrier.listed_pincodes[pincode] if pickup else True

        if mode == ServiceabilityMode.API.value:
            if not carrier.serviceability_url:
                logger.warning(f"Carrier {carrier.code} uses API serviceability without a URL")
                return False
            return await self.http_client.check(carrier.serviceability_url, pincode, pickup)

        return True
