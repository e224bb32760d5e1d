"""
Zone Resolver.

Maps an (origin pincode, destination pincode) pair to a pricing zone:

1. Same district              -> zoneA (local)
2. Same state                 -> zoneB (intra-state)
3. Both cities are metros     -> zoneC (metro to metro)
4. Same postal region         -> zoneD (regional)
5. Anything else, or a
   special-category state     -> zoneE (national)

Classification reads an immutable snapshot of the pincode table and the
ConfigProvider values. The snapshot only changes on an explicit reload().
"""
import csv
import io
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy import select

from shiprate.core.config_provider import ConfigProvider
from shiprate.core.exceptions import UnknownPincode
from shiprate.models.rate_card import ZoneCode

logger = logging.getLogger(__name__)


class DistanceBand(str, Enum):
    """Declared distance band behind each zone."""
    LOCAL = "local"
    INTRA_STATE = "intra_state"
    METRO = "metro"
    REGIONAL = "regional"
    NATIONAL = "national"


BAND_ZONES = {
    DistanceBand.LOCAL: ZoneCode.A,
    DistanceBand.INTRA_STATE: ZoneCode.B,
    DistanceBand.METRO: ZoneCode.C,
    DistanceBand.REGIONAL: ZoneCode.D,
    DistanceBand.NATIONAL: ZoneCode.E,
}

# First digit of an Indian PIN identifies the postal region
POSTAL_REGIONS = {
    "1": "NORTH",
    "2": "NORTH",
    "3": "WEST",
    "4": "WEST",
    "5": "SOUTH",
    "6": "SOUTH",
    "7": "EAST",
    "8": "EAST",
    "9": "APS",
}


@dataclass(frozen=True)
class PincodeInfo:
    """One reference row."""
    pincode: str
    district: str
    state: str
    circle: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    is_oda: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ZoneClassification:
    zone_code: str
    is_same_city: bool
    is_same_state: bool
    distance_band: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _Snapshot:
    pincodes: Dict[str, PincodeInfo]
    metro_cities: FrozenSet[str]
    special_states: FrozenSet[str]


def normalize_pincode(value) -> str:
    return str(value or "").strip().replace(" ", "")


def _key(value: Optional[str]) -> str:
    return (value or "").strip().upper()


PincodeSource = Callable[[], Awaitable[Iterable[PincodeInfo]]]


class ZoneResolver:
    """Pincode lookup and zone classification over a reloadable snapshot."""

    def __init__(
        self,
        config_provider: ConfigProvider,
        pincode_source: Optional[PincodeSource] = None,
        pincodes: Iterable[PincodeInfo] = (),
    ):
        self._config = config_provider
        self._pincode_source = pincode_source
        self._snapshot = _Snapshot(
            pincodes={p.pincode: p for p in pincodes},
            metro_cities=config_provider.get_metro_cities(),
            special_states=config_provider.get_special_states(),
        )

    async def reload(self) -> None:
        """Re-read configuration and the pincode table, then swap the snapshot."""
        await self._config.reload()

        pincodes = self._snapshot.pincodes
        if self._pincode_source is not None:
            pincodes = {p.pincode: p for p in await self._pincode_source()}

        self._snapshot = _Snapshot(
            pincodes=pincodes,
            metro_cities=self._config.get_metro_cities(),
            special_states=self._config.get_special_states(),
        )
        logger.info(
            f"Zone resolver reloaded: {len(pincodes)} pincodes, "
            f"{len(self._snapshot.metro_cities)} metro cities"
        )

    @property
    def pincode_count(self) -> int:
        return len(self._snapshot.pincodes)

    @property
    def metro_cities(self) -> FrozenSet[str]:
        return self._snapshot.metro_cities

    def resolve_pincode(self, pincode: str, snapshot: Optional[_Snapshot] = None) -> PincodeInfo:
        """Look up a pincode; raises UnknownPincode if absent."""
        code = normalize_pincode(pincode)
        info = (snapshot or self._snapshot).pincodes.get(code)
        if info is None:
            raise UnknownPincode(code)
        return info

    def is_metro(self, info: PincodeInfo, snapshot: Optional[_Snapshot] = None) -> bool:
        metros = (snapshot or self._snapshot).metro_cities
        return _key(info.city) in metros or _key(info.district) in metros

    def region_of(self, info: PincodeInfo) -> str:
        if info.region:
            return _key(info.region)
        return POSTAL_REGIONS.get(info.pincode[:1], "UNKNOWN")

    def classify_zone(self, origin_pincode: str, destination_pincode: str) -> ZoneClassification:
        """Classify a lane into zoneA..zoneE."""
        snapshot = self._snapshot
        origin = self.resolve_pincode(origin_pincode, snapshot)
        destination = self.resolve_pincode(destination_pincode, snapshot)

        same_state = _key(origin.state) == _key(destination.state)
        same_city = same_state and _key(origin.district) == _key(destination.district)

        if same_city:
            band = DistanceBand.LOCAL
        elif same_state:
            band = DistanceBand.INTRA_STATE
        elif self.is_metro(origin, snapshot) and self.is_metro(destination, snapshot):
            band = DistanceBand.METRO
        elif (
            self.region_of(origin) == self.region_of(destination)
            and _key(origin.state) not in snapshot.special_states
            and _key(destination.state) not in snapshot.special_states
        ):
            band = DistanceBand.REGIONAL
        else:
            band = DistanceBand.NATIONAL

        return ZoneClassification(
            zone_code=BAND_ZONES[band].value,
            is_same_city=same_city,
            is_same_state=same_state,
            distance_band=band.value,
        )


# ============================================
# PINCODE SOURCES
# ============================================

def db_pincode_source(session_factory: Callable) -> PincodeSource:
    """Pincode source that reads the pincodes table on every reload."""
    from shiprate.models.zone import Pincode

    async def load() -> List[PincodeInfo]:
        async with session_factory() as session:
            result = await session.execute(select(Pincode))
            return [
                PincodeInfo(
                    pincode=row.pincode,
                    district=row.district,
                    state=row.state,
                    circle=row.circle,
                    city=row.city,
                    region=row.region,
                    is_oda=bool(row.is_oda),
                )
                for row in result.scalars().all()
            ]

    return load


PINCODE_COLUMNS = {
    "pincode": ["pincode", "pin", "pin code", "postal code"],
    "circle": ["circle", "circlename"],
    "district": ["district", "districtname"],
    "city": ["city", "taluk", "town"],
    "state": ["state", "statename"],
    "region": ["region", "regionname"],
    "is_oda": ["is_oda", "oda", "remote"],
}


def parse_pincode_csv(content: str) -> List[PincodeInfo]:
    """
    Parse a pincode reference CSV.

    Needs pincode, district and state columns; circle, city, region and
    oda are optional. Rows without a 6-digit pincode are skipped.
    """
    reader = csv.DictReader(io.StringIO(content))
    headers = {h.strip().lower(): h for h in (reader.fieldnames or [])}

    def column(field: str) -> Optional[str]:
        for name in PINCODE_COLUMNS[field]:
            if name in headers:
                return headers[name]
        return None

    columns = {field: column(field) for field in PINCODE_COLUMNS}
    missing = [f for f in ("pincode", "district", "state") if columns[f] is None]
    if missing:
        raise ValueError(f"Pincode file is missing columns: {', '.join(missing)}")

    rows = []
    for raw in reader:
        def get(field):
            col = columns[field]
            return (raw.get(col) or "").strip() if col else ""

        pincode = normalize_pincode(get("pincode"))
        if len(pincode) != 6 or not pincode.isdigit():
            continue
        rows.append(PincodeInfo(
            pincode=pincode,
            district=get("district"),
            state=get("state"),
            circle=get("circle") or None,
            city=get("city") or get("district"),
            region=get("region").upper() or None,
            is_oda=get("is_oda").lower() in ("1", "true", "yes", "y"),
        ))
    return rows
