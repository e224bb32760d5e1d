"""
Enum utilities for VARCHAR-based code fields.

Statuses and service types are stored as VARCHAR(50) in UPPERCASE; zone
codes are stored in their canonical ``zoneA``..``zoneE`` form. Import files
and API callers are sloppy about both, so everything coming in goes through
the normalizers below first.
"""

import re
from enum import Enum
from typing import Any, Optional, Type, TypeVar


T = TypeVar('T', bound=Enum)

ZONE_LETTERS = ("A", "B", "C", "D", "E")

# Strict canonical form, used for externally supplied zone hints
CANONICAL_ZONE_PATTERN = re.compile(r"^zone[A-E]$")


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(RateCardStatus.ACTIVE)
        'ACTIVE'
        >>> get_enum_value("ACTIVE")
        'ACTIVE'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, or None if it is not a member.

    Examples:
        >>> to_enum("ACTIVE", RateCardStatus)
        RateCardStatus.ACTIVE
        >>> to_enum("INVALID", RateCardStatus)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except (ValueError, KeyError):
        return None


def normalize_to_uppercase(value: Any) -> Optional[str]:
    """Strip and uppercase a free-text code; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return re.sub(r"[\s\-]+", "_", text).upper()


def normalize_zone_code(value: Any) -> Optional[str]:
    """
    Normalize loose zone spellings to the canonical code.

    Examples:
        >>> normalize_zone_code("A")
        'zoneA'
        >>> normalize_zone_code("zone_b")
        'zoneB'
        >>> normalize_zone_code(" ZoneC ")
        'zoneC'
        >>> normalize_zone_code("zoneZ")
        None
    """
    if value is None:
        return None
    cleaned = re.sub(r"[^A-Z]", "", str(value).upper())
    if cleaned.startswith("ZONE"):
        cleaned = cleaned[4:]
    if cleaned in ZONE_LETTERS:
        return f"zone{cleaned}"
    return None


def is_canonical_zone_code(value: Any) -> bool:
    """True only for an exact ``zoneA``..``zoneE`` string."""
    return isinstance(value, str) and CANONICAL_ZONE_PATTERN.fullmatch(value) is not None


def normalize_choice(value: Any, enum_class: Type[T]) -> Optional[T]:
    """Case-insensitive lookup by value, then by name."""
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    text = str(value).strip()
    if not text:
        return None
    as_code = normalize_to_uppercase(text)
    for member in enum_class:
        if member.value.lower() == text.lower() or member.name == as_code:
            return member
    return None
