"""Domain exceptions raised by the pricing services."""
from typing import Dict, Optional


class UnknownPincode(ValueError):
    """Pincode is not present in the loaded reference table."""
    def __init__(self, pincode: str):
        self.pincode = pincode
        super().__init__(f"Unknown pincode: {pincode!r}")


class RateCardNotFound(LookupError):
    """Requested rate card does not exist."""
    pass


class RateCardImportError(Exception):
    """Import failure that aborts the whole file (unreadable, empty, wrong format)."""
    def __init__(self, message: str, row_number: Optional[int] = None, details: Optional[Dict] = None):
        self.message = message
        self.row_number = row_number
        self.details = details or {}
        super().__init__(self.message)
