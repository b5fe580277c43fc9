"""Normalized vehicle record produced by competitor page parsers."""

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass
class ScrapedVehicle:
    """One vehicle extracted from a competitor inventory page."""

    vin: Optional[str] = None
    stock_number: Optional[str] = None
    year: Optional[int] = None
    make: Optional[str] = None
    model: Optional[str] = None
    trim: Optional[str] = None
    mileage: Optional[int] = None
    price: Optional[float] = None
    exterior_color: Optional[str] = None

    def __post_init__(self):
        # Empty strings from selectors are treated as missing
        for name in ("vin", "stock_number", "make", "model", "trim", "exterior_color"):
            value = getattr(self, name)
            if isinstance(value, str):
                value = value.strip()
                setattr(self, name, value or None)
        if self.vin:
            self.vin = self.vin.upper()

    @property
    def identity(self) -> Optional[str]:
        """VIN when present, else stock number."""
        return self.vin or self.stock_number

    @property
    def is_usable(self) -> bool:
        """Has a price and at least one identifier."""
        return bool(self.identity) and bool(self.price)

    def to_dict(self) -> dict:
        return asdict(self)
