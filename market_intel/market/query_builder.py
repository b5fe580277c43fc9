"""Build listings-API search parameters for a target vehicle."""

import re
from dataclasses import dataclass
from typing import Optional, Protocol

from market_intel.config import settings

MIN_MILEAGE = 500
YEAR_RANGE_PATTERN = re.compile(r"^(?:±|\+-|\+/-)?\s*(\d{1,2})$")


class VehicleLike(Protocol):
    year: int
    make: str
    model: str
    mileage: Optional[int]


@dataclass(frozen=True)
class MileageRange:
    """Mileage bracket around a target vehicle."""
    min: int
    max: int
    spread: int

    def as_param(self) -> str:
        return f"{self.min}-{self.max}"


def base_spread(mileage: int) -> int:
    """Band-based spread: 10k up to 50k miles, 20k up to 100k, 30k above."""
    if mileage <= 50000:
        return 10000
    if mileage <= 100000:
        return 20000
    return 30000


def calculate_mileage_range(mileage: int, expansion: int = 0) -> MileageRange:
    """Mileage bracket, widened by ``expansion`` miles on each side.

    The lower bound never drops below 500 miles.
    """
    mileage = int(mileage or 0)
    spread = base_spread(mileage) + int(expansion or 0)
    return MileageRange(
        min=max(MIN_MILEAGE, mileage - spread),
        max=mileage + spread,
        spread=spread,
    )


def build_year_filter(year: int, year_range: Optional[str] = None) -> str:
    """Exact year, or 'min-max' for a '±N' override.

    Raises:
        ValueError: Unrecognized year range
    """
    if year_range is None or str(year_range).strip().lower() in ("", "exact"):
        return str(year)
    match = YEAR_RANGE_PATTERN.match(str(year_range).strip())
    if not match:
        raise ValueError(f"Invalid year range: {year_range!r} (expected 'exact' or '±N')")
    n = int(match.group(1))
    if n == 0:
        return str(year)
    return f"{year - n}-{year + n}"


def build_search_params(
    vehicle: VehicleLike,
    expansion: int = 0,
    year_range: Optional[str] = None,
    page: int = 1,
) -> dict:
    """Listings API query parameters for a vehicle."""
    mileage_range = calculate_mileage_range(vehicle.mileage or 0, expansion)
    return {
        "vehicle.make": vehicle.make,
        "vehicle.model": vehicle.model,
        "vehicle.year": build_year_filter(vehicle.year, year_range),
        "retailListing.mileage": mileage_range.as_param(),
        "zip": settings.market_zip,
        "distance": settings.market_radius_miles,
        "limit": settings.market_page_limit,
        "page": page,
    }
