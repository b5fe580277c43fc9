"""Listing deduplication by VIN and own-inventory exclusion."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DedupeResult:
    unique: list[dict]
    duplicates: list[dict] = field(default_factory=list)


def listing_vin(listing: dict) -> Optional[str]:
    vin = (listing.get("vehicle") or {}).get("vin")
    if not isinstance(vin, str) or not vin.strip():
        return None
    return vin.strip()


def listing_price(listing: dict) -> Optional[float]:
    price = (listing.get("retailListing") or {}).get("price")
    try:
        return float(price) if price is not None else None
    except (TypeError, ValueError):
        return None


def _listed_at(listing: dict) -> datetime:
    raw = (listing.get("retailListing") or {}).get("listedDate")
    if not raw:
        return datetime.min
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min
    return parsed.replace(tzinfo=None)


def _sort_price(listing: dict) -> float:
    price = listing_price(listing)
    return price if price else math.inf


def _preferred(current: dict, candidate: dict) -> dict:
    """Lower price wins; equal prices go to the more recent listing date."""
    current_price, candidate_price = _sort_price(current), _sort_price(candidate)
    if candidate_price < current_price:
        return candidate
    if candidate_price == current_price and _listed_at(candidate) > _listed_at(current):
        return candidate
    return current


def deduplicate_listings(listings: list[dict]) -> DedupeResult:
    """Collapse listings sharing a VIN.

    Listings without a VIN pass through untouched. Output keeps the position
    of the first listing seen for each VIN.
    """
    slots: list[dict] = []
    by_vin: dict[str, int] = {}
    duplicates: list[dict] = []

    for listing in listings:
        vin = listing_vin(listing)
        if vin is None:
            slots.append(listing)
            continue
        key = vin.upper()
        if key not in by_vin:
            by_vin[key] = len(slots)
            slots.append(listing)
            continue
        index = by_vin[key]
        kept = _preferred(slots[index], listing)
        duplicates.append(listing if kept is slots[index] else slots[index])
        slots[index] = kept

    unique = slots
    if listings:
        logger.info(
            f"Deduplication complete: original={len(listings)} unique={len(unique)} "
            f"duplicates={len(duplicates)} ({len(duplicates) / len(listings) * 100:.1f}%)"
        )
    return DedupeResult(unique=unique, duplicates=duplicates)


def exclude_own_inventory(listings: list[dict], own_vins: Iterable[str]) -> list[dict]:
    """Drop listings whose VIN is in our own inventory (case-insensitive)."""
    own = {vin.strip().upper() for vin in own_vins if vin}
    filtered = []
    for listing in listings:
        vin = listing_vin(listing)
        if vin is None or vin.upper() not in own:
            filtered.append(listing)
    excluded = len(listings) - len(filtered)
    if excluded:
        logger.info(f"Excluded {excluded} own-inventory listings, {len(filtered)} remaining")
    return filtered
