"""Track which listing platforms each VIN appears on."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.db.models import MarketPlatformTracking
from market_intel.market.dedupe import listing_price, listing_vin

logger = logging.getLogger(__name__)

# carsforsale.com is its own platform, not cars.com
PLATFORM_DOMAINS = {
    "carsforsale.com": "CarsForSale.com",
    "cars.com": "Cars.com",
    "autotrader.com": "AutoTrader",
    "cargurus.com": "CarGurus",
    "truecar.com": "TrueCar",
    "edmunds.com": "Edmunds",
    "carmax.com": "CarMax",
    "carvana.com": "Carvana",
    "vroom.com": "Vroom",
    "facebook.com": "Facebook Marketplace",
    "craigslist.org": "Craigslist",
}


@dataclass
class PlatformSighting:
    vin: str
    platform: str
    is_own_vehicle: bool
    price: Optional[float]
    dealer_name: Optional[str]
    listing_url: str


def parse_platform(url: Optional[str]) -> Optional[str]:
    """Platform display name from a listing detail URL; bare domain when unknown."""
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        logger.warning(f"Failed to parse platform from URL: {url}")
        return None
    if not host:
        return None
    domain = host[4:] if host.startswith("www.") else host
    return PLATFORM_DOMAINS.get(domain, domain)


def extract_platform_sightings(
    listings: Iterable[dict], own_vins: Iterable[str] = ()
) -> list[PlatformSighting]:
    """One sighting per listing that has both a VIN and a detail URL."""
    own = {vin.upper() for vin in own_vins if vin}
    sightings = []
    for listing in listings:
        vin = listing_vin(listing)
        retail = listing.get("retailListing") or {}
        url = retail.get("vdpUrl") or retail.get("vdp")
        if not vin or not url:
            continue
        platform = parse_platform(url)
        if not platform:
            continue
        sightings.append(
            PlatformSighting(
                vin=vin.upper(),
                platform=platform,
                is_own_vehicle=vin.upper() in own,
                price=listing_price(listing),
                dealer_name=retail.get("dealerName"),
                listing_url=url,
            )
        )
    return sightings


async def save_platform_tracking(
    db: AsyncSession, sightings: list[PlatformSighting], now: Optional[datetime] = None
) -> int:
    """Upsert sightings keyed on (vin, platform), bumping ``times_seen``."""
    if not sightings:
        return 0
    now = now or datetime.utcnow()

    for sighting in sightings:
        row = (
            await db.execute(
                select(MarketPlatformTracking).where(
                    MarketPlatformTracking.vin == sighting.vin,
                    MarketPlatformTracking.platform == sighting.platform,
                )
            )
        ).scalar_one_or_none()
        price = Decimal(str(sighting.price)) if sighting.price is not None else None

        if row is None:
            db.add(
                MarketPlatformTracking(
                    vin=sighting.vin,
                    platform=sighting.platform,
                    is_own_vehicle=sighting.is_own_vehicle,
                    price=price,
                    dealer_name=sighting.dealer_name,
                    listing_url=sighting.listing_url,
                    first_seen=now,
                    last_seen=now,
                    times_seen=1,
                )
            )
            # Same VIN twice on one platform within a batch
            await db.flush()
        else:
            row.price = price
            row.dealer_name = sighting.dealer_name
            row.listing_url = sighting.listing_url
            row.is_own_vehicle = sighting.is_own_vehicle
            row.last_seen = now
            row.times_seen += 1

    await db.commit()
    logger.info(
        f"Platform tracking updated: {len(sightings)} sightings, "
        f"{sum(1 for s in sightings if s.is_own_vehicle)} own vehicles"
    )
    return len(sightings)
