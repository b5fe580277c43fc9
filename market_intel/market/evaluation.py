"""Market valuation for VINs we are thinking about buying.

Results are cached per VIN for ``settings.vin_cache_ttl_days``. Only a summary
and a handful of sample listings are stored, never the full listing set.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.config import settings
from market_intel.db.models import OwnedVehicle, VinEvaluationCache
from market_intel.market.dedupe import deduplicate_listings, exclude_own_inventory, listing_vin
from market_intel.market.listings_client import MarketListingsClient, listings_client
from market_intel.market.statistics import calculate_price_stats
from market_intel import metrics

logger = logging.getLogger(__name__)


@dataclass
class EvaluationRequest:
    vin: str
    year: int
    make: str
    model: str
    mileage: int
    trim: Optional[str] = None
    force_refresh: bool = False

    def validate(self):
        missing = [
            name
            for name in ("vin", "year", "make", "model", "mileage")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")


@dataclass
class EvaluationResult:
    from_cache: bool
    vin: str
    year: int
    make: str
    model: str
    trim: Optional[str]
    mileage: int
    median_price: Optional[float] = None
    average_price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    total_listings: int = 0
    unique_listings: int = 0
    sample_listings: list[dict] = field(default_factory=list)
    cached_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _as_decimal(value: Optional[float]) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def extract_sample_listings(listings: list[dict], limit: int = 50) -> list[dict]:
    """Display-sized view of the first ``limit`` listings."""
    samples = []
    for listing in listings[:limit]:
        vehicle = listing.get("vehicle") or {}
        retail = listing.get("retailListing") or {}
        vin = listing_vin(listing)
        city, state = retail.get("city"), retail.get("state")
        samples.append(
            {
                "vin_last4": vin[-4:] if vin else None,
                "price": retail.get("price"),
                "mileage": retail.get("miles") or vehicle.get("mileage"),
                "trim": vehicle.get("trim"),
                "location": f"{city}, {state}" if city and state else None,
                "url": retail.get("vdp") or retail.get("vdpUrl"),
            }
        )
    return samples


class VinEvaluationService:
    """Cached market lookup for a single VIN."""

    def __init__(self, db: AsyncSession, client: Optional[MarketListingsClient] = None):
        self.db = db
        self.client = client or listings_client

    async def evaluate(self, request: EvaluationRequest) -> EvaluationResult:
        """
        Evaluate a vehicle, serving from cache when a fresh entry exists.

        Args:
            request: Vehicle description plus the force-refresh flag

        Returns:
            EvaluationResult, with ``from_cache`` telling where it came from

        Raises:
            ValueError: A required field is missing
            ListingsAPIError: The listings API failed on a cache miss
        """
        request.validate()
        vin = request.vin.strip().upper()

        if request.force_refresh:
            logger.info(f"VIN evaluation force refresh for {vin}, dropping cached entries")
            await self._delete_cached(vin)
        else:
            try:
                cached = await self.get_cached(vin)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"VIN evaluation cache read failed for {vin}, fetching fresh: {e}")
                cached = None
            if cached is not None:
                metrics.vin_cache_lookups_total.labels(result="hit").inc()
                logger.info(f"VIN evaluation for {vin} served from cache ({cached.created_at})")
                return self._from_cache(cached)

        metrics.vin_cache_lookups_total.labels(result="miss").inc()

        own_vins = await self._own_inventory_vins()
        page = await self.client.fetch_listings(request)
        unique = deduplicate_listings(page.listings).unique
        market = exclude_own_inventory(unique, own_vins)
        stats = calculate_price_stats(market)
        samples = extract_sample_listings(market, settings.vin_cache_sample_size)

        result = EvaluationResult(
            from_cache=False,
            vin=vin,
            year=request.year,
            make=request.make,
            model=request.model,
            trim=request.trim,
            mileage=request.mileage,
            median_price=stats.median,
            average_price=stats.average,
            min_price=stats.min,
            max_price=stats.max,
            total_listings=page.total,
            unique_listings=len(market),
            sample_listings=samples,
        )
        await self._save(result, page.search_params)

        logger.info(
            f"VIN evaluation for {vin}: fetched={page.total} market={len(market)} median={stats.median}"
        )
        return result

    async def get_cached(self, vin: str) -> Optional[VinEvaluationCache]:
        """Newest cache entry for ``vin`` younger than the TTL."""
        cutoff = datetime.utcnow() - timedelta(days=settings.vin_cache_ttl_days)
        result = await self.db.execute(
            select(VinEvaluationCache)
            .where(
                VinEvaluationCache.vin == vin.strip().upper(),
                VinEvaluationCache.created_at > cutoff,
            )
            .order_by(VinEvaluationCache.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def purge_expired(self) -> int:
        cutoff = datetime.utcnow() - timedelta(days=settings.vin_cache_ttl_days)
        result = await self.db.execute(
            delete(VinEvaluationCache).where(VinEvaluationCache.created_at <= cutoff)
        )
        await self.db.commit()
        logger.info(f"Purged {result.rowcount} expired VIN evaluation cache entries")
        return result.rowcount

    async def _delete_cached(self, vin: str):
        try:
            await self.db.execute(delete(VinEvaluationCache).where(VinEvaluationCache.vin == vin))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to delete VIN evaluation cache for {vin}: {e}")

    async def _save(self, result: EvaluationResult, search_params: dict):
        try:
            self.db.add(
                VinEvaluationCache(
                    vin=result.vin,
                    year=result.year,
                    make=result.make,
                    model=result.model,
                    trim=result.trim,
                    mileage=result.mileage,
                    median_price=_as_decimal(result.median_price),
                    average_price=_as_decimal(result.average_price),
                    min_price=_as_decimal(result.min_price),
                    max_price=_as_decimal(result.max_price),
                    total_listings=result.total_listings,
                    unique_listings=result.unique_listings,
                    search_params=search_params,
                    sample_listings=result.sample_listings,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to cache VIN evaluation for {result.vin}: {e}")

    async def _own_inventory_vins(self) -> list[str]:
        result = await self.db.execute(select(OwnedVehicle.vin).where(OwnedVehicle.vin.is_not(None)))
        return [vin for vin in result.scalars().all() if vin]

    @staticmethod
    def _from_cache(entry: VinEvaluationCache) -> EvaluationResult:
        return EvaluationResult(
            from_cache=True,
            vin=entry.vin,
            year=entry.year,
            make=entry.make,
            model=entry.model,
            trim=entry.trim,
            mileage=entry.mileage,
            median_price=_as_float(entry.median_price),
            average_price=_as_float(entry.average_price),
            min_price=_as_float(entry.min_price),
            max_price=_as_float(entry.max_price),
            total_listings=entry.total_listings,
            unique_listings=entry.unique_listings,
            sample_listings=entry.sample_listings or [],
            cached_at=entry.created_at,
        )
