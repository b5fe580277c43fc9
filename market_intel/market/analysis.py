"""Market analysis orchestration for owned inventory.

Fetch comparables, dedupe, drop our own VINs, compute statistics, persist the
snapshot, then hand off to trend tracking and alert detection.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from market_intel.config import settings
from market_intel.db.models import (
    MarketAlert,
    MarketMetric,
    MarketPlatformTracking,
    MarketSnapshot,
    OwnedVehicle,
)
from market_intel.db.session import AsyncSessionLocal
from market_intel.detect.engine import AlertContext, AlertDetectionEngine
from market_intel.errors import NotFoundError
from market_intel.market.dedupe import deduplicate_listings, exclude_own_inventory
from market_intel.market.listings_client import MarketListingsClient, listings_client
from market_intel.market.platforms import extract_platform_sightings, save_platform_tracking
from market_intel.market.statistics import calculate_price_stats, compute_market_position
from market_intel.market.trends import get_trend_history, update_price_trend
from market_intel import metrics

logger = logging.getLogger(__name__)


def _money(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(round(float(value), 2)))


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


class MarketAnalysisService:
    """Benchmarks owned vehicles against the external listings market."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        client: Optional[MarketListingsClient] = None,
    ):
        self.session_factory = session_factory
        self.client = client or listings_client

    async def analyze_vehicle(
        self,
        vehicle_id: int,
        expansion: int = 0,
        manual: bool = False,
        year_range: Optional[str] = None,
    ) -> dict:
        """
        Analyze one owned vehicle against the market.

        Automatic runs that find fewer than ``market_min_results`` listings
        return ``needs_expansion`` instead of persisting anything, so the
        caller can retry with a wider mileage bracket. Manual runs always
        persist whatever was found.

        Args:
            vehicle_id: Inventory row id
            expansion: Extra miles on each side of the mileage bracket
            manual: Operator-triggered run
            year_range: 'exact' or '±N'

        Returns:
            Result dict; ``success`` is False only when expansion is needed

        Raises:
            NotFoundError: Unknown vehicle
            ListingsAPIError: Listings API failure
        """
        async with self.session_factory() as db:
            vehicle = await db.get(OwnedVehicle, vehicle_id)
            if vehicle is None:
                raise NotFoundError(f"Vehicle {vehicle_id} not found")

            label = f"{vehicle.year} {vehicle.make} {vehicle.model}"
            logger.info(
                f"Starting market analysis for vehicle {vehicle_id} ({label}), "
                f"expansion={expansion} manual={manual}"
            )

            try:
                page = await self.client.fetch_listings(
                    vehicle, expansion=expansion, year_range=year_range
                )
            except Exception:
                metrics.market_analyses_total.labels(status="failed").inc()
                raise

            if not page.listings:
                logger.warning(f"No market listings found for vehicle {vehicle_id} ({label})")
                metrics.market_analyses_total.labels(status="no_results").inc()
                return {
                    "success": True,
                    "vehicle_id": vehicle_id,
                    "no_results": True,
                    "message": "No comparable market listings found",
                }

            deduped = deduplicate_listings(page.listings)
            own_vins = await self._own_inventory_vins(db)
            market = exclude_own_inventory(deduped.unique, own_vins)

            if (
                len(market) < settings.market_min_results
                and expansion < settings.market_max_expansion
                and not manual
            ):
                logger.info(
                    f"Only {len(market)} listings for vehicle {vehicle_id}, expansion needed "
                    f"(current +{expansion} miles)"
                )
                metrics.market_analyses_total.labels(status="needs_expansion").inc()
                return {
                    "success": False,
                    "vehicle_id": vehicle_id,
                    "needs_expansion": True,
                    "results_count": len(market),
                    "next_expansion": expansion + settings.market_expansion_step,
                }

            stats = calculate_price_stats(market)
            our_price = _float(vehicle.price)
            position = compute_market_position(our_price, market, stats)
            days_in_market = (
                (datetime.utcnow() - vehicle.date_added).days if vehicle.date_added else None
            )

            snapshot = MarketSnapshot(
                vehicle_id=vehicle.id,
                search_params=page.search_params,
                listings_data=market,
                total_listings=page.total,
                unique_listings=len(deduped.unique),
                median_price=_money(stats.median),
                average_price=_money(stats.average),
                min_price=_money(stats.min),
                max_price=_money(stats.max),
            )
            db.add(snapshot)
            await db.flush()

            metric = MarketMetric(
                snapshot_id=snapshot.id,
                vehicle_id=vehicle.id,
                our_price=_money(position.our_price),
                price_delta=_money(position.price_delta),
                price_delta_percent=position.price_delta_percent,
                percentile_rank=position.percentile_rank,
                cheaper_count=position.cheaper_count,
                more_expensive_count=position.more_expensive_count,
                competitive_position=position.competitive_position,
                days_in_market=days_in_market,
            )
            db.add(metric)
            await db.commit()

            sightings = extract_platform_sightings(deduped.unique, own_vins)
            await self._track_platforms(vehicle_id, sightings)

            trend = None
            if stats.median:
                trend = await update_price_trend(
                    db, vehicle.id, stats.median, stats.min, stats.max
                )

            alerts = await AlertDetectionEngine(db).detect(
                AlertContext(
                    vehicle=vehicle,
                    snapshot=snapshot,
                    stats=stats,
                    position=position,
                    listings=market,
                    trend=trend,
                )
            )

        metrics.market_analyses_total.labels(status="success").inc()
        logger.info(
            f"Market analysis complete for vehicle {vehicle_id}: snapshot={snapshot.id} "
            f"listings={len(market)} position={position.competitive_position}"
        )

        return {
            "success": True,
            "vehicle_id": vehicle_id,
            "snapshot_id": snapshot.id,
            "price_stats": stats.to_dict(),
            "position": position.to_dict(),
            "market_listings": len(market),
            "duplicates": len(deduped.duplicates),
            "platform_sightings": len(sightings),
            "alerts": len(alerts),
            "expansion": expansion,
        }

    async def analyze_all(self) -> dict:
        """Analyze every available vehicle, widening the search as needed.

        One vehicle's failure is logged and recorded in the results; the
        batch continues.
        """
        async with self.session_factory() as db:
            vehicle_ids = list(
                (
                    await db.execute(
                        select(OwnedVehicle.id)
                        .where(OwnedVehicle.status == "available")
                        .order_by(OwnedVehicle.id)
                    )
                ).scalars().all()
            )

        logger.info(f"Starting batch market analysis for {len(vehicle_ids)} vehicles")
        results = []

        for index, vehicle_id in enumerate(vehicle_ids):
            try:
                result = await self.analyze_vehicle(vehicle_id)
                attempts = 0
                while result.get("needs_expansion") and attempts < settings.market_max_expansion_attempts:
                    next_expansion = result.get("next_expansion") or settings.market_expansion_step
                    logger.info(f"Retrying vehicle {vehicle_id} with expansion +{next_expansion} miles")
                    result = await self.analyze_vehicle(vehicle_id, expansion=next_expansion)
                    attempts += 1
                results.append({"vehicle_id": vehicle_id, "success": result["success"], "result": result})
            except Exception as e:
                logger.error(f"Failed to analyze vehicle {vehicle_id}: {e}", exc_info=True)
                results.append({"vehicle_id": vehicle_id, "success": False, "error": str(e)})

            if index < len(vehicle_ids) - 1:
                await asyncio.sleep(settings.market_batch_delay_seconds)

        succeeded = sum(1 for r in results if r["success"])
        summary = {
            "total": len(vehicle_ids),
            "success": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }
        logger.info(
            f"Batch market analysis complete: {summary['success']}/{summary['total']} succeeded"
        )
        return summary

    async def overview(self) -> dict:
        """Latest snapshot and metrics for every available vehicle, plus a summary."""
        async with self.session_factory() as db:
            vehicles = (
                await db.execute(
                    select(OwnedVehicle)
                    .where(OwnedVehicle.status == "available")
                    .order_by(OwnedVehicle.id.desc())
                )
            ).scalars().all()

            latest: dict[int, tuple] = {}
            if vehicles:
                rows = await db.execute(
                    select(
                        MarketSnapshot.vehicle_id,
                        MarketSnapshot.snapshot_date,
                        MarketSnapshot.median_price,
                        MarketSnapshot.total_listings,
                        MarketMetric,
                    )
                    .outerjoin(MarketMetric, MarketMetric.snapshot_id == MarketSnapshot.id)
                    .where(MarketSnapshot.vehicle_id.in_([v.id for v in vehicles]))
                    .order_by(MarketSnapshot.snapshot_date.desc(), MarketSnapshot.id.desc())
                )
                for row in rows.all():
                    latest.setdefault(row.vehicle_id, row)

        items = []
        for vehicle in vehicles:
            row = latest.get(vehicle.id)
            metric = row.MarketMetric if row else None
            items.append(
                {
                    "id": vehicle.id,
                    "year": vehicle.year,
                    "make": vehicle.make,
                    "model": vehicle.model,
                    "trim": vehicle.trim,
                    "vin": vehicle.vin,
                    "our_price": _float(vehicle.price),
                    "median_market_price": _float(row.median_price) if row else None,
                    "price_delta": _float(metric.price_delta) if metric else None,
                    "price_delta_percent": metric.price_delta_percent if metric else None,
                    "position": metric.competitive_position if metric else None,
                    "percentile_rank": metric.percentile_rank if metric else None,
                    "listings_found": row.total_listings if row else 0,
                    "last_analyzed": row.snapshot_date if row else None,
                    "days_in_market": (metric.days_in_market or 0) if metric else 0,
                }
            )

        analyzed = [item for item in items if item["last_analyzed"]]
        ranks = [item["percentile_rank"] for item in items if item["percentile_rank"] is not None]
        return {
            "vehicles": items,
            "summary": {
                "total_vehicles": len(items),
                "analyzed_vehicles": len(analyzed),
                "competitive": sum(1 for i in items if i["position"] == "competitive"),
                "above_market": sum(1 for i in items if i["position"] == "above_market"),
                "below_market": sum(1 for i in items if i["position"] == "below_market"),
                "average_position": round(sum(ranks) / len(ranks), 2) if ranks else None,
                "last_updated": max((i["last_analyzed"] for i in analyzed), default=None),
            },
        }

    async def vehicle_detail(self, vehicle_id: int) -> dict:
        """Vehicle, latest snapshot/metric, 30-day trend, platforms and recent alerts."""
        async with self.session_factory() as db:
            vehicle = await db.get(OwnedVehicle, vehicle_id)
            if vehicle is None:
                raise NotFoundError(f"Vehicle {vehicle_id} not found")

            snapshot = (
                await db.execute(
                    select(MarketSnapshot)
                    .where(MarketSnapshot.vehicle_id == vehicle_id)
                    .order_by(MarketSnapshot.snapshot_date.desc(), MarketSnapshot.id.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            metric = None
            if snapshot is not None:
                metric = (
                    await db.execute(select(MarketMetric).where(MarketMetric.snapshot_id == snapshot.id))
                ).scalar_one_or_none()

            platforms = []
            if vehicle.vin:
                platforms = list(
                    (
                        await db.execute(
                            select(MarketPlatformTracking)
                            .where(MarketPlatformTracking.vin == vehicle.vin.upper())
                            .order_by(MarketPlatformTracking.last_seen.desc())
                        )
                    ).scalars().all()
                )

            alerts = list(
                (
                    await db.execute(
                        select(MarketAlert)
                        .where(MarketAlert.vehicle_id == vehicle_id)
                        .order_by(MarketAlert.created_at.desc(), MarketAlert.id.desc())
                        .limit(10)
                    )
                ).scalars().all()
            )

            return {
                "vehicle": vehicle,
                "snapshot": snapshot,
                "metric": metric,
                "price_history": await get_trend_history(db, vehicle_id, days=30),
                "platforms": platforms,
                "alerts": alerts,
            }

    async def _track_platforms(self, vehicle_id: int, sightings: list):
        """Best effort; a failure here never fails the analysis."""
        async with self.session_factory() as db:
            try:
                await save_platform_tracking(db, sightings)
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to save platform tracking for vehicle {vehicle_id}: {e}")

    @staticmethod
    async def _own_inventory_vins(db: AsyncSession) -> list[str]:
        result = await db.execute(select(OwnedVehicle.vin).where(OwnedVehicle.vin.is_not(None)))
        return [vin for vin in result.scalars().all() if vin]


market_analysis_service = MarketAnalysisService()
