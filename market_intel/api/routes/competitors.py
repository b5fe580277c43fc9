"""Competitor management and scrape trigger routes."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.api.deps import get_database
from market_intel.db.models import Competitor, CompetitorInventory
from market_intel.ingest.competitor_scraper import scrape_queue
from market_intel.ingest.parsers import PLATFORMS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/competitors", tags=["competitors"])


class CompetitorCreate(BaseModel):
    name: str
    inventory_url: str
    website_url: str | None = None
    platform_type: str | None = None
    use_headless: bool = False
    active: bool = True


class CompetitorUpdate(BaseModel):
    name: str | None = None
    inventory_url: str | None = None
    website_url: str | None = None
    platform_type: str | None = None
    use_headless: bool | None = None
    active: bool | None = None


class CompetitorResponse(BaseModel):
    id: int
    name: str
    inventory_url: str
    website_url: str | None
    platform_type: str | None
    use_headless: bool
    active: bool
    last_scraped_at: datetime | None
    last_successful_scrape_at: datetime | None
    scrape_error: str | None
    scrape_error_type: str | None
    active_vehicles: int = 0

    class Config:
        from_attributes = True


class CompetitorVehicleResponse(BaseModel):
    id: int
    vin: str | None
    stock_number: str | None
    year: int | None
    make: str | None
    model: str | None
    trim: str | None
    mileage: int | None
    exterior_color: str | None
    current_price: float | None
    initial_price: float | None
    status: str
    first_seen_at: datetime
    last_seen_at: datetime
    sold_at: datetime | None
    days_on_market: int | None
    completeness: int
    is_duplicate_vin: bool
    data_warnings: list | None

    class Config:
        from_attributes = True


class ScrapeAck(BaseModel):
    status: str
    competitor_id: int
    queue_length: int


def _validate_platform(platform_type: str | None):
    if platform_type is not None and platform_type not in PLATFORMS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown platform_type '{platform_type}'. Expected one of: {', '.join(PLATFORMS)}",
        )


async def _get_competitor(db: AsyncSession, competitor_id: int) -> Competitor:
    competitor = await db.get(Competitor, competitor_id)
    if not competitor:
        raise HTTPException(status_code=404, detail="Competitor not found")
    return competitor


@router.get("", response_model=List[CompetitorResponse])
async def list_competitors(db: AsyncSession = Depends(get_database)):
    """List competitors with their active inventory counts."""
    counts = dict(
        (
            await db.execute(
                select(CompetitorInventory.competitor_id, func.count(CompetitorInventory.id))
                .where(CompetitorInventory.status == "active")
                .group_by(CompetitorInventory.competitor_id)
            )
        ).all()
    )
    competitors = (await db.execute(select(Competitor).order_by(Competitor.name))).scalars().all()

    results = []
    for competitor in competitors:
        response = CompetitorResponse.model_validate(competitor)
        response.active_vehicles = counts.get(competitor.id, 0)
        results.append(response)
    return results


@router.post("", response_model=CompetitorResponse, status_code=201)
async def create_competitor(data: CompetitorCreate, db: AsyncSession = Depends(get_database)):
    """Create a competitor."""
    _validate_platform(data.platform_type)
    competitor = Competitor(**data.model_dump())
    db.add(competitor)
    await db.commit()
    await db.refresh(competitor)
    return competitor


@router.get("/{competitor_id}", response_model=CompetitorResponse)
async def get_competitor(competitor_id: int, db: AsyncSession = Depends(get_database)):
    competitor = await _get_competitor(db, competitor_id)
    response = CompetitorResponse.model_validate(competitor)
    response.active_vehicles = (
        await db.execute(
            select(func.count(CompetitorInventory.id)).where(
                CompetitorInventory.competitor_id == competitor_id,
                CompetitorInventory.status == "active",
            )
        )
    ).scalar() or 0
    return response


@router.patch("/{competitor_id}", response_model=CompetitorResponse)
async def update_competitor(
    competitor_id: int,
    data: CompetitorUpdate,
    db: AsyncSession = Depends(get_database),
):
    """Update a competitor."""
    competitor = await _get_competitor(db, competitor_id)
    changes = data.model_dump(exclude_unset=True)
    _validate_platform(changes.get("platform_type"))
    for key, value in changes.items():
        setattr(competitor, key, value)

    await db.commit()
    await db.refresh(competitor)
    return competitor


@router.delete("/{competitor_id}", status_code=204)
async def delete_competitor(competitor_id: int, db: AsyncSession = Depends(get_database)):
    """Delete a competitor and its tracked inventory."""
    competitor = await _get_competitor(db, competitor_id)
    await db.delete(competitor)
    await db.commit()
    return None


def _log_scrape_outcome(competitor_id: int):
    def callback(future: asyncio.Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"Queued scrape for competitor {competitor_id} failed: {error}")

    return callback


@router.post("/{competitor_id}/scrape", response_model=ScrapeAck, status_code=202)
async def trigger_scrape(competitor_id: int, db: AsyncSession = Depends(get_database)):
    """Queue a scrape. Returns immediately; check the competitor row for the outcome."""
    await _get_competitor(db, competitor_id)

    if not scrape_queue.memory_ok():
        raise HTTPException(
            status_code=503,
            detail=f"Memory usage above {scrape_queue.memory_limit_mb}MB, try again later",
        )

    future = scrape_queue.enqueue(competitor_id)
    future.add_done_callback(_log_scrape_outcome(competitor_id))
    return ScrapeAck(status="queued", competitor_id=competitor_id, queue_length=scrape_queue.pending)


@router.get("/{competitor_id}/inventory", response_model=List[CompetitorVehicleResponse])
async def list_inventory(
    competitor_id: int,
    status: str = "active",
    limit: int = 500,
    db: AsyncSession = Depends(get_database),
):
    """Tracked vehicles for a competitor, newest sightings first."""
    await _get_competitor(db, competitor_id)
    query = select(CompetitorInventory).where(CompetitorInventory.competitor_id == competitor_id)
    if status != "all":
        query = query.where(CompetitorInventory.status == status)
    result = await db.execute(query.order_by(CompetitorInventory.last_seen_at.desc()).limit(limit))
    return result.scalars().all()


@router.get("/{competitor_id}/sales", response_model=List[CompetitorVehicleResponse])
async def list_sales(
    competitor_id: int,
    days: int = 30,
    db: AsyncSession = Depends(get_database),
):
    """Vehicles that disappeared from the competitor's lot in the last ``days``."""
    await _get_competitor(db, competitor_id)
    since = datetime.utcnow() - timedelta(days=days)
    result = await db.execute(
        select(CompetitorInventory)
        .where(
            CompetitorInventory.competitor_id == competitor_id,
            CompetitorInventory.status == "sold",
            CompetitorInventory.sold_at >= since,
        )
        .order_by(CompetitorInventory.sold_at.desc())
    )
    return result.scalars().all()


@router.get("/{competitor_id}/sales/summary")
async def sales_summary(
    competitor_id: int,
    days: int = 30,
    db: AsyncSession = Depends(get_database),
):
    """Sold count, average days on market and average final price."""
    await _get_competitor(db, competitor_id)
    since = datetime.utcnow() - timedelta(days=days)
    sold_count, avg_dom, avg_price = (
        await db.execute(
            select(
                func.count(CompetitorInventory.id),
                func.avg(CompetitorInventory.days_on_market),
                func.avg(CompetitorInventory.current_price),
            ).where(
                CompetitorInventory.competitor_id == competitor_id,
                CompetitorInventory.status == "sold",
                CompetitorInventory.sold_at >= since,
            )
        )
    ).one()

    return {
        "competitor_id": competitor_id,
        "days": days,
        "sold_count": sold_count or 0,
        "avg_days_on_market": round(float(avg_dom), 1) if avg_dom is not None else None,
        "avg_price": round(float(avg_price), 2) if avg_price is not None else None,
    }
