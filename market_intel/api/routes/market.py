"""Market research routes."""

from datetime import date, datetime
from typing import List

from fastapi import APIRouter, BackgroundTasks
from pydantic import BaseModel, field_validator

from market_intel.market.analysis import market_analysis_service
from market_intel.market.query_builder import YEAR_RANGE_PATTERN
from market_intel.worker.scheduler import job_scheduler

router = APIRouter(prefix="/api/market", tags=["market"])


class AnalyzeRequest(BaseModel):
    year_range: str | None = None

    @field_validator("year_range")
    @classmethod
    def check_year_range(cls, value: str | None) -> str | None:
        if value is None or value.strip().lower() in ("", "exact"):
            return value
        if not YEAR_RANGE_PATTERN.match(value.strip()):
            raise ValueError("year_range must be 'exact' or '±N'")
        return value


class VehicleResponse(BaseModel):
    id: int
    vin: str | None
    stock_number: str | None
    year: int
    make: str
    model: str
    trim: str | None
    mileage: int | None
    price: float | None
    status: str
    date_added: datetime

    class Config:
        from_attributes = True


class SnapshotResponse(BaseModel):
    id: int
    snapshot_date: datetime
    search_params: dict | None
    total_listings: int
    unique_listings: int
    median_price: float | None
    average_price: float | None
    min_price: float | None
    max_price: float | None
    listings_data: list | None

    class Config:
        from_attributes = True


class MetricResponse(BaseModel):
    our_price: float | None
    price_delta: float | None
    price_delta_percent: float | None
    percentile_rank: float | None
    cheaper_count: int
    more_expensive_count: int
    competitive_position: str | None
    days_in_market: int | None

    class Config:
        from_attributes = True


class TrendPointResponse(BaseModel):
    trend_date: date
    median_price: float | None
    min_price: float | None
    max_price: float | None
    change_1week: float | None
    change_2week: float | None
    change_1month: float | None

    class Config:
        from_attributes = True


class PlatformResponse(BaseModel):
    platform: str
    price: float | None
    dealer_name: str | None
    listing_url: str | None
    first_seen: datetime
    last_seen: datetime
    times_seen: int

    class Config:
        from_attributes = True


class VehicleAlertResponse(BaseModel):
    id: int
    alert_type: str
    severity: str
    title: str
    message: str
    dismissed: bool
    created_at: datetime

    class Config:
        from_attributes = True


class VehicleDetailResponse(BaseModel):
    vehicle: VehicleResponse
    snapshot: SnapshotResponse | None
    metric: MetricResponse | None
    price_history: List[TrendPointResponse]
    platforms: List[PlatformResponse]
    alerts: List[VehicleAlertResponse]


@router.get("/overview")
async def market_overview():
    """Latest market position for every available vehicle."""
    return await market_analysis_service.overview()


@router.get("/vehicles/{vehicle_id}", response_model=VehicleDetailResponse)
async def vehicle_detail(vehicle_id: int):
    return await market_analysis_service.vehicle_detail(vehicle_id)


@router.post("/vehicles/{vehicle_id}/analyze")
async def analyze_vehicle(vehicle_id: int, request: AnalyzeRequest | None = None):
    """Run a manual analysis for one vehicle and return its result.

    Manual runs never auto-expand the mileage bracket.
    """
    year_range = request.year_range if request else None
    return await market_analysis_service.analyze_vehicle(
        vehicle_id, manual=True, year_range=year_range
    )


@router.post("/analyze-all", status_code=202)
async def analyze_all(background_tasks: BackgroundTasks):
    """Start the market research job now, in the background."""
    background_tasks.add_task(job_scheduler.run_now, "market_research", "manual")
    return {"status": "started", "message": "Batch market analysis started"}
