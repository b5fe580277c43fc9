"""VIN evaluation routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.api.deps import get_database
from market_intel.market.evaluation import EvaluationRequest, VinEvaluationService

router = APIRouter(prefix="/api/vin-evaluation", tags=["vin-evaluation"])


class EvaluateRequest(BaseModel):
    vin: str
    year: int
    make: str
    model: str
    mileage: int
    trim: str | None = None
    force_refresh: bool = False


class CachedEvaluationResponse(BaseModel):
    id: int
    vin: str
    year: int
    make: str
    model: str
    trim: str | None
    mileage: int
    median_price: float | None
    average_price: float | None
    min_price: float | None
    max_price: float | None
    total_listings: int
    unique_listings: int
    sample_listings: list | None
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("/evaluate")
async def evaluate_vin(request: EvaluateRequest, db: AsyncSession = Depends(get_database)):
    """Market summary for a VIN, from cache when a fresh entry exists."""
    result = await VinEvaluationService(db).evaluate(EvaluationRequest(**request.model_dump()))
    return result.to_dict()


@router.get("/cache/{vin}", response_model=CachedEvaluationResponse)
async def get_cached_evaluation(vin: str, db: AsyncSession = Depends(get_database)):
    entry = await VinEvaluationService(db).get_cached(vin)
    if not entry:
        raise HTTPException(status_code=404, detail="No cached evaluation for this VIN")
    return entry
