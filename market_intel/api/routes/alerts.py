"""Market alert routes."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.api.deps import get_database
from market_intel.detect.engine import dismiss_alert, dismiss_alerts, list_alerts

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class AlertResponse(BaseModel):
    id: int
    vehicle_id: int
    snapshot_id: int | None
    alert_type: str
    severity: str
    title: str
    message: str
    alert_data: dict | None
    dismissed: bool
    dismissed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class BulkDismissRequest(BaseModel):
    alert_ids: List[int]


@router.get("", response_model=List[AlertResponse])
async def get_alerts(
    severity: str | None = None,
    vehicle_id: int | None = None,
    include_dismissed: bool = False,
    limit: int = 50,
    db: AsyncSession = Depends(get_database),
):
    """List recent alerts."""
    return await list_alerts(
        db,
        severity=severity,
        vehicle_id=vehicle_id,
        include_dismissed=include_dismissed,
        limit=limit,
    )


@router.post("/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_one(alert_id: int, db: AsyncSession = Depends(get_database)):
    return await dismiss_alert(db, alert_id)


@router.post("/dismiss")
async def dismiss_many(request: BulkDismissRequest, db: AsyncSession = Depends(get_database)):
    """Dismiss several alerts at once."""
    dismissed = await dismiss_alerts(db, request.alert_ids)
    return {"dismissed": dismissed}
