"""Daily market median history and cumulative change windows."""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.db.models import MarketPriceTrend

logger = logging.getLogger(__name__)

CHANGE_WINDOWS = {"change_1week": 7, "change_2week": 14, "change_1month": 30}


def _money(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(round(float(value), 2)))


def calculate_cumulative_changes(
    history: dict[date, float], current_median: float, today: date
) -> dict[str, Optional[float]]:
    """Current median minus the median on exactly N days ago.

    No interpolation: a missing day gives None for that window.
    """
    changes: dict[str, Optional[float]] = {}
    for name, days in CHANGE_WINDOWS.items():
        previous = history.get(today - timedelta(days=days))
        if previous is None or current_median is None:
            changes[name] = None
        else:
            changes[name] = round(float(current_median) - float(previous), 2)
    return changes


async def update_price_trend(
    db: AsyncSession,
    vehicle_id: int,
    median_price: float,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    today: Optional[date] = None,
) -> MarketPriceTrend:
    """Upsert the (vehicle, today) trend row.

    A new day's row starts with both alert flags cleared. Re-running on the
    same day refreshes prices and changes but keeps the flags, so an alert
    that already fired today does not fire again.
    """
    today = today or date.today()
    since = today - timedelta(days=max(CHANGE_WINDOWS.values()))

    rows = (
        await db.execute(
            select(MarketPriceTrend).where(
                MarketPriceTrend.vehicle_id == vehicle_id,
                MarketPriceTrend.trend_date >= since,
            )
        )
    ).scalars().all()
    history = {
        row.trend_date: float(row.median_price)
        for row in rows
        if row.median_price is not None and row.trend_date != today
    }
    changes = calculate_cumulative_changes(history, median_price, today)

    trend = next((row for row in rows if row.trend_date == today), None)
    if trend is None:
        trend = MarketPriceTrend(
            vehicle_id=vehicle_id,
            trend_date=today,
            alert_sent_1week=False,
            alert_sent_2week=False,
        )
        db.add(trend)

    trend.median_price = _money(median_price)
    trend.min_price = _money(min_price)
    trend.max_price = _money(max_price)
    for name, value in changes.items():
        setattr(trend, name, _money(value))

    await db.flush()
    logger.info(f"Price trend updated for vehicle {vehicle_id}: median={median_price} changes={changes}")
    return trend


async def get_latest_trend(db: AsyncSession, vehicle_id: int) -> Optional[MarketPriceTrend]:
    return (
        await db.execute(
            select(MarketPriceTrend)
            .where(MarketPriceTrend.vehicle_id == vehicle_id)
            .order_by(MarketPriceTrend.trend_date.desc())
            .limit(1)
        )
    ).scalar_one_or_none()


async def get_trend_history(db: AsyncSession, vehicle_id: int, days: int = 30) -> list[MarketPriceTrend]:
    since = date.today() - timedelta(days=days)
    return list(
        (
            await db.execute(
                select(MarketPriceTrend)
                .where(MarketPriceTrend.vehicle_id == vehicle_id, MarketPriceTrend.trend_date >= since)
                .order_by(MarketPriceTrend.trend_date.asc())
            )
        ).scalars().all()
    )
