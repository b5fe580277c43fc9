"""Market alert detection engine."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.config import settings
from market_intel.db.models import MarketAlert, MarketPriceTrend, MarketSnapshot, OwnedVehicle
from market_intel.detect.rules import (
    AlertCandidate,
    AlertRule,
    check_competitor_pricing,
    check_inventory_change,
    check_median_change,
    check_price_vs_median,
)
from market_intel.errors import NotFoundError
from market_intel.market.statistics import MarketPosition, PriceStats
from market_intel.metrics import record_alert

logger = logging.getLogger(__name__)


@dataclass
class AlertContext:
    """Everything one analysis run produced for one vehicle."""

    vehicle: OwnedVehicle
    snapshot: MarketSnapshot
    stats: PriceStats
    position: MarketPosition
    listings: list[dict] = field(default_factory=list)
    trend: Optional[MarketPriceTrend] = None

    @property
    def vehicle_label(self) -> str:
        return f"{self.vehicle.year} {self.vehicle.make} {self.vehicle.model}"


class AlertDetectionEngine:
    """Evaluates alert rules after a market analysis and persists what fires."""

    def __init__(self, db: AsyncSession, disabled_rules: Optional[list[str]] = None):
        self.db = db
        if disabled_rules is None:
            disabled_rules = settings.alert_disabled_rules
        self.disabled_rules = set(disabled_rules)

    def _rules(self) -> list[tuple[AlertRule, Callable]]:
        return [
            (AlertRule.MEDIAN_CHANGE, self._median_change),
            (AlertRule.INVENTORY_CHANGE, self._inventory_change),
            (AlertRule.COMPETITOR_PRICING, self._competitor_pricing),
            (AlertRule.PRICE_VS_MEDIAN, self._price_vs_median),
        ]

    async def detect(self, context: AlertContext) -> list[MarketAlert]:
        """
        Run every enabled rule and persist the alerts that fire.

        A rule that raises is logged and skipped; the remaining rules still
        run.

        Args:
            context: Results of the analysis run

        Returns:
            Persisted MarketAlert rows
        """
        candidates: list[AlertCandidate] = []

        for rule, evaluate in self._rules():
            if rule.value in self.disabled_rules:
                continue
            try:
                candidates.extend(await evaluate(context))
            except Exception as e:
                logger.error(
                    f"Alert rule {rule.value} failed for vehicle {context.vehicle.id}: {e}",
                    exc_info=True,
                )

        alerts = []
        for candidate in candidates:
            alert = MarketAlert(
                vehicle_id=context.vehicle.id,
                snapshot_id=candidate.snapshot_id,
                alert_type=candidate.alert_type.value,
                severity=candidate.severity.value,
                title=candidate.title,
                message=candidate.message,
                alert_data=candidate.alert_data,
                dismissed=False,
            )
            self.db.add(alert)
            alerts.append(alert)
            record_alert(candidate.alert_type.value, candidate.severity.value)

        await self.db.commit()

        if alerts:
            logger.info(
                f"Created {len(alerts)} alerts for vehicle {context.vehicle.id}: "
                f"{', '.join(a.alert_type for a in alerts)}"
            )
        return alerts

    async def _median_change(self, context: AlertContext) -> list[AlertCandidate]:
        trend = context.trend
        if trend is None or trend.median_price is None:
            return []

        median = float(trend.median_price)
        fired = []
        for window in ("1week", "2week"):
            change = getattr(trend, f"change_{window}")
            flag = f"alert_sent_{window}"
            candidate = check_median_change(
                window,
                float(change) if change is not None else None,
                median,
                bool(getattr(trend, flag)),
            )
            if candidate:
                candidate.snapshot_id = context.snapshot.id
                setattr(trend, flag, True)
                fired.append(candidate)
        return fired

    async def _inventory_change(self, context: AlertContext) -> list[AlertCandidate]:
        previous = (
            await self.db.execute(
                select(MarketSnapshot.unique_listings)
                .where(
                    MarketSnapshot.vehicle_id == context.vehicle.id,
                    MarketSnapshot.id != context.snapshot.id,
                )
                .order_by(MarketSnapshot.snapshot_date.desc(), MarketSnapshot.id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        candidate = check_inventory_change(
            previous,
            context.snapshot.unique_listings,
            context.vehicle_label,
            snapshot_id=context.snapshot.id,
        )
        return [candidate] if candidate else []

    async def _competitor_pricing(self, context: AlertContext) -> list[AlertCandidate]:
        candidate = check_competitor_pricing(
            context.position.our_price, context.listings, snapshot_id=context.snapshot.id
        )
        return [candidate] if candidate else []

    async def _price_vs_median(self, context: AlertContext) -> list[AlertCandidate]:
        candidate = check_price_vs_median(
            context.position.our_price,
            context.stats.median,
            context.position.price_delta,
            context.position.price_delta_percent,
            context.vehicle_label,
            snapshot_id=context.snapshot.id,
        )
        return [candidate] if candidate else []


async def list_alerts(
    db: AsyncSession,
    severity: Optional[str] = None,
    vehicle_id: Optional[int] = None,
    include_dismissed: bool = False,
    limit: int = 50,
) -> list[MarketAlert]:
    """Newest alerts first."""
    query = select(MarketAlert)
    if not include_dismissed:
        query = query.where(MarketAlert.dismissed == False)  # noqa: E712
    if severity:
        query = query.where(MarketAlert.severity == severity)
    if vehicle_id is not None:
        query = query.where(MarketAlert.vehicle_id == vehicle_id)
    query = query.order_by(MarketAlert.created_at.desc(), MarketAlert.id.desc()).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def dismiss_alert(db: AsyncSession, alert_id: int) -> MarketAlert:
    alert = await db.get(MarketAlert, alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found")
    if not alert.dismissed:
        alert.dismissed = True
        alert.dismissed_at = datetime.utcnow()
        await db.commit()
    return alert


async def dismiss_alerts(db: AsyncSession, alert_ids: list[int]) -> int:
    """Dismiss several alerts at once. Returns how many changed."""
    if not alert_ids:
        return 0
    result = await db.execute(
        update(MarketAlert)
        .where(MarketAlert.id.in_(alert_ids), MarketAlert.dismissed == False)  # noqa: E712
        .values(dismissed=True, dismissed_at=datetime.utcnow())
    )
    await db.commit()
    logger.info(f"Dismissed {result.rowcount} alerts")
    return result.rowcount
