"""Reconcile a fresh competitor scrape against stored inventory."""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from market_intel.db.models import CompetitorInventory, CompetitorPriceHistory
from market_intel.errors import ScrapeValidationError
from market_intel.ingest.base import ScrapedVehicle

logger = logging.getLogger(__name__)

COMPLETENESS_FIELDS = (
    "vin",
    "stock_number",
    "year",
    "make",
    "model",
    "price",
    "mileage",
    "trim",
)


@dataclass
class ReconcileResult:
    """Counts from one reconciliation pass."""
    added: int = 0
    updated: int = 0
    sold: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ValidationReport:
    """Minimum-quality check on a scrape before it touches stored inventory."""
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    completeness: int = 0


def calculate_completeness(vehicle: ScrapedVehicle) -> int:
    """Percentage of checklist fields that are filled."""
    filled = sum(
        1 for name in COMPLETENESS_FIELDS
        if getattr(vehicle, name) not in (None, "")
    )
    return round(filled / len(COMPLETENESS_FIELDS) * 100)


def data_warnings(vehicle: ScrapedVehicle) -> list[str]:
    warnings = []
    if not vehicle.mileage:
        warnings.append("Mileage missing")
    if not vehicle.year:
        warnings.append("Year missing")
    if not vehicle.make:
        warnings.append("Make missing")
    return warnings


def validate_scraped_data(vehicles: list[ScrapedVehicle]) -> ValidationReport:
    """Check that a scrape is usable at all.

    Errors (scrape rejected): no vehicles, none with an identifier, none with a price.
    Warnings: under 50% with identifiers, under 80% with prices.
    """
    if not vehicles:
        return ValidationReport(is_valid=False, errors=["No vehicles found"])

    total = len(vehicles)
    with_identifier = sum(1 for v in vehicles if v.identity)
    with_price = sum(1 for v in vehicles if v.price)
    errors: list[str] = []
    warnings: list[str] = []

    if with_identifier == 0:
        errors.append("No vehicles have VIN or Stock Number")
    elif with_identifier < total * 0.5:
        warnings.append(f"Only {with_identifier}/{total} vehicles have identifiers")

    if with_price == 0:
        errors.append("No vehicles have prices")
    elif with_price < total * 0.8:
        warnings.append(f"Only {with_price}/{total} vehicles have prices")

    return ValidationReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        completeness=round(with_identifier / total * 100),
    )


def ensure_valid(vehicles: list[ScrapedVehicle]) -> ValidationReport:
    """Validate and raise ScrapeValidationError if the scrape is unusable."""
    report = validate_scraped_data(vehicles)
    if not report.is_valid:
        raise ScrapeValidationError(f"Validation failed: {', '.join(report.errors)}", report.errors)
    for warning in report.warnings:
        logger.warning(f"Scrape data warning: {warning}")
    return report


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


class InventoryReconciler:
    """Applies one scrape pass to a competitor's stored inventory.

    The pass is ordered: active records absent from the scrape are marked
    sold first (against the pre-pass snapshot), then each scraped vehicle is
    matched by identity regardless of status and updated or inserted. A
    vehicle is therefore never sold and re-added in the same pass, and a
    vehicle that reappears goes back to active on its existing record.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reconcile(
        self,
        competitor_id: int,
        vehicles: list[ScrapedVehicle],
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        now = now or datetime.utcnow()
        result = ReconcileResult()

        active = (
            await self.db.execute(
                select(CompetitorInventory).where(
                    CompetitorInventory.competitor_id == competitor_id,
                    CompetitorInventory.status == "active",
                )
            )
        ).scalars().all()

        scraped_ids = {v.identity for v in vehicles if v.identity}
        scraped_stock_numbers = {v.stock_number for v in vehicles if v.stock_number}

        for record in active:
            if record.identity in scraped_ids:
                continue
            if record.vin is None and record.stock_number in scraped_stock_numbers:
                # Matched below by stock number once the VIN shows up
                continue
            record.status = "sold"
            record.sold_at = now
            record.days_on_market = (now - record.first_seen_at).days
            record.last_updated_at = now
            if record.current_price is not None:
                self.db.add(
                    CompetitorPriceHistory(
                        inventory_id=record.id,
                        price=record.current_price,
                        mileage=record.mileage,
                        recorded_at=now,
                    )
                )
            result.sold += 1
        await self.db.flush()

        seen_vins: dict[str, CompetitorInventory] = {}
        for vehicle in vehicles:
            if not vehicle.identity:
                result.errors += 1
                continue
            try:
                async with self.db.begin_nested():
                    if vehicle.vin and vehicle.vin in seen_vins:
                        # Same VIN listed twice on one page
                        record = seen_vins[vehicle.vin]
                        record.is_duplicate_vin = True
                        record.duplicate_warning = (
                            f"VIN {vehicle.vin} listed more than once "
                            f"(stock numbers: {record.stock_number}, {vehicle.stock_number})"
                        )
                        result.updated += 1
                        continue

                    record = await self._find_existing(competitor_id, vehicle)
                    if record is not None:
                        self._apply_sighting(record, vehicle, now)
                        result.updated += 1
                    else:
                        record = self._new_record(competitor_id, vehicle, now)
                        self.db.add(record)
                        await self.db.flush()
                        result.added += 1

                    if vehicle.vin:
                        seen_vins[vehicle.vin] = record
            except Exception as e:
                logger.error(f"Error reconciling vehicle {vehicle.identity}: {e}", exc_info=True)
                result.errors += 1

        await self.db.commit()
        logger.info(
            f"Reconciled competitor {competitor_id}: added={result.added} "
            f"updated={result.updated} sold={result.sold} errors={result.errors}"
        )
        return result

    async def _find_existing(
        self, competitor_id: int, vehicle: ScrapedVehicle
    ) -> Optional[CompetitorInventory]:
        """Match on VIN first, then stock number, in any status."""
        conditions = []
        if vehicle.vin:
            conditions.append(CompetitorInventory.vin == vehicle.vin)
        if vehicle.stock_number:
            conditions.append(CompetitorInventory.stock_number == vehicle.stock_number)

        candidates = (
            await self.db.execute(
                select(CompetitorInventory)
                .where(CompetitorInventory.competitor_id == competitor_id, or_(*conditions))
                .order_by(CompetitorInventory.last_seen_at.desc())
            )
        ).scalars().all()
        if not candidates:
            return None
        if vehicle.vin:
            for candidate in candidates:
                if candidate.vin == vehicle.vin:
                    return candidate
            # A stock number carrying another VIN belongs to a different car
            for candidate in candidates:
                if candidate.vin is None:
                    return candidate
            return None
        return candidates[0]

    def _apply_sighting(self, record: CompetitorInventory, vehicle: ScrapedVehicle, now: datetime):
        new_price = _to_decimal(vehicle.price)
        price_changed = (
            record.current_price is not None
            and new_price is not None
            and Decimal(record.current_price) != new_price
        )

        if record.status != "active":
            logger.info(f"Vehicle {record.identity} reappeared, reactivating")
            record.sold_at = None
            record.days_on_market = None
        record.status = "active"
        if vehicle.vin and record.vin is None:
            record.vin = vehicle.vin
            record.has_vin = True
        if new_price is not None:
            record.current_price = new_price
        if vehicle.mileage is not None:
            record.mileage = vehicle.mileage
        record.last_seen_at = now
        record.last_updated_at = now

        if price_changed:
            self.db.add(
                CompetitorPriceHistory(
                    inventory_id=record.id,
                    price=new_price,
                    mileage=record.mileage,
                    recorded_at=now,
                )
            )

    def _new_record(self, competitor_id: int, vehicle: ScrapedVehicle, now: datetime) -> CompetitorInventory:
        warnings = data_warnings(vehicle)
        price = _to_decimal(vehicle.price)
        return CompetitorInventory(
            competitor_id=competitor_id,
            vin=vehicle.vin,
            stock_number=vehicle.stock_number,
            has_vin=bool(vehicle.vin),
            year=vehicle.year,
            make=vehicle.make,
            model=vehicle.model,
            trim=vehicle.trim,
            mileage=vehicle.mileage,
            exterior_color=vehicle.exterior_color,
            current_price=price,
            initial_price=price,
            status="active",
            completeness=calculate_completeness(vehicle),
            data_warnings=warnings or None,
            first_seen_at=now,
            last_seen_at=now,
            last_updated_at=now,
        )
