"""Tests for competitor inventory reconciliation."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from market_intel.db.models import Competitor, CompetitorInventory, CompetitorPriceHistory
from market_intel.errors import ScrapeValidationError
from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.reconciler import (
    InventoryReconciler,
    calculate_completeness,
    ensure_valid,
    validate_scraped_data,
)

DAY_ONE = datetime(2026, 3, 1, 6, 0)

CIVIC = dict(vin="2HGFC2F59KH500001", stock_number="A1", year=2019, make="Honda", model="Civic")
ALTIMA = dict(stock_number="B2", year=2018, make="Nissan", model="Altima")


@pytest.fixture
async def competitor(db_session):
    competitor = Competitor(name="Main Street Motors", inventory_url="https://mainstreet.example.com")
    db_session.add(competitor)
    await db_session.commit()
    return competitor


async def inventory(db_session, competitor_id):
    return (
        await db_session.execute(
            select(CompetitorInventory)
            .where(CompetitorInventory.competitor_id == competitor_id)
            .order_by(CompetitorInventory.id)
        )
    ).scalars().all()


@pytest.mark.asyncio
async def test_first_pass_adds_everything(db_session, competitor):
    scraped = [ScrapedVehicle(**CIVIC, price=18995, mileage=45000), ScrapedVehicle(**ALTIMA, price=14000)]

    result = await InventoryReconciler(db_session).reconcile(competitor.id, scraped, now=DAY_ONE)

    assert (result.added, result.updated, result.sold, result.errors) == (2, 0, 0, 0)
    rows = await inventory(db_session, competitor.id)
    assert [r.status for r in rows] == ["active", "active"]
    assert float(rows[0].initial_price) == 18995
    assert rows[1].has_vin is False
    assert rows[1].data_warnings == ["Mileage missing"]


@pytest.mark.asyncio
async def test_repeat_pass_is_idempotent(db_session, competitor):
    scraped = [ScrapedVehicle(**CIVIC, price=18995), ScrapedVehicle(**ALTIMA, price=14000)]
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(competitor.id, scraped, now=DAY_ONE)

    result = await reconciler.reconcile(competitor.id, scraped, now=DAY_ONE + timedelta(days=1))

    assert (result.added, result.updated, result.sold) == (0, 2, 0)
    assert len(await inventory(db_session, competitor.id)) == 2
    history = (await db_session.execute(select(CompetitorPriceHistory))).scalars().all()
    assert history == []


@pytest.mark.asyncio
async def test_missing_vehicle_sold_then_reactivated(db_session, competitor):
    civic = ScrapedVehicle(**CIVIC, price=18995)
    altima = ScrapedVehicle(**ALTIMA, price=14000)
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(competitor.id, [civic, altima], now=DAY_ONE)

    sold_pass = await reconciler.reconcile(competitor.id, [civic], now=DAY_ONE + timedelta(days=5))

    assert sold_pass.sold == 1
    altima_row = (await inventory(db_session, competitor.id))[1]
    assert altima_row.status == "sold"
    assert altima_row.days_on_market == 5
    assert altima_row.sold_at == DAY_ONE + timedelta(days=5)

    back = await reconciler.reconcile(competitor.id, [civic, altima], now=DAY_ONE + timedelta(days=6))

    assert (back.added, back.updated, back.sold) == (0, 2, 0)
    rows = await inventory(db_session, competitor.id)
    assert len(rows) == 2
    assert rows[1].status == "active"
    assert rows[1].sold_at is None
    assert rows[1].days_on_market is None


@pytest.mark.asyncio
async def test_price_change_recorded(db_session, competitor):
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(competitor.id, [ScrapedVehicle(**CIVIC, price=18995)], now=DAY_ONE)

    await reconciler.reconcile(
        competitor.id, [ScrapedVehicle(**CIVIC, price=17995)], now=DAY_ONE + timedelta(days=2)
    )

    row = (await inventory(db_session, competitor.id))[0]
    assert float(row.current_price) == 17995
    assert float(row.initial_price) == 18995
    history = (await db_session.execute(select(CompetitorPriceHistory))).scalars().all()
    assert [float(h.price) for h in history] == [17995]


@pytest.mark.asyncio
async def test_missing_price_keeps_stored_price(db_session, competitor):
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(competitor.id, [ScrapedVehicle(**CIVIC, price=18995)], now=DAY_ONE)

    await reconciler.reconcile(competitor.id, [ScrapedVehicle(**CIVIC)], now=DAY_ONE + timedelta(days=1))

    row = (await inventory(db_session, competitor.id))[0]
    assert float(row.current_price) == 18995


@pytest.mark.asyncio
async def test_duplicate_vin_in_one_pass(db_session, competitor):
    first = ScrapedVehicle(vin=CIVIC["vin"], stock_number="A1", price=18995)
    second = ScrapedVehicle(vin=CIVIC["vin"], stock_number="A1-DUP", price=18995)

    result = await InventoryReconciler(db_session).reconcile(competitor.id, [first, second], now=DAY_ONE)

    assert (result.added, result.updated) == (1, 1)
    rows = await inventory(db_session, competitor.id)
    assert len(rows) == 1
    assert rows[0].is_duplicate_vin is True
    assert "A1-DUP" in rows[0].duplicate_warning


@pytest.mark.asyncio
async def test_reused_stock_number_with_new_vin_is_new_vehicle(db_session, competitor):
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(
        competitor.id,
        [ScrapedVehicle(vin="VINAAAAAAAAAAAAA1", stock_number="S1", price=10000)],
        now=DAY_ONE,
    )

    result = await reconciler.reconcile(
        competitor.id,
        [ScrapedVehicle(vin="VINBBBBBBBBBBBBB2", stock_number="S1", price=20000)],
        now=DAY_ONE + timedelta(days=3),
    )

    assert (result.added, result.updated, result.sold) == (1, 0, 1)
    rows = await inventory(db_session, competitor.id)
    assert [(r.vin, r.status, float(r.current_price)) for r in rows] == [
        ("VINAAAAAAAAAAAAA1", "sold", 10000),
        ("VINBBBBBBBBBBBBB2", "active", 20000),
    ]
    history = (await db_session.execute(select(CompetitorPriceHistory))).scalars().all()
    assert [(h.inventory_id, float(h.price)) for h in history] == [(rows[0].id, 10000)]


@pytest.mark.asyncio
async def test_stock_number_match_without_vin_picks_up_vin(db_session, competitor):
    reconciler = InventoryReconciler(db_session)
    await reconciler.reconcile(competitor.id, [ScrapedVehicle(**ALTIMA, price=14000)], now=DAY_ONE)

    vin = "1N4AL3AP5JC100002"
    result = await reconciler.reconcile(
        competitor.id,
        [ScrapedVehicle(**ALTIMA, vin=vin, price=14000)],
        now=DAY_ONE + timedelta(days=1),
    )

    rows = await inventory(db_session, competitor.id)
    assert len(rows) == 1
    assert (result.added, result.updated, result.sold) == (0, 1, 0)
    assert rows[0].vin == vin
    assert rows[0].has_vin is True
    assert rows[0].status == "active"


@pytest.mark.asyncio
async def test_vehicle_without_identity_counts_as_error(db_session, competitor):
    result = await InventoryReconciler(db_session).reconcile(
        competitor.id, [ScrapedVehicle(price=10000), ScrapedVehicle(**CIVIC, price=18995)], now=DAY_ONE
    )
    assert result.errors == 1
    assert result.added == 1


class TestValidation:
    def test_empty_scrape_is_invalid(self):
        report = validate_scraped_data([])
        assert report.is_valid is False
        assert report.errors == ["No vehicles found"]

    def test_no_prices_is_invalid(self):
        with pytest.raises(ScrapeValidationError) as exc_info:
            ensure_valid([ScrapedVehicle(stock_number="A1"), ScrapedVehicle(stock_number="A2")])
        assert "No vehicles have prices" in exc_info.value.errors

    def test_low_price_coverage_is_warning(self):
        vehicles = [ScrapedVehicle(stock_number=f"S{i}", price=1000 if i < 3 else None) for i in range(5)]
        report = ensure_valid(vehicles)
        assert report.is_valid
        assert report.warnings == ["Only 3/5 vehicles have prices"]

    def test_completeness(self):
        full = ScrapedVehicle(
            vin="2HGFC2F59KH500001",
            stock_number="A1",
            year=2019,
            make="Honda",
            model="Civic",
            trim="EX",
            mileage=1000,
            price=100,
        )
        assert calculate_completeness(full) == 100
        assert calculate_completeness(ScrapedVehicle(stock_number="A1", price=100)) == 25
