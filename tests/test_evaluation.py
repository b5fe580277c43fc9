"""Tests for cached VIN market evaluation."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from market_intel.db.models import OwnedVehicle, VinEvaluationCache
from market_intel.errors import ListingsAPIError
from market_intel.market.evaluation import (
    EvaluationRequest,
    VinEvaluationService,
    extract_sample_listings,
)
from market_intel.market.listings_client import ListingsPage

VIN = "1HGCV1F34KA000001"


def listing(vin, price, city="Austin", state="TX"):
    return {
        "vehicle": {"vin": vin, "trim": "EX"},
        "retailListing": {"price": price, "miles": 41000, "city": city, "state": state, "vdp": f"https://www.cars.com/{vin}"},
    }


def mock_client(listings):
    client = MagicMock()
    client.fetch_listings = AsyncMock(
        return_value=ListingsPage(listings=listings, search_params={"vehicle.make": "Honda"})
    )
    return client


def request(**overrides) -> EvaluationRequest:
    fields = dict(vin=VIN.lower(), year=2019, make="Honda", model="Accord", mileage=40000)
    fields.update(overrides)
    return EvaluationRequest(**fields)


MARKET = [
    listing("VIN00000000000001", 21000),
    listing("VIN00000000000001", 20500),
    listing("VIN00000000000002", 19000),
    listing("VIN00000000000003", 23000),
]


@pytest.mark.asyncio
async def test_miss_then_hit(db_session):
    client = mock_client(MARKET)
    service = VinEvaluationService(db_session, client=client)

    first = await service.evaluate(request())
    second = await service.evaluate(request())

    assert first.from_cache is False
    assert first.vin == VIN
    assert first.total_listings == 4
    assert first.unique_listings == 3
    assert first.median_price == 20500
    assert second.from_cache is True
    assert second.median_price == 20500
    assert second.cached_at is not None
    client.fetch_listings.assert_awaited_once()


@pytest.mark.asyncio
async def test_stale_entry_is_a_miss(db_session):
    db_session.add(
        VinEvaluationCache(
            vin=VIN,
            year=2019,
            make="Honda",
            model="Accord",
            mileage=40000,
            median_price=1,
            created_at=datetime.utcnow() - timedelta(days=8),
        )
    )
    await db_session.commit()
    client = mock_client(MARKET)

    result = await VinEvaluationService(db_session, client=client).evaluate(request())

    assert result.from_cache is False
    client.fetch_listings.assert_awaited_once()


@pytest.mark.asyncio
async def test_cache_read_failure_fetches_fresh(db_session):
    client = mock_client(MARKET)
    service = VinEvaluationService(db_session, client=client)
    read_error = OperationalError("SELECT vin_evaluation_cache", {}, Exception("database is locked"))

    with patch.object(service, "get_cached", AsyncMock(side_effect=read_error)):
        result = await service.evaluate(request())

    assert result.from_cache is False
    assert result.median_price == 20500
    client.fetch_listings.assert_awaited_once()
    count = (await db_session.execute(select(func.count(VinEvaluationCache.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_force_refresh_replaces_cache(db_session):
    client = mock_client(MARKET)
    service = VinEvaluationService(db_session, client=client)
    await service.evaluate(request())

    result = await service.evaluate(request(force_refresh=True))

    assert result.from_cache is False
    assert client.fetch_listings.await_count == 2
    count = (await db_session.execute(select(func.count(VinEvaluationCache.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_own_inventory_excluded(db_session):
    db_session.add(OwnedVehicle(vin="VIN00000000000003", year=2019, make="Honda", model="Accord"))
    await db_session.commit()

    result = await VinEvaluationService(db_session, client=mock_client(MARKET)).evaluate(request())

    assert result.unique_listings == 2
    assert result.max_price == 20500


@pytest.mark.asyncio
async def test_api_failure_is_not_cached(db_session):
    client = MagicMock()
    client.fetch_listings = AsyncMock(side_effect=ListingsAPIError("down", status_code=503))

    with pytest.raises(ListingsAPIError):
        await VinEvaluationService(db_session, client=client).evaluate(request())

    assert (await db_session.execute(select(VinEvaluationCache))).scalars().all() == []


@pytest.mark.asyncio
async def test_missing_fields(db_session):
    with pytest.raises(ValueError) as exc_info:
        await VinEvaluationService(db_session, client=mock_client([])).evaluate(request(make="", mileage=0))
    assert "make" in str(exc_info.value)
    assert "mileage" in str(exc_info.value)


@pytest.mark.asyncio
async def test_purge_expired(db_session):
    now = datetime.utcnow()
    for age in (1, 8, 30):
        db_session.add(
            VinEvaluationCache(
                vin=VIN, year=2019, make="Honda", model="Accord", mileage=1, created_at=now - timedelta(days=age)
            )
        )
    await db_session.commit()

    assert await VinEvaluationService(db_session, client=mock_client([])).purge_expired() == 2


def test_sample_listings():
    samples = extract_sample_listings([listing("VIN00000000000001", 21000, state=None)] * 3, limit=2)

    assert len(samples) == 2
    assert samples[0] == {
        "vin_last4": "0001",
        "price": 21000,
        "mileage": 41000,
        "trim": "EX",
        "location": None,
        "url": "https://www.cars.com/VIN00000000000001",
    }
