"""HTTP API tests against an in-memory database."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from market_intel.api.deps import get_database
from market_intel.db.models import CompetitorInventory, MarketAlert
from market_intel.main import app
from market_intel.worker.scheduler import job_scheduler


@pytest.fixture
async def client(session_factory):
    """Async client with the database dependency pointed at the test engine."""

    async def get_test_database():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_database] = get_test_database
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


async def create_competitor(client, **overrides) -> dict:
    payload = {"name": "Main Street Motors", "inventory_url": "https://mainstreet.example.com/inventory"}
    payload.update(overrides)
    response = await client.post("/api/competitors", json=payload)
    assert response.status_code == 201
    return response.json()


class TestCompetitors:
    @pytest.mark.asyncio
    async def test_crud(self, client):
        created = await create_competitor(client, platform_type="dealercenter")
        assert created["active"] is True
        assert created["use_headless"] is False

        listed = (await client.get("/api/competitors")).json()
        assert [c["name"] for c in listed] == ["Main Street Motors"]
        assert listed[0]["active_vehicles"] == 0

        patched = await client.patch(f"/api/competitors/{created['id']}", json={"use_headless": True})
        assert patched.json()["use_headless"] is True

        assert (await client.delete(f"/api/competitors/{created['id']}")).status_code == 204
        assert (await client.get(f"/api/competitors/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_platform_rejected(self, client):
        response = await client.post(
            "/api/competitors",
            json={"name": "X", "inventory_url": "https://x.example.com", "platform_type": "wordpress"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_scrape_is_queued(self, client):
        created = await create_competitor(client)
        queue = MagicMock()
        queue.memory_ok.return_value = True
        queue.pending = 1

        with patch("market_intel.api.routes.competitors.scrape_queue", queue):
            response = await client.post(f"/api/competitors/{created['id']}/scrape")

        assert response.status_code == 202
        assert response.json() == {"status": "queued", "competitor_id": created["id"], "queue_length": 1}
        queue.enqueue.assert_called_once_with(created["id"])

    @pytest.mark.asyncio
    async def test_scrape_refused_under_memory_pressure(self, client):
        created = await create_competitor(client)
        queue = MagicMock()
        queue.memory_ok.return_value = False
        queue.memory_limit_mb = 400

        with patch("market_intel.api.routes.competitors.scrape_queue", queue):
            response = await client.post(f"/api/competitors/{created['id']}/scrape")

        assert response.status_code == 503
        queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_inventory_and_sales(self, client, session_factory):
        created = await create_competitor(client)
        now = datetime.utcnow()
        async with session_factory() as db:
            db.add_all(
                [
                    CompetitorInventory(competitor_id=created["id"], stock_number="A1", current_price=15000),
                    CompetitorInventory(
                        competitor_id=created["id"],
                        stock_number="B2",
                        current_price=20000,
                        status="sold",
                        sold_at=now - timedelta(days=2),
                        days_on_market=10,
                    ),
                    CompetitorInventory(
                        competitor_id=created["id"],
                        stock_number="C3",
                        current_price=30000,
                        status="sold",
                        sold_at=now - timedelta(days=3),
                        days_on_market=21,
                    ),
                ]
            )
            await db.commit()

        active = (await client.get(f"/api/competitors/{created['id']}/inventory")).json()
        assert [v["stock_number"] for v in active] == ["A1"]
        everything = (await client.get(f"/api/competitors/{created['id']}/inventory?status=all")).json()
        assert len(everything) == 3

        sales = (await client.get(f"/api/competitors/{created['id']}/sales")).json()
        assert [v["stock_number"] for v in sales] == ["B2", "C3"]

        summary = (await client.get(f"/api/competitors/{created['id']}/sales/summary")).json()
        assert summary["sold_count"] == 2
        assert summary["avg_days_on_market"] == 15.5
        assert summary["avg_price"] == 25000


class TestAlerts:
    @pytest.mark.asyncio
    async def test_list_and_dismiss(self, client, session_factory):
        async with session_factory() as db:
            for severity in ("warning", "critical"):
                db.add(
                    MarketAlert(
                        vehicle_id=7,
                        alert_type="competitor_pricing",
                        severity=severity,
                        title="Competitor 20.0% Cheaper",
                        message="m",
                        alert_data={"competitor_price": 16000},
                    )
                )
            await db.commit()

        alerts = (await client.get("/api/alerts")).json()
        assert len(alerts) == 2
        critical = (await client.get("/api/alerts?severity=critical")).json()
        assert len(critical) == 1

        dismissed = await client.post(f"/api/alerts/{critical[0]['id']}/dismiss")
        assert dismissed.json()["dismissed"] is True

        bulk = await client.post("/api/alerts/dismiss", json={"alert_ids": [a["id"] for a in alerts]})
        assert bulk.json() == {"dismissed": 1}
        assert (await client.get("/api/alerts")).json() == []

    @pytest.mark.asyncio
    async def test_dismiss_missing(self, client):
        response = await client.post("/api/alerts/999/dismiss")
        assert response.status_code == 404


class TestMarket:
    @pytest.mark.asyncio
    async def test_manual_analyze(self, client):
        service = MagicMock()
        service.analyze_vehicle = AsyncMock(return_value={"success": True, "snapshot_id": 1})

        with patch("market_intel.api.routes.market.market_analysis_service", service):
            response = await client.post("/api/market/vehicles/5/analyze", json={"year_range": "±1"})

        assert response.status_code == 200
        service.analyze_vehicle.assert_awaited_once_with(5, manual=True, year_range="±1")

    @pytest.mark.asyncio
    async def test_bad_year_range(self, client):
        response = await client.post("/api/market/vehicles/5/analyze", json={"year_range": "recent"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_analyze_all_starts_job(self, client):
        with patch.object(job_scheduler, "run_now", AsyncMock()) as run_now:
            response = await client.post("/api/market/analyze-all")

        assert response.status_code == 202
        run_now.assert_awaited_once_with("market_research", "manual")


class TestJobs:
    @pytest.mark.asyncio
    async def test_status(self, client):
        status = (await client.get("/api/jobs/status")).json()
        assert "market_research" in status["jobs"]

    @pytest.mark.asyncio
    async def test_unknown_job(self, client):
        assert (await client.post("/api/jobs/nope/run")).status_code == 404

    @pytest.mark.asyncio
    async def test_manual_trigger(self, client):
        with patch.object(job_scheduler, "run_now", AsyncMock()) as run_now:
            response = await client.post("/api/jobs/market_cleanup/run")

        assert response.json() == {"status": "started", "job": "market_cleanup"}
        run_now.assert_awaited_once_with("market_cleanup", "manual")

    @pytest.mark.asyncio
    async def test_history(self, client):
        response = await client.get("/api/jobs/market_cleanup/history")
        assert response.status_code == 200
        assert response.json() == []


class TestVinEvaluation:
    @pytest.mark.asyncio
    async def test_missing_field_is_bad_request(self, client):
        response = await client.post(
            "/api/vin-evaluation/evaluate",
            json={"vin": "1HGCV1F34KA000001", "year": 2019, "make": "", "model": "Accord", "mileage": 1000},
        )
        assert response.status_code == 400
        assert "make" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_cache_miss(self, client):
        assert (await client.get("/api/vin-evaluation/cache/1HGCV1F34KA000001")).status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    body = (await client.get("/health")).json()
    assert body["status"] == "healthy"
    assert "scrape_queue" in body
