"""Tests for lightweight fetch and headless escalation."""

from unittest.mock import AsyncMock

import httpx
import pytest

from market_intel.errors import (
    BlockedError,
    ErrorKind,
    NoDataFoundError,
    ScrapeConnectionError,
    ScrapeError,
)
from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.content_analyzer import content_analyzer
from market_intel.ingest.fetch_strategies import CompetitorFetcher, FetchStrategy

URL = "https://dealer.example.com/inventory"

INVENTORY_HTML = """
<div class="ds-vehicle-list-item" data-vin="1FTEW1EP5KFA00001" data-stock-no="S100">
  <div class="ds-listview-vehicle-title">2020 Ford F-150 XLT</div>
  <div class="ds-listview-price-value">$31,000</div>
</div>
"""

EMPTY_APP_HTML = '<html><head><title>Inventory</title></head><body><div id="app"></div></body></html>'
CHALLENGE_HTML = "<html><head><title>Just a moment...</title></head><body>Checking your browser</body></html>"


def fetcher_for(handler) -> CompetitorFetcher:
    return CompetitorFetcher(transport=httpx.MockTransport(handler))


def headless_result():
    return [ScrapedVehicle(vin="1FTEW1EP5KFA00002", price=29000)], "dealersync"


@pytest.mark.asyncio
async def test_light_fetch_parses_page():
    fetcher = fetcher_for(lambda request: httpx.Response(200, text=INVENTORY_HTML))
    fetcher.fetch_headless = AsyncMock()

    outcome = await fetcher.fetch(URL)

    assert outcome.strategy == FetchStrategy.LIGHT
    assert outcome.platform == "dealersync"
    assert outcome.escalated is False
    assert [v.stock_number for v in outcome.vehicles] == ["S100"]
    fetcher.fetch_headless.assert_not_awaited()
    await fetcher.close()


@pytest.mark.asyncio
async def test_light_fetch_403_is_blocked():
    fetcher = fetcher_for(lambda request: httpx.Response(403, text="Forbidden"))

    with pytest.raises(BlockedError):
        await fetcher.fetch_light(URL)
    await fetcher.close()


@pytest.mark.asyncio
async def test_light_fetch_challenge_page_is_blocked():
    fetcher = fetcher_for(lambda request: httpx.Response(200, text=CHALLENGE_HTML))

    with pytest.raises(BlockedError) as exc_info:
        await fetcher.fetch_light(URL)
    assert "cloudflare" in exc_info.value.message
    await fetcher.close()


@pytest.mark.asyncio
async def test_light_fetch_empty_page_is_no_data():
    fetcher = fetcher_for(lambda request: httpx.Response(200, text=EMPTY_APP_HTML))

    with pytest.raises(NoDataFoundError):
        await fetcher.fetch_light(URL)
    await fetcher.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "html,status,kind",
    [
        ("Forbidden", 403, ErrorKind.BLOCKED),
        (EMPTY_APP_HTML, 200, ErrorKind.NO_DATA_FOUND),
    ],
)
async def test_escalates_to_headless_once(html, status, kind):
    fetcher = fetcher_for(lambda request: httpx.Response(status, text=html))
    fetcher.fetch_headless = AsyncMock(return_value=headless_result())
    on_escalate = AsyncMock()

    outcome = await fetcher.fetch(URL, on_escalate=on_escalate)

    assert outcome.strategy == FetchStrategy.HEADLESS
    assert outcome.escalated is True
    assert outcome.escalation_kind == kind
    on_escalate.assert_awaited_once()
    assert on_escalate.await_args.args[0].kind == kind
    fetcher.fetch_headless.assert_awaited_once_with(URL, None)
    await fetcher.close()


@pytest.mark.asyncio
async def test_escalation_persisted_before_headless_failure():
    fetcher = fetcher_for(lambda request: httpx.Response(403, text="Forbidden"))
    fetcher.fetch_headless = AsyncMock(side_effect=NoDataFoundError("still nothing"))
    on_escalate = AsyncMock()

    with pytest.raises(NoDataFoundError):
        await fetcher.fetch(URL, on_escalate=on_escalate)

    on_escalate.assert_awaited_once()
    await fetcher.close()


@pytest.mark.asyncio
async def test_connection_error_does_not_escalate():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = fetcher_for(handler)
    fetcher.fetch_headless = AsyncMock()
    on_escalate = AsyncMock()

    with pytest.raises(ScrapeConnectionError) as exc_info:
        await fetcher.fetch(URL, on_escalate=on_escalate)

    assert exc_info.value.kind == ErrorKind.CONNECTION_ERROR
    on_escalate.assert_not_awaited()
    fetcher.fetch_headless.assert_not_awaited()
    await fetcher.close()


@pytest.mark.asyncio
async def test_other_http_errors_do_not_escalate():
    fetcher = fetcher_for(lambda request: httpx.Response(500, text="oops"))
    fetcher.fetch_headless = AsyncMock()

    with pytest.raises(ScrapeError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.kind == ErrorKind.UNKNOWN_ERROR
    fetcher.fetch_headless.assert_not_awaited()
    await fetcher.close()


@pytest.mark.asyncio
async def test_headless_competitor_skips_light_fetch():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text=INVENTORY_HTML)

    fetcher = fetcher_for(handler)
    fetcher.fetch_headless = AsyncMock(return_value=headless_result())

    outcome = await fetcher.fetch(URL, platform_type="dealersync", use_headless=True)

    assert requests == []
    assert outcome.strategy == FetchStrategy.HEADLESS
    assert outcome.escalated is False
    fetcher.fetch_headless.assert_awaited_once_with(URL, "dealersync")
    await fetcher.close()


class TestContentAnalyzer:
    def test_contact_form_recaptcha_is_not_a_block(self):
        html = '<form><div class="g-recaptcha"></div></form><p>captcha protected</p>'
        assert content_analyzer.analyze(html).is_blocked is False

    def test_access_denied(self):
        analysis = content_analyzer.analyze("<title>Access Denied</title>")
        assert analysis.is_blocked is True
        assert analysis.block_type == "access_denied"
        assert analysis.page_title == "Access Denied"

    def test_empty(self):
        assert content_analyzer.analyze("").is_blocked is False
