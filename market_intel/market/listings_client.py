"""Client for the third-party used-vehicle listings search API."""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from market_intel.config import settings
from market_intel.errors import ListingsAPIError
from market_intel.market.query_builder import VehicleLike, build_search_params
from market_intel import metrics

logger = logging.getLogger(__name__)


@dataclass
class ListingsPage:
    """Raw listings returned for one search (all fetched pages combined)."""
    listings: list[dict]
    search_params: dict
    pagination: dict = field(default_factory=dict)
    pages_fetched: int = 0

    @property
    def total(self) -> int:
        return len(self.listings)


class MarketListingsClient:
    """Bearer-token client for the listings search endpoint.

    No filtering happens here: callers get every listing the API returned.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.listings_api_key
        self.api_url = (api_url or settings.listings_api_url).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.api_key:
            logger.warning("Listings API key not configured - market research is disabled")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=settings.listings_api_timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_listings(
        self,
        vehicle: VehicleLike,
        expansion: int = 0,
        year_range: Optional[str] = None,
        max_pages: Optional[int] = None,
    ) -> ListingsPage:
        """Search listings comparable to ``vehicle``.

        Args:
            vehicle: Anything with year, make, model and mileage
            expansion: Extra miles added to the mileage spread
            year_range: 'exact' or '±N'
            max_pages: Page cap (defaults to settings.market_max_pages)

        Returns:
            ListingsPage with the combined raw listings

        Raises:
            ListingsAPIError: Missing key, transport failure or non-2xx response
        """
        if not self.api_key:
            raise ListingsAPIError("Listings API key not configured")

        max_pages = max_pages or settings.market_max_pages
        params = build_search_params(vehicle, expansion=expansion, year_range=year_range)
        client = await self._get_client()

        listings: list[dict] = []
        pagination: dict = {}
        page = 1
        while page <= max_pages:
            params["page"] = page
            logger.info(
                f"Fetching listings for {vehicle.year} {vehicle.make} {vehicle.model} "
                f"(page {page}, mileage {params['retailListing.mileage']}, year {params['vehicle.year']})"
            )
            try:
                response = await client.get("/listings", params=params)
            except httpx.HTTPError as e:
                metrics.listings_api_requests_total.labels(status="error").inc()
                raise ListingsAPIError(f"Listings API request failed: {e}") from e

            if not response.is_success:
                metrics.listings_api_requests_total.labels(status=str(response.status_code)).inc()
                logger.error(f"Listings API error ({response.status_code}): {response.text[:500]}")
                raise ListingsAPIError(
                    f"Listings API error ({response.status_code})",
                    status_code=response.status_code,
                    body=response.text,
                )
            metrics.listings_api_requests_total.labels(status="success").inc()

            payload = response.json() or {}
            batch = payload.get("data") or []
            pagination = payload.get("pagination") or {}
            listings.extend(batch)

            if len(batch) < params["limit"] or not self._has_more(pagination, page):
                break
            page += 1

        logger.info(f"Listings API returned {len(listings)} listings over {page} page(s)")
        return ListingsPage(
            listings=listings,
            search_params={k: v for k, v in params.items() if k != "page"},
            pagination=pagination,
            pages_fetched=page,
        )

    @staticmethod
    def _has_more(pagination: dict, page: int) -> bool:
        if "hasNextPage" in pagination:
            return bool(pagination["hasNextPage"])
        total_pages = pagination.get("totalPages") or pagination.get("pages")
        if total_pages is not None:
            return page < int(total_pages)
        return True


listings_client = MarketListingsClient()
