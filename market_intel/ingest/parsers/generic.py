"""Fallback parser for dealer sites with no known template."""

import asyncio
import logging

from playwright.async_api import Page

from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.parsers.base import (
    LOAD_MORE_SELECTOR,
    VehicleParser,
    first_attr,
    first_text,
    parse_price,
    parse_title,
)

logger = logging.getLogger(__name__)

CANDIDATE_SELECTORS = [
    ".vehicle-item",
    ".car-item",
    ".listing-item",
    ".inventory-item",
    '[class*="vehicle"]',
    '[class*="inventory"]',
]
COUNT_SELECTOR = '[class*="vehicle"], [class*="listing"], [class*="car"], [class*="inventory"]'
MAX_LOAD_ATTEMPTS = 20


class GenericParser(VehicleParser):
    """Tries common card selectors in order; the first selector that yields vehicles wins."""

    platform = "custom"

    def parse(self, html: str) -> list[ScrapedVehicle]:
        tree = self._tree(html)
        vehicles: list[ScrapedVehicle] = []

        for selector in CANDIDATE_SELECTORS:
            items = tree.css(selector)
            if not items:
                continue
            logger.info(f"Generic parser found {len(items)} items with selector: {selector}")

            for item in items:
                try:
                    title = first_text(item, 'h1, h2, h3, h4, .title, [class*="title"]')
                    year, make, model = parse_title(title)
                    if year is None:
                        continue
                    vehicle = ScrapedVehicle(
                        vin=first_attr(item, "[data-vin]", "data-vin")
                        or first_text(item, '[class*="vin"]'),
                        stock_number=first_text(item, '[class*="stock"]'),
                        year=year,
                        make=make,
                        model=model,
                        price=parse_price(first_text(item, '[class*="price"]')),
                    )
                except Exception as e:
                    logger.warning(f"Error parsing generic vehicle: {e}")
                    continue
                if vehicle.is_usable:
                    vehicles.append(vehicle)

            if vehicles:
                break

        logger.info(f"Generic parser found {len(vehicles)} vehicles")
        return vehicles

    async def load_all(self, page: Page) -> int:
        previous_count = 0
        for _ in range(MAX_LOAD_ATTEMPTS):
            current_count = len(await page.query_selector_all(COUNT_SELECTOR))
            if current_count == previous_count:
                break
            previous_count = current_count

            load_more = await page.query_selector(LOAD_MORE_SELECTOR)
            if not load_more:
                break
            await load_more.click()
            await asyncio.sleep(2)
        return previous_count
