"""Dealersync website parser (``ds-`` class names)."""

import asyncio
import logging

from playwright.async_api import Page

from market_intel.config import settings
from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.parsers.base import (
    LOAD_MORE_SELECTOR,
    VehicleParser,
    first_text,
    parse_mileage,
    parse_price,
    parse_title,
)

logger = logging.getLogger(__name__)

ITEM_SELECTOR = ".ds-vehicle-list-item, .ds-car-griditem"
MAX_STAGNANT_ROUNDS = 3


class DealersyncParser(VehicleParser):
    """Parser for Dealersync hosted inventory pages."""

    platform = "dealersync"

    def parse(self, html: str) -> list[ScrapedVehicle]:
        vehicles = []
        for index, item in enumerate(self._tree(html).css(ITEM_SELECTOR)):
            try:
                title = first_text(item, ".ds-listview-vehicle-title, .ds-vehicle-title")
                # Options suffix: "2020 Toyota Camry SE w/ Navigation"
                year, make, model = parse_title(title.split("w/", 1)[0])

                trim = first_text(item, "h5, .ds-listview-subtitle")
                if not trim and "w/" in title:
                    trim = "w/" + title.split("w/", 1)[1]

                vehicle = ScrapedVehicle(
                    vin=item.attributes.get("data-vin"),
                    stock_number=item.attributes.get("data-stock-no"),
                    year=year,
                    make=make,
                    model=model,
                    trim=trim,
                    mileage=parse_mileage(
                        first_text(item, '.ds-listview-item-featured-content-tag, [class*="mileage"]')
                    ),
                    price=parse_price(first_text(item, ".ds-listview-price-value, .ds-price")),
                )
            except Exception as e:
                logger.warning(f"Error parsing Dealersync vehicle {index}: {e}")
                continue
            if vehicle.is_usable:
                vehicles.append(vehicle)

        logger.info(f"Dealersync parser found {len(vehicles)} vehicles")
        return vehicles

    async def load_all(self, page: Page) -> int:
        """Click Load More, else scroll, until the item count stops growing."""
        previous_count = 0
        stagnant = 0
        attempts = 0

        while attempts < settings.scrape_max_pages:
            current_count = len(await page.query_selector_all(ITEM_SELECTOR))
            if current_count == previous_count:
                stagnant += 1
                if stagnant >= MAX_STAGNANT_ROUNDS:
                    logger.info(f"No new vehicles after {stagnant} attempts, stopping at {current_count}")
                    break
            else:
                stagnant = 0
                previous_count = current_count

            load_more = await page.query_selector(f"{LOAD_MORE_SELECTOR}, .ds-load-more, .load-more-btn")
            if load_more:
                await load_more.click()
                await asyncio.sleep(3)
                attempts += 1
                continue

            # Infinite scroll
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await asyncio.sleep(2)
            attempts += 1

        if attempts >= settings.scrape_max_pages:
            logger.warning(f"Reached load limit ({settings.scrape_max_pages}) for Dealersync page")

        return previous_count
