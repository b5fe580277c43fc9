"""DealerCenter website parser (``dws-`` class names)."""

import asyncio
import logging
import re
from typing import Optional
from urllib.parse import urljoin

from playwright.async_api import Page
from selectolax.parser import Node

from market_intel.config import settings
from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.parsers.base import (
    DOLLAR_PATTERN,
    LOAD_MORE_SELECTOR,
    MILEAGE_PATTERN,
    VehicleParser,
    class_tokens,
    closest,
    dedupe_by_identity,
    find_stock_number,
    find_vin,
    first_attr,
    first_text,
    node_text,
    parse_mileage,
    parse_price,
    parse_title,
)

logger = logging.getLogger(__name__)

LISTING_SELECTOR = ".dws-vehicle-listing-item-info.dws-listing-item"
DETAIL_LINK_SELECTOR = 'a[href*="/inventory/view/"], a[href*="/view/"], a[href*="/details/"]'
FIELD_VALUE = ".dws-vehicle-listing-item-field-value"
INVENTORY_URL_STOCK = re.compile(r"/inventory/[^/]+/[^/]+/([^/?]+)")


def _is_card(node: Node) -> bool:
    """Vehicle card wrapper that also holds the title and price."""
    tokens = class_tokens(node)
    return "list-group" in tokens or "col-md-4" in tokens or any("container" in t for t in tokens)


def _is_link_container(node: Node) -> bool:
    tokens = class_tokens(node)
    if "row" in tokens or "col" in tokens:
        return True
    return any(key in t for t in tokens for key in ("vehicle", "item", "card"))


class DealerCenterParser(VehicleParser):
    """Parser for DealerCenter hosted inventory pages."""

    platform = "dealercenter"

    def parse(self, html: str) -> list[ScrapedVehicle]:
        tree = self._tree(html)
        elements = tree.css(LISTING_SELECTOR)

        if not elements:
            # Fall back to whatever card wraps each detail-page link
            containers: dict[int, Node] = {}
            for link in tree.css(DETAIL_LINK_SELECTOR):
                container = closest(link.parent, _is_link_container) if link.parent else None
                if container is not None:
                    containers.setdefault(container.mem_id, container)
            elements = list(containers.values())
            logger.info(f"DealerCenter link fallback found {len(elements)} containers")

        vehicles = []
        for index, element in enumerate(elements):
            try:
                vehicle = self._parse_element(element)
            except Exception as e:
                logger.warning(f"Error parsing DealerCenter vehicle {index}: {e}")
                continue
            if vehicle.is_usable:
                vehicles.append(vehicle)
            elif index < 3:
                logger.debug(
                    f"Skipping vehicle {index}: identifier={vehicle.identity} price={vehicle.price}"
                )

        logger.info(f"DealerCenter parser found {len(vehicles)} vehicles")
        return vehicles

    def _parse_element(self, element: Node) -> ScrapedVehicle:
        all_text = node_text(element)

        vin = (
            first_attr(element, "[data-vin]", "data-vin")
            or first_text(element, f".dws-vehicle-field-vin {FIELD_VALUE}")
            or find_vin(all_text)
        )

        stock_number = (
            first_text(element, f".dws-vehicle-field-stock-number {FIELD_VALUE}")
            or first_text(element, f'[class*="stock"] {FIELD_VALUE}')
            or self._stock_from_url(element)
            or find_stock_number(all_text)
        )

        # Title and price live on the card, outside the info element
        card = closest(element, _is_card) or element
        title = first_text(card, ".dws-listing-title a") or first_text(
            card, '.dws-listing-title, .dws-vehicle-title, h2, h3, h4, .title, [class*="title"]'
        )
        year, make, model = parse_title(title)

        trim = first_text(element, f".dws-vehicle-field-trim {FIELD_VALUE}")

        mileage_text = first_text(element, f".dws-vehicle-field-mileage {FIELD_VALUE}")
        if not mileage_text:
            match = MILEAGE_PATTERN.search(all_text)
            mileage_text = match.group(1) if match else ""

        return ScrapedVehicle(
            vin=vin,
            stock_number=stock_number,
            year=year,
            make=make,
            model=model,
            trim=trim,
            mileage=parse_mileage(mileage_text),
            price=self._price(card),
            exterior_color=first_text(element, f".dws-vehicle-field-exterior-color {FIELD_VALUE}"),
        )

    def _stock_from_url(self, element: Node) -> Optional[str]:
        href = first_attr(element, 'a[href*="/inventory/"]', "href")
        if not href:
            return None
        match = INVENTORY_URL_STOCK.search(href)
        return match.group(1) if match else None

    def _price(self, card: Node) -> Optional[float]:
        price = parse_price(first_text(card, ".dws-vehicle-price-value"))
        if price is None:
            price = parse_price(first_attr(card, "[data-sales-price]", "data-sales-price"))
        if price is None:
            for node in card.css('.dws-listing-price, .price, [class*="price"]'):
                if any("icon" in t for t in class_tokens(node)):
                    continue
                price = parse_price(node_text(node))
                if price is not None:
                    break
        if price is None:
            match = DOLLAR_PATTERN.search(node_text(card))
            if match:
                price = parse_price(match.group(0))
        return price

    async def collect(self, page: Page) -> list[ScrapedVehicle]:
        """Parse every result page, following Load More or numbered pagination."""
        vehicles: list[ScrapedVehicle] = []
        page_number = 1
        attempts = 0

        while attempts < settings.scrape_max_pages:
            on_page = self.parse(await page.content())
            logger.info(f"Page {page_number}: parsed {len(on_page)} vehicles")
            vehicles.extend(on_page)

            load_more = await page.query_selector(
                f"{LOAD_MORE_SELECTOR}, .pagination a.next, .pagination-next"
            )
            if load_more:
                await load_more.click()
                await asyncio.sleep(3)
                attempts += 1
                page_number += 1
                continue

            next_link = await page.query_selector(
                'a.page-link-chevron[aria-label*="Next"], a[aria-label*="Next page"]'
            )
            if not next_link:
                next_link = await page.query_selector(f'a[href*="page_no={page_number + 1}"]')
            if not next_link:
                logger.info(f"No more pagination controls. Stopping at page {page_number}")
                break

            href = await next_link.get_attribute("href")
            if not href:
                break
            page_number += 1
            try:
                await page.goto(urljoin(page.url, href), wait_until="domcontentloaded", timeout=45000)
            except Exception as e:
                logger.warning(f"Failed to navigate to page {page_number}: {e}")
                break
            try:
                await page.wait_for_selector(".dws-vehicle-listing-item, .dws-listing-item", timeout=10000)
            except Exception:
                logger.warning(f"Timeout waiting for vehicles on page {page_number}")
            await asyncio.sleep(2)
            attempts += 1
        else:
            logger.warning(f"Reached pagination limit ({settings.scrape_max_pages})")

        unique = dedupe_by_identity(vehicles)
        logger.info(
            f"DealerCenter pagination complete: {len(unique)} vehicles across {page_number} page(s)"
        )
        return unique

    async def load_all(self, page: Page) -> int:
        return len(await page.query_selector_all(LISTING_SELECTOR))
