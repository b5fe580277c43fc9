"""Competitor inventory page parser base class and shared field helpers."""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from playwright.async_api import Page
from selectolax.parser import HTMLParser, Node

from market_intel.ingest.base import ScrapedVehicle

logger = logging.getLogger(__name__)

# 17 chars, no I/O/Q
VIN_PATTERN = re.compile(r"\b([A-HJ-NPR-Z0-9]{17})\b")
STOCK_PATTERN = re.compile(r"(?:Stock|Stk)[\s#:]*([A-Z0-9-]+)", re.IGNORECASE)
# Hyphenated makes (MERCEDES-BENZ) are one token
TITLE_PATTERN = re.compile(r"(\d{4})\s+([A-Za-z-]+)\s+([A-Za-z0-9\s-]+)")
MILEAGE_PATTERN = re.compile(r"(\d{1,3}(?:,\d{3})*)\s*(?:mi|miles)\b", re.IGNORECASE)
DOLLAR_PATTERN = re.compile(r"\$(\d{1,3}(?:,\d{3})+)")

LOAD_MORE_SELECTOR = (
    'button.load-more, a.load-more, '
    'button:has-text("Load More"), a:has-text("Load More")'
)


def parse_price(text: Optional[str]) -> Optional[float]:
    """Parse '$18,995' style text into a float. Returns None for empty or unparseable text."""
    if not text:
        return None
    cleaned = re.sub(r"[^\d.]", "", text)
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if value > 0 else None


def parse_mileage(text: Optional[str]) -> Optional[int]:
    """Parse '45,210 mi' style text into an int."""
    if not text:
        return None
    match = re.search(r"\d[\d,]*", text)
    if not match:
        return None
    try:
        return int(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_title(title: Optional[str]) -> tuple[Optional[int], Optional[str], Optional[str]]:
    """Split '2019 Honda Civic EX' into (2019, 'Honda', 'Civic EX')."""
    if not title:
        return None, None, None
    match = TITLE_PATTERN.search(title)
    if not match:
        return None, None, None
    return int(match.group(1)), match.group(2), match.group(3).strip()


def find_vin(text: str) -> Optional[str]:
    match = VIN_PATTERN.search(text or "")
    return match.group(1) if match else None


def find_stock_number(text: str) -> Optional[str]:
    match = STOCK_PATTERN.search(text or "")
    return match.group(1) if match else None


def node_text(node: Optional[Node]) -> str:
    """Stripped text of a node, '' for None."""
    if node is None:
        return ""
    return node.text(separator=" ", strip=True)


def first_text(root: Node, selector: str) -> str:
    return node_text(root.css_first(selector))


def first_attr(root: Node, selector: str, attr: str) -> Optional[str]:
    node = root.css_first(selector)
    if node is None:
        return None
    return node.attributes.get(attr)


def class_tokens(node: Node) -> list[str]:
    return (node.attributes.get("class") or "").split()


def closest(node: Node, predicate: Callable[[Node], bool]) -> Optional[Node]:
    """Walk up from node (inclusive) to the first ancestor matching predicate."""
    current = node
    while current is not None and current.tag not in ("html", "-undef"):
        if predicate(current):
            return current
        current = current.parent
    return None


def dedupe_by_identity(vehicles: list[ScrapedVehicle]) -> list[ScrapedVehicle]:
    """Keep the first vehicle seen per VIN/stock number."""
    seen: set[str] = set()
    unique = []
    for vehicle in vehicles:
        key = vehicle.identity
        if key and key not in seen:
            seen.add(key)
            unique.append(vehicle)
    if len(unique) < len(vehicles):
        logger.warning(f"Removed {len(vehicles) - len(unique)} duplicate vehicles")
    return unique


class VehicleParser:
    """Base parser for a competitor website platform.

    Subclasses implement ``parse`` and may override ``load_all`` to exhaust
    pagination or "Load More" controls in a headless page before the final
    parse. Paginated platforms override ``collect`` so each page is parsed
    before navigating away.
    """

    platform: str = "custom"

    def parse(self, html: str) -> list[ScrapedVehicle]:
        """Extract usable vehicles from raw HTML."""
        raise NotImplementedError

    async def load_all(self, page: Page) -> int:
        """Expand the page until every vehicle is rendered. Returns the element count seen."""
        return 0

    async def collect(self, page: Page) -> list[ScrapedVehicle]:
        """Load everything in a headless page and parse the final DOM."""
        count = await self.load_all(page)
        logger.debug(f"{self.platform} load_all finished with {count} elements")
        return self.parse(await page.content())

    def _tree(self, html: str) -> HTMLParser:
        return HTMLParser(html or "")
