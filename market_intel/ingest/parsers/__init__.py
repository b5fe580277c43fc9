"""Competitor platform parser registry."""

from __future__ import annotations

from selectolax.parser import HTMLParser

from market_intel.ingest.parsers.base import VehicleParser
from market_intel.ingest.parsers.dealercenter import DealerCenterParser
from market_intel.ingest.parsers.dealersync import DealersyncParser
from market_intel.ingest.parsers.generic import GenericParser


_PARSERS = {
    "dealercenter": DealerCenterParser(),
    "dealersync": DealersyncParser(),
    "custom": GenericParser(),
}

PLATFORMS = tuple(_PARSERS)

# (platform, class fingerprint, substring marker); first match wins
_FINGERPRINTS = [
    ("dealercenter", '[class*="dws-"]', "dealercenter"),
    ("dealersync", '[class*="ds-"]', "dealersync"),
]


def detect_platform(html: str) -> str:
    """Guess the site platform from class-name fingerprints and substring markers."""
    if not html:
        return "custom"
    tree = HTMLParser(html)
    lowered = html.lower()
    for platform, selector, marker in _FINGERPRINTS:
        if tree.css_first(selector) is not None or marker in lowered:
            return platform
    return "custom"


def get_parser(platform: str | None) -> VehicleParser:
    """Return parser instance for platform tag."""
    if not platform:
        return _PARSERS["custom"]
    return _PARSERS.get(platform.lower(), _PARSERS["custom"])


__all__ = [
    "PLATFORMS",
    "VehicleParser",
    "detect_platform",
    "get_parser",
]
