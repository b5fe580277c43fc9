"""Market price statistics and competitive position.

The median is the element at index ``n // 2`` of the ascending price list,
with no averaging on even counts. Alert thresholds are tuned against this
convention, so it must not be replaced with a textbook median.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, Optional

from market_intel.market.dedupe import listing_price

COMPETITIVE_BAND_PERCENT = 10.0


class CompetitivePosition(str, Enum):
    COMPETITIVE = "competitive"
    ABOVE_MARKET = "above_market"
    BELOW_MARKET = "below_market"


@dataclass
class PriceStats:
    count: int = 0
    median: Optional[float] = None
    average: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MarketPosition:
    """Our vehicle's price against the market set."""
    our_price: Optional[float]
    price_delta: Optional[float]
    price_delta_percent: Optional[float]
    percentile_rank: Optional[float]
    cheaper_count: int
    more_expensive_count: int
    competitive_position: Optional[str]

    def to_dict(self) -> dict:
        return asdict(self)


def market_prices(listings: Iterable[dict]) -> list[float]:
    """Positive listing prices, ascending."""
    prices = [listing_price(listing) for listing in listings]
    return sorted(p for p in prices if p is not None and p > 0)


def calculate_price_stats(listings: Iterable[dict]) -> PriceStats:
    prices = market_prices(listings)
    if not prices:
        return PriceStats()
    n = len(prices)
    return PriceStats(
        count=n,
        median=round(prices[n // 2], 2),
        average=round(sum(prices) / n, 2),
        min=round(prices[0], 2),
        max=round(prices[-1], 2),
    )


def calculate_percentile_rank(our_price: float, prices: list[float]) -> Optional[float]:
    """Share of market prices strictly below ours, 0-100. None for an empty market."""
    if not prices:
        return None
    below = sum(1 for p in prices if p < our_price)
    return round(below / len(prices) * 100, 2)


def determine_competitive_position(delta_percent: Optional[float]) -> Optional[str]:
    """Classify a percent delta vs median. The ±10% band is closed."""
    if delta_percent is None:
        return None
    if delta_percent > COMPETITIVE_BAND_PERCENT:
        return CompetitivePosition.ABOVE_MARKET.value
    if delta_percent < -COMPETITIVE_BAND_PERCENT:
        return CompetitivePosition.BELOW_MARKET.value
    return CompetitivePosition.COMPETITIVE.value


def compute_market_position(
    our_price: Optional[float], listings: Iterable[dict], stats: PriceStats
) -> MarketPosition:
    prices = market_prices(listings)
    if our_price is None or our_price <= 0:
        return MarketPosition(
            our_price=None,
            price_delta=None,
            price_delta_percent=None,
            percentile_rank=None,
            cheaper_count=0,
            more_expensive_count=0,
            competitive_position=None,
        )

    delta = None
    delta_percent = None
    if stats.median:
        delta = round(our_price - stats.median, 2)
        delta_percent = round(delta / stats.median * 100, 2)

    return MarketPosition(
        our_price=our_price,
        price_delta=delta,
        price_delta_percent=delta_percent,
        percentile_rank=calculate_percentile_rank(our_price, prices),
        cheaper_count=sum(1 for p in prices if p < our_price),
        more_expensive_count=sum(1 for p in prices if p > our_price),
        competitive_position=determine_competitive_position(delta_percent),
    )
