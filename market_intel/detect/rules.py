"""Market alert rule definitions.

Each check is a pure function over already-loaded numbers and returns an
``AlertCandidate`` or None. Loading history and flipping one-shot flags is
the engine's job.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from market_intel.config import settings
from market_intel.market.dedupe import listing_price


class AlertType(str, Enum):
    """Alert type tags stored on MarketAlert rows."""

    MEDIAN_CHANGE_1WEEK = "market_median_change_1week"
    MEDIAN_CHANGE_2WEEK = "market_median_change_2week"
    INVENTORY_SURGE = "inventory_surge"
    INVENTORY_DECLINE = "inventory_decline"
    COMPETITOR_PRICING = "competitor_pricing"
    PRICE_ABOVE_MARKET = "price_above_market"
    PRICE_BELOW_MARKET = "price_below_market"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertRule(str, Enum):
    """Rule groups that can be switched off via settings.alert_disabled_rules."""

    MEDIAN_CHANGE = "median_change"
    INVENTORY_CHANGE = "inventory_change"
    COMPETITOR_PRICING = "competitor_pricing"
    PRICE_VS_MEDIAN = "price_vs_median"


@dataclass
class AlertCandidate:
    """An alert a rule wants to raise."""

    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    alert_data: dict = field(default_factory=dict)
    snapshot_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "alert_data": self.alert_data,
            "snapshot_id": self.snapshot_id,
        }


_WINDOWS = {
    "1week": (AlertType.MEDIAN_CHANGE_1WEEK, "1 Week", "the last week"),
    "2week": (AlertType.MEDIAN_CHANGE_2WEEK, "2 Weeks", "the last two weeks"),
}


def check_median_change(
    window: str,
    change: Optional[float],
    median: Optional[float],
    already_sent: bool,
) -> Optional[AlertCandidate]:
    """Cumulative median move over a window ('1week' or '2week').

    Fires at |change / median| >= 5% when the window's flag is not set;
    critical from 10%.
    """
    if change is None or not median or already_sent:
        return None

    percent = change / median * 100
    if abs(percent) < settings.alert_median_change_percent:
        return None

    alert_type, label, period_text = _WINDOWS[window]
    direction = "Increased" if percent > 0 else "Decreased"
    severity = (
        Severity.CRITICAL
        if abs(percent) >= settings.alert_median_change_critical_percent
        else Severity.WARNING
    )
    return AlertCandidate(
        alert_type=alert_type,
        severity=severity,
        title=f"Market Median {direction} {abs(percent):.1f}% ({label})",
        message=(
            f"Market median price has {direction.lower()} by ${abs(change):,.2f} "
            f"({abs(percent):.1f}%) over {period_text}."
        ),
        alert_data={
            "current_median": median,
            "change": change,
            "percent_change": round(percent, 2),
            "period": window,
        },
    )


def check_inventory_change(
    previous_count: Optional[int],
    current_count: int,
    vehicle_label: str,
    snapshot_id: Optional[int] = None,
) -> Optional[AlertCandidate]:
    """Unique-listing count moved by 20% or more since the previous snapshot."""
    if previous_count is None or previous_count == 0:
        return None

    percent = (current_count - previous_count) / previous_count * 100
    if abs(percent) < settings.alert_inventory_change_percent:
        return None

    surge = percent > 0
    return AlertCandidate(
        alert_type=AlertType.INVENTORY_SURGE if surge else AlertType.INVENTORY_DECLINE,
        severity=Severity.INFO,
        title=f"Market Inventory {'Surge' if surge else 'Decline'}: {abs(percent):.1f}%",
        message=(
            f"Market inventory for {vehicle_label} has {'increased' if surge else 'decreased'} "
            f"by {abs(percent):.1f}% (from {previous_count} to {current_count} listings)."
        ),
        alert_data={
            "previous_count": previous_count,
            "current_count": current_count,
            "change": current_count - previous_count,
            "percent_change": round(percent, 2),
        },
        snapshot_id=snapshot_id,
    )


def check_competitor_pricing(
    our_price: Optional[float],
    listings: list[dict],
    snapshot_id: Optional[int] = None,
) -> Optional[AlertCandidate]:
    """Any comparable listed 15%+ below our price; reports the cheapest one."""
    if not our_price or our_price <= 0:
        return None

    threshold = settings.alert_competitor_cheaper_percent
    cheaper = []
    for listing in listings:
        price = listing_price(listing)
        if price and (our_price - price) / our_price * 100 >= threshold:
            cheaper.append((price, listing))
    if not cheaper:
        return None

    cheapest_price, cheapest = min(cheaper, key=lambda pair: pair[0])
    retail = cheapest.get("retailListing") or {}
    vehicle = cheapest.get("vehicle") or {}
    diff = our_price - cheapest_price
    percent = diff / our_price * 100
    dealer = retail.get("dealerName") or "Unknown"

    return AlertCandidate(
        alert_type=AlertType.COMPETITOR_PRICING,
        severity=(
            Severity.CRITICAL
            if percent >= settings.alert_competitor_cheaper_critical_percent
            else Severity.WARNING
        ),
        title=f"Competitor {percent:.1f}% Cheaper",
        message=(
            f"A {vehicle.get('year')} {vehicle.get('make')} {vehicle.get('model')} is listed for "
            f"${cheapest_price:,.2f}, which is ${diff:,.2f} ({percent:.1f}%) cheaper than yours. "
            f"Dealer: {dealer}."
        ),
        alert_data={
            "our_price": our_price,
            "competitor_price": cheapest_price,
            "price_diff": round(diff, 2),
            "percent_cheaper": round(percent, 2),
            "competitor_dealer": retail.get("dealerName"),
            "competitor_city": retail.get("city"),
            "competitor_state": retail.get("state"),
            "competitor_vin": vehicle.get("vin"),
            "total_cheaper_competitors": len(cheaper),
        },
        snapshot_id=snapshot_id,
    )


def check_price_vs_median(
    our_price: Optional[float],
    median: Optional[float],
    price_delta: Optional[float],
    price_delta_percent: Optional[float],
    vehicle_label: str,
    snapshot_id: Optional[int] = None,
) -> Optional[AlertCandidate]:
    """Our price more than 10% off the market median, either way."""
    if price_delta_percent is None or price_delta is None or not median:
        return None

    band = settings.alert_price_vs_median_percent
    data = {
        "our_price": our_price,
        "market_median": median,
        "price_delta": price_delta,
        "price_delta_percent": price_delta_percent,
    }
    if price_delta_percent > band:
        return AlertCandidate(
            alert_type=AlertType.PRICE_ABOVE_MARKET,
            severity=Severity.WARNING,
            title=f"Price {price_delta_percent:.1f}% Above Market",
            message=(
                f"Your {vehicle_label} is priced ${price_delta:,.2f} ({price_delta_percent:.1f}%) "
                f"above the market median of ${median:,.2f}."
            ),
            alert_data=data,
            snapshot_id=snapshot_id,
        )
    if price_delta_percent < -band:
        return AlertCandidate(
            alert_type=AlertType.PRICE_BELOW_MARKET,
            severity=Severity.INFO,
            title=f"Price {abs(price_delta_percent):.1f}% Below Market",
            message=(
                f"Your {vehicle_label} is priced ${abs(price_delta):,.2f} "
                f"({abs(price_delta_percent):.1f}%) below the market median."
            ),
            alert_data=data,
            snapshot_id=snapshot_id,
        )
    return None
