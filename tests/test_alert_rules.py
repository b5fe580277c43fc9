"""Tests for the pure alert rule checks."""

from market_intel.detect.rules import (
    AlertType,
    Severity,
    check_competitor_pricing,
    check_inventory_change,
    check_median_change,
    check_price_vs_median,
)


def comp(price, dealer="Lot B", vin="VIN00000000000001"):
    return {
        "vehicle": {"vin": vin, "year": 2019, "make": "Honda", "model": "Civic"},
        "retailListing": {"price": price, "dealerName": dealer, "city": "Austin", "state": "TX"},
    }


class TestMedianChange:
    def test_fires_at_threshold(self):
        alert = check_median_change("1week", 1000, 20000, already_sent=False)
        assert alert.alert_type == AlertType.MEDIAN_CHANGE_1WEEK
        assert alert.severity == Severity.WARNING
        assert alert.title == "Market Median Increased 5.0% (1 Week)"
        assert alert.alert_data["percent_change"] == 5.0
        assert alert.alert_data["period"] == "1week"

    def test_critical_and_decrease(self):
        alert = check_median_change("2week", -2100, 20000, already_sent=False)
        assert alert.alert_type == AlertType.MEDIAN_CHANGE_2WEEK
        assert alert.severity == Severity.CRITICAL
        assert alert.title.startswith("Market Median Decreased")

    def test_below_threshold(self):
        assert check_median_change("1week", 999, 20000, already_sent=False) is None

    def test_already_sent(self):
        assert check_median_change("1week", 5000, 20000, already_sent=True) is None

    def test_missing_inputs(self):
        assert check_median_change("1week", None, 20000, already_sent=False) is None
        assert check_median_change("1week", 1000, None, already_sent=False) is None


class TestInventoryChange:
    def test_surge(self):
        alert = check_inventory_change(10, 12, "2019 Honda Civic", snapshot_id=4)
        assert alert.alert_type == AlertType.INVENTORY_SURGE
        assert alert.severity == Severity.INFO
        assert alert.snapshot_id == 4
        assert alert.alert_data["change"] == 2

    def test_decline(self):
        assert check_inventory_change(10, 7, "x").alert_type == AlertType.INVENTORY_DECLINE

    def test_small_move(self):
        assert check_inventory_change(10, 11, "x") is None

    def test_no_baseline(self):
        assert check_inventory_change(None, 11, "x") is None
        assert check_inventory_change(0, 11, "x") is None


class TestCompetitorPricing:
    def test_reports_cheapest_qualifying_listing(self):
        listings = [comp(18000), comp(17000, dealer="Lot C"), comp(16000, dealer=None, vin="VIN00000000000009")]

        alert = check_competitor_pricing(20000, listings, snapshot_id=1)

        assert alert.severity == Severity.WARNING
        assert alert.alert_data["competitor_price"] == 16000
        assert alert.alert_data["competitor_vin"] == "VIN00000000000009"
        assert alert.alert_data["total_cheaper_competitors"] == 2
        assert alert.alert_data["percent_cheaper"] == 20.0
        assert "Dealer: Unknown" in alert.message

    def test_critical(self):
        alert = check_competitor_pricing(20000, [comp(15000)])
        assert alert.severity == Severity.CRITICAL

    def test_nothing_cheap_enough(self):
        assert check_competitor_pricing(20000, [comp(18000), comp(None)]) is None

    def test_no_price(self):
        assert check_competitor_pricing(None, [comp(1000)]) is None


class TestPriceVsMedian:
    def test_above(self):
        alert = check_price_vs_median(22400, 20000, 2400, 12.0, "2019 Honda Civic")
        assert alert.alert_type == AlertType.PRICE_ABOVE_MARKET
        assert alert.severity == Severity.WARNING

    def test_below(self):
        alert = check_price_vs_median(17600, 20000, -2400, -12.0, "2019 Honda Civic")
        assert alert.alert_type == AlertType.PRICE_BELOW_MARKET
        assert alert.severity == Severity.INFO

    def test_inside_band(self):
        assert check_price_vs_median(22000, 20000, 2000, 10.0, "x") is None
