"""Tests for competitor inventory page parsers."""

import pytest

from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.parsers import PLATFORMS, detect_platform, get_parser
from market_intel.ingest.parsers.base import (
    dedupe_by_identity,
    parse_mileage,
    parse_price,
    parse_title,
)
from market_intel.ingest.parsers.dealercenter import DealerCenterParser
from market_intel.ingest.parsers.dealersync import DealersyncParser
from market_intel.ingest.parsers.generic import GenericParser

DEALERCENTER_HTML = """
<html><body>
<div class="inventory">
  <div class="list-group">
    <div class="dws-listing-title"><a href="/inventory/view/1">2019 Honda Civic EX</a></div>
    <div class="dws-vehicle-price-value">$18,995</div>
    <div class="dws-vehicle-listing-item-info dws-listing-item">
      <div class="dws-vehicle-field-vin">
        <span class="dws-vehicle-listing-item-field-value">2HGFC2F59KH500001</span>
      </div>
      <div class="dws-vehicle-field-stock-number">
        <span class="dws-vehicle-listing-item-field-value">A1234</span>
      </div>
      <div class="dws-vehicle-field-mileage">
        <span class="dws-vehicle-listing-item-field-value">45,210 mi</span>
      </div>
      <div class="dws-vehicle-field-trim">
        <span class="dws-vehicle-listing-item-field-value">EX</span>
      </div>
      <div class="dws-vehicle-field-exterior-color">
        <span class="dws-vehicle-listing-item-field-value">Blue</span>
      </div>
    </div>
  </div>
  <div class="list-group">
    <div class="dws-listing-title"><a href="/inventory/view/2">2015 MERCEDES-BENZ C300</a></div>
    <div class="dws-vehicle-price-value">$14,500</div>
    <div class="dws-vehicle-listing-item-info dws-listing-item">
      <div class="dws-vehicle-field-stock-number">
        <span class="dws-vehicle-listing-item-field-value">B77</span>
      </div>
    </div>
  </div>
  <div class="list-group">
    <div class="dws-listing-title"><a href="/inventory/view/3">2017 Ford Fusion</a></div>
    <div class="dws-vehicle-price-value">Call for price</div>
    <div class="dws-vehicle-listing-item-info dws-listing-item">
      <div class="dws-vehicle-field-stock-number">
        <span class="dws-vehicle-listing-item-field-value">C9</span>
      </div>
    </div>
  </div>
</div>
</body></html>
"""

DEALERSYNC_HTML = """
<html><body>
<div class="ds-vehicle-list-item" data-vin="1FTEW1EP5KFA00001" data-stock-no="S100">
  <div class="ds-listview-vehicle-title">2020 Toyota Camry SE w/ Navigation</div>
  <div class="ds-listview-item-featured-content-tag">32,100 miles</div>
  <div class="ds-listview-price-value">$23,500</div>
</div>
<div class="ds-vehicle-list-item" data-stock-no="S101">
  <div class="ds-listview-vehicle-title">2018 Nissan Altima</div>
  <h5>2.5 SV</h5>
  <div class="ds-listview-price-value">$15,250</div>
</div>
<div class="ds-vehicle-list-item" data-stock-no="S102">
  <div class="ds-listview-vehicle-title">2016 Kia Soul</div>
</div>
</body></html>
"""

GENERIC_HTML = """
<html><body>
<div class="results">
  <div class="vehicle-item">
    <h3>2021 Subaru Outback Premium</h3>
    <span data-vin="4S4BTACC5M3100001">VIN</span>
    <span class="price">$27,900</span>
  </div>
  <div class="vehicle-item">
    <h3>Spring sale event</h3>
    <span class="price">$0</span>
  </div>
</div>
</body></html>
"""


class TestFieldHelpers:
    def test_parse_price(self):
        assert parse_price("$18,995") == 18995
        assert parse_price("Call for price") is None
        assert parse_price("") is None
        assert parse_price("$0") is None

    def test_parse_mileage(self):
        assert parse_mileage("45,210 mi") == 45210
        assert parse_mileage("n/a") is None

    def test_parse_title_keeps_hyphenated_make(self):
        assert parse_title("2015 MERCEDES-BENZ C300") == (2015, "MERCEDES-BENZ", "C300")

    def test_parse_title_without_year(self):
        assert parse_title("Certified Pre-Owned") == (None, None, None)

    def test_dedupe_by_identity(self):
        vehicles = [
            ScrapedVehicle(vin="A" * 17, price=1),
            ScrapedVehicle(vin="a" * 17, price=2),
            ScrapedVehicle(stock_number="S1", price=3),
        ]
        assert [v.price for v in dedupe_by_identity(vehicles)] == [1, 3]


class TestDealerCenterParser:
    def test_parses_cards(self):
        vehicles = DealerCenterParser().parse(DEALERCENTER_HTML)

        assert len(vehicles) == 2
        civic = vehicles[0]
        assert civic.vin == "2HGFC2F59KH500001"
        assert civic.stock_number == "A1234"
        assert (civic.year, civic.make, civic.model) == (2019, "Honda", "Civic EX")
        assert civic.trim == "EX"
        assert civic.mileage == 45210
        assert civic.price == 18995
        assert civic.exterior_color == "Blue"

    def test_stock_only_vehicle_is_kept(self):
        benz = DealerCenterParser().parse(DEALERCENTER_HTML)[1]
        assert benz.vin is None
        assert benz.stock_number == "B77"
        assert benz.make == "MERCEDES-BENZ"

    def test_empty_page(self):
        assert DealerCenterParser().parse("<html><body></body></html>") == []


class TestDealersyncParser:
    def test_parses_items(self):
        vehicles = DealersyncParser().parse(DEALERSYNC_HTML)

        assert [v.stock_number for v in vehicles] == ["S100", "S101"]
        camry = vehicles[0]
        assert camry.vin == "1FTEW1EP5KFA00001"
        assert (camry.year, camry.make, camry.model) == (2020, "Toyota", "Camry SE")
        assert camry.trim == "w/ Navigation"
        assert camry.mileage == 32100
        assert camry.price == 23500

    def test_subtitle_is_trim(self):
        altima = DealersyncParser().parse(DEALERSYNC_HTML)[1]
        assert altima.trim == "2.5 SV"
        assert altima.vin is None


class TestGenericParser:
    def test_parses_cards_with_year_titles(self):
        vehicles = GenericParser().parse(GENERIC_HTML)

        assert len(vehicles) == 1
        assert vehicles[0].vin == "4S4BTACC5M3100001"
        assert vehicles[0].model == "Outback Premium"
        assert vehicles[0].price == 27900


class TestDetectPlatform:
    def test_dealercenter(self):
        assert detect_platform(DEALERCENTER_HTML) == "dealercenter"

    def test_dealersync(self):
        assert detect_platform(DEALERSYNC_HTML) == "dealersync"

    def test_marker_text(self):
        assert detect_platform("<footer>Website by DealerCenter</footer>") == "dealercenter"

    def test_unknown(self):
        assert detect_platform(GENERIC_HTML) == "custom"
        assert detect_platform("") == "custom"


@pytest.mark.parametrize(
    "platform,parser_class",
    [
        ("dealercenter", DealerCenterParser),
        ("DealerSync", DealersyncParser),
        ("custom", GenericParser),
        (None, GenericParser),
        ("unknown-platform", GenericParser),
    ],
)
def test_get_parser(platform, parser_class):
    assert isinstance(get_parser(platform), parser_class)


def test_registered_platforms():
    assert set(PLATFORMS) == {"dealercenter", "dealersync", "custom"}
