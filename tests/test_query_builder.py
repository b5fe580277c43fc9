"""Tests for listings search parameter building."""

from types import SimpleNamespace

import pytest

from market_intel.config import settings
from market_intel.market.query_builder import (
    MIN_MILEAGE,
    base_spread,
    build_search_params,
    build_year_filter,
    calculate_mileage_range,
)


class TestMileageRange:
    """Mileage bracket around the target vehicle."""

    def test_mid_band(self):
        mileage_range = calculate_mileage_range(75000)
        assert (mileage_range.min, mileage_range.max) == (55000, 95000)
        assert mileage_range.spread == 20000

    def test_expansion_widens_both_sides(self):
        mileage_range = calculate_mileage_range(75000, expansion=10000)
        assert (mileage_range.min, mileage_range.max) == (45000, 105000)

    def test_band_edges(self):
        assert base_spread(50000) == 10000
        assert base_spread(50001) == 20000
        assert base_spread(100000) == 20000
        assert base_spread(100001) == 30000

    def test_spread_never_shrinks_as_mileage_grows(self):
        spreads = [base_spread(m) for m in range(0, 200001, 5000)]
        assert spreads == sorted(spreads)

    @pytest.mark.parametrize("mileage", [0, 500, 3000, 9999, 10500])
    def test_lower_bound_floor(self, mileage):
        assert calculate_mileage_range(mileage).min >= MIN_MILEAGE

    def test_as_param(self):
        assert calculate_mileage_range(30000).as_param() == "20000-40000"


class TestYearFilter:
    def test_exact_by_default(self):
        assert build_year_filter(2019) == "2019"
        assert build_year_filter(2019, "exact") == "2019"
        assert build_year_filter(2019, "") == "2019"

    @pytest.mark.parametrize("year_range", ["±2", "+-2", "+/-2", "2"])
    def test_plus_minus(self, year_range):
        assert build_year_filter(2019, year_range) == "2017-2021"

    def test_zero_is_exact(self):
        assert build_year_filter(2019, "±0") == "2019"

    def test_invalid(self):
        with pytest.raises(ValueError):
            build_year_filter(2019, "last five years")


def test_build_search_params():
    vehicle = SimpleNamespace(year=2018, make="Honda", model="Accord", mileage=42000)

    params = build_search_params(vehicle, expansion=10000, year_range="±1", page=2)

    assert params == {
        "vehicle.make": "Honda",
        "vehicle.model": "Accord",
        "vehicle.year": "2017-2019",
        "retailListing.mileage": "22000-62000",
        "zip": settings.market_zip,
        "distance": settings.market_radius_miles,
        "limit": settings.market_page_limit,
        "page": 2,
    }
