import pytest

from community_context.services.location_service import (
    LocationResolver,
    haversine_km,
    is_valid_zip,
    min_distance_km,
)


class TestHelpers:
    """ZIP validation and distance"""

    @pytest.mark.parametrize("value", ["78701", " 78701 "])
    def test_valid_zip(self, value):
        assert is_valid_zip(value)

    @pytest.mark.parametrize("value", ["", None, "7870", "787011", "78-01", "abcde"])
    def test_invalid_zip(self, value):
        assert not is_valid_zip(value)

    def test_haversine(self):
        # Austin to Round Rock is roughly 27 km
        assert 25 < haversine_km(30.3004, -97.7522, 30.5270, -97.6789) < 29
        assert haversine_km(30.0, -97.0, 30.0, -97.0) == 0

    def test_min_distance(self):
        centers = [(45.5, -122.6), (30.3, -97.75)]
        assert min_distance_km(30.3, -97.75, centers) == 0
        assert min_distance_km(30.3, -97.75, []) is None


class TestLocationResolver:
    """Dataset lookups"""

    def test_zip_resolves_to_city(self, resolver):
        location = resolver.resolve("78701")
        assert (location.city, location.state, location.zip_code) == ("Austin", "TX", "78701")

    def test_shared_zip_picks_most_populous(self, resolver):
        assert resolver.resolve("78745").city == "Austin"

    def test_shared_zip_honors_preferred_city(self, resolver):
        assert resolver.resolve("78745", "sunset valley", "TX").city == "Sunset Valley"

    def test_unknown_zip(self, resolver):
        assert resolver.resolve("99999") is None

    def test_city_query(self, resolver):
        location = resolver.resolve("Round Rock, TX")
        assert location.city == "Round Rock"
        assert location.zip_code == ""

    def test_find_city_without_state(self, resolver):
        assert resolver.find_city("portland")["state"] == "OR"
        assert resolver.find_city("Portland", "TX") is None

    def test_service_areas(self, resolver):
        centers = resolver.resolve_service_areas(["Round Rock", "Atlantis"], default_state="TX")
        assert centers == [(30.5270, -97.6789)]

    def test_missing_dataset(self, tmp_path):
        resolver = LocationResolver(str(tmp_path / "missing.csv"))
        assert resolver.resolve("78701") is None
