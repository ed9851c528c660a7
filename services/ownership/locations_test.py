"""Unit tests for the supported-location allowlist."""

import pytest

from services.ownership.locations import (
    ascii_fold,
    find_supported_city,
    is_supported_location,
    resolve_municipality_name,
)


@pytest.mark.no_db
class TestFindSupportedCity:

    def test_city_alias(self):
        assert find_supported_city("Copenhagen").name == "København"
        assert find_supported_city("Århus C").name == "Aarhus"

    def test_district_prefix(self):
        assert find_supported_city("København K").name == "København"
        assert find_supported_city("Frederiksberg C").name == "København"

    def test_municipality_code(self):
        assert find_supported_city("0461 Odense").name == "Odense"

    def test_postal_code_only(self):
        assert find_supported_city(None, "9000").name == "Aalborg"
        assert find_supported_city("", "6700").name == "Esbjerg"

    def test_unsupported(self):
        assert find_supported_city("Skagen", "9990") is None
        assert find_supported_city(None, "abcd") is None


@pytest.mark.no_db
class TestIsSupportedLocation:

    def test_supported_returns_city_name(self):
        assert is_supported_location("Aarhus", "8000") == (True, "Aarhus")

    def test_unsupported_has_reason(self):
        supported, reason = is_supported_location("Skagen", "9990")
        assert supported is False
        assert "Skagen" in reason
        assert "København" in reason

    def test_municipality_rescues_bad_city(self):
        supported, _ = is_supported_location("Ukendt", None, "0751 Aarhus")
        assert supported is True


@pytest.mark.no_db
class TestHelpers:

    def test_ascii_fold(self):
        assert ascii_fold("Høje-Taastrup") == "hojetaastrup"
        assert ascii_fold("Ærø") == "aero"

    def test_resolve_municipality_name(self):
        assert resolve_municipality_name("0101 København") == "København"
        assert resolve_municipality_name("0860 Hjørring") == "Hjørring"
        assert resolve_municipality_name(None) is None
