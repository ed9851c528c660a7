"""Unit tests for ownership classification and registry strategy."""

import pytest

from services.ownership.classifier import classify_ownership, registry_strategy
from services.ownership.models import OwnershipType


@pytest.mark.no_db
class TestClassifyOwnership:

    def test_code_wins_over_text_and_names(self):
        assert classify_ownership("20", "Privatpersoner", ["Jens Hansen"]) == OwnershipType.COMPANY
        assert classify_ownership("10", None, ["Hansen Ejendomme ApS"]) == OwnershipType.PRIVATE_INDIVIDUAL

    def test_code_40_resolved_by_name(self):
        assert classify_ownership("40", None, ["E/F Vesterbrogade 10"]) == OwnershipType.OWNERS_ASSOCIATION
        assert classify_ownership("40", None, ["A/B Nørrebro"]) == OwnershipType.HOUSING_COOPERATIVE
        assert classify_ownership("40", None, ["Selvejende institution"]) == OwnershipType.OWNERS_ASSOCIATION

    def test_text_keywords(self):
        assert classify_ownership(None, "Andelsboligforening", []) == OwnershipType.HOUSING_COOPERATIVE
        assert classify_ownership(None, "Privatpersoner eller I/S", []) == OwnershipType.PRIVATE_INDIVIDUAL
        assert classify_ownership(None, "Anpartsselskab", []) == OwnershipType.COMPANY

    def test_name_patterns(self):
        assert classify_ownership(None, None, ["Krogh Ejendomme ApS"]) == OwnershipType.COMPANY
        assert classify_ownership(None, None, ["Københavns Kommune"]) == OwnershipType.GOVERNMENT
        assert classify_ownership(None, None, ["Boligselskabet Sjælland"]) == OwnershipType.SOCIAL_HOUSING
        assert classify_ownership(None, None, ["Mette Frederiksen"]) == OwnershipType.PRIVATE_INDIVIDUAL

    def test_nothing_known(self):
        assert classify_ownership(None, None, []) == OwnershipType.UNKNOWN
        assert classify_ownership("", "", ["  "]) == OwnershipType.UNKNOWN


@pytest.mark.no_db
class TestRegistryStrategy:

    @pytest.mark.parametrize("ownership_type", [OwnershipType.PRIVATE_INDIVIDUAL, OwnershipType.GOVERNMENT])
    def test_never_searches_for_persons_or_public_bodies(self, ownership_type):
        assert registry_strategy(ownership_type).should_search_registry is False

    @pytest.mark.parametrize(
        "ownership_type", [OwnershipType.HOUSING_COOPERATIVE, OwnershipType.OWNERS_ASSOCIATION],
    )
    def test_associations_need_address_match(self, ownership_type):
        strategy = registry_strategy(ownership_type)
        assert strategy.should_search_registry is True
        assert strategy.require_address_match is True

    @pytest.mark.parametrize("ownership_type", [OwnershipType.COMPANY, OwnershipType.SOCIAL_HOUSING])
    def test_companies_without_address_requirement(self, ownership_type):
        strategy = registry_strategy(ownership_type)
        assert strategy.should_search_registry is True
        assert strategy.require_address_match is False

    def test_every_type_has_a_strategy(self):
        for ownership_type in OwnershipType:
            assert registry_strategy(ownership_type).reason
