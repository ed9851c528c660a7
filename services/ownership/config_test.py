"""Unit tests for ownership configuration."""

import pytest
from pydantic import ValidationError

from services.ownership.config import OwnershipConfig, MatchWeights, RetrySettings


@pytest.mark.no_db
class TestOwnershipConfig:

    def test_defaults(self):
        config = OwnershipConfig()
        assert config.safe_mode is False
        assert config.match.threshold == 35
        assert config.validation.fabricated_email_cap == 0.15
        assert config.dedupe.hard_cutoff_cap == 0.15
        assert config.gate.min_confidence == 0.7
        assert config.gate.indirect_min_confidence == 0.8
        assert config.run_history_size == 50

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RESEARCH_SAFE_MODE", "true")
        monkeypatch.setenv("RESEARCH_EMAIL_HUNT", "0")
        monkeypatch.setenv("CVR_MATCH_THRESHOLD", "50")
        config = OwnershipConfig.from_env()
        assert config.safe_mode is True
        assert config.email_hunt is False
        assert config.match.threshold == 50

    def test_from_env_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv("RESEARCH_SAFE_MODE", "  ")
        monkeypatch.delenv("CVR_MATCH_THRESHOLD", raising=False)
        config = OwnershipConfig.from_env()
        assert config.safe_mode is False
        assert config.match.threshold == MatchWeights().threshold

    def test_weights_overridable(self):
        config = OwnershipConfig(match=MatchWeights(exact_name=50, threshold=60))
        assert config.match.exact_name == 50
        assert config.match.street == 20

    def test_retry_needs_one_attempt(self):
        with pytest.raises(ValidationError):
            RetrySettings(max_attempts=0)
