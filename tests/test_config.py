"""Tests for environment-driven settings."""

import pytest
from decimal import Decimal

from pydantic import ValidationError

from obligations.config import EngineSettings


class TestEngineSettings:
    """Tests for engine tunables."""

    def test_defaults(self, monkeypatch):
        """Test the values used when nothing is set."""
        monkeypatch.delenv("ENGINE_MAX_CUSTOM_INTERVAL_MONTHS", raising=False)
        monkeypatch.delenv("ENGINE_AMORTIZATION_TOLERANCE", raising=False)
        settings = EngineSettings()

        assert settings.max_custom_interval_months == 60
        assert settings.amortization_tolerance == Decimal("1.00")

    def test_custom_interval_capped_at_five_years(self):
        """Test that an interval above 60 months is refused."""
        assert EngineSettings(max_custom_interval_months=60).max_custom_interval_months == 60
        with pytest.raises(ValidationError):
            EngineSettings(max_custom_interval_months=61)

    def test_custom_interval_from_environment(self, monkeypatch):
        """Test that the environment is bounded the same way."""
        monkeypatch.setenv("ENGINE_MAX_CUSTOM_INTERVAL_MONTHS", "120")
        with pytest.raises(ValidationError):
            EngineSettings()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
