"""Tests for env-driven process settings."""

from __future__ import annotations

from pathlib import Path

from stackpilot.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STACKPILOT_STATE_BACKEND", raising=False)
        settings = Settings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.state_backend == "s3"
        assert settings.uses_local_state is False
        assert settings.lock_during_plan is False
        assert settings.ledger_path == Path(".stackpilot/ledger.db")

    def test_readiness_bound_defaults_to_ten_minutes(self):
        settings = Settings(_env_file=None)
        assert settings.readiness_max_attempts * settings.readiness_delay_seconds == 600

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("STACKPILOT_STATE_BACKEND", "local")
        monkeypatch.setenv("STACKPILOT_READINESS_MAX_ATTEMPTS", "5")
        settings = Settings(_env_file=None)
        assert settings.uses_local_state is True
        assert settings.readiness_max_attempts == 5
