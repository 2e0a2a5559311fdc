"""Tests for settings and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from transit_events.config import Settings
from transit_events.logging import get_logger, setup_logging


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("FEED_URL", "GTFS_RT_FEED_URL", "POLL_PERIOD_SEC", "SINK"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings()

        assert settings.feed_url.endswith("trapezerealtimefeed.pb")
        assert settings.poll_period_sec == 300
        assert settings.tick_overlap_policy == "skip"
        assert settings.sink == "jsonl"

    def test_feed_url_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("FEED_URL", raising=False)
        monkeypatch.setenv("GTFS_RT_FEED_URL", "https://agency.example/rt.pb")
        assert Settings().feed_url == "https://agency.example/rt.pb"

    def test_stops_path_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STOPS_PATH", "/data/stops.txt")
        assert Settings().stops_path == "/data/stops.txt"

    def test_poll_period_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(poll_period_sec=0)

    def test_unknown_overlap_policy_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(tick_overlap_policy="coalesce")

    def test_missing_required_env(self) -> None:
        assert Settings(feed_url="").missing_required_env() == ["FEED_URL"]
        assert Settings(sink="database", database_url="").missing_required_env() == [
            "DATABASE_URL"
        ]


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging_installs_single_handler(self) -> None:
        setup_logging()
        setup_logging()

        assert len(logging.getLogger().handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING
        get_logger(__name__).info("Logging configured", check=True)
