"""
Tests for settings that must hold together across modules.
"""
import pytest
from pydantic import ValidationError

from app.platform.config import Settings, settings


class TestRequestBudget:
    def test_default_timings_fit_inside_request_timeout(self):
        for mode, seconds in Settings().worst_case_seconds().items():
            assert seconds <= settings.AUDIT_REQUEST_TIMEOUT_SECONDS, mode

    def test_single_capture_worst_case(self):
        config = Settings(
            SCREENSHOT_MAX_ATTEMPTS=5,
            SCREENSHOT_TIMEOUT_SECONDS=8,
            SCREENSHOT_RETRY_DELAY_SECONDS=2,
            INFERENCE_TIMEOUT_SECONDS=30,
        )

        # 5 attempts x 8s + 4 delays x 2s + one inference call
        assert config.worst_case_seconds()["url"] == 78

    def test_crawl_worst_case_includes_seed_fetch(self):
        config = Settings(
            CRAWLER_FETCH_TIMEOUT_SECONDS=8,
            CRAWL_CAPTURE_MAX_ATTEMPTS=4,
            CRAWL_CAPTURE_RETRY_DELAY_SECONDS=2.5,
            SCREENSHOT_TIMEOUT_SECONDS=8,
            INFERENCE_TIMEOUT_SECONDS=30,
            INFERENCE_CONCURRENCY=3,
            CRAWL_MAX_PAGES=3,
        )

        assert config.worst_case_seconds()["crawler"] == 77.5

    def test_slow_capture_settings_are_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(SCREENSHOT_TIMEOUT_SECONDS=15, INFERENCE_TIMEOUT_SECONDS=45)

        assert "AUDIT_REQUEST_TIMEOUT_SECONDS" in str(exc_info.value)

    def test_serial_inference_counts_every_wave(self):
        config = Settings(INFERENCE_CONCURRENCY=1, AUDIT_REQUEST_TIMEOUT_SECONDS=200)

        assert config.inference_seconds(3) == 3 * config.INFERENCE_TIMEOUT_SECONDS

        with pytest.raises(ValidationError) as exc_info:
            Settings(INFERENCE_CONCURRENCY=1, INFERENCE_TIMEOUT_SECONDS=30)

        assert "crawler audits" in str(exc_info.value)

    def test_longer_request_timeout_allows_slower_backends(self):
        config = Settings(
            SCREENSHOT_TIMEOUT_SECONDS=15,
            INFERENCE_TIMEOUT_SECONDS=45,
            AUDIT_REQUEST_TIMEOUT_SECONDS=200,
        )

        assert max(config.worst_case_seconds().values()) <= 200
