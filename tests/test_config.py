"""
Tests for config load/save, PreferenceStore typed accessors and the HTTP session.
"""

from __future__ import annotations

import logging

import pytest

from lostmode_core import http_client
from lostmode_core.config import PreferenceStore, load_config, save_config, setup_logging
from lostmode_core.constants import DEFAULT_SERVER_URL, DEFAULT_USER_MODE, REPORT_INTERVAL_MS


class TestConfigFile:
    def test_missing_file_loads_none(self, tmp_path) -> None:
        assert load_config(tmp_path / "nope.json") is None

    def test_corrupt_file_loads_none(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{ not json")
        assert load_config(path) is None

    def test_non_object_loads_none(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")
        assert load_config(path) is None

    def test_save_then_load(self, tmp_path) -> None:
        path = tmp_path / "nested" / "config.json"
        save_config({"user_mode": "SECURE"}, path)
        assert load_config(path) == {"user_mode": "SECURE"}


class TestPreferenceStore:
    def test_defaults_on_empty_store(self, tmp_path) -> None:
        store = PreferenceStore(tmp_path / "config.json")
        assert store.user_mode == DEFAULT_USER_MODE
        assert store.device_id is None
        assert store.auth_token is None
        assert store.server_url == DEFAULT_SERVER_URL
        assert store.report_interval_ms == REPORT_INTERVAL_MS

    def test_external_edits_are_seen_on_next_read(self, tmp_path) -> None:
        path = tmp_path / "config.json"
        store = PreferenceStore(path)
        store.set("user_mode", "AI")
        save_config({"user_mode": "both"}, path)
        assert store.user_mode == "BOTH"

    @pytest.mark.parametrize("raw,expected", [
        (7, 7),
        ("12", 12),
        (0, None),
        (-1, None),
        ("abc", None),
        (True, None),
        (None, None),
    ])
    def test_device_id(self, prefs, raw, expected) -> None:
        prefs.set("selected_device_id", raw)
        assert prefs.device_id == expected

    def test_server_url_trailing_slash_is_stripped(self, prefs) -> None:
        prefs.set("server_url", "https://backend.example/")
        assert prefs.server_url == "https://backend.example"

    @pytest.mark.parametrize("raw", ["fast", 0, -5, None])
    def test_invalid_interval_falls_back(self, prefs, raw) -> None:
        prefs.set("report_interval_ms", raw)
        assert prefs.report_interval_ms == REPORT_INTERVAL_MS

    def test_remove_and_snapshot(self, prefs) -> None:
        prefs.set("auth_token", "t")
        assert prefs.snapshot()["auth_token"] == "t"
        prefs.remove("auth_token")
        prefs.remove("auth_token")
        assert "auth_token" not in prefs.snapshot()


class TestLogging:
    def test_setup_logging_attaches_file_and_console(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "agent.log"
        logger = setup_logging(log_file, level=logging.DEBUG)
        try:
            logger.info("hello")
            for handler in logger.handlers:
                handler.flush()
            assert len(logger.handlers) == 2
            assert "[INFO] hello" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()

    def test_oversized_log_is_truncated(self, tmp_path) -> None:
        log_file = tmp_path / "agent.log"
        log_file.write_text("x" * 1_000_001)
        logger = setup_logging(log_file)
        try:
            assert log_file.stat().st_size < 1_000_000
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()


class TestHttpClient:
    def test_auth_headers(self) -> None:
        assert http_client.auth_headers("abc") == {"Authorization": "Bearer abc"}
        assert http_client.auth_headers(None) == {}

    def test_session_retries_only_idempotent_gateway_errors(self) -> None:
        session = http_client.create_session()
        try:
            retries = session.get_adapter("https://backend.example").max_retries
            assert retries.connect == 0
            assert retries.read == 0
            assert set(retries.status_forcelist) == {502, 503, 504}
            assert "POST" not in retries.allowed_methods
            assert "GET" in retries.allowed_methods
        finally:
            session.close()

    def test_ca_bundle_env_override(self, monkeypatch, tmp_path) -> None:
        bundle = tmp_path / "ca.pem"
        bundle.write_text("")
        monkeypatch.setenv("REQUESTS_CA_BUNDLE", str(bundle))
        assert http_client._get_ca_bundle() == str(bundle)
