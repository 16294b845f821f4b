"""
Tests for config.py and env.py - settings from the environment.
"""

import pytest
from pathlib import Path

from lessondedupe.config import load_settings
from lessondedupe.env import load_env


class TestLoadSettings:
    """Test environment-driven settings."""

    def test_defaults(self):
        settings = load_settings({})

        assert settings.db_path == Path("data/lessons.db")
        assert settings.report_source == "data/duplicate-report.json"
        assert settings.log_level == "INFO"
        assert settings.log_dir == Path("logs")
        assert settings.http_timeout == 15.0

    def test_overrides(self, tmp_path):
        settings = load_settings({
            "DEDUPE_DB_PATH": str(tmp_path / "x.db"),
            "DEDUPE_REPORT": "https://example.com/report.json",
            "DEDUPE_LOG_LEVEL": "debug",
            "DEDUPE_LOG_DIR": str(tmp_path / "logs"),
            "DEDUPE_HTTP_TIMEOUT": "2.5",
        })

        assert settings.db_path == tmp_path / "x.db"
        assert settings.report_source == "https://example.com/report.json"
        assert settings.log_level == "DEBUG"
        assert settings.http_timeout == 2.5

    def test_blank_values_use_defaults(self):
        settings = load_settings({"DEDUPE_DB_PATH": "", "DEDUPE_HTTP_TIMEOUT": " "})

        assert settings.db_path == Path("data/lessons.db")
        assert settings.http_timeout == 15.0

    def test_invalid_log_level(self):
        with pytest.raises(ValueError, match="DEDUPE_LOG_LEVEL"):
            load_settings({"DEDUPE_LOG_LEVEL": "LOUD"})

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_invalid_timeout(self, raw):
        with pytest.raises(ValueError, match="DEDUPE_HTTP_TIMEOUT"):
            load_settings({"DEDUPE_HTTP_TIMEOUT": raw})

    def test_settings_are_frozen(self):
        settings = load_settings({})
        with pytest.raises(AttributeError):
            settings.log_level = "DEBUG"


class TestLoadEnv:
    """Test .env loading."""

    def test_missing_file(self, tmp_path):
        assert load_env(tmp_path / ".env") is False

    def test_loads_file_without_overriding(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("DEDUPE_REPORT=from-file.json\nDEDUPE_LOG_LEVEL=ERROR\n")
        monkeypatch.setenv("DEDUPE_LOG_LEVEL", "WARNING")
        # registered first so teardown removes the value loaded from the file
        monkeypatch.setenv("DEDUPE_REPORT", "unset")
        monkeypatch.delenv("DEDUPE_REPORT")

        assert load_env(env_file) is True
        settings = load_settings()

        assert settings.report_source == "from-file.json"
        assert settings.log_level == "WARNING"
