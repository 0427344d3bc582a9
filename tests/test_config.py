import json
import logging

import pytest
from pydantic import ValidationError

from archive_taxonomy.config import Settings
from archive_taxonomy.logging_setup import JsonFormatter, build_logging_config


class TestSettings:

    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.tx_max_wait_seconds == 5.0
        assert s.tx_timeout_seconds == 30.0
        assert s.ai_max_retries == 3
        assert s.link_conflicting_series is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("REPOSITORY_BACKEND", "MEMORY")
        monkeypatch.setenv("GEMINI_API_KEY", "k")
        s = Settings(_env_file=None)
        assert s.repository_backend == "memory"
        assert s.ai_enabled

    def test_ai_disabled_without_key(self):
        assert not Settings(_env_file=None, gemini_api_key="").ai_enabled

    @pytest.mark.parametrize("url", [
        "postgresql+asyncpg://u:p@h/db",
        "postgres://u:p@h/db",
        "postgresql://u:p@h/db",
    ])
    def test_asyncpg_dsn(self, url):
        assert Settings(_env_file=None, database_url=url).asyncpg_dsn == "postgresql://u:p@h/db"

    @pytest.mark.parametrize("field, value", [
        ("log_level", "LOUD"),
        ("log_format", "xml"),
        ("repository_backend", "sqlite"),
    ])
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestLogging:

    def test_config_uses_chosen_formatter(self, tmp_path):
        s = Settings(_env_file=None, log_format="json", log_level="debug",
                     log_file=str(tmp_path / "import.log"))
        config = build_logging_config(s)
        assert config["root"]["level"] == "DEBUG"
        assert set(config["root"]["handlers"]) == {"console", "file"}
        assert config["handlers"]["file"]["formatter"] == "json"
        assert config["loggers"]["httpx"] == {"level": "WARNING"}

    def test_json_formatter(self):
        record = logging.LogRecord("archive", logging.INFO, __file__, 1,
                                   "Imported %s", ("Hướng dẫn.pdf",), None)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "Imported Hướng dẫn.pdf"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "archive"
