"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from receipt_inbox.config import (
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)

ENV_VARS = [
    "RECEIPT_UPLOAD_URL",
    "RECEIPT_UPLOAD_TOKEN",
    "RECEIPT_MAX_ATTEMPTS",
    "RECEIPT_SESSION_ID",
    "RECEIPT_STATE_DB",
    "RECEIPT_JOURNAL_DB",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """YAML loading with environment overrides."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.endpoint.base_url == "http://localhost:8000"
        assert config.upload.max_attempts == 5
        assert config.upload.batch_size is None
        assert config.state_db_path == Path("data/receipts.db")
        assert config.validate() == []

    def test_default_config_round_trips(self, tmp_path):
        path = tmp_path / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert config == Config()

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
endpoint:
  base_url: "https://receipts.example.com"
  token: "abc"
  timeout_seconds: 10
upload:
  max_attempts: 2
  batch_size: 4
state_db_path: "/var/lib/receipts/receipts.db"
"""
        )

        config = load_config(path)

        assert config.endpoint.base_url == "https://receipts.example.com"
        assert config.endpoint.token == "abc"
        assert config.endpoint.timeout_seconds == 10
        assert config.upload.max_attempts == 2
        assert config.upload.batch_size == 4
        assert config.state_db_path == Path("/var/lib/receipts/receipts.db")

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("upload:\n  max_attempts: 2\n")
        monkeypatch.setenv("RECEIPT_UPLOAD_URL", "https://env.example.com")
        monkeypatch.setenv("RECEIPT_UPLOAD_TOKEN", "secret")
        monkeypatch.setenv("RECEIPT_MAX_ATTEMPTS", "9")
        monkeypatch.setenv("RECEIPT_JOURNAL_DB", str(tmp_path / "j.db"))

        config = load_config(path)

        assert config.endpoint.base_url == "https://env.example.com"
        assert config.endpoint.token == "secret"
        assert config.upload.max_attempts == 9
        assert config.journal_path == tmp_path / "j.db"

    def test_bad_integer_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECEIPT_MAX_ATTEMPTS", "lots")

        with pytest.raises(ConfigValidationError):
            load_config(tmp_path / "missing.yaml")


class TestValidate:
    """Consistency checks."""

    def test_rejects_bad_values(self):
        config = Config()
        config.endpoint.base_url = "ftp://nope"
        config.upload.max_attempts = 0
        config.upload.batch_size = 0
        config.journal_path = config.state_db_path

        errors = config.validate()

        assert len(errors) == 4
        assert any("base_url" in e for e in errors)
        assert any("max_attempts" in e for e in errors)
        assert any("journal_path" in e for e in errors)

    def test_empty_base_url(self):
        config = Config()
        config.endpoint.base_url = ""

        assert config.validate() == ["endpoint.base_url is required"]
