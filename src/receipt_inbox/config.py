"""
Configuration management.

All configuration keys for the receipt upload pipeline are defined here; no
other module should invent config keys.

Precedence: environment variable > YAML file > default.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class EndpointConfig:
    """Remote upload endpoint."""

    base_url: str = "http://localhost:8000"
    token: str = ""
    # Request timeout (seconds)
    timeout_seconds: int = 60
    # Transport-level retries for transient HTTP errors within one attempt
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class UploadConfig:
    """Upload pipeline settings."""

    # Retry ceiling: failed receipts with this many attempts stop being
    # resubmitted automatically
    max_attempts: int = 5
    # Maximum submissions per dispatch pass (None = no limit)
    batch_size: int | None = None
    # Concurrent uploads
    max_workers: int = 2
    # Background session name reported to the completion handler bridge
    session_id: str = "receipt-uploads"


@dataclass
class Config:
    """Application configuration."""

    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/receipts.db"))
    journal_path: Path = field(default_factory=lambda: Path("data/transfers.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.endpoint.base_url:
            errors.append("endpoint.base_url is required")
        elif not self.endpoint.base_url.startswith(("http://", "https://")):
            errors.append("endpoint.base_url must start with http:// or https://")

        if self.upload.max_attempts < 1:
            errors.append("upload.max_attempts must be >= 1")
        if self.upload.batch_size is not None and self.upload.batch_size < 1:
            errors.append("upload.batch_size must be >= 1 when set")
        if self.upload.max_workers < 1:
            errors.append("upload.max_workers must be >= 1")
        if not self.upload.session_id:
            errors.append("upload.session_id is required")

        if self.state_db_path == self.journal_path:
            errors.append("journal_path must differ from state_db_path")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}") from None


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECEIPT_UPLOAD_URL
    - RECEIPT_UPLOAD_TOKEN
    - RECEIPT_MAX_ATTEMPTS
    - RECEIPT_SESSION_ID
    - RECEIPT_STATE_DB
    - RECEIPT_JOURNAL_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    endpoint_data = data.get("endpoint", {})
    endpoint = EndpointConfig(
        base_url=os.environ.get(
            "RECEIPT_UPLOAD_URL", endpoint_data.get("base_url", "http://localhost:8000")
        ),
        token=os.environ.get("RECEIPT_UPLOAD_TOKEN", endpoint_data.get("token") or ""),
        timeout_seconds=endpoint_data.get("timeout_seconds", 60),
        max_retries=endpoint_data.get("max_retries", 3),
        backoff_factor=endpoint_data.get("backoff_factor", 0.5),
    )

    upload_data = data.get("upload", {})
    upload = UploadConfig(
        max_attempts=_env_int("RECEIPT_MAX_ATTEMPTS", upload_data.get("max_attempts", 5)),
        batch_size=upload_data.get("batch_size"),
        max_workers=upload_data.get("max_workers", 2),
        session_id=os.environ.get(
            "RECEIPT_SESSION_ID", upload_data.get("session_id", "receipt-uploads")
        ),
    )

    state_db = os.environ.get("RECEIPT_STATE_DB", data.get("state_db_path", "data/receipts.db"))
    journal = os.environ.get("RECEIPT_JOURNAL_DB", data.get("journal_path", "data/transfers.db"))

    return Config(
        endpoint=endpoint,
        upload=upload,
        state_db_path=Path(state_db),
        journal_path=Path(journal),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt Inbox upload pipeline configuration

endpoint:
  base_url: "http://localhost:8000"   # Receipts are PUT to {base_url}/receipts/{id}
  token: ""                           # Bearer token (or RECEIPT_UPLOAD_TOKEN)
  timeout_seconds: 60
  max_retries: 3                      # HTTP retries for 429/5xx within one attempt
  backoff_factor: 0.5

upload:
  max_attempts: 5                     # Stop auto-retrying a receipt after this many attempts
  batch_size: null                    # Max submissions per dispatch pass (null = all)
  max_workers: 2                      # Concurrent uploads
  session_id: "receipt-uploads"

# Durable receipts database
state_db_path: "data/receipts.db"

# Transfer journal (outcomes that finished before an unclean shutdown)
journal_path: "data/transfers.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
