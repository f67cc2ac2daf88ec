"""DhanBridge: application configuration.

Loads .env variables into a typed config object.
Validates variable values on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_ENVIRONMENTS = ("live", "sandbox")

_BASE_URLS = {
    "live": "https://api.dhan.co",
    "sandbox": "https://sandbox.dhan.co",
}

DEFAULT_SECURITY_MASTER_URL = "https://images.dhan.co/api-data/api-scrip-master.csv"


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    broker_environment: str  # "live" or "sandbox"
    broker_timeout_seconds: float
    security_master_url: str
    security_master_path: str  # empty = fetch from security_master_url
    db_path: str
    log_level: str
    api_port: int

    @property
    def broker_base_url(self) -> str:
        """Return the Dhan API base URL based on environment."""
        return _BASE_URLS.get(self.broker_environment, _BASE_URLS["live"])


def _read_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for environment variable {name}: {raw!r}"
        ) from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when a
    value cannot be used.
    """
    load_dotenv(dotenv_path=env_path)

    environment = os.environ.get("BROKER_ENVIRONMENT", "live").strip().lower()
    if environment not in _ENVIRONMENTS:
        raise ValueError(
            f"Invalid value for environment variable BROKER_ENVIRONMENT: "
            f"{environment!r} (expected one of: {', '.join(_ENVIRONMENTS)})"
        )

    return Config(
        broker_environment=environment,
        broker_timeout_seconds=_read_number("BROKER_TIMEOUT_SECONDS", "30", float),
        security_master_url=os.environ.get(
            "SECURITY_MASTER_URL", DEFAULT_SECURITY_MASTER_URL
        ),
        security_master_path=os.environ.get("SECURITY_MASTER_PATH", ""),
        db_path=os.environ.get("DB_PATH", "data/dhanbridge.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_read_number("API_PORT", "8080", int),
    )
