"""Configuration module for the CoBuy negotiation service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from cobuy.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    API_HOST: str
    API_PORT: int
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str
    NEGOTIATION_MIN_PERCENTAGE: float
    NEGOTIATION_MAX_PERCENTAGE: float
    NEGOTIATION_TOTAL_TOLERANCE: float
    REALTIME_HEARTBEAT_SECONDS: float
    REALTIME_QUEUE_SIZE: int
    CLIENT_DEBOUNCE_MS: int
    DEFAULT_NOTARY_FEES: float
    DEFAULT_INSPECTION_COSTS: float
    TRANSFER_TAX_RATE: float

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))

    config = Config(
        APP_NAME="CoBuy",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./cobuy.db"),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        API_HOST=os.getenv("API_HOST", "0.0.0.0"),
        API_PORT=int(os.getenv("API_PORT", "8000")),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
        NEGOTIATION_MIN_PERCENTAGE=float(os.getenv("NEGOTIATION_MIN_PERCENTAGE", "10")),
        NEGOTIATION_MAX_PERCENTAGE=float(os.getenv("NEGOTIATION_MAX_PERCENTAGE", "90")),
        NEGOTIATION_TOTAL_TOLERANCE=float(os.getenv("NEGOTIATION_TOTAL_TOLERANCE", "0.01")),
        REALTIME_HEARTBEAT_SECONDS=float(os.getenv("REALTIME_HEARTBEAT_SECONDS", "120")),
        REALTIME_QUEUE_SIZE=int(os.getenv("REALTIME_QUEUE_SIZE", "256")),
        CLIENT_DEBOUNCE_MS=int(os.getenv("CLIENT_DEBOUNCE_MS", "150")),
        DEFAULT_NOTARY_FEES=float(os.getenv("DEFAULT_NOTARY_FEES", "2500")),
        DEFAULT_INSPECTION_COSTS=float(os.getenv("DEFAULT_INSPECTION_COSTS", "750")),
        TRANSFER_TAX_RATE=float(os.getenv("TRANSFER_TAX_RATE", "0.02")),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2", "postgresql+psycopg"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite:// or postgresql:// style URL."
        )
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)

    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if not 0 <= config.NEGOTIATION_MIN_PERCENTAGE < config.NEGOTIATION_MAX_PERCENTAGE <= 100:
        raise ConfigurationError(
            "NEGOTIATION_MIN_PERCENTAGE must be lower than NEGOTIATION_MAX_PERCENTAGE, both within 0-100."
        )
    if config.NEGOTIATION_TOTAL_TOLERANCE <= 0:
        raise ConfigurationError("NEGOTIATION_TOTAL_TOLERANCE must be > 0.")
    if config.REALTIME_HEARTBEAT_SECONDS <= 0:
        raise ConfigurationError("REALTIME_HEARTBEAT_SECONDS must be > 0.")
    if config.REALTIME_QUEUE_SIZE < 1:
        raise ConfigurationError("REALTIME_QUEUE_SIZE must be >= 1.")
    if not 50 <= config.CLIENT_DEBOUNCE_MS <= 1000:
        raise ConfigurationError("CLIENT_DEBOUNCE_MS must be within 50-1000.")
    if not 0 <= config.TRANSFER_TAX_RATE < 1:
        raise ConfigurationError("TRANSFER_TAX_RATE must be within [0, 1).")
    if config.is_production and "change_me" in config.DATABASE_URL.lower():
        raise ConfigurationError("Production DATABASE_URL uses placeholder credentials.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
