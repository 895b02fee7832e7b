"""Configuration management for the storefront gateway."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from storefront_gateway.utils.http import normalize_public_base_url

_config_logger = logging.getLogger(__name__)

DEFAULT_DISTRIBUTOR_BASE_URL = "https://api.ingrammicro.com:443/sandbox"
DEFAULT_DISTRIBUTOR_OAUTH_URL = "https://api.ingrammicro.com:443/oauth/oauth30/token"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class DistributorSettings(BaseModel):
    """Credentials and fixed headers for the distributor reseller API."""

    client_id: str | None = Field(default=None)
    client_secret: str | None = Field(default=None)
    secret_key: str | None = Field(
        default=None,
        description="Sent as IM-SecretKey and used for the advisory webhook check.",
    )
    customer_number: str = Field(default="SBX")
    country_code: str = Field(default="US", min_length=2, max_length=2)
    sender_id: str = Field(default="storefront-gateway")
    base_url: str = Field(default=DEFAULT_DISTRIBUTOR_BASE_URL)
    oauth_url: str = Field(default=DEFAULT_DISTRIBUTOR_OAUTH_URL)
    timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    token_safety_margin_seconds: int = Field(default=300, ge=0, le=3600)


class PaymentSettings(BaseModel):
    secret_key: str | None = Field(default=None)
    webhook_secret: str | None = Field(default=None)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    timeout_seconds: float = Field(default=20.0, gt=0, le=120)


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/storefront_gateway.sqlite")
    sqlite_wal: bool = Field(default=True)


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1024, le=65535)
    public_base_url: str = Field(
        default="http://localhost:8080",
        description="Externally visible storefront URL used for post-payment redirects.",
    )
    cors_allowed_origins: tuple[str, ...] = Field(default=("*",))

    @field_validator("public_base_url")
    @classmethod
    def _validate_public_base_url(cls, value: str) -> str:
        return normalize_public_base_url(value)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    distributor: DistributorSettings = Field(default_factory=DistributorSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


ENV_KEYS = {
    "host": "GATEWAY_HOST",
    "port": "GATEWAY_PORT",
    "public_base_url": "PUBLIC_BASE_URL",
    "cors_allowed_origins": "CORS_ALLOWED_ORIGINS",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "distributor_client_id": "DISTRIBUTOR_CLIENT_ID",
    "distributor_client_secret": "DISTRIBUTOR_CLIENT_SECRET",
    "distributor_secret_key": "DISTRIBUTOR_SECRET_KEY",
    "distributor_customer_number": "DISTRIBUTOR_CUSTOMER_NUMBER",
    "distributor_country_code": "DISTRIBUTOR_COUNTRY_CODE",
    "distributor_sender_id": "DISTRIBUTOR_SENDER_ID",
    "distributor_base_url": "DISTRIBUTOR_BASE_URL",
    "distributor_oauth_url": "DISTRIBUTOR_OAUTH_URL",
    "distributor_timeout": "DISTRIBUTOR_TIMEOUT_SECONDS",
    "distributor_token_margin": "DISTRIBUTOR_TOKEN_SAFETY_MARGIN_SECONDS",
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "payment_currency": "PAYMENT_CURRENCY",
    "payment_timeout": "PAYMENT_TIMEOUT_SECONDS",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_str(key: str) -> str | None:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    cors_origins = _split_csv_preserve_case(os.getenv(ENV_KEYS["cors_allowed_origins"]))

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "public_base_url": (
                _env_str(ENV_KEYS["public_base_url"]) or ServerSettings().public_base_url
            ),
            "cors_allowed_origins": tuple(cors_origins) or ServerSettings().cors_allowed_origins,
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "distributor": {
            "client_id": _env_str(ENV_KEYS["distributor_client_id"]),
            "client_secret": _env_str(ENV_KEYS["distributor_client_secret"]),
            "secret_key": _env_str(ENV_KEYS["distributor_secret_key"]),
            "customer_number": (
                _env_str(ENV_KEYS["distributor_customer_number"])
                or DistributorSettings().customer_number
            ),
            "country_code": (
                _env_str(ENV_KEYS["distributor_country_code"])
                or DistributorSettings().country_code
            ),
            "sender_id": (
                _env_str(ENV_KEYS["distributor_sender_id"]) or DistributorSettings().sender_id
            ),
            "base_url": (
                _env_str(ENV_KEYS["distributor_base_url"]) or DistributorSettings().base_url
            ),
            "oauth_url": (
                _env_str(ENV_KEYS["distributor_oauth_url"]) or DistributorSettings().oauth_url
            ),
            "timeout_seconds": _env_float(
                ENV_KEYS["distributor_timeout"],
                DistributorSettings().timeout_seconds,
            ),
            "token_safety_margin_seconds": _env_int(
                ENV_KEYS["distributor_token_margin"],
                DistributorSettings().token_safety_margin_seconds,
            ),
        },
        "payment": {
            "secret_key": _env_str(ENV_KEYS["stripe_secret_key"]),
            "webhook_secret": _env_str(ENV_KEYS["stripe_webhook_secret"]),
            "currency": (
                _env_str(ENV_KEYS["payment_currency"]) or PaymentSettings().currency
            ).lower(),
            "timeout_seconds": _env_float(
                ENV_KEYS["payment_timeout"],
                PaymentSettings().timeout_seconds,
            ),
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if not settings.distributor.client_id or not settings.distributor.client_secret:
        _config_logger.warning(
            "DISTRIBUTOR_CLIENT_ID/DISTRIBUTOR_CLIENT_SECRET are not set; "
            "catalog requests will fail authentication"
        )

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
