from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from auth.providers import (
    HUBSPOT_API_BASE_URL,
    HUBSPOT_AUTH_URL,
    SALESFORCE_LOGIN_URL,
    OAuthProvider,
    hubspot_provider,
    salesforce_provider,
)

from .constants import (
    DEFAULT_PORT,
    DEFAULT_SESSION_SECRET,
    LOGGER,
    SALESFORCE_API_VERSION,
)


@dataclass
class Settings:
    salesforce: OAuthProvider
    hubspot: OAuthProvider
    session_secret: str
    production: bool = False
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    http_timeout: float = 30.0
    salesforce_api_version: str = SALESFORCE_API_VERSION
    cors_origins: set[str] = field(default_factory=set)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def is_production() -> bool:
    return os.getenv("APP_ENV", "development").strip().lower() == "production"


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def parse_scopes_env(key: str) -> list[str] | None:
    raw = os.getenv(key, "").strip()
    if not raw:
        return None
    return raw.replace(",", " ").split()


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def load_settings() -> Settings:
    port = _get_env_int("PORT", DEFAULT_PORT)
    production = is_production()

    salesforce = salesforce_provider(
        client_id=os.getenv("SF_CLIENT_ID", "").strip(),
        client_secret=os.getenv("SF_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv(
            "SF_REDIRECT_URI", f"http://localhost:{port}/api/sf/auth/callback"
        ).strip(),
        instance_url=os.getenv("SF_INSTANCE_URL", SALESFORCE_LOGIN_URL).strip(),
        scopes=parse_scopes_env("SF_SCOPES"),
        probe_authorize_url=is_truthy(os.getenv("SF_PROBE_AUTH_URL", "1")),
    )
    hubspot = hubspot_provider(
        client_id=os.getenv("HUBSPOT_CLIENT_ID", "").strip(),
        client_secret=os.getenv("HUBSPOT_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv(
            "HUBSPOT_REDIRECT_URI", f"http://localhost:{port}/api/hs/auth/callback"
        ).strip(),
        auth_url=os.getenv("HUBSPOT_AUTH_URL", HUBSPOT_AUTH_URL).strip(),
        api_base_url=os.getenv("HUBSPOT_API_BASE_URL", HUBSPOT_API_BASE_URL).strip(),
        scopes=parse_scopes_env("HUBSPOT_SCOPES"),
    )

    session_secret = os.getenv("SESSION_SECRET", "").strip()
    if not session_secret:
        LOGGER.warning("SESSION_SECRET is not set; using an insecure fallback secret.")
        session_secret = DEFAULT_SESSION_SECRET

    return Settings(
        salesforce=salesforce,
        hubspot=hubspot,
        session_secret=session_secret,
        production=production,
        host=os.getenv("HOST", "127.0.0.1"),
        port=port,
        http_timeout=_get_env_float("HTTP_TIMEOUT", 30.0),
        salesforce_api_version=os.getenv("SF_API_VERSION", SALESFORCE_API_VERSION).strip(),
        cors_origins=parse_csv_env("CORS_ORIGINS"),
    )


def log_provider_configuration(provider: OAuthProvider) -> None:
    LOGGER.info(
        "%s OAuth configuration client_id=%s client_secret=%s redirect_uri=%s",
        provider.name,
        "provided" if provider.client_id else "MISSING",
        "provided" if provider.client_secret else "MISSING",
        provider.redirect_uri,
    )
    if not provider.is_configured:
        LOGGER.warning(
            "%s login disabled until %s are set",
            provider.name,
            ", ".join(provider.missing_settings()),
        )


def setup_logging() -> bool:
    debug_enabled = not is_production()
    level = logging.INFO if debug_enabled else logging.WARNING
    logging.basicConfig(level=level)
    logging.getLogger("crmproxy").setLevel(level)
    return debug_enabled
