from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # Payment provider (billing credential charge API)
    payment_secret_key: str | None = None
    payment_api_base_url: str = "https://api.tosspayments.com"
    payment_timeout_seconds: float = 10.0
    billing_currency: str = "KRW"

    # Renewal engine
    grace_period_days: int = 7
    renewal_lookahead_hours: int = 24
    renewal_concurrency: int = 4
    renewal_lock_ttl_seconds: int = 300
    renewal_interval_seconds: int = 86400

    # Entitlement resolver
    entitlement_cache_ttl_seconds: int = 30

    # Bearer token verification (tokens are issued by the auth service)
    jwt_public_key: str | None = None
    jwt_issuer: str = "auth-service"
    jwt_audience: str = "billing-service"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    log_json = _getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")
    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    currency = _getenv("BILLING_CURRENCY", "KRW").upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"BILLING_CURRENCY must be an ISO-4217 code (got {currency!r})")

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        payment_secret_key=_getenv("PAYMENT_SECRET_KEY", "") or None,
        payment_api_base_url=_getenv(
            "PAYMENT_API_BASE_URL", "https://api.tosspayments.com"
        ).rstrip("/"),
        payment_timeout_seconds=_getenv_float("PAYMENT_TIMEOUT_SECONDS", 10.0),
        billing_currency=currency,
        grace_period_days=_getenv_int("GRACE_PERIOD_DAYS", 7, minimum=1),
        renewal_lookahead_hours=_getenv_int("RENEWAL_LOOKAHEAD_HOURS", 24),
        renewal_concurrency=_getenv_int("RENEWAL_CONCURRENCY", 4, minimum=1),
        renewal_lock_ttl_seconds=_getenv_int("RENEWAL_LOCK_TTL_SECONDS", 300, minimum=1),
        renewal_interval_seconds=_getenv_int(
            "RENEWAL_INTERVAL_SECONDS", 86400, minimum=60
        ),
        entitlement_cache_ttl_seconds=_getenv_int("ENTITLEMENT_CACHE_TTL_SECONDS", 30),
        jwt_public_key=os.environ.get("JWT_PUBLIC_KEY") or None,
        jwt_issuer=_getenv("JWT_ISSUER", "auth-service"),
        jwt_audience=_getenv("JWT_AUDIENCE", "billing-service"),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
