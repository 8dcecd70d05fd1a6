# pulse_backend/utils/config.py
"""
Deploy-time configuration.

Values come from the process environment first, then from config/.env at the
repository root. Every threshold, TTL and limiter budget used by the core
components is read here and injected at construction time.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

CFG_PATH = Path(__file__).resolve().parents[2] / "config" / ".env"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be parsed."""


def _load_file_config(path: Path = CFG_PATH) -> Dict[str, Optional[str]]:
    return dotenv_values(str(path)) if path.exists() else {}


def _int(source: Mapping[str, Optional[str]], name: str, default: int) -> int:
    raw = source.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must be >= 0, got {value}")
    return value


def _parse_product_tiers(raw: Optional[str]) -> Dict[str, str]:
    """Parse "prod_a:pro,prod_b:elite" into a product -> tier map."""
    tiers: Dict[str, str] = {}
    if not raw:
        return tiers
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        product, sep, tier = item.partition(":")
        if not sep or not product.strip() or not tier.strip():
            raise ConfigError(f"STRIPE_PRODUCT_TIERS entry {item!r} must look like product_id:tier")
        tiers[product.strip()] = tier.strip()
    return tiers


@dataclass(frozen=True)
class Settings:
    environment: str = "development"

    # Provider health tracker
    error_threshold_degraded: int = 2
    error_threshold_unhealthy: int = 5
    error_window_ms: int = 300_000
    recovery_time_ms: int = 120_000
    health_sweep_interval_ms: int = 30_000
    health_auto_sweep: bool = True

    # Market data cache TTLs
    quotes_ttl_ms: int = 30_000
    candles_ttl_ms: int = 300_000
    technical_ttl_ms: int = 300_000

    # Endpoint limiters (requests per window)
    subscription_status_max_requests: int = 10
    checkout_max_requests: int = 5
    market_data_max_requests: int = 60
    general_max_requests: int = 100
    rate_limit_window_ms: int = 60_000
    rate_limit_gc_threshold: int = 1000

    # Upstream market data
    finnhub_api_key: Optional[str] = None
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    upstream_timeout_seconds: float = 10.0
    upstream_max_retries: int = 2

    # Billing
    stripe_secret_key: Optional[str] = None
    stripe_product_tiers: Dict[str, str] = field(default_factory=dict)
    app_origin: str = "http://localhost:5173"

    # Auth / HTTP
    jwt_secret_key: str = "change-me-in-production"
    allowed_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])


def load_settings(overrides: Optional[Mapping[str, Optional[str]]] = None) -> Settings:
    """
    Build Settings from config/.env, the environment and optional overrides.

    Args:
        overrides: Highest-priority raw values (used by tests and scripts)

    Returns:
        Frozen Settings instance

    Raises:
        ConfigError: if a numeric or mapping value is malformed
    """
    source: Dict[str, Optional[str]] = dict(_load_file_config())
    source.update({k: v for k, v in os.environ.items()})
    if overrides:
        source.update(overrides)

    origins = source.get("ALLOWED_ORIGINS") or "http://localhost:5173"

    return Settings(
        environment=source.get("ENVIRONMENT") or "development",
        error_threshold_degraded=_int(source, "HEALTH_ERROR_THRESHOLD_DEGRADED", 2),
        error_threshold_unhealthy=_int(source, "HEALTH_ERROR_THRESHOLD_UNHEALTHY", 5),
        error_window_ms=_int(source, "HEALTH_ERROR_WINDOW_MS", 300_000),
        recovery_time_ms=_int(source, "HEALTH_RECOVERY_TIME_MS", 120_000),
        health_sweep_interval_ms=_int(source, "HEALTH_SWEEP_INTERVAL_MS", 30_000),
        health_auto_sweep=(source.get("HEALTH_AUTO_SWEEP") or "true").lower() not in ("0", "false", "no"),
        quotes_ttl_ms=_int(source, "CACHE_QUOTES_TTL_MS", 30_000),
        candles_ttl_ms=_int(source, "CACHE_CANDLES_TTL_MS", 300_000),
        technical_ttl_ms=_int(source, "CACHE_TECHNICAL_TTL_MS", 300_000),
        subscription_status_max_requests=_int(source, "RATE_LIMIT_SUBSCRIPTION_STATUS", 10),
        checkout_max_requests=_int(source, "RATE_LIMIT_CHECKOUT", 5),
        market_data_max_requests=_int(source, "RATE_LIMIT_MARKET_DATA", 60),
        general_max_requests=_int(source, "RATE_LIMIT_GENERAL", 100),
        rate_limit_window_ms=_int(source, "RATE_LIMIT_WINDOW_MS", 60_000),
        rate_limit_gc_threshold=_int(source, "RATE_LIMIT_GC_THRESHOLD", 1000),
        finnhub_api_key=source.get("FINNHUB_API_KEY") or None,
        finnhub_base_url=source.get("FINNHUB_BASE_URL") or "https://finnhub.io/api/v1",
        upstream_max_retries=_int(source, "UPSTREAM_MAX_RETRIES", 2),
        stripe_secret_key=source.get("STRIPE_SECRET_KEY") or None,
        stripe_product_tiers=_parse_product_tiers(source.get("STRIPE_PRODUCT_TIERS")),
        app_origin=source.get("APP_ORIGIN") or "http://localhost:5173",
        jwt_secret_key=source.get("JWT_SECRET_KEY") or "change-me-in-production",
        allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )


# Required environment variables (must be set outside development)
REQUIRED_ENV_VARS = [
    "JWT_SECRET_KEY",
    "FINNHUB_API_KEY",
    "STRIPE_SECRET_KEY",
]

# Optional but recommended
RECOMMENDED_ENV_VARS = [
    "STRIPE_PRODUCT_TIERS",
    "ALLOWED_ORIGINS",
    "APP_ORIGIN",
]


def validate_env_vars(source: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, List[str]]:
    """
    Report missing required and recommended variables.

    Never raises; the caller decides whether to log or abort.
    """
    if source is None:
        source = {**_load_file_config(), **os.environ}
    missing_required = [name for name in REQUIRED_ENV_VARS if not source.get(name)]
    missing_recommended = [name for name in RECOMMENDED_ENV_VARS if not source.get(name)]
    return {
        "missing_required": missing_required,
        "missing_recommended": missing_recommended,
    }
