"""
Engine Settings Loader

Provides cached access to the computation engine settings for use across modules.
Credit rate, autosave window and document polling limits are read from here so
that no module carries its own hidden literal.
"""

import os
import logging
from typing import Any, Dict
from datetime import datetime

logger = logging.getLogger(__name__)

# In-memory cache with TTL
_settings_cache: Dict[str, Any] = {}
_cache_timestamp: datetime | None = None
CACHE_TTL_SECONDS = 300  # 5 minutes


# Default settings (used when no environment override is present)
DEFAULT_SETTINGS = {
    # Canonical federal credit rate (ASC-style preliminary effective rate)
    "federal_credit_rate": 0.065,
    "autosave_quiet_seconds": 2.0,
    "document_poll_interval_seconds": 5.0,
    "document_poll_timeout_seconds": 15 * 60.0,
    "additional_year_price": 297.0,
    "max_additional_years": 3,
}

# setting key -> environment variable
ENV_OVERRIDES = {
    "federal_credit_rate": "FEDERAL_CREDIT_RATE",
    "autosave_quiet_seconds": "AUTOSAVE_QUIET_SECONDS",
    "document_poll_interval_seconds": "DOCUMENT_POLL_INTERVAL_SECONDS",
    "document_poll_timeout_seconds": "DOCUMENT_POLL_TIMEOUT_SECONDS",
    "additional_year_price": "ADDITIONAL_YEAR_PRICE",
    "max_additional_years": "MAX_ADDITIONAL_YEARS",
}


def _read_env_overrides() -> Dict[str, Any]:
    overrides = {}
    for key, env_name in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = float(raw)
        except ValueError:
            logger.warning(f"Ignoring {env_name}={raw!r}: not a number")
            continue
        if value < 0:
            logger.warning(f"Ignoring {env_name}={raw!r}: must not be negative")
            continue
        overrides[key] = value
    return overrides


def get_engine_settings(force_refresh: bool = False) -> Dict[str, Any]:
    """
    Get engine settings with caching.

    Args:
        force_refresh: If True, bypass cache and re-read the environment

    Returns:
        Dict with the keys of DEFAULT_SETTINGS
    """
    global _settings_cache, _cache_timestamp

    now = datetime.utcnow()
    if not force_refresh and _settings_cache and _cache_timestamp:
        if (now - _cache_timestamp).total_seconds() < CACHE_TTL_SECONDS:
            return _settings_cache

    settings = dict(DEFAULT_SETTINGS)
    settings.update(_read_env_overrides())

    _settings_cache = settings
    _cache_timestamp = now
    return settings


def get_setting(key: str) -> Any:
    """Get a single engine setting, falling back to the default."""
    return get_engine_settings().get(key, DEFAULT_SETTINGS.get(key))


def get_federal_credit_rate() -> float:
    """The one federal credit rate every surface uses."""
    return float(get_setting("federal_credit_rate"))


def clear_settings_cache():
    """Clear the settings cache (used after env changes and in tests)."""
    global _settings_cache, _cache_timestamp
    _settings_cache = {}
    _cache_timestamp = None
