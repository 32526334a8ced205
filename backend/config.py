import os
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def build_config(overrides: Optional[Dict] = None) -> Dict:
    """Collect settings from the environment (and ``.env``), then ``overrides``.

    Raises ``ConfigurationError`` when no signing secret is available so the
    process never starts without one.
    """
    load_dotenv()

    cors_origins = [
        origin.strip()
        for origin in (os.getenv("CORS_ALLOWED_ORIGINS") or "").split(",")
        if origin.strip()
    ]

    config = {
        "JWT_SECRET_KEY": (os.getenv("JWT_SECRET_KEY") or "").strip(),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(hours=_int_env("TOKEN_TTL_HOURS", 24)),
        "REGISTRATION_TOKEN_EXPIRES": timedelta(
            days=_int_env("REGISTRATION_TOKEN_TTL_DAYS", 7)
        ),
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/storefront"),
        "SEARCH_DEFAULT_LIMIT": _int_env("SEARCH_DEFAULT_LIMIT", 1000),
        "CORS_ALLOWED_ORIGINS": cors_origins or "*",
        "LOG_LEVEL": (os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    }
    if overrides:
        config.update(overrides)

    if not str(config.get("JWT_SECRET_KEY") or "").strip():
        raise ConfigurationError(
            "JWT_SECRET_KEY is not set; refusing to start without a signing secret."
        )
    for key in ("JWT_ACCESS_TOKEN_EXPIRES", "REGISTRATION_TOKEN_EXPIRES"):
        lifetime = config.get(key)
        if not isinstance(lifetime, timedelta) or lifetime <= timedelta(0):
            raise ConfigurationError(f"{key} must be a positive duration, got {lifetime!r}")
    return config
