# download-link-service/config.py
import os
from dataclasses import dataclass

from exceptions import ConfigurationError


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    mongo_host: str = "localhost"
    mongo_port: int = 27017
    mongo_db: str = "links_db"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    session_backend: str = "memory"
    session_ttl_seconds: int = 0
    default_admin_username: str = "admin"
    default_admin_password: str = "admin123"
    download_timeout_seconds: float = 30.0
    probe_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        session_backend = os.environ.get("SESSION_BACKEND", "memory").lower()
        if session_backend not in ("memory", "redis"):
            raise ConfigurationError(
                f"SESSION_BACKEND must be 'memory' or 'redis', got {session_backend!r}"
            )
        return cls(
            mongo_host=os.environ.get("MONGO_HOST", "localhost"),
            mongo_port=_int_env("MONGO_PORT", 27017),
            mongo_db=os.environ.get("MONGO_DB", "links_db"),
            redis_host=os.environ.get("REDIS_HOST", "localhost"),
            redis_port=_int_env("REDIS_PORT", 6379),
            redis_db=_int_env("REDIS_DB", 0),
            session_backend=session_backend,
            session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 0),
            default_admin_username=os.environ.get("DEFAULT_ADMIN_USERNAME", "admin"),
            default_admin_password=os.environ.get(
                "DEFAULT_ADMIN_PASSWORD", "admin123"
            ),
            download_timeout_seconds=_float_env("DOWNLOAD_TIMEOUT_SECONDS", 30.0),
            probe_timeout_seconds=_float_env("PROBE_TIMEOUT_SECONDS", 10.0),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


def get_settings() -> Settings:
    """
    Reads settings from the environment on every call so tests can patch
    variables before the app starts.
    """
    return Settings.from_env()
