"""Application settings with environment-based simple classes."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Final

from dotenv import load_dotenv

# Public selector env var (keep neutral name to avoid collisions)
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'


# Loads .env in development (no-op when the file is missing)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    """Parse an integer setting from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: int
        Value returned when the variable is unset or blank.

    Returns
    -------
    int
        Parsed value.

    Raises
    ------
    ValueError
        If the variable is set but is not an integer.
    """
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {val!r}") from exc


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    SECRET_KEY: str
        Flask secret used for session signing.
    SQLALCHEMY_DATABASE_URI: str
        Database connection string consumed by SQLAlchemy.
    SQLALCHEMY_TRACK_MODIFICATIONS: bool
        Disabled to avoid extra overhead from the event system.
    SQLALCHEMY_ECHO: bool
        When ``True`` SQLAlchemy logs SQL statements for debugging.
    REDIS_URL: str | None
        Redis connection string. Required when ``TOKEN_STORE_BACKEND`` is
        ``"redis"``.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).
    JWT_ALGORITHM: str
        Asymmetric signing algorithm (``RS256``).
    JWT_ACCESS_TOKEN_TTL: int
        Access token lifetime in seconds.
    JWT_REFRESH_TOKEN_TTL: int
        Refresh token lifetime in seconds.
    JWT_ISSUER: str
        Value of the ``iss`` claim; verified on every decode.
    JWT_AUDIENCE: str
        Value of the ``aud`` claim; verified on every decode.
    JWT_LEEWAY: int
        Clock skew tolerated by ``exp``/``nbf``/``iat`` checks, in seconds.
    JWT_PRIVATE_KEY, JWT_PUBLIC_KEY: str | None
        PEM key material given inline.
    JWT_PRIVATE_KEY_PATH, JWT_PUBLIC_KEY_PATH: str | None
        PEM key files, used when the inline variants are unset.
    AUTH_MAX_ACTIVE_REFRESH_TOKENS: int
        Ceiling of concurrent sessions per user; the oldest one is evicted.
    AUTH_CHECK_ACCESS_BLACKLIST: bool
        Reject blacklisted access tokens during validation.
    AUTH_ENFORCE_DEVICE_BINDING: bool
        Require the refreshing device to match the one bound at issuance.
    AUTH_REVOKE_FAMILY_ON_REUSE: bool
        Revoke the whole token family when a rotated token is replayed.
    TOKEN_STORE_BACKEND: str
        ``"sqlalchemy"`` (default), ``"redis"`` or ``"memory"``.

    Notes
    -----
    Values are primarily sourced from environment variables, enabling
    configuration without code changes.
    """

    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")

    # DB / cache
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    REDIS_URL = os.getenv("REDIS_URL")

    # Flask & JSON
    JSON_SORT_KEYS = False
    PROPAGATE_EXCEPTIONS = False

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # JWT
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "RS256")
    JWT_ACCESS_TOKEN_TTL = env_int("JWT_ACCESS_TOKEN_TTL", 900)
    JWT_REFRESH_TOKEN_TTL = env_int("JWT_REFRESH_TOKEN_TTL", 604800)
    JWT_ISSUER = os.getenv("JWT_ISSUER", "tokenauth")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "tokenauth-clients")
    JWT_LEEWAY = env_int("JWT_LEEWAY", 0)
    JWT_PRIVATE_KEY = os.getenv("JWT_PRIVATE_KEY")
    JWT_PUBLIC_KEY = os.getenv("JWT_PUBLIC_KEY")
    JWT_PRIVATE_KEY_PATH = os.getenv("JWT_PRIVATE_KEY_PATH")
    JWT_PUBLIC_KEY_PATH = os.getenv("JWT_PUBLIC_KEY_PATH")

    # Session policy
    AUTH_MAX_ACTIVE_REFRESH_TOKENS = env_int("AUTH_MAX_ACTIVE_REFRESH_TOKENS", 50)
    AUTH_CHECK_ACCESS_BLACKLIST = env_bool("AUTH_CHECK_ACCESS_BLACKLIST", True)
    AUTH_ENFORCE_DEVICE_BINDING = env_bool("AUTH_ENFORCE_DEVICE_BINDING", False)
    AUTH_REVOKE_FAMILY_ON_REUSE = env_bool("AUTH_REVOKE_FAMILY_ON_REUSE", True)
    TOKEN_STORE_BACKEND = os.getenv("TOKEN_STORE_BACKEND", "sqlalchemy")

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development.

    Notes
    -----
    Enables debug mode by default and honors ``SQLALCHEMY_ECHO`` for verbose
    SQL logging when requested.
    """

    DEBUG = env_bool("FLASK_DEBUG", True)
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Forces ``TESTING`` mode and disables debug logs.
    - Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    - Keeps tokens in process memory so no Redis server is needed.
    - Propagates exceptions so pytest can surface tracebacks directly.
    """

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    TOKEN_STORE_BACKEND = "memory"
    REDIS_URL = None
    PROPAGATE_EXCEPTIONS = True


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments.

    Notes
    -----
    Keeps debug and SQL echoing disabled while relying on WSGI-level log
    configuration for noise control.
    """

    DEBUG = False
    SQLALCHEMY_ECHO = False
    PROPAGATE_EXCEPTIONS = False


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Returns
    -------
    type[BaseConfig]
        Class to pass to :meth:`flask.Config.from_object`.

    Notes
    -----
    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)
