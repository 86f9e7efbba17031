"""Composition root: build the token and auth services from app config."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from flask import Flask, current_app

from tokenauth.core.logger import security_logger
from tokenauth.infra.jwt.pyjwt_token_signer import PyJwtTokenSigner
from tokenauth.infra.sqlalchemy.credential_checker import SQLAlchemyCredentialChecker
from tokenauth.services._shared.clock import Clock
from tokenauth.services._shared.ports import (
    CredentialChecker,
    InMemoryRefreshTokenStore,
    InMemoryTokenBlacklistStore,
    KeyMaterial,
    RefreshTokenStore,
    TokenBlacklistStore,
)
from tokenauth.services.auth.service import AuthService
from tokenauth.services.tokens.dto import TokenConfig
from tokenauth.services.tokens.service import TokenService

EXTENSION_KEY = "tokenauth"
BACKENDS = ("sqlalchemy", "redis", "memory")

logger = logging.getLogger(__name__)


def build_stores(backend: str, redis_client: Any = None) -> tuple[RefreshTokenStore, TokenBlacklistStore]:
    """
    Instantiate the refresh-token store and blacklist for a backend.

    :param backend: ``sqlalchemy``, ``redis`` or ``memory``.
    :param redis_client: Connected client, required for ``redis``.
    :raises ValueError: On an unknown backend or a missing Redis client.
    """
    if backend == "sqlalchemy":
        from tokenauth.infra.sqlalchemy.blacklist_store import SQLAlchemyTokenBlacklistStore
        from tokenauth.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore

        return SQLAlchemyRefreshTokenStore(), SQLAlchemyTokenBlacklistStore()
    if backend == "redis":
        if redis_client is None:
            raise ValueError("TOKEN_STORE_BACKEND=redis requires REDIS_URL.")
        from tokenauth.infra.redis.redis_blacklist_store import RedisTokenBlacklistStore
        from tokenauth.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore

        return RedisRefreshTokenStore(redis_client), RedisTokenBlacklistStore(redis_client)
    if backend == "memory":
        return InMemoryRefreshTokenStore(), InMemoryTokenBlacklistStore()
    raise ValueError(f"Unknown TOKEN_STORE_BACKEND {backend!r}; expected one of {BACKENDS}.")


def build_auth_service(
    config: Mapping[str, Any],
    *,
    redis_client: Any = None,
    credentials: CredentialChecker | None = None,
    clock: Clock | None = None,
    log: logging.Logger | None = None,
) -> AuthService:
    """
    Assemble :class:`AuthService` and its :class:`TokenService`.

    :param config: Flask config (or any mapping with the same keys).
    :param redis_client: Client for the ``redis`` backend.
    :param credentials: Credential checker; defaults to the ``users`` table.
    :param clock: Optional clock override.
    :param log: Security logger override.
    :raises ValueError: On invalid TTLs, missing or mismatched keys, or an
        unknown backend.
    """
    keys = KeyMaterial.from_mapping(config)
    signer = PyJwtTokenSigner()
    signer.check_keys(keys)

    token_cfg = TokenConfig.from_mapping(config)
    refresh_store, blacklist = build_stores(
        str(config.get("TOKEN_STORE_BACKEND", "sqlalchemy")).lower(), redis_client
    )
    security_log = log or security_logger()
    tokens = TokenService(
        signer=signer,
        key_material=keys,
        refresh_store=refresh_store,
        blacklist=blacklist,
        config=token_cfg,
        clock=clock,
        logger=security_log,
    )
    return AuthService(
        token_service=tokens,
        credentials=credentials or SQLAlchemyCredentialChecker(),
        config=token_cfg,
        clock=clock,
        logger=security_log,
    )


def init_app(app: Flask) -> None:
    """
    Register the auth service under ``app.extensions["tokenauth"]``.

    Without key material the app still starts (CLI, migrations) and the
    service is simply absent; any other misconfiguration is fatal.
    """
    if not (app.config.get("JWT_PUBLIC_KEY") or app.config.get("JWT_PUBLIC_KEY_PATH")):
        logger.warning("JWT keys not configured; token services disabled.")
        app.extensions.pop(EXTENSION_KEY, None)
        return

    app.extensions[EXTENSION_KEY] = build_auth_service(
        app.config, redis_client=app.extensions.get("redis_client")
    )


def get_auth_service() -> AuthService:
    """Return the auth service of the current app."""
    service = current_app.extensions.get(EXTENSION_KEY)
    if service is None:
        raise RuntimeError("Auth service is not configured. Set JWT keys and call init_app().")
    return service
