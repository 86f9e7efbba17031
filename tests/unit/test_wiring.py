"""Tests for assembling the auth service from configuration."""

from __future__ import annotations

import fakeredis
import pytest
from tokenauth.infra.redis.redis_blacklist_store import RedisTokenBlacklistStore
from tokenauth.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from tokenauth.infra.sqlalchemy.blacklist_store import SQLAlchemyTokenBlacklistStore
from tokenauth.infra.sqlalchemy.credential_checker import SQLAlchemyCredentialChecker
from tokenauth.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore
from tokenauth.services._shared.ports import (
    InMemoryCredentialChecker,
    InMemoryRefreshTokenStore,
    InMemoryTokenBlacklistStore,
)
from tokenauth.services.auth.service import AuthService
from tokenauth.wiring import EXTENSION_KEY, build_auth_service, build_stores, get_auth_service

from tests.helpers.keys import rsa_pem_pair


def _config(**overrides):
    private_pem, public_pem = rsa_pem_pair()
    config = {
        "JWT_PRIVATE_KEY": private_pem,
        "JWT_PUBLIC_KEY": public_pem,
        "JWT_ISSUER": "wiring-test",
        "JWT_AUDIENCE": "wiring-clients",
        "TOKEN_STORE_BACKEND": "memory",
    }
    config.update(overrides)
    return config


class TestBuildStores:
    def test_memory(self):
        refresh, blacklist = build_stores("memory")
        assert isinstance(refresh, InMemoryRefreshTokenStore)
        assert isinstance(blacklist, InMemoryTokenBlacklistStore)

    def test_sqlalchemy(self):
        refresh, blacklist = build_stores("sqlalchemy")
        assert isinstance(refresh, SQLAlchemyRefreshTokenStore)
        assert isinstance(blacklist, SQLAlchemyTokenBlacklistStore)

    def test_redis(self):
        client = fakeredis.FakeRedis()
        refresh, blacklist = build_stores("redis", client)
        assert isinstance(refresh, RedisRefreshTokenStore)
        assert isinstance(blacklist, RedisTokenBlacklistStore)

    def test_redis_without_client(self):
        with pytest.raises(ValueError, match="REDIS_URL"):
            build_stores("redis")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown TOKEN_STORE_BACKEND"):
            build_stores("mongo")


class TestBuildAuthService:
    def test_builds_service_from_config(self):
        service = build_auth_service(_config(AUTH_MAX_ACTIVE_REFRESH_TOKENS=5))

        assert isinstance(service, AuthService)
        assert isinstance(service.credentials, SQLAlchemyCredentialChecker)
        assert service.cfg.issuer == "wiring-test"
        assert service.cfg.max_active_refresh_tokens == 5
        assert isinstance(service.tokens.refresh_store, InMemoryRefreshTokenStore)

    def test_backend_name_is_case_insensitive(self):
        service = build_auth_service(_config(TOKEN_STORE_BACKEND="Memory"))
        assert isinstance(service.tokens.blacklist, InMemoryTokenBlacklistStore)

    def test_credentials_override(self):
        checker = InMemoryCredentialChecker()
        service = build_auth_service(_config(), credentials=checker)
        assert service.credentials is checker

    def test_mismatched_keys_rejected(self):
        _, other_public = rsa_pem_pair("other")
        with pytest.raises(ValueError):
            build_auth_service(_config(JWT_PUBLIC_KEY=other_public))

    def test_missing_public_key_rejected(self):
        with pytest.raises(ValueError, match="JWT_PUBLIC_KEY"):
            build_auth_service(_config(JWT_PUBLIC_KEY=None))


class TestInitApp:
    def test_service_registered(self, app):
        assert isinstance(app.extensions[EXTENSION_KEY], AuthService)
        assert get_auth_service() is app.extensions[EXTENSION_KEY]

    def test_missing_keys_leave_service_absent(self, make_app):
        bare = make_app(JWT_PRIVATE_KEY=None, JWT_PUBLIC_KEY=None)

        assert EXTENSION_KEY not in bare.extensions
        with bare.app_context(), pytest.raises(RuntimeError, match="not configured"):
            get_auth_service()

    def test_unknown_backend_is_fatal(self, make_app):
        with pytest.raises(ValueError):
            make_app(TOKEN_STORE_BACKEND="mongo")
