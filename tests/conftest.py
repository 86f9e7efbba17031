"""Pytest fixtures configuring an isolated transactional database layer.

Each test runs inside a SAVEPOINT-backed transaction against an in-memory
SQLite database so data changes never leak between cases. Token services are
wired to in-memory stores, a frozen clock and a real RS256 key pair.
"""

from __future__ import annotations

import os

import pytest
from sqlalchemy import event
from sqlalchemy.orm import scoped_session, sessionmaker
from tokenauth.core.extensions import db as _db  # Flask-SQLAlchemy instance
from tokenauth.factory import create_app  # application factory under test
from tokenauth.infra.jwt.pyjwt_token_signer import PyJwtTokenSigner
from tokenauth.services._shared.dto import DeviceFingerprint
from tokenauth.services._shared.ports import (
    InMemoryCredentialChecker,
    InMemoryRefreshTokenStore,
    InMemoryTokenBlacklistStore,
    KeyMaterial,
    UserIdentity,
)
from tokenauth.services.auth.service import AuthService
from tokenauth.services.tokens.dto import TokenConfig
from tokenauth.services.tokens.service import TokenService

from tests.helpers.keys import rsa_pem_pair
from tests.helpers.utils import FrozenClock

PRIVATE_PEM, PUBLIC_PEM = rsa_pem_pair()


class TestConfig:
    """Testing configuration for creating the Flask app.

    Notes
    -----
    - Uses an in-memory SQLite database for speed.
    - Keeps refresh tokens and the blacklist in process memory.
    - Avoids hitting external services (no Redis).
    """

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = None
    TOKEN_STORE_BACKEND = "memory"
    JWT_ALGORITHM = "RS256"
    JWT_PRIVATE_KEY = PRIVATE_PEM
    JWT_PUBLIC_KEY = PUBLIC_PEM
    JWT_ISSUER = "tokenauth-test"
    JWT_AUDIENCE = "tokenauth-test-clients"
    JWT_ACCESS_TOKEN_TTL = 900
    JWT_REFRESH_TOKEN_TTL = 604800
    AUTH_MAX_ACTIVE_REFRESH_TOKENS = 50
    LOG_LEVEL = "WARNING"


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing.

    Returns
    -------
    flask.Flask
        Application instance with :class:`TestConfig` applied and logging
        noise reduced.
    """
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    app = create_app(TestConfig)
    app.logger.setLevel("WARNING")
    return app


@pytest.fixture(scope="session")
def db(app):
    """Create database tables once per test session.

    Parameters
    ----------
    app: flask.Flask
        Application fixture ensuring the Flask context is available.

    Yields
    ------
    flask_sqlalchemy.SQLAlchemy
        Database extension bound to the testing application.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="session")
def connection(db):
    """Keep a dedicated DBAPI connection open for the whole session.

    Parameters
    ----------
    db: flask_sqlalchemy.SQLAlchemy
        Database extension used to retrieve the engine.

    Yields
    ------
    sqlalchemy.engine.Connection
        Connection reused by nested transactions in each test.
    """
    conn = db.engine.connect()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def session(db, connection):
    """Provide a SQLAlchemy session wrapped in a nested transaction.

    Parameters
    ----------
    db: flask_sqlalchemy.SQLAlchemy
        Database extension whose ``session`` attribute is temporarily
        reassigned.
    connection: sqlalchemy.engine.Connection
        Shared connection maintaining the outer transaction.

    Yields
    ------
    sqlalchemy.orm.scoping.scoped_session
        Scoped session bound to the shared connection; automatically rolled
        back after each test.

    Notes
    -----
    The fixture mirrors the SQLAlchemy 2.0 pattern for transactional tests: it
    begins a top-level transaction, starts a SAVEPOINT per test, and reinstalls
    the SAVEPOINT whenever SQLAlchemy ends one.
    """
    # 1) Top-level transaction
    top_trans = connection.begin()

    # 2) Scoped session bound to the connection
    SessionFactory = sessionmaker(bind=connection, future=True)
    scoped = scoped_session(SessionFactory)

    # 3) SAVEPOINT per test
    nested = connection.begin_nested()

    # 4) Re-create SAVEPOINT when the previous nested transaction ends
    @event.listens_for(scoped(), "after_transaction_end")
    def _restart_savepoint(sess, trans):  # pragma: no cover
        if trans.nested and not trans._parent.nested:
            nonlocal nested
            nested = connection.begin_nested()

    # 5) Monkey-patch db.session so app code uses this scoped session
    original_session = db.session
    db.session.remove()
    db.session = scoped

    try:
        yield scoped
    finally:
        scoped.remove()
        db.session = original_session
        top_trans.rollback()


@pytest.fixture(scope="session")
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk


# -- Hook up Factory Boy to pytest SQLAlchemy session --------------------------
@pytest.fixture(autouse=True)
def _factories_session(session):
    """Wire Factory Boy's session helper to the transactional session fixture."""
    from tests.factories import SQLAlchemySession

    SQLAlchemySession.set(session)
    yield


# -- Token service wiring -------------------------------------------------------
@pytest.fixture()
def clock() -> FrozenClock:
    """Frozen UTC clock shared by services under test."""
    return FrozenClock()


@pytest.fixture(scope="session")
def key_material() -> KeyMaterial:
    return KeyMaterial(public_key=PUBLIC_PEM, private_key=PRIVATE_PEM)


@pytest.fixture(scope="session")
def signer() -> PyJwtTokenSigner:
    return PyJwtTokenSigner()


@pytest.fixture()
def token_config() -> TokenConfig:
    return TokenConfig(issuer="tokenauth-test", audience="tokenauth-test-clients")


@pytest.fixture()
def refresh_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture()
def blacklist() -> InMemoryTokenBlacklistStore:
    return InMemoryTokenBlacklistStore()


@pytest.fixture()
def token_service(signer, key_material, refresh_store, blacklist, token_config, clock):
    """TokenService over in-memory stores and a frozen clock."""
    return TokenService(
        signer=signer,
        key_material=key_material,
        refresh_store=refresh_store,
        blacklist=blacklist,
        config=token_config,
        clock=clock,
    )


@pytest.fixture()
def credentials() -> InMemoryCredentialChecker:
    """Checker holding one active user ``u-1`` (alice) and one disabled ``u-2``."""
    checker = InMemoryCredentialChecker()
    checker.register(
        UserIdentity(
            user_id="u-1",
            email="alice@example.com",
            role="admin",
            permissions=("tokens:read", "tokens:write"),
        ),
        "s3cret!",
        "alice",
    )
    checker.register(
        UserIdentity(user_id="u-2", email="bob@example.com", is_active=False), "s3cret!"
    )
    return checker


@pytest.fixture()
def auth_service(token_service, credentials) -> AuthService:
    return AuthService(token_service=token_service, credentials=credentials)


@pytest.fixture()
def device() -> DeviceFingerprint:
    return DeviceFingerprint(
        device_id="device-1",
        ip_address="203.0.113.7",
        device_name="Alice's laptop",
        user_agent="Mozilla/5.0",
        platform="linux",
        browser="firefox",
    )


@pytest.fixture()
def other_device() -> DeviceFingerprint:
    return DeviceFingerprint(device_id="device-2", ip_address="2001:db8::1")


@pytest.fixture()
def make_app():
    """Build a throwaway app with :class:`TestConfig` plus ``overrides``."""

    def _make(**overrides):
        return create_app(type("OverrideConfig", (TestConfig,), overrides))

    return _make
