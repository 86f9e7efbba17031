"""
tokenauth.services._shared.ports
================================

Collection of *ports* (hexagonal interfaces) that define the contracts
for token signing, credential checks, and token state storage.

These ports decouple the service layer from concrete implementations of
JWS signing, user lookup, refresh-token persistence and blacklisting.

Modules
-------
- :mod:`token_signer`:
    Defines :class:`~.TokenSigner`, :class:`~.KeyMaterial` and
    :class:`~.VerificationError`: abstraction over RS256 sign/verify.

- :mod:`credential_checker`:
    Defines :class:`~.CredentialChecker` and :class:`~.UserIdentity`:
    identifier/secret validation and identity lookup.

- :mod:`refresh_token_store`:
    Defines :class:`~.RefreshTokenStore`, :class:`~.RefreshTokenRecord`,
    :class:`~.RotationResult` and :class:`~.TokenStats`: refresh-token
    lifecycle with atomic consumption.

- :mod:`blacklist_store`:
    Defines :class:`~.TokenBlacklistStore`, :class:`~.BlacklistEntry` and
    :class:`~.BlacklistStats`: jti-based revocation and its administration.

Design Notes
------------
All these ports follow *Dependency Inversion Principle (DIP)* to keep
the service layer independent from implementation details.
Concrete adapters (PyJWT, Redis, SQLAlchemy) live under ``tokenauth.infra``;
the in-memory adapters next to each port back unit tests.
"""

from __future__ import annotations

from .blacklist_store import (
    BlacklistEntry,
    BlacklistStats,
    InMemoryTokenBlacklistStore,
    TokenBlacklistStore,
)
from .credential_checker import CredentialChecker, InMemoryCredentialChecker, UserIdentity
from .refresh_token_store import (
    InMemoryRefreshTokenStore,
    RecordStatus,
    RefreshTokenRecord,
    RefreshTokenStore,
    RotationResult,
    TokenStats,
)
from .token_signer import KeyMaterial, SigningError, TokenSigner, VerificationError

__all__ = [
    "BlacklistEntry",
    "BlacklistStats",
    "CredentialChecker",
    "InMemoryCredentialChecker",
    "InMemoryRefreshTokenStore",
    "InMemoryTokenBlacklistStore",
    "KeyMaterial",
    "RecordStatus",
    "RefreshTokenRecord",
    "RefreshTokenStore",
    "RotationResult",
    "SigningError",
    "TokenBlacklistStore",
    "TokenSigner",
    "TokenStats",
    "UserIdentity",
    "VerificationError",
]
