"""Service layer public API.

This package exposes the essential building blocks for the service layer so that
callers can import from :mod:`tokenauth.services` without knowing internal structure.

Re-exports
----------
- Base primitives (from ``tokenauth.services._shared.base``)
    * :class:`BaseService`

- Shared DTOs (from ``tokenauth.services._shared.dto``)
    * :class:`DeviceFingerprint`
    * :class:`RevocationReason`
    * :class:`TokenKind`

- Token service (from ``tokenauth.services.tokens``)
    * :class:`TokenService`
    * DTOs: :class:`TokenConfig`, :class:`TokenPair`, :class:`JwtPayload`

- Auth service (from ``tokenauth.services.auth``)
    * :class:`AuthService`
    * DTOs: :class:`LoginIn`, :class:`RefreshIn`, :class:`LogoutIn`,
      :class:`LoginOut`, :class:`RefreshOut`, :class:`UserFromTokenOut`
"""

from __future__ import annotations

# Base primitives
from ._shared.base import BaseService

# Shared DTOs
from ._shared.dto import DeviceFingerprint, RevocationReason, TokenKind

# Auth service + DTOs
from .auth.dto import LoginIn, LoginOut, LogoutIn, RefreshIn, RefreshOut, UserFromTokenOut
from .auth.service import AuthService

# Token service + DTOs
from .tokens.dto import JwtPayload, TokenConfig, TokenPair
from .tokens.service import TokenService

__all__ = [
    # Base
    "BaseService",
    # Shared DTOs
    "DeviceFingerprint",
    "RevocationReason",
    "TokenKind",
    # Tokens
    "TokenService",
    "TokenConfig",
    "TokenPair",
    "JwtPayload",
    # Auth
    "AuthService",
    "LoginIn",
    "RefreshIn",
    "LogoutIn",
    "LoginOut",
    "RefreshOut",
    "UserFromTokenOut",
]
