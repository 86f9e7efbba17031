"""Repositories for users, refresh-token records and blacklist entries."""

from __future__ import annotations

from tokenauth.repositories.base import BaseRepository
from tokenauth.repositories.refresh_token import RefreshTokenRepository
from tokenauth.repositories.token_blacklist import TokenBlacklistRepository
from tokenauth.repositories.user import UserRepository

__all__ = [
    "BaseRepository",
    "RefreshTokenRepository",
    "TokenBlacklistRepository",
    "UserRepository",
]
