"""Convenience exports for application schemas."""

from __future__ import annotations

from .auth import (
    BlacklistStatsSchema,
    DeviceSchema,
    LoginSchema,
    LogoutSchema,
    RefreshSchema,
    TokenPairSchema,
    TokenStatsSchema,
)

__all__ = [
    "BlacklistStatsSchema",
    "DeviceSchema",
    "LoginSchema",
    "LogoutSchema",
    "RefreshSchema",
    "TokenPairSchema",
    "TokenStatsSchema",
]
