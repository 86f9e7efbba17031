"""Refresh-token lifecycle records (one row per issued refresh token)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tokenauth.core.extensions import db

from .base import PKMixin, ReprMixin, UTCDateTime

# --- Domain Enums ---
RefreshTokenStatus = Enum("active", "used", "revoked", name="refresh_token_status")


class RefreshToken(PKMixin, ReprMixin, db.Model):
    """
    Server-side state of a refresh token.

    The raw token is never stored, only its SHA-256 hex digest. ``user_id`` is
    kept as a string because identities come from an external credential
    checker and are carried in the ``sub`` claim.

    Fields
    ------
    jti : str
        Token identifier (unique).
    user_id : str
        Owner identity.
    token_hash : str
        SHA-256 hex digest of the encoded refresh token.
    device_id, device_name, ip_address, user_agent, platform, browser
        Device the token is bound to.
    status : str
        ``active`` until consumed (``used``) or revoked (``revoked``).
    family_id : str
        jti of the first token of the rotation chain.
    parent_jti : str | None
        jti of the token this one was rotated from.
    created_at, expires_at, used_at, revoked_at : datetime
        Lifecycle timestamps (UTC).
    revoked_reason : str | None
        Why the token was revoked.
    """

    __tablename__ = "refresh_tokens"
    __repr_key__ = "jti"

    jti: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    device_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    platform: Mapped[str | None] = mapped_column(String(64), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(RefreshTokenStatus, nullable=False, default="active")
    family_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_jti: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("jti", name="uq_refresh_tokens_jti"),
        CheckConstraint("expires_at > created_at", name="expiry_after_creation"),
        Index("ix_refresh_tokens_user_status", "user_id", "status"),
        Index("ix_refresh_tokens_user_device", "user_id", "device_id"),
        Index("ix_refresh_tokens_family", "family_id"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )
