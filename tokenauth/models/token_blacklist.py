"""Blacklisted token identifiers, kept until the token would have expired."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Enum, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tokenauth.core.extensions import db

from .base import PKMixin, ReprMixin, UTCDateTime

TokenType = Enum("access", "refresh", name="token_type")


class TokenBlacklist(PKMixin, ReprMixin, db.Model):
    """
    One revoked jti.

    Rows are purged by cleanup once ``expires_at`` has passed, since the token
    would fail signature-time expiry checks anyway.
    """

    __tablename__ = "token_blacklist"
    __repr_key__ = "jti"

    jti: Mapped[str] = mapped_column(String(64), nullable=False)
    token_type: Mapped[str] = mapped_column(TokenType, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    blacklisted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("jti", name="uq_token_blacklist_jti"),
        Index("ix_token_blacklist_user", "user_id"),
        Index("ix_token_blacklist_expires_at", "expires_at"),
    )
