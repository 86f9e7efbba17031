"""Rotation chains revoked after a refresh token was replayed."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tokenauth.core.extensions import db

from .base import PKMixin, ReprMixin, UTCDateTime


class RevokedTokenFamily(PKMixin, ReprMixin, db.Model):
    """
    Marker for a revoked token family.

    A refresh record stored into a marked family after the revocation is
    revoked as well. Markers are purged with the revoked records.
    """

    __tablename__ = "revoked_token_families"
    __repr_key__ = "family_id"

    family_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    revoked_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("family_id", name="uq_revoked_token_families_family_id"),)
