"""Refresh-token repository: row lookups and set-based state transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from sqlalchemy import ColumnElement, case, delete, func, select, update

from tokenauth.models.refresh_token import RefreshToken
from tokenauth.models.revoked_token_family import RevokedTokenFamily
from tokenauth.repositories.base import BaseRepository

ACTIVE = "active"
USED = "used"
REVOKED = "revoked"


class RefreshTokenRepository(BaseRepository[RefreshToken]):
    """Persistence-only repository for :class:`RefreshToken`.

    State transitions are single ``UPDATE`` statements guarded by the current
    status, so the affected row count tells the caller whether it won.
    """

    model = RefreshToken

    # ---------------------------- Lookups ----------------------------

    def get_by_jti(self, jti: str) -> RefreshToken | None:
        stmt = select(RefreshToken).where(RefreshToken.jti == jti)
        return cast(RefreshToken | None, self.session.execute(stmt).scalars().first())

    def list_unexpired_for_user(
        self, user_id: str, *, now: datetime, active_only: bool = True
    ) -> list[RefreshToken]:
        """Return the user's unexpired rows, oldest first.

        :param user_id: Owner identity.
        :type user_id: str
        :param now: Reference instant for expiry.
        :type now: datetime
        :param active_only: Skip ``used``/``revoked`` rows.
        :type active_only: bool
        :returns: Rows ordered by ``created_at`` then ``id``.
        :rtype: list[RefreshToken]
        """
        stmt = select(RefreshToken).where(
            RefreshToken.user_id == user_id, RefreshToken.expires_at > now
        )
        if active_only:
            stmt = stmt.where(RefreshToken.status == ACTIVE)
        stmt = stmt.order_by(RefreshToken.created_at.asc(), RefreshToken.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    # ---------------------------- Transitions ----------------------------

    def mark_used(self, jti: str, *, now: datetime, device_id: str | None = None) -> bool:
        """Flip an active, unexpired row to ``used`` in one conditional UPDATE.

        :param jti: Refresh token id.
        :type jti: str
        :param now: Consumption instant; rows expiring at or before it are skipped.
        :type now: datetime
        :param device_id: When given, the row must be bound to this device.
        :type device_id: str | None
        :returns: ``True`` only for the caller whose UPDATE matched the row.
        :rtype: bool
        """
        criteria: list[ColumnElement[bool]] = [
            RefreshToken.jti == jti,
            RefreshToken.status == ACTIVE,
            RefreshToken.expires_at > now,
        ]
        if device_id is not None:
            criteria.append(RefreshToken.device_id == device_id)
        stmt = (
            update(RefreshToken)
            .where(*criteria)
            .values(status=USED, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def revoke_where(self, *criteria: ColumnElement[bool], reason: str, now: datetime) -> int:
        """Revoke every active row matching ``criteria``.

        :returns: Number of rows revoked.
        :rtype: int
        """
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.status == ACTIVE, *criteria)
            .values(status=REVOKED, revoked_at=now, revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return int(self.session.execute(stmt).rowcount or 0)

    # ---------------------------- Families ----------------------------

    def mark_family_revoked(self, family_id: str, *, reason: str, now: datetime) -> bool:
        """Record ``family_id`` as revoked; ``False`` when it already was."""
        if self.family_revoked(family_id):
            return False
        self.session.add(RevokedTokenFamily(family_id=family_id, reason=reason, revoked_at=now))
        self.flush()
        return True

    def family_revoked(self, family_id: str) -> bool:
        stmt = (
            select(RevokedTokenFamily.id)
            .where(RevokedTokenFamily.family_id == family_id)
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def delete_family_markers(self, before: datetime) -> int:
        stmt = delete(RevokedTokenFamily).where(RevokedTokenFamily.revoked_at <= before)
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return int(result.rowcount or 0)

    # ---------------------------- Purging ----------------------------

    def delete_by_jti(self, jti: str) -> bool:
        stmt = delete(RefreshToken).where(RefreshToken.jti == jti)
        return self.session.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1

    def delete_expired(self, before: datetime, user_id: str | None = None) -> int:
        stmt = delete(RefreshToken).where(RefreshToken.expires_at <= before)
        if user_id is not None:
            stmt = stmt.where(RefreshToken.user_id == user_id)
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return int(result.rowcount or 0)

    def delete_terminal(self, before: datetime) -> int:
        """Delete ``revoked`` rows revoked before ``before`` and ``used`` rows used before it."""
        stmt = delete(RefreshToken).where(
            ((RefreshToken.status == REVOKED) & (RefreshToken.revoked_at <= before))
            | ((RefreshToken.status == USED) & (RefreshToken.used_at <= before))
        )
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return int(result.rowcount or 0)

    # ---------------------------- Aggregates ----------------------------

    def count_by_state(self, user_id: str, *, now: datetime) -> dict[str, int]:
        """Count a user's rows as ``total``/``active``/``used``/``expired``/``revoked``.

        Revoked wins over expired, expired wins over used/active.
        """
        expired = (RefreshToken.status != REVOKED) & (RefreshToken.expires_at <= now)
        live = RefreshToken.expires_at > now

        def _sum(cond: Any) -> Any:
            return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)

        stmt = select(
            func.count(RefreshToken.id),
            _sum((RefreshToken.status == ACTIVE) & live),
            _sum((RefreshToken.status == USED) & live),
            _sum(expired),
            _sum(RefreshToken.status == REVOKED),
        ).where(RefreshToken.user_id == user_id)
        total, active, used, expired_count, revoked = self.session.execute(stmt).one()
        return {
            "total": int(total),
            "active": int(active),
            "used": int(used),
            "expired": int(expired_count),
            "revoked": int(revoked),
        }
