"""Token blacklist repository."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import cast

from sqlalchemy import delete, select

from tokenauth.models.token_blacklist import TokenBlacklist
from tokenauth.repositories.base import BaseRepository


class TokenBlacklistRepository(BaseRepository[TokenBlacklist]):
    """Persistence-only repository for :class:`TokenBlacklist`."""

    model = TokenBlacklist

    def get_by_jti(self, jti: str) -> TokenBlacklist | None:
        stmt = select(TokenBlacklist).where(TokenBlacklist.jti == jti)
        return cast(TokenBlacklist | None, self.session.execute(stmt).scalars().first())

    def jti_exists(self, jti: str) -> bool:
        stmt = select(TokenBlacklist.id).where(TokenBlacklist.jti == jti).limit(1)
        return self.session.execute(stmt).first() is not None

    def delete_expired(self, before: datetime) -> int:
        """Delete entries whose token expired at or before ``before``.

        :returns: Number of rows deleted.
        :rtype: int
        """
        stmt = delete(TokenBlacklist).where(TokenBlacklist.expires_at <= before)
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return int(result.rowcount or 0)

    def delete_by_jti(self, jti: str) -> bool:
        stmt = delete(TokenBlacklist).where(TokenBlacklist.jti == jti)
        return self.session.execute(stmt.execution_options(synchronize_session=False)).rowcount == 1

    def existing_jtis(self, jtis: Iterable[str]) -> set[str]:
        wanted = list(set(jtis))
        if not wanted:
            return set()
        stmt = select(TokenBlacklist.jti).where(TokenBlacklist.jti.in_(wanted))
        return set(self.session.execute(stmt).scalars().all())

    def list_for_user(self, user_id: str) -> list[TokenBlacklist]:
        stmt = select(TokenBlacklist).where(TokenBlacklist.user_id == user_id)
        return list(self.session.execute(stmt).scalars().all())

    def list_recent(
        self, *, reasons: Iterable[str], since: datetime, limit: int
    ) -> list[TokenBlacklist]:
        """Entries with one of ``reasons`` written at or after ``since``, newest first.

        :rtype: list[TokenBlacklist]
        """
        stmt = (
            select(TokenBlacklist)
            .where(
                TokenBlacklist.reason.in_(list(reasons)),
                TokenBlacklist.blacklisted_at >= since,
            )
            .order_by(TokenBlacklist.blacklisted_at.desc(), TokenBlacklist.jti.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())
