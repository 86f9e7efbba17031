from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from tokenauth.models.token_blacklist import TokenBlacklist
from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import SECURITY_REASONS, TokenKind
from tokenauth.services._shared.errors import violates
from tokenauth.services._shared.ports import BlacklistEntry, BlacklistStats, TokenBlacklistStore
from tokenauth.services._shared.ports.blacklist_store import DEFAULT_RECENT_LIMIT
from tokenauth.uow import SQLAlchemyUnitOfWork


def to_entry(row: TokenBlacklist) -> BlacklistEntry:
    return BlacklistEntry(
        jti=row.jti,
        token_type=TokenKind(row.token_type),
        user_id=row.user_id,
        expires_at=row.expires_at,
        reason=row.reason,
        blacklisted_at=row.blacklisted_at,
        device_id=row.device_id,
    )


class SQLAlchemyTokenBlacklistStore(TokenBlacklistStore):
    """Blacklist over the ``token_blacklist`` table (one row per jti)."""

    def add(self, entry: BlacklistEntry) -> None:
        try:
            with SQLAlchemyUnitOfWork() as uow:
                if uow.blacklist.jti_exists(entry.jti):
                    return
                uow.blacklist.add(
                    TokenBlacklist(
                        jti=entry.jti,
                        token_type=entry.token_type.value,
                        user_id=entry.user_id,
                        device_id=entry.device_id,
                        reason=entry.reason,
                        expires_at=entry.expires_at,
                        blacklisted_at=entry.blacklisted_at,
                    )
                )
        except IntegrityError as exc:
            # Concurrent insert of the same jti: first entry wins
            if not violates(exc, "uq_token_blacklist_jti"):
                raise

    def is_blacklisted(self, jti: str) -> bool:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.blacklist.jti_exists(jti)

    def get(self, jti: str) -> BlacklistEntry | None:
        with SQLAlchemyUnitOfWork() as uow:
            row = uow.blacklist.get_by_jti(jti)
            return to_entry(row) if row else None

    def remove(self, jti: str) -> bool:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.blacklist.delete_by_jti(jti)

    def find_blacklisted(self, jtis: Iterable[str]) -> set[str]:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.blacklist.existing_jtis(jtis)

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> BlacklistStats:
        with SQLAlchemyUnitOfWork() as uow:
            entries = [to_entry(r) for r in uow.blacklist.list_for_user(user_id)]
        return BlacklistStats.from_entries(entries, now or utcnow())

    def recent_security_entries(
        self, since: datetime, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[BlacklistEntry]:
        with SQLAlchemyUnitOfWork() as uow:
            rows = uow.blacklist.list_recent(
                reasons=[str(r) for r in SECURITY_REASONS], since=since, limit=limit
            )
            return [to_entry(r) for r in rows]

    def cleanup(self, before: datetime | None = None) -> int:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.blacklist.delete_expired(before or utcnow())
