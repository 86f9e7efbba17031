# comments in English; reST docstrings
from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from tokenauth.models.refresh_token import RefreshToken
from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import DeviceFingerprint
from tokenauth.services._shared.errors import ConflictError, violates
from tokenauth.services._shared.ports import (
    RecordStatus,
    RefreshTokenRecord,
    RefreshTokenStore,
    RotationResult,
    TokenStats,
)
from tokenauth.uow import SQLAlchemyUnitOfWork


def to_record(row: RefreshToken) -> RefreshTokenRecord:
    """Map a ``refresh_tokens`` row to the store's value object."""
    return RefreshTokenRecord(
        jti=row.jti,
        user_id=row.user_id,
        token_hash=row.token_hash,
        device=DeviceFingerprint(
            device_id=row.device_id,
            ip_address=row.ip_address,
            device_name=row.device_name or "",
            user_agent=row.user_agent or "",
            platform=row.platform,
            browser=row.browser,
        ),
        created_at=row.created_at,
        expires_at=row.expires_at,
        status=RecordStatus(row.status),
        family_id=row.family_id,
        parent_jti=row.parent_jti,
        used_at=row.used_at,
        revoked_at=row.revoked_at,
        revoked_reason=row.revoked_reason,
    )


def to_row(record: RefreshTokenRecord) -> RefreshToken:
    dev = record.device
    return RefreshToken(
        jti=record.jti,
        user_id=record.user_id,
        token_hash=record.token_hash,
        device_id=dev.device_id,
        device_name=dev.device_name,
        ip_address=dev.ip_address,
        user_agent=dev.user_agent,
        platform=dev.platform,
        browser=dev.browser,
        status=record.status.value,
        family_id=record.family_id or record.jti,
        parent_jti=record.parent_jti,
        created_at=record.created_at,
        expires_at=record.expires_at,
        used_at=record.used_at,
        revoked_at=record.revoked_at,
        revoked_reason=record.revoked_reason,
    )


class SQLAlchemyRefreshTokenStore(RefreshTokenStore):
    """
    Refresh-token store over the ``refresh_tokens`` table.

    Each call opens its own :class:`SQLAlchemyUnitOfWork` (commit on success,
    rollback on error). :meth:`consume` is one conditional ``UPDATE``; the
    affected row count decides the single winner of a concurrent race.
    """

    def create(self, record: RefreshTokenRecord) -> None:
        """
        Insert an active record.

        :raises ConflictError: If the jti already exists.
        """
        try:
            with SQLAlchemyUnitOfWork() as uow:
                uow.refresh_tokens.add(to_row(record))
        except IntegrityError as exc:
            if violates(exc, "uq_refresh_tokens_jti"):
                raise ConflictError("RefreshToken", f"jti {record.jti!r} already exists") from exc
            raise

    def find_by_jti(self, jti: str) -> RefreshTokenRecord | None:
        with SQLAlchemyUnitOfWork() as uow:
            row = uow.refresh_tokens.get_by_jti(jti)
            return to_record(row) if row else None

    def delete(self, jti: str) -> bool:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.delete_by_jti(jti)

    def find_by_user_id(
        self,
        user_id: str,
        include_revoked: bool = False,
        *,
        now: datetime | None = None,
    ) -> list[RefreshTokenRecord]:
        with SQLAlchemyUnitOfWork() as uow:
            rows = uow.refresh_tokens.list_unexpired_for_user(
                user_id, now=now or utcnow(), active_only=not include_revoked
            )
            return [to_record(r) for r in rows]

    def revoke(self, jti: str, reason: str, *, now: datetime | None = None) -> bool:
        with SQLAlchemyUnitOfWork() as uow:
            return (
                uow.refresh_tokens.revoke_where(
                    RefreshToken.jti == jti, reason=reason, now=now or utcnow()
                )
                == 1
            )

    def revoke_all_by_user_id(
        self,
        user_id: str,
        reason: str,
        exclude_jti: str | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        criteria = [RefreshToken.user_id == user_id]
        if exclude_jti is not None:
            criteria.append(RefreshToken.jti != exclude_jti)
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.revoke_where(*criteria, reason=reason, now=now or utcnow())

    def revoke_all_by_device(
        self, user_id: str, device_id: str, reason: str, *, now: datetime | None = None
    ) -> int:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.revoke_where(
                RefreshToken.user_id == user_id,
                RefreshToken.device_id == device_id,
                reason=reason,
                now=now or utcnow(),
            )

    def revoke_family(self, family_id: str, reason: str, *, now: datetime | None = None) -> int:
        """
        Mark the family revoked, then revoke its active rows.

        The marker commits first so a row inserted concurrently is either seen
        by the ``UPDATE`` or sees the marker itself.
        """
        at = now or utcnow()
        try:
            with SQLAlchemyUnitOfWork() as uow:
                uow.refresh_tokens.mark_family_revoked(family_id, reason=reason, now=at)
        except IntegrityError as exc:
            # Marked by a concurrent caller
            if not violates(exc, "uq_revoked_token_families_family_id"):
                raise
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.revoke_where(
                RefreshToken.family_id == family_id, reason=reason, now=at
            )

    def is_family_revoked(self, family_id: str) -> bool:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.family_revoked(family_id)

    def consume(
        self, jti: str, *, now: datetime, device_id: str | None = None
    ) -> RotationResult:
        with SQLAlchemyUnitOfWork() as uow:
            if uow.refresh_tokens.mark_used(jti, now=now, device_id=device_id):
                return RotationResult.OK

            # Lost or rejected: classify from the current row
            row = uow.refresh_tokens.get_by_jti(jti)
            if row is None:
                return RotationResult.NOT_FOUND
            record = to_record(row)
            if record.is_expired(now):
                return RotationResult.EXPIRED
            if record.status is RecordStatus.REVOKED:
                return RotationResult.REVOKED
            if record.status is RecordStatus.USED:
                return RotationResult.REUSED
            return RotationResult.FINGERPRINT_MISMATCH

    def cleanup(self, before: datetime | None = None, user_id: str | None = None) -> int:
        with SQLAlchemyUnitOfWork() as uow:
            return uow.refresh_tokens.delete_expired(before or utcnow(), user_id)

    def cleanup_revoked(self, before: datetime) -> int:
        with SQLAlchemyUnitOfWork() as uow:
            count = uow.refresh_tokens.delete_terminal(before)
            uow.refresh_tokens.delete_family_markers(before)
            return count

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> TokenStats:
        with SQLAlchemyUnitOfWork() as uow:
            counts = uow.refresh_tokens.count_by_state(user_id, now=now or utcnow())
        return TokenStats(**counts)
