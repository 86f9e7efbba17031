from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum, StrEnum, auto
from typing import Protocol

from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import DeviceFingerprint


class RecordStatus(StrEnum):
    """Stored lifecycle state of a refresh token. Expiry is derived, never stored."""

    ACTIVE = "active"
    USED = "used"
    REVOKED = "revoked"


class RotationResult(Enum):
    """Outcome of an atomic consume attempt."""

    OK = auto()
    NOT_FOUND = auto()
    EXPIRED = auto()
    REVOKED = auto()
    REUSED = auto()
    FINGERPRINT_MISMATCH = auto()


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Server-side state of one issued refresh token.

    :ivar jti: Refresh token identifier.
    :ivar user_id: Owner user id.
    :ivar token_hash: SHA-256 hex digest of the encoded token.
    :ivar device: Device the token was issued to.
    :ivar created_at: Issuance instant (UTC).
    :ivar expires_at: Absolute expiration (UTC).
    :ivar status: ``active``, ``used`` or ``revoked``.
    :ivar family_id: jti of the first token of the rotation chain (defaults to ``jti``).
    :ivar parent_jti: jti this token was rotated from.
    :ivar used_at: When the token was consumed by a rotation.
    :ivar revoked_at: When the token was revoked.
    :ivar revoked_reason: Why the token was revoked.
    """

    jti: str
    user_id: str
    token_hash: str
    device: DeviceFingerprint
    created_at: datetime
    expires_at: datetime
    status: RecordStatus = RecordStatus.ACTIVE
    family_id: str | None = None
    parent_jti: str | None = None
    used_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None

    def __post_init__(self) -> None:
        if self.family_id is None:
            object.__setattr__(self, "family_id", self.jti)

    @property
    def is_active(self) -> bool:
        return self.status is RecordStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_usable(self, now: datetime) -> bool:
        """Return ``True`` when the record may still be consumed by a refresh."""
        return self.is_active and not self.is_expired(now)


@dataclass(frozen=True, slots=True)
class TokenStats:
    """
    Per-user refresh-token counters.

    ``active``, ``used``, ``expired`` and ``revoked`` partition ``total``:
    revoked records count as revoked even once expired.
    """

    total: int = 0
    active: int = 0
    used: int = 0
    expired: int = 0
    revoked: int = 0

    @classmethod
    def from_records(cls, records, now: datetime) -> TokenStats:
        total = active = used = expired = revoked = 0
        for rec in records:
            total += 1
            if rec.status is RecordStatus.REVOKED:
                revoked += 1
            elif rec.is_expired(now):
                expired += 1
            elif rec.status is RecordStatus.USED:
                used += 1
            else:
                active += 1
        return cls(total=total, active=active, used=used, expired=expired, revoked=revoked)


class RefreshTokenStore(Protocol):
    """
    Durable lifecycle of issued refresh tokens.

    Write operations MUST be idempotent, and :meth:`consume` MUST be atomic:
    of any number of concurrent calls for the same jti at most one may
    return :attr:`RotationResult.OK`.
    """

    def create(self, record: RefreshTokenRecord) -> None:
        """Persist a new active record. Raise when the jti already exists."""

    def find_by_jti(self, jti: str) -> RefreshTokenRecord | None:
        """Fetch a single record regardless of status or expiry."""

    def delete(self, jti: str) -> bool:
        """Physically delete a record. :returns: True if it existed."""

    def find_by_user_id(
        self,
        user_id: str,
        include_revoked: bool = False,
        *,
        now: datetime | None = None,
    ) -> list[RefreshTokenRecord]:
        """
        List the user's non-expired records, oldest first.

        :param include_revoked: Also return ``used`` and ``revoked`` records.
        """

    def revoke(self, jti: str, reason: str, *, now: datetime | None = None) -> bool:
        """Mark an active record revoked. :returns: True if it changed."""

    def revoke_all_by_user_id(
        self,
        user_id: str,
        reason: str,
        exclude_jti: str | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        """Revoke every active record of a user. :returns: Number of records affected."""

    def revoke_all_by_device(
        self, user_id: str, device_id: str, reason: str, *, now: datetime | None = None
    ) -> int:
        """Revoke every active record of a user bound to one device."""

    def revoke_family(self, family_id: str, reason: str, *, now: datetime | None = None) -> int:
        """
        Revoke every active record of a rotation chain.

        The family is marked revoked before its records are, so a record
        created into it afterwards can be told apart by :meth:`is_family_revoked`.
        """

    def is_family_revoked(self, family_id: str) -> bool:
        """Return ``True`` once :meth:`revoke_family` ran for ``family_id``."""

    def consume(
        self, jti: str, *, now: datetime, device_id: str | None = None
    ) -> RotationResult:
        """
        Atomically flip an active, unexpired record to ``used``.

        :param device_id: When given, the record must be bound to this device.
        :returns: ``RotationResult.OK`` on success, otherwise the specific failure.
        """

    def cleanup(self, before: datetime | None = None, user_id: str | None = None) -> int:
        """Delete records expired at ``before`` (default: now), optionally for one user."""

    def cleanup_revoked(self, before: datetime) -> int:
        """
        Delete ``revoked``/``used`` records whose terminal transition predates ``before``.

        Family markers revoked before ``before`` are dropped too.
        """

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> TokenStats:
        """Count the user's records by state."""


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh-token store.

    .. note::
       A single lock guards every operation so :meth:`consume` is atomic
       across threads.
    """

    def __init__(self) -> None:
        self._by_jti: dict[str, RefreshTokenRecord] = {}
        self._revoked_families: dict[str, datetime] = {}
        self._lock = threading.Lock()

    # ------------------------- helpers -------------------------

    def _revoke_where(self, predicate, reason: str, now: datetime | None) -> int:
        at = now or utcnow()
        count = 0
        with self._lock:
            for jti, rec in list(self._by_jti.items()):
                if rec.is_active and predicate(rec):
                    self._by_jti[jti] = replace(
                        rec, status=RecordStatus.REVOKED, revoked_at=at, revoked_reason=reason
                    )
                    count += 1
        return count

    # -------------------------- API ----------------------------

    def create(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            if record.jti in self._by_jti:
                raise ValueError(f"Refresh token {record.jti!r} already exists.")
            self._by_jti[record.jti] = record

    def find_by_jti(self, jti: str) -> RefreshTokenRecord | None:
        with self._lock:
            return self._by_jti.get(jti)

    def delete(self, jti: str) -> bool:
        with self._lock:
            return self._by_jti.pop(jti, None) is not None

    def find_by_user_id(
        self,
        user_id: str,
        include_revoked: bool = False,
        *,
        now: datetime | None = None,
    ) -> list[RefreshTokenRecord]:
        at = now or utcnow()
        with self._lock:
            records = [
                r
                for r in self._by_jti.values()
                if r.user_id == user_id
                and not r.is_expired(at)
                and (include_revoked or r.is_active)
            ]
        return sorted(records, key=lambda r: (r.created_at, r.jti))

    def revoke(self, jti: str, reason: str, *, now: datetime | None = None) -> bool:
        return self._revoke_where(lambda r: r.jti == jti, reason, now) == 1

    def revoke_all_by_user_id(
        self,
        user_id: str,
        reason: str,
        exclude_jti: str | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        return self._revoke_where(
            lambda r: r.user_id == user_id and r.jti != exclude_jti, reason, now
        )

    def revoke_all_by_device(
        self, user_id: str, device_id: str, reason: str, *, now: datetime | None = None
    ) -> int:
        return self._revoke_where(
            lambda r: r.user_id == user_id and r.device.device_id == device_id, reason, now
        )

    def revoke_family(self, family_id: str, reason: str, *, now: datetime | None = None) -> int:
        with self._lock:
            self._revoked_families.setdefault(family_id, now or utcnow())
        return self._revoke_where(lambda r: r.family_id == family_id, reason, now)

    def is_family_revoked(self, family_id: str) -> bool:
        with self._lock:
            return family_id in self._revoked_families

    def consume(
        self, jti: str, *, now: datetime, device_id: str | None = None
    ) -> RotationResult:
        with self._lock:
            rec = self._by_jti.get(jti)
            if rec is None:
                return RotationResult.NOT_FOUND
            if rec.is_expired(now):
                return RotationResult.EXPIRED
            if rec.status is RecordStatus.REVOKED:
                return RotationResult.REVOKED
            if rec.status is RecordStatus.USED:
                return RotationResult.REUSED
            if device_id is not None and rec.device.device_id != device_id:
                return RotationResult.FINGERPRINT_MISMATCH
            self._by_jti[jti] = replace(rec, status=RecordStatus.USED, used_at=now)
            return RotationResult.OK

    def cleanup(self, before: datetime | None = None, user_id: str | None = None) -> int:
        at = before or utcnow()
        with self._lock:
            doomed = [
                jti
                for jti, r in self._by_jti.items()
                if r.expires_at <= at and (user_id is None or r.user_id == user_id)
            ]
            for jti in doomed:
                del self._by_jti[jti]
        return len(doomed)

    def cleanup_revoked(self, before: datetime) -> int:
        with self._lock:
            doomed = [
                jti
                for jti, r in self._by_jti.items()
                if (r.status is RecordStatus.REVOKED and r.revoked_at and r.revoked_at <= before)
                or (r.status is RecordStatus.USED and r.used_at and r.used_at <= before)
            ]
            for jti in doomed:
                del self._by_jti[jti]
            for family_id, at in list(self._revoked_families.items()):
                if at <= before:
                    del self._revoked_families[family_id]
        return len(doomed)

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> TokenStats:
        with self._lock:
            records = [r for r in self._by_jti.values() if r.user_id == user_id]
        return TokenStats.from_records(records, now or utcnow())
