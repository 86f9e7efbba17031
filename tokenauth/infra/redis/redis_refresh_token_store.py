# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import DeviceFingerprint
from tokenauth.services._shared.ports import (
    RecordStatus,
    RefreshTokenRecord,
    RefreshTokenStore,
    RotationResult,
    TokenStats,
)

# Sorted-set indexes used by cleanup
EXPIRY_INDEX = "rt:exp"
TERMINAL_INDEX = "rt:term"
# family_id -> revoked_at (epoch)
REVOKED_FAMILIES = "rt:revoked_families"


def _s(value: Any, default: str = "") -> str:
    """Decode a Redis reply (bytes or str) into ``str``."""
    if value is None:
        return default
    if isinstance(value, bytes | bytearray):
        return value.decode()
    return str(value)


def _dt(value: Any) -> datetime | None:
    raw = _s(value)
    return datetime.fromisoformat(raw) if raw else None


@dataclass(slots=True)
class RedisRefreshTokenStore(RefreshTokenStore):
    """
    Redis-backed refresh token store with atomic consumption.

    Layout::

        rt:{jti}            hash with the record fields
        rt:u:{user_id}      set of the user's jtis
        rt:fam:{family_id}  set of the family's jtis
        rt:exp              zset jti -> expires_at (epoch)
        rt:term             zset jti -> used_at/revoked_at (epoch)
        rt:revoked_families zset family_id -> revoked_at (epoch)

    Every state transition runs under ``WATCH``/``MULTI``/``EXEC`` and retries
    on :class:`redis.WatchError`, so of two concurrent consumers of one jti
    exactly one observes ``active``.

    :param r: A Redis client (already connected).
    """

    r: redis.Redis

    # -------------------- helpers --------------------

    @staticmethod
    def _k(jti: str) -> str:
        return f"rt:{jti}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"rt:u:{user_id}"

    @staticmethod
    def _kf(family_id: str) -> str:
        return f"rt:fam:{family_id}"

    @staticmethod
    def _members(raw: Iterable[Any]) -> list[str]:
        return sorted(_s(m) for m in raw)

    @staticmethod
    def _to_hash(record: RefreshTokenRecord) -> dict[str, str]:
        dev = record.device
        return {
            "user_id": record.user_id,
            "token_hash": record.token_hash,
            "device_id": dev.device_id,
            "device_name": dev.device_name,
            "ip_address": dev.ip_address or "",
            "user_agent": dev.user_agent,
            "platform": dev.platform or "",
            "browser": dev.browser or "",
            "created_at": record.created_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
            "status": record.status.value,
            "family_id": record.family_id or record.jti,
            "parent_jti": record.parent_jti or "",
            "used_at": record.used_at.isoformat() if record.used_at else "",
            "revoked_at": record.revoked_at.isoformat() if record.revoked_at else "",
            "revoked_reason": record.revoked_reason or "",
        }

    @staticmethod
    def _from_hash(jti: str, h: Mapping[Any, Any]) -> RefreshTokenRecord:
        # Replies may come with bytes or str keys depending on decode_responses
        def _b(name: str, default: str = "") -> str:
            value = h.get(name.encode())
            if value is None:
                value = h.get(name)
            return _s(value, default)

        device = DeviceFingerprint(
            device_id=_b("device_id"),
            ip_address=_b("ip_address") or None,
            device_name=_b("device_name"),
            user_agent=_b("user_agent"),
            platform=_b("platform") or None,
            browser=_b("browser") or None,
        )
        return RefreshTokenRecord(
            jti=jti,
            user_id=_b("user_id"),
            token_hash=_b("token_hash"),
            device=device,
            created_at=datetime.fromisoformat(_b("created_at")),
            expires_at=datetime.fromisoformat(_b("expires_at")),
            status=RecordStatus(_b("status", RecordStatus.ACTIVE.value)),
            family_id=_b("family_id") or jti,
            parent_jti=_b("parent_jti") or None,
            used_at=_dt(_b("used_at")),
            revoked_at=_dt(_b("revoked_at")),
            revoked_reason=_b("revoked_reason") or None,
        )

    def _load(self, jti: str) -> RefreshTokenRecord | None:
        h = self.r.hgetall(self._k(jti))
        return self._from_hash(jti, h) if h else None

    def _transition(
        self,
        jti: str,
        decide: Callable[[RefreshTokenRecord], tuple[RotationResult, dict[str, str] | None]],
    ) -> RotationResult:
        """
        Read-check-write one record under optimistic locking.

        ``decide`` inspects the current record and returns the outcome plus
        the fields to write (``None`` to leave the record untouched).
        """
        key = self._k(jti)
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(key)
                    h = p.hgetall(key)
                    if not h:
                        p.unwatch()
                        return RotationResult.NOT_FOUND
                    result, changes = decide(self._from_hash(jti, h))
                    if not changes:
                        p.unwatch()
                        return result

                    p.multi()
                    p.hset(key, mapping=changes)
                    terminal_at = changes.get("used_at") or changes.get("revoked_at")
                    if terminal_at:
                        p.zadd(
                            TERMINAL_INDEX,
                            {jti: datetime.fromisoformat(terminal_at).timestamp()},
                        )
                    p.execute()
                    return result
            except redis.WatchError:
                # Concurrent modification detected; retry loop
                continue

    def _revoke_one(self, jti: str, reason: str, at: datetime) -> bool:
        def decide(rec: RefreshTokenRecord):
            if not rec.is_active:
                return RotationResult.REVOKED, None
            return RotationResult.OK, {
                "status": RecordStatus.REVOKED.value,
                "revoked_at": at.isoformat(),
                "revoked_reason": reason,
            }

        return self._transition(jti, decide) is RotationResult.OK

    def _purge(self, jtis: Iterable[str], keep: Callable[[RefreshTokenRecord], bool] | None = None) -> int:
        removed = 0
        for jti in jtis:
            rec = self._load(jti)
            if rec is not None and keep is not None and keep(rec):
                continue
            pipe = self.r.pipeline(transaction=True)
            pipe.delete(self._k(jti))
            pipe.zrem(EXPIRY_INDEX, jti)
            pipe.zrem(TERMINAL_INDEX, jti)
            if rec is not None:
                pipe.srem(self._ku(rec.user_id), jti)
                pipe.srem(self._kf(rec.family_id or jti), jti)
            deleted = pipe.execute()[0]
            removed += int(bool(deleted))
        return removed

    # -------------------- API ------------------------

    def create(self, record: RefreshTokenRecord) -> None:
        key = self._k(record.jti)
        with self.r.pipeline() as p:
            p.watch(key)
            if p.exists(key):
                p.unwatch()
                raise ValueError(f"Refresh token {record.jti!r} already exists.")
            p.multi()
            p.hset(key, mapping=self._to_hash(record))
            p.sadd(self._ku(record.user_id), record.jti)
            p.sadd(self._kf(record.family_id or record.jti), record.jti)
            p.zadd(EXPIRY_INDEX, {record.jti: record.expires_at.timestamp()})
            p.execute()

    def find_by_jti(self, jti: str) -> RefreshTokenRecord | None:
        return self._load(jti)

    def delete(self, jti: str) -> bool:
        return self._purge([jti]) == 1

    def find_by_user_id(
        self,
        user_id: str,
        include_revoked: bool = False,
        *,
        now: datetime | None = None,
    ) -> list[RefreshTokenRecord]:
        at = now or utcnow()
        key_u = self._ku(user_id)
        records: list[RefreshTokenRecord] = []
        stale: list[str] = []
        for jti in self._members(self.r.smembers(key_u)):
            rec = self._load(jti)
            if rec is None:
                # Underlying hash missing (deleted) -> mark for cleanup
                stale.append(jti)
                continue
            if rec.is_expired(at) or not (include_revoked or rec.is_active):
                continue
            records.append(rec)

        if stale:
            self.r.srem(key_u, *stale)
        return sorted(records, key=lambda r: (r.created_at, r.jti))

    def revoke(self, jti: str, reason: str, *, now: datetime | None = None) -> bool:
        return self._revoke_one(jti, reason, now or utcnow())

    def revoke_all_by_user_id(
        self,
        user_id: str,
        reason: str,
        exclude_jti: str | None = None,
        *,
        now: datetime | None = None,
    ) -> int:
        at = now or utcnow()
        jtis = [j for j in self._members(self.r.smembers(self._ku(user_id))) if j != exclude_jti]
        return sum(self._revoke_one(j, reason, at) for j in jtis)

    def revoke_all_by_device(
        self, user_id: str, device_id: str, reason: str, *, now: datetime | None = None
    ) -> int:
        at = now or utcnow()
        count = 0
        for jti in self._members(self.r.smembers(self._ku(user_id))):
            rec = self._load(jti)
            if rec is not None and rec.device.device_id == device_id:
                count += self._revoke_one(jti, reason, at)
        return count

    def revoke_family(self, family_id: str, reason: str, *, now: datetime | None = None) -> int:
        at = now or utcnow()
        # Marker first: a jti added to the family set later finds it
        self.r.zadd(REVOKED_FAMILIES, {family_id: at.timestamp()}, nx=True)
        return sum(
            self._revoke_one(j, reason, at) for j in self._members(self.r.smembers(self._kf(family_id)))
        )

    def is_family_revoked(self, family_id: str) -> bool:
        return self.r.zscore(REVOKED_FAMILIES, family_id) is not None

    def consume(
        self, jti: str, *, now: datetime, device_id: str | None = None
    ) -> RotationResult:
        """
        Atomically flip ``jti`` from active to used.

        Checks run in this order: expired, revoked, used (``REUSED``), device.
        """

        def decide(rec: RefreshTokenRecord):
            if rec.is_expired(now):
                return RotationResult.EXPIRED, None
            if rec.status is RecordStatus.REVOKED:
                return RotationResult.REVOKED, None
            if rec.status is RecordStatus.USED:
                return RotationResult.REUSED, None
            if device_id is not None and rec.device.device_id != device_id:
                return RotationResult.FINGERPRINT_MISMATCH, None
            return RotationResult.OK, {
                "status": RecordStatus.USED.value,
                "used_at": now.isoformat(),
            }

        return self._transition(jti, decide)

    def cleanup(self, before: datetime | None = None, user_id: str | None = None) -> int:
        at = before or utcnow()
        cutoff = at.timestamp()
        if user_id is None:
            return self._purge(self._members(self.r.zrangebyscore(EXPIRY_INDEX, "-inf", cutoff)))

        # Only this user's jtis; their expiry comes from the shared index
        jtis = self._members(self.r.smembers(self._ku(user_id)))
        pipe = self.r.pipeline(transaction=False)
        for jti in jtis:
            pipe.zscore(EXPIRY_INDEX, jti)
        due = [
            jti
            for jti, score in zip(jtis, pipe.execute())
            if score is not None and score <= cutoff
        ]
        return self._purge(due, keep=lambda rec: rec.user_id != user_id)

    def cleanup_revoked(self, before: datetime) -> int:
        due = self._members(self.r.zrangebyscore(TERMINAL_INDEX, "-inf", before.timestamp()))
        removed = self._purge(due, keep=lambda rec: rec.status is RecordStatus.ACTIVE)
        self.r.zremrangebyscore(REVOKED_FAMILIES, "-inf", before.timestamp())
        return removed

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> TokenStats:
        records = [
            rec
            for rec in (self._load(j) for j in self._members(self.r.smembers(self._ku(user_id))))
            if rec is not None
        ]
        return TokenStats.from_records(records, now or utcnow())
