from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import TokenKind
from tokenauth.services._shared.ports import BlacklistEntry, BlacklistStats, TokenBlacklistStore
from tokenauth.services._shared.ports.blacklist_store import DEFAULT_RECENT_LIMIT

from .redis_refresh_token_store import _dt, _s

EXPIRY_INDEX = "bl:exp"
SECURITY_INDEX = "bl:sec"


@dataclass(slots=True)
class RedisTokenBlacklistStore(TokenBlacklistStore):
    """
    Blacklist of revoked jtis (access and refresh).

    Layout::

        bl:{jti}        hash with the entry fields
        bl:u:{user_id}  set of the user's blacklisted jtis
        bl:exp          zset jti -> token expiry (epoch)
        bl:sec          zset jti -> blacklisted_at (epoch), security reasons only

    An entry and its index memberships are written in one ``MULTI`` and
    purged together by :meth:`cleanup` or :meth:`remove`.

    :param r: A Redis client (already connected).
    """

    r: redis.Redis

    @staticmethod
    def _k(jti: str) -> str:
        return f"bl:{jti}"

    @staticmethod
    def _ku(user_id: str) -> str:
        return f"bl:u:{user_id}"

    @staticmethod
    def _from_hash(jti: str, raw: Mapping[Any, Any]) -> BlacklistEntry | None:
        h = {_s(k): _s(v) for k, v in raw.items()}
        if not h.get("expires_at"):
            return None
        expires_at = _dt(h["expires_at"])
        blacklisted_at = _dt(h.get("blacklisted_at"))
        return BlacklistEntry(
            jti=jti,
            token_type=TokenKind(h.get("token_type") or TokenKind.ACCESS.value),
            user_id=h.get("user_id", ""),
            expires_at=expires_at,
            reason=h.get("reason", ""),
            blacklisted_at=blacklisted_at or expires_at,
            device_id=h.get("device_id") or None,
        )

    def _load_many(self, jtis: list[str]) -> list[BlacklistEntry]:
        pipe = self.r.pipeline(transaction=False)
        for jti in jtis:
            pipe.hgetall(self._k(jti))
        entries = (self._from_hash(jti, h) for jti, h in zip(jtis, pipe.execute()) if h)
        return [e for e in entries if e is not None]

    def _purge(self, jtis: list[str]) -> int:
        if not jtis:
            return 0
        owners = self.r.pipeline(transaction=False)
        for jti in jtis:
            owners.hget(self._k(jti), "user_id")
        pipe = self.r.pipeline(transaction=True)
        pipe.delete(*(self._k(j) for j in jtis))
        pipe.zrem(EXPIRY_INDEX, *jtis)
        pipe.zrem(SECURITY_INDEX, *jtis)
        for jti, user_id in zip(jtis, owners.execute()):
            if user_id is not None:
                pipe.srem(self._ku(_s(user_id)), jti)
        return int(pipe.execute()[0])

    def add(self, entry: BlacklistEntry) -> None:
        key = self._k(entry.jti)
        mapping = {
            "jti": entry.jti,
            "token_type": entry.token_type.value,
            "user_id": entry.user_id,
            "device_id": entry.device_id or "",
            "reason": entry.reason,
            "expires_at": entry.expires_at.isoformat(),
            "blacklisted_at": entry.blacklisted_at.isoformat(),
        }
        while True:
            try:
                with self.r.pipeline() as p:
                    p.watch(key)
                    if p.exists(key):
                        # First entry wins
                        p.unwatch()
                        return
                    p.multi()
                    p.hset(key, mapping=mapping)
                    p.zadd(EXPIRY_INDEX, {entry.jti: entry.expires_at.timestamp()})
                    p.sadd(self._ku(entry.user_id), entry.jti)
                    if entry.is_security_related:
                        p.zadd(SECURITY_INDEX, {entry.jti: entry.blacklisted_at.timestamp()})
                    p.execute()
                    return
            except redis.WatchError:
                continue

    def is_blacklisted(self, jti: str) -> bool:
        return int(self.r.exists(self._k(jti))) == 1

    def get(self, jti: str) -> BlacklistEntry | None:
        return self._from_hash(jti, self.r.hgetall(self._k(jti)))

    def remove(self, jti: str) -> bool:
        return self._purge([jti]) == 1

    def find_blacklisted(self, jtis: Iterable[str]) -> set[str]:
        wanted = list(dict.fromkeys(jtis))
        pipe = self.r.pipeline(transaction=False)
        for jti in wanted:
            pipe.exists(self._k(jti))
        return {jti for jti, found in zip(wanted, pipe.execute()) if int(found)}

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> BlacklistStats:
        jtis = sorted(_s(m) for m in self.r.smembers(self._ku(user_id)))
        return BlacklistStats.from_entries(self._load_many(jtis), now or utcnow())

    def recent_security_entries(
        self, since: datetime, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[BlacklistEntry]:
        raw = self.r.zrevrangebyscore(
            SECURITY_INDEX, "+inf", since.timestamp(), start=0, num=limit
        )
        return self._load_many([_s(m) for m in raw])

    def cleanup(self, before: datetime | None = None) -> int:
        at = before or utcnow()
        due = [_s(m) for m in self.r.zrangebyscore(EXPIRY_INDEX, "-inf", at.timestamp())]
        return self._purge(due)
