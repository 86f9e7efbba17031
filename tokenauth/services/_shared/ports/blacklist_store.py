from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.dto import (
    SECURITY_REASONS,
    USER_INITIATED_REASONS,
    TokenKind,
)

DEFAULT_RECENT_LIMIT = 50


@dataclass(frozen=True, slots=True)
class BlacklistEntry:
    """
    A revoked token identifier.

    :ivar jti: Identifier of the revoked token.
    :ivar token_type: ``access`` or ``refresh``.
    :ivar user_id: Owner of the token.
    :ivar expires_at: Natural expiry copied from the token; the entry is
        purgeable afterwards.
    :ivar reason: Revocation reason code.
    :ivar blacklisted_at: When the entry was written.
    :ivar device_id: Device claim of the token, when present.
    """

    jti: str
    token_type: TokenKind
    user_id: str
    expires_at: datetime
    reason: str
    blacklisted_at: datetime
    device_id: str | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now

    def can_be_cleaned_up(self, now: datetime) -> bool:
        return not self.is_active(now)

    @property
    def is_security_related(self) -> bool:
        return self.reason in SECURITY_REASONS

    @property
    def is_user_initiated(self) -> bool:
        return self.reason in USER_INITIATED_REASONS


@dataclass(frozen=True, slots=True)
class BlacklistStats:
    """
    Per-user blacklist counters.

    ``active`` counts entries whose token has not expired yet;
    ``by_reason`` partitions ``total``.
    """

    total: int = 0
    active: int = 0
    security_related: int = 0
    by_reason: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[BlacklistEntry], now: datetime) -> BlacklistStats:
        total = active = security = 0
        reasons: Counter[str] = Counter()
        for entry in entries:
            total += 1
            active += entry.is_active(now)
            security += entry.is_security_related
            reasons[entry.reason] += 1
        return cls(total=total, active=active, security_related=security, by_reason=dict(reasons))


def newest_security_entries(
    entries: Iterable[BlacklistEntry], since: datetime, limit: int
) -> list[BlacklistEntry]:
    """Security-related entries written at or after ``since``, newest first."""
    picked = [e for e in entries if e.is_security_related and e.blacklisted_at >= since]
    picked.sort(key=lambda e: (e.blacklisted_at, e.jti), reverse=True)
    return picked[:limit]


class TokenBlacklistStore(Protocol):
    """
    Abstraction for the token blacklist.

    Methods are expected to be idempotent: blacklisting a jti twice keeps the
    first entry.
    """

    def add(self, entry: BlacklistEntry) -> None: ...
    def is_blacklisted(self, jti: str) -> bool: ...
    def get(self, jti: str) -> BlacklistEntry | None: ...
    def cleanup(self, before: datetime | None = None) -> int: ...

    def remove(self, jti: str) -> bool:
        """Delete one entry. :returns: True if it existed."""
        ...

    def find_blacklisted(self, jtis: Iterable[str]) -> set[str]:
        """Return the subset of ``jtis`` that is blacklisted."""
        ...

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> BlacklistStats:
        """Count the user's entries."""
        ...

    def recent_security_entries(
        self, since: datetime, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[BlacklistEntry]:
        """Security-related entries written since ``since``, newest first."""
        ...


class InMemoryTokenBlacklistStore(TokenBlacklistStore):
    """Simple in-memory blacklist keyed by jti."""

    def __init__(self) -> None:
        self._entries: dict[str, BlacklistEntry] = {}
        self._lock = threading.Lock()

    def add(self, entry: BlacklistEntry) -> None:
        with self._lock:
            self._entries.setdefault(entry.jti, entry)

    def is_blacklisted(self, jti: str) -> bool:
        # Entries stay until cleanup; an expired token fails earlier anyway
        with self._lock:
            return jti in self._entries

    def get(self, jti: str) -> BlacklistEntry | None:
        with self._lock:
            return self._entries.get(jti)

    def remove(self, jti: str) -> bool:
        with self._lock:
            return self._entries.pop(jti, None) is not None

    def find_blacklisted(self, jtis: Iterable[str]) -> set[str]:
        with self._lock:
            return {jti for jti in jtis if jti in self._entries}

    def get_user_stats(self, user_id: str, *, now: datetime | None = None) -> BlacklistStats:
        with self._lock:
            entries = [e for e in self._entries.values() if e.user_id == user_id]
        return BlacklistStats.from_entries(entries, now or utcnow())

    def recent_security_entries(
        self, since: datetime, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[BlacklistEntry]:
        with self._lock:
            entries = list(self._entries.values())
        return newest_security_entries(entries, since, limit)

    def cleanup(self, before: datetime | None = None) -> int:
        at = before or utcnow()
        with self._lock:
            doomed = [jti for jti, e in self._entries.items() if e.expires_at <= at]
            for jti in doomed:
                del self._entries[jti]
        return len(doomed)
