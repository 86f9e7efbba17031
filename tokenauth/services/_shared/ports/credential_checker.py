from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """
    Identity resolved by a credential check.

    :ivar user_id: Subject placed in the ``sub`` claim.
    :ivar email: Contact email, copied into access tokens.
    :ivar role: Coarse role claim.
    :ivar permissions: Permission claim values.
    :ivar is_active: ``False`` for disabled accounts.
    """

    user_id: str
    email: str | None = None
    role: str = "user"
    permissions: tuple[str, ...] = ()
    is_active: bool = True

    def to_claims(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "permissions": list(self.permissions),
            "email": self.email,
        }


class CredentialChecker(Protocol):
    """Port for identifier/secret validation and identity lookup."""

    def validate(self, identifier: str, secret: str) -> UserIdentity | None:
        """Return the identity when the credentials match, else ``None``."""
        ...

    def get_identity(self, user_id: str) -> UserIdentity | None:
        """Return the current identity for ``user_id`` (claims may have changed)."""
        ...


@dataclass
class InMemoryCredentialChecker(CredentialChecker):
    """Dictionary-backed checker used by unit tests and local tooling."""

    _users: dict[str, tuple[UserIdentity, str]] = field(default_factory=dict)
    _by_identifier: dict[str, str] = field(default_factory=dict)

    def register(self, identity: UserIdentity, secret: str, *identifiers: str) -> UserIdentity:
        """
        Add or replace a user.

        :param identifiers: Extra login identifiers; ``email`` and ``user_id``
            always work.
        """
        self._users[identity.user_id] = (identity, secret)
        for ident in (identity.user_id, identity.email, *identifiers):
            if ident:
                self._by_identifier[ident.lower()] = identity.user_id
        return identity

    def validate(self, identifier: str, secret: str) -> UserIdentity | None:
        user_id = self._by_identifier.get(identifier.strip().lower())
        if user_id is None:
            return None
        identity, expected = self._users[user_id]
        if not hmac.compare_digest(expected.encode(), secret.encode()):
            return None
        return identity

    def get_identity(self, user_id: str) -> UserIdentity | None:
        found = self._users.get(user_id)
        return found[0] if found else None
