# tokenauth/services/auth/dto.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tokenauth.services._shared.dto import RevocationReason
from tokenauth.services._shared.ports.credential_checker import UserIdentity
from tokenauth.services.tokens.dto import TokenPair

# ---------------------------- Input DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class LoginIn:
    """
    Input DTO for login.

    :param identifier: Email or username.
    :type identifier: str
    :param password: Raw password (to be verified).
    :type password: str
    """

    identifier: str
    password: str


@dataclass(frozen=True, slots=True)
class RefreshIn:
    """
    Input DTO for token refresh.

    :param refresh_token: Encoded refresh JWT.
    :type refresh_token: str
    """

    refresh_token: str


@dataclass(frozen=True, slots=True)
class LogoutIn:
    """
    Input DTO for logout.

    :param access_token: Encoded access JWT to blacklist, if any.
    :type access_token: str | None
    :param refresh_token: Encoded refresh JWT to revoke, if any.
    :type refresh_token: str | None
    :param revoke_all: If True, revoke every session of the token's owner.
    :type revoke_all: bool
    :param reason: Revocation reason recorded for each token.
    :type reason: str
    """

    access_token: str | None = None
    refresh_token: str | None = None
    revoke_all: bool = False
    reason: str = RevocationReason.USER_LOGOUT


# --------------------------- Output DTOs ---------------------------------- #


@dataclass(frozen=True, slots=True)
class LoginOut:
    """
    Output DTO for a successful login.

    :param tokens: Freshly issued pair.
    :type tokens: TokenPair
    :param user: Identity the pair was issued to.
    :type user: UserIdentity
    """

    tokens: TokenPair
    user: UserIdentity


@dataclass(frozen=True, slots=True)
class RefreshOut:
    """Output DTO for a successful rotation (identity re-resolved)."""

    tokens: TokenPair
    user: UserIdentity


@dataclass(frozen=True, slots=True)
class UserFromTokenOut:
    """
    Identity resolved from a valid access token.

    :param user: Current identity of the subject.
    :type user: UserIdentity
    :param jti: Access token id.
    :type jti: str
    :param device_id: Device claim carried by the token.
    :type device_id: str | None
    :param claims: Custom claims carried by the token.
    :type claims: dict[str, Any]
    """

    user: UserIdentity
    jti: str
    device_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)
