# tokenauth/services/tokens/dto.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from tokenauth.services._shared.clock import to_epoch
from tokenauth.services._shared.dto import TokenKind

# Claims owned by the codec; custom claims can never override them
REGISTERED_CLAIMS = frozenset({"jti", "sub", "iss", "aud", "iat", "exp", "nbf", "type"})
REQUIRED_CLAIMS = ("jti", "sub", "iss", "aud", "iat", "exp")

BEARER = "Bearer"


# ------------------------------ Payload ----------------------------------- #


@dataclass(frozen=True, slots=True)
class JwtPayload:
    """
    Decoded, verified claim set.

    :param jti: Unique token id.
    :type jti: str
    :param subject: User id (``sub``).
    :type subject: str
    :param issuer: ``iss`` claim.
    :type issuer: str
    :param audience: ``aud`` values (one or more).
    :type audience: tuple[str, ...]
    :param issued_at: ``iat`` (UTC).
    :type issued_at: datetime
    :param expires_at: ``exp`` (UTC), strictly after ``issued_at``.
    :type expires_at: datetime
    :param not_before: ``nbf`` (UTC), when present.
    :type not_before: datetime | None
    :param claims: Every non-registered claim plus ``type``.
    :type claims: dict[str, Any]
    """

    jti: str
    subject: str
    issuer: str
    audience: tuple[str, ...]
    issued_at: datetime
    expires_at: datetime
    not_before: datetime | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def token_type(self) -> str | None:
        value = self.claims.get("type")
        return str(value) if value is not None else None

    @property
    def device_id(self) -> str | None:
        value = self.claims.get("device_id")
        return str(value) if value is not None else None

    def get_claim(self, name: str, default: Any = None) -> Any:
        return self.claims.get(name, default)

    def is_of_kind(self, kind: TokenKind) -> bool:
        return self.token_type == kind.value

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        """Not expired and past ``nbf``."""
        if self.is_expired(now):
            return False
        return self.not_before is None or self.not_before <= now

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def has_audience(self, audience: str) -> bool:
        return audience in self.audience

    def to_claims(self) -> dict[str, Any]:
        """Inverse of decoding: the claim map this payload was read from."""
        out: dict[str, Any] = dict(self.claims)
        out.update(
            {
                "jti": self.jti,
                "sub": self.subject,
                "iss": self.issuer,
                "aud": self.audience[0] if len(self.audience) == 1 else list(self.audience),
                "iat": to_epoch(self.issued_at),
                "exp": to_epoch(self.expires_at),
            }
        )
        if self.not_before is not None:
            out["nbf"] = to_epoch(self.not_before)
        return out


# ------------------------------ Token pair -------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenPair:
    """
    Access/refresh tokens handed to a client.

    :param access_token: Encoded access JWT.
    :type access_token: str
    :param refresh_token: Encoded refresh JWT.
    :type refresh_token: str
    :param access_expires_at: Access expiry (UTC).
    :type access_expires_at: datetime
    :param refresh_expires_at: Refresh expiry (UTC), never before the access expiry.
    :type refresh_expires_at: datetime
    :param token_type: Authorization scheme.
    :type token_type: str
    :raises ValueError: If the access token outlives the refresh token.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = BEARER

    def __post_init__(self) -> None:
        if self.access_expires_at > self.refresh_expires_at:
            raise ValueError("Access token cannot expire after its refresh token.")

    def access_expires_in(self, now: datetime) -> int:
        return max(0, int((self.access_expires_at - now).total_seconds()))

    def refresh_expires_in(self, now: datetime) -> int:
        return max(0, int((self.refresh_expires_at - now).total_seconds()))

    def is_access_expired(self, now: datetime) -> bool:
        return self.access_expires_at <= now

    def can_refresh(self, now: datetime) -> bool:
        return self.refresh_expires_at > now

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


# ------------------------------ Config ------------------------------------ #


@dataclass(frozen=True, slots=True)
class TokenConfig:
    """
    Token emission and validation policy.

    :param issuer: ``iss`` written and required.
    :type issuer: str
    :param audience: ``aud`` written and required.
    :type audience: str
    :param access_ttl: Access token lifetime.
    :type access_ttl: timedelta
    :param refresh_ttl: Refresh token lifetime (>= ``access_ttl``).
    :type refresh_ttl: timedelta
    :param algorithm: JWS algorithm.
    :type algorithm: str
    :param leeway: Clock skew tolerated on time claims, in seconds.
    :type leeway: int
    :param max_active_refresh_tokens: Session ceiling per user.
    :type max_active_refresh_tokens: int
    :param check_access_blacklist: Consult the blacklist for access tokens.
    :type check_access_blacklist: bool
    :param enforce_device_binding: Refresh only from the bound device.
    :type enforce_device_binding: bool
    :param revoke_family_on_reuse: Revoke the rotation chain on replay.
    :type revoke_family_on_reuse: bool
    :raises ValueError: On non-positive TTLs or ``access_ttl > refresh_ttl``.
    """

    issuer: str = "tokenauth"
    audience: str = "tokenauth-clients"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    algorithm: str = "RS256"
    leeway: int = 0
    max_active_refresh_tokens: int = 50
    check_access_blacklist: bool = True
    enforce_device_binding: bool = False
    revoke_family_on_reuse: bool = True

    def __post_init__(self) -> None:
        if self.access_ttl <= timedelta(0) or self.refresh_ttl <= timedelta(0):
            raise ValueError("Token lifetimes must be positive.")
        if self.access_ttl > self.refresh_ttl:
            raise ValueError("Access token lifetime cannot exceed refresh token lifetime.")
        if self.max_active_refresh_tokens < 1:
            raise ValueError("max_active_refresh_tokens must be at least 1.")
        if not self.issuer or not self.audience:
            raise ValueError("Issuer and audience are required.")

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> TokenConfig:
        """Build the policy from Flask config keys (``JWT_*`` / ``AUTH_*``)."""
        defaults = cls()
        return cls(
            issuer=str(config.get("JWT_ISSUER", defaults.issuer)),
            audience=str(config.get("JWT_AUDIENCE", defaults.audience)),
            access_ttl=timedelta(seconds=int(config.get("JWT_ACCESS_TOKEN_TTL", 900))),
            refresh_ttl=timedelta(seconds=int(config.get("JWT_REFRESH_TOKEN_TTL", 604800))),
            algorithm=str(config.get("JWT_ALGORITHM", defaults.algorithm)),
            leeway=int(config.get("JWT_LEEWAY", 0)),
            max_active_refresh_tokens=int(
                config.get("AUTH_MAX_ACTIVE_REFRESH_TOKENS", defaults.max_active_refresh_tokens)
            ),
            check_access_blacklist=bool(config.get("AUTH_CHECK_ACCESS_BLACKLIST", True)),
            enforce_device_binding=bool(config.get("AUTH_ENFORCE_DEVICE_BINDING", False)),
            revoke_family_on_reuse=bool(config.get("AUTH_REVOKE_FAMILY_ON_REUSE", True)),
        )
