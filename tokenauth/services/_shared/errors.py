"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and should never import or depend
on Flask or HTTP directly. They serve as stable contracts between
repositories, token adapters, and application services.

Every authentication/token failure carries a machine-readable ``reason``
(a :class:`~enum.StrEnum` member) for auditing, plus an optional ``context``
mapping. Callers facing end users never expose the reason: the translation
to HTTP responses (RFC 7807) is handled by ``tokenauth/core/errors.py`` via
``BaseService.translate_exceptions()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy.exc import IntegrityError


def violates(exc: IntegrityError, constraint_name: str) -> bool:
    """
    Check whether an IntegrityError originates from a specific constraint.

    Parameters
    ----------
    exc : IntegrityError
        The exception raised by SQLAlchemy during flush/commit.
    constraint_name : str
        The name of the database constraint to match (e.g.,
        ``'uq_refresh_tokens_jti'``). SQLite reports column names instead, so
        the column part after the table name is matched too.

    Returns
    -------
    bool
        True if the IntegrityError matches the given constraint.
    """
    message = str(exc.orig).lower() if exc.orig else ""
    if constraint_name.lower() in message:
        return True
    # SQLite: "UNIQUE constraint failed: refresh_tokens.jti"
    parts = constraint_name.lower().split("_")
    return len(parts) > 2 and parts[0] == "uq" and f".{parts[-1]}" in message


# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from repositories, adapters or domain logic.
    - The API layer or BaseService will later translate them to APIError.
    """

    pass


@dataclass(slots=True)
class ConflictError(ServiceError):
    """
    Raised when a unique constraint or business rule conflict occurs.

    :param entity: Entity name (e.g., "RefreshToken").
    :type entity: str
    :param detail: Short human-readable explanation.
    :type detail: str
    """

    entity: str
    detail: str

    def __str__(self) -> str:  # pragma: no cover
        return f"Conflict on {self.entity}: {self.detail}"


# --------------------------------------------------------------------------- #
# Reason codes
# --------------------------------------------------------------------------- #


class AuthenticationReason(StrEnum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_DISABLED = "account_disabled"
    USER_NOT_FOUND = "user_not_found"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    LOGIN_FAILED = "login_failed"


class InvalidTokenReason(StrEnum):
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    ALGORITHM_MISMATCH = "algorithm_mismatch"
    ISSUER_INVALID = "issuer_invalid"
    AUDIENCE_INVALID = "audience_invalid"
    SUBJECT_MISSING = "subject_missing"
    CLAIMS_INVALID = "claims_invalid"
    BLACKLISTED = "blacklisted"
    NOT_BEFORE = "not_before"


class RefreshTokenReason(StrEnum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    ALREADY_USED = "already_used"
    DEVICE_MISMATCH = "device_mismatch"
    USER_MISMATCH = "user_mismatch"
    STORAGE_FAILED = "storage_failed"
    ROTATION_FAILED = "rotation_failed"
    LIMIT_EXCEEDED = "limit_exceeded"
    FAMILY_MISMATCH = "family_mismatch"


class TokenGenerationReason(StrEnum):
    ENCODING_FAILED = "encoding_failed"
    CLAIMS_INVALID = "claims_invalid"
    JTI_MISSING = "jti_missing"
    STORAGE_FAILED = "storage_failed"


# --------------------------------------------------------------------------- #
# Authentication / token errors
# --------------------------------------------------------------------------- #


class AuthError(ServiceError):
    """
    Base for every authentication and token failure.

    :param reason: Machine-readable reason code.
    :type reason: StrEnum
    :param message: Internal message (logs only). Defaults to the reason.
    :type message: str | None
    :param context: Extra audit data (jti, user id, ...).
    :type context: dict[str, Any] | None
    """

    def __init__(
        self,
        reason: StrEnum,
        message: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.reason = reason
        self.message = message or str(reason).replace("_", " ").capitalize()
        self.context = dict(context or {})
        super().__init__(self.message)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}(reason={self.reason!s}, message={self.message!r})"


class AuthenticationError(AuthError):
    """Credential, account-state or use-case level failure."""

    reason: AuthenticationReason


class InvalidTokenError(AuthError):
    """
    A presented token was rejected.

    :param token_type: ``"access"``, ``"refresh"`` or ``None`` when unknown.
    """

    reason: InvalidTokenReason

    def __init__(
        self,
        reason: InvalidTokenReason,
        message: str | None = None,
        *,
        token_type: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason, message, context=context)
        self.token_type = token_type


class MalformedClaimsError(InvalidTokenError):
    """Decoded claims miss a required member or have the wrong shape."""


class InvalidTimestampError(InvalidTokenError):
    """``iat``/``exp``/``nbf`` are not valid epoch seconds or are inconsistent."""

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(InvalidTokenReason.CLAIMS_INVALID, message, context=context)


class _ExpiredReason(StrEnum):
    EXPIRED = "expired"


class TokenExpiredError(AuthError):
    """
    A token is past its ``exp``.

    Kept apart from :class:`InvalidTokenError` so callers may offer a refresh
    instead of a full login.
    """

    def __init__(
        self,
        message: str = "Token has expired",
        *,
        token_type: str | None = None,
        expired_at: datetime | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(_ExpiredReason.EXPIRED, message, context=context)
        self.token_type = token_type
        self.expired_at = expired_at


class RefreshTokenError(AuthError):
    """Store-level refresh-token failure."""

    reason: RefreshTokenReason


class TokenGenerationError(AuthError):
    """A token pair could not be produced; nothing was persisted."""

    reason: TokenGenerationReason


# Errors meaning "the presented token is not acceptable"
TOKEN_REJECTIONS: tuple[type[AuthError], ...] = (
    InvalidTokenError,
    TokenExpiredError,
    RefreshTokenError,
)
