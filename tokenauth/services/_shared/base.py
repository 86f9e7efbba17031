# tokenauth/services/_shared/base.py
from __future__ import annotations

import logging

from tokenauth.core import errors as api_errors
from tokenauth.core.logger import security_logger
from tokenauth.services._shared.clock import Clock, utcnow
from tokenauth.services._shared.errors import (
    TOKEN_REJECTIONS,
    AuthenticationError,
    AuthenticationReason,
    ConflictError,
    ServiceError,
    TokenGenerationError,
)


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Hold the injected clock and security logger.
    * Centralize error translation.
    * Keep services thin, orchestration-only, no web/ORM leakage.

    Notes
    -----
    - Persistence goes through ports; SQL adapters open their own Unit of Work.
    - Token and credential failures never reveal their reason to clients.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the base service.

        :param clock: Source of "now"; defaults to the UTC wall clock.
        :type clock: Clock | None
        :param logger: Security event logger; defaults to ``tokenauth.security``.
        :type logger: logging.Logger | None
        """
        self.clock: Clock = clock or utcnow
        self.log = logger or security_logger()

    # -------------------------- Error handling ------------------------------

    def translate_exceptions(self, exc: Exception) -> Exception:
        """
        Map domain/service-level errors to API-level (HTTP) errors.

        Every rejected token becomes the same 401 so expired, revoked and
        forged tokens are indistinguishable to the client.

        :param exc: Exception raised within the service.
        :type exc: Exception
        :returns: Translated exception ready to be re-raised.
        :rtype: Exception
        """
        if isinstance(exc, TOKEN_REJECTIONS):
            # → 401 Unauthorized
            return api_errors.Unauthorized()

        if isinstance(exc, AuthenticationError):
            if exc.reason in (
                AuthenticationReason.ACCOUNT_DISABLED,
                AuthenticationReason.ACCOUNT_LOCKED,
            ):
                # → 403 Forbidden
                return api_errors.Forbidden("Account is not allowed to sign in.")
            if exc.reason is AuthenticationReason.INVALID_CREDENTIALS:
                return api_errors.Unauthorized("Invalid credentials.")
            if exc.reason is AuthenticationReason.LOGIN_FAILED:
                return api_errors.ServiceUnavailable()
            return api_errors.Unauthorized()

        if isinstance(exc, TokenGenerationError):
            # → 503 Service Unavailable
            return api_errors.ServiceUnavailable()

        if isinstance(exc, ConflictError):
            # → 409 Conflict
            return api_errors.APIError(message=str(exc), status_code=409, code="conflict")

        # Any other ServiceError subclass → 400 Bad Request
        if isinstance(exc, ServiceError):
            return api_errors.APIError(
                message=str(exc),
                status_code=400,
                code="bad_request",
            )

        # Fallback: return untouched (will bubble up to Flask handler)
        return exc
