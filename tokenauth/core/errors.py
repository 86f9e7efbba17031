"""RFC 7807 problem responses for token and authentication failures.

Every rejected token surfaces as the same ``401`` with :data:`RELOGIN_MESSAGE`;
the internal reason code only reaches the logs. Infrastructure errors are
mapped to fixed, non-leaking problems.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, has_request_context, jsonify, request
from marshmallow import ValidationError as MarshmallowValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import HTTPException

from tokenauth.core.logger import ensure_request_id

log = logging.getLogger(__name__)

PROBLEM_MIMETYPE = "application/problem+json"

# Single message for every rejected token so clients cannot tell expired from revoked
RELOGIN_MESSAGE = "Please log in again."


def _status_code_name(status: int) -> str:
    """``404`` → ``"not_found"``; unknown codes → ``"error"``."""
    try:
        return HTTPStatus(status).name.lower()
    except ValueError:
        return "error"


def _as_problem(
    *,
    status: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build an RFC 7807 Problem Details mapping.

    :param status: HTTP status code.
    :param code: Stable machine-consumable error code.
    :param message: Client-safe summary.
    :param details: Optional structured details.
    :returns: Problem+JSON dictionary, with ``request_id`` inside a request.
    :rtype: dict
    """
    in_request = has_request_context()
    problem: dict[str, Any] = {
        "type": "about:blank",
        "title": HTTPStatus(status).phrase,
        "status": int(status),
        "detail": message,
        "instance": request.path if in_request else None,
        "code": code,
    }
    if details:
        problem["details"] = details
    if in_request:
        problem["request_id"] = ensure_request_id()
    return problem


def _respond(problem: dict[str, Any], *, exc_info: bool = False) -> tuple[Response, int]:
    """Log the problem (5xx as error, 4xx as warning) and render it."""
    status = int(problem["status"])
    level = logging.ERROR if status >= 500 else logging.WARNING
    log.log(
        level,
        "%s %s: %s request_id=%s",
        status,
        problem["code"],
        problem["detail"],
        problem.get("request_id"),
        exc_info=exc_info,
    )
    resp = jsonify(problem)
    resp.mimetype = PROBLEM_MIMETYPE
    return resp, status


class APIError(Exception):
    """
    JSON-serializable API error.

    Parameters
    ----------
    message : str
        Client-facing description.
    status_code : int, optional
        HTTP status code. Defaults to ``400``.
    code : str, optional
        Machine-readable identifier. Defaults to ``"bad_request"``.
    details : dict[str, Any] | None, optional
        Structured payload for the body. Token reason codes never go here.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str = "bad_request",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}

    def to_problem(self) -> dict[str, Any]:
        """Serialize into an RFC 7807 problem."""
        return _as_problem(
            status=self.status_code,
            code=self.code,
            message=self.message,
            details=self.details or None,
        )


class Unauthorized(APIError):
    """401 when credentials are wrong or a token is rejected."""

    def __init__(self, message: str = RELOGIN_MESSAGE) -> None:
        super().__init__(message, status_code=HTTPStatus.UNAUTHORIZED, code="unauthorized")


class Forbidden(APIError):
    """403 when the account exists but may not sign in."""

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message, status_code=HTTPStatus.FORBIDDEN, code="forbidden")


class ServiceUnavailable(APIError):
    """503 when tokens cannot be produced or stored right now."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="service_unavailable",
        )


def _fixed_problem(status: HTTPStatus, code: str, message: str) -> Callable[[Exception], Any]:
    """Handler rendering the same problem for every instance, traceback logged."""

    def handler(err: Exception):
        return _respond(_as_problem(status=status, code=code, message=message), exc_info=True)

    return handler


def init_app(app: Flask) -> None:
    """
    Register problem+json handlers on ``app``.

    ``APIError`` and HTTP errors render their own message; validation errors
    carry field messages; database and unexpected errors never expose the
    underlying exception.
    """

    @app.before_request
    def _seed_request_id() -> None:
        ensure_request_id()

    @app.errorhandler(APIError)
    def handle_api_error(err: APIError):
        return _respond(err.to_problem())

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        status = int(err.code or HTTPStatus.INTERNAL_SERVER_ERROR)
        code = _status_code_name(status)
        message = (err.description or code.replace("_", " ").capitalize()).strip()
        return _respond(_as_problem(status=status, code=code, message=message))

    @app.errorhandler(MarshmallowValidationError)
    def handle_validation_error(err: MarshmallowValidationError):
        problem = _as_problem(
            status=HTTPStatus.UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Validation failed",
            details={"errors": err.messages},
        )
        return _respond(problem)

    app.register_error_handler(
        IntegrityError, _fixed_problem(HTTPStatus.CONFLICT, "conflict", "Resource conflict")
    )
    app.register_error_handler(
        OperationalError,
        _fixed_problem(
            HTTPStatus.SERVICE_UNAVAILABLE, "service_unavailable", "Service temporarily unavailable"
        ),
    )
    app.register_error_handler(
        Exception,
        _fixed_problem(HTTPStatus.INTERNAL_SERVER_ERROR, "internal_server_error", "Unexpected error"),
    )
