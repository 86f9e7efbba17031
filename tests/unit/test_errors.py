"""Tests for service error translation and problem+json responses."""

from __future__ import annotations

import pytest
from tokenauth.core import errors as api_errors
from tokenauth.services._shared.base import BaseService
from tokenauth.services._shared.clock import utcnow
from tokenauth.services._shared.errors import (
    AuthenticationError,
    AuthenticationReason,
    ConflictError,
    InvalidTokenError,
    InvalidTokenReason,
    RefreshTokenError,
    RefreshTokenReason,
    ServiceError,
    TokenExpiredError,
    TokenGenerationError,
    TokenGenerationReason,
)


@pytest.mark.parametrize(
    "exc",
    [
        InvalidTokenError(InvalidTokenReason.SIGNATURE_INVALID),
        InvalidTokenError(InvalidTokenReason.BLACKLISTED, token_type="access"),
        TokenExpiredError(token_type="refresh"),
        RefreshTokenError(RefreshTokenReason.ALREADY_USED),
        AuthenticationError(AuthenticationReason.INVALID_REFRESH_TOKEN),
    ],
)
def test_token_rejections_share_one_response(exc):
    translated = BaseService().translate_exceptions(exc)

    assert isinstance(translated, api_errors.Unauthorized)
    assert translated.status_code == 401
    assert translated.message == api_errors.RELOGIN_MESSAGE
    # Reason codes stay server-side
    assert translated.details == {}


@pytest.mark.parametrize(
    ("exc", "status", "code"),
    [
        (AuthenticationError(AuthenticationReason.INVALID_CREDENTIALS), 401, "unauthorized"),
        (AuthenticationError(AuthenticationReason.ACCOUNT_DISABLED), 403, "forbidden"),
        (AuthenticationError(AuthenticationReason.ACCOUNT_LOCKED), 403, "forbidden"),
        (AuthenticationError(AuthenticationReason.LOGIN_FAILED), 503, "service_unavailable"),
        (
            TokenGenerationError(TokenGenerationReason.STORAGE_FAILED),
            503,
            "service_unavailable",
        ),
        (ConflictError("RefreshToken", "duplicate jti"), 409, "conflict"),
        (ServiceError("bad input"), 400, "bad_request"),
    ],
)
def test_translate_exceptions_status_mapping(exc, status, code):
    translated = BaseService().translate_exceptions(exc)

    assert isinstance(translated, api_errors.APIError)
    assert translated.status_code == status
    assert translated.code == code


def test_invalid_credentials_message_is_generic():
    translated = BaseService().translate_exceptions(
        AuthenticationError(AuthenticationReason.INVALID_CREDENTIALS, "unknown user bob")
    )
    assert translated.message == "Invalid credentials."


def test_unknown_exceptions_pass_through():
    exc = KeyError("boom")
    assert BaseService().translate_exceptions(exc) is exc


def test_base_service_holds_only_clock_and_logger():
    service = BaseService()
    assert service.clock is utcnow
    assert service.log.name == "tokenauth.security"
    assert not hasattr(service, "ctx")


@pytest.fixture()
def error_client(make_app):
    app = make_app()
    service = BaseService()

    @app.get("/rejected")
    def rejected():
        raise service.translate_exceptions(
            InvalidTokenError(InvalidTokenReason.SIGNATURE_INVALID)
        )

    @app.get("/crash")
    def crash():
        raise RuntimeError("kaboom")

    return app.test_client()


def test_api_error_renders_problem_json(error_client):
    resp = error_client.get("/rejected", headers={"X-Request-Id": "req-9"})

    assert resp.status_code == 401
    assert resp.mimetype == "application/problem+json"
    body = resp.get_json()
    assert body["code"] == "unauthorized"
    assert body["detail"] == api_errors.RELOGIN_MESSAGE
    assert body["instance"] == "/rejected"
    assert body["request_id"] == "req-9"
    assert "signature" not in resp.get_data(as_text=True)


def test_unknown_route_is_problem_json(error_client):
    resp = error_client.get("/missing")

    assert resp.status_code == 404
    assert resp.get_json()["code"] == "not_found"


def test_unexpected_error_hides_details(error_client):
    resp = error_client.get("/crash")

    assert resp.status_code == 500
    body = resp.get_json()
    assert body["code"] == "internal_server_error"
    assert "kaboom" not in resp.get_data(as_text=True)
