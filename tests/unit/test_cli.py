"""Tests for the ``flask tokens`` maintenance commands."""

from __future__ import annotations

import pytest
from tokenauth.services._shared.dto import DeviceFingerprint, RevocationReason
from tokenauth.wiring import EXTENSION_KEY


@pytest.fixture()
def runner(app):
    return app.test_cli_runner()


@pytest.fixture()
def service(app):
    return app.extensions[EXTENSION_KEY]


def _sessions(service, user_id: str, *device_ids: str) -> list:
    return [
        service.tokens.issue_token_pair(user_id, DeviceFingerprint(device_id=d))
        for d in device_ids
    ]


def test_stats_command(runner, service):
    _sessions(service, "cli-stats", "d-1", "d-2")

    result = runner.invoke(args=["tokens", "stats", "cli-stats"])

    assert result.exit_code == 0, result.output
    assert "Tokens for user cli-stats:" in result.output
    assert "total       2" in result.output
    assert "active      2" in result.output


def test_revoke_user_command(runner, service):
    _sessions(service, "cli-revoke", "d-1", "d-2", "d-3")

    result = runner.invoke(
        args=["tokens", "revoke-user", "cli-revoke", "--reason", "password_changed"]
    )

    assert result.exit_code == 0, result.output
    assert "Revoked 3 session(s)" in result.output
    assert service.get_user_token_stats("cli-revoke").revoked == 3


def test_revoke_user_rejects_unknown_reason(runner):
    result = runner.invoke(args=["tokens", "revoke-user", "cli-x", "--reason", "bored"])
    assert result.exit_code == 2


def test_revoke_device_command(runner, service):
    _sessions(service, "cli-device", "phone", "phone", "laptop")

    result = runner.invoke(args=["tokens", "revoke-device", "cli-device", "phone"])

    assert result.exit_code == 0, result.output
    assert "Revoked 2 session(s) for user cli-device on device phone." in result.output
    assert service.get_user_token_stats("cli-device").active == 1


def test_cleanup_command_with_future_cutoff(runner, service):
    _sessions(service, "cli-cleanup", "d-1")

    result = runner.invoke(args=["tokens", "cleanup", "--before", "2999-01-01T00:00:00"])

    assert result.exit_code == 0, result.output
    assert "expired token record(s)" in result.output
    assert service.get_user_token_stats("cli-cleanup").total == 0


def test_cleanup_command_rejects_bad_cutoff(runner):
    result = runner.invoke(args=["tokens", "cleanup", "--before", "yesterday"])

    assert result.exit_code == 2
    assert "ISO-8601" in result.output


def test_cleanup_revoked_command(runner):
    result = runner.invoke(args=["tokens", "cleanup-revoked", "--days", "30"])

    assert result.exit_code == 0, result.output
    assert "revoked/used token record(s)" in result.output



def _jti(service, token: str) -> str:
    return service.tokens.extract_payload(token).jti


def test_blacklist_stats_command(runner, service):
    logout, breach = _sessions(service, "cli-bl-stats", "d-1", "d-2")
    service.tokens.revoke_token(logout.access_token, RevocationReason.USER_LOGOUT)
    service.tokens.revoke_token(breach.access_token, RevocationReason.SECURITY_BREACH)

    result = runner.invoke(args=["tokens", "blacklist-stats", "cli-bl-stats"])

    assert result.exit_code == 0, result.output
    assert "Blacklisted tokens for user cli-bl-stats:" in result.output
    assert "total        2" in result.output
    assert "security     1" in result.output
    assert "security_breach: 1" in result.output


def test_unblacklist_command(runner, service):
    (pair,) = _sessions(service, "cli-unbl", "d-1")
    service.tokens.revoke_token(pair.access_token)
    jti = _jti(service, pair.access_token)

    result = runner.invoke(args=["tokens", "unblacklist", jti, "unknown-jti"])

    assert result.exit_code == 0, result.output
    assert "Removed 1 of 2 jti(s) from the blacklist." in result.output
    assert service.validate_access_token(pair.access_token).subject == "cli-unbl"


def test_unblacklist_requires_a_jti(runner):
    assert runner.invoke(args=["tokens", "unblacklist"]).exit_code == 2


def test_security_events_command(runner, service):
    (pair,) = _sessions(service, "cli-sec", "d-1")
    service.tokens.revoke_token(pair.refresh_token, RevocationReason.TOKEN_REUSE_DETECTED)

    result = runner.invoke(args=["tokens", "security-events", "--hours", "1"])

    assert result.exit_code == 0, result.output
    assert f"token_reuse_detected  user=cli-sec  refresh  {_jti(service, pair.refresh_token)}" in (
        result.output
    )

def test_commands_fail_cleanly_without_keys(make_app):
    app = make_app(JWT_PRIVATE_KEY=None, JWT_PUBLIC_KEY=None)

    result = app.test_cli_runner().invoke(args=["tokens", "stats", "anyone"])

    assert result.exit_code == 1
    assert "Auth service is not configured" in result.output
