# tests/unit/services/test_token_service.py
from __future__ import annotations

import threading
from dataclasses import replace

import jwt
import pytest
from tokenauth.services._shared.dto import DeviceFingerprint, RevocationReason
from tokenauth.services._shared.errors import (
    InvalidTokenError,
    InvalidTokenReason,
    RefreshTokenError,
    RefreshTokenReason,
    TokenExpiredError,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenauth.services._shared.ports import KeyMaterial, RecordStatus
from tokenauth.services.tokens.dto import TokenConfig
from tokenauth.services.tokens.service import TokenService, hash_token

from tests.helpers.keys import rsa_pem_pair


def _jti(token: str) -> str:
    return jwt.decode(token, options={"verify_signature": False})["jti"]


def _claims(token: str) -> dict:
    return jwt.decode(token, options={"verify_signature": False})


class _FailingStore:
    """Refresh store double whose writes always fail."""

    def create(self, record):
        raise ConnectionError("store down")


# ------------------------------- Issuance ---------------------------------- #
def test_issue_token_pair_persists_active_record(token_service, refresh_store, device, clock):
    pair = token_service.issue_token_pair("u-1", device, {"role": "admin"})

    record = refresh_store.find_by_jti(_jti(pair.refresh_token))
    assert record is not None
    assert record.status is RecordStatus.ACTIVE
    assert record.user_id == "u-1"
    assert record.token_hash == hash_token(pair.refresh_token)
    assert record.family_id == record.jti
    assert record.parent_jti is None
    assert record.device.device_id == device.device_id
    assert pair.token_type == "Bearer"
    assert pair.access_expires_at == clock() + token_service.cfg.access_ttl
    assert pair.refresh_expires_at == clock() + token_service.cfg.refresh_ttl


def test_access_token_carries_custom_and_device_claims(token_service, device):
    pair = token_service.issue_token_pair("u-1", device, {"role": "admin", "sub": "evil"})

    access = _claims(pair.access_token)
    refresh = _claims(pair.refresh_token)
    assert access["sub"] == "u-1"  # registered claims win
    assert access["role"] == "admin"
    assert access["type"] == "access"
    assert access["device_id"] == device.device_id
    assert access["ip_address"] == device.ip_address
    assert refresh["type"] == "refresh"
    assert "role" not in refresh
    assert access["jti"] != refresh["jti"]


def test_issue_uses_distinct_jtis(token_service, device):
    pairs = [token_service.issue_token_pair("u-1", device) for _ in range(5)]
    jtis = {_jti(p.refresh_token) for p in pairs} | {_jti(p.access_token) for p in pairs}
    assert len(jtis) == 10


def test_issue_rejects_empty_subject(token_service, device):
    with pytest.raises(TokenGenerationError) as exc:
        token_service.issue_token_pair("  ", device)
    assert exc.value.reason is TokenGenerationReason.CLAIMS_INVALID


def test_issue_without_private_key_fails_and_stores_nothing(
    signer, refresh_store, blacklist, token_config, clock, device
):
    _, public = rsa_pem_pair()
    service = TokenService(
        signer=signer,
        key_material=KeyMaterial(public_key=public),
        refresh_store=refresh_store,
        blacklist=blacklist,
        config=token_config,
        clock=clock,
    )
    with pytest.raises(TokenGenerationError) as exc:
        service.issue_token_pair("u-1", device)
    assert exc.value.reason is TokenGenerationReason.ENCODING_FAILED
    assert refresh_store.find_by_user_id("u-1", include_revoked=True, now=clock()) == []


def test_issue_storage_failure_raises_generation_error(
    signer, key_material, blacklist, token_config, clock, device
):
    service = TokenService(
        signer=signer,
        key_material=key_material,
        refresh_store=_FailingStore(),
        blacklist=blacklist,
        config=token_config,
        clock=clock,
    )
    with pytest.raises(TokenGenerationError) as exc:
        service.issue_token_pair("u-1", device)
    assert exc.value.reason is TokenGenerationReason.STORAGE_FAILED


# ------------------------------ Validation --------------------------------- #
def test_validate_access_token_round_trip(token_service, device):
    pair = token_service.issue_token_pair(42, device, {"permissions": ["a", "b"]})

    payload = token_service.validate_access_token(pair.access_token)
    assert payload.subject == "42"
    assert payload.token_type == "access"
    assert payload.device_id == device.device_id
    assert payload.get_claim("permissions") == ["a", "b"]
    assert payload.has_audience("tokenauth-test-clients")


def test_access_token_expires_with_clock(token_service, device, clock):
    pair = token_service.issue_token_pair("u-1", device)

    clock.advance(seconds=token_service.cfg.access_ttl.total_seconds() - 1)
    token_service.validate_access_token(pair.access_token)

    clock.advance(seconds=1)
    with pytest.raises(TokenExpiredError):
        token_service.validate_access_token(pair.access_token)


@pytest.mark.parametrize("token", ["", "   ", "not-a-jwt", "a.b.c"])
def test_validate_rejects_garbage(token_service, token):
    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(token)
    assert exc.value.reason is InvalidTokenReason.MALFORMED


def test_validate_rejects_wrong_kind(token_service, device):
    pair = token_service.issue_token_pair("u-1", device)

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(pair.refresh_token)
    assert exc.value.reason is InvalidTokenReason.CLAIMS_INVALID

    with pytest.raises(InvalidTokenError):
        token_service.validate_refresh_token(pair.access_token)


def test_validate_rejects_foreign_signature(token_service, signer, device, clock):
    private, public = rsa_pem_pair("intruder")
    forged = TokenService(
        signer=signer,
        key_material=KeyMaterial(public_key=public, private_key=private),
        refresh_store=token_service.refresh_store,
        blacklist=token_service.blacklist,
        config=token_service.cfg,
        clock=clock,
    ).issue_token_pair("u-1", device)

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(forged.access_token)
    assert exc.value.reason is InvalidTokenReason.SIGNATURE_INVALID


def test_validate_rejects_other_audience(token_service, signer, key_material, device, clock):
    other = TokenService(
        signer=signer,
        key_material=key_material,
        refresh_store=token_service.refresh_store,
        blacklist=token_service.blacklist,
        config=TokenConfig(issuer="tokenauth-test", audience="someone-else"),
        clock=clock,
    )
    pair = other.issue_token_pair("u-1", device)

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(pair.access_token)
    assert exc.value.reason is InvalidTokenReason.AUDIENCE_INVALID


def test_validate_rejects_hs256_with_public_key(token_service, key_material, clock):
    now = int(clock().timestamp())
    claims = {
        "jti": "x" * 32,
        "sub": "u-1",
        "iss": "tokenauth-test",
        "aud": "tokenauth-test-clients",
        "iat": now,
        "exp": now + 60,
        "type": "access",
    }
    token = jwt.encode(claims, "not-the-key", algorithm="HS256")

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(token)
    assert exc.value.reason is InvalidTokenReason.ALGORITHM_MISMATCH


def test_revoked_access_token_is_blacklisted(token_service, device):
    pair = token_service.issue_token_pair("u-1", device)

    assert token_service.revoke_token(pair.access_token, RevocationReason.USER_LOGOUT) is True
    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_access_token(pair.access_token)
    assert exc.value.reason is InvalidTokenReason.BLACKLISTED


def test_blacklist_check_can_be_disabled(
    signer, key_material, refresh_store, blacklist, clock, device
):
    service = TokenService(
        signer=signer,
        key_material=key_material,
        refresh_store=refresh_store,
        blacklist=blacklist,
        config=TokenConfig(check_access_blacklist=False),
        clock=clock,
    )
    pair = service.issue_token_pair("u-1", device)
    service.revoke_token(pair.access_token)

    assert service.validate_access_token(pair.access_token).subject == "u-1"


def test_refresh_token_without_record_is_rejected(token_service, refresh_store, device):
    pair = token_service.issue_token_pair("u-1", device)
    refresh_store.delete(_jti(pair.refresh_token))

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_refresh_token(pair.refresh_token)
    assert exc.value.reason is InvalidTokenReason.CLAIMS_INVALID


# ------------------------------- Rotation ---------------------------------- #
def test_refresh_rotates_within_family(token_service, refresh_store, device):
    first = token_service.issue_token_pair("u-1", device)
    second = token_service.refresh_tokens(first.refresh_token, device, {"role": "user"})

    old = refresh_store.find_by_jti(_jti(first.refresh_token))
    new = refresh_store.find_by_jti(_jti(second.refresh_token))
    assert old.status is RecordStatus.USED
    assert old.used_at is not None
    assert new.status is RecordStatus.ACTIVE
    assert new.family_id == old.family_id
    assert new.parent_jti == old.jti
    assert _claims(second.access_token)["role"] == "user"


def test_reuse_of_rotated_token_revokes_family(token_service, refresh_store, device):
    first = token_service.issue_token_pair("u-1", device)
    second = token_service.refresh_tokens(first.refresh_token, device)

    with pytest.raises(InvalidTokenError) as exc:
        token_service.refresh_tokens(first.refresh_token, device)
    assert exc.value.reason is InvalidTokenReason.CLAIMS_INVALID

    latest = refresh_store.find_by_jti(_jti(second.refresh_token))
    assert latest.status is RecordStatus.REVOKED
    assert latest.revoked_reason == RevocationReason.TOKEN_REUSE_DETECTED
    with pytest.raises(InvalidTokenError) as exc:
        token_service.refresh_tokens(second.refresh_token, device)
    assert exc.value.reason is InvalidTokenReason.BLACKLISTED


def test_reuse_leaves_other_families_alone(token_service, refresh_store, device, other_device):
    victim = token_service.issue_token_pair("u-1", device)
    bystander = token_service.issue_token_pair("u-1", other_device)
    token_service.refresh_tokens(victim.refresh_token, device)

    with pytest.raises(InvalidTokenError):
        token_service.refresh_tokens(victim.refresh_token, device)

    assert refresh_store.find_by_jti(_jti(bystander.refresh_token)).is_active


def test_reuse_between_consume_and_create_revokes_new_child(
    token_service, refresh_store, device, monkeypatch
):
    first = token_service.issue_token_pair("u-1", device)
    create = refresh_store.create
    replays: list[InvalidTokenReason] = []

    def _replay_then_create(record):
        # The replay lands after the parent was consumed, before the child exists
        monkeypatch.setattr(refresh_store, "create", create)
        with pytest.raises(InvalidTokenError) as exc:
            token_service.refresh_tokens(first.refresh_token, device)
        replays.append(exc.value.reason)
        create(record)

    monkeypatch.setattr(refresh_store, "create", _replay_then_create)
    second = token_service.refresh_tokens(first.refresh_token, device)

    assert replays == [InvalidTokenReason.CLAIMS_INVALID]
    child = refresh_store.find_by_jti(_jti(second.refresh_token))
    assert child.status is RecordStatus.REVOKED
    assert child.revoked_reason == RevocationReason.TOKEN_REUSE_DETECTED
    with pytest.raises(InvalidTokenError) as exc:
        token_service.refresh_tokens(second.refresh_token, device)
    assert exc.value.reason is InvalidTokenReason.BLACKLISTED


def test_token_from_revoked_family_is_rejected(token_service, refresh_store, device):
    pair = token_service.issue_token_pair("u-1", device)
    family_id = _jti(pair.refresh_token)
    refresh_store.revoke_family(family_id, RevocationReason.TOKEN_REUSE_DETECTED)
    # Reinstate the record as if it had been written after the revocation
    record = refresh_store.find_by_jti(family_id)
    refresh_store.delete(family_id)
    refresh_store.create(
        replace(record, status=RecordStatus.ACTIVE, revoked_at=None, revoked_reason=None)
    )

    with pytest.raises(InvalidTokenError) as exc:
        token_service.validate_refresh_token(pair.refresh_token)
    assert exc.value.reason is InvalidTokenReason.BLACKLISTED


def test_refresh_expired_token(token_service, device, clock):
    pair = token_service.issue_token_pair("u-1", device)
    clock.advance(seconds=token_service.cfg.refresh_ttl.total_seconds())

    with pytest.raises(TokenExpiredError):
        token_service.refresh_tokens(pair.refresh_token, device)


def test_refresh_revoked_token(token_service, device):
    pair = token_service.issue_token_pair("u-1", device)
    token_service.revoke_token(pair.refresh_token, RevocationReason.USER_LOGOUT)

    with pytest.raises(InvalidTokenError) as exc:
        token_service.refresh_tokens(pair.refresh_token, device)
    assert exc.value.reason is InvalidTokenReason.BLACKLISTED


def test_device_binding_rejects_other_device(
    signer, key_material, refresh_store, blacklist, clock, device, other_device
):
    service = TokenService(
        signer=signer,
        key_material=key_material,
        refresh_store=refresh_store,
        blacklist=blacklist,
        config=TokenConfig(enforce_device_binding=True),
        clock=clock,
    )
    pair = service.issue_token_pair("u-1", device)

    with pytest.raises(RefreshTokenError) as exc:
        service.refresh_tokens(pair.refresh_token, other_device)
    assert exc.value.reason is RefreshTokenReason.DEVICE_MISMATCH
    # The token stays usable from its own device
    assert service.refresh_tokens(pair.refresh_token, device).refresh_token


def test_without_device_binding_any_device_may_refresh(token_service, device, other_device):
    pair = token_service.issue_token_pair("u-1", device)
    new = token_service.refresh_tokens(pair.refresh_token, other_device)
    assert _claims(new.access_token)["device_id"] == other_device.device_id


def test_concurrent_refresh_has_single_winner(token_service, device):
    pair = token_service.issue_token_pair("u-1", device)
    workers = 8
    barrier = threading.Barrier(workers)
    winners: list[str] = []
    losers: list[Exception] = []
    lock = threading.Lock()

    def _attempt():
        barrier.wait()
        try:
            new = token_service.refresh_tokens(pair.refresh_token, device)
        except (InvalidTokenError, RefreshTokenError, TokenExpiredError) as exc:
            with lock:
                losers.append(exc)
        else:
            with lock:
                winners.append(new.refresh_token)

    threads = [threading.Thread(target=_attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(winners) == 1
    assert len(losers) == workers - 1


# ------------------------------ Revocation --------------------------------- #
def test_revoke_refresh_token_marks_record(token_service, refresh_store, blacklist, device):
    pair = token_service.issue_token_pair("u-1", device)
    jti = _jti(pair.refresh_token)

    assert token_service.revoke_token(pair.refresh_token, RevocationReason.DEVICE_LOST)

    record = refresh_store.find_by_jti(jti)
    entry = blacklist.get(jti)
    assert record.status is RecordStatus.REVOKED
    assert record.revoked_reason == RevocationReason.DEVICE_LOST
    assert entry.token_type == "refresh"
    assert entry.expires_at == pair.refresh_expires_at
    assert entry.is_security_related and entry.is_user_initiated


def test_revoke_is_idempotent(token_service, blacklist, device, clock):
    pair = token_service.issue_token_pair("u-1", device)
    token_service.revoke_token(pair.access_token, RevocationReason.USER_LOGOUT)
    clock.advance(seconds=5)
    token_service.revoke_token(pair.access_token, RevocationReason.SECURITY_BREACH)

    entry = blacklist.get(_jti(pair.access_token))
    assert entry.reason == RevocationReason.USER_LOGOUT


def test_revoke_expired_token_still_blacklists(token_service, blacklist, device, clock):
    pair = token_service.issue_token_pair("u-1", device)
    clock.advance(days=30)

    assert token_service.revoke_token(pair.access_token) is True
    assert blacklist.is_blacklisted(_jti(pair.access_token))


def test_revoke_garbage_returns_false(token_service):
    assert token_service.revoke_token("garbage") is False


def test_revoke_all_user_tokens(token_service, refresh_store, device, other_device, clock):
    keep = token_service.issue_token_pair("u-1", device)
    token_service.issue_token_pair("u-1", other_device)
    token_service.issue_token_pair("u-9", device)

    count = token_service.revoke_all_user_tokens(
        "u-1", RevocationReason.PASSWORD_CHANGED, exclude_jti=_jti(keep.refresh_token)
    )

    assert count == 1
    assert [r.jti for r in refresh_store.find_by_user_id("u-1", now=clock())] == [
        _jti(keep.refresh_token)
    ]
    assert len(refresh_store.find_by_user_id("u-9", now=clock())) == 1


# -------------------------------- Queries ---------------------------------- #
def test_query_helpers(token_service, device, other_device, clock):
    pair = token_service.issue_token_pair("u-1", device)
    ttl = int(token_service.cfg.access_ttl.total_seconds())

    assert token_service.extract_payload(pair.access_token).subject == "u-1"
    assert token_service.extract_payload("garbage") is None
    assert token_service.get_token_remaining_time(pair.access_token) == ttl
    assert token_service.is_token_owned_by(pair.access_token, "u-1")
    assert not token_service.is_token_owned_by(pair.access_token, "u-2")
    assert token_service.is_token_from_device(pair.access_token, device)
    assert not token_service.is_token_from_device(pair.access_token, other_device)

    assert not token_service.is_token_near_expiry(pair.access_token)
    clock.advance(seconds=ttl - 60)
    assert token_service.is_token_near_expiry(pair.access_token)
    clock.advance(seconds=60)
    assert token_service.get_token_remaining_time(pair.access_token) == 0
    assert not token_service.is_token_near_expiry(pair.access_token)


def test_signed_payload_ignores_expiry_only(token_service, device, clock):
    pair = token_service.issue_token_pair("u-1", device)
    clock.advance(days=30)

    assert token_service.signed_payload(pair.access_token).subject == "u-1"
    assert token_service.signed_payload(pair.refresh_token).jti == _jti(pair.refresh_token)

    forged = jwt.encode({**_claims(pair.access_token), "sub": "u-2"}, None, algorithm="none")
    assert token_service.signed_payload(forged) is None
    private, _ = rsa_pem_pair("foreign")
    foreign = jwt.encode(_claims(pair.access_token), private, algorithm="RS256")
    assert token_service.signed_payload(foreign) is None
    assert token_service.signed_payload("garbage") is None
    assert token_service.signed_payload("") is None


def test_is_token_revoked(token_service, device):
    pair = token_service.issue_token_pair("u-1", device)

    assert token_service.is_token_revoked("garbage") is True
    assert token_service.is_token_revoked(pair.refresh_token) is False
    token_service.refresh_store.revoke(_jti(pair.refresh_token), RevocationReason.MANUAL_REVOCATION)
    assert token_service.is_token_revoked(pair.refresh_token) is True

    assert token_service.is_token_revoked(pair.access_token) is False
    token_service.revoke_token(pair.access_token)
    assert token_service.is_token_revoked(pair.access_token) is True


def test_device_fingerprint_rejects_bad_ip():
    with pytest.raises(ValueError):
        DeviceFingerprint(device_id="d", ip_address="999.1.1.1")
