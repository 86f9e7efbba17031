# tests/unit/infra/test_pyjwt_signer.py
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from tokenauth.services._shared.ports import KeyMaterial, SigningError, VerificationError

from tests.helpers.keys import rsa_pem_pair

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _claims(**overrides):
    iat = int(NOW.timestamp())
    base = {
        "jti": "j-1",
        "sub": "u-1",
        "iss": "iss",
        "aud": "aud",
        "iat": iat,
        "nbf": iat,
        "exp": iat + 60,
    }
    base.update(overrides)
    return base


def _verify(signer, token, keys, now=NOW, **kwargs):
    return signer.verify(token, keys, issuer="iss", audience="aud", now=now, **kwargs)


def test_sign_and_verify(signer, key_material):
    token = signer.sign(_claims(role="admin"), key_material)

    assert jwt.get_unverified_header(token)["alg"] == "RS256"
    claims = _verify(signer, token, key_material)
    assert claims["role"] == "admin"


def test_verify_uses_supplied_clock(signer, key_material):
    token = signer.sign(_claims(), key_material)

    with pytest.raises(VerificationError) as exc:
        _verify(signer, token, key_material, now=NOW + timedelta(seconds=60))
    assert exc.value.reason == "expired"

    # Leeway stretches the window
    _verify(signer, token, key_material, now=NOW + timedelta(seconds=61), leeway=5)

    with pytest.raises(VerificationError) as exc:
        _verify(signer, token, key_material, now=NOW - timedelta(seconds=1))
    assert exc.value.reason == "not_before"


@pytest.mark.parametrize(
    ("kwargs", "reason"),
    [
        ({"issuer": "other", "audience": "aud"}, "issuer_invalid"),
        ({"issuer": "iss", "audience": "other"}, "audience_invalid"),
    ],
)
def test_verify_rejects_wrong_issuer_or_audience(signer, key_material, kwargs, reason):
    token = signer.sign(_claims(), key_material)
    with pytest.raises(VerificationError) as exc:
        signer.verify(token, key_material, now=NOW, **kwargs)
    assert exc.value.reason == reason


def test_verify_requires_subject(signer, key_material):
    claims = _claims()
    del claims["sub"]
    token = signer.sign(claims, key_material)

    with pytest.raises(VerificationError) as exc:
        _verify(signer, token, key_material)
    assert exc.value.reason == "subject_missing"


def test_verify_rejects_unsigned_token(signer, key_material):
    token = jwt.encode(_claims(), None, algorithm="none")
    with pytest.raises(VerificationError) as exc:
        _verify(signer, token, key_material)
    assert exc.value.reason == "algorithm_mismatch"


def test_verify_rejects_tampered_payload(signer, key_material):
    header, _, signature = signer.sign(_claims(), key_material).split(".")
    forged_payload = jwt.encode(_claims(sub="admin"), "k", algorithm="HS256").split(".")[1]

    with pytest.raises(VerificationError) as exc:
        _verify(signer, f"{header}.{forged_payload}.{signature}", key_material)
    assert exc.value.reason == "signature_invalid"


def test_sign_requires_private_key(signer):
    _, public = rsa_pem_pair()
    with pytest.raises(SigningError):
        signer.sign(_claims(), KeyMaterial(public_key=public))


def test_parse_unverified_ignores_expiry(signer, key_material):
    token = signer.sign(_claims(exp=1), key_material)
    assert signer.parse_unverified(token)["exp"] == 1

    with pytest.raises(VerificationError) as exc:
        signer.parse_unverified("not.a.jwt")
    assert exc.value.reason == "malformed"


def test_verify_can_skip_time_claims(signer, key_material):
    token = signer.sign(_claims(exp=int(NOW.timestamp()) - 3600), key_material)

    claims = _verify(signer, token, key_material, check_time=False)
    assert claims["sub"] == "u-1"

    # Everything but the time claims is still enforced
    unsigned = jwt.encode(_claims(exp=1), None, algorithm="none")
    with pytest.raises(VerificationError) as exc:
        _verify(signer, unsigned, key_material, check_time=False)
    assert exc.value.reason == "algorithm_mismatch"

    private, _ = rsa_pem_pair("foreign")
    foreign = jwt.encode(_claims(exp=1), private, algorithm="RS256")
    with pytest.raises(VerificationError) as exc:
        _verify(signer, foreign, key_material, check_time=False)
    assert exc.value.reason == "signature_invalid"


def test_check_keys(signer, key_material):
    signer.check_keys(key_material)

    private, _ = rsa_pem_pair()
    _, other_public = rsa_pem_pair("other")
    with pytest.raises(ValueError):
        signer.check_keys(KeyMaterial(public_key=other_public, private_key=private))
