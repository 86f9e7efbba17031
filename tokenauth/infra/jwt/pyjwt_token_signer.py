# tokenauth/infra/jwt/pyjwt_token_signer.py
from __future__ import annotations

import secrets
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

from tokenauth.services._shared.clock import to_epoch, utcnow
from tokenauth.services._shared.ports.token_signer import (
    KeyMaterial,
    SigningError,
    TokenSigner,
    VerificationError,
)

REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "jti", "sub"]


class PyJwtTokenSigner(TokenSigner):
    """
    :class:`TokenSigner` adapter backed by PyJWT (``cryptography`` for RS256).

    Only the algorithm pinned in :class:`KeyMaterial` is accepted on
    verification, so ``alg=none`` and HMAC-with-public-key confusion are
    rejected as ``algorithm_mismatch``.
    """

    def sign(self, claims: Mapping[str, Any], key_material: KeyMaterial) -> str:
        if not key_material.can_sign:
            raise SigningError("No private key configured; cannot sign tokens.")
        try:
            return jwt.encode(
                dict(claims),
                key_material.private_key,
                algorithm=key_material.algorithm,
                headers={"typ": "JWT"},
            )
        except (PyJWTError, TypeError, ValueError) as exc:
            raise SigningError(f"Unable to sign token: {exc}") from exc

    def verify(
        self,
        token: str,
        key_material: KeyMaterial,
        *,
        issuer: str,
        audience: str,
        leeway: int = 0,
        now: datetime | None = None,
        check_time: bool = True,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"require": REQUIRED_CLAIMS}
        if now is not None or not check_time:
            # Time claims are checked against the caller's clock below
            options.update({"verify_exp": False, "verify_nbf": False, "verify_iat": False})

        try:
            claims = jwt.decode(
                token,
                key_material.public_key,
                algorithms=[key_material.algorithm],
                audience=audience,
                issuer=issuer,
                leeway=leeway,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise VerificationError("expired", str(exc)) from exc
        except jwt.ImmatureSignatureError as exc:
            raise VerificationError("not_before", str(exc)) from exc
        except jwt.InvalidIssuerError as exc:
            raise VerificationError("issuer_invalid", str(exc)) from exc
        except jwt.InvalidAudienceError as exc:
            raise VerificationError("audience_invalid", str(exc)) from exc
        except jwt.InvalidAlgorithmError as exc:
            raise VerificationError("algorithm_mismatch", str(exc)) from exc
        except jwt.InvalidSignatureError as exc:
            # Subclass of DecodeError, must come first
            raise VerificationError("signature_invalid", str(exc)) from exc
        except jwt.MissingRequiredClaimError as exc:
            reason = "subject_missing" if exc.claim == "sub" else "claims_invalid"
            raise VerificationError(reason, str(exc)) from exc
        except jwt.DecodeError as exc:
            raise VerificationError("malformed", str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise VerificationError("claims_invalid", str(exc)) from exc
        except (PyJWTError, ValueError, TypeError) as exc:
            # Unloadable public key or non-string token
            raise VerificationError("malformed", str(exc)) from exc

        if now is not None and check_time:
            self._check_time_claims(claims, to_epoch(now), leeway)
        return claims

    def parse_unverified(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except PyJWTError as exc:
            raise VerificationError("malformed", str(exc)) from exc
        if not isinstance(claims, dict):
            raise VerificationError("malformed", "Token payload is not a JSON object.")
        return claims

    def check_keys(self, key_material: KeyMaterial) -> None:
        probe = {
            "jti": secrets.token_hex(8),
            "sub": "key-check",
            "iss": "key-check",
            "aud": "key-check",
            "iat": to_epoch(utcnow()),
            "exp": to_epoch(utcnow()) + 60,
        }
        try:
            token = self.sign(probe, key_material)
            self.verify(token, key_material, issuer="key-check", audience="key-check")
        except (SigningError, VerificationError) as exc:
            raise ValueError(f"JWT key pair is not usable: {exc}") from exc

    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_time_claims(claims: Mapping[str, Any], now_ts: int, leeway: int) -> None:
        exp = claims.get("exp")
        if isinstance(exp, int | float) and not isinstance(exp, bool) and exp <= now_ts - leeway:
            raise VerificationError("expired", "Signature has expired")
        nbf = claims.get("nbf")
        if isinstance(nbf, int | float) and not isinstance(nbf, bool) and nbf > now_ts + leeway:
            raise VerificationError("not_before", "The token is not yet valid (nbf)")
