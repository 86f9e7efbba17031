# tokenauth/services/tokens/codec.py
"""Pure mapping between claim maps and :class:`JwtPayload` (no signing)."""

from __future__ import annotations

import math
import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from tokenauth.services._shared.clock import from_epoch, to_epoch
from tokenauth.services._shared.dto import DeviceFingerprint, TokenKind
from tokenauth.services._shared.errors import (
    InvalidTimestampError,
    InvalidTokenReason,
    MalformedClaimsError,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenauth.services.tokens.dto import REGISTERED_CLAIMS, REQUIRED_CLAIMS, JwtPayload

JTI_BYTES = 16  # 128 bits of entropy


def new_jti() -> str:
    """Return a fresh random token id (32 hex chars)."""
    return secrets.token_hex(JTI_BYTES)


class TokenCodec:
    """
    Assemble and parse JWT claim sets.

    :param issuer: Value written to ``iss``.
    :type issuer: str
    :param audience: Value written to ``aud``.
    :type audience: str
    """

    def __init__(self, *, issuer: str, audience: str) -> None:
        self.issuer = issuer
        self.audience = audience

    # ------------------------------------------------------------------ #
    # Encoding
    # ------------------------------------------------------------------ #

    def encode_claims(
        self,
        subject_id: str | int,
        device: DeviceFingerprint,
        token_kind: TokenKind,
        custom_claims: Mapping[str, Any] | None,
        issued_at: datetime,
        ttl: timedelta,
    ) -> dict[str, Any]:
        """
        Build the claim map for one token.

        Access tokens carry the device claims and ``custom_claims``; refresh
        tokens carry only ``sub`` and ``device_id`` beside the registered
        claims. Registered claims always win over custom ones.

        :returns: Claim map with a freshly generated ``jti``.
        :raises TokenGenerationError: If the subject is empty or ``ttl`` is not positive.
        """
        subject = str(subject_id).strip() if subject_id is not None else ""
        if not subject:
            raise TokenGenerationError(
                TokenGenerationReason.CLAIMS_INVALID, "Token subject is required."
            )
        ttl_seconds = int(ttl.total_seconds())
        if ttl_seconds <= 0:
            raise TokenGenerationError(
                TokenGenerationReason.CLAIMS_INVALID, "Token lifetime must be positive."
            )

        iat = to_epoch(issued_at)
        registered: dict[str, Any] = {
            "jti": new_jti(),
            "sub": subject,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": iat,
            "nbf": iat,
            "exp": iat + ttl_seconds,
            "type": token_kind.value,
        }

        if token_kind is TokenKind.REFRESH:
            return {"device_id": device.device_id, **registered}

        claims: dict[str, Any] = {
            k: v for k, v in (custom_claims or {}).items() if k not in REGISTERED_CLAIMS
        }
        claims.update(device.to_claims())
        claims.update(registered)
        return claims

    # ------------------------------------------------------------------ #
    # Decoding
    # ------------------------------------------------------------------ #

    def decode_claims(self, claim_map: Mapping[str, Any]) -> JwtPayload:
        """
        Parse a verified claim map.

        :raises MalformedClaimsError: When ``jti``, ``sub``, ``iss``, ``aud``,
            ``iat`` or ``exp`` is missing or mis-shaped.
        :raises InvalidTimestampError: When a time claim is not epoch seconds
            or ``exp`` is not after ``iat``.
        """
        missing = [name for name in REQUIRED_CLAIMS if claim_map.get(name) in (None, "")]
        if "sub" in missing:
            raise MalformedClaimsError(
                InvalidTokenReason.SUBJECT_MISSING, "Token subject is missing."
            )
        if missing:
            raise MalformedClaimsError(
                InvalidTokenReason.CLAIMS_INVALID,
                f"Missing required claims: {', '.join(missing)}",
                context={"missing": missing},
            )

        jti = claim_map["jti"]
        if not isinstance(jti, str):
            raise MalformedClaimsError(InvalidTokenReason.CLAIMS_INVALID, "jti must be a string.")
        sub = claim_map["sub"]
        if isinstance(sub, bool) or not isinstance(sub, str | int):
            raise MalformedClaimsError(
                InvalidTokenReason.SUBJECT_MISSING, "sub must be a string."
            )
        iss = claim_map["iss"]
        if not isinstance(iss, str):
            raise MalformedClaimsError(InvalidTokenReason.CLAIMS_INVALID, "iss must be a string.")
        audience = self._parse_audience(claim_map["aud"])

        issued_at = self._parse_timestamp("iat", claim_map["iat"])
        expires_at = self._parse_timestamp("exp", claim_map["exp"])
        nbf_raw = claim_map.get("nbf")
        not_before = self._parse_timestamp("nbf", nbf_raw) if nbf_raw is not None else None
        if expires_at <= issued_at:
            raise InvalidTimestampError("exp must be after iat.")

        extra = {
            k: v for k, v in claim_map.items() if k not in REGISTERED_CLAIMS or k == "type"
        }
        return JwtPayload(
            jti=jti,
            subject=str(sub),
            issuer=iss,
            audience=audience,
            issued_at=issued_at,
            expires_at=expires_at,
            not_before=not_before,
            claims=extra,
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse_audience(raw: Any) -> tuple[str, ...]:
        if isinstance(raw, str):
            return (raw,)
        if isinstance(raw, list | tuple) and raw and all(isinstance(a, str) and a for a in raw):
            return tuple(raw)
        raise MalformedClaimsError(
            InvalidTokenReason.CLAIMS_INVALID, "aud must be a string or a list of strings."
        )

    @staticmethod
    def _parse_timestamp(name: str, raw: Any) -> datetime:
        if isinstance(raw, bool):
            raise InvalidTimestampError(f"{name} is not epoch seconds.", context={"claim": name})
        if isinstance(raw, str) and raw.strip().isdigit():
            raw = int(raw.strip())
        if not isinstance(raw, int | float) or not math.isfinite(raw) or raw < 0:
            raise InvalidTimestampError(f"{name} is not epoch seconds.", context={"claim": name})
        try:
            return from_epoch(raw)
        except (OverflowError, OSError, ValueError) as exc:
            raise InvalidTimestampError(
                f"{name} is out of range.", context={"claim": name}
            ) from exc
