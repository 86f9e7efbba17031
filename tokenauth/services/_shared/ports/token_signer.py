from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol


class VerificationError(Exception):
    """
    Raised by :meth:`TokenSigner.verify` when a token is not acceptable.

    :param reason: ``expired`` or one of the invalid-token reason codes
        (``malformed``, ``signature_invalid``, ``algorithm_mismatch``,
        ``issuer_invalid``, ``audience_invalid``, ``subject_missing``,
        ``claims_invalid``, ``not_before``).
    :param message: Low-level detail for logs.
    """

    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class SigningError(Exception):
    """Raised by :meth:`TokenSigner.sign` when a claim set cannot be signed."""


@dataclass(frozen=True, slots=True)
class KeyMaterial:
    """
    PEM-encoded key pair for asymmetric signing.

    :param public_key: PEM public key used to verify.
    :type public_key: str
    :param private_key: PEM private key used to sign; ``None`` for
        verify-only deployments.
    :type private_key: str | None
    :param algorithm: JWS algorithm identifier.
    :type algorithm: str
    """

    public_key: str
    private_key: str | None = None
    algorithm: str = "RS256"

    @property
    def can_sign(self) -> bool:
        return bool(self.private_key)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> KeyMaterial:
        """
        Load keys from ``JWT_PRIVATE_KEY``/``JWT_PUBLIC_KEY`` or their ``*_PATH`` variants.

        :param config: Flask config (or any mapping).
        :returns: Loaded key material.
        :raises ValueError: If no public key is configured.
        :raises OSError: If a configured key file cannot be read.
        """
        private = config.get("JWT_PRIVATE_KEY") or _read_optional(config.get("JWT_PRIVATE_KEY_PATH"))
        public = config.get("JWT_PUBLIC_KEY") or _read_optional(config.get("JWT_PUBLIC_KEY_PATH"))
        if not public:
            raise ValueError("JWT_PUBLIC_KEY or JWT_PUBLIC_KEY_PATH must be configured.")
        return cls(
            public_key=public,
            private_key=private or None,
            algorithm=str(config.get("JWT_ALGORITHM", "RS256")),
        )


def _read_optional(path: str | None) -> str | None:
    if not path:
        return None
    return Path(path).read_text(encoding="utf-8")


class TokenSigner(Protocol):
    """Port for the JWS sign/verify primitive."""

    def sign(self, claims: Mapping[str, Any], key_material: KeyMaterial) -> str:
        """
        Return a compact JWS for ``claims``.

        :raises SigningError: If the claims or the key cannot be used.
        """
        ...

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
        """
        Check signature, algorithm, ``iss``, ``aud``, ``exp`` and ``nbf``.

        :param now: Reference instant for ``exp``/``nbf``; wall clock when ``None``.
        :param check_time: When ``False`` an expired or not-yet-valid token
            passes, everything else is still verified.
        :returns: Verified claim map.
        :raises VerificationError: On any failure.
        """
        ...

    def check_keys(self, key_material: KeyMaterial) -> None:
        """
        Sign and verify a probe to prove the key pair belongs together.

        :raises ValueError: If the keys do not match or cannot be loaded.
        """
        ...

    def parse_unverified(self, token: str) -> dict[str, Any]:
        """
        Decode claims without any verification (revocation of expired tokens).

        :raises VerificationError: If the token is not a parsable JWS.
        """
        ...
