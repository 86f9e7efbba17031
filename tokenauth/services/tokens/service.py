# tokenauth/services/tokens/service.py
from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from tokenauth.services._shared.base import BaseService
from tokenauth.services._shared.clock import Clock, from_epoch
from tokenauth.services._shared.dto import DeviceFingerprint, RevocationReason, TokenKind
from tokenauth.services._shared.errors import (
    InvalidTokenError,
    InvalidTokenReason,
    RefreshTokenError,
    RefreshTokenReason,
    TokenExpiredError,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenauth.services._shared.ports.blacklist_store import BlacklistEntry, TokenBlacklistStore
from tokenauth.services._shared.ports.refresh_token_store import (
    RecordStatus,
    RefreshTokenRecord,
    RefreshTokenStore,
    RotationResult,
)
from tokenauth.services._shared.ports.token_signer import (
    KeyMaterial,
    SigningError,
    TokenSigner,
    VerificationError,
)
from tokenauth.services.tokens.codec import TokenCodec
from tokenauth.services.tokens.dto import JwtPayload, TokenConfig, TokenPair

DEFAULT_NEAR_EXPIRY_SECONDS = 300


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest stored instead of the raw refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenService(BaseService):
    """
    Issuance, validation, rotation and revocation of JWT pairs.

    State machine per refresh jti::

        ISSUED (active) ──rotate──▶ ROTATED (used)
              │
              └──revoke──▶ REVOKED

    ``EXPIRED`` is derived from ``exp``. Only an active, unexpired record can
    be rotated; the active → used flip is a single atomic store operation so
    two concurrent refreshes of one token cannot both succeed.
    """

    def __init__(
        self,
        *,
        signer: TokenSigner,
        key_material: KeyMaterial,
        refresh_store: RefreshTokenStore,
        blacklist: TokenBlacklistStore,
        config: TokenConfig | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the service with its collaborators.

        :param signer: JWS sign/verify adapter.
        :param key_material: Key pair used by ``signer``.
        :param refresh_store: Refresh-token lifecycle store.
        :param blacklist: jti blacklist.
        :param config: Issuance/validation policy.
        :param clock: Source of "now" (UTC).
        :param logger: Security event logger.
        """
        super().__init__(clock=clock, logger=logger)
        self.signer = signer
        self.keys = key_material
        self.refresh_store = refresh_store
        self.blacklist = blacklist
        self.cfg = config or TokenConfig(algorithm=key_material.algorithm)
        self.codec = TokenCodec(issuer=self.cfg.issuer, audience=self.cfg.audience)

    # ------------------------------------------------------------------ #
    # Issuance
    # ------------------------------------------------------------------ #

    def issue_token_pair(
        self,
        user_id: str | int,
        device: DeviceFingerprint,
        custom_claims: Mapping[str, Any] | None = None,
        *,
        family_id: str | None = None,
        parent_jti: str | None = None,
    ) -> TokenPair:
        """
        Sign a new access/refresh pair and persist the refresh record.

        Nothing is persisted unless both tokens were produced.

        :param user_id: Subject of both tokens.
        :param device: Device the refresh token is bound to.
        :param custom_claims: Extra access-token claims (role, permissions, ...).
        :param family_id: Rotation chain to join; a new chain starts when ``None``.
        :param parent_jti: Refresh jti this pair replaces.
        :returns: The new pair.
        :raises TokenGenerationError: If claims, signing or storage fail.
        """
        now = self.clock()
        access_claims = self.codec.encode_claims(
            user_id, device, TokenKind.ACCESS, custom_claims, now, self.cfg.access_ttl
        )
        refresh_claims = self.codec.encode_claims(
            user_id, device, TokenKind.REFRESH, None, now, self.cfg.refresh_ttl
        )

        try:
            access_token = self.signer.sign(access_claims, self.keys)
            refresh_token = self.signer.sign(refresh_claims, self.keys)
        except SigningError as exc:
            raise TokenGenerationError(
                TokenGenerationReason.ENCODING_FAILED, str(exc), context={"user_id": str(user_id)}
            ) from exc

        jti = self._signed_jti(refresh_token)
        if not jti or jti != refresh_claims["jti"]:
            raise TokenGenerationError(
                TokenGenerationReason.JTI_MISSING,
                "Signed refresh token does not carry the generated jti.",
            )

        record = RefreshTokenRecord(
            jti=jti,
            user_id=str(refresh_claims["sub"]),
            token_hash=hash_token(refresh_token),
            device=device,
            created_at=now,
            expires_at=from_epoch(refresh_claims["exp"]),
            family_id=family_id or jti,
            parent_jti=parent_jti,
        )
        try:
            self.refresh_store.create(record)
        except Exception as exc:
            raise TokenGenerationError(
                TokenGenerationReason.STORAGE_FAILED,
                f"Refresh token could not be stored: {exc}",
                context={"user_id": record.user_id, "jti": jti},
            ) from exc

        if family_id is not None:
            self._join_family(record)

        self.log.debug(
            "Token pair issued",
            extra={
                "event": "token.issued",
                "user_id": record.user_id,
                "device_id": device.device_id,
                "jti": jti,
                "family_id": record.family_id,
            },
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=from_epoch(access_claims["exp"]),
            refresh_expires_at=record.expires_at,
        )

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate_access_token(self, token: str) -> JwtPayload:
        """
        Verify an access token.

        :raises TokenExpiredError: If ``exp`` has passed.
        :raises InvalidTokenError: For every other rejection, including a
            blacklisted jti when blacklist checks are enabled.
        """
        payload = self._verify(token, TokenKind.ACCESS)
        if self.cfg.check_access_blacklist and self.blacklist.is_blacklisted(payload.jti):
            raise InvalidTokenError(
                InvalidTokenReason.BLACKLISTED,
                "Access token has been revoked.",
                token_type=TokenKind.ACCESS.value,
                context={"jti": payload.jti},
            )
        return payload

    def validate_refresh_token(self, token: str) -> JwtPayload:
        """
        Verify a refresh token and its server-side record.

        A correctly signed token is still rejected when its record is absent
        or already rotated (``claims_invalid``) or revoked (``blacklisted``).

        :raises TokenExpiredError: If ``exp`` has passed.
        :raises InvalidTokenError: For every other rejection.
        """
        payload, _ = self._validate_refresh(token)
        return payload

    # ------------------------------------------------------------------ #
    # Rotation
    # ------------------------------------------------------------------ #

    def refresh_tokens(
        self,
        old_refresh_token: str,
        device: DeviceFingerprint,
        custom_claims: Mapping[str, Any] | None = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair (single use).

        :param old_refresh_token: Refresh token presented by the client.
        :param device: Device performing the refresh.
        :param custom_claims: Access claims for the new pair.
        :returns: New pair in the same token family.
        :raises InvalidTokenError: ``claims_invalid`` once the token was used.
        :raises RefreshTokenError: ``device_mismatch`` under device binding.
        :raises TokenExpiredError: If the token expired meanwhile.
        """
        payload, record = self._validate_refresh(old_refresh_token)

        bound_device = device.device_id if self.cfg.enforce_device_binding else None
        result = self.refresh_store.consume(payload.jti, now=self.clock(), device_id=bound_device)

        if result is RotationResult.REUSED:
            self._on_reuse(record)
            raise self._rejected(InvalidTokenReason.CLAIMS_INVALID, "Refresh token already used.", payload)
        if result is RotationResult.NOT_FOUND:
            raise self._rejected(InvalidTokenReason.CLAIMS_INVALID, "Refresh token not found.", payload)
        if result is RotationResult.REVOKED:
            raise self._rejected(InvalidTokenReason.BLACKLISTED, "Refresh token revoked.", payload)
        if result is RotationResult.EXPIRED:
            raise TokenExpiredError(
                token_type=TokenKind.REFRESH.value,
                expired_at=record.expires_at,
                context={"jti": payload.jti},
            )
        if result is RotationResult.FINGERPRINT_MISMATCH:
            self.log.warning(
                "Refresh attempted from another device",
                extra={
                    "event": "token.device_mismatch",
                    "user_id": record.user_id,
                    "device_id": device.device_id,
                    "jti": record.jti,
                },
            )
            raise RefreshTokenError(
                RefreshTokenReason.DEVICE_MISMATCH,
                "Refresh token is bound to another device.",
                context={"jti": payload.jti},
            )
        if result is not RotationResult.OK:
            raise RefreshTokenError(RefreshTokenReason.ROTATION_FAILED, context={"jti": payload.jti})

        return self.issue_token_pair(
            payload.subject,
            device,
            custom_claims,
            family_id=record.family_id,
            parent_jti=record.jti,
        )

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def revoke_token(
        self, token: str, reason: str = RevocationReason.TOKEN_REVOKED
    ) -> bool:
        """
        Blacklist a token (expired tokens included); revoke its record if refresh.

        Never raises.

        :returns: ``True`` when the blacklist entry was written.
        """
        try:
            claims = self.signer.parse_unverified(token)
            jti = claims.get("jti")
            if not isinstance(jti, str) or not jti:
                return False
            kind = (
                TokenKind.REFRESH
                if claims.get("type") == TokenKind.REFRESH.value
                else TokenKind.ACCESS
            )
            now = self.clock()
            self.blacklist.add(
                BlacklistEntry(
                    jti=jti,
                    token_type=kind,
                    user_id=str(claims.get("sub") or ""),
                    expires_at=self._entry_expiry(claims.get("exp"), now),
                    reason=str(reason),
                    blacklisted_at=now,
                    device_id=claims.get("device_id"),
                )
            )
            if kind is TokenKind.REFRESH:
                self.refresh_store.revoke(jti, str(reason), now=now)
        except Exception:
            self.log.warning(
                "Token revocation failed",
                extra={"event": "token.revoke.failed", "reason": str(reason)},
                exc_info=True,
            )
            return False

        self.log.info(
            "Token revoked",
            extra={
                "event": "token.revoked",
                "user_id": str(claims.get("sub") or ""),
                "jti": jti,
                "token_type": kind.value,
                "reason": str(reason),
            },
        )
        return True

    def revoke_all_user_tokens(
        self,
        user_id: str | int,
        reason: str = RevocationReason.LOGOUT_ALL_DEVICES,
        exclude_jti: str | None = None,
    ) -> int:
        """
        Revoke every active refresh record of a user.

        :returns: Number of records revoked.
        """
        count = self.refresh_store.revoke_all_by_user_id(
            str(user_id), str(reason), exclude_jti, now=self.clock()
        )
        self.log.info(
            "User tokens revoked",
            extra={
                "event": "token.revoked_all",
                "user_id": str(user_id),
                "reason": str(reason),
                "count": count,
            },
        )
        return count

    # ------------------------------------------------------------------ #
    # Read-only queries
    # ------------------------------------------------------------------ #

    def extract_payload(self, token: str) -> JwtPayload | None:
        """Decode claims without verifying the signature; ``None`` if unparsable."""
        try:
            return self.codec.decode_claims(self.signer.parse_unverified(token))
        except (VerificationError, InvalidTokenError):
            return None

    def signed_payload(self, token: str) -> JwtPayload | None:
        """
        Decode a token this service signed, expired or not.

        Signature, algorithm, issuer and audience are verified; ``exp`` and
        ``nbf`` are not. Returns ``None`` for anything else.
        """
        if not isinstance(token, str) or not token.strip():
            return None
        try:
            claims = self.signer.verify(
                token,
                self.keys,
                issuer=self.cfg.issuer,
                audience=self.cfg.audience,
                check_time=False,
            )
            return self.codec.decode_claims(claims)
        except (VerificationError, InvalidTokenError):
            return None

    def is_token_revoked(self, token: str) -> bool:
        """
        Return ``True`` when the token is blacklisted or its record revoked.

        Unparsable tokens count as revoked.
        """
        payload = self.extract_payload(token)
        if payload is None:
            return True
        if self.blacklist.is_blacklisted(payload.jti):
            return True
        if payload.is_of_kind(TokenKind.REFRESH):
            record = self.refresh_store.find_by_jti(payload.jti)
            return record is not None and record.status is RecordStatus.REVOKED
        return False

    def get_token_remaining_time(self, token: str) -> int:
        """Seconds until ``exp``; ``0`` when expired or unparsable."""
        payload = self.extract_payload(token)
        return payload.remaining_seconds(self.clock()) if payload else 0

    def is_token_near_expiry(
        self, token: str, threshold_seconds: int = DEFAULT_NEAR_EXPIRY_SECONDS
    ) -> bool:
        """``True`` when the token is still live but expires within the threshold."""
        remaining = self.get_token_remaining_time(token)
        return 0 < remaining <= threshold_seconds

    def is_token_owned_by(self, token: str, user_id: str | int) -> bool:
        payload = self.extract_payload(token)
        return payload is not None and payload.subject == str(user_id)

    def is_token_from_device(self, token: str, device: DeviceFingerprint) -> bool:
        payload = self.extract_payload(token)
        return payload is not None and payload.device_id == device.device_id

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _verify(self, token: str, kind: TokenKind) -> JwtPayload:
        if not isinstance(token, str) or not token.strip():
            raise InvalidTokenError(
                InvalidTokenReason.MALFORMED, "Token is empty.", token_type=kind.value
            )
        try:
            claims = self.signer.verify(
                token,
                self.keys,
                issuer=self.cfg.issuer,
                audience=self.cfg.audience,
                leeway=self.cfg.leeway,
                now=self.clock(),
            )
        except VerificationError as exc:
            if exc.reason == "expired":
                raise TokenExpiredError(token_type=kind.value) from exc
            raise InvalidTokenError(
                _invalid_reason(exc.reason), exc.message, token_type=kind.value
            ) from exc

        payload = self.codec.decode_claims(claims)
        if not payload.is_of_kind(kind):
            raise InvalidTokenError(
                InvalidTokenReason.CLAIMS_INVALID,
                f"Expected a {kind.value} token.",
                token_type=kind.value,
                context={"jti": payload.jti},
            )
        return payload

    def _validate_refresh(self, token: str) -> tuple[JwtPayload, RefreshTokenRecord]:
        payload = self._verify(token, TokenKind.REFRESH)
        if self.blacklist.is_blacklisted(payload.jti):
            raise self._rejected(InvalidTokenReason.BLACKLISTED, "Refresh token revoked.", payload)

        record = self.refresh_store.find_by_jti(payload.jti)
        if record is None:
            raise self._rejected(InvalidTokenReason.CLAIMS_INVALID, "Refresh token not found.", payload)
        if record.status is RecordStatus.USED:
            self._on_reuse(record)
            raise self._rejected(InvalidTokenReason.CLAIMS_INVALID, "Refresh token already used.", payload)
        if record.status is RecordStatus.REVOKED:
            raise self._rejected(InvalidTokenReason.BLACKLISTED, "Refresh token revoked.", payload)
        if self.refresh_store.is_family_revoked(record.family_id or record.jti):
            raise self._rejected(InvalidTokenReason.BLACKLISTED, "Token family revoked.", payload)
        if record.user_id != payload.subject or not hmac.compare_digest(
            record.token_hash, hash_token(token)
        ):
            raise self._rejected(
                InvalidTokenReason.CLAIMS_INVALID, "Refresh token does not match its record.", payload
            )
        return payload, record

    def _on_reuse(self, record: RefreshTokenRecord) -> None:
        """Treat replay of a rotated token as theft of its chain."""
        revoked = 0
        if self.cfg.revoke_family_on_reuse and record.family_id:
            revoked = self.refresh_store.revoke_family(
                record.family_id, RevocationReason.TOKEN_REUSE_DETECTED, now=self.clock()
            )
        self.log.warning(
            "Refresh token reuse detected",
            extra={
                "event": "token.reuse_detected",
                "user_id": record.user_id,
                "device_id": record.device.device_id,
                "jti": record.jti,
                "family_id": record.family_id,
                "count": revoked,
            },
        )

    def _join_family(self, record: RefreshTokenRecord) -> None:
        # A reuse may revoke the family between consume and create; the new
        # record must not outlive it
        family_id = record.family_id or record.jti
        if not self.refresh_store.is_family_revoked(family_id):
            return
        self.refresh_store.revoke(
            record.jti, RevocationReason.TOKEN_REUSE_DETECTED, now=self.clock()
        )
        self.log.warning(
            "Rotated into a revoked token family",
            extra={
                "event": "token.family_revoked",
                "user_id": record.user_id,
                "jti": record.jti,
                "family_id": family_id,
            },
        )

    def _signed_jti(self, token: str) -> str | None:
        try:
            jti = self.signer.parse_unverified(token).get("jti")
        except VerificationError:
            return None
        return jti if isinstance(jti, str) else None

    def _entry_expiry(self, exp: Any, now: datetime) -> datetime:
        # Unknown expiry: keep the entry as long as any refresh token could live
        if isinstance(exp, int | float) and not isinstance(exp, bool):
            try:
                return from_epoch(exp)
            except (OverflowError, OSError, ValueError):
                pass
        return now + self.cfg.refresh_ttl

    @staticmethod
    def _rejected(reason: InvalidTokenReason, message: str, payload: JwtPayload) -> InvalidTokenError:
        return InvalidTokenError(
            reason,
            message,
            token_type=TokenKind.REFRESH.value,
            context={"jti": payload.jti, "user_id": payload.subject},
        )


def _invalid_reason(raw: str) -> InvalidTokenReason:
    try:
        return InvalidTokenReason(raw)
    except ValueError:
        return InvalidTokenReason.CLAIMS_INVALID
