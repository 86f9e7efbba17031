# tokenauth/services/auth/service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from tokenauth.services._shared.base import BaseService
from tokenauth.services._shared.clock import Clock
from tokenauth.services._shared.dto import DeviceFingerprint, RevocationReason
from tokenauth.services._shared.errors import (
    TOKEN_REJECTIONS,
    AuthenticationError,
    AuthenticationReason,
)
from tokenauth.services._shared.ports.blacklist_store import (
    DEFAULT_RECENT_LIMIT,
    BlacklistEntry,
    BlacklistStats,
)
from tokenauth.services._shared.ports.credential_checker import CredentialChecker
from tokenauth.services._shared.ports.refresh_token_store import TokenStats
from tokenauth.services.auth.dto import (
    LoginIn,
    LoginOut,
    LogoutIn,
    RefreshIn,
    RefreshOut,
    UserFromTokenOut,
)
from tokenauth.services.tokens.dto import JwtPayload, TokenConfig
from tokenauth.services.tokens.service import TokenService

DEFAULT_REVOKED_RETENTION_DAYS = 30
DEFAULT_SECURITY_WINDOW_HOURS = 24


class AuthService(BaseService):
    """
    Authentication lifecycle service (login / refresh / logout).

    Credentials are checked through a :class:`CredentialChecker`; tokens are
    issued, rotated and revoked through :class:`TokenService`. The service
    also enforces the per-user session ceiling: a login that would exceed
    ``max_active_refresh_tokens`` evicts the oldest active sessions first.
    """

    def __init__(
        self,
        *,
        token_service: TokenService,
        credentials: CredentialChecker,
        config: TokenConfig | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param token_service: Token issuance/validation/revocation.
        :param credentials: Identifier/password check and identity lookup.
        :param config: Policy; defaults to the token service's.
        :param clock: Source of "now"; defaults to the token service's clock.
        :param logger: Security event logger.
        """
        super().__init__(clock=clock or token_service.clock, logger=logger or token_service.log)
        self.tokens = token_service
        self.credentials = credentials
        self.cfg = config or token_service.cfg

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def login(self, dto: LoginIn, device: DeviceFingerprint) -> LoginOut:
        """
        Authenticate credentials and issue a fresh token pair.

        :param dto: Login input.
        :param device: Device the session is opened on.
        :returns: Token pair and identity.
        :raises AuthenticationError: ``invalid_credentials``,
            ``account_disabled`` or ``login_failed``.
        """
        try:
            identity = self.credentials.validate(dto.identifier, dto.password)
        except Exception as exc:
            raise self._login_failed(exc) from exc

        if identity is None:
            self.log.warning(
                "Login failed",
                extra={
                    "event": "auth.login.failed",
                    "device_id": device.device_id,
                    "reason": AuthenticationReason.INVALID_CREDENTIALS.value,
                },
            )
            raise AuthenticationError(AuthenticationReason.INVALID_CREDENTIALS)

        if not identity.is_active:
            self.log.warning(
                "Login refused for disabled account",
                extra={
                    "event": "auth.login.failed",
                    "user_id": identity.user_id,
                    "device_id": device.device_id,
                    "reason": AuthenticationReason.ACCOUNT_DISABLED.value,
                },
            )
            raise AuthenticationError(
                AuthenticationReason.ACCOUNT_DISABLED, context={"user_id": identity.user_id}
            )

        try:
            self._admit_session(identity.user_id)
            pair = self.tokens.issue_token_pair(identity.user_id, device, identity.to_claims())
        except Exception as exc:
            raise self._login_failed(exc, user_id=identity.user_id) from exc

        self.log.info(
            "Login succeeded",
            extra={
                "event": "auth.login.succeeded",
                "user_id": identity.user_id,
                "device_id": device.device_id,
            },
        )
        return LoginOut(tokens=pair, user=identity)

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    def refresh(self, dto: RefreshIn, device: DeviceFingerprint) -> RefreshOut:
        """
        Rotate a refresh token; claims are re-read from the current identity.

        :raises AuthenticationError: ``invalid_refresh_token`` for any token
            rejection or a missing/disabled user, ``token_refresh_failed``
            for anything else.
        """
        try:
            payload = self.tokens.validate_refresh_token(dto.refresh_token)
            identity = self.credentials.get_identity(payload.subject)
            if identity is None or not identity.is_active:
                raise AuthenticationError(
                    AuthenticationReason.INVALID_REFRESH_TOKEN,
                    context={"user_id": payload.subject},
                )
            pair = self.tokens.refresh_tokens(dto.refresh_token, device, identity.to_claims())
        except AuthenticationError as exc:
            self._refresh_failed(device, exc.reason)
            raise
        except TOKEN_REJECTIONS as exc:
            self._refresh_failed(device, exc.reason)
            raise AuthenticationError(
                AuthenticationReason.INVALID_REFRESH_TOKEN,
                context={"cause": str(exc.reason)},
            ) from exc
        except Exception as exc:
            self._refresh_failed(device, type(exc).__name__)
            raise AuthenticationError(AuthenticationReason.TOKEN_REFRESH_FAILED) from exc

        self.log.info(
            "Token refreshed",
            extra={
                "event": "auth.refresh.succeeded",
                "user_id": identity.user_id,
                "device_id": device.device_id,
            },
        )
        return RefreshOut(tokens=pair, user=identity)

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(self, dto: LogoutIn) -> bool:
        """
        Revoke the presented tokens; optionally every session of their owner.

        The owner is only taken from a correctly signed token (expiry ignored).

        Best-effort: always returns ``True`` so the client can drop its state.
        """
        ok = True
        if dto.refresh_token:
            ok = self.tokens.revoke_token(dto.refresh_token, dto.reason) and ok
        if dto.access_token:
            ok = self.tokens.revoke_token(dto.access_token, dto.reason) and ok

        owner = self._owner_of(dto.refresh_token) or self._owner_of(dto.access_token)
        if dto.revoke_all and owner:
            try:
                self.tokens.revoke_all_user_tokens(owner, RevocationReason.LOGOUT_ALL_DEVICES)
            except Exception:
                self.log.warning(
                    "Revoking all sessions failed",
                    extra={"event": "auth.logout.partial_failure", "user_id": owner},
                    exc_info=True,
                )
                ok = False

        if not ok:
            self.log.warning(
                "Logout completed with failures",
                extra={"event": "auth.logout.partial_failure", "user_id": owner},
            )
        self.log.info(
            "Logout",
            extra={"event": "auth.logout", "user_id": owner, "reason": str(dto.reason)},
        )
        return True

    # ------------------------------------------------------------------ #
    # Validation / introspection
    # ------------------------------------------------------------------ #

    def validate_access_token(self, token: str) -> JwtPayload:
        return self.tokens.validate_access_token(token)

    def validate_refresh_token(self, token: str) -> JwtPayload:
        return self.tokens.validate_refresh_token(token)

    def get_user_from_token(self, access_token: str) -> UserFromTokenOut | None:
        """
        Resolve the current identity behind an access token.

        :returns: ``None`` when the token is rejected or the user is gone or disabled.
        """
        try:
            payload = self.tokens.validate_access_token(access_token)
        except TOKEN_REJECTIONS:
            return None
        identity = self.credentials.get_identity(payload.subject)
        if identity is None or not identity.is_active:
            return None
        claims = {k: v for k, v in payload.claims.items() if k != "type"}
        return UserFromTokenOut(
            user=identity, jti=payload.jti, device_id=payload.device_id, claims=claims
        )

    # ------------------------------------------------------------------ #
    # Revocation & maintenance (best-effort)
    # ------------------------------------------------------------------ #

    def revoke_refresh_token(
        self, token: str, reason: str = RevocationReason.USER_LOGOUT
    ) -> bool:
        return self.tokens.revoke_token(token, reason)

    def revoke_all_user_tokens(
        self,
        user_id: str,
        exclude_jti: str | None = None,
        reason: str = RevocationReason.LOGOUT_ALL_DEVICES,
    ) -> int:
        """Revoke every active session of a user, optionally keeping one. ``0`` on failure."""
        try:
            return self.tokens.revoke_all_user_tokens(user_id, reason, exclude_jti)
        except Exception:
            self.log.warning(
                "Bulk revocation failed",
                extra={"event": "token.revoke.failed", "user_id": str(user_id), "reason": str(reason)},
                exc_info=True,
            )
            return 0

    def revoke_device_tokens(
        self, user_id: str, device_id: str, reason: str = RevocationReason.DEVICE_LOST
    ) -> int:
        """Revoke every active session of a user on one device. ``0`` on failure."""
        try:
            count = self.tokens.refresh_store.revoke_all_by_device(
                str(user_id), device_id, str(reason), now=self.clock()
            )
        except Exception:
            self.log.warning(
                "Device revocation failed",
                extra={
                    "event": "token.revoke.failed",
                    "user_id": str(user_id),
                    "device_id": device_id,
                    "reason": str(reason),
                },
                exc_info=True,
            )
            return 0
        self.log.info(
            "Device tokens revoked",
            extra={
                "event": "token.revoked",
                "user_id": str(user_id),
                "device_id": device_id,
                "reason": str(reason),
                "count": count,
            },
        )
        return count

    def get_user_token_stats(self, user_id: str) -> TokenStats:
        """Refresh-token counters for a user; all zero on failure."""
        try:
            return self.tokens.refresh_store.get_user_stats(str(user_id), now=self.clock())
        except Exception:
            self.log.warning(
                "Token stats unavailable",
                extra={"event": "token.stats.failed", "user_id": str(user_id)},
                exc_info=True,
            )
            return TokenStats()

    def cleanup_expired_tokens(self, before: datetime | None = None) -> int:
        """Purge expired refresh records and blacklist entries. ``0`` on failure."""
        at = before or self.clock()
        try:
            removed = self.tokens.refresh_store.cleanup(before=at)
            removed += self.tokens.blacklist.cleanup(before=at)
        except Exception:
            self.log.warning(
                "Expired token cleanup failed",
                extra={"event": "token.cleanup", "reason": "failed"},
                exc_info=True,
            )
            return 0
        self.log.info(
            "Expired tokens purged",
            extra={"event": "token.cleanup", "reason": "expired", "count": removed},
        )
        return removed

    def cleanup_revoked_tokens(self, days: int = DEFAULT_REVOKED_RETENTION_DAYS) -> int:
        """Purge revoked/used refresh records older than ``days``. ``0`` on failure."""
        try:
            removed = self.tokens.refresh_store.cleanup_revoked(
                self.clock() - timedelta(days=days)
            )
        except Exception:
            self.log.warning(
                "Revoked token cleanup failed",
                extra={"event": "token.cleanup", "reason": "failed"},
                exc_info=True,
            )
            return 0
        self.log.info(
            "Revoked tokens purged",
            extra={"event": "token.cleanup", "reason": "revoked", "count": removed},
        )
        return removed

    # ------------------------------------------------------------------ #
    # Blacklist administration
    # ------------------------------------------------------------------ #

    def check_blacklisted(self, jtis: list[str]) -> dict[str, bool]:
        """
        Blacklist status per jti; empty jtis are dropped.

        Fails closed: every jti reads as blacklisted when the store is down.
        """
        wanted = [j for j in jtis if j]
        if not wanted:
            return {}
        try:
            found = self.tokens.blacklist.find_blacklisted(wanted)
        except Exception:
            self.log.error(
                "Blacklist batch check failed",
                extra={"event": "token.blacklist.check_failed", "count": len(wanted)},
                exc_info=True,
            )
            return dict.fromkeys(wanted, True)
        return {jti: jti in found for jti in wanted}

    def remove_from_blacklist(self, jtis: list[str]) -> int:
        """
        Delete blacklist entries, e.g. after a mistaken revocation.

        A revoked refresh record stays revoked. ``0`` on failure.

        :returns: Number of entries removed.
        """
        removed = 0
        try:
            for jti in filter(None, jtis):
                removed += self.tokens.blacklist.remove(jti)
        except Exception:
            self.log.error(
                "Blacklist removal failed",
                extra={"event": "token.blacklist.remove_failed", "count": removed},
                exc_info=True,
            )
            return removed
        self.log.info(
            "Tokens removed from blacklist",
            extra={"event": "token.blacklist.removed", "count": removed},
        )
        return removed

    def get_user_blacklist_stats(self, user_id: str) -> BlacklistStats:
        """Blacklist counters for a user; all zero on failure."""
        try:
            return self.tokens.blacklist.get_user_stats(str(user_id), now=self.clock())
        except Exception:
            self.log.warning(
                "Blacklist stats unavailable",
                extra={"event": "token.stats.failed", "user_id": str(user_id)},
                exc_info=True,
            )
            return BlacklistStats()

    def recent_security_revocations(
        self,
        hours: int = DEFAULT_SECURITY_WINDOW_HOURS,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[BlacklistEntry]:
        """Security-related blacklist entries of the last ``hours``, newest first."""
        since = self.clock() - timedelta(hours=hours)
        try:
            return self.tokens.blacklist.recent_security_entries(since, limit)
        except Exception:
            self.log.warning(
                "Recent security revocations unavailable",
                extra={"event": "token.stats.failed"},
                exc_info=True,
            )
            return []

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _admit_session(
self, user_id: str) -> None:
        """Free one slot under the session ceiling, evicting oldest sessions first."""
        store = self.tokens.refresh_store
        now = self.clock()
        store.cleanup(before=now, user_id=user_id)

        active = store.find_by_user_id(user_id, now=now)
        overflow = len(active) - self.cfg.max_active_refresh_tokens + 1
        if overflow <= 0:
            return

        evicted = 0
        for record in active[:overflow]:
            if store.revoke(record.jti, RevocationReason.MAX_TOKENS_EXCEEDED, now=now):
                evicted += 1
        self.log.info(
            "Oldest sessions evicted",
            extra={
                "event": "auth.session.evicted",
                "user_id": user_id,
                "reason": RevocationReason.MAX_TOKENS_EXCEEDED.value,
                "count": evicted,
            },
        )

    def _owner_of(self, token: str | None) -> str | None:
        if not token:
            return None
        payload = self.tokens.signed_payload(token)
        return payload.subject if payload else None

    def _login_failed(self, exc: Exception, *, user_id: str | None = None) -> AuthenticationError:
        self.log.error(
            "Login failed unexpectedly",
            extra={
                "event": "auth.login.failed",
                "user_id": user_id,
                "reason": AuthenticationReason.LOGIN_FAILED.value,
            },
            exc_info=exc,
        )
        return AuthenticationError(
            AuthenticationReason.LOGIN_FAILED, context={"user_id": user_id} if user_id else None
        )

    def _refresh_failed(self, device: DeviceFingerprint, reason: object) -> None:
        self.log.warning(
            "Token refresh failed",
            extra={
                "event": "auth.refresh.failed",
                "device_id": device.device_id,
                "reason": str(reason),
            },
        )


__all__ = ["AuthService"]
