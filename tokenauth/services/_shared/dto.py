# comments in English; reST docstrings strict
"""Value objects shared by ports, adapters and services."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

MAX_DEVICE_ID_LENGTH = 128
MAX_DEVICE_NAME_LENGTH = 255
MAX_USER_AGENT_LENGTH = 512


class TokenKind(StrEnum):
    """Value of the ``type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"


class RevocationReason(StrEnum):
    """Why a token was blacklisted or a refresh record revoked."""

    USER_LOGOUT = "user_logout"
    TOKEN_REVOKED = "token_revoked"
    SECURITY_BREACH = "security_breach"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_SUSPENDED = "account_suspended"
    MANUAL_REVOCATION = "manual_revocation"
    TOKEN_EXPIRED = "token_expired"
    INVALID_SIGNATURE = "invalid_signature"
    DEVICE_LOST = "device_lost"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    MAX_TOKENS_EXCEEDED = "max_tokens_exceeded"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    LOGOUT_ALL_DEVICES = "logout_all_devices"


SECURITY_REASONS = frozenset(
    {
        RevocationReason.SECURITY_BREACH,
        RevocationReason.PASSWORD_CHANGED,
        RevocationReason.ACCOUNT_SUSPENDED,
        RevocationReason.INVALID_SIGNATURE,
        RevocationReason.DEVICE_LOST,
        RevocationReason.SUSPICIOUS_ACTIVITY,
        RevocationReason.TOKEN_REUSE_DETECTED,
    }
)

USER_INITIATED_REASONS = frozenset(
    {
        RevocationReason.USER_LOGOUT,
        RevocationReason.LOGOUT_ALL_DEVICES,
        RevocationReason.DEVICE_LOST,
    }
)


@dataclass(frozen=True, slots=True)
class DeviceFingerprint:
    """
    Client context a refresh token is bound to.

    :param device_id: Stable client-generated identifier (required).
    :type device_id: str
    :param ip_address: IPv4/IPv6 address seen at issuance, when known.
    :type ip_address: str | None
    :param device_name: Human label ("Alice's iPhone").
    :type device_name: str
    :param user_agent: Raw ``User-Agent`` header.
    :type user_agent: str
    :param platform: OS/platform label.
    :type platform: str | None
    :param browser: Browser label.
    :type browser: str | None
    :raises ValueError: If ``device_id`` is blank/too long or the IP does not parse.
    """

    device_id: str
    ip_address: str | None = None
    device_name: str = ""
    user_agent: str = ""
    platform: str | None = None
    browser: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.device_id, str) or not self.device_id.strip():
            raise ValueError("Device id is required.")
        if len(self.device_id) > MAX_DEVICE_ID_LENGTH:
            raise ValueError(f"Device id exceeds {MAX_DEVICE_ID_LENGTH} characters.")
        if len(self.device_name) > MAX_DEVICE_NAME_LENGTH:
            raise ValueError(f"Device name exceeds {MAX_DEVICE_NAME_LENGTH} characters.")
        if len(self.user_agent) > MAX_USER_AGENT_LENGTH:
            raise ValueError(f"User agent exceeds {MAX_USER_AGENT_LENGTH} characters.")
        if self.ip_address is not None:
            try:
                ipaddress.ip_address(self.ip_address)
            except ValueError as exc:
                raise ValueError(f"Invalid IP address: {self.ip_address!r}") from exc

    def matches(self, other: DeviceFingerprint) -> bool:
        """Return ``True`` when both fingerprints name the same device."""
        return self.device_id == other.device_id

    def to_claims(self) -> dict[str, Any]:
        """
        Render the device claims embedded in access tokens.

        :returns: ``device_id``, ``device_name``, ``ip_address``, ``user_agent``,
            ``platform`` and ``browser``.
        :rtype: dict[str, Any]
        """
        return {
            "device_id": self.device_id,
            "device_name": self.device_name,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "platform": self.platform,
            "browser": self.browser,
        }
