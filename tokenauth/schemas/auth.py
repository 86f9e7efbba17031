"""Authentication-related Marshmallow schemas."""

from __future__ import annotations

from typing import Any

from marshmallow import Schema, ValidationError, fields, post_load, validate, validates_schema

from tokenauth.services._shared.dto import (
    MAX_DEVICE_ID_LENGTH,
    MAX_DEVICE_NAME_LENGTH,
    MAX_USER_AGENT_LENGTH,
    DeviceFingerprint,
)
from tokenauth.services.auth.dto import LoginIn, LogoutIn, RefreshIn


class DeviceSchema(Schema):
    """Client device block; loads a :class:`DeviceFingerprint`."""

    device_id = fields.String(
        required=True, validate=validate.Length(min=1, max=MAX_DEVICE_ID_LENGTH)
    )
    device_name = fields.String(
        load_default="", validate=validate.Length(max=MAX_DEVICE_NAME_LENGTH)
    )
    ip_address = fields.IP(load_default=None, allow_none=True)
    user_agent = fields.String(
        load_default="", validate=validate.Length(max=MAX_USER_AGENT_LENGTH)
    )
    platform = fields.String(load_default=None, allow_none=True)
    browser = fields.String(load_default=None, allow_none=True)

    @post_load
    def make_device(self, data: dict[str, Any], **_: Any) -> DeviceFingerprint:
        ip = data.get("ip_address")
        data["ip_address"] = str(ip) if ip is not None else None
        try:
            return DeviceFingerprint(**data)
        except ValueError as exc:
            raise ValidationError(str(exc), field_name="device_id") from exc


class LoginSchema(Schema):
    """Input payload for authenticating a user (email or username)."""

    identifier = fields.String(required=True, validate=validate.Length(min=1, max=254))
    password = fields.String(required=True, validate=validate.Length(min=1, max=128))
    device = fields.Nested(DeviceSchema, required=True)

    @post_load
    def make_login(self, data: dict[str, Any], **_: Any) -> dict[str, Any]:
        return {
            "login": LoginIn(identifier=data["identifier"], password=data["password"]),
            "device": data["device"],
        }


class RefreshSchema(Schema):
    """Input payload for rotating a refresh token."""

    refresh_token = fields.String(required=True, validate=validate.Length(min=1))
    device = fields.Nested(DeviceSchema, required=True)

    @post_load
    def make_refresh(self, data: dict[str, Any], **_: Any) -> dict[str, Any]:
        return {"refresh": RefreshIn(refresh_token=data["refresh_token"]), "device": data["device"]}


class LogoutSchema(Schema):
    """Input payload for logout; at least one token is required."""

    access_token = fields.String(load_default=None, allow_none=True)
    refresh_token = fields.String(load_default=None, allow_none=True)
    revoke_all = fields.Boolean(load_default=False)

    @validates_schema
    def require_token(self, data: dict[str, Any], **_: Any) -> None:
        if not data.get("access_token") and not data.get("refresh_token"):
            raise ValidationError("Provide an access_token or a refresh_token.")

    @post_load
    def make_logout(self, data: dict[str, Any], **_: Any) -> LogoutIn:
        return LogoutIn(**data)


class TokenPairSchema(Schema):
    """Response payload for a token pair."""

    access_token = fields.String(required=True)
    refresh_token = fields.String(required=True)
    token_type = fields.String(dump_default="Bearer")
    access_expires_at = fields.AwareDateTime(required=True)
    refresh_expires_at = fields.AwareDateTime(required=True)


class TokenStatsSchema(Schema):
    """Response payload with per-user refresh-token counters."""

    total = fields.Integer(required=True)
    active = fields.Integer(required=True)
    used = fields.Integer(required=True)
    expired = fields.Integer(required=True)
    revoked = fields.Integer(required=True)


class BlacklistStatsSchema(Schema):
    """Response payload with per-user blacklist counters."""

    total = fields.Integer(required=True)
    active = fields.Integer(required=True)
    security_related = fields.Integer(required=True)
    by_reason = fields.Dict(keys=fields.String(), values=fields.Integer())
