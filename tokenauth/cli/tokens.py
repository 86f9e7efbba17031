"""Flask CLI commands for refresh-token and blacklist maintenance."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import click
from flask.cli import with_appcontext

from tokenauth.services._shared.dto import RevocationReason
from tokenauth.services._shared.ports.blacklist_store import DEFAULT_RECENT_LIMIT
from tokenauth.services.auth.service import (
    DEFAULT_REVOKED_RETENTION_DAYS,
    DEFAULT_SECURITY_WINDOW_HOURS,
    AuthService,
)
from tokenauth.wiring import get_auth_service

LOGGER = logging.getLogger(__name__)


def _service() -> AuthService:
    try:
        return get_auth_service()
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc


def _parse_instant(value: str | None) -> datetime | None:
    """Parse an ISO-8601 instant; naive values are read as UTC."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"{value!r} is not an ISO-8601 datetime.") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@click.group("tokens")
def tokens_cli() -> None:
    """Refresh-token and blacklist maintenance commands."""


@tokens_cli.command("cleanup")
@click.option("--before", default=None, help="ISO-8601 cutoff (default: now).")
@with_appcontext
def cleanup_command(before: str | None) -> None:
    """Purge expired refresh tokens and blacklist entries."""
    removed = _service().cleanup_expired_tokens(_parse_instant(before))
    click.echo(f"Removed {removed} expired token record(s).")


@tokens_cli.command("cleanup-revoked")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=DEFAULT_REVOKED_RETENTION_DAYS,
    show_default=True,
    help="Keep revoked/used records younger than this many days.",
)
@with_appcontext
def cleanup_revoked_command(days: int) -> None:
    """Purge revoked and rotated refresh tokens past the retention window."""
    removed = _service().cleanup_revoked_tokens(days)
    click.echo(f"Removed {removed} revoked/used token record(s).")


@tokens_cli.command("stats")
@click.argument("user_id")
@with_appcontext
def stats_command(user_id: str) -> None:
    """Show refresh-token counters for USER_ID."""
    stats = _service().get_user_token_stats(user_id)
    click.echo(f"Tokens for user {user_id}:")
    for name in ("total", "active", "used", "expired", "revoked"):
        click.echo(f"  {name.ljust(7)}  {getattr(stats, name):>4}")


@tokens_cli.command("revoke-user")
@click.argument("user_id")
@click.option(
    "--reason",
    type=click.Choice([r.value for r in RevocationReason]),
    default=RevocationReason.MANUAL_REVOCATION.value,
    show_default=True,
)
@with_appcontext
def revoke_user_command(user_id: str, reason: str) -> None:
    """Revoke every active session of USER_ID."""
    count = _service().revoke_all_user_tokens(user_id, reason=reason)
    LOGGER.info("Revoked %s session(s) for user %s", count, user_id)
    click.echo(f"Revoked {count} session(s) for user {user_id}.")


@tokens_cli.command("revoke-device")
@click.argument("user_id")
@click.argument("device_id")
@with_appcontext
def revoke_device_command(user_id: str, device_id: str) -> None:
    """Revoke every active session of USER_ID on DEVICE_ID."""
    count = _service().revoke_device_tokens(user_id, device_id)
    click.echo(f"Revoked {count} session(s) for user {user_id} on device {device_id}.")


@tokens_cli.command("blacklist-stats")
@click.argument("user_id")
@with_appcontext
def blacklist_stats_command(user_id: str) -> None:
    """Show blacklist counters for USER_ID."""
    stats = _service().get_user_blacklist_stats(user_id)
    click.echo(f"Blacklisted tokens for user {user_id}:")
    click.echo(f"  total     {stats.total:>4}")
    click.echo(f"  active    {stats.active:>4}")
    click.echo(f"  security  {stats.security_related:>4}")
    for reason, count in sorted(stats.by_reason.items()):
        click.echo(f"    {reason}: {count}")


@tokens_cli.command("unblacklist")
@click.argument("jtis", nargs=-1, required=True)
@with_appcontext
def unblacklist_command(jtis: tuple[str, ...]) -> None:
    """Remove JTIS from the blacklist."""
    removed = _service().remove_from_blacklist(list(jtis))
    LOGGER.info("Removed %s of %s jti(s) from the blacklist", removed, len(jtis))
    click.echo(f"Removed {removed} of {len(jtis)} jti(s) from the blacklist.")


@tokens_cli.command("security-events")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=DEFAULT_SECURITY_WINDOW_HOURS,
    show_default=True,
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=DEFAULT_RECENT_LIMIT,
    show_default=True,
)
@with_appcontext
def security_events_command(hours: int, limit: int) -> None:
    """List recent security-related revocations, newest first."""
    entries = _service().recent_security_revocations(hours=hours, limit=limit)
    if not entries:
        click.echo(f"No security-related revocations in the last {hours}h.")
        return
    for e in entries:
        click.echo(
            f"{e.blacklisted_at.isoformat()}  {e.reason}  user={e.user_id}  "
            f"{e.token_type.value}  {e.jti}"
        )
