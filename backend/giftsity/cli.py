# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/giftsity/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (and GIFTSITY_SERVICE if not main).
# - Use: python -m flask <group> <command> [options]
#
# Identity bootstrap/inspection:
# - python -m flask users create-admin --email ops@giftsity.local --name "Ops"
#   Create a verified admin (password optional; admins can always use OTP).
# - python -m flask users list --role seller
#   List identities of one role with verification and status.
# - python -m flask users set-status --role seller --email shop@example.com --status suspended
#   Suspend or reactivate an account; suspending revokes its sessions.
#
# Maintenance (safe to run from any gateway, e.g. from cron):
# - python -m flask maintenance sweep-orders
#   Cancel unpaid orders past the payment timeout, close orders past the return window.
# - python -m flask maintenance cleanup-sessions --older-than-days 30
# - python -m flask maintenance cleanup-otps --older-than-days 1
# - python -m flask maintenance purge-audit [--retention-days N]
#   Without N uses AUDIT_RETENTION_DAYS; when that is unset nothing is deleted.

import click
from flask.cli import with_appcontext

from .errors import GiftsityError
from .extensions import db
from .services import auth_service, identity_service, maintenance_service, session_service
from .services.auth_service import PasswordValidationError
from .validation import ROLES
from .time_utils import utcnow


@click.group('users')
def users_group():
    """Identity inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', default=None, help='Display name')
@click.option('--password', default=None, help='Optional password (must meet strength rules)')
@with_appcontext
def create_admin_cli(email, name, password):
    """
    Create a verified admin.

    Admins cannot self-register through a gateway, so the first one is
    created here. Existing admins are left untouched.
    """
    try:
        existing = identity_service.find_by_email("admin", email)
        if existing:
            click.echo(f"FAIL Admin '{existing.email}' already exists")
            return

        password_hash = auth_service.hash_password(password) if password else None
        admin = identity_service.register_identity("admin", email, {"name": name}, password_hash)
        identity_service.mark_verified(admin, now=utcnow())
        db.session.commit()

        click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")
        if password_hash:
            click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except GiftsityError as e:
        click.echo(f"FAIL {e.message}")


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLES), required=True, help='Role to list')
@with_appcontext
def list_users_cli(role):
    """List identities of one role."""
    model = identity_service.model_for(role)
    identities = db.session.query(model).order_by(model.id.asc()).all()

    if not identities:
        click.echo(f"No {role} accounts.")
        return

    click.echo(f"{'ID':<6} {'Email':<40} {'Verified':<9} {'Status':<10} {'Last login'}")
    click.echo("-" * 90)
    for identity in identities:
        last_login = identity.last_login_at.isoformat(timespec="seconds") if identity.last_login_at else "-"
        click.echo(
            f"{identity.id:<6} {identity.email:<40} {'yes' if identity.is_verified else 'no':<9} "
            f"{identity.status:<10} {last_login}"
        )


@users_group.command('set-status')
@click.option('--role', type=click.Choice(ROLES), required=True)
@click.option('--email', required=True)
@click.option('--status', type=click.Choice(['active', 'suspended']), required=True)
@with_appcontext
def set_status_cli(role, email, status):
    """Suspend or reactivate an account."""
    try:
        identity = identity_service.find_by_email(role, email)
        if identity is None:
            click.echo(f"FAIL No {role} with email {email}")
            return

        identity_service.set_status(identity, status)
        revoked = 0
        if status == "suspended":
            revoked = session_service.revoke_all_identity_sessions(identity, reason="Account suspended")

        click.echo(f"PASS {identity.email} is now {status} ({revoked} sessions revoked)")
    except GiftsityError as e:
        click.echo(f"FAIL {e.message}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('sweep-orders')
@with_appcontext
def sweep_orders_cli():
    """Cancel stale PaymentPending orders and close expired return windows."""
    result = maintenance_service.sweep_orders()
    click.echo(f"Cancelled {result['cancelled_unpaid']} unpaid orders.")
    click.echo(f"Closed {result['closed_after_return_window']} orders past the return window.")


@maintenance_group.command('cleanup-sessions')
@click.option('--older-than-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(older_than_days):
    """Delete expired or revoked sessions."""
    deleted = maintenance_service.cleanup_sessions(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} expired or revoked sessions older than {older_than_days} days.")


@maintenance_group.command('cleanup-otps')
@click.option('--older-than-days', type=int, default=1, show_default=True)
@with_appcontext
def cleanup_otps_cli(older_than_days):
    """Delete settled one-time codes."""
    deleted = maintenance_service.cleanup_otps(older_than_days=older_than_days)
    click.echo(f"Deleted {deleted} settled one-time codes older than {older_than_days} days.")


@maintenance_group.command('purge-audit')
@click.option('--retention-days', type=int, default=None,
              help='Override AUDIT_RETENTION_DAYS for this run')
@with_appcontext
def purge_audit_cli(retention_days):
    """
    Cleanup old auth audit entries.

    Default: AUDIT_RETENTION_DAYS. Unset means keep forever.
    """
    deleted = maintenance_service.purge_audit(retention_days=retention_days)
    click.echo(f"Deleted {deleted} auth audit entries.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
