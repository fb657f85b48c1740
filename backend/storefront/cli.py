# Overview: Flask CLI command groups for bootstrap, scheduled jobs and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables and seed default settings (idempotent).
#
# Users:
# - python -m flask users create-admin --email admin@example.com --password "Password123" [--name "Admin"]
#
# Scheduled jobs (cron):
# - python -m flask carts process [--hours 1] [--limit 10]
#   Send abandoned cart recovery emails.
# - python -m flask carts cleanup-expired
#   Delete abandoned carts past their expiry.
# - python -m flask inventory process-alerts
#   Email the store address about items at or below their alert threshold.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext

from .extensions import db
from .services.auth_service import create_user
from .services.errors import StorefrontError
from .services import abandoned_cart_service
from .services import inventory_alert_service
from .services import session_service
from .services import settings_service
from .services import throttle_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create all tables and seed default settings.

    Safe to re-run: existing tables and settings rows are left alone.
    """
    click.echo("START Initializing storefront...")
    db.create_all()
    click.echo("PASS Tables ready")
    created = settings_service.seed_defaults()
    click.echo(f"PASS Seeded {created} settings domain(s)")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--name', default=None, help='Display name')
@with_appcontext
def create_admin_cli(email, password, name):
    """
    Create an admin account.

    Password must have 8+ characters with an uppercase letter,
    a lowercase letter and a digit.
    """
    try:
        user = create_user(email=email, password=password, name=name, role="admin")
    except StorefrontError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")


@click.group('carts')
def carts_group():
    """Abandoned cart recovery jobs."""


@carts_group.command('process')
@click.option('--hours', type=int, default=None, help='Only carts older than this many hours (1-72)')
@click.option('--limit', type=int, default=None, help='Maximum carts to email (1-50)')
@with_appcontext
def process_carts_cli(hours, limit):
    """Send recovery emails to eligible abandoned carts."""
    try:
        result = abandoned_cart_service.process_abandoned_carts(hours_threshold=hours, limit=limit)
    except StorefrontError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"Processed {result.processed}, sent {result.sent}, errors {len(result.errors)}")
    for error in result.errors:
        click.echo(f"  - {error}")


@carts_group.command('cleanup-expired')
@with_appcontext
def cleanup_carts_cli():
    deleted = abandoned_cart_service.cleanup_expired()
    click.echo(f"Deleted {deleted} expired abandoned carts.")


@click.group('inventory')
def inventory_group():
    """Inventory alert jobs."""


@inventory_group.command('process-alerts')
@with_appcontext
def process_alerts_cli():
    try:
        result = inventory_alert_service.process_alerts()
    except StorefrontError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"Processed {result.processed}, sent {result.sent}, errors {len(result.errors)}")
    for error in result.errors:
        click.echo(f"  - {error}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired or revoked sessions older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    deleted = throttle_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(carts_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(maintenance_group)
