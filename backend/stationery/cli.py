# Overview: Flask CLI command groups for environment checks, bootstrap, and client storage maintenance.

# backend/stationery/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system verify-env
#   Check that the upload credential variables are set (values are masked).
# - python -m flask system init-db
#   Create the client storage tables (use `flask db upgrade` in deployments).
#
# Client storage:
# - python -m flask storage list [--client-id abc123]
#   List clients, or the keys stored for one client.
# - python -m flask storage clear --client-id abc123 [--yes]
#   Delete everything stored for one client (cart, profile, preferences).

import os

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db, portal_service, STORAGE
from .models import ClientStorageEntry


def mask(value: str, visible: int = 4) -> str:
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "..."


@click.group('system')
def system_group():
    """System checks and bootstrap commands."""


@system_group.command('verify-env')
@with_appcontext
@click.pass_context
def verify_env(ctx):
    """Verify the environment variables in REQUIRED_ENV_VARS are set."""
    click.echo("CHECK Environment variables...")

    missing = []
    for name in current_app.config["REQUIRED_ENV_VARS"]:
        value = os.environ.get(name)
        if value:
            click.echo(f"PASS {name}: {mask(value)}")
        else:
            click.echo(f"FAIL {name}: Missing")
            missing.append(name)

    if missing:
        click.echo(f"\nFAIL {len(missing)} required variable(s) missing. Please check your .env file.")
        ctx.exit(1)

    click.echo("\nPASS All required environment variables are set.")


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Client storage tables ready.")


@click.group('storage')
def storage_group():
    """Client storage inspection and cleanup."""


@storage_group.command('list')
@click.option('--client-id', help='List the keys of one client')
@with_appcontext
def list_storage(client_id):
    """List clients with stored state, or one client's entries."""
    if not client_id:
        clients = portal_service(STORAGE).clients()
        if not clients:
            click.echo("No client storage found.")
            return
        for cid in clients:
            click.echo(cid)
        return

    entries = (
        db.session.query(ClientStorageEntry)
        .filter_by(client_id=client_id)
        .order_by(ClientStorageEntry.key.asc())
        .all()
    )
    if not entries:
        click.echo(f"No entries for client {client_id}.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Key':<20} {'Bytes':<8} {'Updated'}")
    click.echo("="*70)
    for entry in entries:
        updated = entry.to_dict()["updated_at"] or "-"
        click.echo(f"{entry.key:<20} {len(entry.value or ''):<8} {updated}")
    click.echo("="*70 + "\n")


@storage_group.command('clear')
@click.option('--client-id', required=True, help='Client whose state is deleted')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def clear_storage(client_id, yes):
    """Delete every stored key of one client."""
    if not yes:
        click.confirm(f"WARN This will DELETE all stored state of client {client_id}. Are you sure?", abort=True)

    deleted = portal_service(STORAGE).clear(client_id)
    click.echo(f"PASS Deleted {deleted} entr{'y' if deleted == 1 else 'ies'} for client {client_id}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(storage_group)
