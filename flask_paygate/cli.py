"""``flask paygate`` commands for setting up the database and accounts."""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import AppGroup

paygate_cli = AppGroup("paygate", help="Manage paygate users and tables.")


@paygate_cli.command("init-db")
def init_db() -> None:
    """Create all tables."""
    current_app.extensions["paygate"].db.create_all()
    click.echo("Database initialised.")


@paygate_cli.command("create-user")
@click.argument("name")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--admin", "is_admin", is_flag=True, help="Grant access to the admin area.")
def create_user(name: str, email: str, password: str, is_admin: bool) -> None:
    """Create a user account."""
    ext = current_app.extensions["paygate"]
    minimum = current_app.config["PAYGATE_MIN_PASSWORD_LENGTH"]
    if len(password) < minimum:
        raise click.BadParameter(f"must be at least {minimum} characters", param_hint="--password")
    if ext.find_user(email) is not None:
        raise click.ClickException(f"A user with email {email} already exists.")
    user = ext.create_user(name, email, password, is_admin=is_admin)
    click.echo(f"Created user {user.id} <{user.email}>{' (admin)' if is_admin else ''}.")
