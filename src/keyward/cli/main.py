"""Keyward CLI — run the server and manage accounts from a shell.

Usage:
    keyward serve                                 # Run the API with uvicorn
    keyward create-admin ops@example.com -p ...   # Create (or promote) an admin
    keyward grant-role bob@example.com admin      # Grant a role
    keyward revoke-role bob@example.com admin     # Revoke a role

Account commands talk to the database directly (KEYWARD_DATABASE_URL),
not to a running server, so they work before anyone can log in.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click

from keyward import __version__
from keyward.auth.rbac import ADMIN_ROLE
from keyward.errors import KeywardError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _session_factory():
    from keyward.db.engine import async_session_factory

    return async_session_factory


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="keyward")
def main():
    """Keyward — accounts, access tokens and passkeys."""


# ---------------------------------------------------------------------------
# keyward serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: KEYWARD_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: KEYWARD_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP API."""
    import uvicorn

    from keyward.config import settings

    uvicorn.run(
        "keyward.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# keyward create-admin
# ---------------------------------------------------------------------------


@main.command("create-admin")
@click.argument("email")
@click.option("--password", "-p", prompt=True, hide_input=True,
              confirmation_prompt=True, help="Password for a new account")
@click.option("--name", "-n", default="Admin", show_default=True, help="Display name")
def create_admin(email: str, password: str, name: str):
    """Create an admin account, or promote EMAIL if it already exists.

    Promoting an existing account only adds the admin role; its password
    is left alone.
    """
    _run(_create_admin_impl(email, password, name))


async def _create_admin_impl(email: str, password: str, name: str):
    from keyward.services.account_service import AccountService

    async with _session_factory()() as db:
        svc = AccountService(db)
        try:
            existing = await svc.get_account_by_email(email)
            if existing is None:
                account_id = await svc.create_account(email, password, name)
                click.echo(f"Created account {email} ({account_id})")
            else:
                account_id = existing.id
                click.echo(f"Account {email} exists ({account_id}), promoting")
            await svc.grant_role(account_id, ADMIN_ROLE)
        except KeywardError as e:
            _fail(e.detail)

    click.secho(f"{email} is an admin", fg="green")


# ---------------------------------------------------------------------------
# keyward grant-role / revoke-role
# ---------------------------------------------------------------------------


@main.command("grant-role")
@click.argument("email")
@click.argument("role")
def grant_role(email: str, role: str):
    """Grant ROLE to the account registered as EMAIL."""
    _run(_change_role(email, role, grant=True))


@main.command("revoke-role")
@click.argument("email")
@click.argument("role")
def revoke_role(email: str, role: str):
    """Revoke ROLE from the account registered as EMAIL."""
    _run(_change_role(email, role, grant=False))


async def _change_role(email: str, role: str, grant: bool):
    from keyward.services.account_service import AccountService

    async with _session_factory()() as db:
        svc = AccountService(db)
        account = await svc.get_account_by_email(email)
        if account is None:
            _fail(f"no account registered as {email}")
        try:
            if grant:
                await svc.grant_role(account.id, role)
            else:
                await svc.revoke_role(account.id, role)
        except KeywardError as e:
            _fail(e.detail)
        roles = await svc.roles_for(account.id)

    click.echo(f"{email}: {', '.join(roles) or '(no roles)'}")


if __name__ == "__main__":
    main()
