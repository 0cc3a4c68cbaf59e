"""
ESG-Lite auth command line interface.

Database setup, admin bootstrap and maintenance commands.
"""

import asyncio
import sys

import click

from esg_auth import __version__, database
from esg_auth.config import settings
from esg_auth.errors import AuthError
from esg_auth.models.account import AccountRole
from esg_auth.services.account_service import AccountService
from esg_auth.services.password_service import PasswordService, validate_password
from esg_auth.services.recovery_code_service import RecoveryCodeService
from esg_auth.tasks.scheduler import run_cleanup_now

ADMIN_ROLE_NAMES = [role.value for role in AccountRole if role.is_admin]


def run(coro):
    """Run a coroutine and release pooled connections before the loop closes."""

    async def runner():
        try:
            return await coro
        finally:
            await database.async_engine.dispose()

    return asyncio.run(runner())


@click.group()
@click.version_option(version=__version__, prog_name="esg-auth")
def main():
    """ESG-Lite passwordless authentication service."""
    pass


@main.group()
def db():
    """Database management commands."""
    pass


@db.command("init")
def db_init():
    """Create database tables."""
    try:
        run(database.init_db())
        click.echo("✅ Database initialized successfully!")
    except Exception as e:
        click.echo(f"❌ Database initialization failed: {e}")
        sys.exit(1)


@main.group()
def admin():
    """Admin account commands."""
    pass


@admin.command("create")
@click.option("--email", required=True, help="Admin email address")
@click.option(
    "--role",
    type=click.Choice(ADMIN_ROLE_NAMES, case_sensitive=False),
    default=AccountRole.SUPER_ADMIN.value,
    show_default=True,
    help="Admin role",
)
@click.option("--display-name", default=None, help="Display name")
@click.option("--password", default=None, help="Optional temporary password")
def admin_create(email: str, role: str, display_name, password):
    """
    Create an admin account and print its first recovery codes.

    Until a passkey is registered the admin signs in with one of the codes,
    or with the password when one is given.
    """

    async def create():
        if password is not None:
            validate_password(password)
        await database.init_db()
        async with database.AsyncSessionLocal() as session:
            account = await AccountService(session).create_account(
                email, role=AccountRole(role.upper()), display_name=display_name
            )
            if password is not None:
                await PasswordService(session).set_password(account.id, password)
            codes = await RecoveryCodeService(session).generate_batch(account.id)
            return account, codes

    try:
        account, codes = run(create())
    except AuthError as e:
        click.echo(f"❌ {e.public_message}")
        sys.exit(1)

    click.echo(f"✅ Created {account.role} {account.email} ({account.id})")
    click.echo("🔑 Recovery codes (shown once, store them safely):")
    for code in codes:
        click.echo(f"   {code}")


@admin.command("set-password")
@click.option("--email", required=True, help="Admin email address")
@click.password_option(help="New password")
def admin_set_password(email: str, password: str):
    """Set the password an admin uses at /api/admin/auth/login."""

    async def set_password():
        async with database.AsyncSessionLocal() as session:
            account = await AccountService(session).get_by_email(email)
            if account is None:
                return None
            return await PasswordService(session).set_password(account.id, password)

    try:
        account = run(set_password())
    except AuthError as e:
        click.echo(f"❌ {e.public_message}")
        sys.exit(1)
    if account is None:
        click.echo(f"❌ No account for {email}")
        sys.exit(1)
    click.echo(f"✅ Password set for {account.email}")


@admin.command("deactivate")
@click.option("--email", required=True, help="Admin email address")
def admin_deactivate(email: str):
    """Deactivate an account and revoke all its sessions."""

    async def deactivate():
        async with database.AsyncSessionLocal() as session:
            service = AccountService(session)
            account = await service.get_by_email(email)
            if account is None:
                return None
            return await service.deactivate(account.id)

    try:
        account = run(deactivate())
    except AuthError as e:
        click.echo(f"❌ {e.public_message}")
        sys.exit(1)
    if account is None:
        click.echo(f"❌ No account for {email}")
        sys.exit(1)
    click.echo(f"✅ Deactivated {account.email}; all sessions revoked")


@main.command()
def cleanup():
    """Purge expired challenges, sessions and magic links."""
    results = run(run_cleanup_now(database.AsyncSessionLocal))
    for name, count in results.items():
        click.echo(f"🧹 {name}: {count}")


@main.command()
def config():
    """Show current configuration."""
    click.echo("📋 ESG-Lite Auth Configuration:")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Database URL: {settings.database_url}")
    click.echo(f"Debug Mode: {settings.debug}")
    click.echo(f"WebAuthn RP ID: {settings.rp_id}")
    click.echo(f"WebAuthn RP Name: {settings.rp_name}")
    click.echo(f"Origins: {', '.join(settings.expected_origins)}")
    click.echo(f"Secure Cookies: {settings.cookie_secure}")
    click.echo(f"Rate Limiting Enabled: {settings.rate_limit_enabled}")
    click.echo(f"Email Provider: {'sendgrid' if settings.sendgrid_api_key else 'log only'}")


@main.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host: str, port: int, reload: bool):
    """Start the API server."""
    import uvicorn

    click.echo(f"🚀 Starting ESG-Lite auth server on {host}:{port}")
    if reload:
        click.echo("🔄 Auto-reload enabled")

    uvicorn.run(
        "esg_auth.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
