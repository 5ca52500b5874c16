"""CLI entry point for xibo-auth."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .auth.errors import AuthError, ConfigError
from .auth.orchestrator import AuthOutcome, CredentialOrchestrator, OutcomeKind
from .auth.permissions import available_categories
from .config import AuthSettings, load_settings, resolve_passphrase, save_passphrase
from .output import OutputHandler, format_human

logger = logging.getLogger("xibo_auth")

_OUTCOME_HELP = {
    OutcomeKind.MFA_REQUIRED: (
        "The account requires multi-factor authentication, which this client cannot complete.\n"
        "Use an OAuth application (XIBO_CLIENT_ID/XIBO_CLIENT_SECRET) or an account without MFA."
    ),
    OutcomeKind.CREDENTIAL_INVALID: "Check the username, password, and OAuth client credentials.",
    OutcomeKind.BACKEND_UNREACHABLE: "Check XIBO_API_URL and that the CMS is reachable.",
    OutcomeKind.EXHAUSTED: (
        "No authentication method was accepted. Run with --verbose to see each endpoint tried."
    ),
}


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """xibo-auth - Authenticate against a Xibo CMS and inspect access."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context) -> AuthSettings | NoReturn:
    """Get settings from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_settings(ctx.obj["env_path"])
    except ConfigError as e:
        output.error(e, help_text="Set XIBO_API_URL, XIBO_CLIENT_ID and XIBO_CLIENT_SECRET.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def get_orchestrator(ctx: click.Context) -> CredentialOrchestrator:
    """Build the orchestrator for this invocation and adopt any stored credential."""
    settings = get_settings(ctx)
    orchestrator = CredentialOrchestrator.from_settings(settings, resolve_passphrase(settings))
    ctx.call_on_close(orchestrator.close)
    return orchestrator


def _outcome_error(outcome: AuthOutcome) -> AuthError:
    lines = [outcome.message] + [f"  - {attempt}" for attempt in outcome.attempts]
    return AuthError("\n".join(lines))


@main.command()
@click.option("--username", "-u", help="CMS username (defaults to XIBO_USERNAME)")
@click.option("--password", "-p", help="CMS password (prompted if omitted)")
@click.option("--code", help="Authorization code from 'xibo-auth authorize-url'")
@click.pass_context
def login(ctx: click.Context, username: str | None, password: str | None, code: str | None) -> None:
    """Log in as a CMS user and store the tokens."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    username = username or orchestrator.username
    if username and not password and not code:
        password = orchestrator.password or click.prompt("Password", hide_input=True)

    if not code and not (username and password):
        output.error(
            ConfigError("No credentials given"),
            help_text="Pass --username (and --password) or --code.",
        )
        return

    outcome = orchestrator.login(username, password, code)

    if not outcome.ok:
        output.error(
            _outcome_error(outcome),
            error_type=outcome.kind.value,
            help_text=_OUTCOME_HELP.get(outcome.kind),
        )
        return

    if ctx.obj["json_mode"]:
        output.success(outcome.to_dict())
    else:
        level = outcome.permissions.level.label if outcome.permissions else "unknown"
        click.secho(f"Logged in as {outcome.owner_identity}", fg="green")
        click.echo(f"  Method: {outcome.method}")
        click.echo(f"  Level:  {level}")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show which credential is in force."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    try:
        orchestrator.start()
    except AuthError as e:
        output.error(e)
        return

    auth_status = orchestrator.get_auth_status()

    if ctx.obj["json_mode"]:
        output.success(auth_status.to_dict())
        return

    click.secho("\nAuthentication Status:\n", bold=True)
    click.echo(f"  CMS:       {auth_status.backend_url}")
    click.echo(f"  Mode:      {auth_status.mode}")
    if auth_status.owner_identity:
        click.echo(f"  User:      {auth_status.owner_identity}")
    state = "authenticated" if auth_status.authenticated else "not authenticated"
    click.secho(f"  State:     {state}", fg="green" if auth_status.authenticated else "yellow")
    if auth_status.expires_in_human:
        click.echo(f"  Expires:   {auth_status.expires_in_human}")
    if auth_status.has_refresh_token:
        click.echo("  Refresh:   available")
    if auth_status.error:
        click.secho(f"  Error:     {auth_status.error}", fg="red")


@main.command()
@click.option("--categories", "-c", is_flag=True, help="Group operations by category")
@click.pass_context
def operations(ctx: click.Context, categories: bool) -> None:
    """List the operations the current identity may invoke."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    try:
        orchestrator.start()
        permissions = orchestrator.get_permissions()
    except AuthError as e:
        output.error(e, help_text="Run 'xibo-auth login' first.")
        return

    if categories:
        rows = [
            [c.name, c.min_level.label, str(len(c.operation_names)), c.description]
            for c in available_categories(permissions)
        ]
        output.table(["Category", "Level", "Operations", "Description"], rows)
        return

    names = sorted(orchestrator.available_operations())
    if ctx.obj["json_mode"]:
        output.success({"level": permissions.level.label, "operations": names})
    else:
        click.secho(f"{len(names)} operations available ({permissions.level.label}):\n", bold=True)
        for name in names:
            click.echo(f"  {name}")


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Delete stored tokens for the current user."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    deleted = orchestrator.logout()
    message = "Stored tokens deleted." if deleted else "No stored tokens found."
    output.success({"deleted": deleted}, human_message=message)


@main.command("authorize-url")
@click.option("--state", help="Opaque state value echoed back with the code")
@click.pass_context
def authorize_url(ctx: click.Context, state: str | None) -> None:
    """Print the browser URL that yields an authorization code."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    url = orchestrator.grant_flow.authorization_url(state=state)
    output.success(
        {"url": url},
        human_message=f"Open this URL, approve access, then run 'xibo-auth login --code <code>':\n\n  {url}",
    )


@main.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Check the CMS is reachable and accepts the current credential."""
    output: OutputHandler = ctx.obj["output"]
    orchestrator = get_orchestrator(ctx)

    try:
        orchestrator.start()
    except AuthError as e:
        output.error(e)
        return

    if not orchestrator.test_connection():
        output.error(
            AuthError("Connection test failed"),
            help_text="Run with --verbose to see which step failed.",
        )
        return

    info = orchestrator.get_server_info()
    if ctx.obj["json_mode"]:
        output.success({"connected": True, "server": info})
    else:
        click.secho("Connection to the CMS is working.", fg="green")
        click.echo(format_human(info))


@main.command("set-passphrase")
@click.option(
    "--passphrase",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="New passphrase for sealing stored tokens",
)
@click.pass_context
def set_passphrase(ctx: click.Context, passphrase: str) -> None:
    """Store the token passphrase in the OS keyring.

    Tokens stored under the previous passphrase can no longer be read and
    require a new login.
    """
    output: OutputHandler = ctx.obj["output"]
    try:
        save_passphrase(passphrase)
    except ConfigError as e:
        output.error(e)
        return
    output.success({"stored": True}, human_message="Passphrase stored in keyring.")


if __name__ == "__main__":
    main()
