"""``kanuni auth`` commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from kanuni.cli.render import render_api_keys, render_auth_status
from kanuni.cli.runtime import open_session, run, state_of


if TYPE_CHECKING:
    from kanuni.auth import DeviceCode


app = typer.Typer(help="Log in, log out and manage API keys.", no_args_is_help=True)


@app.command()
def login(
    ctx: typer.Context,
    api_key: str | None = typer.Option(
        None,
        "--api-key",
        "-k",
        help="Authenticate with an API key instead of logging in.",
    ),
    email: str | None = typer.Option(
        None,
        "--email",
        "-e",
        help="Log in with email and password instead of the browser flow.",
    ),
    mfa_code: str | None = typer.Option(None, "--mfa-code", help="MFA code."),
) -> None:
    """Log in to Kanuni.

    Without options, opens the device authorization flow: visit the shown
    URL and enter the code.
    """
    state = state_of(ctx)
    password = None
    if email is not None and api_key is None:
        password = typer.prompt("Password", hide_input=True)

    def show_code(code: DeviceCode) -> None:
        state.console.print(
            f"Visit [bold]{code.verification_uri}[/] and enter the code "
            f"[bold cyan]{code.user_code}[/]",
        )
        if code.verification_uri_complete:
            state.console.print(f"Or open {code.verification_uri_complete}")
        state.console.print("[dim]Waiting for authorization...[/]")

    async def _login() -> None:
        async with open_session(state) as session:
            if api_key is not None:
                credentials = await session.credentials.login_with_api_key(api_key)
            elif email is not None and password is not None:
                credentials = await session.credentials.login_with_password(
                    email,
                    password,
                    mfa_code=mfa_code,
                )
            else:
                credentials = await session.credentials.login_device_flow(show_code)
        who = credentials.email or "Kanuni"
        state.console.print(f"[green]Logged in[/] as {who}.")

    run(state, _login())


@app.command()
def logout(ctx: typer.Context) -> None:
    """Log out and remove the stored credential."""
    state = state_of(ctx)

    async def _logout() -> bool:
        async with open_session(state) as session:
            return await session.credentials.logout()

    if run(state, _logout()):
        state.console.print("Logged out.")
    else:
        state.console.print("Not logged in.")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the stored credential."""
    state = state_of(ctx)

    async def _status() -> None:
        async with open_session(state) as session:
            credentials = session.credentials.status()
        if credentials is None:
            state.console.print("Not logged in. Run 'kanuni auth login'.")
            raise typer.Exit(1)
        render_auth_status(state.console, credentials)

    run(state, _status())


@app.command("create-key")
def create_key(
    ctx: typer.Context,
    name: str = typer.Option("CLI Key", "--name", "-n", help="Name of the key."),
    expires_in_days: int | None = typer.Option(
        None,
        "--expires-in-days",
        min=1,
        help="Expire the key after this many days.",
    ),
    use: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--use",
        help="Switch this CLI to the new key.",
    ),
) -> None:
    """Create an API key for the logged-in account."""
    state = state_of(ctx)

    async def _create() -> None:
        async with open_session(state) as session:
            created = await session.credentials.create_api_key(
                name,
                expires_in_days=expires_in_days,
                use=use,
            )
        state.console.print(f"Created API key [bold]{created.name}[/]:")
        state.console.out(created.api_key, highlight=False)
        state.console.print("[yellow]Store it now; it will not be shown again.[/]")

    run(state, _create())


@app.command("list-keys")
def list_keys(ctx: typer.Context) -> None:
    """List the account's API keys."""
    state = state_of(ctx)

    async def _list() -> None:
        async with open_session(state) as session:
            keys = await session.credentials.list_api_keys()
        if not keys:
            state.console.print("No API keys.")
            return
        render_api_keys(state.console, keys)

    run(state, _list())


@app.command("revoke-key")
def revoke_key(
    ctx: typer.Context,
    key_id: str = typer.Argument(..., help="ID of the key to revoke."),
) -> None:
    """Revoke an API key."""
    state = state_of(ctx)

    async def _revoke() -> None:
        async with open_session(state) as session:
            await session.credentials.revoke_api_key(key_id)
        state.console.print(f"Revoked key {key_id}.")

    run(state, _revoke())
