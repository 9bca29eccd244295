"""CLI commands for wscli."""

import asyncio
import json
import sys
import webbrowser
from pathlib import Path
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.table import Table

from wscli import __logo__, __version__
from wscli.client.errors import ApiError, AuthenticationFailedError, InvalidRequestError, NetworkError

app = typer.Typer(
    name="wscli",
    help=f"{__logo__} wscli - Google Workspace API client",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

ACCOUNT_OPTION = typer.Option(None, "--account", "-a", help="Account id (defaults to the active account)")


def _emit(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _fail(error: ApiError) -> None:
    _emit({"error": error.to_dict()})
    raise typer.Exit(1)


def _run(fn: Callable[[], Awaitable[Any]]) -> Any:
    """Run a coroutine, rendering core errors as JSON and exiting non-zero."""
    try:
        return asyncio.run(fn())
    except ApiError as exc:
        _fail(exc)


def _parse_json(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid JSON in {what}: {exc}") from exc


def _parse_query(pairs: list[str] | None) -> dict[str, Any] | None:
    if not pairs:
        return None
    params: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidRequestError(f"Query parameters must look like key=value, got '{pair}'")
        # Repeated keys become lists, e.g. labelIds=INBOX --query labelIds=UNREAD.
        if key in params:
            existing = params[key]
            params[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} wscli v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging on stderr"),
):
    """wscli - Google Workspace API client."""
    if verbose:
        import logging
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)


# ============================================================================
# Auth
# ============================================================================


auth_app = typer.Typer(help="Manage accounts and OAuth tokens")
app.add_typer(auth_app, name="auth")


def _open_browser(no_browser: bool) -> Callable[[str], None]:
    def _on_auth(url: str) -> None:
        err_console.print("Open this URL to authorize wscli:")
        err_console.print(f"[cyan]{url}[/cyan]")
        if not no_browser:
            webbrowser.open(url)

    return _on_auth


@auth_app.command("login")
def auth_login(
    credentials: Path = typer.Option(None, "--credentials", "-c", help="OAuth client credentials.json"),
    account: str = ACCOUNT_OPTION,
    no_browser: bool = typer.Option(False, "--no-browser", help="Print the URL instead of opening a browser"),
):
    """Log in an account and make it the active one."""
    from wscli.auth.accounts import record_login
    from wscli.config.loader import load_config
    from wscli.session import Session

    config = load_config()

    async def run():
        async with Session.from_config(
            config,
            account,
            credentials_path=credentials,
            on_auth=_open_browser(no_browser),
            on_status=lambda msg: err_console.print(f"[dim]{msg}[/dim]"),
            on_manual_code_input=lambda msg: err_console.print(msg),
        ) as session:
            authenticator = session.build_authenticator()
            if authenticator is None:
                raise AuthenticationFailedError(
                    "No credentials.json found. Pass --credentials or place it in the current directory."
                )
            manager = session.token_manager
            manager.authenticator = authenticator
            record = await manager.login()
            used = None if config.auth.service_account_path else session.resolved_credentials_path()
            record_login(config, session.account_id, used)
            return {
                "status": "authenticated",
                "account": session.account_id,
                "storage": session.store.name,
                "expires_at": record.expires_at.isoformat(),
            }

    _emit(_run(run))


@auth_app.command("logout")
def auth_logout(account: str = ACCOUNT_OPTION):
    """Remove an account's stored token."""
    from wscli.auth.accounts import forget_account
    from wscli.config.loader import load_config
    from wscli.session import Session

    config = load_config()

    async def run():
        async with Session.from_config(config, account) as session:
            session.token_manager.logout()
            forget_account(config, session.account_id)
            return {"status": "logged_out", "account": session.account_id}

    _emit(_run(run))


@auth_app.command("list")
def auth_list(
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON"),
):
    """List accounts with a stored token."""
    from wscli.config.loader import load_config
    from wscli.session import Session

    config = load_config()

    async def run():
        async with Session.from_config(config) as session:
            return sorted(session.token_manager.list_accounts()), session.account_id

    accounts, current = _run(run)

    if not table:
        _emit({"current": current, "accounts": [{"id": a, "current": a == current} for a in accounts]})
        return

    if not accounts:
        console.print("No accounts logged in.")
        return
    tbl = Table(title="Accounts")
    tbl.add_column("Account", style="cyan")
    tbl.add_column("Active")
    tbl.add_column("Credentials")
    for acc in accounts:
        active = "[green]✓[/green]" if acc == current else ""
        tbl.add_row(acc, active, config.auth.accounts.get(acc, "[dim]unknown[/dim]"))
    console.print(tbl)


@auth_app.command("switch")
def auth_switch(account: str = typer.Argument(..., help="Account id to make active")):
    """Set the active account."""
    from wscli.auth.accounts import switch_account
    from wscli.config.loader import load_config
    from wscli.session import Session

    config = load_config()

    async def run():
        async with Session.from_config(config, account) as session:
            switch_account(config, account, known_accounts=session.token_manager.list_accounts())
            return {"status": "switched", "account": account}

    _emit(_run(run))


@auth_app.command("status")
def auth_status(account: str = ACCOUNT_OPTION):
    """Show the token state of an account."""
    from wscli.config.loader import load_config
    from wscli.session import Session

    config = load_config()

    async def run():
        async with Session.from_config(config, account) as session:
            return session.token_manager.status()

    _emit(_run(run))


# ============================================================================
# Requests
# ============================================================================


@app.command()
def request(
    service: str = typer.Argument(..., help="gmail, drive, calendar, docs, sheets, slides or tasks"),
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Path below the service root, e.g. /users/me/labels"),
    body: str = typer.Option(None, "--body", "-b", help="JSON request body"),
    query: list[str] = typer.Option(None, "--query", "-q", help="Query parameter key=value (repeatable)"),
    timeout: float = typer.Option(None, "--timeout", help="Overall deadline in seconds, retries included"),
    account: str = ACCOUNT_OPTION,
):
    """Execute one authenticated API request and print the JSON response."""
    from wscli.session import Session

    async def run():
        payload = _parse_json(body, "--body") if body is not None else None
        params = _parse_query(query)
        async with Session.from_config(None, account) as session:
            client = session.client(service)
            try:
                return await client.execute(method, path, payload, params=params, timeout=timeout)
            except asyncio.TimeoutError:
                raise NetworkError(f"Request did not complete within {timeout}s") from None

    _emit(_run(run))


@app.command()
def batch(
    service: str = typer.Argument(..., help="gmail, drive or calendar"),
    source: str = typer.Argument("-", help="JSON file with the request array, or - for stdin"),
    account: str = ACCOUNT_OPTION,
):
    """Execute up to 100 requests in one batch call.

    Input is a JSON array of {id, method, path, body?}.
    """
    from wscli.client.batch import BatchRequest, BatchResult
    from wscli.session import Session

    async def run():
        raw = sys.stdin.read() if source == "-" else _read_file(source)
        entries = _parse_json(raw, "batch input")
        if not isinstance(entries, list):
            raise InvalidRequestError("Batch input must be a JSON array of requests")
        requests = [BatchRequest.from_dict(entry) for entry in entries]
        async with Session.from_config(None, account) as session:
            client = session.batch(service)
            try:
                return await client.execute(requests)
            except InvalidRequestError:
                raise
            except ApiError as exc:
                return BatchResult.failed(requests, exc)

    result = _run(run)
    _emit(result.to_dict())
    if result.status == "error":
        raise typer.Exit(1)


def _read_file(source: str) -> str:
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidRequestError(f"Cannot read {source}: {exc}") from exc


if __name__ == "__main__":
    app()
