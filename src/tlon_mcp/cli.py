"""Command-line entry points: serve over stdio or HTTP, and connection diagnostics."""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from . import rich_logger
from .config import Settings, clear_settings_cache, get_settings
from .errors import SessionError, SessionErrorKind, TlonMcpError
from .logging_setup import configure_logging
from .session import ShipSession

console = Console(stderr=True)

app = typer.Typer(help="Tlon MCP server: direct messages and contacts for an Urbit ship.", invoke_without_command=True)


@app.callback()
def _app_callback(ctx: typer.Context) -> None:
    """Serve using the MCP_TRANSPORT setting when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        if get_settings().http.transport == "http":
            serve_http(host=None, port=None, path=None)
        else:
            serve_stdio()


async def _check_connection(settings: Settings) -> str:
    session = ShipSession(
        url=settings.ship.url,
        ship=settings.ship.ship,
        code=settings.ship.code,
        timeout=settings.ship.request_timeout_seconds,
    )
    try:
        await session.connect()
        return session.our_name or session.identity
    finally:
        await session.close()


def _report_connection_failure(settings: Settings, exc: TlonMcpError) -> None:
    hints: dict[str, str] = {}
    if isinstance(exc, SessionError) and exc.kind in {SessionErrorKind.TRANSPORT, SessionErrorKind.LOGIN_REJECTED}:
        hints = {
            "1": f"Is your Urbit ship ({settings.ship.identity}) running at {settings.ship.url}?",
            "2": "Is the +code (URBIT_CODE) correct?",
            "3": f"Try accessing {settings.ship.url} in a browser to verify connectivity",
        }
    rich_logger.log_error("Failed to authenticate to ship", exc, **hints)


def _preflight(settings: Settings) -> str:
    """Log in once before serving; exit with status 1 when the ship is unreachable."""
    try:
        return asyncio.run(_check_connection(settings))
    except TlonMcpError as exc:
        _report_connection_failure(settings, exc)
        raise typer.Exit(code=1) from exc


@app.command("serve-stdio")
def serve_stdio() -> None:
    """Run the MCP server over stdio.

    stdout carries the protocol, so tool panels are disabled and all logging
    goes to stderr.
    """
    from .app import build_dm_service, build_mcp_server

    os.environ["TOOLS_LOG_ENABLED"] = "false"
    clear_settings_cache()
    settings = get_settings()
    configure_logging(settings, stream=sys.stderr, force=True)

    rich_logger.display_startup_banner(settings, "stdio")
    _preflight(settings)

    service = build_dm_service(settings)
    server = build_mcp_server(service, settings)
    try:
        server.run(transport="stdio")
    finally:
        # Best effort: delete the channel on the ship.
        with contextlib.suppress(Exception):
            asyncio.run(service.close())


@app.command("serve-http")
def serve_http(
    host: Optional[str] = typer.Option(None, help="Host interface for HTTP transport. Defaults to HTTP_HOST setting."),
    port: Optional[int] = typer.Option(None, help="Port for HTTP transport. Defaults to PORT setting."),
    path: Optional[str] = typer.Option(None, help="HTTP path where the MCP endpoint is exposed."),
) -> None:
    """Run the MCP server over the Streamable HTTP transport."""
    from .http import build_http_app

    settings = get_settings()
    resolved_host = host or settings.http.host
    resolved_port = port or settings.http.port
    resolved_path = path or settings.http.path
    if path:
        os.environ["HTTP_PATH"] = path
        clear_settings_cache()
        settings = get_settings()
    configure_logging(settings)

    rich_logger.display_startup_banner(settings, "http", f"http://{resolved_host}:{resolved_port}{resolved_path}")
    _preflight(settings)

    fastapi_app = build_http_app(settings)
    uvicorn.run(fastapi_app, host=resolved_host, port=resolved_port, log_level=settings.log_level.lower())


@app.command("check-connection")
def check_connection() -> None:
    """Log in to the configured ship and print its name."""
    settings = get_settings()
    configure_logging(settings)
    name = _preflight(settings)
    console.print(f"[green]Connected to {settings.ship.url} as {name}[/]")


@app.command("show-config")
def show_config() -> None:
    """Print the resolved settings (the +code is masked)."""
    settings = get_settings()
    table = Table(title="Tlon MCP settings")
    table.add_column("Setting", style="bold cyan")
    table.add_column("Value")
    table.add_row("ship", settings.ship.identity)
    table.add_row("code", "*" * len(settings.ship.code) if settings.ship.code else "")
    table.add_row("url", settings.ship.url)
    table.add_row("request timeout (s)", str(settings.ship.request_timeout_seconds))
    table.add_row("transport", settings.http.transport)
    table.add_row("http", f"{settings.http.host}:{settings.http.port}{settings.http.path}")
    table.add_row("bearer token", "set" if settings.http.bearer_token else "unset")
    table.add_row("history default count", str(settings.history_default_count))
    table.add_row("log level", settings.log_level)
    Console().print(table)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
