"""
Telebridge - Command Line Interface

Operator tooling for the video session embed. Built with Typer for the
command surface and Rich for output.

Usage:
    $ telebridge --help
    $ telebridge config show
    $ telebridge config check
    $ telebridge keys add --app-id vpaas-magic-cookie-abc --key-file key.pem
    $ telebridge token issue --user-id u-1 --user-name "Dr. Lee" --room session-42
    $ telebridge serve --port 8000

Sub-command Groups:
    config - Inspect and verify deployment configuration
    keys   - Manage hosted-service signing keys
    token  - Issue credentials for manual testing
"""

from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from telebridge import __version__

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="telebridge",
    help="Telebridge - video session embed bootstrap",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Inspect and verify deployment configuration",
    no_args_is_help=True,
)

keys_app = typer.Typer(
    name="keys",
    help="Manage hosted-service signing keys",
    no_args_is_help=True,
)

token_app = typer.Typer(
    name="token",
    help="Issue credentials for manual testing",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")
app.add_typer(keys_app, name="keys")
app.add_typer(token_app, name="token")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Telebridge version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    Telebridge - video session embed bootstrap

    Resolves the conferencing deployment, signs room credentials and serves
    the credential endpoint used by embedded video sessions.
    """


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to."),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
) -> None:
    """
    Start the Telebridge API server.

    Serves the credential endpoint, the embed configuration endpoint and
    the health check.
    """
    import uvicorn

    from telebridge.config.settings import settings

    console.print(Panel.fit(
        f"Starting Telebridge on [cyan]http://{host}:{port}[/cyan]",
        title="Server",
    ))
    if reload:
        console.print("[yellow]Auto-reload enabled (development mode)[/yellow]")

    uvicorn.run(
        "telebridge.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=(log_level or settings.LOG_LEVEL).lower(),
    )


def _register_subcommands() -> None:
    """Register all subcommand modules."""
    from telebridge.cli import config  # noqa: F401
    from telebridge.cli import keys  # noqa: F401
    from telebridge.cli import token  # noqa: F401


_register_subcommands()

__all__ = [
    "app",
    "config_app",
    "keys_app",
    "token_app",
    "console",
    "err_console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
