"""
Telebridge CLI - Token Commands

Commands:
    issue - Sign a room credential with the configured key
"""

from __future__ import annotations

from typing import Optional

import typer

from telebridge.cli import console, token_app
from telebridge.cli.output import print_error, print_json
from telebridge.config.settings import settings
from telebridge.embed.credentials import CredentialFeatures, CredentialIssuer, CredentialOptions
from telebridge.embed.errors import CredentialConfigError


@token_app.command("issue")
def issue(
    user_id: str = typer.Option(..., "--user-id", "-u", help="Platform user id."),
    user_name: str = typer.Option(..., "--user-name", "-n", help="Display name."),
    room: str = typer.Option(..., "--room", "-r", help="Room name, or '*' for every room."),
    email: Optional[str] = typer.Option(None, "--email", help="User email."),
    moderator: bool = typer.Option(False, "--moderator", "-m", help="Grant moderator rights."),
    ttl: int = typer.Option(
        settings.JITSI_TOKEN_TTL_SECONDS,
        "--ttl",
        min=1,
        help="Lifetime in seconds.",
    ),
    show_claims: bool = typer.Option(False, "--show-claims", help="Also print header and payload."),
) -> None:
    """
    Issue a credential for manual testing.

    Prints the compact token on its own line so it can be piped.
    """
    issuer = CredentialIssuer()
    options = CredentialOptions(
        user_id=user_id,
        user_name=user_name,
        room_name=room,
        user_email=email,
        is_moderator=moderator,
        ttl_seconds=ttl,
        features=CredentialFeatures(moderation=moderator),
    )
    try:
        token = issuer.issue(options)
    except CredentialConfigError as exc:
        print_error("Could not issue credential", details=exc.detail, hint="Run `telebridge config check`")
        raise typer.Exit(1)

    if show_claims:
        header, payload = issuer.build_claims(options)
        print_json({"header": header, "payload": payload})
    console.print(token, markup=False, highlight=False, soft_wrap=True)
