"""
Telebridge CLI - Key Management Commands

Commands:
    add - Write hosted-service settings and the signing key into an env file
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from telebridge.cli import console, keys_app
from telebridge.cli.output import print_error, print_info, print_success
from telebridge.embed.deployment import HOSTED_DOMAIN

MANAGED_KEYS = ("JITSI_DOMAIN", "JITSI_APP_ID", "JITSI_PRIVATE_KEY", "JITSI_KEY_ID")
BLOCK_HEADER = "# Conferencing (hosted) configuration"


def validate_private_key(pem: str) -> None:
    """Raise ValueError unless *pem* is an unencrypted RSA private key."""
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"not a usable PEM private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("credentials are signed with RS256; an RSA key is required")


def strip_managed_entries(lines: list[str]) -> list[str]:
    """Drop existing managed entries, including multi-line quoted keys."""
    kept: list[str] = []
    in_quoted_value = False
    for line in lines:
        if in_quoted_value:
            if line.rstrip().endswith('"'):
                in_quoted_value = False
            continue
        name, sep, value = line.partition("=")
        if sep and name.strip() in MANAGED_KEYS:
            value = value.strip()
            if value.startswith('"') and (len(value) == 1 or not value.endswith('"')):
                in_quoted_value = True
            continue
        if line.strip() == BLOCK_HEADER:
            continue
        kept.append(line)
    while kept and not kept[-1].strip():
        kept.pop()
    return kept


def render_entries(domain: str, app_id: str, private_key: str | None, key_id: str | None) -> list[str]:
    lines = [BLOCK_HEADER, f"JITSI_DOMAIN={domain}", f"JITSI_APP_ID={app_id}"]
    if private_key:
        escaped = private_key.strip().replace("\r\n", "\n").replace("\n", "\\n")
        lines.append(f'JITSI_PRIVATE_KEY="{escaped}"')
    if key_id:
        lines.append(f"JITSI_KEY_ID={key_id}")
    return lines


@keys_app.command("add")
def add(
    app_id: str = typer.Option(..., "--app-id", "-a", help="Hosted-service app id."),
    key_file: Optional[Path] = typer.Option(
        None,
        "--key-file",
        "-k",
        help="PEM private key file. Use '-' to read from stdin.",
    ),
    key_id: Optional[str] = typer.Option(None, "--key-id", help="Identifier of the uploaded public key."),
    domain: str = typer.Option(HOSTED_DOMAIN, "--domain", "-d", help="Conferencing domain."),
    env_file: Path = typer.Option(Path(".env"), "--env-file", "-e", help="Env file to update."),
) -> None:
    """
    Add hosted-service keys to an env file.

    Existing JITSI_* entries are replaced. The private key is stored on one
    line with escaped newlines, which the settings loader restores.
    """
    app_id = app_id.strip()
    if not app_id:
        print_error("App ID cannot be empty")
        raise typer.Exit(1)

    private_key: str | None = None
    if key_file is not None:
        if str(key_file) == "-":
            private_key = sys.stdin.read()
        elif not key_file.exists():
            print_error(f"Key file not found: {key_file}")
            raise typer.Exit(1)
        else:
            private_key = key_file.read_text(encoding="utf-8")
        try:
            validate_private_key(private_key)
        except ValueError as exc:
            print_error("Invalid private key", details=str(exc))
            raise typer.Exit(1)

    existing = env_file.read_text(encoding="utf-8").splitlines() if env_file.exists() else []
    lines = strip_managed_entries(existing)
    if lines:
        lines.append("")
    lines.extend(render_entries(domain, app_id, private_key, key_id))
    env_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

    print_success(f"Updated {env_file}")
    console.print(f"  App ID: [cyan]{app_id}[/cyan]")
    console.print(f"  Domain: [cyan]{domain}[/cyan]")
    if private_key:
        console.print(f"  Private key: added from {key_file}")
    else:
        print_info("Private key not added", details="Credentials cannot be issued until JITSI_PRIVATE_KEY is set")
