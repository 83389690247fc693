"""
Telebridge CLI - Configuration Commands

Commands:
    show  - Display the resolved deployment
    check - Run configuration checks; exits 1 if any fails
"""

from __future__ import annotations

from typing import Callable, Optional

import typer

from telebridge.cli import config_app, console
from telebridge.cli.output import print_json, print_status, print_table, print_warning
from telebridge.config.settings import settings
from telebridge.embed.credentials import CredentialIssuer
from telebridge.embed.deployment import DeploymentConfig, resolve_deployment

SAMPLE_ROOM = "session-test-123"


class CheckResult:
    """Result of a configuration check."""

    def __init__(self, name: str, passed: bool, message: str, hint: str | None = None):
        self.name = name
        self.passed = passed
        self.message = message
        self.hint = hint

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "hint": self.hint,
        }


CHECKS: dict[str, Callable[[DeploymentConfig], CheckResult]] = {}


def register_check(name: str):
    """Decorator to register a configuration check."""
    def decorator(func: Callable[[DeploymentConfig], CheckResult]):
        CHECKS[name] = func
        return func
    return decorator


@register_check("deployment")
def check_deployment(deployment: DeploymentConfig) -> CheckResult:
    if deployment.is_hosted and not deployment.app_id:
        return CheckResult(
            "Deployment",
            False,
            "Hosted deployment detected but the app id is missing",
            hint="Set JITSI_APP_ID or run `telebridge keys add`",
        )
    if deployment.is_hosted:
        return CheckResult("Deployment", True, "Hosted configuration complete")
    return CheckResult("Deployment", True, f"{deployment.kind.value} deployment on {deployment.domain}")


@register_check("script_url")
def check_script_url(deployment: DeploymentConfig) -> CheckResult:
    url = deployment.external_library_url()
    if url.startswith("https://") and url.endswith("/external_api.js"):
        return CheckResult("External API URL", True, url)
    return CheckResult("External API URL", False, f"Unexpected URL format: {url}")


@register_check("credentials")
def check_credentials(deployment: DeploymentConfig) -> CheckResult:
    if not deployment.is_hosted:
        return CheckResult("Credentials", True, "Not required for this deployment")
    if not settings.JITSI_PRIVATE_KEY:
        return CheckResult(
            "Credentials",
            False,
            "JITSI_PRIVATE_KEY is not set",
            hint="Run `telebridge keys add --key-file <path>`",
        )
    if "PRIVATE KEY" not in settings.JITSI_PRIVATE_KEY:
        return CheckResult("Credentials", False, "JITSI_PRIVATE_KEY does not look like a PEM key")
    if not CredentialIssuer(deployment=deployment).is_configured():
        return CheckResult("Credentials", False, "Credential issuer is not configured")
    return CheckResult("Credentials", True, "Signing key configured")


@config_app.command("show")
def show(
    room: str = typer.Option(SAMPLE_ROOM, "--room", "-r", help="Room name to format."),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json."),
) -> None:
    """
    Display the resolved deployment configuration.

    Shows the domain, app id, deployment type, external library URL and how
    a sample room name is addressed on this deployment.
    """
    deployment = resolve_deployment()
    data = deployment.to_dict()
    data["roomName"] = deployment.format_room_name(room)

    if format == "json":
        print_json(data)
        return

    print_table(
        "Deployment",
        ["Setting", "Value"],
        [
            ["Domain", deployment.domain],
            ["App ID", deployment.app_id or "Not set"],
            ["Deployment type", deployment.kind.value],
            ["Hosted", str(deployment.is_hosted)],
            ["External API URL", deployment.external_library_url()],
            ["Room", f"{room} -> {data['roomName']}"],
        ],
        styles=["cyan", None],
    )


@config_app.command("check")
def check(
    only: Optional[list[str]] = typer.Option(None, "--only", help="Run only the named checks."),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json."),
) -> None:
    """
    Verify the deployment configuration.

    Exits with status 1 when any check fails.
    """
    deployment = resolve_deployment()
    names = only or list(CHECKS)
    unknown = [n for n in names if n not in CHECKS]
    if unknown:
        print_warning(f"Unknown checks ignored: {', '.join(unknown)}")
    results = [CHECKS[n](deployment) for n in names if n in CHECKS]

    if format == "json":
        print_json([r.to_dict() for r in results])
    else:
        print_status([(r.name, r.passed, r.message) for r in results], title="Configuration checks")
        for r in results:
            if not r.passed and r.hint:
                console.print(f"  [yellow]Hint:[/yellow] {r.hint}")

    if not all(r.passed for r in results):
        raise typer.Exit(1)
