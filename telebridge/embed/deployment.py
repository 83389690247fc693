"""Deployment classification for the conferencing service.

Supports the public service (``meet.jit.si``), the hosted multi-tenant
service reached through an app-specific path (``8x8.vc``), and
operator-run instances on any other domain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from telebridge.config.settings import settings

logger = logging.getLogger(__name__)

PUBLIC_DOMAIN = "meet.jit.si"
PUBLIC_HOST_MARKER = "jit.si"
HOSTED_DOMAIN = "8x8.vc"
APP_ID_PREFIX = "vpaas-magic-cookie-"


class DeploymentKind(str, Enum):
    """How the conferencing service is operated."""

    FREE = "free"
    HOSTED = "hosted"
    SELF_HOSTED = "self-hosted"


def prefixed_app_id(app_id: str) -> str:
    """Return *app_id* carrying the hosted tenant prefix exactly once."""
    if app_id.startswith(APP_ID_PREFIX):
        return app_id
    return f"{APP_ID_PREFIX}{app_id}"


@dataclass(frozen=True)
class RoomIdentity:
    """A caller-facing room name and the name the service expects."""

    raw_name: str
    formatted_name: str


@dataclass(frozen=True)
class DeploymentConfig:
    """Resolved deployment settings. Immutable once built."""

    domain: str
    app_id: str | None
    kind: DeploymentKind

    @property
    def is_hosted(self) -> bool:
        return self.kind is DeploymentKind.HOSTED

    @property
    def tenant(self) -> str | None:
        """Prefixed app id for hosted deployments, otherwise None."""
        if self.is_hosted and self.app_id:
            return prefixed_app_id(self.app_id)
        return None

    def format_room_name(self, raw: str) -> str:
        """Format *raw* the way this deployment addresses rooms.

        Hosted rooms live under ``{prefixed_app_id}/``; names that already
        carry the tenant are returned unchanged.
        """
        tenant = self.tenant
        if tenant is None:
            return raw
        if raw.startswith(f"{tenant}/"):
            return raw
        return f"{tenant}/{raw}"

    def room_identity(self, raw: str) -> RoomIdentity:
        return RoomIdentity(raw_name=raw, formatted_name=self.format_room_name(raw))

    def external_library_url(self) -> str:
        """URL of the ``external_api.js`` bootstrap library."""
        tenant = self.tenant
        if tenant is not None:
            return f"https://{self.domain}/{tenant}/external_api.js"
        return f"https://{self.domain}/external_api.js"

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "appId": self.app_id,
            "deploymentType": self.kind.value,
            "isHosted": self.is_hosted,
            "scriptUrl": self.external_library_url(),
        }


def classify_domain(domain: str) -> DeploymentKind:
    if domain == HOSTED_DOMAIN or HOSTED_DOMAIN in domain:
        return DeploymentKind.HOSTED
    if domain == PUBLIC_DOMAIN or PUBLIC_HOST_MARKER in domain:
        return DeploymentKind.FREE
    return DeploymentKind.SELF_HOSTED


def resolve_deployment(
    domain: str | None = None,
    app_id: str | None = None,
) -> DeploymentConfig:
    """Build a :class:`DeploymentConfig` from explicit values or settings.

    A hosted deployment without an app id is allowed but logged, since
    rooms and the library URL then fall back to the unprefixed forms.
    """
    domain = domain or settings.JITSI_DOMAIN or PUBLIC_DOMAIN
    if app_id is None:
        app_id = settings.JITSI_APP_ID
    kind = classify_domain(domain)

    if kind is DeploymentKind.HOSTED and not app_id:
        logger.warning(
            "Hosted deployment detected on %s but JITSI_APP_ID is not set; "
            "some features may not work correctly",
            domain,
        )

    return DeploymentConfig(domain=domain, app_id=app_id or None, kind=kind)
