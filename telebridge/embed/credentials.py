"""Signed, short-lived room credentials for hosted deployments.

The hosted service verifies an RS256 JWT whose field names and string
booleans are fixed by the service:

    header  {alg: "RS256", kid, typ: "JWT"}
    payload {aud: "jitsi", context: {user, features?}, exp, iss: "chat",
             nbf, room, sub}

``kid`` is the prefixed app id, optionally followed by ``/{key_id}`` when the
uploaded key has its own identifier. ``nbf`` is backdated by
``CLOCK_SKEW_SECONDS`` so slightly slow verifier clocks still accept the
token.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import jwt

from telebridge.config.settings import settings
from telebridge.embed.deployment import DeploymentConfig, prefixed_app_id, resolve_deployment
from telebridge.embed.errors import (
    CredentialConfigError,
    CredentialSigningError,
    MissingAppIdError,
    MissingPrivateKeyError,
    MissingUserIdError,
    NotHostedDeploymentError,
)

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
AUDIENCE = "jitsi"
ISSUER = "chat"
WILDCARD_ROOM = "*"
CLOCK_SKEW_SECONDS = 60
DEFAULT_TTL_SECONDS = 3600


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class CredentialFeatures:
    """Feature switches embedded in the credential."""

    livestreaming: bool = False
    recording: bool = False
    moderation: bool = False

    def to_claims(self) -> dict[str, str]:
        return {
            "livestreaming": _flag(self.livestreaming),
            "recording": _flag(self.recording),
            "moderation": _flag(self.moderation),
        }


@dataclass
class CredentialOptions:
    """Inputs for a single credential.

    Attributes:
        user_id: Stable identifier of the platform user. Required.
        user_name: Display name shown to other participants.
        room_name: Raw or already-prefixed room, or ``"*"`` for all rooms.
        user_email: Optional email passed through to the service.
        user_avatar: Optional avatar URL.
        is_moderator: Grants moderator rights in the room.
        ttl_seconds: Lifetime of the credential.
        features: Optional feature switches; omitted from the payload if None.
    """

    user_id: str
    user_name: str
    room_name: str
    user_email: str | None = None
    user_avatar: str | None = None
    is_moderator: bool = False
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    features: CredentialFeatures | None = None

    def to_request(self) -> dict[str, Any]:
        """Request body understood by the credential endpoint."""
        body: dict[str, Any] = {
            "userId": self.user_id,
            "userName": self.user_name,
            "roomName": self.room_name,
            "isModerator": self.is_moderator,
            "expirationSeconds": self.ttl_seconds,
        }
        if self.user_email:
            body["userEmail"] = self.user_email
        if self.user_avatar:
            body["userAvatar"] = self.user_avatar
        if self.features is not None:
            body["features"] = {
                "livestreaming": self.features.livestreaming,
                "recording": self.features.recording,
                "moderation": self.features.moderation,
            }
        return body


class CredentialIssuer:
    """Builds and signs room-scoped credentials with the configured key.

    Parameters
    ----------
    deployment:
        Resolved deployment. Defaults to :func:`resolve_deployment`.
    private_key:
        PEM-encoded RSA private key. Falls back to ``settings.JITSI_PRIVATE_KEY``.
    key_id:
        Identifier of the uploaded public key. Falls back to
        ``settings.JITSI_KEY_ID``.
    clock:
        Returns the current unix time in seconds.
    """

    def __init__(
        self,
        deployment: DeploymentConfig | None = None,
        private_key: str | None = None,
        key_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._deployment = deployment or resolve_deployment()
        self._private_key = private_key if private_key is not None else settings.JITSI_PRIVATE_KEY
        self._key_id = key_id if key_id is not None else settings.JITSI_KEY_ID
        self._clock = clock

    @property
    def deployment(self) -> DeploymentConfig:
        return self._deployment

    def is_configured(self) -> bool:
        """True when credentials can be issued for this deployment."""
        return (
            self._deployment.is_hosted
            and bool(self._deployment.app_id)
            and bool(self._private_key)
        )

    def _check_preconditions(self, options: CredentialOptions) -> str:
        if not self._deployment.is_hosted:
            raise NotHostedDeploymentError(
                "Credential generation is only required for hosted deployments"
            )
        if not self._deployment.app_id:
            raise MissingAppIdError("JITSI_APP_ID is required for credential generation")
        if not self._private_key:
            raise MissingPrivateKeyError(
                "JITSI_PRIVATE_KEY is not set; credential generation requires a private key"
            )
        if not options.user_id:
            raise MissingUserIdError("user_id is required for credential generation")
        return prefixed_app_id(self._deployment.app_id)

    def build_claims(self, options: CredentialOptions) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return the ``(header, payload)`` pair for *options* without signing."""
        tenant = self._check_preconditions(options)
        kid = f"{tenant}/{self._key_id}" if self._key_id else tenant

        now = int(self._clock())
        if options.room_name == WILDCARD_ROOM or options.room_name.startswith(tenant):
            room = options.room_name
        else:
            room = f"{tenant}/{options.room_name}"

        user: dict[str, Any] = {
            "id": options.user_id,
            "name": options.user_name,
            "moderator": _flag(options.is_moderator),
        }
        if options.user_avatar:
            user["avatar"] = options.user_avatar
        if options.user_email:
            user["email"] = options.user_email

        context: dict[str, Any] = {"user": user}
        if options.features is not None:
            context["features"] = options.features.to_claims()

        header = {"alg": ALGORITHM, "kid": kid, "typ": "JWT"}
        payload = {
            "aud": AUDIENCE,
            "context": context,
            "exp": now + options.ttl_seconds,
            "iss": ISSUER,
            "nbf": now - CLOCK_SKEW_SECONDS,
            "room": room,
            "sub": tenant,
        }
        return header, payload

    def issue(self, options: CredentialOptions) -> str:
        """Sign a credential for *options* and return the compact token."""
        header, payload = self.build_claims(options)
        try:
            return jwt.encode(
                payload,
                self._private_key,
                algorithm=ALGORITHM,
                headers={"kid": header["kid"], "typ": header["typ"]},
            )
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise CredentialSigningError(f"Failed to sign credential: {exc}") from exc


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    """Decode *resp* as a JSON object; raise ValueError for anything else."""
    body = resp.json()
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    return body


class RemoteCredentialClient:
    """Fetches credentials from the credential endpoint over HTTP.

    Used when the signing key lives on a different service than the one
    driving the embed.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._configured: bool | None = None

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/api/jitsi/jwt"

    async def is_configured(self) -> bool:
        """Ask the endpoint whether it can sign; the answer is cached."""
        if self._configured is None:
            try:
                resp = await self._client.get(self.endpoint)
                resp.raise_for_status()
                self._configured = bool(_json_object(resp).get("configured"))
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Credential endpoint check failed: %s", exc)
                return False
        return self._configured

    async def issue(self, options: CredentialOptions) -> str:
        try:
            resp = await self._client.post(self.endpoint, json=options.to_request())
        except httpx.HTTPError as exc:
            raise CredentialConfigError(f"Credential endpoint unreachable: {exc}") from exc

        if resp.status_code != 200:
            try:
                body = _json_object(resp)
                message = body.get("error") or body.get("detail") or "Unknown error"
            except ValueError:
                message = resp.text or "Unknown error"
            raise CredentialConfigError(f"Credential endpoint returned {resp.status_code}: {message}")

        try:
            token = _json_object(resp).get("token")
        except ValueError as exc:
            raise CredentialConfigError(f"Credential endpoint returned an unreadable body: {exc}") from exc
        if not token or not isinstance(token, str):
            raise CredentialConfigError("Credential endpoint returned no token")
        return token

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed


_remote_clients: dict[str, RemoteCredentialClient] = {}


def get_remote_client(base_url: str) -> RemoteCredentialClient:
    """The process-wide client for *base_url*, shared by every embed."""
    key = base_url.rstrip("/")
    client = _remote_clients.get(key)
    if client is None or client.is_closed:
        client = _remote_clients[key] = RemoteCredentialClient(key)
    return client


async def close_remote_clients() -> None:
    """Close every client handed out by :func:`get_remote_client`."""
    clients = list(_remote_clients.values())
    _remote_clients.clear()
    for client in clients:
        await client.aclose()
