"""Credential endpoint for hosted deployments."""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from telebridge.embed.credentials import (
    DEFAULT_TTL_SECONDS,
    CredentialFeatures,
    CredentialIssuer,
    CredentialOptions,
)
from telebridge.embed.errors import CredentialConfigError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jitsi", tags=["credentials"])

NOT_CONFIGURED_MESSAGE = (
    "Jitsi JWT generation is not configured. Please set JITSI_PRIVATE_KEY "
    "and JITSI_APP_ID environment variables."
)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class FeaturesPayload(BaseModel):
    livestreaming: bool = False
    recording: bool = False
    moderation: bool = False


class CredentialRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    user_name: Optional[str] = Field(default=None, alias="userName")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    user_avatar: Optional[str] = Field(default=None, alias="userAvatar")
    is_moderator: bool = Field(default=False, alias="isModerator")
    room_name: Optional[str] = Field(default=None, alias="roomName")
    expiration_seconds: Optional[int] = Field(default=None, alias="expirationSeconds")
    features: Optional[FeaturesPayload] = None


class CredentialResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_at: int = Field(alias="expiresAt")


class ConfiguredResponse(BaseModel):
    configured: bool


def get_issuer() -> CredentialIssuer:
    return CredentialIssuer()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/jwt", response_model=ConfiguredResponse)
async def credential_status(issuer: CredentialIssuer = Depends(get_issuer)) -> ConfiguredResponse:
    return ConfiguredResponse(configured=issuer.is_configured())


@router.post("/jwt", response_model=CredentialResponse, response_model_by_alias=True)
async def issue_credential(
    body: CredentialRequest,
    issuer: CredentialIssuer = Depends(get_issuer),
) -> CredentialResponse:
    """Sign a room credential.

    Returns 500 when signing is not configured and 400 when ``userId``,
    ``userName`` or ``roomName`` is missing or ``expirationSeconds`` is not
    positive.
    """
    if not issuer.is_configured():
        raise CredentialConfigError(NOT_CONFIGURED_MESSAGE)
    if not body.user_id or not body.user_name or not body.room_name:
        raise ValueError("Missing required fields: userId, userName, and roomName are required.")

    if body.expiration_seconds is not None and body.expiration_seconds <= 0:
        raise ValueError("expirationSeconds must be a positive number of seconds.")

    ttl = body.expiration_seconds or DEFAULT_TTL_SECONDS
    features = None
    if body.features is not None:
        features = CredentialFeatures(
            livestreaming=body.features.livestreaming,
            recording=body.features.recording,
            moderation=body.features.moderation,
        )

    token = issuer.issue(
        CredentialOptions(
            user_id=body.user_id,
            user_name=body.user_name,
            room_name=body.room_name,
            user_email=body.user_email,
            user_avatar=body.user_avatar,
            is_moderator=body.is_moderator,
            ttl_seconds=ttl,
            features=features,
        )
    )
    logger.info("Issued credential for user=%s room=%s", body.user_id, body.room_name)
    return CredentialResponse(token=token, expires_at=int(time.time()) + ttl)
