"""Embed configuration endpoint consumed by pages hosting the widget."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from telebridge.api.routes.credentials import get_issuer
from telebridge.embed.credentials import CredentialIssuer

router = APIRouter(prefix="/api/embed", tags=["embed"])


@router.get("/config")
async def embed_config(
    room: Optional[str] = Query(default=None, min_length=1),
    issuer: CredentialIssuer = Depends(get_issuer),
) -> dict:
    deployment = issuer.deployment
    data = deployment.to_dict()
    data["credentialsConfigured"] = issuer.is_configured()
    if room is not None:
        data["roomName"] = deployment.format_room_name(room)
    return data
