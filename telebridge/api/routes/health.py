"""Health check endpoint."""

from fastapi import APIRouter

from telebridge import __version__
from telebridge.embed.deployment import resolve_deployment

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check() -> dict:
    return {
        "status": "ok",
        "deployment": resolve_deployment().kind.value,
        "version": __version__,
    }
