"""Health and remote diagnostics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..backup_service import BackupService
from .dependencies import get_backup_service

__all__ = ["router", "get_service_version", "health", "remote_diagnostics", "verify_remote"]


router = APIRouter(prefix="/api/v1", tags=["health"])


def get_service_version(request: Request) -> str:
    """Return the service version attached to the application state."""

    return getattr(request.app.state, "service_version", "unknown")


@router.get("/healthz")
async def health(
    version: str = Depends(get_service_version),
    service: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    return {
        "status": "ok",
        "version": version,
        "remoteConnected": service.connected,
    }


@router.get("/diagnostics")
async def remote_diagnostics(service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    """Connect, verify and summarise the remote container."""

    return (await service.diagnostics()).to_wire()


@router.post("/remote/verify")
async def verify_remote(service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    return (await service.verify()).to_wire()
