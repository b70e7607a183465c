"""Local data integrity endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..backup_service import BackupService
from ..http import default_error_responses
from .dependencies import get_backup_service

router = APIRouter(prefix="/integrity", tags=["integrity"], responses=default_error_responses())


@router.get("")
async def audit(service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    """Inspect the local store without modifying it."""

    return (await service.audit()).to_wire()


@router.post("/repair")
async def repair(service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    return (await service.repair()).to_wire()


__all__ = ["router"]
