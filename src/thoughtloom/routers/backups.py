"""Remote backup endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from ..backup_service import BackupService
from ..http import default_error_responses
from .dependencies import get_backup_service

router = APIRouter(prefix="/backups", tags=["backups"], responses=default_error_responses())


class PruneRequest(BaseModel):
    keep: int | None = Field(default=None, ge=0, le=100)


@router.get("")
async def list_backups(service: BackupService = Depends(get_backup_service)) -> list[dict[str, Any]]:
    """Return backup records, newest first."""

    return [record.to_wire() for record in await service.list_backups()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_backup(service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    record = await service.create_backup()
    return record.to_wire()


@router.post("/prune")
async def prune_backups(
    payload: PruneRequest | None = None,
    service: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    keep = payload.keep if payload is not None else None
    deleted = await service.prune_backups(keep)
    return {"deleted": deleted}


@router.post("/{key}/restore")
async def restore_backup(key: str, service: BackupService = Depends(get_backup_service)) -> dict[str, Any]:
    """Replace local data with the snapshot stored under ``key``."""

    report = await service.restore_backup(key)
    return report.model_dump(mode="json")


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_backup(key: str, service: BackupService = Depends(get_backup_service)) -> Response:
    await service.delete_backup(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
