"""API v1 aggregate router."""

from __future__ import annotations

from fastapi import APIRouter

from .backups import router as backups_router
from .integrity import router as integrity_router

router = APIRouter(prefix="/api/v1")
router.include_router(backups_router)
router.include_router(integrity_router)

__all__ = ["router"]
