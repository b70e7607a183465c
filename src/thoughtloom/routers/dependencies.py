"""Dependency injection helpers for FastAPI routers."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from ..backup_service import BackupService
from ..config import ServiceSettings

__all__ = ["get_backup_service", "get_settings"]


def get_settings(request: Request) -> ServiceSettings:
    """Return the service settings configured for the application."""

    return cast(ServiceSettings, request.app.state.settings)


def get_backup_service(request: Request) -> BackupService:
    """Return the backup service opened during application startup."""

    return cast(BackupService, request.app.state.backup_service)
