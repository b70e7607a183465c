"""Router package exports."""

from __future__ import annotations

from .api_v1 import router as api_router
from .backups import router as backups_router
from .integrity import router as integrity_router

__all__ = ["api_router", "backups_router", "integrity_router"]
