"""API routers."""

from donorsync.routers.crm_sync import router as crm_sync_router

__all__ = [
    "crm_sync_router",
]
