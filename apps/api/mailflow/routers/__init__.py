"""API routers."""

from mailflow.routers.automations import router as automations_router
from mailflow.routers.internal import router as internal_router

__all__ = [
    "automations_router",
    "internal_router",
]
