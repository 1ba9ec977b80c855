"""Routers package."""
from socialsync.routers.chat import router as chat_router
from socialsync.routers.inbox import router as inbox_router
from socialsync.routers.notifications import router as notifications_router
from socialsync.routers.live import router as live_router

__all__ = [
    "chat_router",
    "inbox_router",
    "notifications_router",
    "live_router",
]
