"""
SocialSync local bridge

A FastAPI application that runs next to the mobile UI shell and owns the
realtime messaging and notification state: chat sessions with optimistic
sends, the inbox, and the merged notification feed. State changes are
pushed to the shell over a WebSocket.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from socialsync.config import settings
from socialsync.database import create_tables
from socialsync.gateway import build_gateway
from socialsync.routers import (
    chat_router,
    inbox_router,
    notifications_router,
    live_router,
)
from socialsync.services.registry import SessionRegistry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("🚀 Starting SocialSync bridge...")

    await create_tables()
    logger.info("✅ Local storage tables created")

    if settings.uses_rest_backend and not settings.has_backend_credentials:
        logger.warning("⚠️ REST backend selected but no anon key configured; requests will be rejected")

    gateway = build_gateway()
    app.state.gateway = gateway
    app.state.registry = SessionRegistry(gateway)
    logger.info(f"✅ Backend gateway ready ({settings.backend_mode})")

    yield

    # Shutdown
    logger.info("🛑 Shutting down...")
    await app.state.registry.shutdown()
    await gateway.aclose()
    logger.info("✅ Cleanup complete")


# Create FastAPI application
app = FastAPI(
    title=f"{settings.project_name} API",
    description="""
## Realtime messaging and notifications bridge

### Features:
- 💬 **Chats** - optimistic sends reconciled against realtime echoes
- 📥 **Inbox** - last-message previews and unread badges
- 🔔 **Notifications** - friend requests, likes and comments in one feed
- 🔴 **Live** - WebSocket pushes for every state change

### Identity:
Every request carries the signed-in user's id in the `X-User-Id` header.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

logger.info(f"🔒 CORS Allowed Origins: {settings.cors_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(chat_router, prefix=settings.api_v1_prefix)
app.include_router(inbox_router, prefix=settings.api_v1_prefix)
app.include_router(notifications_router, prefix=settings.api_v1_prefix)
app.include_router(live_router, prefix=settings.api_v1_prefix)


# ============== Health Check ==============

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "socialsync",
        "version": "1.0.0",
        "backend": settings.backend_mode,
    }


@app.get("/api/v1", tags=["API Info"])
async def api_info():
    """API version and information."""
    return {
        "name": f"{settings.project_name} API",
        "version": "1.0.0",
        "endpoints": {
            "chats": f"{settings.api_v1_prefix}/chats",
            "inbox": f"{settings.api_v1_prefix}/inbox",
            "notifications": f"{settings.api_v1_prefix}/notifications",
        },
        "documentation": "/docs",
        "websocket": f"{settings.api_v1_prefix}/live/ws",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "socialsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
