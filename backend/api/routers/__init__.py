"""API Routers package

This package contains all API route handlers.
Routers are organized by feature domain.
"""

from . import auth_router, streamer_router, webhooks_router

__all__ = [
    "auth_router",
    "streamer_router",
    "webhooks_router",
]
