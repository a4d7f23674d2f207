"""Dependency injection utilities for FastAPI

Long-lived clients are built in the application lifespan and kept on
``app.state``; these getters hand them to routes so tests can swap in fakes.
"""

import logging

from fastapi import Depends, Request

from core.config import Settings
from core.errors import ServiceUnavailable
from services import AuthGate, WebhookGate
from shared.crypto import SecretCipher
from shared.models.streamer import Streamer
from shared.queue import EventQueue
from shared.repositories.streamer import StreamerStore

logger = logging.getLogger(__name__)


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        logger.error(f"Dependency '{name}' requested before startup finished")
        raise ServiceUnavailable("Service not ready")
    return value


# ============================================
# Service Dependencies
# ============================================


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, not the process-wide defaults."""
    return _state(request, "settings")


def get_auth_gate(request: Request) -> AuthGate:
    return _state(request, "auth_gate")


def get_webhook_gate(request: Request) -> WebhookGate:
    return _state(request, "webhook_gate")


def get_event_queue(request: Request) -> EventQueue:
    return _state(request, "event_queue")


def get_streamer_store(request: Request) -> StreamerStore:
    return _state(request, "streamer_store")


def get_cipher(request: Request) -> SecretCipher:
    return _state(request, "cipher")


# ============================================
# Authentication Dependencies
# ============================================


async def require_streamer(
    request: Request,
    auth_gate: AuthGate = Depends(get_auth_gate),
) -> Streamer:
    """Authenticated streamer for the current request (401/403/500 otherwise)."""
    return await auth_gate.authenticate(request)
