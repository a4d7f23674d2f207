"""Services layer - Business logic

Services are constructed in the application lifespan and reached through
the dependencies in ``core.dependencies``.
"""

from .announcement_service import (
    Announcement,
    AnnouncementService,
    DeliveryFailure,
    DeliverySink,
    RenderFailure,
)
from .auth_gate import AuthGate, extract_credential
from .memelab_api import MemeLabAPIClient, ViewerProfile
from .telegram_api import TelegramSink
from .webhook_gate import WebhookGate

__all__ = [
    "Announcement",
    "AnnouncementService",
    "AuthGate",
    "DeliveryFailure",
    "DeliverySink",
    "MemeLabAPIClient",
    "RenderFailure",
    "TelegramSink",
    "ViewerProfile",
    "WebhookGate",
    "extract_credential",
]
