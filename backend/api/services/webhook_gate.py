"""Shared-secret check for inbound MemeLab webhooks."""

import hmac
import logging
from collections.abc import Mapping

from core.errors import Forbidden, ServiceUnavailable

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


class WebhookGate:
    def __init__(self, secret: str | None):
        self.secret = secret or ""

    @property
    def is_configured(self) -> bool:
        return bool(self.secret)

    def verify(self, headers: Mapping[str, str]) -> None:
        """Raise unless *headers* carry the configured secret.

        Must run before the body is parsed so an unauthenticated caller
        cannot probe payload validation.
        """
        if not self.secret:
            logger.error("Webhook rejected: WEBHOOK_SECRET is not configured")
            raise ServiceUnavailable("Webhook secret not configured")

        provided = headers.get(WEBHOOK_SECRET_HEADER)
        if not provided or not hmac.compare_digest(
            provided.encode("utf-8"), self.secret.encode("utf-8")
        ):
            logger.warning("Webhook rejected: invalid secret")
            raise Forbidden("Invalid webhook secret")
