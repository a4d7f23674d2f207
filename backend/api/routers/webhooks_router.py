"""Inbound MemeLab webhooks"""

import logging

from fastapi import APIRouter, Depends, Request

from core.dependencies import get_event_queue, get_webhook_gate
from core.errors import BadRequest, NotifyError
from services import WebhookGate
from shared.models.stream_event import InvalidStreamEvent, StreamEvent
from shared.queue import EventQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stream")
async def stream_webhook(
    request: Request,
    gate: WebhookGate = Depends(get_webhook_gate),
    queue: EventQueue = Depends(get_event_queue),
) -> dict:
    """Accept a stream.online / stream.offline event and queue its announcement."""
    # Secret first: nothing about the body is revealed to unauthenticated callers
    gate.verify(request.headers)

    try:
        body = await request.json()
    except ValueError:
        raise BadRequest("Invalid JSON body")

    try:
        event = StreamEvent.from_payload(body)
    except InvalidStreamEvent as e:
        raise BadRequest(str(e))

    try:
        job_id = await queue.enqueue(event)
    except Exception as e:
        logger.exception(f"Failed to enqueue {event.event} for {event.channel_id}: {e}")
        raise NotifyError("Failed to enqueue event")

    logger.info(f"Webhook accepted: {event.event} for channel {event.channel_id} (job {job_id})")
    return {"ok": True}
