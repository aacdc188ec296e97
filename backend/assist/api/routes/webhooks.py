"""
Stripe Webhook Handler

Receives processor webhook events. The request handler only authenticates
the delivery; routing runs as a background task after the 200 is sent, so
the processor never times out waiting on downstream lookups.

Status codes:
- 200: signature verified and event accepted (also for duplicates and
  event types this service ignores)
- 400: signature verification failed; nothing is routed
"""

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from assist.api.dependencies import ContainerDep
from assist.domain.events import InboundEvent
from assist.domain.result import Err
from assist.infrastructure.services.webhook_pipeline import WebhookPipeline


logger = logging.getLogger(__name__)

router = APIRouter()


async def process_event(pipeline: WebhookPipeline, event: InboundEvent) -> None:
    """Background task: run the pipeline and log the outcome."""
    result = await pipeline.process(event)
    if isinstance(result, Err):
        logger.error(f"Webhook {event.type} ({event.id}) failed: {result.error.message}")
    else:
        logger.info(f"Webhook {event.type} ({event.id}) finished: {result.value.value}")


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: ContainerDep,
):
    """
    Handle Stripe webhook events.

    Verifies the signature over the raw body and schedules processing.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    verified = container.verifier.verify(payload, signature)
    if isinstance(verified, Err):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    event = verified.value
    logger.info(f"Accepted webhook event: {event.type} ({event.id})")
    background_tasks.add_task(process_event, container.pipeline, event)

    return {"status": "accepted", "event_id": event.id}
