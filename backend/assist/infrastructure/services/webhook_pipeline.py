"""
Webhook Pipeline

Idempotent processing of verified webhook events backed by the database
(survives restarts): skip events already processed, route the rest, and mark
them processed unless the failure is one a redelivery could fix.
"""

import logging

from assist.domain.events import InboundEvent
from assist.domain.interfaces import WebhookEventStore
from assist.domain.result import Err, Ok, Result
from assist.domain.subscription import SyncOutcome
from assist.infrastructure.exceptions import DatabaseError
from assist.infrastructure.services.event_router import EventRouter


logger = logging.getLogger(__name__)


class WebhookPipeline:

    def __init__(self, router: EventRouter, events: WebhookEventStore):
        self._router = router
        self._events = events

    async def process(self, event: InboundEvent) -> Result[SyncOutcome]:
        """Route ``event`` once. Redeliveries of a finished event are no-ops."""
        try:
            if await self._events.is_processed(event.id):
                logger.info(f"Event {event.id} already processed, skipping")
                return Ok(SyncOutcome.IGNORED)
        except DatabaseError as e:
            # Routing twice is safe; losing the event is not
            logger.warning(f"Dedup lookup failed for {event.id}, processing anyway: {e.message}")

        result = await self._router.route(event)

        if isinstance(result, Err) and result.error.retryable:
            logger.warning(
                f"Event {event.id} ({event.type}) left unmarked after retryable "
                f"error: {result.error.message}"
            )
            return result

        try:
            await self._events.mark_processed(event.id, event.type)
        except DatabaseError as e:
            logger.warning(f"Failed to mark event {event.id} processed: {e.message}")

        return result
