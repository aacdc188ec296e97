"""
Access API Routes

Premium access check for the authenticated account, as a one-shot read and
as a Server-Sent Events stream that pushes changes.
"""

import asyncio
import json
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Query, Request
from sse_starlette.sse import EventSourceResponse

from assist.api.dependencies import ContainerDep, CurrentAccountDep
from assist.api.rate_limit import access_limit, limiter
from assist.domain.subscription import AccessResponse
from assist.infrastructure.services.access_gate import AccessGate


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/access", tags=["Access"])


@router.get("/me", response_model=AccessResponse)
@limiter.limit(access_limit)
async def get_my_access(
    request: Request,
    account_id: CurrentAccountDep,
    container: ContainerDep,
):
    """Whether the authenticated account currently has premium access."""
    has_access = await container.access_gate.has_active_access(account_id)
    return AccessResponse(account_id=account_id, has_active_access=has_access)


async def access_event_stream(
    gate: AccessGate,
    account_id: str,
    interval: Optional[float] = None,
) -> AsyncGenerator[dict, None]:
    """
    Yield an ``access`` event with the current value, then one per change.

    The underlying AccessWatch is stopped when the consumer goes away.
    """
    changes: asyncio.Queue = asyncio.Queue()
    initial = await gate.has_active_access(account_id)

    yield {
        "event": "access",
        "data": json.dumps({"account_id": account_id, "has_active_access": initial}),
    }

    watch = gate.watch(account_id, changes.put_nowait, interval, initial=initial)
    try:
        while True:
            value = await changes.get()
            yield {
                "event": "access",
                "data": json.dumps({"account_id": account_id, "has_active_access": value}),
            }
    finally:
        await watch.stop()
        logger.debug(f"Access stream closed for account {account_id}")


@router.get("/me/stream")
@limiter.limit(access_limit)
async def stream_my_access(
    request: Request,
    account_id: CurrentAccountDep,
    container: ContainerDep,
    interval: Optional[float] = Query(
        default=None,
        gt=0,
        description="Poll interval in seconds; defaults to ACCESS_POLL_INTERVAL_SECONDS",
    ),
):
    """Server-Sent Events stream of access changes."""
    return EventSourceResponse(
        access_event_stream(container.access_gate, account_id, interval)
    )
