"""
Webhook Event Verifier

Authenticates raw webhook payloads against the shared signing secret and
parses them into InboundEvent. Verification runs on the exact bytes the
processor sent; nothing is parsed before the signature checks out.
"""

import json
import logging
from typing import Optional

import stripe
from pydantic import ValidationError

from assist.domain.events import InboundEvent
from assist.domain.result import Err, Ok, Result
from assist.infrastructure.exceptions import SignatureError


logger = logging.getLogger(__name__)


class EventVerifier:
    """
    Verifies the ``Stripe-Signature`` header (HMAC-SHA256 over
    ``"{timestamp}.{payload}"``) with a replay tolerance window.
    """

    def __init__(
        self,
        webhook_secret: str,
        *,
        tolerance_seconds: int = 300,
        max_payload_bytes: int = 512 * 1024,
    ):
        self._secret = webhook_secret
        self._tolerance = tolerance_seconds
        self._max_payload_bytes = max_payload_bytes

    def verify(self, raw_payload: bytes, signature_header: Optional[str]) -> Result[InboundEvent]:
        """Return the parsed event, or Err(SignatureError) on any failure."""
        if not signature_header:
            return self._reject("missing signature header")
        if not raw_payload:
            return self._reject("empty payload")
        if len(raw_payload) > self._max_payload_bytes:
            return self._reject(f"payload of {len(raw_payload)} bytes exceeds limit")

        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError as e:
            return self._reject("payload is not valid UTF-8", e)

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                self._secret,
                self._tolerance,
            )
        except stripe.SignatureVerificationError as e:
            return self._reject("signature mismatch", e)

        try:
            event = InboundEvent.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            return self._reject("malformed event body", e)

        return Ok(event)

    @staticmethod
    def _reject(reason: str, error: Optional[Exception] = None) -> Err:
        # Security: log every rejected delivery
        logger.warning(f"Webhook rejected: {reason}")
        return Err(SignatureError(f"Webhook verification failed: {reason}", original_error=error))
