"""
Unit tests for webhook signature verification.
"""

import time

import pytest

from assist.domain.result import Err
from assist.infrastructure.exceptions import SignatureError
from assist.infrastructure.payments.event_verifier import EventVerifier

from conftest import WEBHOOK_SECRET, event_body, sign_payload


@pytest.fixture
def verifier():
    return EventVerifier(WEBHOOK_SECRET, tolerance_seconds=300, max_payload_bytes=4096)


def _assert_rejected(result):
    assert isinstance(result, Err)
    assert isinstance(result.error, SignatureError)


class TestEventVerifier:

    def test_valid_signature(self, verifier):
        body = event_body("invoice.paid", {"id": "in_1"}, event_id="evt_ok")

        result = verifier.verify(body, sign_payload(body))

        assert result.is_ok
        assert result.value.id == "evt_ok"
        assert result.value.type == "invoice.paid"
        assert result.value.payload == {"id": "in_1"}

    def test_missing_header(self, verifier):
        _assert_rejected(verifier.verify(event_body("invoice.paid", {}), None))

    def test_malformed_header(self, verifier):
        _assert_rejected(verifier.verify(event_body("invoice.paid", {}), "garbage"))

    def test_wrong_secret(self, verifier):
        body = event_body("invoice.paid", {"id": "in_1"})
        _assert_rejected(verifier.verify(body, sign_payload(body, secret="whsec_other")))

    def test_tampered_payload(self, verifier):
        body = event_body("invoice.paid", {"id": "in_1"})
        header = sign_payload(body)
        tampered = body.replace(b"in_1", b"in_2")
        _assert_rejected(verifier.verify(tampered, header))

    def test_stale_timestamp(self, verifier):
        body = event_body("invoice.paid", {"id": "in_1"})
        header = sign_payload(body, timestamp=int(time.time()) - 3600)
        _assert_rejected(verifier.verify(body, header))

    def test_empty_payload(self, verifier):
        _assert_rejected(verifier.verify(b"", "t=1,v1=abc"))

    def test_oversized_payload(self, verifier):
        body = b"{" + b" " * 5000 + b"}"
        _assert_rejected(verifier.verify(body, sign_payload(body)))

    def test_undecodable_payload(self, verifier):
        _assert_rejected(verifier.verify(b"\xff\xfe\xfa", "t=1,v1=abc"))

    def test_signed_but_not_an_event(self, verifier):
        body = b'{"hello": "world"}'
        _assert_rejected(verifier.verify(body, sign_payload(body)))
