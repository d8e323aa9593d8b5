"""
WebhookVerifier tests.

Tests cover:
- Valid signatures, including secret rotation with several v1 values
- Body tampering, wrong secret, malformed headers
- Library verification errors surfaced as InvalidSignatureError
- Timestamp tolerance in both directions, on the injected clock
"""

import pytest
import stripe

from order_kernel.exceptions import InvalidSignatureError
from order_kernel.services.webhook_verifier import WebhookVerifier

SECRET = "whsec_test"
BODY = b'{"id": "evt_1", "type": "charge.refunded"}'


def _v1(header: str) -> str:
    return header.split("v1=", 1)[1]


@pytest.fixture
def now_ts(clock):
    return int(clock.now().timestamp())


@pytest.fixture
def verifier(clock):
    return WebhookVerifier(SECRET, tolerance_seconds=300, clock=clock)


class TestValidSignatures:
    def test_valid_header(self, verifier, now_ts, sign_webhook):
        verifier.verify(BODY, sign_webhook(SECRET, now_ts, BODY))

    def test_any_matching_v1_accepted(self, verifier, now_ts, sign_webhook):
        good = _v1(sign_webhook(SECRET, now_ts, BODY))
        old = _v1(sign_webhook("whsec_old", now_ts, BODY))
        verifier.verify(BODY, f"t={now_ts},v1={old},v1={good}")

    def test_unicode_body(self, verifier, now_ts, sign_webhook):
        body = '{"city": "Graz", "name": "Kürbiskernöl"}'.encode("utf-8")
        verifier.verify(body, sign_webhook(SECRET, now_ts, body))

    def test_zero_tolerance_disables_age_check(self, clock, now_ts, sign_webhook):
        verifier = WebhookVerifier(SECRET, tolerance_seconds=0, clock=clock)
        old_ts = now_ts - 86400
        verifier.verify(BODY, sign_webhook(SECRET, old_ts, BODY))


class TestRejections:
    def test_tampered_body(self, verifier, now_ts, sign_webhook):
        header = sign_webhook(SECRET, now_ts, BODY)
        with pytest.raises(InvalidSignatureError):
            verifier.verify(BODY + b" ", header)

    def test_wrong_secret(self, verifier, now_ts, sign_webhook):
        with pytest.raises(InvalidSignatureError) as exc_info:
            verifier.verify(BODY, sign_webhook("whsec_other", now_ts, BODY))
        assert isinstance(exc_info.value.__cause__, stripe.SignatureVerificationError)

    @pytest.mark.parametrize("header", [
        None,
        "",
        "v1=abc",
        "t=abc,v1=abc",
        "t=1768478400",
        "garbage",
    ])
    def test_malformed_header(self, verifier, header):
        with pytest.raises(InvalidSignatureError):
            verifier.verify(BODY, header)

    def test_body_not_utf8(self, verifier, now_ts, sign_webhook):
        body = b"\xff\xfe"
        with pytest.raises(InvalidSignatureError, match="UTF-8"):
            verifier.verify(body, sign_webhook(SECRET, now_ts, body))

    @pytest.mark.parametrize("offset", [-301, 301])
    def test_outside_tolerance(self, verifier, now_ts, offset, sign_webhook):
        ts = now_ts + offset
        with pytest.raises(InvalidSignatureError) as exc_info:
            verifier.verify(BODY, sign_webhook(SECRET, ts, BODY))
        assert exc_info.value.code == "INVALID_SIGNATURE"
        assert exc_info.value.reason == "Timestamp outside tolerance"

    def test_within_tolerance_after_clock_moves(self, verifier, clock, now_ts, sign_webhook):
        header = sign_webhook(SECRET, now_ts, BODY)
        clock.advance(299)
        verifier.verify(BODY, header)
        clock.advance(2)
        with pytest.raises(InvalidSignatureError):
            verifier.verify(BODY, header)

    def test_missing_secret(self, clock, now_ts, sign_webhook):
        verifier = WebhookVerifier("", clock=clock)
        with pytest.raises(InvalidSignatureError):
            verifier.verify(BODY, sign_webhook("", now_ts, BODY))
