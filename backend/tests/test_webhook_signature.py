import base64
import time

import pytest

from conftest import WEBHOOK_SECRET, sign_delivery, signed_delivery
from valtro.auth.webhooks import WebhookVerificationError, WebhookVerifier
from valtro.errors import ValidationError


def _now() -> int:
    return int(time.time())


@pytest.fixture
def verifier() -> WebhookVerifier:
    return WebhookVerifier(WEBHOOK_SECRET)


def test_valid_signature_returns_payload(verifier: WebhookVerifier) -> None:
    body, headers = signed_delivery({"type": "user.created"})
    assert verifier.verify(body, headers) == {"type": "user.created"}


def test_any_matching_entry_passes(verifier: WebhookVerifier) -> None:
    body, headers = signed_delivery({"type": "user.created"})
    headers["svix-signature"] = f"v1,bm90LXRoaXMtb25l v2,aWdub3JlZA== {headers['svix-signature']}"
    verifier.verify(body, headers)


def test_header_names_are_case_insensitive(verifier: WebhookVerifier) -> None:
    body, headers = signed_delivery({"type": "user.created"})
    verifier.verify(body, {k.title(): v for k, v in headers.items()})


def test_signature_matches_reference_vector() -> None:
    # Reference values from the Svix verification documentation.
    _, headers = signed_delivery(
        {"test": 2432232314},
        secret="whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw",
        msg_id="msg_p5jXN8AQM9LWM0D4loKWxJek",
        timestamp=1614265330,
    )
    assert headers["svix-signature"] == "v1,g0hM9SsE+OTPJTGt/tmIKtSyZlE3uFJELVlNIOLJ1OE="


def test_signed_non_json_body_is_validation_error(verifier: WebhookVerifier) -> None:
    _, headers = signed_delivery({"type": "user.created"})
    headers["svix-signature"] = sign_delivery(
        WEBHOOK_SECRET, headers["svix-id"], headers["svix-timestamp"], b"{not json"
    )
    with pytest.raises(ValidationError):
        verifier.verify(b"{not json", headers)


class TestRejections:
    def test_tampered_body(self, verifier: WebhookVerifier) -> None:
        body, headers = signed_delivery({"type": "user.created"})
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body + b" ", headers)

    def test_wrong_secret(self, verifier: WebhookVerifier) -> None:
        other = "whsec_" + base64.b64encode(b"some-other-signing-key").decode()
        body, headers = signed_delivery({"type": "user.created"}, secret=other)
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body, headers)

    @pytest.mark.parametrize("missing", ["svix-id", "svix-timestamp", "svix-signature"])
    def test_missing_header(self, verifier: WebhookVerifier, missing: str) -> None:
        body, headers = signed_delivery({"type": "user.created"})
        del headers[missing]
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body, headers)

    @pytest.mark.parametrize("offset", [-360, 360])
    def test_timestamp_outside_tolerance(self, verifier: WebhookVerifier, offset: int) -> None:
        body, headers = signed_delivery({"type": "user.created"}, timestamp=_now() + offset)
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body, headers)

    def test_non_numeric_timestamp(self, verifier: WebhookVerifier) -> None:
        body, headers = signed_delivery({"type": "user.created"})
        headers["svix-timestamp"] = "yesterday"
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body, headers)

    def test_malformed_signature_entry(self, verifier: WebhookVerifier) -> None:
        body, headers = signed_delivery({"type": "user.created"})
        headers["svix-signature"] = "garbage"
        with pytest.raises(WebhookVerificationError):
            verifier.verify(body, headers)

    def test_error_renders_as_401(self) -> None:
        err = WebhookVerificationError("No matching signature found")
        assert err.status_code == 401
        assert err.message == "invalid webhook signature"


def test_timestamp_inside_tolerance(verifier: WebhookVerifier) -> None:
    body, headers = signed_delivery({"type": "user.created"}, timestamp=_now() - 240)
    verifier.verify(body, headers)


def test_malformed_secret_rejected_at_construction() -> None:
    with pytest.raises(ValueError):
        WebhookVerifier("whsec_abc")
