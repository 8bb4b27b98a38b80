"""Svix webhook signature verification.

Clerk delivers webhooks through Svix. Each delivery carries ``svix-id``,
``svix-timestamp`` and ``svix-signature``; the ``svix`` library checks the
HMAC over id, timestamp and body, accepts any matching ``v1,<sig>`` entry
(secret rotation) and rejects timestamps more than five minutes off.
"""

import json
import logging
from typing import Any, Mapping

from svix.webhooks import Webhook
from svix.webhooks import WebhookVerificationError as SvixVerificationError

from valtro.errors import UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


class WebhookVerificationError(UnauthorizedError):
    """Signature, timestamp or header check failed."""

    def __init__(self, details: str) -> None:
        super().__init__("invalid webhook signature", details=details)


class WebhookVerifier:
    """Authenticate Clerk deliveries with the ``whsec_`` signing secret."""

    def __init__(self, secret: str) -> None:
        try:
            self._webhook = Webhook(secret)
        except ValueError as exc:
            raise ValueError("webhook signing secret is not valid base64") from exc

    def verify(self, body: bytes, headers: Mapping[str, str]) -> Any:
        """Return the decoded payload, or raise unless the delivery is authentic.

        A correctly signed body that is not JSON raises ValidationError (400).
        """
        try:
            return self._webhook.verify(body, dict(headers.items()))
        except SvixVerificationError as exc:
            logger.warning("webhook signature rejected: %s", exc, extra={"svix_id": headers.get("svix-id")})
            raise WebhookVerificationError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise ValidationError("invalid JSON payload") from exc
        except ValueError as exc:
            # Undecodable body or a malformed signature entry.
            logger.warning("webhook delivery malformed: %s", exc, extra={"svix_id": headers.get("svix-id")})
            raise WebhookVerificationError("malformed svix delivery") from exc
