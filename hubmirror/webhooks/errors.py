"""Synchronous rejection reasons for inbound webhook requests."""

from __future__ import annotations

import enum
from http import HTTPStatus


class WebhookRejection(enum.StrEnum):
    """Every way the receiver can refuse a request."""

    MISSING_HEADERS = "missing_headers"
    MISSING_SECRET = "missing_secret"
    MISSING_SIGNATURE = "missing_signature"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_PAYLOAD = "invalid_payload"


REJECTION_STATUS: dict[WebhookRejection, HTTPStatus] = {
    WebhookRejection.MISSING_HEADERS: HTTPStatus.BAD_REQUEST,
    WebhookRejection.MISSING_SECRET: HTTPStatus.INTERNAL_SERVER_ERROR,
    WebhookRejection.MISSING_SIGNATURE: HTTPStatus.UNAUTHORIZED,
    WebhookRejection.INVALID_SIGNATURE: HTTPStatus.UNAUTHORIZED,
    WebhookRejection.INVALID_PAYLOAD: HTTPStatus.BAD_REQUEST,
}

_PUBLIC_MESSAGES: dict[WebhookRejection, str] = {
    WebhookRejection.MISSING_HEADERS: (
        "Missing or oversized X-GitHub-Event or X-GitHub-Delivery"
    ),
    WebhookRejection.MISSING_SECRET: "Webhook is not configured",
    WebhookRejection.MISSING_SIGNATURE: "Missing X-Hub-Signature-256",
    WebhookRejection.INVALID_SIGNATURE: "Invalid webhook signature",
    WebhookRejection.INVALID_PAYLOAD: "Payload must be a JSON object",
}


class WebhookRejectedError(Exception):
    """Raised when a webhook request is refused before anything is stored.

    Attributes
    ----------
    rejection
        Which check failed.
    detail
        Optional server-side detail; never sent to the caller.

    """

    def __init__(self, rejection: WebhookRejection, detail: str | None = None) -> None:
        """Record the rejection and an optional server-side detail."""
        self.rejection = rejection
        self.detail = detail
        super().__init__(_PUBLIC_MESSAGES[rejection])

    @property
    def status(self) -> HTTPStatus:
        """Return the HTTP status for this rejection."""
        return REJECTION_STATUS[self.rejection]

    @property
    def public_message(self) -> str:
        """Return the message safe to send back to the caller."""
        return _PUBLIC_MESSAGES[self.rejection]
