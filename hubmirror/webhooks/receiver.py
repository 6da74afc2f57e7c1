"""Validate inbound GitHub webhook deliveries and record them in Bronze.

The receiver performs no payload interpretation: it authenticates the
request, checks that the body is a JSON object, lifts a handful of routing
fields out of it and stores the body verbatim. Everything else happens in
the processing dispatcher.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import msgspec

from hubmirror.bronze.services import RawEventEnvelope
from hubmirror.bronze.storage import (
    BIGINT_MAX,
    BIGINT_MIN,
    DELIVERY_ID_MAX_LENGTH,
    EVENT_NAME_MAX_LENGTH,
)
from hubmirror.common.time import utcnow
from hubmirror.logging import get_logger, log_debug, log_info
from hubmirror.webhooks.errors import WebhookRejectedError, WebhookRejection
from hubmirror.webhooks.signature import SignatureCheck, verify_signature

if typ.TYPE_CHECKING:
    from hubmirror.bronze.services import RawEventWriter
    from hubmirror.webhooks.config import WebhookConfig

logger = get_logger(__name__)

EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"
SIGNATURE_HEADER = "x-hub-signature-256"


@dc.dataclass(frozen=True, slots=True)
class WebhookAck:
    """Acknowledgement returned for an accepted delivery."""

    delivery_id: str
    stored: bool

    def to_dict(self) -> dict[str, typ.Any]:
        """Return the JSON body sent back to GitHub."""
        return {"ok": True, "deliveryId": self.delivery_id}


def _header(headers: typ.Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup returning stripped, non-empty values."""
    for key, value in headers.items():
        if key.lower() == name:
            stripped = value.strip()
            return stripped or None
    return None


def _optional_str(payload: dict[str, typ.Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _nested_int(payload: dict[str, typ.Any], key: str) -> int | None:
    """Return ``payload[key]["id"]`` when it is an integer that fits BIGINT."""
    container = payload.get(key)
    if not isinstance(container, dict):
        return None
    value = container.get("id")
    # bool is an int subclass; reject it along with floats.
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if not BIGINT_MIN <= value <= BIGINT_MAX:
        return None
    return value


class WebhookReceiver:
    """Authenticate a delivery and insert it into the event store once."""

    def __init__(self, writer: RawEventWriter, config: WebhookConfig) -> None:
        """Store the Bronze writer and webhook configuration."""
        self._writer = writer
        self._config = config

    async def receive(self, headers: typ.Mapping[str, str], body: bytes) -> WebhookAck:
        """Validate and record one delivery.

        Raises
        ------
        WebhookRejectedError
            When routing headers are missing or oversized, the secret is not
            configured, the signature does not verify, or the body is not a
            JSON object.

        """
        event_name = _header(headers, EVENT_HEADER)
        delivery_id = _header(headers, DELIVERY_HEADER)
        if event_name is None or delivery_id is None:
            raise WebhookRejectedError(WebhookRejection.MISSING_HEADERS)
        if (
            len(event_name) > EVENT_NAME_MAX_LENGTH
            or len(delivery_id) > DELIVERY_ID_MAX_LENGTH
        ):
            raise WebhookRejectedError(
                WebhookRejection.MISSING_HEADERS, "routing header too long"
            )

        secret = self._config.secret
        if not secret:
            raise WebhookRejectedError(
                WebhookRejection.MISSING_SECRET,
                "HUBMIRROR_WEBHOOK_SECRET is not set",
            )

        check = verify_signature(_header(headers, SIGNATURE_HEADER), body, secret)
        if check is SignatureCheck.MISSING_HEADER:
            raise WebhookRejectedError(WebhookRejection.MISSING_SIGNATURE)
        if check is not SignatureCheck.VALID:
            raise WebhookRejectedError(WebhookRejection.INVALID_SIGNATURE)

        text, payload = self._parse(body)
        envelope = RawEventEnvelope(
            delivery_id=delivery_id,
            event_name=event_name,
            payload=text,
            action=_optional_str(payload, "action"),
            installation_id=_nested_int(payload, "installation"),
            repository_id=_nested_int(payload, "repository"),
            signature_valid=True,
            received_at=utcnow(),
        )
        result = await self._writer.record(envelope)
        if result.stored:
            log_info(logger, "Stored %s delivery %s", event_name, delivery_id)
        else:
            log_debug(logger, "Ignored duplicate delivery %s", delivery_id)
        return WebhookAck(delivery_id=delivery_id, stored=result.stored)

    @staticmethod
    def _parse(body: bytes) -> tuple[str, dict[str, typ.Any]]:
        try:
            text = body.decode("utf-8")
            payload = msgspec.json.decode(text)
        except (UnicodeDecodeError, msgspec.DecodeError) as exc:
            raise WebhookRejectedError(
                WebhookRejection.INVALID_PAYLOAD, str(exc)
            ) from exc
        if not isinstance(payload, dict):
            raise WebhookRejectedError(
                WebhookRejection.INVALID_PAYLOAD, type(payload).__name__
            )
        return text, payload
