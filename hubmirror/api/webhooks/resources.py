"""Webhook ingestion and queue-health resources.

Usage
-----
Register the resources on the Falcon app::

    app.add_route("/api/github/webhook", WebhookResource(receiver))
    app.add_route("/api/github/webhook/queue", QueueHealthResource(admin))

"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from hubmirror.processing.admin import EventStoreAdmin
    from hubmirror.webhooks.receiver import WebhookReceiver

__all__ = ["QueueHealthResource", "WebhookResource"]


class WebhookResource:
    """Accept ``POST /api/github/webhook`` deliveries.

    The raw body is read before any parsing so the signature is verified
    over the exact bytes GitHub signed. Rejections propagate as
    ``WebhookRejectedError`` to the registered error handler.
    """

    def __init__(self, receiver: WebhookReceiver) -> None:
        """Bind the receiver that validates and stores deliveries."""
        self._receiver = receiver

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST /api/github/webhook requests."""
        body = await req.stream.read()
        ack = await self._receiver.receive(req.headers, body)
        resp.media = ack.to_dict()
        resp.status = HTTPStatus.OK


class QueueHealthResource:
    """Report event store backlog counts."""

    def __init__(self, admin: EventStoreAdmin) -> None:
        """Bind the admin service used for queue statistics."""
        self._admin = admin

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /api/github/webhook/queue requests."""
        health = await self._admin.queue_health()
        resp.media = health.to_dict()
        resp.status = HTTPStatus.OK
