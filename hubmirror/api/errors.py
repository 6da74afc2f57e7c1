"""Falcon error handlers for the API layer.

Usage
-----
Register error handlers on the Falcon app::

    from hubmirror.api.errors import handle_webhook_rejected
    from hubmirror.webhooks.errors import WebhookRejectedError

    app.add_error_handler(WebhookRejectedError, handle_webhook_rejected)

"""

from __future__ import annotations

import typing as typ

from hubmirror.logging import get_logger, log_error, log_warning
from hubmirror.webhooks.errors import WebhookRejectedError, WebhookRejection

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

__all__ = ["handle_webhook_rejected"]

logger = get_logger(__name__)


async def handle_webhook_rejected(
    req: Request,
    resp: Response,
    ex: WebhookRejectedError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``WebhookRejectedError`` to its HTTP status and an error body.

    Configuration faults are logged server-side with their detail; the
    caller only learns that the webhook is misconfigured.

    Parameters
    ----------
    req
        Falcon request, used for the delivery id in logs.
    resp
        Falcon response whose status and media are set.
    ex
        The rejection raised by the receiver.
    _params
        URI template parameters (unused).

    """
    delivery_id = req.get_header("X-GitHub-Delivery") or "<none>"
    if ex.rejection is WebhookRejection.MISSING_SECRET:
        log_error(
            logger,
            "Webhook misconfigured, rejecting delivery %s: %s",
            delivery_id,
            ex.detail,
        )
    else:
        log_warning(
            logger,
            "Rejected webhook delivery %s: %s",
            delivery_id,
            ex.rejection,
        )
    resp.status = ex.status
    resp.media = {"error": ex.public_message}
