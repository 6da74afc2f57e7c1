"""Application factory for the hubmirror Falcon ASGI application.

Usage
-----
Create a health-only app (no database)::

    app = create_app()

Create a full app with the webhook endpoints::

    from hubmirror.api.app import AppDependencies, create_app

    deps = AppDependencies(
        session_factory=session_factory,
        webhook_config=WebhookConfig.from_env(),
    )
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from hubmirror.api.errors import handle_webhook_rejected
from hubmirror.api.health.resources import HealthResource, ReadyResource
from hubmirror.webhooks.config import WebhookConfig
from hubmirror.webhooks.errors import WebhookRejectedError

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["AppDependencies", "create_app"]

WEBHOOK_ROUTE = "/api/github/webhook"
QUEUE_HEALTH_ROUTE = "/api/github/webhook/queue"


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    When ``session_factory`` is provided the webhook and queue-health
    endpoints are registered. Otherwise only health endpoints are.

    Attributes
    ----------
    session_factory
        Async session factory for the event store.
    webhook_config
        Webhook secret configuration; defaults to an unconfigured secret,
        which makes every delivery fail as misconfigured.

    """

    session_factory: async_sessionmaker[AsyncSession] | None = None
    webhook_config: WebhookConfig = dc.field(default_factory=WebhookConfig)


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies. When ``None`` or lacking a
        session factory, only ``/health`` and ``/ready`` are available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    app = falcon.asgi.App()  # type: ignore[no-matching-overload]  # Falcon stubs
    session_factory = None if dependencies is None else dependencies.session_factory

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(session_factory))

    if dependencies is not None and session_factory is not None:
        from hubmirror.api.webhooks.resources import (
            QueueHealthResource,
            WebhookResource,
        )
        from hubmirror.bronze.services import RawEventWriter
        from hubmirror.processing.admin import EventStoreAdmin
        from hubmirror.webhooks.receiver import WebhookReceiver

        receiver = WebhookReceiver(
            RawEventWriter(session_factory), dependencies.webhook_config
        )
        app.add_route(WEBHOOK_ROUTE, WebhookResource(receiver))
        app.add_route(
            QUEUE_HEALTH_ROUTE, QueueHealthResource(EventStoreAdmin(session_factory))
        )

    app.add_error_handler(WebhookRejectedError, handle_webhook_rejected)

    return app
