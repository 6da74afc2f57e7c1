"""hubmirror runtime entrypoint.

This module provides the ASGI application factory used by Granian. It
delegates to :func:`hubmirror.api.app.create_app` for application
construction while keeping the ``hubmirror.runtime:create_app`` entrypoint
stable.

Configuration is driven by environment variables:

- ``HUBMIRROR_HOST``: Bind address (default ``0.0.0.0``)
- ``HUBMIRROR_PORT``: Listen port (default ``8080``)
- ``HUBMIRROR_LOG_LEVEL``: Log level (default ``INFO``)
- ``HUBMIRROR_DATABASE_URL``: Event store URL (optional; enables the
  webhook endpoints when set)
- ``HUBMIRROR_WEBHOOK_SECRET``: Shared webhook secret

Run the service directly with ``python -m hubmirror.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from hubmirror.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

_MIN_PORT = 1
_MAX_PORT = 65535


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        log_error(
            logger,
            "Invalid HUBMIRROR_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def create_app() -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    When ``HUBMIRROR_DATABASE_URL`` is set the app receives webhooks;
    otherwise only ``/health`` and ``/ready`` are available.
    """
    from hubmirror.api.app import create_app as _create_api_app

    database_url = os.environ.get("HUBMIRROR_DATABASE_URL")
    if not database_url:
        log_warning(
            logger, "HUBMIRROR_DATABASE_URL is not set; serving health probes only"
        )
        return _create_api_app()

    from hubmirror.api.app import AppDependencies
    from hubmirror.jobs.factory import create_session_factory
    from hubmirror.webhooks.config import WebhookConfig

    webhook_config = WebhookConfig.from_env()
    if not webhook_config.configured:
        log_warning(
            logger,
            "HUBMIRROR_WEBHOOK_SECRET is not set; every delivery will be rejected",
        )

    deps = AppDependencies(
        session_factory=create_session_factory(database_url),
        webhook_config=webhook_config,
    )
    return _create_api_app(deps)


def main() -> None:
    """Start the hubmirror runtime server using Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("HUBMIRROR_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port = _parse_port(os.environ.get("HUBMIRROR_PORT", "8080"))
    log_level_str = os.environ.get("HUBMIRROR_LOG_LEVEL", "INFO")

    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid HUBMIRROR_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting hubmirror runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "hubmirror.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
