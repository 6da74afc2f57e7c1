"""Configuration for the webhook receiver."""

from __future__ import annotations

import dataclasses as dc
import os


@dc.dataclass(frozen=True, slots=True)
class WebhookConfig:
    """Shared secret used to verify inbound deliveries.

    ``secret`` may be absent at load time; the receiver then rejects every
    request as misconfigured instead of refusing to start.
    """

    secret: str | None = None

    @property
    def configured(self) -> bool:
        """Return True when a non-empty secret is available."""
        return bool(self.secret)

    @classmethod
    def from_env(cls) -> WebhookConfig:
        """Read ``HUBMIRROR_WEBHOOK_SECRET`` from the environment."""
        raw = os.environ.get("HUBMIRROR_WEBHOOK_SECRET", "")
        return cls(secret=raw or None)
