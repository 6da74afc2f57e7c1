"""Inbound GitHub webhook authentication and ingestion."""

from __future__ import annotations

from .config import WebhookConfig
from .errors import REJECTION_STATUS, WebhookRejectedError, WebhookRejection
from .receiver import WebhookAck, WebhookReceiver
from .signature import SignatureCheck, compute_signature, verify_signature

__all__ = [
    "REJECTION_STATUS",
    "SignatureCheck",
    "WebhookAck",
    "WebhookConfig",
    "WebhookReceiver",
    "WebhookRejectedError",
    "WebhookRejection",
    "compute_signature",
    "verify_signature",
]
