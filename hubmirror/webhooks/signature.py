"""HMAC-SHA256 verification of GitHub webhook signatures."""

from __future__ import annotations

import enum
import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


class SignatureCheck(enum.StrEnum):
    """Closed set of signature verification outcomes."""

    VALID = "valid"
    MISSING_HEADER = "missing_header"
    INVALID = "invalid"


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``X-Hub-Signature-256`` value GitHub would send for *body*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    signature_header: str | None, body: bytes, secret: str
) -> SignatureCheck:
    """Check *signature_header* against the HMAC of *body* under *secret*.

    Never raises: malformed headers, a wrong prefix and non-ASCII input all
    resolve to :attr:`SignatureCheck.INVALID`.
    """
    if not signature_header:
        return SignatureCheck.MISSING_HEADER
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return SignatureCheck.INVALID
    if not signature_header.isascii():
        return SignatureCheck.INVALID

    expected = compute_signature(body, secret)
    if hmac.compare_digest(expected.encode("ascii"), signature_header.encode("ascii")):
        return SignatureCheck.VALID
    return SignatureCheck.INVALID
