"""Unit tests for webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac

import pytest

from hubmirror.webhooks.signature import (
    SignatureCheck,
    compute_signature,
    verify_signature,
)

SECRET = "It's a Secret to Everybody"
BODY = b"Hello, World!"


def test_github_documented_example_verifies() -> None:
    """The example from GitHub's webhook documentation verifies."""
    header = (
        "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
    )
    assert verify_signature(header, BODY, SECRET) is SignatureCheck.VALID, (
        "documented signature must verify"
    )


def test_compute_signature_matches_hmac() -> None:
    """compute_signature produces the prefixed hex HMAC-SHA256 digest."""
    digest = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert compute_signature(BODY, SECRET) == f"sha256={digest}"


@pytest.mark.parametrize("header", [None, ""])
def test_missing_header(header: str | None) -> None:
    """Absent or empty headers are reported as missing, not invalid."""
    assert verify_signature(header, BODY, SECRET) is SignatureCheck.MISSING_HEADER


@pytest.mark.parametrize(
    "header",
    [
        "sha1=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17",
        "757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17",
        "sha256=",
        "sha256=not-hex",
        "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e1",
        "sha256=ü57107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17",
    ],
    ids=["wrong-prefix", "no-prefix", "empty-digest", "not-hex", "short", "non-ascii"],
)
def test_malformed_headers_are_invalid(header: str) -> None:
    """Malformed headers resolve to INVALID without raising."""
    assert verify_signature(header, BODY, SECRET) is SignatureCheck.INVALID


def test_tampered_body_is_invalid() -> None:
    """Changing one byte of the body invalidates the signature."""
    header = compute_signature(BODY, SECRET)
    assert verify_signature(header, BODY + b" ", SECRET) is SignatureCheck.INVALID


def test_wrong_secret_is_invalid() -> None:
    """A signature computed under another secret is rejected."""
    header = compute_signature(BODY, "other")
    assert verify_signature(header, BODY, SECRET) is SignatureCheck.INVALID


def test_uppercase_hex_is_invalid() -> None:
    """Comparison is exact; GitHub always sends lowercase hex."""
    header = compute_signature(BODY, SECRET).upper().replace("SHA256=", "sha256=")
    assert verify_signature(header, BODY, SECRET) is SignatureCheck.INVALID
