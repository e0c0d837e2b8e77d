"""Unpadded base64url helpers (RFC 7515 section 2) used by JWS and disclosure envelopes."""

from __future__ import annotations

import base64
import binascii


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode unpadded (or padded) base64url text.

    Raises ``ValueError`` on characters outside the base64url alphabet.
    """
    if not isinstance(data, str):
        raise ValueError("base64url input must be a string")
    stripped = data.strip().rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64url data: {exc}") from exc
