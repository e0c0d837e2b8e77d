"""Selective disclosure primitives for restricted passport sections.

A passport document is split into a public part that stays in clear and a
restricted part sealed with AES-256-GCM. The 256-bit key is generated once per
passport, never derived from a long-lived secret, and handed to the issuer as
part of a verification link. Holding the link is what grants access.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dpp_anchor.core.crypto.encoding import b64url_decode, b64url_encode

DISCLOSURE_ALGORITHM = "AES-256-GCM"

_KEY_BYTES = 32
_NONCE_BYTES = 12
_TAG_BYTES = 16
_ENVELOPE_FIELDS = ("iv", "ciphertext", "tag")

RestrictedClassifier = Callable[[str, Any], bool]


class DisclosureError(Exception):
    """Raised when a restricted section cannot be sealed or opened."""


@dataclass(slots=True)
class DisclosureSplit:
    """Result of partitioning a document into disclosure tiers."""

    public: dict[str, Any] = field(default_factory=dict)
    restricted: dict[str, Any] = field(default_factory=dict)


def generate_verification_key() -> str:
    """Return a fresh 256-bit key encoded as base64url."""
    return b64url_encode(os.urandom(_KEY_BYTES))


def decode_verification_key(key: str | bytes) -> bytes:
    """Decode a verification key, rejecting anything that is not 32 bytes."""
    if isinstance(key, bytes):
        raw = key
    else:
        try:
            raw = b64url_decode(key)
        except ValueError as exc:
            raise DisclosureError("verification key is not valid base64url") from exc
    if len(raw) != _KEY_BYTES:
        raise DisclosureError(
            f"verification key must be 256 bits ({_KEY_BYTES} bytes), got {len(raw)}"
        )
    return raw


def build_verification_link_template(render_base_url: str, key: str) -> str:
    """Verification link with a ``{tokenId}`` placeholder filled once the ledger assigns one."""
    return f"{render_base_url.rstrip('/')}/render/{{tokenId}}?key={key}"


def split_disclosure(
    document: Mapping[str, Any],
    classifier: RestrictedClassifier,
) -> DisclosureSplit:
    """Partition top-level fields; ``classifier(name, value)`` returns True for restricted ones."""
    result = DisclosureSplit()
    for name, value in document.items():
        if classifier(name, value):
            result.restricted[name] = value
        else:
            result.public[name] = value
    return result


def encrypt_restricted(
    restricted: Any,
    key: str | bytes,
    *,
    aad: bytes | None = None,
) -> dict[str, str]:
    """Seal a JSON-serialisable value into ``{alg, iv, ciphertext, tag}``."""
    raw_key = decode_verification_key(key)
    nonce = os.urandom(_NONCE_BYTES)
    plaintext = json.dumps(restricted, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    sealed = AESGCM(raw_key).encrypt(nonce, plaintext, aad)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return {
        "alg": DISCLOSURE_ALGORITHM,
        "iv": b64url_encode(nonce),
        "ciphertext": b64url_encode(ciphertext),
        "tag": b64url_encode(tag),
    }


def decrypt_restricted(
    envelope: Mapping[str, Any],
    key: str | bytes,
    *,
    aad: bytes | None = None,
) -> Any:
    """Open an envelope produced by :func:`encrypt_restricted`.

    Fails closed: a wrong key, a tampered field or a malformed envelope raises
    :class:`DisclosureError` and no plaintext is returned.
    """
    if not isinstance(envelope, Mapping):
        raise DisclosureError("encrypted envelope must be an object")
    alg = envelope.get("alg")
    if alg != DISCLOSURE_ALGORITHM:
        raise DisclosureError(f"unsupported encryption algorithm: {alg}")

    parts: dict[str, bytes] = {}
    for name in _ENVELOPE_FIELDS:
        value = envelope.get(name)
        if not isinstance(value, str):
            raise DisclosureError(f"encrypted envelope is missing '{name}'")
        try:
            parts[name] = b64url_decode(value)
        except ValueError as exc:
            raise DisclosureError(f"encrypted envelope field '{name}' is not base64url") from exc

    if len(parts["iv"]) != _NONCE_BYTES:
        raise DisclosureError("encrypted envelope has an invalid IV length")
    if len(parts["tag"]) != _TAG_BYTES:
        raise DisclosureError("encrypted envelope has an invalid tag length")

    raw_key = decode_verification_key(key)
    try:
        plaintext = AESGCM(raw_key).decrypt(parts["iv"], parts["ciphertext"] + parts["tag"], aad)
    except (InvalidTag, ValueError) as exc:
        raise DisclosureError("restricted section could not be decrypted") from exc

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DisclosureError("restricted section is not valid JSON") from exc
