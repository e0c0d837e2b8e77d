"""Content digests and privacy-preserving subject identifiers.

A passport anchor never carries the product identity in clear. Instead the
ledger stores the SHA-256 digest of a canonical subject identifier whose shape
depends on the passport granularity:

* ``ProductClass``: ``productId``
* ``Batch``: ``productId#batchNumber``
* ``Item``: ``productId#serialNumber``

Batch and Item identifiers without their discriminator are undefined; the
helpers return ``None`` so callers anchor without a subject hash instead of
hashing an incomplete string.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any

import rfc8785

SUBJECT_ID_SEPARATOR = "#"
HEX_PREFIX = "0x"


class Granularity(str, Enum):
    """Identity scope of a passport. Immutable once anchored."""

    PRODUCT_CLASS = "ProductClass"
    BATCH = "Batch"
    ITEM = "Item"


_GRANULARITY_ALIASES: dict[str, Granularity] = {
    "productclass": Granularity.PRODUCT_CLASS,
    "product_class": Granularity.PRODUCT_CLASS,
    "class": Granularity.PRODUCT_CLASS,
    "model": Granularity.PRODUCT_CLASS,
    "batch": Granularity.BATCH,
    "lot": Granularity.BATCH,
    "item": Granularity.ITEM,
    "serialized": Granularity.ITEM,
    "serial": Granularity.ITEM,
}

# UNTP 0.6.0 granularityLevel vocabulary
_UNTP_GRANULARITY_LEVELS: dict[Granularity, str] = {
    Granularity.PRODUCT_CLASS: "model",
    Granularity.BATCH: "batch",
    Granularity.ITEM: "item",
}


def parse_granularity(raw: str | Granularity | None) -> Granularity | None:
    """Map a free-form granularity label to :class:`Granularity`.

    Returns ``None`` for empty input. Unknown labels fall back to
    ``ProductClass``, the least specific scope.
    """
    if isinstance(raw, Granularity):
        return raw
    value = (raw or "").strip().lower()
    if not value:
        return None
    return _GRANULARITY_ALIASES.get(value, Granularity.PRODUCT_CLASS)


def untp_granularity_level(granularity: Granularity) -> str:
    return _UNTP_GRANULARITY_LEVELS[granularity]


def digest(data: bytes | str) -> str:
    """SHA-256 of ``data`` as a ``0x``-prefixed lowercase hex string.

    Text is hashed as its exact UTF-8 bytes, with no normalization.
    """
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return HEX_PREFIX + hashlib.sha256(raw).hexdigest()


def json_digest(value: Any) -> str:
    """:func:`digest` of the RFC 8785 (JCS) serialization of a JSON value.

    Documents differing only in key order or whitespace share a digest.
    """
    return digest(rfc8785.dumps(value))


def canonical_subject_id(
    product_id: str | None,
    granularity: Granularity | str,
    batch_number: str | None = None,
    serial_number: str | None = None,
) -> str | None:
    """Build the canonical subject identifier for a passport.

    Parameters
    ----------
    product_id:
        Product identifier (GTIN, SKU, ...). Surrounding whitespace is ignored.
    granularity:
        Passport granularity.
    batch_number, serial_number:
        Discriminators required for ``Batch`` and ``Item`` respectively.

    Returns
    -------
    str | None
        The canonical identifier, or ``None`` when a required field is absent.
    """
    product = (product_id or "").strip()
    if not product:
        return None

    scope = Granularity(granularity)
    if scope is Granularity.PRODUCT_CLASS:
        return product
    if scope is Granularity.BATCH:
        batch = (batch_number or "").strip()
        return f"{product}{SUBJECT_ID_SEPARATOR}{batch}" if batch else None
    serial = (serial_number or "").strip()
    return f"{product}{SUBJECT_ID_SEPARATOR}{serial}" if serial else None


def subject_id_hash(canonical_id: str) -> str:
    """Digest of a canonical subject identifier (32 bytes, ``0x``-hex)."""
    if not canonical_id:
        raise ValueError("canonical subject identifier must not be empty")
    return digest(canonical_id)


def compute_subject_id_hash(
    product_id: str | None,
    granularity: Granularity | str,
    batch_number: str | None = None,
    serial_number: str | None = None,
) -> str | None:
    """Canonicalize and hash in one step; ``None`` when the identifier is undefined."""
    canonical = canonical_subject_id(product_id, granularity, batch_number, serial_number)
    if canonical is None:
        return None
    return subject_id_hash(canonical)
