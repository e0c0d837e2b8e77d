"""Historical passport versions.

Each credential embeds ``chainAnchor.previousDatasetUri`` pointing at the
version it replaced, so older versions are reached by walking that chain
backwards from the anchor's current dataset.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from dpp_anchor.core.crypto.hashing import digest
from dpp_anchor.modules.credentials.codec import CredentialFormatError, decode_credential
from dpp_anchor.modules.storage.base import (
    IPFS_SCHEME,
    ContentStorage,
    StorageRetrievalError,
    address_from_uri,
)

MAX_HISTORY_DEPTH = 50


class VersionNotAvailableError(LookupError):
    """A link in the version chain is missing or malformed."""

    def __init__(self, version: int | None = None) -> None:
        super().__init__("version not available")
        self.version = version


@dataclass(slots=True)
class HistoryEntry:
    version: int
    dataset_uri: str
    payload_hash: str
    previous_dataset_uri: str | None = None
    previous_payload_hash: str | None = None


def _chain_anchor(token: str) -> dict[str, Any]:
    anchor = decode_credential(token).credential_subject.get("chainAnchor")
    return anchor if isinstance(anchor, dict) else {}


def _previous_uri(anchor: dict[str, Any]) -> str | None:
    value = anchor.get("previousDatasetUri")
    if isinstance(value, str) and value.startswith(IPFS_SCHEME) and len(value) > len(IPFS_SCHEME):
        return value
    return None


async def _fetch(storage: ContentStorage, uri: str, timeout: float) -> str:
    async with asyncio.timeout(timeout):
        result = await storage.retrieve_text(address_from_uri(uri))
    return result.data


async def resolve_version_uri(
    storage: ContentStorage,
    current_uri: str,
    current_version: int,
    target_version: int,
    *,
    timeout: float = 10.0,
) -> str:
    """Dataset URI of ``target_version``, walking back from the current version.

    Raises
    ------
    VersionNotAvailableError
        If the target is outside ``1..current_version`` or a link before it
        cannot be followed.
    """
    if target_version < 1 or target_version > current_version:
        raise VersionNotAvailableError(target_version)

    uri = current_uri
    for _ in range(current_version - target_version):
        try:
            token = await _fetch(storage, uri, timeout)
            previous = _previous_uri(_chain_anchor(token))
        except (StorageRetrievalError, TimeoutError, CredentialFormatError) as exc:
            raise VersionNotAvailableError(target_version) from exc
        if previous is None:
            raise VersionNotAvailableError(target_version)
        uri = previous
    return uri


async def list_history(
    storage: ContentStorage,
    current_uri: str,
    current_version: int,
    *,
    max_depth: int = 10,
    timeout: float = 10.0,
) -> list[HistoryEntry]:
    """Newest-first version entries, stopping at the first unfollowable link."""
    entries: list[HistoryEntry] = []
    seen: set[str] = set()
    uri: str | None = current_uri
    depth = min(max(max_depth, 1), MAX_HISTORY_DEPTH)

    while uri and uri not in seen and len(entries) < depth:
        seen.add(uri)
        try:
            token = await _fetch(storage, uri, timeout)
            anchor = _chain_anchor(token)
        except (StorageRetrievalError, TimeoutError, CredentialFormatError):
            if not entries:
                raise
            break
        previous = _previous_uri(anchor)
        previous_hash = anchor.get("previousPayloadHash")
        entries.append(
            HistoryEntry(
                version=max(current_version - len(entries), 1),
                dataset_uri=uri,
                payload_hash=digest(token),
                previous_dataset_uri=previous,
                previous_payload_hash=previous_hash if isinstance(previous_hash, str) else None,
            )
        )
        uri = previous
    return entries
