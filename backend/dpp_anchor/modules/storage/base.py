"""Content-addressed storage collaborator interface.

Backends must report on upload the same digest that a later retrieval
recomputes, whatever their addressing scheme.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

IPFS_SCHEME = "ipfs://"


class StorageError(RuntimeError):
    """Base class for content storage failures."""


class StorageRetrievalError(StorageError):
    """Content could not be fetched (not found, unreachable or timed out)."""


class StorageIntegrityError(StorageError):
    """Retrieved bytes do not match the digest recorded at upload time."""


@dataclass(slots=True)
class UploadResult:
    content_address: str
    content_hash: str
    gateway_url: str
    size: int

    @property
    def uri(self) -> str:
        return f"{IPFS_SCHEME}{self.content_address}"


@dataclass(slots=True)
class RetrieveResult:
    data: str
    content_hash: str


def address_from_uri(uri: str) -> str:
    """Strip the ``ipfs://`` scheme; plain addresses pass through."""
    value = (uri or "").strip()
    if value.startswith(IPFS_SCHEME):
        return value[len(IPFS_SCHEME) :]
    return value


@runtime_checkable
class ContentStorage(Protocol):
    """Protocol for content-addressed text storage."""

    async def upload_text(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> UploadResult:
        """Store ``text`` and return its content address and digest."""
        ...

    async def retrieve_text(self, content_address: str) -> RetrieveResult:
        """Fetch previously stored text by address."""
        ...

    def get_gateway_url(self, content_address: str) -> str:
        """Public HTTP URL for a content address."""
        ...
