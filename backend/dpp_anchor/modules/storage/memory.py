"""Process-local content storage producing CIDv1 (raw, sha2-256) addresses."""

from __future__ import annotations

import asyncio
import base64
import hashlib
from typing import Any

from dpp_anchor.core.crypto.hashing import digest
from dpp_anchor.modules.storage.base import (
    RetrieveResult,
    StorageIntegrityError,
    StorageRetrievalError,
    UploadResult,
)

# multibase 'b' + base32(CIDv1 | raw codec | sha2-256 | 32-byte length)
_CID_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])


def compute_cid(data: bytes) -> str:
    """CIDv1 for raw bytes hashed with SHA-256, base32 multibase encoded."""
    multihash = _CID_PREFIX + hashlib.sha256(data).digest()
    return "b" + base64.b32encode(multihash).decode("ascii").lower().rstrip("=")


class InMemoryContentStorage:
    """Dictionary-backed storage, for development and tests."""

    def __init__(self, gateway_url: str = "https://ipfs.io/ipfs") -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._objects: dict[str, bytes] = {}
        self._digests: dict[str, str] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def upload_text(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> UploadResult:
        data = text.encode("utf-8")
        cid = compute_cid(data)
        async with self._lock:
            self._objects[cid] = data
            self._digests[cid] = digest(data)
            if metadata:
                self.metadata[cid] = dict(metadata)
        return UploadResult(
            content_address=cid,
            content_hash=self._digests[cid],
            gateway_url=self.get_gateway_url(cid),
            size=len(data),
        )

    async def retrieve_text(self, content_address: str) -> RetrieveResult:
        data = self._objects.get(content_address)
        if data is None:
            raise StorageRetrievalError(f"content not found: {content_address}")
        recomputed = digest(data)
        if recomputed != self._digests[content_address]:
            raise StorageIntegrityError(f"digest mismatch for {content_address}")
        return RetrieveResult(data=data.decode("utf-8"), content_hash=recomputed)

    def get_gateway_url(self, content_address: str) -> str:
        return f"{self._gateway_url}/{content_address}"

    def __contains__(self, content_address: object) -> bool:
        return content_address in self._objects
