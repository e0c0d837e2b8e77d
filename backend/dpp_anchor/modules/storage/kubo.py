"""Kubo (go-ipfs) HTTP RPC storage backend."""

from __future__ import annotations

import asyncio
import json
from typing import Any, cast

import httpx

from dpp_anchor.core.crypto.hashing import digest
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.storage.base import (
    RetrieveResult,
    StorageError,
    StorageRetrievalError,
    UploadResult,
)

logger = get_logger(__name__)


class KuboContentStorage:
    """Store and fetch text through a Kubo node's ``/api/v0`` RPC."""

    def __init__(
        self,
        api_url: str,
        gateway_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._gateway_url = gateway_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._api_url, timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def upload_text(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> UploadResult:
        data = text.encode("utf-8")
        name = str((metadata or {}).get("name") or "document.txt")
        client = await self._get_client()
        try:
            async with asyncio.timeout(self._timeout):
                response = await client.post(
                    "/api/v0/add",
                    params={"cid-version": "1", "pin": "true"},
                    files={"file": (name, data, "application/octet-stream")},
                )
            response.raise_for_status()
        except (httpx.HTTPError, TimeoutError) as exc:
            raise StorageError(f"IPFS upload failed: {exc}") from exc

        # Kubo streams one JSON object per line; the last one describes the root.
        lines = [line for line in response.text.splitlines() if line.strip()]
        try:
            added = cast(dict[str, Any], json.loads(lines[-1]))
            cid = str(added["Hash"])
        except (IndexError, KeyError, ValueError) as exc:
            raise StorageError("IPFS upload returned an unexpected response") from exc

        logger.info("ipfs_upload_complete", cid=cid, size=len(data), name=name)
        return UploadResult(
            content_address=cid,
            content_hash=digest(data),
            gateway_url=self.get_gateway_url(cid),
            size=len(data),
        )

    async def retrieve_text(self, content_address: str) -> RetrieveResult:
        client = await self._get_client()
        try:
            async with asyncio.timeout(self._timeout):
                response = await client.post("/api/v0/cat", params={"arg": content_address})
            response.raise_for_status()
        except (httpx.HTTPError, TimeoutError) as exc:
            logger.warning("ipfs_retrieve_failed", cid=content_address, error=str(exc))
            raise StorageRetrievalError(f"IPFS retrieval failed for {content_address}") from exc

        data = response.content
        return RetrieveResult(data=data.decode("utf-8"), content_hash=digest(data))

    def get_gateway_url(self, content_address: str) -> str:
        return f"{self._gateway_url}/{content_address}"
