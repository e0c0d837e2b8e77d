"""Tests for walking the passport version chain."""

from __future__ import annotations

from typing import Any

import pytest
from cryptography.hazmat.primitives.asymmetric import ed25519

from dpp_anchor.core.crypto.hashing import digest
from dpp_anchor.modules.credentials.codec import sign_credential
from dpp_anchor.modules.passports.history import (
    VersionNotAvailableError,
    list_history,
    resolve_version_uri,
)
from dpp_anchor.modules.storage.base import StorageRetrievalError
from dpp_anchor.modules.storage.memory import InMemoryContentStorage

KEY = ed25519.Ed25519PrivateKey.generate()


def _token(version: int, previous_uri: str | None = None, previous_hash: str | None = None) -> str:
    anchor: dict[str, Any] = {"version": version}
    if previous_uri:
        anchor["previousDatasetUri"] = previous_uri
        anchor["previousPayloadHash"] = previous_hash
    payload = {
        "iss": "did:key:z6Mk",
        "vc": {"credentialSubject": {"product": {"identifier": "P-1"}, "chainAnchor": anchor}},
    }
    return sign_credential(payload, KEY)


async def _build_chain(storage: InMemoryContentStorage, length: int) -> list[tuple[str, str]]:
    """Upload ``length`` linked versions; returns ``(uri, token)`` oldest first."""
    chain: list[tuple[str, str]] = []
    previous_uri: str | None = None
    previous_hash: str | None = None
    for version in range(1, length + 1):
        token = _token(version, previous_uri, previous_hash)
        result = await storage.upload_text(token)
        chain.append((result.uri, token))
        previous_uri, previous_hash = result.uri, digest(token)
    return chain


class TestResolveVersionUri:
    @pytest.mark.asyncio
    async def test_current_version_needs_no_fetch(self) -> None:
        storage = InMemoryContentStorage()
        uri = await resolve_version_uri(storage, "ipfs://bafy-current", 3, 3)
        assert uri == "ipfs://bafy-current"

    @pytest.mark.asyncio
    async def test_walks_back_to_target(self) -> None:
        storage = InMemoryContentStorage()
        chain = await _build_chain(storage, 3)
        current_uri = chain[-1][0]

        assert await resolve_version_uri(storage, current_uri, 3, 2) == chain[1][0]
        assert await resolve_version_uri(storage, current_uri, 3, 1) == chain[0][0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", [0, 4, -1])
    async def test_out_of_range(self, target: int) -> None:
        storage = InMemoryContentStorage()
        chain = await _build_chain(storage, 3)
        with pytest.raises(VersionNotAvailableError) as exc_info:
            await resolve_version_uri(storage, chain[-1][0], 3, target)
        assert exc_info.value.version == target

    @pytest.mark.asyncio
    async def test_missing_link(self) -> None:
        storage = InMemoryContentStorage()
        # version 2 claims a predecessor but carries no link
        result = await storage.upload_text(_token(2))
        with pytest.raises(VersionNotAvailableError):
            await resolve_version_uri(storage, result.uri, 2, 1)

    @pytest.mark.asyncio
    async def test_unretrievable_link(self) -> None:
        storage = InMemoryContentStorage()
        with pytest.raises(VersionNotAvailableError):
            await resolve_version_uri(storage, "ipfs://bafy-gone", 2, 1)


class TestListHistory:
    @pytest.mark.asyncio
    async def test_newest_first_with_hashes(self) -> None:
        storage = InMemoryContentStorage()
        chain = await _build_chain(storage, 3)

        entries = await list_history(storage, chain[-1][0], 3)

        assert [e.version for e in entries] == [3, 2, 1]
        assert [e.dataset_uri for e in entries] == [uri for uri, _ in reversed(chain)]
        assert entries[0].payload_hash == digest(chain[2][1])
        assert entries[0].previous_payload_hash == digest(chain[1][1])
        assert entries[-1].previous_dataset_uri is None

    @pytest.mark.asyncio
    async def test_depth_limit(self) -> None:
        storage = InMemoryContentStorage()
        chain = await _build_chain(storage, 4)
        entries = await list_history(storage, chain[-1][0], 4, max_depth=2)
        assert [e.version for e in entries] == [4, 3]

    @pytest.mark.asyncio
    async def test_stops_at_unfollowable_link(self) -> None:
        storage = InMemoryContentStorage()
        token = _token(2, "ipfs://bafy-pruned", "0x00")
        result = await storage.upload_text(token)

        entries = await list_history(storage, result.uri, 2)

        assert len(entries) == 1
        assert entries[0].previous_dataset_uri == "ipfs://bafy-pruned"

    @pytest.mark.asyncio
    async def test_missing_current_version_raises(self) -> None:
        with pytest.raises(StorageRetrievalError):
            await list_history(InMemoryContentStorage(), "ipfs://bafy-gone", 1)
