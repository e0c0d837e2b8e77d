"""Issuer-scoped revocation lists (W3C Status List 2021).

Each issuer owns one fixed-size bitstring. The first index assignment
publishes an all-zero list; every revocation republishes the list under a
new content address and moves the issuer's "current" pointer forward.
Published lists are unsigned documents that verifiers fetch directly.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.status_list.bitstring import StatusBitstring
from dpp_anchor.modules.status_list.storage import StatusListStorage
from dpp_anchor.modules.storage.base import ContentStorage, StorageError

logger = get_logger(__name__)

DEFAULT_STATUS_LIST_SIZE = 131072
STATUS_LIST_CONTEXT = "https://w3id.org/vc/status-list/2021/v1"
STATUS_PURPOSE = "revocation"


class StatusListError(RuntimeError):
    """Status list bookkeeping failed."""


class StatusListExhaustedError(StatusListError):
    """Every index of the issuer's list is already assigned."""


class StatusListMappingError(StatusListError):
    """The credential has no mapping, or the mapping belongs to another issuer."""


class StatusListManager:
    """Assign, revoke and check status list indices.

    Revocation is a load-modify-publish cycle on the issuer's bitstring and
    runs under a per-issuer lock, as does index assignment.
    """

    def __init__(
        self,
        storage: StatusListStorage,
        content_storage: ContentStorage,
        *,
        base_url: str,
        size: int = DEFAULT_STATUS_LIST_SIZE,
        timeout: float = 10.0,
    ) -> None:
        self._storage = storage
        self._content = content_storage
        self._base_url = base_url.rstrip("/")
        self._size = size
        self._timeout = timeout
        self._lists: dict[str, StatusBitstring] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def size(self) -> int:
        return self._size

    def status_list_url(self, issuer: str) -> str:
        return f"{self._base_url}/api/status-list?issuer={quote(issuer, safe='')}"

    def _entry(self, issuer: str, index: int) -> dict[str, str]:
        url = self.status_list_url(issuer)
        return {
            "id": f"{url}#{index}",
            "type": "StatusList2021Entry",
            "statusPurpose": STATUS_PURPOSE,
            "statusListIndex": str(index),
            "statusListCredential": url,
        }

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _build_list_credential(self, issuer: str, bits: StatusBitstring) -> dict[str, Any]:
        list_id = f"urn:uuid:{uuid.uuid4()}"
        return {
            "@context": [
                "https://www.w3.org/ns/credentials/v2",
                "https://www.w3.org/2018/credentials/v1",
                STATUS_LIST_CONTEXT,
            ],
            "type": ["VerifiableCredential", "StatusList2021Credential"],
            "id": list_id,
            "issuer": issuer,
            "issuanceDate": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "credentialSubject": {
                "id": f"{list_id}#list",
                "type": "StatusList2021",
                "statusPurpose": STATUS_PURPOSE,
                "encodedList": bits.encode(),
            },
        }

    async def _publish(self, issuer: str, bits: StatusBitstring, suffix: str) -> str:
        credential = self._build_list_credential(issuer, bits)
        name = f"status-list-{issuer.replace(':', '-')}-{suffix}.json"
        async with asyncio.timeout(self._timeout):
            result = await self._content.upload_text(
                json.dumps(credential, separators=(",", ":")), {"name": name}
            )
        return result.content_address

    async def _fetch_list_credential(self, list_address: str) -> dict[str, Any]:
        async with asyncio.timeout(self._timeout):
            retrieved = await self._content.retrieve_text(list_address)
        try:
            credential = json.loads(retrieved.data)
        except json.JSONDecodeError as exc:
            raise StatusListError(f"status list {list_address} is not valid JSON") from exc
        if not isinstance(credential, dict):
            raise StatusListError(f"status list {list_address} is not a JSON object")
        return credential

    async def _load_bitstring(self, issuer: str) -> StatusBitstring:
        cached = self._lists.get(issuer)
        if cached is not None:
            return cached

        address = await self._storage.get_current_list_address(issuer)
        if not address:
            raise StatusListError(f"No status list found for issuer: {issuer}")
        credential = await self._fetch_list_credential(address)
        encoded = (credential.get("credentialSubject") or {}).get("encodedList")
        if not isinstance(encoded, str):
            raise StatusListError(f"status list {address} has no encodedList")
        try:
            bits = StatusBitstring.decode(encoded)
        except ValueError as exc:
            raise StatusListError(f"status list {address} cannot be decoded") from exc
        self._lists[issuer] = bits
        return bits

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def assign_index(self, issuer: str, credential_id: str) -> dict[str, str]:
        """Allocate the lowest unused index for ``credential_id``.

        Assigning twice for the same credential returns the existing entry.

        Raises
        ------
        StatusListExhaustedError
            When all ``size`` indices of the issuer's list are taken.
        StatusListMappingError
            When the credential is already mapped under another issuer.
        """
        async with self._locks[issuer]:
            existing = await self._storage.get_mapping(credential_id)
            if existing is not None:
                if existing.issuer != issuer:
                    raise StatusListMappingError(
                        f"Credential {credential_id} is already mapped to another issuer"
                    )
                return self._entry(issuer, existing.index)

            used = {m.index for m in await self._storage.get_mappings_for_issuer(issuer)}
            index = next((i for i in range(self._size) if i not in used), None)
            if index is None:
                raise StatusListExhaustedError(
                    f"Status List full for issuer {issuer}: "
                    f"maximum {self._size} credentials per list"
                )

            address = await self._storage.get_current_list_address(issuer)
            if not address:
                bits = StatusBitstring(self._size)
                address = await self._publish(issuer, bits, "v1")
                await self._storage.update_current_list_address(issuer, address)
                self._lists[issuer] = bits
                logger.info("status_list_created", issuer=issuer, list_address=address)

            await self._storage.save_mapping(issuer, credential_id, index, address)

        logger.info("status_list_index_assigned", issuer=issuer, index=index)
        return self._entry(issuer, index)

    async def revoke_index(self, issuer: str, credential_id: str) -> str:
        """Set the credential's bit, republish, and return the new list address.

        Revoking an already revoked credential is a no-op returning the
        current address.
        """
        async with self._locks[issuer]:
            mapping = await self._storage.get_mapping(credential_id)
            if mapping is None:
                raise StatusListMappingError(
                    f"No status list mapping found for credentialId: {credential_id}"
                )
            if mapping.issuer != issuer:
                raise StatusListMappingError(
                    f"Issuer mismatch: credentialId {credential_id} belongs to "
                    f"{mapping.issuer}, not {issuer}"
                )

            current = await self._load_bitstring(issuer)
            if current.get(mapping.index) == 1:
                address = await self._storage.get_current_list_address(issuer)
                return address or mapping.list_address

            updated = current.copy()
            updated.set(mapping.index, 1)
            try:
                address = await self._publish(issuer, updated, "updated")
            except (StorageError, TimeoutError) as exc:
                raise StatusListError(f"Failed to publish status list for {issuer}") from exc

            await self._storage.update_current_list_address(issuer, address)
            await self._storage.save_mapping(issuer, credential_id, mapping.index, address)
            self._lists[issuer] = updated

        logger.info(
            "status_list_index_revoked",
            issuer=issuer,
            index=mapping.index,
            list_address=address,
        )
        return address

    async def check_status(self, credential_id: str) -> bool:
        """True when the credential is revoked; unmapped credentials are valid."""
        mapping = await self._storage.get_mapping(credential_id)
        if mapping is None:
            return False

        address = await self._storage.get_current_list_address(mapping.issuer)
        credential = await self._fetch_list_credential(address or mapping.list_address)
        encoded = (credential.get("credentialSubject") or {}).get("encodedList")
        if not isinstance(encoded, str):
            raise StatusListError("status list has no encodedList")
        try:
            bits = StatusBitstring.decode(encoded)
        except ValueError as exc:
            raise StatusListError("status list cannot be decoded") from exc
        return bits.get(mapping.index) == 1

    async def get_status_list_credential(self, issuer: str) -> dict[str, Any] | None:
        """The issuer's currently published list, or ``None`` before first allocation."""
        address = await self._storage.get_current_list_address(issuer)
        if not address:
            return None
        return await self._fetch_list_credential(address)
