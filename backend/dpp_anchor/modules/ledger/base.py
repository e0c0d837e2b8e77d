"""Ledger collaborator interface and anchor record types.

The ledger is authoritative for passport anchors. Callers submit intents and
read back the resulting state; nothing here mutates an anchor directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from cryptography.hazmat.primitives.asymmetric import ed25519

from dpp_anchor.core.crypto.hashing import Granularity


class PassportStatus(str, Enum):
    """On-ledger lifecycle status of a passport anchor."""

    DRAFT = "Draft"
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    REVOKED = "Revoked"
    ARCHIVED = "Archived"


class LedgerError(RuntimeError):
    """A ledger transaction was rejected or could not be submitted."""


class PassportNotFoundError(LedgerError):
    """No anchor exists for the requested token."""


@dataclass(slots=True)
class LedgerAccount:
    """Account submitting ledger transactions and signing credentials.

    ``signing_key`` is present only when the caller holds the Ed25519 key
    locally (single-phase issuance).
    """

    address: str
    public_key: bytes
    network: str = "westend-asset-hub"
    signing_key: ed25519.Ed25519PrivateKey | None = None
    did: str | None = None


@dataclass(slots=True)
class AnchorRegistration:
    dataset_uri: str
    payload_hash: str
    dataset_type: str
    granularity: Granularity
    subject_id_hash: str | None = None


@dataclass(slots=True)
class PassportAnchor:
    token_id: str
    issuer: str
    dataset_uri: str
    payload_hash: str
    dataset_type: str
    granularity: Granularity
    version: int = 1
    status: PassportStatus = PassportStatus.ACTIVE
    subject_id_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class TransactionResult:
    tx_hash: str
    block_number: int | None = None
    token_id: str | None = None
    events: list[str] = field(default_factory=list)


@runtime_checkable
class LedgerClient(Protocol):
    """Operations the passport lifecycle needs from the ledger."""

    async def register_passport(
        self, registration: AnchorRegistration, account: LedgerAccount
    ) -> TransactionResult: ...

    async def read_passport(self, token_id: str) -> PassportAnchor: ...

    async def update_dataset(
        self,
        token_id: str,
        dataset_uri: str,
        payload_hash: str,
        dataset_type: str,
        subject_id_hash: str | None,
        account: LedgerAccount,
    ) -> TransactionResult: ...

    async def revoke_passport(
        self, token_id: str, reason: str | None, account: LedgerAccount
    ) -> TransactionResult: ...

    async def wait_for_transaction(self, tx_hash: str) -> None: ...

    async def find_token_by_subject_id(self, subject_id_hash: str) -> str | None: ...
