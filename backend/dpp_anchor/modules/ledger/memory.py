"""In-process ledger used for development and tests.

Mirrors the contract rules: only the registering account may update or
revoke, revoked anchors are frozen, granularity never changes, and issuers
are recorded as H160 accounts.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import replace
from datetime import UTC, datetime

from dpp_anchor.core.addresses import accounts_match, normalize_account
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.ledger.base import (
    AnchorRegistration,
    LedgerAccount,
    LedgerError,
    PassportAnchor,
    PassportNotFoundError,
    PassportStatus,
    TransactionResult,
)

logger = get_logger(__name__)


class InMemoryLedger:
    """Dictionary-backed ledger with sequential token ids and block numbers."""

    def __init__(self) -> None:
        self._anchors: dict[str, PassportAnchor] = {}
        self._by_subject: dict[str, str] = {}
        self._pending: set[str] = set()
        self._next_token = 1
        self._block = 0
        self._lock = asyncio.Lock()

    def _new_tx(self, *parts: str) -> TransactionResult:
        self._block += 1
        seed = "|".join((str(self._block), *parts)).encode()
        tx_hash = "0x" + hashlib.sha256(seed).hexdigest()
        self._pending.add(tx_hash)
        return TransactionResult(tx_hash=tx_hash, block_number=self._block)

    def _owned_anchor(self, token_id: str, account: LedgerAccount) -> PassportAnchor:
        anchor = self._anchors.get(token_id)
        if anchor is None:
            raise PassportNotFoundError(f"passport {token_id} not found")
        if not accounts_match(anchor.issuer, account.address):
            raise LedgerError(f"account {account.address} is not the issuer of {token_id}")
        if anchor.status is PassportStatus.REVOKED:
            raise LedgerError(f"passport {token_id} is revoked")
        return anchor

    async def register_passport(
        self, registration: AnchorRegistration, account: LedgerAccount
    ) -> TransactionResult:
        async with self._lock:
            token_id = str(self._next_token)
            self._next_token += 1
            now = datetime.now(UTC)
            self._anchors[token_id] = PassportAnchor(
                token_id=token_id,
                issuer=normalize_account(account.address),
                dataset_uri=registration.dataset_uri,
                payload_hash=registration.payload_hash,
                dataset_type=registration.dataset_type,
                granularity=registration.granularity,
                subject_id_hash=registration.subject_id_hash,
                version=1,
                status=PassportStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
            if registration.subject_id_hash:
                self._by_subject[registration.subject_id_hash] = token_id
            result = self._new_tx("register", token_id)
            result.token_id = token_id
            result.events.append("PassportRegistered")
        logger.info("ledger_passport_registered", token_id=token_id, tx_hash=result.tx_hash)
        return result

    async def read_passport(self, token_id: str) -> PassportAnchor:
        anchor = self._anchors.get(str(token_id))
        if anchor is None:
            raise PassportNotFoundError(f"passport {token_id} not found")
        return replace(anchor)

    async def update_dataset(
        self,
        token_id: str,
        dataset_uri: str,
        payload_hash: str,
        dataset_type: str,
        subject_id_hash: str | None,
        account: LedgerAccount,
    ) -> TransactionResult:
        async with self._lock:
            anchor = self._owned_anchor(token_id, account)
            if anchor.subject_id_hash and self._by_subject.get(anchor.subject_id_hash) == token_id:
                del self._by_subject[anchor.subject_id_hash]
            anchor.dataset_uri = dataset_uri
            anchor.payload_hash = payload_hash
            anchor.dataset_type = dataset_type
            anchor.subject_id_hash = subject_id_hash
            anchor.version += 1
            anchor.updated_at = datetime.now(UTC)
            if subject_id_hash:
                self._by_subject[subject_id_hash] = token_id
            result = self._new_tx("update", token_id, str(anchor.version))
            result.events.append("DatasetUpdated")
        return result

    async def revoke_passport(
        self, token_id: str, reason: str | None, account: LedgerAccount
    ) -> TransactionResult:
        async with self._lock:
            anchor = self._owned_anchor(token_id, account)
            anchor.status = PassportStatus.REVOKED
            anchor.updated_at = datetime.now(UTC)
            result = self._new_tx("revoke", token_id, reason or "")
            result.token_id = token_id
            result.events.append("PassportRevoked")
        logger.info("ledger_passport_revoked", token_id=token_id, reason=reason)
        return result

    async def wait_for_transaction(self, tx_hash: str) -> None:
        if tx_hash not in self._pending:
            raise LedgerError(f"unknown transaction {tx_hash}")
        self._pending.discard(tx_hash)

    async def find_token_by_subject_id(self, subject_id_hash: str) -> str | None:
        return self._by_subject.get(subject_id_hash)
