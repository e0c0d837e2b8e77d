"""DID/identity collaborator interface for server-managed (did:web) issuers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


class IssuerStatus(str, Enum):
    """Verification state of a registered did:web issuer."""

    VERIFIED = "VERIFIED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class IdentityError(RuntimeError):
    """The identity collaborator failed or refused a request."""


@dataclass(slots=True)
class IssuerIdentity:
    did: str
    status: IssuerStatus
    name: str | None = None
    key_id: str = "key-1"
    public_key: bytes = b""
    metadata: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class IssuerIdentityProvider(Protocol):
    """Registry of issuer identities, their authorized accounts and managed keys."""

    async def get_issuer_identity(self, did: str) -> IssuerIdentity | None: ...

    async def is_account_authorized(self, did: str, account: str, network: str) -> bool: ...

    async def get_decrypted_signing_key(self, did: str) -> bytes:
        """Return the 32-byte Ed25519 seed for a server-managed identity."""
        ...
