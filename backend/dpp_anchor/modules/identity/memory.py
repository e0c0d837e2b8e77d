"""Process-local issuer directory.

Signing seeds are held sealed with the same AES-256-GCM envelope used for
restricted passport sections and opened only on request.
"""

from __future__ import annotations

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from dpp_anchor.core.addresses import normalize_account
from dpp_anchor.core.crypto.encoding import b64url_decode, b64url_encode
from dpp_anchor.core.encryption import (
    DisclosureError,
    decrypt_restricted,
    encrypt_restricted,
    generate_verification_key,
)
from dpp_anchor.modules.identity.base import IdentityError, IssuerIdentity, IssuerStatus


def _normalize_network(network: str) -> str:
    return (network or "").strip().removeprefix("polkadot:")


class InMemoryIssuerDirectory:
    """Dictionary-backed :class:`IssuerIdentityProvider`."""

    def __init__(self, master_key: str | None = None) -> None:
        self._master_key = master_key or generate_verification_key()
        self._identities: dict[str, IssuerIdentity] = {}
        self._sealed_keys: dict[str, dict[str, str]] = {}
        self._authorized: dict[str, set[tuple[str, str]]] = {}

    def register_issuer(
        self,
        did: str,
        signing_key: ed25519.Ed25519PrivateKey,
        *,
        name: str | None = None,
        status: IssuerStatus = IssuerStatus.PENDING,
        key_id: str = "key-1",
    ) -> IssuerIdentity:
        seed = signing_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        public_key = signing_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        identity = IssuerIdentity(
            did=did, status=status, name=name, key_id=key_id, public_key=public_key
        )
        self._identities[did] = identity
        self._sealed_keys[did] = encrypt_restricted(
            b64url_encode(seed), self._master_key, aad=did.encode()
        )
        return identity

    def set_status(self, did: str, status: IssuerStatus) -> None:
        self._identities[did].status = status

    def authorize_account(self, did: str, account: str, network: str) -> None:
        self._authorized.setdefault(did, set()).add(
            (_normalize_network(network), normalize_account(account))
        )

    async def get_issuer_identity(self, did: str) -> IssuerIdentity | None:
        return self._identities.get(did)

    async def is_account_authorized(self, did: str, account: str, network: str) -> bool:
        entries = self._authorized.get(did, set())
        return (_normalize_network(network), normalize_account(account)) in entries

    async def get_decrypted_signing_key(self, did: str) -> bytes:
        sealed = self._sealed_keys.get(did)
        if sealed is None:
            raise IdentityError(f"No managed signing key for {did}")
        try:
            return b64url_decode(decrypt_restricted(sealed, self._master_key, aad=did.encode()))
        except (DisclosureError, ValueError) as exc:
            raise IdentityError(f"Failed to decrypt signing key for {did}") from exc
