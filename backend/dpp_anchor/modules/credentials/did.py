"""Issuer DID helpers: did:key derivation and did:web / did:key key resolution."""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import unquote

import base58
import httpx
from cryptography.hazmat.primitives.asymmetric import ed25519
from pydantic import ValidationError

from dpp_anchor.core.crypto.encoding import b64url_decode
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.credentials.schemas import DIDDocument, VerificationMethod

logger = get_logger(__name__)

ED25519_MULTICODEC = b"\xed\x01"
ED25519_PUBLIC_KEY_BYTES = 32


class DidResolutionError(RuntimeError):
    """Raised when the DID collaborator cannot produce a verification key."""

    def __init__(self, message: str, *, did: str | None = None) -> None:
        super().__init__(message)
        self.did = did


class DidNotPublishedError(DidResolutionError):
    """The did:web document is not (yet) reachable at its well-known URL."""

    def __init__(self, did: str, document_url: str | None) -> None:
        super().__init__(f"DID document not found: {did}", did=did)
        self.document_url = document_url


class InvalidDidError(DidResolutionError):
    """The identifier is not a DID this resolver understands."""


# ------------------------------------------------------------------
# did:key
# ------------------------------------------------------------------


def public_key_from_hex(public_key_hex: str) -> bytes:
    """Parse a 32-byte Ed25519 public key given as 64 hex characters (``0x`` optional)."""
    value = (public_key_hex or "").strip()
    if value.startswith(("0x", "0X")):
        value = value[2:]
    if len(value) != ED25519_PUBLIC_KEY_BYTES * 2:
        raise ValueError(
            "Invalid public key length for ed25519: expected 64 hex characters "
            f"(32 bytes), got {len(value)}"
        )
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError("Invalid public key: not hexadecimal") from exc


def did_key_from_public_key(public_key: bytes) -> str:
    """did:key for an Ed25519 key: ``z`` + base58btc(multicodec 0xed01 + key)."""
    if len(public_key) != ED25519_PUBLIC_KEY_BYTES:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(public_key)}")
    encoded = base58.b58encode(ED25519_MULTICODEC + public_key).decode("ascii")
    return f"did:key:z{encoded}"


def _decode_multibase_ed25519(value: str) -> bytes:
    if not value.startswith("z"):
        raise ValueError("only base58btc multibase ('z') is supported")
    raw = base58.b58decode(value[1:])
    if not raw.startswith(ED25519_MULTICODEC):
        raise ValueError("multibase key is not an Ed25519 public key")
    key = raw[len(ED25519_MULTICODEC) :]
    if len(key) != ED25519_PUBLIC_KEY_BYTES:
        raise ValueError("multibase Ed25519 key has the wrong length")
    return key


def public_key_from_did_key(did: str) -> bytes:
    """Inverse of :func:`did_key_from_public_key`."""
    if not did.startswith("did:key:"):
        raise InvalidDidError(f"Invalid did:key format: {did}", did=did)
    try:
        return _decode_multibase_ed25519(did[len("did:key:") :].split("#", 1)[0])
    except ValueError as exc:
        raise InvalidDidError(f"Invalid did:key format: {exc}", did=did) from exc


# ------------------------------------------------------------------
# did:web
# ------------------------------------------------------------------


def did_to_url(did: str) -> str | None:
    """Convert a did:web identifier to its HTTPS document URL."""
    if not did.startswith("did:web:"):
        return None
    # did:web:example.com%3A8443:path:to -> https://example.com:8443/path/to
    parts = did[8:].split("#", 1)[0].split(":")
    domain = unquote(parts[0])
    path = "/".join(unquote(p) for p in parts[1:])
    if path:
        return f"https://{domain}/{path}/did.json"
    return f"https://{domain}/.well-known/did.json"


def _key_from_method(method: VerificationMethod) -> bytes | None:
    jwk = method.public_key_jwk
    if jwk and jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519" and jwk.get("x"):
        return b64url_decode(str(jwk["x"]))
    if method.public_key_multibase:
        return _decode_multibase_ed25519(method.public_key_multibase)
    return None


def select_ed25519_key(document: DIDDocument, key_id: str | None = None) -> bytes:
    """Pick the Ed25519 assertion key from a DID document.

    A ``key_id`` fragment (``#key-1``) narrows the search to that method.
    """
    candidates = document.verification_method
    if key_id:
        fragment = key_id.split("#", 1)[-1]
        candidates = [m for m in candidates if m.id.split("#", 1)[-1] == fragment]

    for method in candidates:
        try:
            key = _key_from_method(method)
        except ValueError:
            logger.debug("did_verification_method_unusable", method_id=method.id)
            continue
        if key is not None and len(key) == ED25519_PUBLIC_KEY_BYTES:
            return key
    raise InvalidDidError(f"No Ed25519 verification method in {document.id}", did=document.id)


class DidResolver:
    """Resolve issuer DIDs to Ed25519 public keys.

    ``did:key`` resolves locally; ``did:web`` documents are fetched over HTTPS.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def resolve_document(self, did: str) -> DIDDocument:
        """Fetch and parse a did:web document."""
        url = did_to_url(did)
        if url is None:
            raise InvalidDidError(f"Unable to resolve DID: unsupported method in {did}", did=did)

        client = await self._get_client()
        try:
            async with asyncio.timeout(self._timeout):
                response = await client.get(url, headers={"Accept": "application/did+json"})
        except (httpx.ConnectError, TimeoutError) as exc:
            logger.warning("did_web_unreachable", did=did, url=url, error=str(exc))
            raise DidNotPublishedError(did, url) from exc
        except httpx.HTTPError as exc:
            raise DidResolutionError(f"DID resolution failed for {did}: {exc}", did=did) from exc

        if response.status_code in (404, 410):
            raise DidNotPublishedError(did, url)
        if response.status_code >= 400:
            raise DidResolutionError(
                f"DID resolution failed for {did}: HTTP {response.status_code}", did=did
            )

        try:
            payload: Any = response.json()
            document = DIDDocument.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise InvalidDidError(f"DID document for {did} is malformed", did=did) from exc
        if document.id != did.split("#", 1)[0]:
            raise InvalidDidError(
                f"DID document id {document.id} does not match {did}", did=did
            )
        return document

    async def resolve_public_key(
        self, did: str, key_id: str | None = None
    ) -> ed25519.Ed25519PublicKey:
        """Return the issuer's Ed25519 verification key."""
        if did.startswith("did:key:"):
            raw = public_key_from_did_key(did)
        elif did.startswith("did:web:"):
            document = await self.resolve_document(did)
            raw = select_ed25519_key(document, key_id)
        else:
            raise InvalidDidError(f"Unable to resolve DID: unsupported method in {did}", did=did)
        return ed25519.Ed25519PublicKey.from_public_bytes(raw)
