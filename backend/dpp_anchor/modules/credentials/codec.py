"""Passport credential envelope: compact JWS (``header.payload.signature``) encoding.

The payload carries ``iss``, ``sub``, ``nbf``, ``jti`` and a ``vc`` claim with the
passport document. Decoding never checks the signature, so it also accepts
the unsigned two-segment form handed to wallets during two-phase issuance.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import jwt
from cryptography.hazmat.primitives.asymmetric import ed25519

from dpp_anchor.core.crypto.encoding import b64url_decode, b64url_encode
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.credentials.schemas import CredentialVerification

logger = get_logger(__name__)

CREDENTIAL_MEDIA_TYPE = "application/vc+jwt"
SIGNING_ALGORITHM = "EdDSA"
DEFAULT_HEADER: dict[str, str] = {"alg": SIGNING_ALGORITHM, "typ": "JWT"}


class CredentialFormatError(ValueError):
    """Raised when a string is not a (possibly unsigned) compact JWS."""


class PublicKeyResolver(Protocol):
    """DID collaborator surface needed for signature checks."""

    async def resolve_public_key(
        self, did: str, key_id: str | None = None
    ) -> ed25519.Ed25519PublicKey: ...


@dataclass(slots=True)
class DecodedCredential:
    """Parsed envelope segments. ``signature`` is empty for unsigned input."""

    header: dict[str, Any]
    payload: dict[str, Any]
    signature: bytes
    signing_input: str

    @property
    def vc(self) -> dict[str, Any]:
        vc = self.payload.get("vc")
        return vc if isinstance(vc, dict) else {}

    @property
    def credential_subject(self) -> dict[str, Any]:
        subject = self.vc.get("credentialSubject") or self.payload.get("credentialSubject")
        return subject if isinstance(subject, dict) else {}

    @property
    def credential_id(self) -> str | None:
        value = self.payload.get("jti") or self.vc.get("id")
        return str(value) if value else None

    @property
    def issuer(self) -> str | None:
        if self.payload.get("iss"):
            return str(self.payload["iss"])
        issuer = self.vc.get("issuer")
        if isinstance(issuer, dict):
            return issuer.get("id")
        return issuer if isinstance(issuer, str) else None


# ======================================================================
# Encoding
# ======================================================================


def _encode_segment(value: dict[str, Any]) -> str:
    return b64url_encode(json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode())


def build_signing_input(payload: dict[str, Any], header: dict[str, Any] | None = None) -> str:
    """``base64url(header) + "." + base64url(payload)``: the bytes a signer must sign."""
    return f"{_encode_segment(header or DEFAULT_HEADER)}.{_encode_segment(payload)}"


def assemble_credential(signing_input: str, signature: bytes) -> str:
    """Attach a detached signature to a signing input."""
    if signing_input.count(".") != 1:
        raise CredentialFormatError("signing input must have exactly two segments")
    return f"{signing_input}.{b64url_encode(signature)}"


def sign_credential(
    payload: dict[str, Any],
    private_key: ed25519.Ed25519PrivateKey,
    header: dict[str, Any] | None = None,
) -> str:
    """Issue a compact JWS over ``payload`` with an Ed25519 key.

    Parameters
    ----------
    payload:
        JWT claims (``iss``, ``sub``, ``nbf``, ``jti``, ``vc``).
    private_key:
        Issuer signing key. Only Ed25519 (``EdDSA``) is supported.
    header:
        Optional header override; defaults to ``{"alg": "EdDSA", "typ": "JWT"}``.

    Returns
    -------
    str
        The three-segment credential string.
    """
    signing_input = build_signing_input(payload, header)
    signature = private_key.sign(signing_input.encode("ascii"))
    return assemble_credential(signing_input, signature)


def decode_credential(token: str) -> DecodedCredential:
    """Parse a two- or three-segment envelope without verifying anything."""
    if not isinstance(token, str):
        raise CredentialFormatError("credential must be a string")
    parts = token.strip().split(".")
    if len(parts) not in (2, 3):
        raise CredentialFormatError(f"expected 2 or 3 segments, got {len(parts)}")

    try:
        header = json.loads(b64url_decode(parts[0]))
        payload = json.loads(b64url_decode(parts[1]))
        signature = b64url_decode(parts[2]) if len(parts) == 3 and parts[2] else b""
    except (ValueError, UnicodeDecodeError) as exc:
        raise CredentialFormatError(f"malformed credential segment: {exc}") from exc

    if not isinstance(header, dict) or not isinstance(payload, dict):
        raise CredentialFormatError("credential header and payload must be JSON objects")
    return DecodedCredential(
        header=header,
        payload=payload,
        signature=signature,
        signing_input=f"{parts[0]}.{parts[1]}",
    )


# ======================================================================
# Verification
# ======================================================================


def _issuance_date(decoded: DecodedCredential) -> datetime | None:
    for raw in (decoded.vc.get("issuanceDate"), decoded.vc.get("validFrom")):
        if isinstance(raw, str) and raw:
            try:
                return datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                continue
    nbf = decoded.payload.get("nbf")
    if isinstance(nbf, int | float):
        return datetime.fromtimestamp(nbf, tz=UTC)
    return None


class CredentialVerifier:
    """Check credential signatures against keys published by the issuer's DID.

    Signature problems are reported in the result. Errors raised by the DID
    collaborator itself (:class:`DidResolutionError`) propagate.
    """

    def __init__(self, resolver: PublicKeyResolver, *, leeway_seconds: int = 60) -> None:
        self._resolver = resolver
        self._leeway = leeway_seconds

    async def verify(self, token: str) -> CredentialVerification:
        try:
            decoded = decode_credential(token)
        except CredentialFormatError as exc:
            return CredentialVerification(verified=False, errors=[str(exc)])

        issuer = decoded.issuer
        errors: list[str] = []
        warnings: list[str] = []

        if decoded.header.get("alg") != SIGNING_ALGORITHM:
            errors.append(f"Unsupported signature algorithm: {decoded.header.get('alg')}")
        if not decoded.signature:
            errors.append("Credential is not signed")
        if not issuer:
            errors.append("Credential has no issuer")
        if not decoded.vc:
            warnings.append("Credential payload has no 'vc' claim")
        if errors:
            return CredentialVerification(
                verified=False,
                issuer=issuer,
                errors=errors,
                warnings=warnings,
                payload=decoded.payload,
            )

        assert issuer is not None
        public_key = await self._resolver.resolve_public_key(issuer, decoded.header.get("kid"))

        try:
            jwt.decode(
                token.strip(),
                public_key,
                algorithms=[SIGNING_ALGORITHM],
                leeway=self._leeway,
                options={"verify_exp": False, "verify_aud": False},
            )
        except jwt.InvalidSignatureError:
            errors.append("Invalid signature")
        except jwt.InvalidTokenError as e:
            errors.append(f"Invalid credential: {e}")

        if errors:
            logger.info("credential_verification_failed", issuer=issuer, errors=errors)

        return CredentialVerification(
            verified=not errors,
            issuer=issuer,
            issuance_date=_issuance_date(decoded),
            errors=errors,
            warnings=warnings,
            payload=decoded.payload,
        )
