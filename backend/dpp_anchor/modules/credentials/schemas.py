"""Pydantic schemas for DID Documents and credential verification results."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# DID Document (W3C DID Core v1.0)
# ---------------------------------------------------------------------------


class VerificationMethod(BaseModel):
    """A single verification method in a DID Document."""

    id: str
    type: str = "JsonWebKey2020"
    controller: str | None = None
    public_key_jwk: dict[str, Any] | None = Field(default=None, alias="publicKeyJwk")
    public_key_multibase: str | None = Field(default=None, alias="publicKeyMultibase")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DIDDocument(BaseModel):
    """W3C DID Document structure, as much of it as key resolution needs."""

    context: list[str] | str | None = Field(default=None, alias="@context")
    id: str
    verification_method: list[VerificationMethod] = Field(
        default_factory=list,
        alias="verificationMethod",
    )
    assertion_method: list[str | dict[str, Any]] = Field(
        default_factory=list,
        alias="assertionMethod",
    )

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class CredentialVerification(BaseModel):
    """Outcome of checking a credential envelope's signature."""

    verified: bool
    issuer: str | None = None
    issuance_date: datetime | None = Field(default=None, alias="issuanceDate")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    payload: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True)
