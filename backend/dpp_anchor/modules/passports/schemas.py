"""Pydantic schemas for passport issuance, reading and verification."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from dpp_anchor.core.crypto.hashing import Granularity
from dpp_anchor.modules.credentials.schemas import CredentialVerification
from dpp_anchor.modules.ledger.base import PassportAnchor


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Form input
# ============================================================================


class ManufacturerInput(_CamelModel):
    name: str
    identifier: str | None = None
    country: str | None = None
    facility: str | None = None


class MaterialInput(_CamelModel):
    name: str
    mass_fraction: float | None = Field(default=None, alias="massFraction", ge=0, le=1)
    origin_country: str | None = Field(default=None, alias="originCountry")
    hazardous: bool | None = None


class ComplianceClaimInput(_CamelModel):
    claim_id: str = Field(..., alias="claimId")
    description: str | None = None
    standard_ref: str | None = Field(default=None, alias="standardRef")
    regulation_ref: str | None = Field(default=None, alias="regulationRef")
    evidence_uri: str | None = Field(default=None, alias="evidenceUri")


class TraceabilityInput(_CamelModel):
    event_ref: str = Field(..., alias="eventRef")
    actor: str | None = None
    evidence_uri: str | None = Field(default=None, alias="evidenceUri")


class DocumentReference(_CamelModel):
    type: str
    url: str
    title: str | None = None
    language: str | None = None
    sha256: str | None = None


class OtherOperator(_CamelModel):
    role: str
    operator_id: str = Field(..., alias="operatorId")


class FacilityInput(_CamelModel):
    facility_id: str = Field(..., alias="facilityId")
    name: str | None = None
    country: str | None = None


class ImporterInput(_CamelModel):
    name: str | None = None
    eori: str | None = None
    contact_email: str | None = Field(default=None, alias="contactEmail")
    contact_phone: str | None = Field(default=None, alias="contactPhone")
    address_country: str | None = Field(default=None, alias="addressCountry")


class ResponsibleOperatorInput(_CamelModel):
    name: str | None = None
    operator_id: str | None = Field(default=None, alias="operatorId")
    contact_email: str | None = Field(default=None, alias="contactEmail")
    contact_phone: str | None = Field(default=None, alias="contactPhone")
    address_country: str | None = Field(default=None, alias="addressCountry")


class AnnexIIIInput(_CamelModel):
    """EU 2024/1781 Annex III fields supplied with the form."""

    unique_product_id: str | None = Field(default=None, alias="uniqueProductId")
    gtin: str | None = None
    taric_code: str | None = Field(default=None, alias="taricCode")
    compliance_docs: list[DocumentReference] = Field(default_factory=list, alias="complianceDocs")
    user_information: list[DocumentReference] = Field(
        default_factory=list, alias="userInformation"
    )
    other_operators: list[OtherOperator] = Field(default_factory=list, alias="otherOperators")
    facilities: list[FacilityInput] = Field(default_factory=list)
    importer: ImporterInput | None = None
    responsible_economic_operator: ResponsibleOperatorInput | None = Field(
        default=None, alias="responsibleEconomicOperator"
    )


class PassportInput(_CamelModel):
    """Product data for a new passport."""

    product_id: str = Field(..., alias="productId", min_length=1)
    product_name: str = Field(..., alias="productName", min_length=1)
    product_description: str | None = Field(default=None, alias="productDescription")
    granularity: Granularity | None = None
    batch_number: str | None = Field(default=None, alias="batchNumber")
    serial_number: str | None = Field(default=None, alias="serialNumber")
    manufacturer: ManufacturerInput | None = None
    materials: list[MaterialInput] = Field(default_factory=list)
    compliance_claims: list[ComplianceClaimInput] = Field(
        default_factory=list, alias="complianceClaims"
    )
    traceability: list[TraceabilityInput] = Field(default_factory=list)


class CreatePassportFormInput(PassportInput):
    """First step of two-phase issuance: form data plus the submitting wallet."""

    annex_iii: AnnexIIIInput | None = Field(default=None, alias="annexIII")
    issuer_address: str = Field(..., alias="issuerAddress", min_length=1)
    issuer_public_key: str = Field(default="", alias="issuerPublicKey")
    network: str | None = None
    issuer_did: str | None = Field(default=None, alias="issuerDid")
    use_did_web: bool = Field(default=False, alias="useDidWeb")


class FinalizeCreatePassportInput(_CamelModel):
    prepared_id: str = Field(..., alias="preparedId", min_length=1)
    signed_vc_jwt: str = Field(default="", alias="signedVcJwt")
    issuer_address: str = Field(..., alias="issuerAddress")
    issuer_public_key: str = Field(default="", alias="issuerPublicKey")


# ============================================================================
# Prepared session
# ============================================================================


DisclosureMode = Literal["did_web", "did_key"]


class PreparedSession(_CamelModel):
    """Correlation record kept between prepare and finalize."""

    session_id: str = Field(..., alias="sessionId")
    form_input: CreatePassportFormInput = Field(..., alias="formInput")
    document: dict[str, Any]
    signing_payload: dict[str, Any] = Field(..., alias="signingPayload")
    issuer_did: str = Field(..., alias="issuerDid")
    disclosure_mode: DisclosureMode = Field(..., alias="disclosureMode")
    granularity: Granularity
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ============================================================================
# Results
# ============================================================================


class ChainPreview(_CamelModel):
    granularity: Granularity
    dataset_type: str = Field(..., alias="datasetType")
    subject_id_hash: str | None = Field(default=None, alias="subjectIdHash")


class UntpPreview(_CamelModel):
    product_id: str = Field(..., alias="productId")
    product_name: str = Field(..., alias="productName")
    granularity_level: str = Field(..., alias="granularityLevel")


class VerificationLink(_CamelModel):
    key: str
    link_template: str = Field(..., alias="linkTemplate")


class PreparedPassport(_CamelModel):
    prepared_id: str = Field(..., alias="preparedId")
    signing_input: str = Field(..., alias="signingInput")
    header: dict[str, str]
    payload: dict[str, Any]
    chain_preview: ChainPreview = Field(..., alias="chainPreview")
    untp_preview: UntpPreview = Field(..., alias="untpPreview")
    verification: VerificationLink | None = None


class RegistrationData(_CamelModel):
    """Ledger registration parameters handed back for client-side submission."""

    dataset_uri: str = Field(..., alias="datasetUri")
    payload_hash: str = Field(..., alias="payloadHash")
    dataset_type: str = Field(..., alias="datasetType")
    granularity: Granularity
    subject_id_hash: str | None = Field(default=None, alias="subjectIdHash")
    cid: str
    issuer_did_web_status: str | None = Field(default=None, alias="issuerDidWebStatus")


class FinalizeResult(_CamelModel):
    success: bool
    error: str | None = None
    registration_data: RegistrationData | None = Field(default=None, alias="registrationData")


class CreatePassportResult(_CamelModel):
    token_id: str = Field(..., alias="tokenId")
    cid: str
    vc_jwt: str = Field(..., alias="vcJwt")
    tx_hash: str = Field(..., alias="txHash")
    block_number: int | None = Field(default=None, alias="blockNumber")
    granularity: Granularity
    subject_id_hash: str | None = Field(default=None, alias="subjectIdHash")


class UpdatePassportResult(_CamelModel):
    token_id: str = Field(..., alias="tokenId")
    cid: str
    vc_jwt: str = Field(..., alias="vcJwt")
    tx_hash: str = Field(..., alias="txHash")
    version: int


class PassportRecord(_CamelModel):
    """A passport version as read back from ledger and storage."""

    token_id: str = Field(..., alias="tokenId")
    version: int
    dataset_uri: str = Field(..., alias="datasetUri")
    anchor: PassportAnchor
    vc_jwt: str = Field(..., alias="vcJwt")
    document: dict[str, Any]


class AnnexIIIExport(_CamelModel):
    public: dict[str, Any] | None = None
    restricted_decrypted: dict[str, Any] | None = Field(
        default=None, alias="restrictedDecrypted"
    )


class PassportExport(_CamelModel):
    anchor: PassportAnchor
    jwt: str
    header: dict[str, Any]
    payload: dict[str, Any]
    vc: dict[str, Any]
    annex_iii: AnnexIIIExport | None = Field(default=None, alias="annexIII")


class SchemaValidationDetails(_CamelModel):
    schema_url: str | None = Field(default=None, alias="schemaUrl")
    schema_type: str | None = Field(default=None, alias="schemaType")
    schema_sha256: str | None = Field(default=None, alias="schemaSha256")
    valid: bool = False
    errors: list[str] = Field(default_factory=list)
    error: str | None = None


class VerificationReport(_CamelModel):
    """Every sub-check is reported even when the overall verdict is false."""

    valid: bool
    reason: str | None = None
    vc_verification: CredentialVerification | None = Field(
        default=None, alias="vcVerification"
    )
    hash_matches: bool | None = Field(default=None, alias="hashMatches")
    issuer_matches: bool | None = Field(default=None, alias="issuerMatches")
    schema_valid: bool = Field(default=False, alias="schemaValid")
    schema_validation: SchemaValidationDetails | None = Field(
        default=None, alias="schemaValidation"
    )
    anchor: PassportAnchor | None = None
    vc_jwt: str | None = Field(default=None, alias="vcJwt")
    document: dict[str, Any] | None = None
