"""Passport document mapping and EU 2024/1781 Annex III handling.

The passport body follows the UNTP DPP 0.6.0 vocabulary. Annex III fields are
partitioned into a public section kept in clear and a restricted section that
is sealed with the per-passport verification key.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any

from dpp_anchor.core.crypto.hashing import Granularity, untp_granularity_level
from dpp_anchor.core.encryption import DisclosureSplit, encrypt_restricted, split_disclosure
from dpp_anchor.modules.passports.schemas import (
    AnnexIIIInput,
    CreatePassportFormInput,
    PassportInput,
)
from dpp_anchor.modules.storage.base import IPFS_SCHEME

ANNEX_III_SCHEMA = "eu:regulation:2024-1781:annex-iii"
ANNEX_III_VERSION = "0.1"
ANNEX_III_REQUIRED = ["uniqueProductId", "manufacturer.operatorId"]

RESTRICTED_ANNEX_FIELDS = frozenset(
    {
        "complianceDocs",
        "userInformation",
        "otherOperators",
        "facilities",
        "importer",
        "responsibleEconomicOperator",
    }
)

_GTIN_RE = re.compile(r"^\d{8}(\d{4}|\d{5}|\d{6})?$")
_GTIN_LOOSE_RE = re.compile(r"^\d{12,14}$")
_TARIC_RE = re.compile(r"^\d{10}$")
_EORI_RE = re.compile(r"^[A-Z]{2}[A-Z0-9]{8,15}$")
_GTIN_IDENTIFIER_RE = re.compile(r"^GTIN:(\d{8,14})$", re.IGNORECASE)

GS1_GTIN_BASE = "https://id.gs1.org/01"


class PassportInputError(ValueError):
    """Form input rejected before any I/O."""


# ============================================================================
# Annex III
# ============================================================================


def _strip_ws(value: str) -> str:
    return re.sub(r"\s+", "", value)


def validate_annex_iii(annex: AnnexIIIInput | None) -> None:
    """Check identifier formats; raises :class:`PassportInputError`."""
    if annex is None:
        return
    if annex.gtin:
        digits = _strip_ws(annex.gtin)
        if not _GTIN_RE.match(digits) and not _GTIN_LOOSE_RE.match(digits):
            raise PassportInputError("Invalid GTIN format.")
    if annex.taric_code and not _TARIC_RE.match(_strip_ws(annex.taric_code)):
        raise PassportInputError("Invalid TARIC code format (expected 10 digits).")
    if annex.importer and annex.importer.eori:
        if not _EORI_RE.match(_strip_ws(annex.importer.eori)):
            raise PassportInputError("Invalid EORI format.")


def split_annex_iii(form: CreatePassportFormInput, issuer_did: str) -> DisclosureSplit:
    """Partition Annex III data into its public and restricted sections."""
    annex = form.annex_iii or AnnexIIIInput()
    manufacturer = form.manufacturer
    fields: dict[str, Any] = {
        "uniqueProductId": annex.unique_product_id or form.product_id,
        "gtin": annex.gtin,
        "taricCode": annex.taric_code,
        "manufacturer": {
            "name": manufacturer.name if manufacturer else None,
            "operatorId": manufacturer.identifier if manufacturer else None,
        },
        "issuerDid": issuer_did,
        "complianceDocs": [
            d.model_dump(by_alias=True, exclude_none=True) for d in annex.compliance_docs
        ],
        "userInformation": [
            d.model_dump(by_alias=True, exclude_none=True) for d in annex.user_information
        ],
        "otherOperators": [o.model_dump(by_alias=True) for o in annex.other_operators],
        "facilities": [f.model_dump(by_alias=True, exclude_none=True) for f in annex.facilities],
        "importer": annex.importer.model_dump(by_alias=True, exclude_none=True)
        if annex.importer
        else {},
        "responsibleEconomicOperator": annex.responsible_economic_operator.model_dump(
            by_alias=True, exclude_none=True
        )
        if annex.responsible_economic_operator
        else {},
    }
    return split_disclosure(fields, lambda name, _value: name in RESTRICTED_ANNEX_FIELDS)


def build_annex_iii_block(split: DisclosureSplit, verification_key: str) -> dict[str, Any]:
    """Annex III block embedded in the credential subject."""
    return {
        "schema": ANNEX_III_SCHEMA,
        "version": ANNEX_III_VERSION,
        "required": list(ANNEX_III_REQUIRED),
        "public": split.public,
        "restricted": {"encrypted": encrypt_restricted(split.restricted, verification_key)},
    }


# ============================================================================
# UNTP document
# ============================================================================


def product_id_fields(
    identifier: str,
    batch_number: str | None = None,
    serial_number: str | None = None,
    *,
    urn_prefix: str = "urn:dpp-anchor:product:",
) -> dict[str, Any]:
    """``id``/``registeredId`` for a product; ``GTIN:<digits>`` maps to a GS1 Digital Link."""
    trimmed = identifier.strip()
    fields: dict[str, Any] = {
        "id": f"{urn_prefix}{hashlib.sha256(trimmed.encode('utf-8')).hexdigest()}",
        "registeredId": trimmed,
    }
    match = _GTIN_IDENTIFIER_RE.match(trimmed)
    if match:
        gtin = match.group(1)
        fields["id"] = f"{GS1_GTIN_BASE}/{gtin}"
        fields["registeredId"] = gtin
        fields["idScheme"] = {
            "type": ["IdentifierScheme"],
            "id": GS1_GTIN_BASE,
            "name": "Global Trade Item Number (GTIN)",
        }
    if serial_number:
        fields["serialNumber"] = serial_number
    if batch_number:
        fields["batchNumber"] = batch_number
    return fields


def normalize_event_reference(raw: str) -> str:
    """Bare content addresses become ``ipfs://`` URIs; URLs pass through."""
    value = (raw or "").strip()
    if not value or value.startswith((IPFS_SCHEME, "http://", "https://")):
        return value
    return f"{IPFS_SCHEME}{value}"


def _drop_none(value: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in value.items() if v is not None}


def build_passport_document(data: PassportInput, granularity: Granularity) -> dict[str, Any]:
    """Map form input to a UNTP ``DigitalProductPassport`` credential subject."""
    document: dict[str, Any] = {
        "@type": "DigitalProductPassport",
        "granularityLevel": untp_granularity_level(granularity),
        "product": _drop_none(
            {
                "@type": "Product",
                **product_id_fields(data.product_id, data.batch_number, data.serial_number),
                "identifier": data.product_id,
                "name": data.product_name,
                "description": data.product_description,
                "batchNumber": data.batch_number,
                "serialNumber": data.serial_number,
            }
        ),
    }

    if data.manufacturer is not None:
        document["manufacturer"] = _drop_none(
            {
                "@type": "Organization",
                "name": data.manufacturer.name,
                "identifier": data.manufacturer.identifier,
                "country": data.manufacturer.country,
                "facility": data.manufacturer.facility,
            }
        )

    if data.materials:
        document["materialsProvenance"] = [
            _drop_none(
                {
                    "@type": "Material",
                    "name": m.name,
                    "massFraction": m.mass_fraction,
                    "countryOfOrigin": m.origin_country,
                    "hazardous": m.hazardous,
                }
            )
            for m in data.materials
        ]

    if data.compliance_claims:
        document["conformityClaim"] = [
            _drop_none(
                {
                    "@type": "Claim",
                    "identifier": c.claim_id,
                    "description": c.description,
                    "referenceStandard": c.standard_ref,
                    "referenceRegulation": c.regulation_ref,
                    "evidenceLink": c.evidence_uri,
                }
            )
            for c in data.compliance_claims
        ]

    events = [
        _drop_none(
            {
                "@type": "TraceabilityEvent",
                "eventReference": normalize_event_reference(t.event_ref),
                "actor": t.actor,
                "evidenceLink": t.evidence_uri,
            }
        )
        for t in data.traceability
    ]
    events = [e for e in events if e["eventReference"]]
    if events:
        document["traceabilityInformation"] = events

    return document
