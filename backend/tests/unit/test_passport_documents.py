"""Tests for passport document mapping and Annex III handling."""

from __future__ import annotations

import hashlib

import pytest

from dpp_anchor.core.crypto.hashing import Granularity
from dpp_anchor.core.encryption import decrypt_restricted, generate_verification_key
from dpp_anchor.modules.passports.documents import (
    ANNEX_III_SCHEMA,
    PassportInputError,
    build_annex_iii_block,
    build_passport_document,
    normalize_event_reference,
    product_id_fields,
    split_annex_iii,
    validate_annex_iii,
)
from dpp_anchor.modules.passports.schemas import (
    AnnexIIIInput,
    CreatePassportFormInput,
    PassportInput,
)


def _form(**annex: object) -> CreatePassportFormInput:
    return CreatePassportFormInput.model_validate(
        {
            "productId": "PROD-001",
            "productName": "Widget",
            "issuerAddress": "0x" + "ab" * 20,
            "manufacturer": {"name": "Acme", "identifier": "ACME-001"},
            "annexIII": annex,
        }
    )


class TestAnnexValidation:
    @pytest.mark.parametrize("gtin", ["09520123456788", "12345678", "0952 0123 4567 88"])
    def test_accepts_gtin(self, gtin: str) -> None:
        validate_annex_iii(AnnexIIIInput(gtin=gtin))

    @pytest.mark.parametrize(
        ("annex", "message"),
        [
            ({"gtin": "12AB"}, "GTIN"),
            ({"taricCode": "12345"}, "TARIC"),
            ({"importer": {"eori": "de123"}}, "EORI"),
        ],
    )
    def test_rejects_bad_identifiers(self, annex: dict[str, object], message: str) -> None:
        with pytest.raises(PassportInputError, match=message):
            validate_annex_iii(AnnexIIIInput.model_validate(annex))

    def test_missing_annex_is_fine(self) -> None:
        validate_annex_iii(None)


class TestAnnexSplit:
    def test_restricted_fields_are_sealed(self) -> None:
        form = _form(
            gtin="09520123456788",
            importer={"name": "Importer GmbH", "eori": "DE123456789012"},
            facilities=[{"facilityId": "F-1"}],
        )
        split = split_annex_iii(form, "did:web:acme.example")

        assert split.public["uniqueProductId"] == "PROD-001"
        assert split.public["manufacturer"] == {"name": "Acme", "operatorId": "ACME-001"}
        assert split.public["issuerDid"] == "did:web:acme.example"
        assert "importer" not in split.public
        assert split.restricted["importer"]["eori"] == "DE123456789012"

        key = generate_verification_key()
        block = build_annex_iii_block(split, key)
        assert block["schema"] == ANNEX_III_SCHEMA
        assert decrypt_restricted(block["restricted"]["encrypted"], key) == split.restricted


class TestProductIdFields:
    def test_gtin_maps_to_digital_link(self) -> None:
        fields = product_id_fields("GTIN:09520123456788")
        assert fields["id"] == "https://id.gs1.org/01/09520123456788"
        assert fields["registeredId"] == "09520123456788"
        assert fields["idScheme"]["name"] == "Global Trade Item Number (GTIN)"

    def test_other_identifiers_are_hashed(self) -> None:
        fields = product_id_fields(" SKU-9 ", serial_number="SN-1")
        assert fields["id"] == "urn:dpp-anchor:product:" + hashlib.sha256(b"SKU-9").hexdigest()
        assert fields["registeredId"] == "SKU-9"
        assert fields["serialNumber"] == "SN-1"
        assert "idScheme" not in fields


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("bafybeigdyrzt", "ipfs://bafybeigdyrzt"),
        ("ipfs://bafy", "ipfs://bafy"),
        ("https://events.example/1", "https://events.example/1"),
        ("  ", ""),
    ],
)
def test_normalize_event_reference(raw: str, expected: str) -> None:
    assert normalize_event_reference(raw) == expected


def test_build_passport_document() -> None:
    data = PassportInput.model_validate(
        {
            "productId": "GTIN:09520123456788",
            "productName": "Cordless Drill",
            "batchNumber": "LOT-42",
            "manufacturer": {"name": "Acme Tools"},
            "materials": [{"name": "Steel", "massFraction": 0.6}],
            "complianceClaims": [{"claimId": "CE", "regulationRef": "2006/42/EC"}],
            "traceability": [{"eventRef": "bafyevent"}, {"eventRef": " "}],
        }
    )
    document = build_passport_document(data, Granularity.BATCH)

    assert document["@type"] == "DigitalProductPassport"
    assert document["granularityLevel"] == "batch"
    assert document["product"]["identifier"] == "GTIN:09520123456788"
    assert document["product"]["batchNumber"] == "LOT-42"
    assert "description" not in document["product"]
    assert document["manufacturer"] == {"@type": "Organization", "name": "Acme Tools"}
    assert document["materialsProvenance"][0]["massFraction"] == 0.6
    assert document["conformityClaim"][0]["referenceRegulation"] == "2006/42/EC"
    assert document["traceabilityInformation"] == [
        {"@type": "TraceabilityEvent", "eventReference": "ipfs://bafyevent"}
    ]


def test_minimal_document_has_no_optional_sections() -> None:
    data = PassportInput.model_validate({"productId": "P-1", "productName": "Thing"})
    document = build_passport_document(data, Granularity.PRODUCT_CLASS)
    assert set(document) == {"@type", "granularityLevel", "product"}
