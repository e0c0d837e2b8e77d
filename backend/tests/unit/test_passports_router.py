"""Tests for the passport HTTP endpoints."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dpp_anchor.dependencies import get_passport_service
from dpp_anchor.main import create_application
from dpp_anchor.modules.credentials.codec import assemble_credential
from dpp_anchor.modules.ledger.base import LedgerAccount
from dpp_anchor.modules.passports.router import router as passports_router
from dpp_anchor.modules.passports.schemas import PassportInput
from dpp_anchor.modules.passports.service import SESSION_EXPIRED_ERROR, PassportService
from dpp_anchor.modules.storage.memory import InMemoryContentStorage


@pytest.fixture()
def client(service: PassportService) -> TestClient:
    app = FastAPI()
    app.include_router(passports_router, prefix="/api")
    app.dependency_overrides[get_passport_service] = lambda: service
    return TestClient(app)


def _prepare_body(signing_key: ed25519.Ed25519PrivateKey, **overrides: object) -> dict[str, object]:
    public_key = signing_key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    body: dict[str, object] = {
        "productId": "PROD-001",
        "productName": "Widget",
        "granularity": "ProductClass",
        "manufacturer": {"name": "Acme", "identifier": "ACME-001"},
        "issuerAddress": "0x" + "ab" * 20,
        "issuerPublicKey": public_key.hex(),
    }
    body.update(overrides)
    return body


class TestReadEndpoints:
    @pytest.mark.asyncio
    async def test_raw_credential(
        self,
        client: TestClient,
        service: PassportService,
        account: LedgerAccount,
        passport_input: PassportInput,
    ) -> None:
        created = await service.create_passport(passport_input, account)

        response = client.get(f"/api/passport/vc/{created.token_id}")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vc+jwt")
        assert response.text == created.vc_jwt

    @pytest.mark.asyncio
    async def test_read_and_verify(
        self,
        client: TestClient,
        service: PassportService,
        account: LedgerAccount,
        passport_input: PassportInput,
    ) -> None:
        created = await service.create_passport(passport_input, account)

        record = client.get(f"/api/passport/{created.token_id}")
        report = client.get(f"/api/passport/{created.token_id}/verify")

        assert record.status_code == 200
        assert record.json()["tokenId"] == created.token_id
        assert record.json()["version"] == 1
        assert report.status_code == 200
        assert report.json()["valid"] is True
        assert report.json()["hashMatches"] is True

    @pytest.mark.asyncio
    async def test_missing_version(
        self,
        client: TestClient,
        service: PassportService,
        account: LedgerAccount,
        passport_input: PassportInput,
    ) -> None:
        created = await service.create_passport(passport_input, account)
        response = client.get(f"/api/passport/{created.token_id}", params={"version": 3})
        assert response.status_code == 404

    @pytest.mark.parametrize(
        "path",
        ["/api/passport/vc/404", "/api/passport/404", "/api/passport/404/verify", "/api/passport/404/export"],
    )
    def test_unknown_token(self, client: TestClient, path: str) -> None:
        assert client.get(path).status_code == 404

    @pytest.mark.asyncio
    async def test_storage_outage_is_bad_gateway(
        self,
        client: TestClient,
        service: PassportService,
        storage: InMemoryContentStorage,
        account: LedgerAccount,
        passport_input: PassportInput,
    ) -> None:
        created = await service.create_passport(passport_input, account)
        storage._objects.clear()

        response = client.get(f"/api/passport/{created.token_id}")

        assert response.status_code == 502


class TestTwoPhaseEndpoints:
    def test_prepare_and_finalize(
        self, client: TestClient, signing_key: ed25519.Ed25519PrivateKey
    ) -> None:
        prepared = client.post("/api/passports/prepare", json=_prepare_body(signing_key))
        assert prepared.status_code == 200
        body = prepared.json()
        signing_input = body["signingInput"]
        assert body["verification"]["linkTemplate"].startswith(
            "https://render.example.test/render/{tokenId}?key="
        )

        token = assemble_credential(signing_input, signing_key.sign(signing_input.encode()))
        finalize_body = {
            "preparedId": body["preparedId"],
            "signedVcJwt": token,
            "issuerAddress": "0x" + "ab" * 20,
        }
        finalized = client.post("/api/passports/finalize", json=finalize_body)

        assert finalized.status_code == 200
        registration = finalized.json()["registrationData"]
        assert registration["datasetUri"].startswith("ipfs://")
        assert registration["datasetType"] == "application/vc+jwt"
        assert registration["granularity"] == "ProductClass"

        replay = client.post("/api/passports/finalize", json=finalize_body)
        assert replay.status_code == 400
        assert replay.json() == {
            "success": False,
            "error": SESSION_EXPIRED_ERROR,
            "registrationData": None,
        }

    def test_prepare_rejects_bad_input(
        self, client: TestClient, signing_key: ed25519.Ed25519PrivateKey
    ) -> None:
        response = client.post(
            "/api/passports/prepare",
            json=_prepare_body(signing_key, manufacturer={"name": "Acme"}),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Manufacturer identifier is required."

    def test_prepare_rejects_unknown_did_web(
        self, client: TestClient, signing_key: ed25519.Ed25519PrivateKey
    ) -> None:
        response = client.post(
            "/api/passports/prepare",
            json=_prepare_body(signing_key, useDidWeb=True, issuerDid="did:web:nobody.example"),
        )
        assert response.status_code == 403

    def test_schema_errors_are_422(self, client: TestClient) -> None:
        response = client.post("/api/passports/prepare", json={"productName": "Widget"})
        assert response.status_code == 422


def test_health() -> None:
    client = TestClient(create_application())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
