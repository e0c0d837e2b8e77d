"""Tests for the identity resolver linkset service and public endpoints."""

from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dpp_anchor.core.crypto.hashing import Granularity, compute_subject_id_hash
from dpp_anchor.dependencies import get_linkset_service
from dpp_anchor.modules.ledger.base import AnchorRegistration, LedgerAccount
from dpp_anchor.modules.ledger.memory import InMemoryLedger
from dpp_anchor.modules.registry.base import DteIndexRecord
from dpp_anchor.modules.registry.memory import InMemoryDteIndex, InMemoryProductRegistry
from dpp_anchor.modules.resolver.public_router import router as resolver_router
from dpp_anchor.modules.resolver.service import (
    STATUS_AVAILABLE,
    STATUS_NOT_ISSUED,
    LinksetService,
    apply_preferred_language,
    preferred_language,
)

BASE_URL = "https://idr.example.test"
RENDER_URL = "https://render.example.test"


def _service(**collaborators: object) -> LinksetService:
    return LinksetService(base_url=BASE_URL, render_base_url=RENDER_URL, **collaborators)  # type: ignore[arg-type]


async def _indexed_registry(token_id: str = "7") -> InMemoryProductRegistry:
    registry = InMemoryProductRegistry()
    await registry.index_passport(
        token_id,
        {
            "product": {"identifier": "PROD-001", "name": "Widget"},
            "manufacturer": {"name": "Acme", "identifier": "ACME-001"},
        },
        "did:web:acme.example",
    )
    return registry


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestGenerateLinkset:
    @pytest.mark.asyncio
    async def test_without_token(self) -> None:
        linkset = await _service().generate_linkset("PROD-001")

        assert linkset["anchor"] == "urn:product:PROD-001"
        assert linkset["self"]["href"] == f"{BASE_URL}/idr/products/PROD-001?linkType=linkset"
        assert linkset["self"]["type"] == "application/linkset+json"
        assert "untp:dpp" not in linkset
        assert "alternate" not in linkset

    @pytest.mark.asyncio
    async def test_with_token(self) -> None:
        linkset = await _service().generate_linkset("PROD-001", "99")

        assert linkset["untp:dpp"]["href"] == f"{BASE_URL}/api/passport/vc/99"
        assert linkset["untp:dpp"]["type"] == "application/vc+jwt"
        assert linkset["alternate"]["href"] == f"{RENDER_URL}/render/99"

    @pytest.mark.asyncio
    async def test_urn_anchor_kept_and_identifier_encoded(self) -> None:
        linkset = await _service().generate_linkset("urn:gtin:123/4")
        assert linkset["anchor"] == "urn:gtin:123/4"
        assert linkset["self"]["href"].endswith("/idr/products/urn%3Agtin%3A123%2F4?linkType=linkset")

    @pytest.mark.asyncio
    async def test_dte_links_deduplicated(self) -> None:
        record = DteIndexRecord(
            product_id="PROD-001",
            dte_cid="bafydte",
            dte_uri="ipfs://bafydte",
            issuer_did="did:web:acme.example",
            event_id="evt-1",
            role="input",
        )
        duplicate = replace(record, event_id="evt-2")
        service = _service(dte_index=InMemoryDteIndex([record, duplicate]))

        linkset = await service.generate_linkset("PROD-001")

        assert linkset["untp:dte"] == [
            {
                "href": f"{BASE_URL}/api/untp/dte/vc?cid=bafydte",
                "type": "application/vc+jwt",
                "title": "Digital Traceability Event (input)",
            }
        ]

    @pytest.mark.asyncio
    async def test_failing_dte_index_is_ignored(self) -> None:
        dte_index = AsyncMock()
        dte_index.list_by_product_id.side_effect = RuntimeError("index offline")
        linkset = await _service(dte_index=dte_index).generate_linkset("PROD-001")
        assert "untp:dte" not in linkset


class TestBuildProductLinkset:
    @pytest.mark.asyncio
    async def test_not_issued(self) -> None:
        linkset = await _service().build_product_linkset(
            "PROD-001", token_id=None, granularity=None
        )
        assert linkset["untp:status"]["href"] == STATUS_NOT_ISSUED
        assert linkset["untp:granularity"]["href"] == "urn:untp:granularity:unknown"
        assert linkset["untp:granularity"]["title"] == "Granularity (not specified)"

    @pytest.mark.asyncio
    async def test_token_supplied(self) -> None:
        linkset = await _service().build_product_linkset(
            "PROD-001", token_id="99", granularity=Granularity.BATCH
        )
        assert linkset["untp:status"]["href"] == STATUS_AVAILABLE
        assert linkset["untp:granularity"]["href"] == "urn:untp:granularity:batch"
        assert linkset["untp:dpp"]["href"] == f"{BASE_URL}/api/passport/vc/99"

    @pytest.mark.asyncio
    async def test_registry_lists_every_passport(self) -> None:
        registry = await _indexed_registry("7")
        await registry.index_passport("8", {"product": {"identifier": "PROD-001"}}, "did:key:z6Mk")

        linkset = await _service(registry=registry).build_product_linkset(
            "PROD-001", token_id=None, granularity=None, language="de"
        )

        assert [link["href"] for link in linkset["untp:dpp"]] == [
            f"{BASE_URL}/api/passport/vc/7",
            f"{BASE_URL}/api/passport/vc/8",
        ]
        assert linkset["self"]["title"] == "Product Profile"
        assert linkset["untp:status"]["href"] == STATUS_AVAILABLE
        assert all(link["hreflang"] == "de" for link in linkset["untp:dpp"])


class TestResolveTokenId:
    @pytest.mark.asyncio
    async def test_supplied_token_wins(self) -> None:
        registry = await _indexed_registry("7")
        service = _service(registry=registry)
        assert await service.resolve_token_id("PROD-001", token_id="42") == "42"

    @pytest.mark.asyncio
    async def test_registry_for_product_class(self) -> None:
        service = _service(registry=await _indexed_registry("7"))
        assert await service.resolve_token_id("PROD-001") == "7"

    @pytest.mark.asyncio
    async def test_batch_goes_to_ledger(self) -> None:
        ledger = InMemoryLedger()
        account = LedgerAccount(address="0x" + "ab" * 20, public_key=b"\x00" * 32)
        tx = await ledger.register_passport(
            AnchorRegistration(
                dataset_uri="ipfs://bafy",
                payload_hash="0x" + "11" * 32,
                dataset_type="application/vc+jwt",
                granularity=Granularity.BATCH,
                subject_id_hash=compute_subject_id_hash("PROD-001", Granularity.BATCH, "LOT-1"),
            ),
            account,
        )
        service = _service(registry=await _indexed_registry("7"), ledger=ledger)

        found = await service.resolve_token_id(
            "PROD-001", granularity=Granularity.BATCH, batch_number="LOT-1"
        )
        missing = await service.resolve_token_id(
            "PROD-001", granularity=Granularity.BATCH, batch_number="LOT-2"
        )

        assert found == tx.token_id
        assert missing is None

    @pytest.mark.asyncio
    async def test_incomplete_subject_tuple(self) -> None:
        service = _service(ledger=InMemoryLedger())
        assert await service.resolve_token_id("PROD-001", granularity=Granularity.ITEM) is None

    @pytest.mark.asyncio
    async def test_failing_registry_treated_as_unknown(self) -> None:
        registry = AsyncMock()
        registry.resolve_product.side_effect = RuntimeError("registry offline")
        assert await _service(registry=registry).resolve_token_id("PROD-001") is None


class TestLanguage:
    def test_query_wins_over_header(self) -> None:
        assert preferred_language("it", "de-DE,de;q=0.9") == "it"

    def test_first_accept_language_tag(self) -> None:
        assert preferred_language(None, "de-DE;q=0.9, en") == "de-DE"

    def test_no_language(self) -> None:
        assert preferred_language("  ", None) == ""

    def test_existing_hreflang_kept(self) -> None:
        linkset = {
            "anchor": "urn:product:P",
            "alternate": {"href": "https://x", "hreflang": "fr"},
            "self": {"href": "https://y"},
        }
        apply_preferred_language(linkset, "it")
        assert linkset["alternate"]["hreflang"] == "fr"
        assert linkset["self"]["hreflang"] == "it"
        assert linkset["anchor"] == "urn:product:P"


class TestEntityLinkset:
    @pytest.mark.asyncio
    async def test_manufacturer_passports(self) -> None:
        service = _service(registry=await _indexed_registry("7"))
        linkset = await service.resolve_entity_linkset("ACME-001")

        assert linkset["self"]["href"] == f"{BASE_URL}/idr/entities/ACME-001"
        assert linkset["untp:dpp"][0]["href"] == f"{BASE_URL}/api/passport/vc/7"
        assert linkset["alternate"]["href"] == f"{BASE_URL}/idr/entities/ACME-001?format=html"

    @pytest.mark.asyncio
    async def test_unknown_entity(self) -> None:
        linkset = await _service(registry=InMemoryProductRegistry()).resolve_entity_linkset("X")
        assert "untp:dpp" not in linkset


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def _client(service: LinksetService) -> TestClient:
    app = FastAPI()
    app.include_router(resolver_router, prefix="/idr")
    app.dependency_overrides[get_linkset_service] = lambda: service
    return TestClient(app, follow_redirects=False)


class TestResolverEndpoint:
    def test_linkset_for_unissued_product(self) -> None:
        response = _client(_service()).get("/idr/products/PROD-001?linkType=linkset")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/linkset+json")
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.headers["vary"] == "Accept, Accept-Language"
        linkset = response.json()["linkset"][0]
        assert linkset["self"]["href"].endswith("/idr/products/PROD-001?linkType=linkset")
        assert "untp:dpp" not in linkset
        assert "alternate" not in linkset
        assert linkset["untp:status"]["href"] == STATUS_NOT_ISSUED

    def test_linkset_with_token_and_language(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-001",
            params={"linkType": "linkset", "tokenId": "99", "language": "it"},
        )
        linkset = response.json()["linkset"][0]
        assert linkset["untp:dpp"]["href"] == f"{BASE_URL}/api/passport/vc/99"
        assert linkset["untp:dpp"]["hreflang"] == "it"
        assert linkset["untp:status"]["href"] == STATUS_AVAILABLE

    def test_accept_header_selects_linkset(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-001", headers={"Accept": "application/linkset+json"}
        )
        assert response.status_code == 200
        assert "linkset" in response.json()

    def test_default_redirects_to_render_page(self) -> None:
        response = _client(_service()).get("/idr/products/PROD-001?tokenId=99")
        assert response.status_code == 302
        assert response.headers["location"] == f"{RENDER_URL}/render/99"

    @pytest.mark.asyncio
    async def test_registry_token_redirect(self) -> None:
        client = _client(_service(registry=await _indexed_registry("7")))
        response = client.get("/idr/products/PROD-001", headers={"Accept": "text/html"})
        assert response.status_code == 302
        assert response.headers["location"] == f"{RENDER_URL}/render/7"

    def test_html_not_issued_page(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-<b>", headers={"Accept": "text/html"}
        )
        assert response.status_code == 404
        assert response.headers["cache-control"] == "public, max-age=300"
        assert "Passport not available yet" in response.text
        assert "PROD-&lt;b&gt;" in response.text

    def test_no_preference_without_token_returns_linkset(self) -> None:
        response = _client(_service()).get("/idr/products/PROD-001")
        assert response.status_code == 200
        linkset = response.json()["linkset"][0]
        assert linkset["untp:status"]["href"] == STATUS_NOT_ISSUED

    def test_link_type_lookup(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-001", params={"linkType": "untp:dpp", "tokenId": "99"}
        )
        assert response.status_code == 200
        assert response.json() == {
            "productId": "PROD-001",
            "linkType": "untp:dpp",
            "url": f"{BASE_URL}/api/passport/vc/99",
        }

    def test_link_type_redirect(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-001",
            params={"linkType": "alternate", "tokenId": "99", "format": "redirect"},
        )
        assert response.status_code == 302
        assert response.headers["location"] == f"{RENDER_URL}/render/99"

    def test_link_type_without_passport(self) -> None:
        response = _client(_service()).get("/idr/products/PROD-001?linkType=untp:dpp")
        assert response.status_code == 404
        assert response.json()["error"] == "Passport not found for this product identifier"

    def test_unknown_link_type(self) -> None:
        response = _client(_service()).get(
            "/idr/products/PROD-001", params={"linkType": "untp:nope", "tokenId": "99"}
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Link type not found: untp:nope"}

    @pytest.mark.asyncio
    async def test_entity_endpoint(self) -> None:
        client = _client(_service(registry=await _indexed_registry("7")))
        response = client.get("/idr/entities/ACME-001", headers={"Accept-Language": "nl"})
        assert response.status_code == 200
        linkset = response.json()["linkset"][0]
        assert linkset["untp:dpp"][0]["hreflang"] == "nl"
