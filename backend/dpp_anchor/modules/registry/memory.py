"""Process-local product registry and DTE index."""

from __future__ import annotations

import hashlib
from typing import Any

from dpp_anchor.modules.registry.base import DteIndexRecord, RegistryEntity, RegistryProduct


def _stable_id(kind: str, identifier: str) -> str:
    return f"{kind}:{hashlib.sha256(identifier.encode('utf-8')).hexdigest()[:16]}"


class InMemoryProductRegistry:
    """Indexes issuer, manufacturer, facility and product of each passport."""

    def __init__(self) -> None:
        self._products: dict[str, RegistryProduct] = {}
        self._entities: dict[str, RegistryEntity] = {}
        self._product_dpps: dict[str, list[str]] = {}
        self._entity_dpps: dict[str, list[str]] = {}

    @staticmethod
    def _link(index: dict[str, list[str]], key: str, token_id: str) -> None:
        tokens = index.setdefault(key, [])
        if token_id not in tokens:
            tokens.append(token_id)

    def _save_entity(self, kind: str, identifier: str, name: str | None) -> RegistryEntity:
        entity = self._entities.get(identifier)
        if entity is None:
            entity = RegistryEntity(
                id=_stable_id(kind, identifier), identifier=identifier, kind=kind, name=name
            )
            self._entities[identifier] = entity
        elif name and not entity.name:
            entity.name = name
        return entity

    async def index_passport(
        self, token_id: str, document: dict[str, Any], issuer_did: str
    ) -> None:
        issuer = self._save_entity("issuer", issuer_did, None)
        self._link(self._entity_dpps, issuer.id, token_id)

        manufacturer_id: str | None = None
        manufacturer = document.get("manufacturer")
        if isinstance(manufacturer, dict):
            identifier = manufacturer.get("identifier") or manufacturer.get("name")
            if identifier:
                entity = self._save_entity("manufacturer", str(identifier), manufacturer.get("name"))
                manufacturer_id = entity.id
                self._link(self._entity_dpps, entity.id, token_id)
                facility = manufacturer.get("facility")
                if isinstance(facility, str) and facility:
                    site = self._save_entity("facility", facility, facility)
                    self._link(self._entity_dpps, site.id, token_id)

        product = document.get("product")
        if isinstance(product, dict) and product.get("identifier"):
            identifier = str(product["identifier"])
            record = self._products.get(identifier) or RegistryProduct(
                id=_stable_id("product", identifier), identifier=identifier
            )
            record.name = product.get("name") or record.name
            record.produced_by = manufacturer_id or record.produced_by
            self._products[identifier] = record
            self._link(self._product_dpps, record.id, token_id)

    async def resolve_product(self, identifier: str) -> RegistryProduct | None:
        return self._products.get(identifier)

    async def get_dpps_for_product(self, product_id: str) -> list[str]:
        return list(self._product_dpps.get(product_id, []))

    async def resolve_entity(self, identifier: str) -> RegistryEntity | None:
        return self._entities.get(identifier)

    async def get_dpps_for_entity(self, entity_id: str) -> list[str]:
        return list(self._entity_dpps.get(entity_id, []))


class InMemoryDteIndex:
    def __init__(self, records: list[DteIndexRecord] | None = None) -> None:
        self._records: list[DteIndexRecord] = list(records or [])

    async def upsert_many(self, records: list[DteIndexRecord]) -> None:
        for record in records:
            self._records = [
                r
                for r in self._records
                if not (
                    r.product_id == record.product_id
                    and r.dte_cid == record.dte_cid
                    and r.event_id == record.event_id
                    and r.role == record.role
                )
            ]
            self._records.append(record)

    async def list_by_product_id(
        self, product_id: str, limit: int | None = None
    ) -> list[DteIndexRecord]:
        matches = [r for r in self._records if r.product_id == product_id]
        return matches[:limit] if limit else matches
