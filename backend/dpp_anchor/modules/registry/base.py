"""Product/entity registry and DTE index collaborator interfaces.

Both are optional: lookups through them degrade to "nothing known" when the
backing service is absent or failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(slots=True)
class RegistryProduct:
    id: str
    identifier: str
    name: str | None = None
    produced_by: str | None = None


@dataclass(slots=True)
class RegistryEntity:
    id: str
    identifier: str
    kind: str
    name: str | None = None


@dataclass(slots=True)
class DteIndexRecord:
    """Link between a product identifier and an issued traceability event credential."""

    product_id: str
    dte_cid: str
    dte_uri: str
    issuer_did: str
    event_id: str
    role: str = "unknown"
    event_type: str | None = None
    credential_id: str | None = None


@runtime_checkable
class ProductRegistry(Protocol):
    """Entity/product index fed by issued passports."""

    async def resolve_product(self, identifier: str) -> RegistryProduct | None: ...

    async def get_dpps_for_product(self, product_id: str) -> list[str]: ...

    async def resolve_entity(self, identifier: str) -> RegistryEntity | None: ...

    async def get_dpps_for_entity(self, entity_id: str) -> list[str]: ...

    async def index_passport(
        self, token_id: str, document: dict[str, Any], issuer_did: str
    ) -> None: ...


@runtime_checkable
class DteIndex(Protocol):
    async def list_by_product_id(
        self, product_id: str, limit: int | None = None
    ) -> list[DteIndexRecord]: ...
