"""Identity resolver: RFC 9264 linksets for product and entity identifiers.

A product linkset always resolves, whether or not a passport exists yet.
``untp:dpp`` and ``alternate`` are present only when a concrete token is
known; ``untp:granularity`` and ``untp:status`` are always stamped.
"""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import quote

from dpp_anchor.core.crypto.hashing import Granularity, compute_subject_id_hash
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.credentials.codec import CREDENTIAL_MEDIA_TYPE
from dpp_anchor.modules.ledger.base import LedgerClient
from dpp_anchor.modules.registry.base import DteIndex, ProductRegistry
from dpp_anchor.modules.resolver.schemas import LinkRelation, LinksetLink

logger = get_logger(__name__)

Linkset = dict[str, Any]

LINKSET_MEDIA_TYPE = "application/linkset+json"
STATUS_AVAILABLE = "urn:untp:status:available"
STATUS_NOT_ISSUED = "urn:untp:status:not-issued"
PRODUCT_URN_PREFIX = "urn:product:"


def _link(href: str, media_type: str, title: str) -> dict[str, Any]:
    return LinksetLink(href=href, type=media_type, title=title).model_dump(exclude_none=True)


def apply_preferred_language(linkset: Linkset, language: str | None) -> None:
    """Stamp ``hreflang`` on every link that does not already carry one."""
    lang = (language or "").strip()
    if not lang:
        return
    for rel, value in linkset.items():
        if rel == "anchor" or not value:
            continue
        links = value if isinstance(value, list) else [value]
        for link in links:
            if isinstance(link, dict) and not str(link.get("hreflang") or "").strip():
                link["hreflang"] = lang


def apply_granularity_and_status(
    linkset: Linkset, granularity: Granularity | None, has_passport: bool
) -> None:
    label = granularity.value if granularity is not None else "unknown"
    linkset[LinkRelation.GRANULARITY.value] = _link(
        f"urn:untp:granularity:{label.lower()}",
        "text/plain",
        "Granularity (not specified)" if granularity is None else f"Granularity ({label})",
    )
    linkset[LinkRelation.STATUS.value] = _link(
        STATUS_AVAILABLE if has_passport else STATUS_NOT_ISSUED,
        "text/plain",
        "Passport available" if has_passport else "Passport not issued yet",
    )


def preferred_language(query_value: str | None, accept_language: str | None) -> str:
    """Query parameter wins over the first ``Accept-Language`` tag."""
    if query_value and query_value.strip():
        return query_value.strip()
    header = (accept_language or "").strip()
    if not header:
        return ""
    return header.split(",")[0].split(";")[0].strip()


class LinksetService:
    """Build linksets from registry, DTE index and ledger lookups.

    Every collaborator is optional; a failing collaborator is logged and
    treated as "nothing known".
    """

    def __init__(
        self,
        *,
        base_url: str,
        render_base_url: str | None = None,
        registry: ProductRegistry | None = None,
        dte_index: DteIndex | None = None,
        ledger: LedgerClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._render_base_url = (render_base_url or base_url).rstrip("/")
        self._registry = registry
        self._dte_index = dte_index
        self._ledger = ledger
        self._timeout = timeout

    @staticmethod
    def normalize_identifier(identifier: str) -> str:
        if identifier.startswith("urn:"):
            return identifier
        return f"{PRODUCT_URN_PREFIX}{identifier}"

    def credential_url(self, token_id: str) -> str:
        return f"{self._base_url}/api/passport/vc/{quote(str(token_id), safe='')}"

    def default_link(self, token_id: str) -> str:
        """Human-readable render page; target of the default redirect."""
        return f"{self._render_base_url}/render/{quote(str(token_id), safe='')}"

    def _dpp_link(self, token_id: str, title: str) -> dict[str, Any]:
        return _link(self.credential_url(token_id), CREDENTIAL_MEDIA_TYPE, title)

    def _alternate_link(self, token_id: str) -> dict[str, Any]:
        return _link(self.default_link(token_id), "text/html", "Human-readable DPP")

    async def _dte_links(self, product_id: str) -> list[dict[str, Any]]:
        if self._dte_index is None:
            return []
        try:
            async with asyncio.timeout(self._timeout):
                records = await self._dte_index.list_by_product_id(product_id, limit=50)
        except Exception as exc:
            logger.warning("dte_index_lookup_failed", product_id=product_id, error=str(exc))
            return []

        links: list[dict[str, Any]] = []
        seen: set[str] = set()
        for record in records:
            if not record.dte_cid or record.dte_cid in seen:
                continue
            seen.add(record.dte_cid)
            links.append(
                _link(
                    f"{self._base_url}/api/untp/dte/vc?cid={quote(record.dte_cid, safe='')}",
                    CREDENTIAL_MEDIA_TYPE,
                    f"Digital Traceability Event ({record.role})",
                )
            )
        return links

    async def generate_linkset(self, product_id: str, token_id: str | None = None) -> Linkset:
        """Minimal product linkset; passport links only when ``token_id`` is known."""
        linkset: Linkset = {"anchor": self.normalize_identifier(product_id)}
        if token_id:
            linkset[LinkRelation.DPP.value] = self._dpp_link(
                token_id, "Digital Product Passport (Verifiable Credential)"
            )
            linkset[LinkRelation.ALTERNATE.value] = self._alternate_link(token_id)
        linkset[LinkRelation.SELF.value] = _link(
            f"{self._base_url}/idr/products/{quote(product_id, safe='')}?linkType=linkset",
            LINKSET_MEDIA_TYPE,
            "Identity Resolver Linkset",
        )
        dte_links = await self._dte_links(product_id)
        if dte_links:
            linkset[LinkRelation.DTE.value] = dte_links
        return linkset

    async def resolve_product_linkset(self, product_id: str) -> Linkset:
        """Registry-backed product linkset listing every passport for the product."""
        encoded = quote(product_id, safe="")
        linkset: Linkset = {
            "anchor": self.normalize_identifier(product_id),
            LinkRelation.SELF.value: _link(
                f"{self._base_url}/idr/products/{encoded}?linkType=linkset",
                LINKSET_MEDIA_TYPE,
                "Product Profile",
            ),
        }
        token_ids = await self._registry_tokens_for_product(product_id)
        if token_ids:
            linkset[LinkRelation.DPP.value] = [
                self._dpp_link(token_id, f"DPP Token {token_id}") for token_id in token_ids
            ]
            linkset[LinkRelation.ALTERNATE.value] = self._alternate_link(token_ids[0])
        dte_links = await self._dte_links(product_id)
        if dte_links:
            linkset[LinkRelation.DTE.value] = dte_links
        return linkset

    async def resolve_entity_linkset(self, entity_id: str) -> Linkset:
        encoded = quote(entity_id, safe="")
        linkset: Linkset = {
            "anchor": self.normalize_identifier(entity_id),
            LinkRelation.SELF.value: _link(
                f"{self._base_url}/idr/entities/{encoded}", "application/json", "Entity Profile"
            ),
        }
        if self._registry is not None:
            try:
                async with asyncio.timeout(self._timeout):
                    entity = await self._registry.resolve_entity(entity_id)
                    token_ids = (
                        await self._registry.get_dpps_for_entity(entity.id) if entity else []
                    )
            except Exception as exc:
                logger.warning("registry_entity_lookup_failed", entity_id=entity_id, error=str(exc))
                token_ids = []
            if token_ids:
                linkset[LinkRelation.DPP.value] = [
                    self._dpp_link(token_id, f"DPP Token {token_id}") for token_id in token_ids
                ]
        linkset[LinkRelation.ALTERNATE.value] = _link(
            f"{self._base_url}/idr/entities/{encoded}?format=html",
            "text/html",
            "Human-readable Entity Profile",
        )
        return linkset

    async def _registry_tokens_for_product(self, product_id: str) -> list[str]:
        if self._registry is None:
            return []
        try:
            async with asyncio.timeout(self._timeout):
                product = await self._registry.resolve_product(product_id)
                if product is None:
                    return []
                return await self._registry.get_dpps_for_product(product.id)
        except Exception as exc:
            logger.warning("registry_product_lookup_failed", product_id=product_id, error=str(exc))
            return []

    async def lookup_token_id(self, product_id: str) -> str | None:
        """First passport the registry knows for a product-class identifier."""
        token_ids = await self._registry_tokens_for_product(product_id)
        return token_ids[0] if token_ids else None

    async def lookup_token_by_subject(
        self,
        product_id: str,
        granularity: Granularity,
        batch_number: str | None = None,
        serial_number: str | None = None,
    ) -> str | None:
        """On-ledger lookup keyed by the subject hash; no local index needed."""
        if self._ledger is None:
            return None
        subject_hash = compute_subject_id_hash(product_id, granularity, batch_number, serial_number)
        if subject_hash is None:
            return None
        try:
            async with asyncio.timeout(self._timeout):
                return await self._ledger.find_token_by_subject_id(subject_hash)
        except Exception as exc:
            logger.warning("ledger_subject_lookup_failed", product_id=product_id, error=str(exc))
            return None

    async def resolve_token_id(
        self,
        product_id: str,
        *,
        token_id: str | None = None,
        granularity: Granularity | None = None,
        batch_number: str | None = None,
        serial_number: str | None = None,
    ) -> str | None:
        """Supplied token, then registry, then on-ledger subject lookup."""
        if token_id:
            return token_id
        lookup_granularity = granularity or Granularity.PRODUCT_CLASS
        if lookup_granularity is Granularity.PRODUCT_CLASS:
            found = await self.lookup_token_id(product_id)
            if found:
                return found
        return await self.lookup_token_by_subject(
            product_id, lookup_granularity, batch_number, serial_number
        )

    async def resolve_link_by_type(
        self, product_id: str, link_type: str, token_id: str
    ) -> str | None:
        linkset = await self.generate_linkset(product_id, token_id)
        link = linkset.get(link_type)
        if isinstance(link, list):
            link = link[0] if link else None
        if isinstance(link, dict):
            return link.get("href")
        return link if isinstance(link, str) else None

    async def build_product_linkset(
        self,
        product_id: str,
        *,
        token_id: str | None,
        granularity: Granularity | None,
        language: str | None = None,
    ) -> Linkset:
        """Full linkset as served by the resolver endpoint."""
        linkset = await self.resolve_product_linkset(product_id)
        if LinkRelation.DPP.value not in linkset:
            linkset = await self.generate_linkset(product_id, token_id)
        has_passport = bool(token_id) or LinkRelation.DPP.value in linkset
        apply_granularity_and_status(linkset, granularity, has_passport)
        apply_preferred_language(linkset, language)
        return linkset
