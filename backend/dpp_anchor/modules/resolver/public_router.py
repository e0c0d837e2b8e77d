"""Public (unauthenticated) identity resolver endpoints.

Content negotiation: an explicit ``linkType``/``format`` query value wins,
then an ``Accept`` header naming a linkset or JSON media type selects
linkset output, then ``text/html`` selects the human-readable page.
"""

from __future__ import annotations

from html import escape
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from dpp_anchor.core.crypto.hashing import parse_granularity
from dpp_anchor.core.logging import get_logger
from dpp_anchor.dependencies import LinksetServiceDep
from dpp_anchor.modules.resolver.schemas import LinkTypeResponse
from dpp_anchor.modules.resolver.service import (
    LINKSET_MEDIA_TYPE,
    apply_granularity_and_status,
    apply_preferred_language,
    preferred_language,
)

logger = get_logger(__name__)

router = APIRouter()

_CACHE_HEADERS = {
    "Cache-Control": "public, max-age=3600",
    "Vary": "Accept, Accept-Language",
}
_NOT_ISSUED_HEADERS = {
    "Cache-Control": "public, max-age=300",
    "Vary": "Accept, Accept-Language",
}


def _param(request: Request, *names: str) -> str:
    for name in names:
        value = request.query_params.get(name)
        if value and value.strip():
            return value.strip()
    return ""


def _wants_json(accept: str, fmt: str) -> bool:
    return fmt == "json" or "application/json" in accept or LINKSET_MEDIA_TYPE in accept


def _linkset_response(linkset: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        content={"linkset": [linkset]},
        media_type=LINKSET_MEDIA_TYPE,
        headers=_CACHE_HEADERS,
    )


def _not_issued_page(product_id: str, language: str) -> HTMLResponse:
    body = f"""<!doctype html>
<html lang="{escape(language or 'en')}">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Passport not available</title>
  </head>
  <body>
    <main>
      <h1>Passport not available yet</h1>
      <p>No Digital Product Passport is currently published for <strong>{escape(product_id)}</strong>.</p>
      <p>If you expected to see a passport, ask the manufacturer for an updated link or try again later.</p>
    </main>
  </body>
</html>"""
    return HTMLResponse(
        content=body, status_code=status.HTTP_404_NOT_FOUND, headers=_NOT_ISSUED_HEADERS
    )


@router.get("/products/{product_id}")
async def resolve_product(product_id: str, request: Request, service: LinksetServiceDep) -> Any:
    """Resolve a product identifier to a linkset, a single link or a redirect."""
    accept = request.headers.get("accept", "").lower()
    fmt = _param(request, "format").lower()
    explicit_link_type = _param(request, "linkType")

    granularity_raw = _param(request, "granularity", "granularityLevel", "level")
    granularity = parse_granularity(granularity_raw)
    batch_number = _param(request, "batchNumber", "batch") or None
    serial_number = _param(request, "serialNumber", "serial") or None
    language = preferred_language(
        _param(request, "language", "lang"), request.headers.get("accept-language")
    )

    link_type = explicit_link_type or (
        "linkset"
        if fmt == "linkset" or LINKSET_MEDIA_TYPE in accept or "application/json" in accept
        else ""
    )
    wants_redirect = fmt == "redirect" or (
        not _wants_json(accept, fmt) and "text/html" in accept
    )

    token_id = await service.resolve_token_id(
        product_id,
        token_id=_param(request, "tokenId") or None,
        granularity=granularity,
        batch_number=batch_number,
        serial_number=serial_number,
    )

    if link_type == "linkset":
        linkset = await service.build_product_linkset(
            product_id, token_id=token_id, granularity=granularity, language=language
        )
        logger.info("resolver_linkset_served", product_id=product_id, has_token=bool(token_id))
        return _linkset_response(linkset)

    if link_type:
        if not token_id:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={
                    "error": "Passport not found for this product identifier",
                    "productId": product_id,
                    "linkType": link_type,
                },
            )
        url = await service.resolve_link_by_type(product_id, link_type, token_id)
        if not url:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": f"Link type not found: {link_type}"},
            )
        if wants_redirect:
            return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND, headers=_CACHE_HEADERS)
        return JSONResponse(
            content=LinkTypeResponse(product_id=product_id, link_type=link_type, url=url).model_dump(
                by_alias=True
            ),
            headers=_CACHE_HEADERS,
        )

    if token_id:
        target = service.default_link(token_id)
        logger.info("resolver_redirect_served", product_id=product_id, href=target)
        return RedirectResponse(
            url=target, status_code=status.HTTP_302_FOUND, headers=_CACHE_HEADERS
        )

    if wants_redirect:
        logger.info("resolver_not_issued", product_id=product_id)
        return _not_issued_page(product_id, language)

    linkset = await service.generate_linkset(product_id)
    apply_granularity_and_status(linkset, granularity, has_passport=False)
    apply_preferred_language(linkset, language)
    return _linkset_response(linkset)


@router.get("/entities/{entity_id}")
async def resolve_entity(entity_id: str, request: Request, service: LinksetServiceDep) -> Any:
    """Entity linkset listing the passports issued by or for the entity."""
    language = preferred_language(
        _param(request, "language", "lang"), request.headers.get("accept-language")
    )
    linkset = await service.resolve_entity_linkset(entity_id)
    apply_preferred_language(linkset, language)
    return _linkset_response(linkset)
