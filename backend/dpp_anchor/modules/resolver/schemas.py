"""Pydantic schemas for the identity resolver (RFC 9264 linksets)."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LinkRelation(str, Enum):
    """Link relation types emitted in product and entity linksets."""

    SELF = "self"
    DPP = "untp:dpp"
    ALTERNATE = "alternate"
    GRANULARITY = "untp:granularity"
    STATUS = "untp:status"
    DTE = "untp:dte"


class LinksetLink(BaseModel):
    """A single RFC 9264 link target."""

    href: str
    type: str | None = None
    title: str | None = None
    hreflang: str | None = None


class LinkTypeResponse(BaseModel):
    """Response body for ``?linkType=<rel>`` lookups."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    link_type: str = Field(..., alias="linkType")
    url: str
