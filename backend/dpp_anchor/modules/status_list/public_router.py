"""Public endpoint serving each issuer's current status list credential."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response, status

from dpp_anchor.dependencies import StatusListManagerDep
from dpp_anchor.modules.status_list.manager import StatusListError
from dpp_anchor.modules.storage.base import StorageError

router = APIRouter()


@router.get("/status-list", response_model=dict[str, Any])
async def get_status_list(
    manager: StatusListManagerDep,
    response: Response,
    issuer: str = Query(default="", description="Issuer DID the list belongs to"),
) -> dict[str, Any]:
    """Return the issuer's latest published status list (404 before first allocation)."""
    issuer = issuer.strip()
    if not issuer:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing issuer parameter",
        )
    try:
        credential = await manager.get_status_list_credential(issuer)
    except (StatusListError, StorageError, TimeoutError) as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Status list could not be retrieved",
        ) from exc
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Status list not found",
        )
    response.headers["Cache-Control"] = "no-store"
    return credential
