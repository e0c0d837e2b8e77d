"""Passport endpoints: credential fetch, read, verify, export and two-phase issuance."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse

from dpp_anchor.core.logging import get_logger
from dpp_anchor.dependencies import PassportServiceDep
from dpp_anchor.modules.credentials.codec import CREDENTIAL_MEDIA_TYPE, CredentialFormatError
from dpp_anchor.modules.ledger.base import PassportNotFoundError
from dpp_anchor.modules.passports.documents import PassportInputError
from dpp_anchor.modules.passports.history import VersionNotAvailableError
from dpp_anchor.modules.passports.schemas import (
    CreatePassportFormInput,
    FinalizeCreatePassportInput,
    FinalizeResult,
    PassportExport,
    PassportRecord,
    PreparedPassport,
    VerificationReport,
)
from dpp_anchor.modules.passports.service import IssuerAuthorizationError
from dpp_anchor.modules.storage.base import StorageError

logger = get_logger(__name__)

router = APIRouter()


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _bad_gateway(exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Passport data unavailable: {exc}"
    )


@router.get("/passport/vc/{token_id}", response_class=PlainTextResponse)
async def get_passport_credential(token_id: str, service: PassportServiceDep) -> PlainTextResponse:
    """Raw credential for a token; the ``untp:dpp`` link target."""
    try:
        record = await service.read_passport(token_id)
    except PassportNotFoundError as exc:
        raise _not_found(exc) from exc
    except (StorageError, TimeoutError) as exc:
        raise _bad_gateway(exc) from exc
    return PlainTextResponse(
        content=record.vc_jwt,
        media_type=CREDENTIAL_MEDIA_TYPE,
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.get("/passport/{token_id}", response_model=PassportRecord)
async def read_passport(
    token_id: str,
    service: PassportServiceDep,
    version: int | None = Query(default=None, ge=1),
) -> PassportRecord:
    try:
        return await service.read_passport(token_id, version)
    except (PassportNotFoundError, VersionNotAvailableError) as exc:
        raise _not_found(exc) from exc
    except (StorageError, TimeoutError, CredentialFormatError) as exc:
        raise _bad_gateway(exc) from exc


@router.get("/passport/{token_id}/verify", response_model=VerificationReport)
async def verify_passport(token_id: str, service: PassportServiceDep) -> VerificationReport:
    try:
        return await service.verify_passport(token_id)
    except PassportNotFoundError as exc:
        raise _not_found(exc) from exc
    except (StorageError, TimeoutError, CredentialFormatError) as exc:
        raise _bad_gateway(exc) from exc


@router.get("/passport/{token_id}/export", response_model=PassportExport)
async def export_passport(
    token_id: str,
    service: PassportServiceDep,
    key: str | None = Query(default=None, description="Verification key for Annex III"),
) -> PassportExport:
    try:
        return await service.export_passport(token_id, key)
    except PassportNotFoundError as exc:
        raise _not_found(exc) from exc
    except (StorageError, TimeoutError, CredentialFormatError) as exc:
        raise _bad_gateway(exc) from exc


@router.post("/passports/prepare", response_model=PreparedPassport)
async def prepare_passport(
    body: CreatePassportFormInput, service: PassportServiceDep
) -> PreparedPassport:
    """First step of two-phase issuance; returns the signing input."""
    try:
        return await service.prepare_creation(body)
    except PassportInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IssuerAuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.post("/passports/finalize", response_model=FinalizeResult)
async def finalize_passport(
    body: FinalizeCreatePassportInput, response: Response, service: PassportServiceDep
) -> FinalizeResult:
    """Second step; returns ledger registration parameters for the caller to submit."""
    result = await service.finalize_creation(body)
    if not result.success:
        logger.info("passport_finalize_rejected", prepared_id=body.prepared_id, error=result.error)
        response.status_code = status.HTTP_400_BAD_REQUEST
    return result
