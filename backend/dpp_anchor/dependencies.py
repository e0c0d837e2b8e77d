"""
Process-wide collaborators and FastAPI dependency aliases.

Each provider builds its object once per process from settings; tests swap
them through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from dpp_anchor.core.config import get_settings
from dpp_anchor.modules.credentials.codec import CredentialVerifier
from dpp_anchor.modules.credentials.did import DidResolver
from dpp_anchor.modules.identity.memory import InMemoryIssuerDirectory
from dpp_anchor.modules.ledger.memory import InMemoryLedger
from dpp_anchor.modules.passports.schema_validation import SchemaLoader, SchemaValidator
from dpp_anchor.modules.passports.service import PassportService
from dpp_anchor.modules.passports.sessions import (
    PreparedSessionStore,
    create_prepared_session_store,
)
from dpp_anchor.modules.registry.memory import InMemoryDteIndex, InMemoryProductRegistry
from dpp_anchor.modules.resolver.service import LinksetService
from dpp_anchor.modules.status_list.manager import StatusListManager
from dpp_anchor.modules.status_list.storage import create_status_list_storage
from dpp_anchor.modules.storage import create_content_storage
from dpp_anchor.modules.storage.base import ContentStorage


@lru_cache
def get_content_storage() -> ContentStorage:
    return create_content_storage(get_settings())


@lru_cache
def get_ledger() -> InMemoryLedger:
    return InMemoryLedger()


@lru_cache
def get_registry() -> InMemoryProductRegistry:
    return InMemoryProductRegistry()


@lru_cache
def get_dte_index() -> InMemoryDteIndex:
    return InMemoryDteIndex()


@lru_cache
def get_issuer_directory() -> InMemoryIssuerDirectory:
    return InMemoryIssuerDirectory()


@lru_cache
def get_prepared_sessions() -> PreparedSessionStore:
    return create_prepared_session_store(get_settings())


@lru_cache
def get_did_resolver() -> DidResolver:
    return DidResolver(timeout=get_settings().collaborator_timeout_seconds)


@lru_cache
def get_schema_loader() -> SchemaLoader:
    settings = get_settings()
    return SchemaLoader(
        cache_ttl_seconds=settings.schema_cache_ttl_seconds,
        max_bytes=settings.schema_max_bytes,
        timeout=settings.schema_fetch_timeout_seconds,
    )


@lru_cache
def get_status_list_manager() -> StatusListManager:
    settings = get_settings()
    session_factory = None
    if settings.status_list_storage == "sql":
        from dpp_anchor.db.session import get_session_factory

        session_factory = get_session_factory()
    return StatusListManager(
        create_status_list_storage(settings, session_factory),
        get_content_storage(),
        base_url=settings.status_list_base_url_effective,
        size=settings.status_list_size,
        timeout=settings.collaborator_timeout_seconds,
    )


@lru_cache
def get_passport_service() -> PassportService:
    settings = get_settings()
    return PassportService(
        get_ledger(),
        get_content_storage(),
        get_prepared_sessions(),
        CredentialVerifier(get_did_resolver()),
        settings=settings,
        identity=get_issuer_directory(),
        status_list=get_status_list_manager() if settings.status_list_enabled else None,
        registry=get_registry(),
        schema_validator=SchemaValidator(
            get_schema_loader(), expected_sha256=settings.untp_schema_sha256
        ),
    )


@lru_cache
def get_linkset_service() -> LinksetService:
    settings = get_settings()
    return LinksetService(
        base_url=settings.idr_base_url,
        render_base_url=settings.render_base_url_effective,
        registry=get_registry(),
        dte_index=get_dte_index(),
        ledger=get_ledger(),
        timeout=settings.collaborator_timeout_seconds,
    )


StatusListManagerDep = Annotated[StatusListManager, Depends(get_status_list_manager)]
PassportServiceDep = Annotated[PassportService, Depends(get_passport_service)]
LinksetServiceDep = Annotated[LinksetService, Depends(get_linkset_service)]
