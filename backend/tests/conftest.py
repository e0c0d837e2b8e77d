"""
Pytest fixtures for backend testing.
Provides settings, in-process collaborators and a fully wired passport service.
"""

from collections.abc import Iterator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from dpp_anchor.core.config import Settings, get_settings
from dpp_anchor.modules.credentials.codec import CredentialVerifier
from dpp_anchor.modules.credentials.did import DidResolver
from dpp_anchor.modules.identity.memory import InMemoryIssuerDirectory
from dpp_anchor.modules.ledger.base import LedgerAccount
from dpp_anchor.modules.ledger.memory import InMemoryLedger
from dpp_anchor.modules.passports.schemas import (
    ManufacturerInput,
    PassportInput,
)
from dpp_anchor.modules.passports.service import PassportService
from dpp_anchor.modules.passports.sessions import InMemoryPreparedSessionStore
from dpp_anchor.modules.registry.memory import InMemoryProductRegistry
from dpp_anchor.modules.status_list.manager import StatusListManager
from dpp_anchor.modules.status_list.storage import InMemoryStatusListStorage
from dpp_anchor.modules.storage.memory import InMemoryContentStorage

ISSUER_ADDRESS = "0x" + "ab" * 20


def raw_public_key(key: ed25519.Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="development",
        idr_base_url="https://idr.example.test",
        render_base_url="https://render.example.test",
        status_list_enabled=True,
        status_list_size=64,
        collaborator_timeout_seconds=5.0,
    )


@pytest.fixture()
def signing_key() -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture()
def account(signing_key: ed25519.Ed25519PrivateKey) -> LedgerAccount:
    return LedgerAccount(
        address=ISSUER_ADDRESS,
        public_key=raw_public_key(signing_key),
        signing_key=signing_key,
    )


@pytest.fixture()
def storage() -> InMemoryContentStorage:
    return InMemoryContentStorage("https://gateway.example.test/ipfs")


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def sessions() -> InMemoryPreparedSessionStore:
    return InMemoryPreparedSessionStore()


@pytest.fixture()
def registry() -> InMemoryProductRegistry:
    return InMemoryProductRegistry()


@pytest.fixture()
def identity() -> InMemoryIssuerDirectory:
    return InMemoryIssuerDirectory()


@pytest.fixture()
def status_list(storage: InMemoryContentStorage, settings: Settings) -> StatusListManager:
    return StatusListManager(
        InMemoryStatusListStorage(),
        storage,
        base_url=settings.status_list_base_url_effective,
        size=settings.status_list_size,
    )


@pytest.fixture()
def service(
    ledger: InMemoryLedger,
    storage: InMemoryContentStorage,
    sessions: InMemoryPreparedSessionStore,
    settings: Settings,
    identity: InMemoryIssuerDirectory,
    status_list: StatusListManager,
    registry: InMemoryProductRegistry,
) -> PassportService:
    return PassportService(
        ledger,
        storage,
        sessions,
        CredentialVerifier(DidResolver()),
        settings=settings,
        identity=identity,
        status_list=status_list,
        registry=registry,
    )


@pytest.fixture()
def passport_input() -> PassportInput:
    return PassportInput(
        productId="GTIN:09520123456788",
        productName="Cordless Drill",
        granularity="Batch",
        batchNumber="LOT-42",
        manufacturer=ManufacturerInput(name="Acme Tools", identifier="ACME-001"),
    )
