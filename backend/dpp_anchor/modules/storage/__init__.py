"""Content-addressed storage backends."""

from __future__ import annotations

from dpp_anchor.core.config import Settings
from dpp_anchor.modules.storage.base import ContentStorage
from dpp_anchor.modules.storage.kubo import KuboContentStorage
from dpp_anchor.modules.storage.memory import InMemoryContentStorage


def create_content_storage(settings: Settings) -> ContentStorage:
    """Instantiate the backend named by ``settings.storage_backend``."""
    if settings.storage_backend == "kubo":
        return KuboContentStorage(
            settings.ipfs_api_url,
            settings.ipfs_gateway_url,
            timeout=settings.collaborator_timeout_seconds,
        )
    return InMemoryContentStorage(settings.ipfs_gateway_url)
