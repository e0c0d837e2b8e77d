"""Issuer-side status list bookkeeping.

Two pieces of state are kept per deployment:

* ``credential_id -> (issuer, index, list address)``, one row per credential.
* ``issuer -> current list address``, moved forward on every republication.

Verifiers never need this state; they dereference ``statusListCredential``.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dpp_anchor.core.config import Settings
from dpp_anchor.db.models import StatusListMappingRow, StatusListPointerRow


@dataclass(slots=True)
class StatusListMapping:
    issuer: str
    credential_id: str
    index: int
    list_address: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class StatusListStorage(Protocol):
    async def save_mapping(
        self, issuer: str, credential_id: str, index: int, list_address: str
    ) -> None: ...

    async def get_mapping(self, credential_id: str) -> StatusListMapping | None: ...

    async def get_mappings_for_issuer(self, issuer: str) -> list[StatusListMapping]: ...

    async def get_current_list_address(self, issuer: str) -> str | None: ...

    async def update_current_list_address(self, issuer: str, list_address: str) -> None: ...


class InMemoryStatusListStorage:
    """Process-local mapping store."""

    def __init__(self) -> None:
        self._mappings: dict[str, StatusListMapping] = {}
        self._current: dict[str, str] = {}

    async def save_mapping(
        self, issuer: str, credential_id: str, index: int, list_address: str
    ) -> None:
        self._mappings[credential_id] = StatusListMapping(
            issuer=issuer, credential_id=credential_id, index=index, list_address=list_address
        )

    async def get_mapping(self, credential_id: str) -> StatusListMapping | None:
        return self._mappings.get(credential_id)

    async def get_mappings_for_issuer(self, issuer: str) -> list[StatusListMapping]:
        return sorted(
            (m for m in self._mappings.values() if m.issuer == issuer),
            key=lambda m: m.index,
        )

    async def get_current_list_address(self, issuer: str) -> str | None:
        return self._current.get(issuer)

    async def update_current_list_address(self, issuer: str, list_address: str) -> None:
        self._current[issuer] = list_address


class FileStatusListStorage:
    """JSON file store for single-instance deployments.

    The whole document is rewritten on every change through a temporary file
    and :func:`os.replace`, so readers never observe a half-written file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: dict[str, dict[str, Any]] | None = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {"mappings": {}, "current": {}}
        with self._path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        data.setdefault("mappings", {})
        data.setdefault("current", {})
        return data

    def _write_file(self, data: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)

    async def _load(self) -> dict[str, dict[str, Any]]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read_file)
        return self._data

    @staticmethod
    def _to_mapping(raw: dict[str, Any]) -> StatusListMapping:
        return StatusListMapping(
            issuer=raw["issuer"],
            credential_id=raw["credential_id"],
            index=int(raw["index"]),
            list_address=raw["list_address"],
            created_at=datetime.fromisoformat(raw["created_at"]),
        )

    async def save_mapping(
        self, issuer: str, credential_id: str, index: int, list_address: str
    ) -> None:
        async with self._lock:
            data = await self._load()
            mapping = asdict(
                StatusListMapping(
                    issuer=issuer,
                    credential_id=credential_id,
                    index=index,
                    list_address=list_address,
                )
            )
            mapping["created_at"] = mapping["created_at"].isoformat()
            data["mappings"][credential_id] = mapping
            await asyncio.to_thread(self._write_file, data)

    async def get_mapping(self, credential_id: str) -> StatusListMapping | None:
        data = await self._load()
        raw = data["mappings"].get(credential_id)
        return self._to_mapping(raw) if raw else None

    async def get_mappings_for_issuer(self, issuer: str) -> list[StatusListMapping]:
        data = await self._load()
        mappings = [
            self._to_mapping(raw) for raw in data["mappings"].values() if raw["issuer"] == issuer
        ]
        return sorted(mappings, key=lambda m: m.index)

    async def get_current_list_address(self, issuer: str) -> str | None:
        data = await self._load()
        return data["current"].get(issuer)

    async def update_current_list_address(self, issuer: str, list_address: str) -> None:
        async with self._lock:
            data = await self._load()
            data["current"][issuer] = list_address
            await asyncio.to_thread(self._write_file, data)


class SqlStatusListStorage:
    """Relational store for multi-instance deployments.

    Each call runs in its own session and commits before returning.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_mapping(row: StatusListMappingRow) -> StatusListMapping:
        return StatusListMapping(
            issuer=row.issuer_did,
            credential_id=row.credential_id,
            index=row.status_list_index,
            list_address=row.status_list_cid,
            created_at=row.created_at,
        )

    async def save_mapping(
        self, issuer: str, credential_id: str, index: int, list_address: str
    ) -> None:
        async with self._session_factory() as session:
            row = await session.get(StatusListMappingRow, credential_id)
            if row is None:
                session.add(
                    StatusListMappingRow(
                        credential_id=credential_id,
                        issuer_did=issuer,
                        status_list_index=index,
                        status_list_cid=list_address,
                    )
                )
            else:
                row.issuer_did = issuer
                row.status_list_index = index
                row.status_list_cid = list_address
            await session.commit()

    async def get_mapping(self, credential_id: str) -> StatusListMapping | None:
        async with self._session_factory() as session:
            row = await session.get(StatusListMappingRow, credential_id)
            return self._to_mapping(row) if row else None

    async def get_mappings_for_issuer(self, issuer: str) -> list[StatusListMapping]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StatusListMappingRow)
                .where(StatusListMappingRow.issuer_did == issuer)
                .order_by(StatusListMappingRow.status_list_index)
            )
            return [self._to_mapping(row) for row in result.scalars().all()]

    async def get_current_list_address(self, issuer: str) -> str | None:
        async with self._session_factory() as session:
            row = await session.get(StatusListPointerRow, issuer)
            return row.current_cid if row else None

    async def update_current_list_address(self, issuer: str, list_address: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(StatusListPointerRow, issuer)
            if row is None:
                session.add(StatusListPointerRow(issuer_did=issuer, current_cid=list_address))
            else:
                row.current_cid = list_address
            await session.commit()


def create_status_list_storage(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> StatusListStorage:
    """Instantiate the variant named by ``settings.status_list_storage``."""
    if settings.status_list_storage == "file":
        return FileStatusListStorage(settings.status_list_file_path)
    if settings.status_list_storage == "sql":
        if session_factory is None:
            raise ValueError("SQL status list storage requires a database session factory")
        return SqlStatusListStorage(session_factory)
    return InMemoryStatusListStorage()
