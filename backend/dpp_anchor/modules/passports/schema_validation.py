"""Remote JSON Schema loading and credential validation.

Schemas are fetched at runtime rather than vendored. Fetched documents are
cached per URL for a TTL; compiled validators are cached by the JCS SHA-256 of
the schema document, so an upstream change never reuses a stale validator.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

import httpx
from jsonschema import Draft202012Validator  # type: ignore[import-untyped]
from jsonschema.exceptions import SchemaError  # type: ignore[import-untyped]
from jsonschema.validators import validator_for  # type: ignore[import-untyped]

from dpp_anchor.core.crypto.hashing import json_digest
from dpp_anchor.core.logging import get_logger

logger = get_logger(__name__)

SchemaLoadErrorCode = Literal[
    "fetch_failed", "too_large", "invalid_json", "timeout", "sha256_mismatch"
]

_MAX_REPORTED_ERRORS = 10


class SchemaLoadError(RuntimeError):
    """A schema document could not be fetched or parsed."""

    def __init__(self, code: SchemaLoadErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(slots=True)
class SchemaMetadata:
    url: str
    fetched_at: datetime
    sha256: str
    size: int


@dataclass(slots=True)
class LoadedSchema:
    schema: dict[str, Any]
    meta: SchemaMetadata
    expires_at: float


@dataclass(slots=True)
class SchemaValidationResult:
    valid: bool
    errors: list[str]
    meta: SchemaMetadata


class SchemaLoader:
    """Fetch JSON Schemas over HTTP with a size limit and a TTL cache."""

    def __init__(
        self,
        *,
        cache_ttl_seconds: int = 86400,
        max_bytes: int = 5 * 1024 * 1024,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = cache_ttl_seconds
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._client = client
        self._clock = clock
        self._cache: dict[str, LoadedSchema] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def clear_cache(self, url: str | None = None) -> None:
        if url is None:
            self._cache.clear()
        else:
            self._cache.pop(url, None)

    async def _fetch_bytes(self, url: str) -> bytes:
        client = await self._get_client()
        try:
            async with client.stream(
                "GET", url, headers={"Accept": "application/json"}, timeout=self._timeout
            ) as response:
                if response.status_code >= 400:
                    raise SchemaLoadError(
                        "fetch_failed", f"Failed to fetch schema: HTTP {response.status_code}"
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise SchemaLoadError(
                        "too_large",
                        f"Schema size ({declared} bytes) exceeds limit ({self._max_bytes} bytes)",
                    )
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        raise SchemaLoadError(
                            "too_large", f"Schema exceeds limit ({self._max_bytes} bytes)"
                        )
                return bytes(body)
        except httpx.TimeoutException as exc:
            raise SchemaLoadError("timeout", f"Schema fetch timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise SchemaLoadError("fetch_failed", f"Failed to fetch schema: {exc}") from exc

    async def load(self, url: str, *, expected_sha256: str | None = None) -> LoadedSchema:
        cached = self._cache.get(url)
        if cached is not None and self._clock() < cached.expires_at:
            return cached

        body = await self._fetch_bytes(url)
        raw_sha256 = hashlib.sha256(body).hexdigest()
        if expected_sha256 and raw_sha256 != expected_sha256.lower().removeprefix("0x"):
            raise SchemaLoadError(
                "sha256_mismatch",
                f"Schema SHA-256 mismatch: expected {expected_sha256}, got {raw_sha256}",
            )
        try:
            schema = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SchemaLoadError("invalid_json", f"Schema is not valid JSON: {exc}") from exc
        if not isinstance(schema, dict):
            raise SchemaLoadError("invalid_json", "Schema must be a JSON object")

        loaded = LoadedSchema(
            schema=schema,
            meta=SchemaMetadata(
                url=url,
                fetched_at=datetime.now(UTC),
                sha256=raw_sha256,
                size=len(body),
            ),
            expires_at=self._clock() + self._ttl,
        )
        self._cache[url] = loaded
        logger.info("schema_loaded", url=url, sha256=raw_sha256, size=len(body))
        return loaded


class SchemaValidator:
    """Validate documents against remote schemas with compiled-validator caching."""

    def __init__(self, loader: SchemaLoader, *, expected_sha256: str | None = None) -> None:
        self._loader = loader
        self._expected_sha256 = expected_sha256
        self._validators: dict[str, Any] = {}

    def _compiled(self, schema: dict[str, Any]) -> Any:
        key = json_digest(schema)
        validator = self._validators.get(key)
        if validator is None:
            cls = validator_for(schema, default=Draft202012Validator)
            cls.check_schema(schema)
            validator = cls(schema)
            self._validators[key] = validator
        return validator

    async def validate(self, document: dict[str, Any], schema_url: str) -> SchemaValidationResult:
        """Validate ``document``; raises :class:`SchemaLoadError` or ``SchemaError``."""
        loaded = await self._loader.load(schema_url, expected_sha256=self._expected_sha256)
        try:
            validator = self._compiled(loaded.schema)
        except SchemaError:
            logger.warning("schema_compile_failed", url=schema_url)
            raise

        errors: list[str] = []
        for error in validator.iter_errors(document):
            path = "/".join(str(part) for part in error.absolute_path)
            errors.append(f"{path or 'root'}: {error.message}")
            if len(errors) >= _MAX_REPORTED_ERRORS:
                break
        return SchemaValidationResult(valid=not errors, errors=errors, meta=loaded.meta)
