"""
Mapping Store client protocol and implementations.

The Mapping Store is the cross-system idempotency ledger. Its uniqueness
constraint on legacy keys is the only mutual-exclusion primitive shared by
concurrent workers: a second create for the same key is answered with a
duplicate result, never an exception.

Implementations:
- InMemoryMappingStore: For testing and local runs
- HttpMappingStoreClient: For the Mapping Store REST API (httpx)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from dualsync.config import MappingStoreConfig
from dualsync.exceptions import MappingStoreError
from dualsync.mapping.models import (
    CreateMappingResult,
    LegacyKey,
    MappingRecord,
    canonical_key,
)
from dualsync.observability.attributes import (
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_LEGACY_KEY,
    ATTR_MAPPING_DUPLICATE,
    ATTR_MAPPING_TYPE,
    ATTR_RUN_ID,
)
from dualsync.observability.tracer import SpanKindEnum, Tracer, create_tracer

logger = logging.getLogger(__name__)


@runtime_checkable
class MappingStoreClient(Protocol):
    """
    Protocol for Mapping Store access.

    Any failure other than a logical duplicate raises MappingStoreError so
    callers can route it through the Retry Dispatcher.
    """

    async def create_mapping(self, record: MappingRecord) -> CreateMappingResult:
        """
        Create a mapping record.

        Args:
            record: The correlation to store

        Returns:
            CreateMappingResult, flagged as duplicate when a record already
            exists for the legacy key

        Raises:
            MappingStoreError: Network, server or protocol failure
        """
        ...

    async def find_by_legacy_key(self, legacy_key: LegacyKey) -> MappingRecord | None:
        """
        Look up the mapping for a legacy key.

        Returns:
            The stored mapping, or None if the record was never mapped
        """
        ...

    async def count_by_label(self, label: str) -> int:
        """Count mappings created by the given run."""
        ...

    async def delete_by_legacy_key(self, legacy_key: LegacyKey) -> None:
        """Delete the mapping for a legacy key (manual repair and sync deletes)."""
        ...


class InMemoryMappingStore:
    """
    In-memory Mapping Store.

    Enforces the one-mapping-per-legacy-key constraint under a lock, so
    concurrent workers in one process observe the same duplicate semantics
    as the real store.

    Example:
        >>> store = InMemoryMappingStore()
        >>> result = await store.create_mapping(record)
        >>> result.is_duplicate
        False
    """

    def __init__(self) -> None:
        self._records: dict[str, MappingRecord] = {}
        self._lock = asyncio.Lock()

    async def create_mapping(self, record: MappingRecord) -> CreateMappingResult:
        async with self._lock:
            existing = self._records.get(record.key)
            if existing is not None:
                return CreateMappingResult.duplicate_of(existing, record)
            self._records[record.key] = record
            return CreateMappingResult.created()

    async def find_by_legacy_key(self, legacy_key: LegacyKey) -> MappingRecord | None:
        async with self._lock:
            return self._records.get(canonical_key(legacy_key))

    async def count_by_label(self, label: str) -> int:
        async with self._lock:
            return sum(1 for record in self._records.values() if record.label == label)

    async def delete_by_legacy_key(self, legacy_key: LegacyKey) -> None:
        async with self._lock:
            self._records.pop(canonical_key(legacy_key), None)

    @property
    def records(self) -> list[MappingRecord]:
        """Snapshot of every stored mapping."""
        return list(self._records.values())

    def clear(self) -> None:
        """Remove all mappings."""
        self._records.clear()


class HttpMappingStoreClient:
    """
    Mapping Store client for the REST API.

    Endpoints (paths from MappingStoreConfig):
        POST   {mapping_path}                 201/200 created, 409 duplicate
        GET    {mapping_path}?<legacy key>    200 record, 404 not mapped
        GET    {count_path}?label=<run id>    integer or {"count": n}
        DELETE {mapping_path}?<legacy key>    2xx or 404

    A 409 body is either {"moreInfo": {"existing": ..., "duplicate": ...}}
    or {"existing": ..., "duplicate": ...}.

    Args:
        config: Store location and timeout
        client: Pre-built httpx.AsyncClient (e.g. with auth or a mock transport)
        tracer: Optional custom Tracer
        enable_tracing: Whether to create a tracer when none is given

    Example:
        >>> config = MappingStoreConfig(base_url="http://mapping:8080", mapping_path="/mapping/alerts")
        >>> async with HttpMappingStoreClient(config) as store:
        ...     existing = await store.find_by_legacy_key({"bookingId": 1, "alertSequence": 2})
    """

    def __init__(
        self,
        config: MappingStoreConfig,
        client: httpx.AsyncClient | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
        )
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def __aenter__(self) -> HttpMappingStoreClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def create_mapping(self, record: MappingRecord) -> CreateMappingResult:
        with self._tracer.span_with_kind(
            "dualsync.mapping.create",
            SpanKindEnum.CLIENT,
            {
                ATTR_HTTP_METHOD: "POST",
                ATTR_LEGACY_KEY: record.key,
                ATTR_MAPPING_TYPE: record.mapping_type.value,
                ATTR_RUN_ID: record.label or "",
            },
        ) as span:
            response = await self._request("POST", self._config.mapping_path, json=record.to_wire())
            if span:
                span.set_attribute(ATTR_HTTP_STATUS_CODE, response.status_code)

            if response.status_code == 409:
                result = self._parse_duplicate(response, record)
                if span:
                    span.set_attribute(ATTR_MAPPING_DUPLICATE, True)
                return result

            self._raise_for_status(response, "create mapping")
            return CreateMappingResult.created()

    async def find_by_legacy_key(self, legacy_key: LegacyKey) -> MappingRecord | None:
        with self._tracer.span_with_kind(
            "dualsync.mapping.find",
            SpanKindEnum.CLIENT,
            {ATTR_HTTP_METHOD: "GET", ATTR_LEGACY_KEY: canonical_key(legacy_key)},
        ):
            response = await self._request(
                "GET", self._config.mapping_path, params=_query_params(legacy_key)
            )
            if response.status_code == 404:
                return None
            self._raise_for_status(response, "find mapping")
            return self._parse_record(_json_body(response, "find mapping"), "find mapping")

    async def count_by_label(self, label: str) -> int:
        with self._tracer.span_with_kind(
            "dualsync.mapping.count",
            SpanKindEnum.CLIENT,
            {ATTR_HTTP_METHOD: "GET", ATTR_RUN_ID: label},
        ):
            response = await self._request(
                "GET", self._config.count_path, params={"label": label}
            )
            self._raise_for_status(response, "count mappings")
            body = _json_body(response, "count mappings")
            if isinstance(body, dict):
                body = body.get("count")
            if isinstance(body, bool) or not isinstance(body, int):
                raise MappingStoreError(
                    f"Malformed count response for label {label}: {response.text!r}",
                    status_code=response.status_code,
                )
            return body

    async def delete_by_legacy_key(self, legacy_key: LegacyKey) -> None:
        with self._tracer.span_with_kind(
            "dualsync.mapping.delete",
            SpanKindEnum.CLIENT,
            {ATTR_HTTP_METHOD: "DELETE", ATTR_LEGACY_KEY: canonical_key(legacy_key)},
        ):
            response = await self._request(
                "DELETE", self._config.mapping_path, params=_query_params(legacy_key)
            )
            if response.status_code == 404:
                logger.debug(f"No mapping to delete for {canonical_key(legacy_key)}")
                return
            self._raise_for_status(response, "delete mapping")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise MappingStoreError(f"Mapping Store {method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        raise MappingStoreError(
            f"Mapping Store could not {operation}: HTTP {response.status_code}",
            status_code=response.status_code,
        )

    def _parse_duplicate(
        self,
        response: httpx.Response,
        attempted: MappingRecord,
    ) -> CreateMappingResult:
        body = _json_body(response, "create mapping")
        info = body.get("moreInfo", body) if isinstance(body, dict) else None
        if not isinstance(info, dict):
            raise MappingStoreError(
                f"Malformed duplicate response: {response.text!r}",
                status_code=response.status_code,
            )
        existing = info.get("existing")
        duplicate = info.get("duplicate")
        result = CreateMappingResult.duplicate_of(
            self._parse_record(existing, "create mapping") if existing else None,
            self._parse_record(duplicate, "create mapping") if duplicate else attempted,
        )
        logger.info(
            f"Duplicate mapping for {attempted.key}",
            extra={
                "legacy_key": attempted.key,
                "existing_target_key": result.existing.target_key if result.existing else None,
                "attempted_target_key": attempted.target_key,
            },
        )
        return result

    @staticmethod
    def _parse_record(data: Any, operation: str) -> MappingRecord:
        try:
            return MappingRecord.model_validate(data)
        except ValidationError as e:
            raise MappingStoreError(f"Malformed mapping in {operation} response: {e}") from e


def _query_params(legacy_key: LegacyKey) -> dict[str, str]:
    return {name: str(value) for name, value in legacy_key.items()}


def _json_body(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise MappingStoreError(
            f"Mapping Store returned non-JSON body for {operation}",
            status_code=response.status_code,
        ) from e


__all__ = [
    "MappingStoreClient",
    "InMemoryMappingStore",
    "HttpMappingStoreClient",
]
