"""Mapping Store models and clients."""

from dualsync.mapping.client import (
    HttpMappingStoreClient,
    InMemoryMappingStore,
    MappingStoreClient,
)
from dualsync.mapping.models import (
    CreateMappingResult,
    LegacyKey,
    MappingRecord,
    MappingType,
    canonical_key,
)

__all__ = [
    "MappingStoreClient",
    "InMemoryMappingStore",
    "HttpMappingStoreClient",
    "CreateMappingResult",
    "LegacyKey",
    "MappingRecord",
    "MappingType",
    "canonical_key",
]
