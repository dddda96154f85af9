"""
Mapping records correlating Legacy and Target identities.

A MappingRecord is the durable proof that a Legacy record has a Target
counterpart. The Mapping Store accepts at most one record per legacy key
and answers a second create with a structured duplicate instead of an error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

LegacyKey = dict[str, Any]
"""Natural key of a Legacy record, e.g. {"bookingId": 1, "alertSequence": 2}."""


def canonical_key(legacy_key: LegacyKey) -> str:
    """
    Return a stable string form of a legacy key.

    Field order does not matter: {"a": 1, "b": 2} and {"b": 2, "a": 1}
    produce the same canonical key.
    """
    return json.dumps(legacy_key, sort_keys=True, separators=(",", ":"), default=str)


class MappingType(Enum):
    """
    How a mapping record came to exist.

    Attributes:
        MIGRATED: Created by a batch migration run.
        LEGACY_CREATED: Created by synchronising a record first written in Legacy.
        TARGET_CREATED: Created by synchronising a record first written in Target.

    The wire values of LEGACY_CREATED and TARGET_CREATED are the ones the
    existing Mapping Store API already stores ("NOMIS_CREATED" and
    "DPS_CREATED"). They are kept as-is so records written by earlier
    synchronisers still parse; only the Python member names are generic.
    """

    MIGRATED = "MIGRATED"
    LEGACY_CREATED = "NOMIS_CREATED"
    TARGET_CREATED = "DPS_CREATED"


class MappingRecord(BaseModel):
    """
    Correlation between one Legacy record and one Target record.

    Serialises with camelCase field names to match the Mapping Store API.

    Attributes:
        legacy_key: Natural key fields of the Legacy record
        target_key: Identifier assigned by Target
        mapping_type: How the mapping was created
        label: Run id that created the mapping, None for sync-created records
        when_created: Assigned by the store
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    legacy_key: LegacyKey = Field(alias="legacyKey")
    target_key: str = Field(alias="targetKey")
    mapping_type: MappingType = Field(alias="mappingType")
    label: str | None = None
    when_created: datetime | None = Field(default=None, alias="whenCreated")

    @property
    def key(self) -> str:
        """Canonical form of the legacy key."""
        return canonical_key(self.legacy_key)

    def to_wire(self) -> dict[str, Any]:
        """Serialise for the Mapping Store API."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def same_correlation(self, other: MappingRecord) -> bool:
        """Compare everything except the store-assigned creation time."""
        return (
            self.key == other.key
            and self.target_key == other.target_key
            and self.mapping_type == other.mapping_type
            and self.label == other.label
        )


@dataclass(frozen=True)
class CreateMappingResult:
    """
    Outcome of a create request.

    Attributes:
        is_duplicate: True when a mapping already existed for the legacy key
        existing: The stored mapping that won, when is_duplicate
        duplicate: The mapping this request tried to create, when is_duplicate
    """

    is_duplicate: bool = False
    existing: MappingRecord | None = None
    duplicate: MappingRecord | None = None

    @classmethod
    def created(cls) -> CreateMappingResult:
        return cls()

    @classmethod
    def duplicate_of(
        cls,
        existing: MappingRecord | None,
        attempted: MappingRecord | None,
    ) -> CreateMappingResult:
        return cls(is_duplicate=True, existing=existing, duplicate=attempted)


__all__ = [
    "LegacyKey",
    "canonical_key",
    "MappingType",
    "MappingRecord",
    "CreateMappingResult",
]
