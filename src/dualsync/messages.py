"""
Broker wire models.

Every message on a dualsync queue is an Envelope. Its ``Type`` field is the
discriminator: ``"Notification"`` for a Legacy change event delivered via
pub/sub fan-out, otherwise the name of an internal message type such as
``MIGRATE_ENTITY`` or ``RETRY_SYNCHRONISATION_MAPPING``. The ``Message``
field carries the JSON body, decoded with :meth:`Envelope.decode`.

Example:
    >>> item = WorkItem(context=MessageContext(migration_type="alerts"), payload={"id": 1})
    >>> envelope = Envelope.internal(MigrationMessageType.MIGRATE_ENTITY, item)
    >>> envelope.decode(WorkItem).payload
    {'id': 1}
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

NOTIFICATION = "Notification"
"""Envelope kind of a Legacy change event."""

TModel = TypeVar("TModel", bound=BaseModel)


class MigrationMessageType(Enum):
    """
    Internal message kinds used by a migration run.

    Attributes:
        MIGRATE_ENTITIES: Start enumerating a run's ids.
        MIGRATE_BY_PAGE: Enumerate one page of ids.
        MIGRATE_ENTITY: Migrate one record.
        MIGRATE_STATUS_CHECK: Completion-detection poll.
        CANCEL_MIGRATION: Cancellation sweep.
        RETRY_MIGRATION_MAPPING: Retry a failed mapping creation.
    """

    MIGRATE_ENTITIES = "MIGRATE_ENTITIES"
    MIGRATE_BY_PAGE = "MIGRATE_BY_PAGE"
    MIGRATE_ENTITY = "MIGRATE_ENTITY"
    MIGRATE_STATUS_CHECK = "MIGRATE_STATUS_CHECK"
    CANCEL_MIGRATION = "CANCEL_MIGRATION"
    RETRY_MIGRATION_MAPPING = "RETRY_MIGRATION_MAPPING"


class SynchronisationMessageType(Enum):
    """Internal message kinds used by live synchronisation."""

    RETRY_SYNCHRONISATION_MAPPING = "RETRY_SYNCHRONISATION_MAPPING"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class MessageContext(_WireModel):
    """
    Context carried by every work item.

    Attributes:
        migration_id: Run id, None for live synchronisation
        migration_type: Domain name
        estimated_count: Run estimate, for progress reporting
        attempt: Number of times this payload has been re-queued
        telemetry: Free-form string properties attached to telemetry events
    """

    migration_id: str | None = None
    migration_type: str
    estimated_count: int = 0
    attempt: int = 0
    telemetry: dict[str, str] = Field(default_factory=dict)

    def next_attempt(self) -> MessageContext:
        """Copy of this context with the attempt counter incremented."""
        return self.model_copy(update={"attempt": self.attempt + 1})


class WorkItem(_WireModel):
    """
    A unit of work: context plus the record or identifier being processed.

    The payload must be JSON-serialisable so it survives a broker round trip.
    """

    context: MessageContext
    payload: Any = None


class PageRequest(_WireModel):
    """Request to enumerate one page of a run's ids."""

    filter: dict[str, Any] = Field(default_factory=dict)
    page_number: int = 0
    page_size: int


class StatusCheck(_WireModel):
    """
    Completion-detection poll state.

    Attributes:
        check_count: Consecutive checks with drained queues and a stable count
        last_migrated_count: Mapping count seen by the previous check, -1 if none
    """

    check_count: int = 0
    last_migrated_count: int = -1

    def increment(self, migrated_count: int) -> StatusCheck:
        return StatusCheck(check_count=self.check_count + 1, last_migrated_count=migrated_count)

    def reset(self, migrated_count: int) -> StatusCheck:
        return StatusCheck(check_count=0, last_migrated_count=migrated_count)

    def has_checked_enough_times(self, required: int) -> bool:
        """True once more than ``required`` consecutive checks have passed."""
        return self.check_count > required


class ChangeEvent(_WireModel):
    """
    A Legacy change notification.

    Legacy publishes flat JSON objects; every field other than the event
    type, audit originator and timestamp is collected into ``payload``.

    Attributes:
        event_type: Live event name (e.g. "ALERT-INSERTED")
        audit_originator: Process that last wrote the Legacy record
        occurred_at: When Legacy raised the event
        payload: Domain identifiers of the changed record
    """

    event_type: str
    audit_originator: str | None = Field(default=None, alias="auditModuleName")
    occurred_at: datetime | None = Field(default=None, alias="eventDatetime")
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "payload" in data:
            return data
        known = {
            "eventType",
            "event_type",
            "auditModuleName",
            "audit_originator",
            "eventDatetime",
            "occurred_at",
        }
        fields = {k: v for k, v in data.items() if k in known}
        fields["payload"] = {k: v for k, v in data.items() if k not in known}
        return fields

    def __getitem__(self, name: str) -> Any:
        return self.payload[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.payload.get(name, default)


class MessageAttribute(BaseModel):
    """A typed message attribute, as delivered by the pub/sub fan-out."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(default="String", alias="Type")
    value: str = Field(alias="Value")


class Envelope(BaseModel):
    """
    Broker message wrapper carrying the kind discriminator.

    Attributes:
        kind: "Notification" or an internal message type name
        message: JSON body
        message_attributes: Typed attributes (``eventType`` for notifications)
        message_id: Unique id assigned on creation
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: str = Field(alias="Type")
    message: str = Field(alias="Message")
    message_attributes: dict[str, MessageAttribute] = Field(
        default_factory=dict,
        alias="MessageAttributes",
    )
    message_id: str = Field(default_factory=lambda: str(uuid4()), alias="MessageId")

    @property
    def is_notification(self) -> bool:
        return self.kind == NOTIFICATION

    @property
    def event_type(self) -> str | None:
        """Event type attribute of a notification, None otherwise."""
        attribute = self.message_attributes.get("eventType")
        return attribute.value if attribute else None

    @classmethod
    def notification(cls, event: ChangeEvent | dict[str, Any]) -> Envelope:
        """
        Wrap a Legacy change event.

        Args:
            event: A ChangeEvent or the flat JSON object Legacy publishes
        """
        if isinstance(event, ChangeEvent):
            body = {
                "eventType": event.event_type,
                "auditModuleName": event.audit_originator,
                "eventDatetime": event.occurred_at.isoformat() if event.occurred_at else None,
                **event.payload,
            }
            body = {k: v for k, v in body.items() if v is not None}
        else:
            body = event
        return cls(
            kind=NOTIFICATION,
            message=json.dumps(body, default=str),
            message_attributes={"eventType": MessageAttribute(value=str(body["eventType"]))},
        )

    @classmethod
    def internal(cls, kind: Enum | str, body: BaseModel) -> Envelope:
        """
        Wrap an internal message body.

        Args:
            kind: Message type (enum member or name)
            body: Pydantic model serialised into the Message field
        """
        kind_name = kind.value if isinstance(kind, Enum) else kind
        return cls(kind=kind_name, message=body.model_dump_json(by_alias=True))

    def decode(self, model: type[TModel]) -> TModel:
        """Parse the Message field as the given model."""
        return model.model_validate_json(self.message)

    def to_json(self) -> str:
        """Serialise the whole envelope for transport."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> Envelope:
        """Parse an envelope received from transport."""
        return cls.model_validate_json(data)


__all__ = [
    "NOTIFICATION",
    "MigrationMessageType",
    "SynchronisationMessageType",
    "MessageContext",
    "WorkItem",
    "PageRequest",
    "StatusCheck",
    "ChangeEvent",
    "MessageAttribute",
    "Envelope",
]
