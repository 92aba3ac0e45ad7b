"""
Base Event model for event sourcing

Events are immutable facts about what happened to a group, a ballot or a
poll. The append-only event log is the source of truth; every read model
(roster, tally, poll counts) is a fold over a single stream.

Fun fact: Parliamentary minutes are an event log too - nobody edits the
record of a vote, they pass a new motion instead.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Event(BaseModel):
    """
    Base event class - all domain events are stored in this envelope

    Events are:
    - Immutable (never modified after creation)
    - Append-only (never deleted)
    - Versioned per stream (optimistic locking)
    - Schema-tagged (old payloads are upcast on read)

    stream_id + version provides optimistic locking; schema_version lets
    payload shapes evolve without treating missing fields as defaults
    forever.
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier (UUIDv7 for time-ordering)",
    )

    stream_id: str = Field(
        ...,
        description="Aggregate root identifier - group, ballot or poll id",
    )

    stream_type: str = Field(
        ...,
        description="Type of aggregate: 'group', 'ballot', 'poll'",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'GroupCreated', 'VoteCast', etc.",
    )

    occurred_at: datetime = Field(
        ...,
        description="UTC timestamp when event occurred",
    )

    actor_id: str | None = Field(
        default=None,
        description="ID of actor who triggered this event (None for system events)",
    )

    command_id: str = Field(
        ...,
        description="ID of the operation that produced this event",
    )

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (must be JSON-serializable)",
    )

    version: int = Field(
        ...,
        description="Stream version after this event (monotonically increasing)",
        ge=1,
    )

    schema_version: int = Field(
        default=1,
        description="Payload schema version for this event type",
        ge=1,
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "stream_id": "01908e9a-3b87-7000-8000-000000000001",
                    "stream_type": "ballot",
                    "event_type": "VoteCast",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "user-alice",
                    "command_id": "cmd-123",
                    "payload": {"voter_id": "user-alice", "choice": "approve"},
                    "version": 2,
                    "schema_version": 1,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
    schema_version: int = 1,
) -> Event:
    """
    Factory function for creating events with all required fields

    This provides a clean way to construct events with named parameters
    and ensures all required fields are provided.
    """
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
        schema_version=schema_version,
    )
