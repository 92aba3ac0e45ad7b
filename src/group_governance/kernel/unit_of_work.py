"""
Unit of Work - everything one operation wants to commit

A handler reads one or more streams, decides, and records its intent here:
the version it saw for every stream it read, the events it wants appended
and the expiry deadlines it wants set or cleared. The event store commits
the whole unit in a single transaction or not at all.

Streams that are only read (for example the group roster consulted when a
vote is cast) are still listed with their expected version. That turns a
stale read into a StreamVersionConflict instead of a decision made on
outdated membership.
"""

from datetime import datetime

from pydantic import BaseModel

from group_governance.kernel.events import Event, create_event
from group_governance.kernel.ids import generate_id
from group_governance.kernel.upcasting import upcasters


class Deadline(BaseModel):
    """A point in time at which the sweeper must look at a stream"""

    stream_id: str
    stream_type: str
    group_id: str
    due_at: datetime


class UnitOfWork:
    """Expected versions, pending events and deadline changes for one commit"""

    def __init__(
        self,
        *,
        occurred_at: datetime,
        actor_id: str | None,
        command_id: str | None = None,
    ) -> None:
        self.occurred_at = occurred_at
        self.actor_id = actor_id
        self.command_id = command_id or generate_id()
        self.expected_versions: dict[str, int] = {}
        self.events: list[Event] = []
        self.deadlines: dict[str, Deadline] = {}
        self.cleared_deadlines: set[str] = set()

    def expect(self, stream_id: str, version: int) -> None:
        """
        Declare the version this operation read for a stream

        The first declaration wins: a later read of the same stream inside
        one operation must not move the guard forward.
        """
        self.expected_versions.setdefault(stream_id, version)

    def record(
        self,
        stream_id: str,
        stream_type: str,
        event_type: str,
        payload: BaseModel,
    ) -> Event:
        """
        Stage an event on a stream that was declared with ``expect``

        The event version continues from the expected version plus any
        events already staged on the same stream.
        """
        if stream_id not in self.expected_versions:
            raise ValueError(
                f"Stream {stream_id} must be declared with expect() before recording"
            )
        staged = sum(1 for e in self.events if e.stream_id == stream_id)
        event = create_event(
            event_id=generate_id(),
            stream_id=stream_id,
            stream_type=stream_type,
            event_type=event_type,
            occurred_at=self.occurred_at,
            command_id=self.command_id,
            actor_id=self.actor_id,
            payload=payload.model_dump(mode="json"),
            version=self.expected_versions[stream_id] + staged + 1,
            schema_version=upcasters.current_version(event_type),
        )
        self.events.append(event)
        return event

    def schedule(self, deadline: Deadline) -> None:
        self.cleared_deadlines.discard(deadline.stream_id)
        self.deadlines[deadline.stream_id] = deadline

    def clear_deadline(self, stream_id: str) -> None:
        self.deadlines.pop(stream_id, None)
        self.cleared_deadlines.add(stream_id)

    def events_for(self, stream_id: str) -> list[Event]:
        return [e for e in self.events if e.stream_id == stream_id]

    @property
    def is_empty(self) -> bool:
        return not self.events and not self.deadlines and not self.cleared_deadlines
