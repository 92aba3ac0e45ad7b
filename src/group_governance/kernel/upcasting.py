"""
Event schema upcasting

Stored events are never rewritten. When a payload shape changes, the new
shape gets a higher schema version and a pure function that turns the old
payload into the new one. The event store runs the chain on read, so
projections only ever see the current shape.

Fun fact: Bible translators call this "dynamic equivalence" - you keep the
original text and translate on the way out.
"""

from collections.abc import Callable

from group_governance.kernel.errors import UpcastError
from group_governance.kernel.events import Event

PayloadUpcaster = Callable[[dict], dict]


class UpcasterRegistry:
    """
    Registry of payload upgrade steps, keyed by (event_type, from_version)

    Each step upgrades a payload by exactly one version. The current version
    of an event type is one past the highest registered step.
    """

    def __init__(self) -> None:
        self._steps: dict[tuple[str, int], PayloadUpcaster] = {}
        self._current: dict[str, int] = {}

    def register(
        self, event_type: str, from_version: int
    ) -> Callable[[PayloadUpcaster], PayloadUpcaster]:
        """
        Decorator registering an upgrade from ``from_version`` to the next

        Example:
            @upcasters.register("GroupCreated", from_version=1)
            def _group_created_v1_to_v2(payload: dict) -> dict:
                ...
        """

        def decorator(func: PayloadUpcaster) -> PayloadUpcaster:
            key = (event_type, from_version)
            if key in self._steps:
                raise ValueError(
                    f"Upcaster already registered for {event_type} v{from_version}"
                )
            self._steps[key] = func
            self._current[event_type] = max(
                self._current.get(event_type, 1), from_version + 1
            )
            return func

        return decorator

    def current_version(self, event_type: str) -> int:
        """Schema version newly recorded events of this type are written with"""
        return self._current.get(event_type, 1)

    def upcast(self, event: Event) -> Event:
        """
        Return the event with its payload at the current schema version

        Raises:
            UpcastError: If a step in the chain is missing
        """
        target = self.current_version(event.event_type)
        if event.schema_version >= target:
            return event

        payload = dict(event.payload)
        version = event.schema_version
        while version < target:
            step = self._steps.get((event.event_type, version))
            if step is None:
                raise UpcastError(event.event_type, version)
            payload = step(payload)
            version += 1

        return event.model_copy(update={"payload": payload, "schema_version": version})


# Global registry; domain event modules register their steps on import
upcasters = UpcasterRegistry()
