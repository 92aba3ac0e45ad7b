"""
Kernel - Core event sourcing infrastructure

The kernel provides the event store, unit-of-work commits, schema upcasting
and the ambient stack (logging, metrics, retry, policy) that the membership,
ballot, poll and governance-log modules build upon.
"""

from group_governance.kernel.errors import (
    Conflict,
    EventStoreError,
    Forbidden,
    GovernanceError,
    InvalidState,
    InvariantViolation,
    NotFound,
    StreamVersionConflict,
    Unauthorized,
)
from group_governance.kernel.events import Event, create_event
from group_governance.kernel.ids import generate_id
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork

__all__ = [
    # IDs & time
    "generate_id",
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events
    "Event",
    "create_event",
    "UnitOfWork",
    "Deadline",
    # Policy
    "GovernancePolicy",
    # Errors
    "GovernanceError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "InvalidState",
    "InvariantViolation",
    "Conflict",
    "StreamVersionConflict",
    "EventStoreError",
]
