"""
Custom exceptions for Group Governance

Every rejection carries a human-readable ``reason`` that callers can show
verbatim. The hierarchy mirrors how a caller is expected to react: fix the
identity (Unauthorized), give up (Forbidden, NotFound, InvalidState,
InvariantViolation), or re-fetch and try again (Conflict).

Fun fact: The Athenian council used a kleroterion, a slotted stone machine,
to pick officials at random. It also had no way to report "ballot closed".
"""


class GovernanceError(Exception):
    """Base exception for all Group Governance errors"""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class Unauthorized(GovernanceError):
    """Raised when an operation is invoked without an authenticated identity"""

    def __init__(self, reason: str = "authentication required") -> None:
        super().__init__(reason)


class Forbidden(GovernanceError):
    """Raised when the identity is valid but lacks the role for the action"""

    pass


class NotFound(GovernanceError):
    """Base class for missing groups, ballots, polls and members"""

    pass


class GroupNotFound(NotFound):
    """Raised when a group does not exist"""

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        super().__init__(f"Group {group_id} not found")


class BallotNotFound(NotFound):
    """Raised when a join request or proposal does not exist"""

    def __init__(self, ballot_id: str) -> None:
        self.ballot_id = ballot_id
        super().__init__(f"Ballot {ballot_id} not found")


class PollNotFound(NotFound):
    """Raised when a poll does not exist"""

    def __init__(self, poll_id: str) -> None:
        self.poll_id = poll_id
        super().__init__(f"Poll {poll_id} not found")


class MemberNotFound(NotFound):
    """Raised when a user is not a member of the group"""

    def __init__(self, group_id: str, user_id: str) -> None:
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a member of group {group_id}")


class InvalidInput(GovernanceError):
    """Raised when command input is malformed (too long, too few options)"""

    pass


class InvalidState(GovernanceError):
    """Base class for actions that don't fit the current lifecycle state"""

    pass


class BallotClosed(InvalidState):
    """Raised when voting on (or expiring) a ballot that is already terminal"""

    def __init__(self, ballot_id: str, status: str) -> None:
        self.ballot_id = ballot_id
        self.status = status
        super().__init__(f"ballot closed: {ballot_id} is already {status}")


class PollClosed(InvalidState):
    """Raised when voting on a poll that is closed or past its deadline"""

    def __init__(self, poll_id: str) -> None:
        self.poll_id = poll_id
        super().__init__(f"poll closed: {poll_id} no longer accepts votes")


class DuplicateLiveBallot(InvalidState):
    """Raised when a second live ballot is opened for the same subject"""

    def __init__(self, group_id: str, subject_id: str, ballot_id: str) -> None:
        self.group_id = group_id
        self.subject_id = subject_id
        self.ballot_id = ballot_id
        super().__init__(
            f"A live ballot ({ballot_id}) already exists for {subject_id} "
            f"in group {group_id}"
        )


class AlreadyMember(InvalidState):
    """Raised when a member requests to join their own group again"""

    def __init__(self, group_id: str, user_id: str) -> None:
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is already a member of group {group_id}")


class InvalidTarget(InvalidState):
    """Raised when a proposal or role change targets someone it cannot apply to"""

    pass


class InvariantViolation(GovernanceError):
    """
    Raised when the anti-centralization rule would be breached

    The checker's reason is surfaced verbatim so the caller can tell the
    user what to fix (usually: promote another member first).
    """

    def __init__(
        self, group_id: str, reason: str, leaders_after: int, total_after: int
    ) -> None:
        self.group_id = group_id
        self.leaders_after = leaders_after
        self.total_after = total_after
        super().__init__(reason)


class MinimumLeaderViolation(InvariantViolation):
    """Raised when a change would leave a group of more than 3 with under 2 leaders"""

    pass


class GroupInViolation(InvariantViolation):
    """
    Raised when admitting into a group that already breaks the rule

    Admission is blocked until the group promotes another leader.
    """

    pass


class Conflict(GovernanceError):
    """Base class for lost races; the caller should re-fetch and retry"""

    pass


class StreamVersionConflict(Conflict):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates concurrent modification - caller should reload and retry.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class EventStoreError(GovernanceError):
    """Raised on unexpected storage failures"""

    pass


class UpcastError(EventStoreError):
    """Raised when a stored event has a schema version with no upgrade path"""

    def __init__(self, event_type: str, schema_version: int) -> None:
        self.event_type = event_type
        self.schema_version = schema_version
        super().__init__(
            f"No upcaster registered for {event_type} schema v{schema_version}"
        )
