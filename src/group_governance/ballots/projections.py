"""
Ballot Projections - one ballot folded from its stream

Approve and reject counts are adjusted as each VoteCast is applied (an
overwrite moves one vote from one column to the other), so the tally never
re-scans the vote list.
"""

from datetime import datetime
from typing import Any

from group_governance.ballots.models import (
    BallotKind,
    BallotStatus,
    ProposalAction,
    VoteChoice,
)
from group_governance.kernel.errors import BallotNotFound
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event


class BallotState:
    """
    Projection: a join request or proposal

    Attributes:
        subject_id: requester (join request) or target (proposal)
        votes: voter_id -> current choice
        version: stream version this state was folded up to
    """

    def __init__(self, ballot_id: str) -> None:
        self.ballot_id = ballot_id
        self.kind: BallotKind | None = None
        self.group_id: str = ""
        self.subject_id: str = ""
        self.action: ProposalAction | None = None
        self.proposer_id: str | None = None
        self.reason: str | None = None
        self.message: str | None = None
        self.status = BallotStatus.PENDING
        self.eligible_count = 0
        self.required_votes = 0
        self.reject_threshold = 0
        self.votes: dict[str, VoteChoice] = {}
        self.approve_count = 0
        self.reject_count = 0
        self.created_at: datetime | None = None
        self.expires_at: datetime | None = None
        self.resolved_at: datetime | None = None
        self.override_reason: str | None = None
        self.version = 0

    @property
    def exists(self) -> bool:
        return self.version > 0

    @property
    def is_open(self) -> bool:
        return self.exists and not self.status.is_terminal

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload

        if event.event_type == "JoinRequested":
            self.kind = BallotKind.JOIN_REQUEST
            self.group_id = payload["group_id"]
            self.subject_id = payload["requester_id"]
            self.message = payload.get("message")
            self._open(payload, BallotStatus.PENDING, payload["requested_at"])

        elif event.event_type == "ProposalOpened":
            self.kind = BallotKind.PROPOSAL
            self.group_id = payload["group_id"]
            self.subject_id = payload["target_id"]
            self.action = ProposalAction(payload["action"])
            self.proposer_id = payload["proposer_id"]
            self.reason = payload["reason"]
            self.expires_at = datetime.fromisoformat(payload["expires_at"])
            self._open(payload, BallotStatus.VOTING, payload["opened_at"])

        elif event.event_type == "VoteCast":
            choice = VoteChoice(payload["choice"])
            previous = self.votes.get(payload["voter_id"])
            if previous is not None:
                self._count(previous, -1)
            self._count(choice, 1)
            self.votes[payload["voter_id"]] = choice
            if self.status == BallotStatus.PENDING:
                self.status = BallotStatus.VOTING

        elif event.event_type == "BallotResolved":
            self.status = BallotStatus(payload["status"])
            self.override_reason = payload.get("override_reason")
            self.resolved_at = datetime.fromisoformat(payload["resolved_at"])

        elif event.event_type == "BallotExpired":
            self.status = BallotStatus.EXPIRED
            self.resolved_at = datetime.fromisoformat(payload["expired_at"])

        self.version = event.version

    def _open(self, payload: dict[str, Any], status: BallotStatus, created_at: str) -> None:
        self.status = status
        self.eligible_count = payload["eligible_count"]
        self.required_votes = payload["required_votes"]
        self.reject_threshold = payload["reject_threshold"]
        self.created_at = datetime.fromisoformat(created_at)

    def _count(self, choice: VoteChoice, delta: int) -> None:
        if choice == VoteChoice.APPROVE:
            self.approve_count += delta
        else:
            self.reject_count += delta

    def to_dict(self) -> dict[str, Any]:
        """Serialize for read APIs and the CLI"""
        return {
            "ballot_id": self.ballot_id,
            "kind": self.kind.value if self.kind else None,
            "group_id": self.group_id,
            "subject_id": self.subject_id,
            "action": self.action.value if self.action else None,
            "proposer_id": self.proposer_id,
            "reason": self.reason,
            "message": self.message,
            "status": self.status.value,
            "eligible_count": self.eligible_count,
            "required_votes": self.required_votes,
            "reject_threshold": self.reject_threshold,
            "approve_count": self.approve_count,
            "reject_count": self.reject_count,
            "votes": {voter: choice.value for voter, choice in self.votes.items()},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "override_reason": self.override_reason,
            "version": self.version,
        }

    @classmethod
    def from_events(cls, ballot_id: str, events: list[Event]) -> "BallotState":
        state = cls(ballot_id)
        for event in events:
            state.apply_event(event)
        return state


def load_ballot(event_store: SQLiteEventStore, ballot_id: str) -> BallotState:
    """
    Fold a ballot's stream

    Raises:
        BallotNotFound: If the ballot has no events
    """
    state = BallotState.from_events(ballot_id, event_store.load_stream(ballot_id))
    if not state.exists:
        raise BallotNotFound(ballot_id)
    return state
