"""
Ballot Domain Models - join requests, proposals and their outcomes

A ballot is either a join request (subject: the requester) or a demote/kick
proposal (subject: the target). Both share one tally: a frozen approve
quorum and a frozen reject threshold, counted over the votes cast so far.

Fun fact: Ancient Athenians voted to exile citizens by scratching names on
pottery shards (ostraka). A kick proposal is the same idea, minus the
pottery and with a quorum.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel


class BallotKind(str, Enum):
    JOIN_REQUEST = "join_request"
    PROPOSAL = "proposal"


class BallotStatus(str, Enum):
    """
    Ballot lifecycle states

    Join requests: PENDING -> VOTING -> APPROVED | REJECTED
    Proposals:     VOTING -> APPROVED | REJECTED | EXPIRED
    """

    PENDING = "pending"  # Join request with no votes yet
    VOTING = "voting"  # At least one vote cast (proposals start here)
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"  # Proposal outlived its TTL

    @property
    def is_terminal(self) -> bool:
        return self in (BallotStatus.APPROVED, BallotStatus.REJECTED, BallotStatus.EXPIRED)


class ProposalAction(str, Enum):
    DEMOTE = "demote"  # Manager -> member
    KICK = "kick"  # Remove from the group


class VoteChoice(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Pending(BaseModel):
    """The vote was recorded; the ballot is still open"""

    outcome: Literal["pending"] = "pending"
    ballot_id: str
    status: BallotStatus
    approve_count: int
    reject_count: int
    required_votes: int
    reject_threshold: int


class ResolutionOutcome(BaseModel):
    """
    The ballot reached a terminal status in this operation

    Attributes:
        override_reason: Set when an approved proposal was turned into a
            rejection at resolution time (invariant or drifted membership)
    """

    outcome: Literal["resolved"] = "resolved"
    ballot_id: str
    status: BallotStatus
    approve_count: int
    reject_count: int
    required_votes: int
    override_reason: str | None = None


VoteResult = Pending | ResolutionOutcome
