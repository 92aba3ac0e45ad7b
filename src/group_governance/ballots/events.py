"""
Ballot Module Events - facts recorded on a ballot's stream

Each join request or proposal is its own stream. The resolving event
(BallotResolved or BallotExpired) is the last one a ballot stream ever gets;
the stream version check makes sure only one writer appends it.
"""

from datetime import datetime

from pydantic import BaseModel

from group_governance.ballots.models import (
    BallotKind,
    BallotStatus,
    ProposalAction,
    VoteChoice,
)

BALLOT_STREAM = "ballot"


class JoinRequested(BaseModel):
    """A non-member asked to join; thresholds are frozen here"""

    ballot_id: str
    group_id: str
    requester_id: str
    message: str | None = None
    eligible_count: int
    required_votes: int
    reject_threshold: int
    requested_at: datetime


class ProposalOpened(BaseModel):
    """A leader proposed demoting or kicking a member"""

    ballot_id: str
    group_id: str
    action: ProposalAction
    proposer_id: str
    target_id: str
    reason: str
    eligible_count: int
    required_votes: int
    reject_threshold: int
    opened_at: datetime
    expires_at: datetime


class VoteCast(BaseModel):
    """A vote was recorded; ``previous_choice`` is set when it overwrites one"""

    ballot_id: str
    voter_id: str
    choice: VoteChoice
    previous_choice: VoteChoice | None = None
    cast_at: datetime


class BallotResolved(BaseModel):
    """The tally reached quorum in one direction"""

    ballot_id: str
    group_id: str
    kind: BallotKind
    subject_id: str
    action: ProposalAction | None = None
    status: BallotStatus
    approve_count: int
    reject_count: int
    required_votes: int
    override_reason: str | None = None
    resolved_at: datetime


class BallotExpired(BaseModel):
    """A proposal outlived its TTL without reaching quorum"""

    ballot_id: str
    group_id: str
    subject_id: str
    action: ProposalAction
    approve_count: int
    reject_count: int
    required_votes: int
    expires_at: datetime
    expired_at: datetime
