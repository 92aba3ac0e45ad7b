"""
Ballot Module Commands - asking to join, proposing, voting
"""

from pydantic import BaseModel, Field

from group_governance.ballots.models import ProposalAction, VoteChoice


class RequestToJoin(BaseModel):
    """
    Ask the leaders of a group to admit you

    The message limit comes from the policy and is checked by the handler.
    """

    group_id: str
    message: str | None = None


class OpenProposal(BaseModel):
    """
    Propose demoting a manager or kicking a member

    The proposer's own approval is cast automatically.
    """

    group_id: str
    action: ProposalAction
    target_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=1000)


class CastVote(BaseModel):
    ballot_id: str
    choice: VoteChoice
