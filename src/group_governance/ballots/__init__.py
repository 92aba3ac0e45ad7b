"""
Ballots Module - join requests, demote/kick proposals and the vote tally

Join requests and proposals share one set of mechanics:
- A quorum frozen at creation (simple majority of eligible leaders)
- One vote per voter, overwritten on re-cast
- Exactly-once resolution, staged with the vote that triggers it
- Proposals expire after the policy TTL; join requests wait indefinitely
"""

from group_governance.ballots.models import (
    BallotKind,
    BallotStatus,
    Pending,
    ProposalAction,
    ResolutionOutcome,
    VoteChoice,
)
from group_governance.ballots.projections import BallotState
from group_governance.ballots.tally import compute_quorum, decide

__all__ = [
    "BallotKind",
    "BallotStatus",
    "ProposalAction",
    "VoteChoice",
    "Pending",
    "ResolutionOutcome",
    "BallotState",
    "compute_quorum",
    "decide",
]
