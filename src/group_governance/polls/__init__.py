"""
Polls Module - time-boxed group polls (single or multiple choice)

Any member may create a poll (unless the group breaks the minimum-leader
rule) and vote once, changing or withdrawing the vote until it closes.
Polls with a deadline are closed by the sweeper using the tally at that
moment.
"""

from group_governance.polls.models import PollResult, PollStatus
from group_governance.polls.projections import PollState

__all__ = [
    "PollStatus",
    "PollResult",
    "PollState",
]
