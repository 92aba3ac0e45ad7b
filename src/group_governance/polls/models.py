"""
Poll Domain Models

Polls are the lightweight sibling of ballots: any member may vote, nothing
happens to the roster when they close, and a deadline closes them by
whatever the tally says at that moment.
"""

from enum import Enum

from pydantic import BaseModel


class PollStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PollResult(BaseModel):
    """
    Final tally of a closed poll

    Attributes:
        winner_index: Option with the most votes; None on a tie or no votes
    """

    poll_id: str
    counts: list[int]
    winner_index: int | None = None
    winner: str | None = None
