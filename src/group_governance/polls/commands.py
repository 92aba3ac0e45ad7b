"""
Poll Module Commands

Option count bounds come from the policy and are checked by the handler.
"""

from pydantic import BaseModel, Field, NonNegativeInt


class CreatePoll(BaseModel):
    """
    Ask the group a question, optionally time-boxed

    ``allow_multiple`` lets a voter pick several options; on an anonymous
    poll the read side shows counts but not who picked what.
    """

    group_id: str
    question: str = Field(..., min_length=1, max_length=500)
    options: list[str]
    expires_in_minutes: int | None = Field(default=None, ge=1)
    allow_multiple: bool = False
    is_anonymous: bool = False


class CastPollVote(BaseModel):
    poll_id: str
    option_indices: list[NonNegativeInt] = Field(..., min_length=1)


class RetractPollVote(BaseModel):
    poll_id: str


class ClosePoll(BaseModel):
    poll_id: str
