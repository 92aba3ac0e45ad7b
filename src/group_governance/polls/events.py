"""
Poll Module Events - facts recorded on a poll's stream
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from group_governance.kernel.upcasting import upcasters

POLL_STREAM = "poll"


class PollCreated(BaseModel):
    poll_id: str
    group_id: str
    question: str
    options: list[str]
    creator_id: str
    created_at: datetime
    expires_at: datetime | None = None
    allow_multiple: bool = False
    is_anonymous: bool = False


class PollVoteCast(BaseModel):
    """
    A member picked one or more options

    ``option_indices`` is sorted; ``previous_options`` is set on overwrite.
    """

    poll_id: str
    voter_id: str
    option_indices: list[int]
    previous_options: list[int] | None = None
    cast_at: datetime


@upcasters.register("PollVoteCast", from_version=1)
def _poll_vote_cast_v1_to_v2(payload: dict) -> dict:
    # v1 polls were single-choice
    upgraded = {
        k: v for k, v in payload.items() if k not in ("option_index", "previous_option")
    }
    upgraded["option_indices"] = [payload["option_index"]]
    previous = payload.get("previous_option")
    upgraded["previous_options"] = None if previous is None else [previous]
    return upgraded


class PollVoteRetracted(BaseModel):
    """A member withdrew their vote while the poll was open"""

    poll_id: str
    voter_id: str
    option_indices: list[int]
    retracted_at: datetime


class PollClosed(BaseModel):
    """Voting ended, manually or by deadline"""

    poll_id: str
    group_id: str
    counts: list[int]
    winner_index: int | None = None
    closed_by: Literal["member", "deadline"]
    closed_at: datetime
