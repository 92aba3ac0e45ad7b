"""
Poll Projections - one poll folded from its stream

Per-option counts move with each vote (an overwrite or a retraction
decrements the old options), so closing a poll reads the tally directly.
"""

from datetime import datetime
from typing import Any

from group_governance.kernel.errors import PollNotFound
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event
from group_governance.polls.models import PollResult, PollStatus


class PollState:
    """Projection: a poll, its votes and its running tally"""

    def __init__(self, poll_id: str) -> None:
        self.poll_id = poll_id
        self.group_id: str = ""
        self.question: str = ""
        self.options: list[str] = []
        self.creator_id: str = ""
        self.status = PollStatus.OPEN
        self.allow_multiple = False
        self.is_anonymous = False
        self.votes: dict[str, list[int]] = {}
        self.counts: list[int] = []
        self.created_at: datetime | None = None
        self.expires_at: datetime | None = None
        self.closed_at: datetime | None = None
        self.version = 0

    @property
    def exists(self) -> bool:
        return self.version > 0

    @property
    def is_open(self) -> bool:
        return self.exists and self.status == PollStatus.OPEN

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload

        if event.event_type == "PollCreated":
            self.group_id = payload["group_id"]
            self.question = payload["question"]
            self.options = list(payload["options"])
            self.counts = [0] * len(self.options)
            self.creator_id = payload["creator_id"]
            self.allow_multiple = payload.get("allow_multiple", False)
            self.is_anonymous = payload.get("is_anonymous", False)
            self.created_at = datetime.fromisoformat(payload["created_at"])
            if payload.get("expires_at"):
                self.expires_at = datetime.fromisoformat(payload["expires_at"])

        elif event.event_type == "PollVoteCast":
            self._withdraw(payload["voter_id"])
            for index in payload["option_indices"]:
                self.counts[index] += 1
            self.votes[payload["voter_id"]] = list(payload["option_indices"])

        elif event.event_type == "PollVoteRetracted":
            self._withdraw(payload["voter_id"])

        elif event.event_type == "PollClosed":
            self.status = PollStatus.CLOSED
            self.closed_at = datetime.fromisoformat(payload["closed_at"])

        self.version = event.version

    def _withdraw(self, voter_id: str) -> None:
        for index in self.votes.pop(voter_id, []):
            self.counts[index] -= 1

    def result(self) -> PollResult:
        """Current tally; the winner is the unique top option, if any"""
        winner_index = None
        if self.counts:
            top = max(self.counts)
            leaders = [i for i, count in enumerate(self.counts) if count == top]
            if top > 0 and len(leaders) == 1:
                winner_index = leaders[0]
        return PollResult(
            poll_id=self.poll_id,
            counts=list(self.counts),
            winner_index=winner_index,
            winner=self.options[winner_index] if winner_index is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for read APIs and the CLI"""
        result = self.result()
        # Anonymous polls show counts, never who picked what
        votes = None
        if not self.is_anonymous:
            votes = {voter_id: list(indices) for voter_id, indices in self.votes.items()}
        return {
            "poll_id": self.poll_id,
            "group_id": self.group_id,
            "question": self.question,
            "options": [
                {"label": label, "count": count}
                for label, count in zip(self.options, self.counts)
            ],
            "creator_id": self.creator_id,
            "status": self.status.value,
            "allow_multiple": self.allow_multiple,
            "is_anonymous": self.is_anonymous,
            "total_votes": len(self.votes),
            "votes": votes,
            "winner": result.winner,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "version": self.version,
        }

    @classmethod
    def from_events(cls, poll_id: str, events: list[Event]) -> "PollState":
        state = cls(poll_id)
        for event in events:
            state.apply_event(event)
        return state


def load_poll(event_store: SQLiteEventStore, poll_id: str) -> PollState:
    """
    Fold a poll's stream

    Raises:
        PollNotFound: If the poll has no events
    """
    state = PollState.from_events(poll_id, event_store.load_stream(poll_id))
    if not state.exists:
        raise PollNotFound(poll_id)
    return state
