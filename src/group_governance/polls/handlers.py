"""
Poll Module Handlers - Command -> UnitOfWork for polls

A poll vote touches only the poll stream. Unlike ballot votes it does not
guard the group stream: a poll has no membership side effect, so a vote
racing a roster change can't leave the group in an illegal state.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel

from group_governance.kernel.errors import (
    Forbidden,
    GroupInViolation,
    InvalidInput,
    InvalidState,
    PollClosed,
)
from group_governance.kernel.events import Event
from group_governance.kernel.ids import generate_id
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import TimeProvider
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork
from group_governance.membership.invariants import GROUP_IN_VIOLATION, is_in_violation
from group_governance.membership.projections import GroupState
from group_governance.polls.commands import CastPollVote, CreatePoll, RetractPollVote
from group_governance.polls.events import (
    POLL_STREAM,
    PollCreated,
    PollVoteCast,
    PollVoteRetracted,
)
from group_governance.polls.events import PollClosed as PollClosedEvent
from group_governance.polls.projections import PollState


def record_poll_event(
    uow: UnitOfWork, poll: PollState, event_type: str, payload: BaseModel
) -> Event:
    """Stage an event on the poll stream and fold it into ``poll``"""
    uow.expect(poll.poll_id, poll.version)
    event = uow.record(poll.poll_id, POLL_STREAM, event_type, payload)
    poll.apply_event(event)
    return event


class PollCommandHandlers:
    """Command handlers for polls"""

    def __init__(self, time_provider: TimeProvider, policy: GovernancePolicy) -> None:
        self.time_provider = time_provider
        self.policy = policy

    def handle_create_poll(
        self, command: CreatePoll, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle CreatePoll command

        Raises:
            Forbidden: Actor is not a member
            GroupInViolation: Group breaks the minimum-leader rule
            InvalidInput: Option count out of bounds, or blank/duplicate options
        """
        if group.role_of(actor_id) is None:
            raise Forbidden("only members can create polls")

        counts = group.roster.counts
        if is_in_violation(counts, self.policy):
            raise GroupInViolation(group.group_id, GROUP_IN_VIOLATION, counts.leaders, counts.total)

        options = [option.strip() for option in command.options]
        if any(not option for option in options):
            raise InvalidInput("poll options cannot be blank")
        if len(set(options)) != len(options):
            raise InvalidInput("poll options must be distinct")
        if not self.policy.poll_min_options <= len(options) <= self.policy.poll_max_options:
            raise InvalidInput(
                f"a poll needs between {self.policy.poll_min_options} and "
                f"{self.policy.poll_max_options} options, got {len(options)}"
            )

        now = self.time_provider.now()
        expires_at = None
        if command.expires_in_minutes is not None:
            expires_at = now + timedelta(minutes=command.expires_in_minutes)

        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        poll = PollState(generate_id())
        record_poll_event(
            uow,
            poll,
            "PollCreated",
            PollCreated(
                poll_id=poll.poll_id,
                group_id=group.group_id,
                question=command.question,
                options=options,
                creator_id=actor_id,
                created_at=now,
                expires_at=expires_at,
                allow_multiple=command.allow_multiple,
                is_anonymous=command.is_anonymous,
            ),
        )
        if expires_at is not None:
            uow.schedule(
                Deadline(
                    stream_id=poll.poll_id,
                    stream_type=POLL_STREAM,
                    group_id=group.group_id,
                    due_at=expires_at,
                )
            )
        return uow

    def handle_cast_poll_vote(
        self,
        command: CastPollVote,
        poll: PollState,
        group: GroupState,
        actor_id: str,
    ) -> UnitOfWork:
        """
        Handle CastPollVote command (re-voting replaces the whole vote)

        Raises:
            PollClosed: Poll is closed or past its deadline
            Forbidden: Voter is not a member
            InvalidInput: Option index out of range, a repeated option, or
                several options on a single-choice poll
        """
        now = self.time_provider.now()
        self._require_open(poll, now)
        if group.role_of(actor_id) is None:
            raise Forbidden("only members can vote in polls")

        chosen = sorted(command.option_indices)
        if len(set(chosen)) != len(chosen):
            raise InvalidInput("each option can be picked only once")
        if len(chosen) > 1 and not poll.allow_multiple:
            raise InvalidInput("this poll allows a single choice")
        if chosen[-1] >= len(poll.options):
            raise InvalidInput(
                f"option {chosen[-1]} does not exist; the poll has {len(poll.options)} options"
            )

        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        previous = poll.votes.get(actor_id)
        if previous == chosen:
            return uow

        record_poll_event(
            uow,
            poll,
            "PollVoteCast",
            PollVoteCast(
                poll_id=poll.poll_id,
                voter_id=actor_id,
                option_indices=chosen,
                previous_options=previous,
                cast_at=now,
            ),
        )
        return uow

    def handle_retract_poll_vote(
        self, command: RetractPollVote, poll: PollState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle RetractPollVote command

        Raises:
            PollClosed: Poll is closed or past its deadline
            InvalidState: The actor has no vote in this poll
        """
        now = self.time_provider.now()
        self._require_open(poll, now)

        previous = poll.votes.get(actor_id)
        if previous is None:
            raise InvalidState("you haven't voted in this poll")

        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        record_poll_event(
            uow,
            poll,
            "PollVoteRetracted",
            PollVoteRetracted(
                poll_id=command.poll_id,
                voter_id=actor_id,
                option_indices=previous,
                retracted_at=now,
            ),
        )
        return uow

    @staticmethod
    def _require_open(poll: PollState, now: datetime) -> None:
        if not poll.is_open or (poll.expires_at is not None and now >= poll.expires_at):
            raise PollClosed(poll.poll_id)

    def handle_close_poll(
        self, poll: PollState, group: GroupState, actor_id: str | None
    ) -> UnitOfWork:
        """
        Close a poll by its current tally

        With an actor, the creator or a leader closes it early. Without
        one (the sweeper), the poll must be past its deadline.

        Raises:
            PollClosed: Already closed
            Forbidden: Actor is neither the creator nor a leader
            InvalidState: Sweeper called before the deadline
        """
        if not poll.is_open:
            raise PollClosed(poll.poll_id)

        now = self.time_provider.now()
        if actor_id is None:
            if poll.expires_at is None or now < poll.expires_at:
                raise InvalidState(f"poll {poll.poll_id} has not reached its deadline")
            closed_by = "deadline"
        else:
            role = group.role_of(actor_id)
            if actor_id != poll.creator_id and (role is None or not role.is_leader):
                raise Forbidden("only the poll creator or a leader can close a poll")
            closed_by = "member"

        result = poll.result()
        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        record_poll_event(
            uow,
            poll,
            "PollClosed",
            PollClosedEvent(
                poll_id=poll.poll_id,
                group_id=poll.group_id,
                counts=result.counts,
                winner_index=result.winner_index,
                closed_by=closed_by,
                closed_at=now,
            ),
        )
        uow.clear_deadline(poll.poll_id)
        return uow
