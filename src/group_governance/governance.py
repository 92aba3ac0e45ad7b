"""
GroupGovernance - Main façade class

This is the primary interface for the governance core. Every public method
is one short-lived operation: fold the streams it needs, let a handler
decide, commit the unit of work atomically, then write the governance log
and notify subscribers. No state survives between calls.

Example:
    >>> from group_governance import GroupGovernance
    >>> gov = GroupGovernance("governance.db")
    >>> group = gov.create_group("Allotment Society", actor_id="alice")
    >>> ballot = gov.request_to_join(group["group_id"], actor_id="bob")
    >>> gov.cast_vote(ballot["ballot_id"], "approve", actor_id="alice")
    >>> gov.sweep()  # Expire stale proposals, close overdue polls
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from group_governance.ballots.commands import CastVote, OpenProposal, RequestToJoin
from group_governance.ballots.handlers import BallotCommandHandlers
from group_governance.ballots.models import BallotKind, VoteResult
from group_governance.ballots.projections import BallotState, load_ballot
from group_governance.governance_log.recorder import entries_from_events
from group_governance.governance_log.store import GovernanceLogStore
from group_governance.kernel.bus import InProcessBus
from group_governance.kernel.errors import (
    Forbidden,
    InvalidInput,
    InvariantViolation,
    Unauthorized,
)
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event, create_event
from group_governance.kernel.ids import generate_id
from group_governance.kernel.logging import (
    LogOperation,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from group_governance.kernel.metrics import (
    ballots_opened_total,
    ballots_resolved_total,
    track_command_duration,
    votes_cast_total,
)
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import RealTimeProvider, TimeProvider
from group_governance.kernel.unit_of_work import UnitOfWork
from group_governance.membership.commands import (
    ChangeRole,
    CreateGroup,
    LeaveGroup,
    RemoveMember,
    TransferFounder,
    UpdateGroupSettings,
)
from group_governance.membership.handlers import MembershipCommandHandlers
from group_governance.membership.invariants import check_group_health
from group_governance.membership.models import TransparencyMode
from group_governance.membership.projections import GroupState
from group_governance.membership.store import MembershipStore
from group_governance.polls.commands import (
    CastPollVote,
    ClosePoll,
    CreatePoll,
    RetractPollVote,
)
from group_governance.polls.handlers import PollCommandHandlers
from group_governance.polls.projections import PollState, load_poll
from group_governance.sweeper import ExpirySweeper, SweepResult

logger = get_logger(__name__)

ALERT_STREAM = "alert"


class GroupGovernance:
    """
    Group Governance main façade

    Provides a unified API for:
    - Group lifecycle and direct membership actions
    - Join requests, demote/kick proposals and voting
    - Polls
    - The governance log (gated by transparency mode)
    - Expiry sweeps
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: GovernancePolicy | None = None,
        time_provider: TimeProvider | None = None,
        bus: InProcessBus | None = None,
    ) -> None:
        """
        Initialize the governance core

        Args:
            sqlite_path: Path to SQLite database
            policy: Governance policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            bus: Event bus for the notification dispatcher (new one if None)
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or GovernancePolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.bus = bus or InProcessBus()

        # Initialize infrastructure
        self.event_store = SQLiteEventStore(self.sqlite_path)
        self.log_store = GovernanceLogStore(self.sqlite_path)
        self.membership = MembershipStore(self.event_store, self.policy)

        self.membership_handlers = MembershipCommandHandlers(
            self.time_provider, self.policy, self.membership
        )
        self.ballot_handlers = BallotCommandHandlers(
            self.time_provider, self.policy, self.membership
        )
        self.poll_handlers = PollCommandHandlers(self.time_provider, self.policy)
        self.sweeper = ExpirySweeper(
            self.event_store,
            self.time_provider,
            self.policy,
            self.membership,
            self.ballot_handlers,
            self.poll_handlers,
            on_commit=self._after_commit,
        )

    # Plumbing

    @staticmethod
    def _require_actor(actor_id: str | None) -> str:
        if not actor_id or not actor_id.strip():
            raise Unauthorized()
        return actor_id

    @contextmanager
    def _operation(self, name: str, **context: Any) -> Iterator[None]:
        """
        One logged operation under a fresh correlation id

        Malformed command input surfaces as InvalidInput; blocked
        membership changes also raise a threshold alert on the bus.
        """
        set_correlation_id(generate_correlation_id())
        with LogOperation(logger, name, **context):
            try:
                yield
            except ValidationError as e:
                raise InvalidInput(self._validation_reason(e)) from e
            except InvariantViolation as e:
                self._alert(
                    e.group_id,
                    reason=e.reason,
                    leaders_after=e.leaders_after,
                    total_after=e.total_after,
                    blocked_operation=name,
                )
                raise

    @staticmethod
    def _validation_reason(error: ValidationError) -> str:
        first = error.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "input"
        return f"{field}: {first.get('msg', 'invalid value')}"

    def _commit(self, uow: UnitOfWork) -> list[Event]:
        events = self.event_store.commit(uow)
        self._after_commit(events)
        return events

    def _after_commit(self, events: list[Event]) -> None:
        """Derive log entries, count outcomes and notify subscribers"""
        if not events:
            return

        self.log_store.append_all(entries_from_events(events))

        ballot_kinds: dict[str, str] = {}
        for event in events:
            payload = event.payload
            if event.event_type == "JoinRequested":
                ballot_kinds[event.stream_id] = BallotKind.JOIN_REQUEST.value
                ballots_opened_total.labels(kind=BallotKind.JOIN_REQUEST.value).inc()
            elif event.event_type == "ProposalOpened":
                ballot_kinds[event.stream_id] = BallotKind.PROPOSAL.value
                ballots_opened_total.labels(kind=BallotKind.PROPOSAL.value).inc()
            elif event.event_type == "VoteCast":
                kind = ballot_kinds.get(event.stream_id) or self._ballot_kind(event.stream_id)
                votes_cast_total.labels(kind=kind, choice=payload["choice"]).inc()
            elif event.event_type == "BallotResolved":
                ballots_resolved_total.labels(kind=payload["kind"], status=payload["status"]).inc()
                if payload.get("override_reason"):
                    self._alert(
                        payload["group_id"],
                        reason=payload["override_reason"],
                        ballot_id=payload["ballot_id"],
                        blocked_operation="resolve_proposal",
                    )
            elif event.event_type == "BallotExpired":
                ballots_resolved_total.labels(
                    kind=BallotKind.PROPOSAL.value, status="expired"
                ).inc()

        self.bus.publish_events(events)

    def _ballot_kind(self, ballot_id: str) -> str:
        events = self.event_store.load_stream(ballot_id)
        if events and events[0].event_type == "JoinRequested":
            return BallotKind.JOIN_REQUEST.value
        return BallotKind.PROPOSAL.value

    def _alert(self, group_id: str, **payload: Any) -> None:
        """Publish a transient GovernanceThresholdBreached alert (never stored)"""
        alert = create_event(
            event_id=generate_id(),
            stream_id=group_id,
            stream_type=ALERT_STREAM,
            event_type="GovernanceThresholdBreached",
            occurred_at=self.time_provider.now(),
            command_id=generate_id(),
            version=1,
            payload={"group_id": group_id, **payload},
        )
        logger.warning("Governance threshold breached", group_id=group_id, **payload)
        self.bus.publish_event(alert)

    # Group operations

    @track_command_duration("create_group")
    def create_group(
        self,
        name: str,
        *,
        actor_id: str | None,
        transparency_mode: TransparencyMode | str = TransparencyMode.PUBLIC_MEMBERS,
        founders_only_rules: bool = False,
    ) -> dict[str, Any]:
        """
        Create a group; the actor becomes its founder

        Returns:
            Group dict with group_id
        """
        with self._operation("create_group", actor_id=actor_id):
            actor_id = self._require_actor(actor_id)
            command = CreateGroup(
                name=name,
                transparency_mode=transparency_mode,
                founders_only_rules=founders_only_rules,
            )
            uow = self.membership_handlers.handle_create_group(command, actor_id)
            events = self._commit(uow)
        return self.membership.load(events[0].stream_id).to_dict()

    @track_command_duration("change_role")
    def change_role(
        self, group_id: str, user_id: str, new_role: str, *, actor_id: str | None
    ) -> dict[str, Any]:
        """Promote a member to manager, or step down yourself"""
        with self._operation(
            "change_role", group_id=group_id, user_id=user_id, new_role=new_role, actor_id=actor_id
        ):
            actor_id = self._require_actor(actor_id)
            command = ChangeRole(group_id=group_id, user_id=user_id, new_role=new_role)
            group = self.membership.load(group_id)
            self._commit(self.membership_handlers.handle_change_role(command, group, actor_id))
        return self.membership.load(group_id).to_dict()

    @track_command_duration("leave_group")
    def leave_group(self, group_id: str, *, actor_id: str | None) -> dict[str, Any]:
        with self._operation("leave_group", group_id=group_id, actor_id=actor_id):
            actor_id = self._require_actor(actor_id)
            group = self.membership.load(group_id)
            uow = self.membership_handlers.handle_leave_group(
                LeaveGroup(group_id=group_id), group, actor_id
            )
            self._commit(uow)
        return self.membership.load(group_id).to_dict()

    @track_command_duration("remove_member")
    def remove_member(self, group_id: str, user_id: str, *, actor_id: str | None) -> dict[str, Any]:
        """Remove a plain member right away; managers need a kick proposal"""
        with self._operation(
            "remove_member", group_id=group_id, user_id=user_id, actor_id=actor_id
        ):
            actor_id = self._require_actor(actor_id)
            command = RemoveMember(group_id=group_id, user_id=user_id)
            group = self.membership.load(group_id)
            self._commit(self.membership_handlers.handle_remove_member(command, group, actor_id))
        return self.membership.load(group_id).to_dict()

    @track_command_duration("transfer_founder")
    def transfer_founder(
        self, group_id: str, new_founder_id: str, *, actor_id: str | None
    ) -> dict[str, Any]:
        with self._operation(
            "transfer_founder", group_id=group_id, new_founder_id=new_founder_id, actor_id=actor_id
        ):
            actor_id = self._require_actor(actor_id)
            command = TransferFounder(group_id=group_id, new_founder_id=new_founder_id)
            group = self.membership.load(group_id)
            self._commit(
                self.membership_handlers.handle_transfer_founder(command, group, actor_id)
            )
        return self.membership.load(group_id).to_dict()

    @track_command_duration("update_settings")
    def update_settings(
        self,
        group_id: str,
        *,
        actor_id: str | None,
        transparency_mode: TransparencyMode | str | None = None,
        founders_only_rules: bool | None = None,
    ) -> dict[str, Any]:
        """Change transparency mode and/or the founders-only-rules flag"""
        with self._operation("update_settings", group_id=group_id, actor_id=actor_id):
            actor_id = self._require_actor(actor_id)
            command = UpdateGroupSettings(
                group_id=group_id,
                transparency_mode=transparency_mode,
                founders_only_rules=founders_only_rules,
            )
            group = self.membership.load(group_id)
            self._commit(
                self.membership_handlers.handle_update_settings(command, group, actor_id)
            )
        return self.membership.load(group_id).to_dict()

    # Ballot operations

    @track_command_duration("request_to_join")
    def request_to_join(
        self, group_id: str, *, actor_id: str | None, message: str | None = None
    ) -> dict[str, Any]:
        """
        Ask to join a group

        Returns:
            Ballot dict with ballot_id and the frozen thresholds
        """
        with self._operation(
            "request_to_join", group_id=group_id, requester_id=actor_id, message=message
        ):
            actor_id = self._require_actor(actor_id)
            command = RequestToJoin(group_id=group_id, message=message)
            group = self.membership.load(group_id)
            uow = self.ballot_handlers.handle_request_to_join(command, group, actor_id)
            events = self._commit(uow)
        return load_ballot(self.event_store, events[0].stream_id).to_dict()

    @track_command_duration("open_proposal")
    def open_proposal(
        self,
        group_id: str,
        action: str,
        target_id: str,
        reason: str,
        *,
        actor_id: str | None,
    ) -> dict[str, Any]:
        """
        Propose demoting a manager or kicking a member

        The proposer's approval is cast automatically; the returned ballot
        may already be resolved when a single vote meets quorum.
        """
        with self._operation(
            "open_proposal", group_id=group_id, action=action, target_id=target_id, actor_id=actor_id
        ):
            actor_id = self._require_actor(actor_id)
            command = OpenProposal(
                group_id=group_id, action=action, target_id=target_id, reason=reason
            )
            group = self.membership.load(group_id)
            uow, _ = self.ballot_handlers.handle_open_proposal(command, group, actor_id)
            events = self._commit(uow)
        return load_ballot(self.event_store, events[0].stream_id).to_dict()

    @track_command_duration("cast_vote")
    def cast_vote(self, ballot_id: str, choice: str, *, actor_id: str | None) -> VoteResult:
        """
        Vote on a join request or proposal

        Returns:
            Pending while the ballot stays open, ResolutionOutcome when this
            vote resolved it

        Raises:
            StreamVersionConflict: Another writer touched the ballot or the
                group since it was read; re-fetch and retry
        """
        with self._operation("cast_vote", ballot_id=ballot_id, voter_id=actor_id, choice=choice):
            actor_id = self._require_actor(actor_id)
            command = CastVote(ballot_id=ballot_id, choice=choice)
            ballot = load_ballot(self.event_store, ballot_id)
            group = self.membership.load(ballot.group_id)
            uow, result = self.ballot_handlers.handle_cast_vote(command, ballot, group, actor_id)
            self._commit(uow)
        return result

    # Poll operations

    @track_command_duration("create_poll")
    def create_poll(
        self,
        group_id: str,
        question: str,
        options: list[str],
        *,
        actor_id: str | None,
        expires_in_minutes: int | None = None,
        allow_multiple: bool = False,
        is_anonymous: bool = False,
    ) -> dict[str, Any]:
        with self._operation("create_poll", group_id=group_id, actor_id=actor_id):
            actor_id = self._require_actor(actor_id)
            command = CreatePoll(
                group_id=group_id,
                question=question,
                options=options,
                expires_in_minutes=expires_in_minutes,
                allow_multiple=allow_multiple,
                is_anonymous=is_anonymous,
            )
            group = self.membership.load(group_id)
            events = self._commit(self.poll_handlers.handle_create_poll(command, group, actor_id))
        return load_poll(self.event_store, events[0].stream_id).to_dict()

    @track_command_duration("vote_poll")
    def vote_poll(
        self, poll_id: str, options: int | list[int], *, actor_id: str | None
    ) -> dict[str, Any]:
        """
        Vote for one option, or a list of options on a multiple-choice poll

        Voting again replaces the previous vote.
        """
        with self._operation("vote_poll", poll_id=poll_id, voter_id=actor_id):
            actor_id = self._require_actor(actor_id)
            option_indices = [options] if isinstance(options, int) else list(options)
            command = CastPollVote(poll_id=poll_id, option_indices=option_indices)
            poll = load_poll(self.event_store, poll_id)
            group = self.membership.load(poll.group_id)
            self._commit(self.poll_handlers.handle_cast_poll_vote(command, poll, group, actor_id))
        return load_poll(self.event_store, poll_id).to_dict()

    @track_command_duration("retract_poll_vote")
    def retract_poll_vote(self, poll_id: str, *, actor_id: str | None) -> dict[str, Any]:
        with self._operation("retract_poll_vote", poll_id=poll_id, voter_id=actor_id):
            actor_id = self._require_actor(actor_id)
            command = RetractPollVote(poll_id=poll_id)
            poll = load_poll(self.event_store, command.poll_id)
            self._commit(self.poll_handlers.handle_retract_poll_vote(command, poll, actor_id))
        return load_poll(self.event_store, poll_id).to_dict()

    @track_command_duration("close_poll")
    def close_poll(self, poll_id: str, *, actor_id: str | None) -> dict[str, Any]:
        """Close a poll early (creator or leader); the tally decides the winner"""
        with self._operation("close_poll", poll_id=poll_id, actor_id=actor_id):
            actor_id = self._require_actor(actor_id)
            command = ClosePoll(poll_id=poll_id)
            poll = load_poll(self.event_store, command.poll_id)
            group = self.membership.load(poll.group_id)
            self._commit(self.poll_handlers.handle_close_poll(poll, group, actor_id))
        return load_poll(self.event_store, poll_id).to_dict()

    # Sweeps

    def sweep(self) -> SweepResult:
        """Expire stale proposals and close overdue polls"""
        return self.sweeper.sweep()

    def sweep_proposals(self) -> SweepResult:
        return self.sweeper.sweep_proposals()

    def sweep_polls(self) -> SweepResult:
        return self.sweeper.sweep_polls()

    # Reads

    def get_group(self, group_id: str, *, viewer_id: str | None = None) -> dict[str, Any]:
        """
        Group details

        Viewers the transparency mode doesn't admit get the name and mode
        only: no roster, role counts, health or live ballots.
        """
        group = self.membership.load(group_id)
        if not self._can_view(group, viewer_id):
            return {
                "group_id": group.group_id,
                "name": group.name,
                "transparency_mode": group.transparency_mode.value,
            }
        data = group.to_dict()
        data["health"] = check_group_health(group.roster, self.policy).model_dump()
        return data

    def get_group_health(self, group_id: str) -> dict[str, Any]:
        group = self.membership.load(group_id)
        return check_group_health(group.roster, self.policy).model_dump()

    def get_ballot(self, ballot_id: str, *, viewer_id: str | None = None) -> dict[str, Any]:
        """
        A join request or proposal

        The requester may always read their own join request.
        """
        ballot = load_ballot(self.event_store, ballot_id)
        if viewer_id and viewer_id == ballot.subject_id and ballot.kind == BallotKind.JOIN_REQUEST:
            return ballot.to_dict()
        group = self.membership.load(ballot.group_id)
        self.log_store.check_access(group, viewer_id)
        return ballot.to_dict()

    def list_open_ballots(
        self, group_id: str, *, viewer_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Live join requests and proposals of a group, oldest first"""
        group = self.membership.load(group_id)
        self.log_store.check_access(group, viewer_id)
        ballot_ids = list(group.open_join_requests.values()) + list(group.open_proposals.values())
        ballots: list[BallotState] = [load_ballot(self.event_store, bid) for bid in ballot_ids]
        ballots.sort(key=lambda b: (b.created_at, b.ballot_id))
        return [ballot.to_dict() for ballot in ballots]

    def get_governance_log(
        self,
        group_id: str,
        *,
        viewer_id: str | None = None,
        action_type: str | None = None,
        target_user_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Governance log entries, newest first, gated by transparency mode"""
        group = self.membership.load(group_id)
        entries = self.log_store.query(
            group,
            viewer_id,
            action_type=action_type,
            target_user_id=target_user_id,
            limit=limit,
        )
        return [entry.model_dump(mode="json") for entry in entries]

    def get_poll(self, poll_id: str, *, viewer_id: str | None = None) -> dict[str, Any]:
        """A poll and its tally; members only unless the group is public_all"""
        poll: PollState = load_poll(self.event_store, poll_id)
        group = self.membership.load(poll.group_id)
        if group.transparency_mode != TransparencyMode.PUBLIC_ALL:
            if not viewer_id:
                raise Unauthorized("sign in to view this poll")
            if group.role_of(viewer_id) is None:
                raise Forbidden("only members can view this group's polls")
        return poll.to_dict()

    def _can_view(self, group: GroupState, viewer_id: str | None) -> bool:
        try:
            self.log_store.check_access(group, viewer_id)
        except (Unauthorized, Forbidden):
            return False
        return True

    def get_policy(self) -> GovernancePolicy:
        """Get current governance policy"""
        return self.policy

    def stats(self) -> dict[str, Any]:
        """Storage statistics for health checks"""
        return {
            "schema_version": self.event_store.schema_version(),
            "event_count": self.event_store.count_events(),
            "stream_count": self.event_store.count_streams(),
        }
