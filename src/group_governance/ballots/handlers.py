"""
Ballot Module Handlers - Command -> UnitOfWork for join requests and proposals

Handlers are the decision-making layer. They:
1. Receive the current BallotState and GroupState (folded by the caller)
2. Validate eligibility and lifecycle state
3. Stage the vote, and the resolution if the tally now calls for one
4. Return the UnitOfWork for the caller to commit

Resolution is never a separate step: the vote that reaches quorum, the
terminal status and the membership mutation are staged into one unit, and
the unit guards both the ballot stream and the group stream. Whoever
commits second gets a StreamVersionConflict, so a ballot resolves once.

Fun fact: Handlers should be "almost boring" - the quorum arithmetic lives
in tally.py and the membership rule in membership/invariants.py.
"""

from datetime import timedelta

from pydantic import BaseModel

from group_governance.ballots.commands import CastVote, OpenProposal, RequestToJoin
from group_governance.ballots.events import (
    BALLOT_STREAM,
    BallotExpired,
    BallotResolved,
    JoinRequested,
    ProposalOpened,
    VoteCast,
)
from group_governance.ballots.models import (
    BallotKind,
    BallotStatus,
    Pending,
    ProposalAction,
    ResolutionOutcome,
    VoteChoice,
    VoteResult,
)
from group_governance.ballots.projections import BallotState
from group_governance.ballots.tally import compute_quorum, decide
from group_governance.kernel.errors import (
    AlreadyMember,
    BallotClosed,
    DuplicateLiveBallot,
    Forbidden,
    InvalidInput,
    InvalidState,
    InvalidTarget,
    MemberNotFound,
)
from group_governance.kernel.events import Event
from group_governance.kernel.ids import generate_id
from group_governance.kernel.logging import get_logger
from group_governance.kernel.metrics import invariant_rejections_total
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import TimeProvider
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork
from group_governance.membership.events import BallotClosed as BallotClosedMarker
from group_governance.membership.events import BallotOpened
from group_governance.membership.invariants import Demote, Remove, check_invariant
from group_governance.membership.models import Role
from group_governance.membership.projections import GroupState
from group_governance.membership.store import MembershipStore, record_group_event

logger = get_logger(__name__)


def record_ballot_event(
    uow: UnitOfWork, ballot: BallotState, event_type: str, payload: BaseModel
) -> Event:
    """Stage an event on the ballot stream and fold it into ``ballot``"""
    uow.expect(ballot.ballot_id, ballot.version)
    event = uow.record(ballot.ballot_id, BALLOT_STREAM, event_type, payload)
    ballot.apply_event(event)
    return event


class BallotCommandHandlers:
    """
    Command handlers for join requests, proposals and votes
    """

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
        membership: MembershipStore,
    ) -> None:
        """
        Initialize handlers with dependencies

        Args:
            time_provider: For timestamps (injectable for testing)
            policy: Governance parameters (TTL, message limit, rule)
            membership: Stages invariant-gated roster mutations
        """
        self.time_provider = time_provider
        self.policy = policy
        self.membership = membership

    def handle_request_to_join(
        self, command: RequestToJoin, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle RequestToJoin command

        Every current leader is an eligible voter. Join requests have no
        expiry deadline.

        Raises:
            AlreadyMember: Actor already belongs to the group
            DuplicateLiveBallot: Actor already has a live request
            InvalidInput: Message exceeds the policy limit
        """
        if group.role_of(actor_id) is not None:
            raise AlreadyMember(group.group_id, actor_id)

        live = group.open_join_requests.get(actor_id)
        if live is not None:
            raise DuplicateLiveBallot(group.group_id, actor_id, live)

        message = command.message.strip() if command.message else None
        if message and len(message) > self.policy.max_join_message_length:
            raise InvalidInput(
                f"join message is {len(message)} characters; "
                f"the limit is {self.policy.max_join_message_length}"
            )

        eligible = group.roster.counts.leaders
        required_votes, reject_threshold = compute_quorum(eligible)

        uow = UnitOfWork(occurred_at=self.time_provider.now(), actor_id=actor_id)
        ballot = BallotState(generate_id())

        record_ballot_event(
            uow,
            ballot,
            "JoinRequested",
            JoinRequested(
                ballot_id=ballot.ballot_id,
                group_id=group.group_id,
                requester_id=actor_id,
                message=message or None,
                eligible_count=eligible,
                required_votes=required_votes,
                reject_threshold=reject_threshold,
                requested_at=uow.occurred_at,
            ),
        )
        self._mark_opened(uow, ballot, group)
        return uow

    def handle_open_proposal(
        self, command: OpenProposal, group: GroupState, actor_id: str
    ) -> tuple[UnitOfWork, VoteResult]:
        """
        Handle OpenProposal command

        Validates:
        - Proposer is a leader and not the target
        - Target is a member and not the founder
        - Demotions target managers
        - No other live proposal targets the same member

        The proposer's approval is cast in the same unit. When that alone
        reaches quorum (a single eligible voter) the proposal resolves at
        once, invariant check included.

        Returns:
            (unit of work, Pending or ResolutionOutcome)
        """
        proposer_role = group.role_of(actor_id)
        if proposer_role is None or not proposer_role.is_leader:
            raise Forbidden("only managers and founders can open proposals")

        target_role = group.role_of(command.target_id)
        if target_role is None:
            raise MemberNotFound(group.group_id, command.target_id)
        if command.target_id == actor_id:
            raise InvalidTarget("you cannot open a proposal against yourself; step down instead")
        if target_role == Role.FOUNDER:
            raise InvalidTarget("the founder cannot be demoted or kicked")
        if command.action == ProposalAction.DEMOTE and target_role != Role.MANAGER:
            raise InvalidTarget(f"{command.target_id} is not a manager")

        live = group.open_proposals.get(command.target_id)
        if live is not None:
            raise DuplicateLiveBallot(group.group_id, command.target_id, live)

        # The target never votes on their own fate
        eligible = group.roster.counts.leaders - (1 if target_role.is_leader else 0)
        required_votes, reject_threshold = compute_quorum(eligible)

        now = self.time_provider.now()
        expires_at = now + timedelta(hours=self.policy.proposal_ttl_hours)
        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        ballot = BallotState(generate_id())

        record_ballot_event(
            uow,
            ballot,
            "ProposalOpened",
            ProposalOpened(
                ballot_id=ballot.ballot_id,
                group_id=group.group_id,
                action=command.action,
                proposer_id=actor_id,
                target_id=command.target_id,
                reason=command.reason,
                eligible_count=eligible,
                required_votes=required_votes,
                reject_threshold=reject_threshold,
                opened_at=now,
                expires_at=expires_at,
            ),
        )
        self._mark_opened(uow, ballot, group)
        uow.schedule(
            Deadline(
                stream_id=ballot.ballot_id,
                stream_type=BALLOT_STREAM,
                group_id=group.group_id,
                due_at=expires_at,
            )
        )

        self._record_vote(uow, ballot, actor_id, VoteChoice.APPROVE)
        return uow, self._evaluate(uow, ballot, group)

    def handle_cast_vote(
        self,
        command: CastVote,
        ballot: BallotState,
        group: GroupState,
        actor_id: str,
    ) -> tuple[UnitOfWork, VoteResult]:
        """
        Handle CastVote command

        A second vote by the same voter overwrites the first. Re-casting
        the same choice records nothing new but still re-runs resolution,
        which is how a join approval blocked by a group in violation is
        retried once the group has promoted another leader.

        Raises:
            BallotClosed: Ballot is terminal or past its expiry time
            Forbidden: Voter is not a current leader, or is the target
            GroupInViolation / MinimumLeaderViolation: An approving join
                vote would admit into a group breaking the rule
        """
        now = self.time_provider.now()
        if not ballot.is_open:
            raise BallotClosed(ballot.ballot_id, ballot.status.value)
        if ballot.expires_at is not None and now >= ballot.expires_at:
            raise BallotClosed(ballot.ballot_id, BallotStatus.EXPIRED.value)

        voter_role = group.role_of(actor_id)
        if voter_role is None or not voter_role.is_leader:
            raise Forbidden("only managers and founders can vote")
        if ballot.kind == BallotKind.PROPOSAL and actor_id == ballot.subject_id:
            raise Forbidden("the target of a proposal cannot vote on it")

        uow = UnitOfWork(occurred_at=now, actor_id=actor_id)
        uow.expect(ballot.ballot_id, ballot.version)
        # Read guard: the roster that made this voter eligible must not move
        uow.expect(group.group_id, group.version)

        if ballot.votes.get(actor_id) != command.choice:
            self._record_vote(uow, ballot, actor_id, command.choice)

        return uow, self._evaluate(uow, ballot, group)

    def handle_expire(self, ballot: BallotState, group: GroupState) -> UnitOfWork:
        """
        Force an overdue proposal to EXPIRED, regardless of its tally

        Raises:
            InvalidState: Ballot is a join request, or not yet due
            BallotClosed: Ballot already reached a terminal status
        """
        if ballot.kind != BallotKind.PROPOSAL or ballot.expires_at is None:
            raise InvalidState("join requests do not expire")
        if not ballot.is_open:
            raise BallotClosed(ballot.ballot_id, ballot.status.value)

        now = self.time_provider.now()
        if now < ballot.expires_at:
            raise InvalidState(
                f"proposal {ballot.ballot_id} is open until {ballot.expires_at.isoformat()}"
            )

        uow = UnitOfWork(occurred_at=now, actor_id=None)
        record_ballot_event(
            uow,
            ballot,
            "BallotExpired",
            BallotExpired(
                ballot_id=ballot.ballot_id,
                group_id=group.group_id,
                subject_id=ballot.subject_id,
                action=ballot.action,
                approve_count=ballot.approve_count,
                reject_count=ballot.reject_count,
                required_votes=ballot.required_votes,
                expires_at=ballot.expires_at,
                expired_at=now,
            ),
        )
        self._mark_closed(uow, ballot, group)
        return uow

    # Internals

    def _record_vote(
        self, uow: UnitOfWork, ballot: BallotState, voter_id: str, choice: VoteChoice
    ) -> None:
        record_ballot_event(
            uow,
            ballot,
            "VoteCast",
            VoteCast(
                ballot_id=ballot.ballot_id,
                voter_id=voter_id,
                choice=choice,
                previous_choice=ballot.votes.get(voter_id),
                cast_at=uow.occurred_at,
            ),
        )

    def _evaluate(self, uow: UnitOfWork, ballot: BallotState, group: GroupState) -> VoteResult:
        status = decide(
            ballot.approve_count,
            ballot.reject_count,
            ballot.required_votes,
            ballot.reject_threshold,
        )
        if status is None:
            return Pending(
                ballot_id=ballot.ballot_id,
                status=ballot.status,
                approve_count=ballot.approve_count,
                reject_count=ballot.reject_count,
                required_votes=ballot.required_votes,
                reject_threshold=ballot.reject_threshold,
            )
        return self._resolve(uow, ballot, group, status)

    def _resolve(
        self,
        uow: UnitOfWork,
        ballot: BallotState,
        group: GroupState,
        status: BallotStatus,
    ) -> ResolutionOutcome:
        """
        Stage the terminal status and its membership side effect

        An approved join request admits the requester (raising if the rule
        forbids it, so nothing is staged). An approved proposal that can no
        longer be applied legally resolves REJECTED with an override reason.
        """
        override_reason = None
        if status == BallotStatus.APPROVED:
            if ballot.kind == BallotKind.JOIN_REQUEST:
                self.membership.admit(
                    uow, group, ballot.subject_id, via_ballot_id=ballot.ballot_id
                )
            else:
                override_reason = self._apply_proposal(uow, ballot, group)
                if override_reason is not None:
                    status = BallotStatus.REJECTED

        record_ballot_event(
            uow,
            ballot,
            "BallotResolved",
            BallotResolved(
                ballot_id=ballot.ballot_id,
                group_id=group.group_id,
                kind=ballot.kind,
                subject_id=ballot.subject_id,
                action=ballot.action,
                status=status,
                approve_count=ballot.approve_count,
                reject_count=ballot.reject_count,
                required_votes=ballot.required_votes,
                override_reason=override_reason,
                resolved_at=uow.occurred_at,
            ),
        )
        self._mark_closed(uow, ballot, group)

        return ResolutionOutcome(
            ballot_id=ballot.ballot_id,
            status=status,
            approve_count=ballot.approve_count,
            reject_count=ballot.reject_count,
            required_votes=ballot.required_votes,
            override_reason=override_reason,
        )

    def _apply_proposal(
        self, uow: UnitOfWork, ballot: BallotState, group: GroupState
    ) -> str | None:
        """Stage the demotion/removal, or return why it can't be applied"""
        target_id = ballot.subject_id
        target_role = group.role_of(target_id)

        if target_role is None:
            return f"{target_id} is no longer a member"
        if target_role == Role.FOUNDER:
            return f"{target_id} is now the founder"
        if ballot.action == ProposalAction.DEMOTE and target_role != Role.MANAGER:
            return f"{target_id} is no longer a manager"

        if ballot.action == ProposalAction.DEMOTE:
            change = Demote(user_id=target_id)
        else:
            change = Remove(user_id=target_id)

        check = check_invariant(group.roster, change, self.policy)
        if not check.ok:
            invariant_rejections_total.labels(reason=check.reason).inc()
            logger.warning(
                "Approved proposal overridden by invariant",
                group_id=group.group_id,
                ballot_id=ballot.ballot_id,
                action=ballot.action.value,
                reason=check.reason,
                leaders_after=check.leaders_after,
                total_after=check.total_after,
            )
            return check.reason

        if ballot.action == ProposalAction.DEMOTE:
            self.membership.set_role(
                uow, group, target_id, Role.MEMBER, via_ballot_id=ballot.ballot_id
            )
        else:
            self.membership.remove(
                uow, group, target_id, cause="kicked", via_ballot_id=ballot.ballot_id
            )
        return None

    def _mark_opened(self, uow: UnitOfWork, ballot: BallotState, group: GroupState) -> None:
        record_group_event(
            uow,
            group,
            "BallotOpened",
            BallotOpened(
                group_id=group.group_id,
                ballot_id=ballot.ballot_id,
                kind=ballot.kind.value,
                subject_id=ballot.subject_id,
                opened_at=uow.occurred_at,
            ),
        )

    def _mark_closed(self, uow: UnitOfWork, ballot: BallotState, group: GroupState) -> None:
        record_group_event(
            uow,
            group,
            "BallotClosed",
            BallotClosedMarker(
                group_id=group.group_id,
                ballot_id=ballot.ballot_id,
                kind=ballot.kind.value,
                subject_id=ballot.subject_id,
                status=ballot.status.value,
                closed_at=uow.occurred_at,
            ),
        )
        if ballot.kind == BallotKind.PROPOSAL:
            uow.clear_deadline(ballot.ballot_id)
