"""
Membership Store - who belongs to a group, and in what role

Reads fold the group stream into a GroupState. Mutations are staged into
the caller's UnitOfWork after the invariant checker has approved them, so a
rejected change writes nothing. The store never writes governance log
entries; the log is derived from the committed events by the caller.
"""

from pydantic import BaseModel

from group_governance.kernel.errors import GroupNotFound, InvariantViolation, MemberNotFound
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event
from group_governance.kernel.logging import get_logger
from group_governance.kernel.metrics import invariant_rejections_total
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.unit_of_work import UnitOfWork
from group_governance.membership.events import (
    GROUP_STREAM,
    FounderTransferred,
    MemberAdmitted,
    MemberRemoved,
    MemberRoleChanged,
)
from group_governance.membership.invariants import (
    Admit,
    BulkRoleChange,
    Demote,
    Promote,
    Remove,
    enforce_invariant,
)
from group_governance.membership.models import Role, RoleCounts
from group_governance.membership.projections import GroupState

logger = get_logger(__name__)


def record_group_event(
    uow: UnitOfWork, group: GroupState, event_type: str, payload: BaseModel
) -> Event:
    """Stage an event on the group stream and fold it into ``group``"""
    uow.expect(group.group_id, group.version)
    event = uow.record(group.group_id, GROUP_STREAM, event_type, payload)
    # Keep the in-memory roster current for later checks in the same unit
    group.apply_event(event)
    return event


class MembershipStore:
    """Durable roster access backed by the group streams"""

    def __init__(self, event_store: SQLiteEventStore, policy: GovernancePolicy) -> None:
        self.event_store = event_store
        self.policy = policy

    # Reads

    def load(self, group_id: str) -> GroupState:
        """
        Fold a group's stream

        Raises:
            GroupNotFound: If the group has no events
        """
        state = GroupState.from_events(group_id, self.event_store.load_stream(group_id))
        if not state.exists:
            raise GroupNotFound(group_id)
        return state

    def get_role(self, group_id: str, user_id: str) -> Role | None:
        return self.load(group_id).role_of(user_id)

    def count_by_role(self, group_id: str) -> RoleCounts:
        return self.load(group_id).roster.counts.model_copy()

    # Mutations (staged into a unit of work)

    def admit(
        self,
        uow: UnitOfWork,
        group: GroupState,
        user_id: str,
        *,
        role: Role = Role.MEMBER,
        via_ballot_id: str | None = None,
    ) -> Event:
        """
        Stage a new membership

        Raises:
            GroupInViolation: If the group already breaks the rule
            MinimumLeaderViolation: If admission itself would break it
        """
        self._enforce(group, Admit(user_id=user_id))
        return record_group_event(
            uow,
            group,
            "MemberAdmitted",
            MemberAdmitted(
                group_id=group.group_id,
                user_id=user_id,
                role=role,
                joined_at=uow.occurred_at,
                via_ballot_id=via_ballot_id,
            ),
        )

    def set_role(
        self,
        uow: UnitOfWork,
        group: GroupState,
        user_id: str,
        new_role: Role,
        *,
        via_ballot_id: str | None = None,
    ) -> Event:
        """
        Stage a promotion or demotion

        Raises:
            MemberNotFound: If the user is not in the group
            MinimumLeaderViolation: If a demotion would break the rule
        """
        old_role = group.role_of(user_id)
        if old_role is None:
            raise MemberNotFound(group.group_id, user_id)

        if new_role.is_leader and not old_role.is_leader:
            change = Promote(user_id=user_id)
        elif old_role.is_leader and not new_role.is_leader:
            change = Demote(user_id=user_id)
        else:
            change = BulkRoleChange(changes={user_id: new_role})
        self._enforce(group, change)

        return record_group_event(
            uow,
            group,
            "MemberRoleChanged",
            MemberRoleChanged(
                group_id=group.group_id,
                user_id=user_id,
                old_role=old_role,
                new_role=new_role,
                changed_at=uow.occurred_at,
                via_ballot_id=via_ballot_id,
            ),
        )

    def remove(
        self,
        uow: UnitOfWork,
        group: GroupState,
        user_id: str,
        *,
        cause: str,
        via_ballot_id: str | None = None,
    ) -> Event:
        """
        Stage a removal (leave or kick)

        Raises:
            MemberNotFound: If the user is not in the group
            MinimumLeaderViolation: If removing a leader would break the rule
        """
        old_role = group.role_of(user_id)
        if old_role is None:
            raise MemberNotFound(group.group_id, user_id)

        self._enforce(group, Remove(user_id=user_id))
        return record_group_event(
            uow,
            group,
            "MemberRemoved",
            MemberRemoved(
                group_id=group.group_id,
                user_id=user_id,
                old_role=old_role,
                removed_at=uow.occurred_at,
                cause=cause,
                via_ballot_id=via_ballot_id,
            ),
        )

    def transfer_founder(self, uow: UnitOfWork, group: GroupState, new_founder_id: str) -> Event:
        """Stage a founder swap; both users stay leaders"""
        previous = group.founder_id
        if previous is None or group.role_of(new_founder_id) is None:
            raise MemberNotFound(group.group_id, new_founder_id)

        self._enforce(
            group,
            BulkRoleChange(changes={previous: Role.MANAGER, new_founder_id: Role.FOUNDER}),
        )
        return record_group_event(
            uow,
            group,
            "FounderTransferred",
            FounderTransferred(
                group_id=group.group_id,
                previous_founder_id=previous,
                new_founder_id=new_founder_id,
                transferred_at=uow.occurred_at,
            ),
        )

    def _enforce(self, group: GroupState, change) -> None:
        try:
            enforce_invariant(group.group_id, group.roster, change, self.policy)
        except InvariantViolation as e:
            invariant_rejections_total.labels(reason=e.reason).inc()
            logger.warning(
                "Membership change blocked by invariant",
                group_id=group.group_id,
                change=change.kind,
                reason=e.reason,
                leaders_after=e.leaders_after,
                total_after=e.total_after,
            )
            raise

