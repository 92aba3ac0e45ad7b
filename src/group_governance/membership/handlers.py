"""
Membership Module Handlers - Command -> UnitOfWork for direct actions

Handlers are the decision-making layer. They:
1. Receive the current GroupState (folded by the caller)
2. Check the actor's authority and the target's eligibility
3. Stage membership changes through the MembershipStore (invariant-gated)
4. Return the UnitOfWork for the caller to commit
"""

from group_governance.kernel.errors import (
    Forbidden,
    GroupInViolation,
    InvalidTarget,
    MemberNotFound,
)
from group_governance.kernel.ids import generate_id
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import TimeProvider
from group_governance.kernel.unit_of_work import UnitOfWork
from group_governance.membership.commands import (
    ChangeRole,
    CreateGroup,
    LeaveGroup,
    RemoveMember,
    TransferFounder,
    UpdateGroupSettings,
)
from group_governance.membership.events import GroupCreated, GroupSettingsUpdated
from group_governance.membership.invariants import GROUP_IN_VIOLATION, is_in_violation
from group_governance.membership.models import Role
from group_governance.membership.projections import GroupState
from group_governance.membership.store import MembershipStore, record_group_event


class MembershipCommandHandlers:
    """
    Command handlers for direct membership actions

    Every handler returns an uncommitted UnitOfWork; raising leaves nothing
    staged anywhere.
    """

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
        store: MembershipStore,
    ) -> None:
        self.time_provider = time_provider
        self.policy = policy
        self.store = store

    def _new_uow(self, actor_id: str) -> UnitOfWork:
        return UnitOfWork(occurred_at=self.time_provider.now(), actor_id=actor_id)

    def handle_create_group(self, command: CreateGroup, actor_id: str) -> UnitOfWork:
        """
        Handle CreateGroup command

        The creator is admitted as founder in the same commit.
        """
        uow = self._new_uow(actor_id)
        group = GroupState(generate_id())

        record_group_event(
            uow,
            group,
            "GroupCreated",
            GroupCreated(
                group_id=group.group_id,
                name=command.name,
                founder_id=actor_id,
                transparency_mode=command.transparency_mode,
                founders_only_rules=command.founders_only_rules,
                created_at=uow.occurred_at,
            ),
        )
        self.store.admit(uow, group, actor_id, role=Role.FOUNDER)
        return uow

    def handle_change_role(
        self, command: ChangeRole, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle ChangeRole command

        Validates:
        - Actor is a leader
        - Target is a member and not the founder
        - Promotions go member -> manager; demotions only as self step-down
        - The anti-centralization rule (via the store)

        Raises:
            Forbidden: Actor is not a leader, or demotes someone else
            MemberNotFound: Target is not in the group
            InvalidTarget: Founder targeted, founder role requested, or no-op
            MinimumLeaderViolation: Step-down would break the rule
        """
        actor_role = group.role_of(actor_id)
        if actor_role is None or not actor_role.is_leader:
            raise Forbidden("only managers and founders can change roles")

        target_role = group.role_of(command.user_id)
        if target_role is None:
            raise MemberNotFound(group.group_id, command.user_id)
        if command.new_role == Role.FOUNDER:
            raise InvalidTarget("the founder role can only be transferred")
        if target_role == Role.FOUNDER:
            raise InvalidTarget("the founder's role can only change through a transfer")
        if target_role == command.new_role:
            raise InvalidTarget(f"{command.user_id} is already a {target_role.value}")
        if command.new_role == Role.MEMBER and command.user_id != actor_id:
            raise Forbidden("demoting another manager requires a proposal")

        uow = self._new_uow(actor_id)
        self.store.set_role(uow, group, command.user_id, command.new_role)
        return uow

    def handle_leave_group(
        self, command: LeaveGroup, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle LeaveGroup command

        Raises:
            MemberNotFound: Actor is not a member
            Forbidden: Actor is the founder (must transfer first)
            MinimumLeaderViolation: A manager leaving would break the rule
        """
        role = group.role_of(actor_id)
        if role is None:
            raise MemberNotFound(group.group_id, actor_id)
        if role == Role.FOUNDER:
            raise Forbidden("the founder must transfer the founder role before leaving")

        uow = self._new_uow(actor_id)
        self.store.remove(uow, group, actor_id, cause="left")
        return uow

    def handle_remove_member(
        self, command: RemoveMember, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle RemoveMember command

        Instant moderation: a leader takes a plain member out of the group
        without a vote. Managers go through a kick proposal; nobody is
        removed while the group is below the leader minimum.

        Raises:
            Forbidden: Actor is not a leader
            InvalidTarget: Actor targets themselves, the founder or a manager
            MemberNotFound: Target is not in the group
            GroupInViolation: The group is currently breaking the rule
        """
        actor_role = group.role_of(actor_id)
        if actor_role is None or not actor_role.is_leader:
            raise Forbidden("only managers and founders can remove members")
        if command.user_id == actor_id:
            raise InvalidTarget("you cannot remove yourself; leave the group instead")

        target_role = group.role_of(command.user_id)
        if target_role is None:
            raise MemberNotFound(group.group_id, command.user_id)
        if target_role == Role.FOUNDER:
            raise InvalidTarget("the founder cannot be removed; transfer the founder role first")
        if target_role == Role.MANAGER:
            raise InvalidTarget("removing a manager requires a kick proposal")

        counts = group.roster.counts
        if is_in_violation(counts, self.policy):
            raise GroupInViolation(
                group.group_id, GROUP_IN_VIOLATION, counts.leaders, counts.total
            )

        uow = self._new_uow(actor_id)
        self.store.remove(uow, group, command.user_id, cause="removed")
        return uow

    def handle_transfer_founder(
        self, command: TransferFounder, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle TransferFounder command

        Raises:
            Forbidden: Actor is not the founder
            MemberNotFound: Target is not in the group
            InvalidTarget: Target is not a manager
        """
        if group.founder_id != actor_id:
            raise Forbidden("only the founder can transfer the founder role")

        target_role = group.role_of(command.new_founder_id)
        if target_role is None:
            raise MemberNotFound(group.group_id, command.new_founder_id)
        if target_role != Role.MANAGER:
            raise InvalidTarget("the founder role can only go to a manager")

        uow = self._new_uow(actor_id)
        self.store.transfer_founder(uow, group, command.new_founder_id)
        return uow

    def handle_update_settings(
        self, command: UpdateGroupSettings, group: GroupState, actor_id: str
    ) -> UnitOfWork:
        """
        Handle UpdateGroupSettings command

        Validates:
        - Actor is a leader
        - Only the founder toggles founders_only_rules
        - While founders_only_rules is on, only the founder changes transparency

        Returns an empty UnitOfWork when nothing would change.
        """
        actor_role = group.role_of(actor_id)
        if actor_role is None or not actor_role.is_leader:
            raise Forbidden("only managers and founders can change group settings")

        new_mode = command.transparency_mode or group.transparency_mode
        new_rules = (
            group.founders_only_rules
            if command.founders_only_rules is None
            else command.founders_only_rules
        )
        mode_changed = new_mode != group.transparency_mode
        rules_changed = new_rules != group.founders_only_rules

        is_founder = actor_role == Role.FOUNDER
        if rules_changed and not is_founder:
            raise Forbidden("only the founder can change who may edit the group rules")
        if mode_changed and group.founders_only_rules and not is_founder:
            raise Forbidden("only the founder can change transparency while rules are founder-only")

        uow = self._new_uow(actor_id)
        if not (mode_changed or rules_changed):
            return uow

        record_group_event(
            uow,
            group,
            "GroupSettingsUpdated",
            GroupSettingsUpdated(
                group_id=group.group_id,
                transparency_mode=new_mode,
                founders_only_rules=new_rules,
                previous_transparency_mode=group.transparency_mode,
                previous_founders_only_rules=group.founders_only_rules,
                updated_at=uow.occurred_at,
            ),
        )
        return uow
