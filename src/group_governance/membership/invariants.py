"""
Membership Invariants - the anti-centralization rule

A group with more than ``governance_threshold`` members (3) must keep at
least ``min_leaders`` (2) managers+founders. Every membership mutation is
simulated against the roster's role counts first; the mutation is applied
only if the simulated state is legal.

These are pure functions: they read a roster and a proposed change and
return a verdict. They never touch storage.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from group_governance.kernel.errors import GroupInViolation, MinimumLeaderViolation
from group_governance.kernel.policy import GovernancePolicy, default_policy
from group_governance.membership.models import Role, RoleCounts, Roster

MINIMUM_MANAGER_THRESHOLD = "minimum manager threshold"
GROUP_IN_VIOLATION = "group in violation"


class Promote(BaseModel):
    """Raise a member to manager (always legal)"""

    kind: Literal["promote"] = "promote"
    user_id: str


class Demote(BaseModel):
    """Lower a leader to member"""

    kind: Literal["demote"] = "demote"
    user_id: str


class Remove(BaseModel):
    """Take a user out of the group (kick, removal or leave)"""

    kind: Literal["remove"] = "remove"
    user_id: str


class Admit(BaseModel):
    """Add a new member with role ``member``"""

    kind: Literal["admit"] = "admit"
    user_id: str


class BulkRoleChange(BaseModel):
    """
    Several role changes applied together (e.g. founder transfer)

    A value of None removes the user.
    """

    kind: Literal["bulk"] = "bulk"
    changes: dict[str, Role | None]


ProposedChange = Annotated[
    Union[Promote, Demote, Remove, Admit, BulkRoleChange],
    Field(discriminator="kind"),
]


class InvariantCheck(BaseModel):
    """Verdict of the checker; ``reason`` is user-facing when not ok"""

    ok: bool
    reason: str | None = None
    leaders_after: int
    total_after: int


def is_in_violation(counts: RoleCounts, policy: GovernancePolicy = default_policy) -> bool:
    """True if the counts break the minimum-leader rule"""
    return counts.total > policy.governance_threshold and counts.leaders < policy.min_leaders


def simulate_change(roster: Roster, change: BaseModel) -> RoleCounts:
    """
    Role counts after applying ``change`` to ``roster``

    Works on a copy of the maintained counts; changes naming users who are
    not members (or who already hold the role) leave the counts unchanged.
    """
    after = roster.counts.model_copy()

    if isinstance(change, Promote):
        if roster.role_of(change.user_id) == Role.MEMBER:
            after.adjust(Role.MEMBER, -1)
            after.adjust(Role.MANAGER, 1)

    elif isinstance(change, Demote):
        role = roster.role_of(change.user_id)
        if role is not None and role.is_leader:
            after.adjust(role, -1)
            after.adjust(Role.MEMBER, 1)

    elif isinstance(change, Remove):
        role = roster.role_of(change.user_id)
        if role is not None:
            after.adjust(role, -1)

    elif isinstance(change, Admit):
        if not roster.is_member(change.user_id):
            after.adjust(Role.MEMBER, 1)

    elif isinstance(change, BulkRoleChange):
        for user_id, new_role in change.changes.items():
            old_role = roster.role_of(user_id)
            if old_role is not None:
                after.adjust(old_role, -1)
            if new_role is not None:
                after.adjust(new_role, 1)

    else:
        raise TypeError(f"Unknown membership change: {type(change).__name__}")

    return after


def check_invariant(
    roster: Roster,
    change: BaseModel,
    policy: GovernancePolicy = default_policy,
) -> InvariantCheck:
    """
    Decide whether a proposed membership change is legal

    Rules:
    - Promotion is always legal.
    - Admission into a group that is already in violation is refused with
      "group in violation", so no more members join a broken group.
    - Any other change that ends in violation is refused with "minimum
      manager threshold", including removing a plain member from a group
      that is already below the leader minimum. Only promotion (or
      shrinking to the threshold or below) gets a broken group out.

    Args:
        roster: Current roster of the group
        change: One of Promote, Demote, Remove, Admit, BulkRoleChange
        policy: Threshold and minimum leader count

    Returns:
        InvariantCheck with ok/reason and the simulated counts
    """
    before = roster.counts
    after = simulate_change(roster, change)

    if isinstance(change, Promote):
        return InvariantCheck(ok=True, leaders_after=after.leaders, total_after=after.total)

    if isinstance(change, Admit) and is_in_violation(before, policy):
        return InvariantCheck(
            ok=False,
            reason=GROUP_IN_VIOLATION,
            leaders_after=after.leaders,
            total_after=after.total,
        )

    if is_in_violation(after, policy):
        return InvariantCheck(
            ok=False,
            reason=MINIMUM_MANAGER_THRESHOLD,
            leaders_after=after.leaders,
            total_after=after.total,
        )

    return InvariantCheck(ok=True, leaders_after=after.leaders, total_after=after.total)


def enforce_invariant(
    group_id: str,
    roster: Roster,
    change: BaseModel,
    policy: GovernancePolicy = default_policy,
) -> None:
    """
    Raise if ``change`` is illegal

    Raises:
        GroupInViolation: Admission into a group already breaking the rule
        MinimumLeaderViolation: Change would breach the rule
    """
    check = check_invariant(roster, change, policy)
    if check.ok:
        return
    if check.reason == GROUP_IN_VIOLATION:
        raise GroupInViolation(group_id, check.reason, check.leaders_after, check.total_after)
    raise MinimumLeaderViolation(
        group_id, check.reason or MINIMUM_MANAGER_THRESHOLD, check.leaders_after, check.total_after
    )


class GroupHealth(BaseModel):
    """Snapshot of a group's standing under the minimum-leader rule"""

    total: int
    leaders: int
    in_violation: bool
    leaders_needed: int


def check_group_health(roster: Roster, policy: GovernancePolicy = default_policy) -> GroupHealth:
    counts = roster.counts
    violating = is_in_violation(counts, policy)
    return GroupHealth(
        total=counts.total,
        leaders=counts.leaders,
        in_violation=violating,
        leaders_needed=max(0, policy.min_leaders - counts.leaders) if violating else 0,
    )
