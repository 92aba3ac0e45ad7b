"""
Tests for the anti-centralization rule

These are pure functions over a roster - no storage involved. The rule:
a group with more than 3 members keeps at least 2 leaders.

Fun fact: The smallest group the rule bites is four people - one founder
and three members is exactly the shape of a one-person fiefdom.
"""

import random

import pytest

from group_governance.kernel.errors import GroupInViolation, MinimumLeaderViolation
from group_governance.kernel.policy import GovernancePolicy
from group_governance.membership.invariants import (
    GROUP_IN_VIOLATION,
    MINIMUM_MANAGER_THRESHOLD,
    Admit,
    BulkRoleChange,
    Demote,
    Promote,
    Remove,
    check_group_health,
    check_invariant,
    enforce_invariant,
    is_in_violation,
    simulate_change,
)
from group_governance.membership.models import Role, RoleCounts, Roster


def roster(founder: str = "alice", managers: tuple = (), members: tuple = ()) -> Roster:
    roles = {founder: Role.FOUNDER}
    roles.update({m: Role.MANAGER for m in managers})
    roles.update({m: Role.MEMBER for m in members})
    return Roster.from_roles(roles)


def test_roster_counts_are_maintained() -> None:
    r = roster(managers=("bob",), members=("carol", "dave"))
    assert (r.counts.founders, r.counts.managers, r.counts.members) == (1, 1, 2)
    assert r.counts.leaders == 2
    assert r.counts.total == 4

    r.set_role("carol", Role.MANAGER)
    r.discard("dave")
    r.discard("nobody")
    assert (r.counts.managers, r.counts.members, r.counts.total) == (2, 0, 3)


def test_demote_in_four_member_group_with_two_leaders_is_refused() -> None:
    r = roster(managers=("bob",), members=("carol", "dave"))

    check = check_invariant(r, Demote(user_id="bob"))

    assert not check.ok
    assert check.reason == MINIMUM_MANAGER_THRESHOLD
    assert (check.leaders_after, check.total_after) == (1, 4)


def test_step_down_in_three_member_group_is_allowed() -> None:
    r = roster(managers=("bob",), members=("carol",))
    assert check_invariant(r, Demote(user_id="bob")).ok


def test_kicking_a_leader_from_five_is_refused_but_a_member_is_fine() -> None:
    r = roster(managers=("bob",), members=("carol", "dave", "erin"))
    assert not check_invariant(r, Remove(user_id="bob")).ok
    assert check_invariant(r, Remove(user_id="carol")).ok


def test_removing_a_leader_down_to_three_is_allowed() -> None:
    """After removal the group has 3 members, so the rule no longer applies"""
    r = roster(managers=("bob",), members=("carol", "dave"))
    assert check_invariant(r, Remove(user_id="bob")).ok


def test_admission_growing_past_threshold_needs_two_leaders() -> None:
    solo = roster(members=("bob", "carol"))
    check = check_invariant(solo, Admit(user_id="dave"))
    assert not check.ok
    assert check.reason == MINIMUM_MANAGER_THRESHOLD

    assert check_invariant(roster(managers=("bob",), members=("carol",)), Admit(user_id="dave")).ok


def test_admission_into_group_in_violation_is_refused() -> None:
    # Only reachable through a stricter policy or legacy data
    r = roster(managers=("bob",), members=("carol", "dave"))
    strict = GovernancePolicy(min_leaders=3)

    check = check_invariant(r, Admit(user_id="erin"), strict)

    assert not check.ok
    assert check.reason == GROUP_IN_VIOLATION


def test_promotion_is_always_legal() -> None:
    r = roster(managers=("bob",), members=("carol", "dave"))
    strict = GovernancePolicy(min_leaders=5)
    assert check_invariant(r, Promote(user_id="carol"), strict).ok


def test_removing_a_plain_member_from_a_group_in_violation_is_refused() -> None:
    r = roster(members=("b", "c", "d", "e"))
    assert is_in_violation(r.counts)

    check = check_invariant(r, Remove(user_id="b"))

    assert not check.ok
    assert check.reason == MINIMUM_MANAGER_THRESHOLD
    assert (check.leaders_after, check.total_after) == (1, 4)


def test_group_in_violation_may_shrink_to_the_threshold() -> None:
    """Four members with one leader: dropping to three members is legal"""
    r = roster(members=("b", "c", "d"))
    assert is_in_violation(r.counts)
    assert check_invariant(r, Remove(user_id="b")).ok


def test_founder_transfer_in_a_group_in_violation_is_refused() -> None:
    r = roster(managers=("bob",), members=("carol", "dave", "erin"))
    strict = GovernancePolicy(min_leaders=3)

    change = BulkRoleChange(changes={"alice": Role.MANAGER, "bob": Role.FOUNDER})

    assert not check_invariant(r, change, strict).ok


def test_founder_transfer_keeps_leader_count() -> None:
    r = roster(managers=("bob",), members=("carol", "dave"))
    change = BulkRoleChange(changes={"alice": Role.MANAGER, "bob": Role.FOUNDER})

    after = simulate_change(r, change)

    assert after.leaders == 2
    assert after.founders == 1
    assert check_invariant(r, change).ok


def test_enforce_invariant_raises_the_matching_error() -> None:
    r = roster(managers=("bob",), members=("carol", "dave"))

    with pytest.raises(MinimumLeaderViolation) as exc_info:
        enforce_invariant("g-1", r, Demote(user_id="bob"))
    assert exc_info.value.reason == MINIMUM_MANAGER_THRESHOLD
    assert exc_info.value.group_id == "g-1"

    with pytest.raises(GroupInViolation):
        enforce_invariant("g-1", r, Admit(user_id="erin"), GovernancePolicy(min_leaders=3))

    enforce_invariant("g-1", r, Promote(user_id="carol"))


def test_check_group_health() -> None:
    healthy = check_group_health(roster(managers=("bob",), members=("carol", "dave")))
    assert not healthy.in_violation
    assert healthy.leaders_needed == 0

    strict = GovernancePolicy(min_leaders=3)
    unhealthy = check_group_health(roster(managers=("bob",), members=("carol", "dave")), strict)
    assert unhealthy.in_violation
    assert unhealthy.leaders_needed == 1


def test_is_in_violation_boundaries() -> None:
    assert not is_in_violation(RoleCounts(founders=1, members=2))
    assert is_in_violation(RoleCounts(founders=1, members=3))
    assert not is_in_violation(RoleCounts(founders=1, managers=1, members=2))


def test_accepted_changes_never_reach_violation() -> None:
    """
    Randomized: starting from a legal roster, applying only changes the
    checker accepts never produces a roster in violation.
    """
    rng = random.Random(1729)
    users = [f"u{i}" for i in range(12)]

    for _ in range(50):
        r = roster(founder="u0")
        for _ in range(60):
            user = rng.choice(users)
            kind = rng.choice(["promote", "demote", "remove", "admit"])
            role = r.role_of(user)
            if kind == "admit" and role is None:
                change = Admit(user_id=user)
            elif kind == "promote" and role == Role.MEMBER:
                change = Promote(user_id=user)
            elif kind == "demote" and role == Role.MANAGER:
                change = Demote(user_id=user)
            elif kind == "remove" and role in (Role.MANAGER, Role.MEMBER):
                change = Remove(user_id=user)
            else:
                continue

            if not check_invariant(r, change).ok:
                continue

            if isinstance(change, Admit):
                r.add(user, Role.MEMBER, r.members["u0"].joined_at)
            elif isinstance(change, Promote):
                r.set_role(user, Role.MANAGER)
            elif isinstance(change, Demote):
                r.set_role(user, Role.MEMBER)
            else:
                r.discard(user)

            assert not is_in_violation(r.counts), dict(r.counts)
