"""
Test Helper Functions - Builders for groups and ballots

Groups can only grow through approved join requests, so building a test
roster means running the real lifecycle: request, vote, promote. These
builders do that through the public facade, so every test group is one
the rules could actually have produced.

Fun fact: The Builder pattern was formalized by the Gang of Four in 1994;
here it also doubles as a smoke test of the join flow.
"""

from typing import Any

from group_governance.governance import GroupGovernance


def admit(gov: GroupGovernance, group_id: str, user_id: str) -> dict[str, Any]:
    """
    Run a join request for ``user_id`` through to approval

    Every current leader votes approve until the ballot resolves.

    Returns:
        The resolved ballot dict
    """
    ballot = gov.request_to_join(group_id, actor_id=user_id)
    ballot_id = ballot["ballot_id"]

    for leader_id in leaders_of(gov, group_id):
        result = gov.cast_vote(ballot_id, "approve", actor_id=leader_id)
        if result.outcome == "resolved":
            break

    return gov.get_ballot(ballot_id, viewer_id=user_id)


def leaders_of(gov: GroupGovernance, group_id: str) -> list[str]:
    group = gov.membership.load(group_id)
    return group.roster.leader_ids()


def make_group(
    gov: GroupGovernance,
    founder: str = "alice",
    managers: list[str] | None = None,
    members: list[str] | None = None,
    *,
    name: str = "Allotment Society",
    transparency_mode: str = "public_members",
    founders_only_rules: bool = False,
) -> str:
    """
    Builder for a group with the given roster

    Managers are admitted and promoted first, so the group never breaks
    the minimum-leader rule while it grows.

    Args:
        gov: Governance core to build in
        founder: Creator of the group
        managers: Users admitted then promoted to manager
        members: Users admitted as plain members
        name: Group name
        transparency_mode: private, public_members or public_all
        founders_only_rules: Only the founder may change settings

    Returns:
        The new group's id

    Example:
        >>> group_id = make_group(gov, "alice", managers=["bob"], members=["carol", "dave"])
        >>> gov.get_group(group_id, viewer_id="alice")["counts"]["total"]
        4
    """
    group = gov.create_group(
        name,
        actor_id=founder,
        transparency_mode=transparency_mode,
        founders_only_rules=founders_only_rules,
    )
    group_id = group["group_id"]

    for manager_id in managers or []:
        admit(gov, group_id, manager_id)
        gov.change_role(group_id, manager_id, "manager", actor_id=founder)

    for member_id in members or []:
        admit(gov, group_id, member_id)

    return group_id


def event_types(gov: GroupGovernance, stream_id: str) -> list[str]:
    """Event types recorded on a stream, in order"""
    return [event.event_type for event in gov.event_store.load_stream(stream_id)]
