"""
Exactly-once resolution under concurrent votes

Two voters who both read the ballot one vote short of quorum each stage a
resolution. The versioned commit lets the first through and turns the
second into a StreamVersionConflict, so the requester is admitted once.
"""

import threading
from pathlib import Path

import pytest

from group_governance.ballots.commands import CastVote
from group_governance.ballots.projections import load_ballot
from group_governance.governance import GroupGovernance
from group_governance.kernel.errors import BallotClosed, StreamVersionConflict
from group_governance.kernel.time import TestTimeProvider
from tests.helpers import make_group


def count_events(gov: GroupGovernance, stream_id: str, event_type: str) -> int:
    return sum(1 for e in gov.event_store.load_stream(stream_id) if e.event_type == event_type)


def test_stale_snapshot_cannot_resolve_twice(gov: GroupGovernance) -> None:
    group_id = make_group(gov, "alice", managers=["bob", "carol"])
    ballot_id = gov.request_to_join(group_id, actor_id="dave")["ballot_id"]
    gov.cast_vote(ballot_id, "approve", actor_id="alice")

    # bob and carol both read the ballot at one approve out of two
    command = CastVote(ballot_id=ballot_id, choice="approve")
    uow_bob, result_bob = gov.ballot_handlers.handle_cast_vote(
        command,
        load_ballot(gov.event_store, ballot_id),
        gov.membership.load(group_id),
        "bob",
    )
    uow_carol, result_carol = gov.ballot_handlers.handle_cast_vote(
        command,
        load_ballot(gov.event_store, ballot_id),
        gov.membership.load(group_id),
        "carol",
    )
    assert result_bob.outcome == "resolved"
    assert result_carol.outcome == "resolved"

    gov.event_store.commit(uow_bob)
    version_after_first = gov.event_store.get_stream_version(ballot_id)

    with pytest.raises(StreamVersionConflict):
        gov.event_store.commit(uow_carol)

    assert gov.event_store.get_stream_version(ballot_id) == version_after_first
    assert count_events(gov, ballot_id, "BallotResolved") == 1
    assert count_events(gov, group_id, "MemberAdmitted") == 4  # alice, bob, carol, dave
    assert gov.get_ballot(ballot_id, viewer_id="dave")["votes"] == {
        "alice": "approve",
        "bob": "approve",
    }


def test_roster_change_invalidates_a_staged_vote(gov: GroupGovernance) -> None:
    group_id = make_group(gov, "alice", managers=["bob"], members=["carol"])
    ballot_id = gov.request_to_join(group_id, actor_id="dave")["ballot_id"]

    ballot = load_ballot(gov.event_store, ballot_id)
    group = gov.membership.load(group_id)
    uow, _ = gov.ballot_handlers.handle_cast_vote(
        CastVote(ballot_id=ballot_id, choice="approve"), ballot, group, "bob"
    )

    # bob steps down after the vote was staged but before it commits
    gov.change_role(group_id, "bob", "member", actor_id="bob")

    with pytest.raises(StreamVersionConflict) as exc_info:
        gov.event_store.commit(uow)
    assert exc_info.value.stream_id == group_id
    assert gov.get_ballot(ballot_id, viewer_id="alice")["votes"] == {}


def test_concurrent_final_votes_resolve_once(
    gov: GroupGovernance, temp_db: Path, test_time: TestTimeProvider
) -> None:
    """
    Three leaders race to cast the deciding vote from separate instances
    (standing in for separate processes). Exactly one resolves the ballot.
    """
    group_id = make_group(gov, "alice", managers=["bob", "carol", "erin", "frank"])
    ballot_id = gov.request_to_join(group_id, actor_id="dave")["ballot_id"]
    gov.cast_vote(ballot_id, "approve", actor_id="alice")
    gov.cast_vote(ballot_id, "approve", actor_id="bob")

    racers = ["carol", "erin", "frank"]
    instances = {
        voter: GroupGovernance(temp_db, policy=gov.policy, time_provider=test_time)
        for voter in racers
    }
    barrier = threading.Barrier(len(racers))
    outcomes: dict[str, object] = {}

    def vote(voter: str) -> None:
        barrier.wait()
        try:
            outcomes[voter] = instances[voter].cast_vote(ballot_id, "approve", actor_id=voter)
        except (StreamVersionConflict, BallotClosed) as e:
            outcomes[voter] = e

    threads = [threading.Thread(target=vote, args=(voter,)) for voter in racers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert set(outcomes) == set(racers)
    resolved = [
        o for o in outcomes.values() if getattr(o, "outcome", None) == "resolved"
    ]
    assert len(resolved) == 1
    assert resolved[0].status.value == "approved"

    assert count_events(gov, ballot_id, "BallotResolved") == 1
    members = gov.get_group(group_id, viewer_id="alice")["members"]
    assert members["dave"] == "member"
    admitted = [
        e
        for e in gov.event_store.load_stream(group_id)
        if e.event_type == "MemberAdmitted" and e.payload["user_id"] == "dave"
    ]
    assert len(admitted) == 1
