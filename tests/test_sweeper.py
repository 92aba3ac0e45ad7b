"""
Tests for ExpirySweeper

The sweeper shares the versioned commit with votes, so a ballot a vote
already resolved is skipped rather than expired, and sweeping twice never
expires anything twice.
"""

from datetime import datetime

import pytest

from group_governance.ballots.events import BALLOT_STREAM
from group_governance.ballots.projections import load_ballot
from group_governance.governance import GroupGovernance
from group_governance.kernel.time import TestTimeProvider
from group_governance.sweeper import SweepResult
from tests.helpers import event_types, make_group


@pytest.fixture
def kick_ballot(gov: GroupGovernance) -> tuple[str, str]:
    """A live kick proposal against dave with one of two required approvals"""
    group_id = make_group(gov, "alice", managers=["bob", "carol"], members=["dave"])
    ballot = gov.open_proposal(group_id, "kick", "dave", "Never waters", actor_id="alice")
    return group_id, ballot["ballot_id"]


def test_sweep_is_idempotent(
    gov: GroupGovernance, test_time: TestTimeProvider, kick_ballot: tuple[str, str]
) -> None:
    group_id, ballot_id = kick_ballot
    test_time.advance_hours(49)

    first = gov.sweep()
    second = gov.sweep()

    assert first.expired == [ballot_id]
    assert [e.event_type for e in first.events] == ["BallotExpired", "BallotClosed"]
    assert second.expired == []
    assert second.skipped == []
    assert event_types(gov, ballot_id).count("BallotExpired") == 1
    assert gov.get_group(group_id, viewer_id="alice")["open_proposals"] == {}

    log = gov.get_governance_log(group_id, viewer_id="alice", action_type="proposal_expired")
    assert len(log) == 1
    assert log[0]["ballot_id"] == ballot_id


def test_ballot_resolved_by_vote_is_skipped(
    gov: GroupGovernance,
    test_time: TestTimeProvider,
    kick_ballot: tuple[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _, ballot_id = kick_ballot
    stale_deadline = gov.event_store.get_deadline(ballot_id)
    gov.cast_vote(ballot_id, "approve", actor_id="bob")

    # The sweeper read the deadline index before the vote cleared it
    monkeypatch.setattr(
        gov.event_store,
        "due_deadlines",
        lambda now, stream_type=None: [stale_deadline] if stream_type == BALLOT_STREAM else [],
    )
    test_time.advance_hours(49)

    result = gov.sweep_proposals()

    assert result.expired == []
    assert result.skipped == [ballot_id]
    assert gov.get_ballot(ballot_id, viewer_id="alice")["status"] == "approved"


def test_stale_snapshot_loses_the_commit(
    gov: GroupGovernance,
    test_time: TestTimeProvider,
    kick_ballot: tuple[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _, ballot_id = kick_ballot
    stale_deadline = gov.event_store.get_deadline(ballot_id)
    stale_ballot = load_ballot(gov.event_store, ballot_id)
    gov.cast_vote(ballot_id, "approve", actor_id="bob")

    # The sweeper folded the ballot while it was still open
    monkeypatch.setattr(
        gov.event_store,
        "due_deadlines",
        lambda now, stream_type=None: [stale_deadline] if stream_type == BALLOT_STREAM else [],
    )
    monkeypatch.setattr(
        "group_governance.sweeper.load_ballot", lambda event_store, bid: stale_ballot
    )
    test_time.advance_hours(49)

    result = gov.sweep_proposals()

    assert result.skipped == [ballot_id]
    assert "BallotExpired" not in event_types(gov, ballot_id)


def test_run_follows_both_cadences(
    gov: GroupGovernance, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[str] = []

    def fake_sweep(target: str):
        def sweep() -> SweepResult:
            calls.append(target)
            return SweepResult(datetime(2025, 1, 15))

        return sweep

    monkeypatch.setattr(gov.sweeper, "sweep_proposals", fake_sweep("proposals"))
    monkeypatch.setattr(gov.sweeper, "sweep_polls", fake_sweep("polls"))
    sleeps: list[float] = []

    gov.sweeper.run(iterations=5, sleep=sleeps.append)

    # Defaults: polls every 15 minutes, proposals every 60
    assert calls.count("polls") == 5
    assert calls.count("proposals") == 2
    assert calls[0] == "proposals"
    assert sleeps == [900] * 4


def test_run_expires_due_proposals(
    gov: GroupGovernance, test_time: TestTimeProvider, kick_ballot: tuple[str, str]
) -> None:
    _, ballot_id = kick_ballot
    test_time.advance_hours(49)

    gov.sweeper.run(iterations=1, sleep=lambda seconds: None)

    assert gov.get_ballot(ballot_id, viewer_id="alice")["status"] == "expired"


def test_sweep_result_summary() -> None:
    result = SweepResult(datetime(2025, 1, 15, 12, 0))
    result.expired.append("b-1")

    summary = result.summary()

    assert "Proposals expired: 1" in summary
    assert "Polls closed: 0" in summary
