"""
Tests for UnitOfWork and GovernancePolicy
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import BaseModel, ValidationError

from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.unit_of_work import Deadline, UnitOfWork

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class Note(BaseModel):
    text: str


def test_record_requires_expect() -> None:
    uow = UnitOfWork(occurred_at=NOW, actor_id="alice")
    with pytest.raises(ValueError):
        uow.record("stream-1", "test", "NoteAdded", Note(text="x"))


def test_first_expectation_wins() -> None:
    """A later read of the same stream must not move the guard"""
    uow = UnitOfWork(occurred_at=NOW, actor_id="alice")
    uow.expect("stream-1", 3)
    uow.expect("stream-1", 7)
    assert uow.expected_versions == {"stream-1": 3}


def test_staged_events_are_numbered_per_stream() -> None:
    uow = UnitOfWork(occurred_at=NOW, actor_id="alice")
    uow.expect("a", 4)
    uow.expect("b", 0)
    first = uow.record("a", "test", "NoteAdded", Note(text="1"))
    other = uow.record("b", "test", "NoteAdded", Note(text="2"))
    second = uow.record("a", "test", "NoteAdded", Note(text="3"))

    assert (first.version, second.version, other.version) == (5, 6, 1)
    assert [e.event_id for e in uow.events_for("a")] == [first.event_id, second.event_id]
    # One operation, one command id
    assert {e.command_id for e in uow.events} == {uow.command_id}
    assert all(e.occurred_at == NOW and e.actor_id == "alice" for e in uow.events)


def test_schedule_and_clear_deadline() -> None:
    uow = UnitOfWork(occurred_at=NOW, actor_id=None)
    deadline = Deadline(stream_id="p-1", stream_type="poll", group_id="g-1", due_at=NOW)

    uow.schedule(deadline)
    assert not uow.is_empty
    uow.clear_deadline("p-1")
    assert uow.deadlines == {}
    assert uow.cleared_deadlines == {"p-1"}

    uow.schedule(deadline)
    assert uow.cleared_deadlines == set()
    assert uow.deadlines["p-1"] == deadline


class TestGovernancePolicy:
    """Test the policy model and its loading"""

    def test_defaults(self) -> None:
        policy = GovernancePolicy()
        assert policy.min_leaders == 2
        assert policy.governance_threshold == 3
        assert policy.proposal_ttl_hours == 48
        assert policy.proposal_sweep_interval_minutes == 60
        assert policy.poll_sweep_interval_minutes == 15
        assert (policy.poll_min_options, policy.poll_max_options) == (2, 10)

    def test_from_file_overrides_some_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"proposal_ttl_hours": 72, "min_leaders": 3}))

        policy = GovernancePolicy.from_file(path)

        assert policy.proposal_ttl_hours == 72
        assert policy.min_leaders == 3
        assert policy.governance_threshold == 3

    def test_from_file_rejects_unknown_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"min_leader": 1}))

        with pytest.raises(ValidationError):
            GovernancePolicy.from_file(path)

    def test_poll_bounds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            GovernancePolicy(poll_min_options=5, poll_max_options=3)

    def test_policy_is_frozen(self) -> None:
        policy = GovernancePolicy()
        with pytest.raises(ValidationError):
            policy.min_leaders = 1
