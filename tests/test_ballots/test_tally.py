"""
Tests for quorum arithmetic
"""

import pytest

from group_governance.ballots.models import BallotStatus
from group_governance.ballots.tally import compute_quorum, decide


@pytest.mark.parametrize(
    ("eligible", "required", "reject_threshold"),
    [(1, 1, 1), (2, 2, 1), (3, 2, 2), (4, 3, 2), (5, 3, 3), (10, 6, 5)],
)
def test_compute_quorum(eligible: int, required: int, reject_threshold: int) -> None:
    assert compute_quorum(eligible) == (required, reject_threshold)


def test_thresholds_partition_the_electorate() -> None:
    """Once reject_threshold rejections are in, approval is unreachable"""
    for eligible in range(1, 30):
        required, reject_threshold = compute_quorum(eligible)
        assert eligible - reject_threshold < required
        assert eligible - (reject_threshold - 1) >= required


def test_compute_quorum_needs_a_voter() -> None:
    with pytest.raises(ValueError):
        compute_quorum(0)


def test_decide() -> None:
    assert decide(1, 0, 2, 2) is None
    assert decide(2, 0, 2, 2) == BallotStatus.APPROVED
    assert decide(0, 2, 2, 2) == BallotStatus.REJECTED
    assert decide(1, 1, 2, 2) is None


def test_decide_checks_approval_first() -> None:
    assert decide(2, 2, 2, 2) == BallotStatus.APPROVED
