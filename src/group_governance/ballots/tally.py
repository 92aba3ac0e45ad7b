"""
Vote Tally - quorum arithmetic shared by join requests and proposals

Pure functions. The quorum is a simple majority of the voters eligible when
the ballot opened; the reject threshold is the smallest number of rejections
that makes approval impossible. Both are computed once and frozen on the
ballot, so later membership changes never move the goalposts.

Examples (eligible -> required, reject threshold):
    1 -> 1, 1
    2 -> 2, 1
    3 -> 2, 2
    4 -> 3, 2
"""

from group_governance.ballots.models import BallotStatus


def compute_quorum(eligible_count: int) -> tuple[int, int]:
    """
    Frozen thresholds for a new ballot

    Args:
        eligible_count: Voters eligible at creation time

    Returns:
        (required_votes, reject_threshold)
    """
    if eligible_count < 1:
        raise ValueError("a ballot needs at least one eligible voter")
    required_votes = eligible_count // 2 + 1
    reject_threshold = eligible_count - required_votes + 1
    return required_votes, reject_threshold


def decide(
    approve_count: int,
    reject_count: int,
    required_votes: int,
    reject_threshold: int,
) -> BallotStatus | None:
    """
    Terminal status the counts call for, or None while undecided

    Approval is checked first; with frozen majority thresholds both can't
    be met by one set of votes unless voters were added after creation.
    """
    if approve_count >= required_votes:
        return BallotStatus.APPROVED
    if reject_count >= reject_threshold:
        return BallotStatus.REJECTED
    return None
