"""
ExpirySweeper - Periodic expiry of stale proposals and deadline polls

The sweeper is called on a schedule (hourly for proposals, every 15 minutes
for polls). It finds due work through the deadline index, then uses the
same handlers and the same versioned commit as a vote. If a vote resolved
the ballot first, the sweeper's commit loses the race and the item is
skipped; running the sweep twice can therefore never expire a ballot twice.

Fun fact: This is the "garbage collector" of governance - a proposal nobody
cares enough to vote on shouldn't hang over someone's head forever.
"""

import time
from collections.abc import Callable
from datetime import datetime

from group_governance.ballots.events import BALLOT_STREAM
from group_governance.ballots.handlers import BallotCommandHandlers
from group_governance.ballots.projections import load_ballot
from group_governance.kernel.errors import Conflict, InvalidState
from group_governance.kernel.event_store import SQLiteEventStore
from group_governance.kernel.events import Event
from group_governance.kernel.logging import LogOperation, get_logger
from group_governance.kernel.metrics import sweep_duration_seconds, sweep_items_total
from group_governance.kernel.policy import GovernancePolicy
from group_governance.kernel.time import TimeProvider
from group_governance.membership.store import MembershipStore
from group_governance.polls.events import POLL_STREAM
from group_governance.polls.handlers import PollCommandHandlers
from group_governance.polls.projections import load_poll

logger = get_logger(__name__)


class SweepResult:
    """
    Result of one sweep

    Contains the ids handled and every event committed.
    """

    def __init__(self, swept_at: datetime) -> None:
        self.swept_at = swept_at
        self.expired: list[str] = []
        self.closed: list[str] = []
        self.skipped: list[str] = []
        self.events: list[Event] = []

    def merge(self, other: "SweepResult") -> "SweepResult":
        self.expired.extend(other.expired)
        self.closed.extend(other.closed)
        self.skipped.extend(other.skipped)
        self.events.extend(other.events)
        return self

    def summary(self) -> str:
        """Human-readable summary of the sweep"""
        return " | ".join(
            [
                f"Sweep at {self.swept_at.isoformat()}",
                f"Proposals expired: {len(self.expired)}",
                f"Polls closed: {len(self.closed)}",
                f"Skipped: {len(self.skipped)}",
            ]
        )


class ExpirySweeper:
    """
    Expires overdue proposals and closes overdue polls

    Each item is committed in its own transaction, so one lost race never
    holds up the rest of the sweep.
    """

    def __init__(
        self,
        event_store: SQLiteEventStore,
        time_provider: TimeProvider,
        policy: GovernancePolicy,
        membership: MembershipStore,
        ballot_handlers: BallotCommandHandlers,
        poll_handlers: PollCommandHandlers,
        on_commit: Callable[[list[Event]], None] | None = None,
    ) -> None:
        """
        Args:
            on_commit: Called with the events of every successful commit
                (the facade uses it to write the governance log and notify)
        """
        self.event_store = event_store
        self.time_provider = time_provider
        self.policy = policy
        self.membership = membership
        self.ballot_handlers = ballot_handlers
        self.poll_handlers = poll_handlers
        self.on_commit = on_commit

    def sweep_proposals(self) -> SweepResult:
        """Force every proposal past its TTL to EXPIRED"""
        now = self.time_provider.now()
        result = SweepResult(now)
        start = time.perf_counter()

        with LogOperation(logger, "sweep_proposals", ttl_hours=self.policy.proposal_ttl_hours):
            for deadline in self.event_store.due_deadlines(now, BALLOT_STREAM):
                try:
                    ballot = load_ballot(self.event_store, deadline.stream_id)
                    group = self.membership.load(deadline.group_id)
                    uow = self.ballot_handlers.handle_expire(ballot, group)
                    events = self.event_store.commit(uow)
                except (Conflict, InvalidState) as e:
                    self._skip(result, "proposals", deadline.stream_id, e)
                    continue

                result.expired.append(deadline.stream_id)
                sweep_items_total.labels(target="proposals", result="expired").inc()
                self._committed(result, events)

        sweep_duration_seconds.labels(target="proposals").observe(time.perf_counter() - start)
        return result

    def sweep_polls(self) -> SweepResult:
        """Close every poll past its deadline by its current tally"""
        now = self.time_provider.now()
        result = SweepResult(now)
        start = time.perf_counter()

        with LogOperation(logger, "sweep_polls"):
            for deadline in self.event_store.due_deadlines(now, POLL_STREAM):
                try:
                    poll = load_poll(self.event_store, deadline.stream_id)
                    group = self.membership.load(deadline.group_id)
                    uow = self.poll_handlers.handle_close_poll(poll, group, actor_id=None)
                    events = self.event_store.commit(uow)
                except (Conflict, InvalidState) as e:
                    self._skip(result, "polls", deadline.stream_id, e)
                    continue

                result.closed.append(deadline.stream_id)
                sweep_items_total.labels(target="polls", result="closed").inc()
                self._committed(result, events)

        sweep_duration_seconds.labels(target="polls").observe(time.perf_counter() - start)
        return result

    def sweep(self) -> SweepResult:
        """Run both sweeps once"""
        return self.sweep_proposals().merge(self.sweep_polls())

    def run(
        self,
        iterations: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Run both cadences in-process

        Proposals are swept every ``proposal_sweep_interval_minutes`` and
        polls every ``poll_sweep_interval_minutes``; both run on the first
        iteration. One iteration is one poll-cadence step.

        Args:
            iterations: Stop after this many steps (None = forever)
            sleep: Injectable for tests
        """
        poll_step = self.policy.poll_sweep_interval_minutes
        proposal_every = max(1, self.policy.proposal_sweep_interval_minutes // poll_step)

        step = 0
        while iterations is None or step < iterations:
            if step % proposal_every == 0:
                result = self.sweep_proposals()
                logger.info("Scheduled sweep", target="proposals", summary=result.summary())
            result = self.sweep_polls()
            logger.info("Scheduled sweep", target="polls", summary=result.summary())
            step += 1
            if iterations is None or step < iterations:
                sleep(poll_step * 60)

    def _committed(self, result: SweepResult, events: list[Event]) -> None:
        result.events.extend(events)
        if self.on_commit is not None:
            self.on_commit(events)

    @staticmethod
    def _skip(result: SweepResult, target: str, stream_id: str, error: Exception) -> None:
        result.skipped.append(stream_id)
        sweep_items_total.labels(target=target, result="skipped").inc()
        logger.info(
            "Sweep item skipped",
            target=target,
            stream_id=stream_id,
            error_type=type(error).__name__,
            reason=str(error),
        )
