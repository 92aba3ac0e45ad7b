"""
Prometheus metrics collection for Group Governance.

Provides observability into ballot throughput, lost races, invariant
rejections and sweep health.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Histogram, start_http_server

from group_governance.kernel.errors import GovernanceError

# ============================================================================
# Core Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "ggov_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

events_loaded_total = Counter(
    "ggov_events_loaded_total",
    "Total number of events loaded from the event store",
    ["stream_type"],
)

events_upcast_total = Counter(
    "ggov_events_upcast_total",
    "Total number of stored events upgraded to a newer schema on read",
    ["event_type"],
)

stream_version_conflicts_total = Counter(
    "ggov_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "ggov_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

commands_processed_total = Counter(
    "ggov_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, rejected, failure
)

# ============================================================================
# Governance Metrics
# ============================================================================

ballots_opened_total = Counter(
    "ggov_ballots_opened_total",
    "Total number of join requests and proposals opened",
    ["kind"],
)

votes_cast_total = Counter(
    "ggov_votes_cast_total",
    "Total number of votes recorded (overwrites included)",
    ["kind", "choice"],
)

ballots_resolved_total = Counter(
    "ggov_ballots_resolved_total",
    "Total number of ballots reaching a terminal status",
    ["kind", "status"],
)

invariant_rejections_total = Counter(
    "ggov_invariant_rejections_total",
    "Total number of membership changes blocked by the anti-centralization rule",
    ["reason"],
)

governance_log_append_failures_total = Counter(
    "ggov_governance_log_append_failures_total",
    "Total number of governance log entries that could not be written",
)

# ============================================================================
# Sweeper Metrics
# ============================================================================

sweep_duration_seconds = Histogram(
    "ggov_sweep_duration_seconds",
    "Duration of an expiry sweep in seconds",
    ["target"],  # proposals, polls
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

sweep_items_total = Counter(
    "ggov_sweep_items_total",
    "Ballots and polls handled by the sweeper",
    ["target", "result"],  # result: expired, closed, skipped
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track command processing duration.

    Governance rejections are counted as "rejected", anything else that
    escapes as "failure".

    Args:
        command_type: Type of command being processed

    Returns:
        Decorated function that tracks duration
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except GovernanceError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                command_duration_seconds.labels(command_type=command_type).observe(duration)
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)
