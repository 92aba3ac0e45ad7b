"""
Governance Log Module - the append-only record of what happened and why
"""

from group_governance.governance_log.models import GovernanceLogEntry, LogDetails
from group_governance.governance_log.recorder import entries_from_events
from group_governance.governance_log.store import GovernanceLogStore

__all__ = [
    "GovernanceLogEntry",
    "LogDetails",
    "GovernanceLogStore",
    "entries_from_events",
]
