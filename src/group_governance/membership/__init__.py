"""
Membership Module - rosters, roles and the anti-centralization rule

This module implements:
- The group aggregate (roster, settings, live ballot markers)
- The invariant checker (>3 members requires >=2 leaders)
- The membership store that stages invariant-gated mutations
- Direct actions: create, promote, step down, leave, transfer, settings
"""

from group_governance.membership.invariants import (
    GROUP_IN_VIOLATION,
    MINIMUM_MANAGER_THRESHOLD,
    InvariantCheck,
    check_group_health,
    check_invariant,
)
from group_governance.membership.models import Role, RoleCounts, Roster, TransparencyMode
from group_governance.membership.projections import GroupState
from group_governance.membership.store import MembershipStore

__all__ = [
    "Role",
    "RoleCounts",
    "Roster",
    "TransparencyMode",
    "GroupState",
    "MembershipStore",
    "InvariantCheck",
    "check_invariant",
    "check_group_health",
    "MINIMUM_MANAGER_THRESHOLD",
    "GROUP_IN_VIOLATION",
]
