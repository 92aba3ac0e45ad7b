"""
Group Governance - Event-sourced self-government for community groups

Join requests and demote/kick proposals are decided by the group's leaders
with a frozen majority quorum. Every membership change passes the
anti-centralization rule: a group with more than three members keeps at
least two leaders, always.

Fun fact: Elinor Ostrom's studies of long-lived commons found that the
groups that lasted were the ones whose members could take part in changing
the rules. This is the machinery for that part.
"""

from group_governance.governance import GroupGovernance

__version__ = "0.1.0"
__all__ = ["GroupGovernance", "__version__"]
