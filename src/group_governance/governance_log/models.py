"""
Governance Log Models - typed audit entries

Each entry's ``details`` is one variant of a tagged union keyed by
``action_type``, so readers know exactly which fields a "proposal_rejected"
or a "settings_updated" entry carries.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from group_governance.ballots.models import ProposalAction
from group_governance.membership.models import Role, TransparencyMode


class GroupCreatedDetails(BaseModel):
    action_type: Literal["group_created"] = "group_created"
    name: str
    transparency_mode: TransparencyMode
    founders_only_rules: bool


class JoinResolutionDetails(BaseModel):
    """Outcome of a join request"""

    action_type: Literal["join_approved", "join_rejected"]
    approve_count: int
    reject_count: int
    required_votes: int


class ProposalResolutionDetails(BaseModel):
    """
    Outcome of a demote/kick proposal

    ``override_reason`` is set when the vote approved but the change could
    not be applied (e.g. "minimum manager threshold").
    """

    action_type: Literal["proposal_approved", "proposal_rejected"]
    action: ProposalAction
    approve_count: int
    reject_count: int
    required_votes: int
    override_reason: str | None = None


class ProposalExpiredDetails(BaseModel):
    action_type: Literal["proposal_expired"] = "proposal_expired"
    action: ProposalAction
    approve_count: int
    reject_count: int
    required_votes: int
    expires_at: datetime


class RoleChangeDetails(BaseModel):
    """A direct promotion or a self step-down"""

    action_type: Literal["promotion", "step_down"]
    old_role: Role
    new_role: Role


class MemberLeftDetails(BaseModel):
    action_type: Literal["member_left"] = "member_left"
    old_role: Role


class MemberRemovedDetails(BaseModel):
    """A plain member removed directly by a leader"""

    action_type: Literal["member_removed"] = "member_removed"
    old_role: Role


class FounderTransferDetails(BaseModel):
    action_type: Literal["founder_transferred"] = "founder_transferred"
    previous_founder_id: str
    new_founder_id: str


class SettingsUpdateDetails(BaseModel):
    action_type: Literal["settings_updated"] = "settings_updated"
    transparency_mode: TransparencyMode
    founders_only_rules: bool
    previous_transparency_mode: TransparencyMode
    previous_founders_only_rules: bool


LogDetails = Annotated[
    Union[
        GroupCreatedDetails,
        JoinResolutionDetails,
        ProposalResolutionDetails,
        ProposalExpiredDetails,
        RoleChangeDetails,
        MemberLeftDetails,
        MemberRemovedDetails,
        FounderTransferDetails,
        SettingsUpdateDetails,
    ],
    Field(discriminator="action_type"),
]


class GovernanceLogEntry(BaseModel):
    """
    One append-only audit record

    Attributes:
        actor_id: Who caused it (None for the sweeper)
        cause_event_id: The committed event this entry was derived from;
            unique, so re-appending the same entry is a no-op
    """

    entry_id: str
    group_id: str
    actor_id: str | None = None
    target_user_id: str | None = None
    ballot_id: str | None = None
    details: LogDetails
    summary: str
    cause_event_id: str
    created_at: datetime

    @property
    def action_type(self) -> str:
        return self.details.action_type
