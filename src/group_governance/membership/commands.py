"""
Membership Module Commands - direct (non-ballot) membership actions

Promotion, stepping down, leaving, removing a plain member, founder transfer
and settings changes don't need a vote, but each one still passes the
invariant checker and is recorded in the governance log.
"""

from pydantic import BaseModel, Field

from group_governance.membership.models import Role, TransparencyMode


class CreateGroup(BaseModel):
    """Create a group; the creator becomes its founder"""

    name: str = Field(..., min_length=1, max_length=200)
    transparency_mode: TransparencyMode = TransparencyMode.PUBLIC_MEMBERS
    founders_only_rules: bool = False


class ChangeRole(BaseModel):
    """
    Promote a member, or step down yourself

    Demoting someone else requires a proposal.
    """

    group_id: str
    user_id: str = Field(..., min_length=1)
    new_role: Role


class LeaveGroup(BaseModel):
    group_id: str


class RemoveMember(BaseModel):
    """
    Instantly remove a plain member (moderation)

    Managers can only be removed through a kick proposal.
    """

    group_id: str
    user_id: str = Field(..., min_length=1)


class TransferFounder(BaseModel):
    """Hand the founder role to an existing manager"""

    group_id: str
    new_founder_id: str = Field(..., min_length=1)


class UpdateGroupSettings(BaseModel):
    """Change constitutional settings; None leaves a setting as it is"""

    group_id: str
    transparency_mode: TransparencyMode | None = None
    founders_only_rules: bool | None = None
