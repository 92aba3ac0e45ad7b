"""
Membership Module Events - facts recorded on a group's stream

The group stream holds the roster, the group settings and one marker pair
per ballot (BallotOpened / BallotClosed). The markers make "one live ballot
per subject" a property of the group stream, so two concurrent proposals
against the same member collide on the group's version.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from group_governance.kernel.upcasting import upcasters
from group_governance.membership.models import Role, TransparencyMode

GROUP_STREAM = "group"


class GroupCreated(BaseModel):
    """
    A new group was created (schema v2)

    v1 carried only ``is_public``; v2 records the transparency mode and the
    founders-only-rules flag explicitly.
    """

    group_id: str
    name: str
    founder_id: str
    transparency_mode: TransparencyMode
    founders_only_rules: bool
    created_at: datetime


@upcasters.register("GroupCreated", from_version=1)
def _group_created_v1_to_v2(payload: dict) -> dict:
    upgraded = {k: v for k, v in payload.items() if k != "is_public"}
    is_public = payload.get("is_public", False)
    upgraded["transparency_mode"] = (
        TransparencyMode.PUBLIC_ALL.value if is_public else TransparencyMode.PUBLIC_MEMBERS.value
    )
    upgraded["founders_only_rules"] = False
    return upgraded


class MemberAdmitted(BaseModel):
    """A user joined the group (founder at creation, or via approved join request)"""

    group_id: str
    user_id: str
    role: Role
    joined_at: datetime
    via_ballot_id: str | None = None


class MemberRoleChanged(BaseModel):
    """A member's role changed (direct promotion/step-down, or approved demotion)"""

    group_id: str
    user_id: str
    old_role: Role
    new_role: Role
    changed_at: datetime
    via_ballot_id: str | None = None


class MemberRemoved(BaseModel):
    """A member left the group, was removed by a leader or by an approved kick"""

    group_id: str
    user_id: str
    old_role: Role
    removed_at: datetime
    cause: Literal["left", "removed", "kicked"]
    via_ballot_id: str | None = None


class FounderTransferred(BaseModel):
    """The founder role moved to a manager; the old founder became a manager"""

    group_id: str
    previous_founder_id: str
    new_founder_id: str
    transferred_at: datetime


class GroupSettingsUpdated(BaseModel):
    """Transparency mode and/or founders-only-rules flag changed"""

    group_id: str
    transparency_mode: TransparencyMode
    founders_only_rules: bool
    previous_transparency_mode: TransparencyMode
    previous_founders_only_rules: bool
    updated_at: datetime


class BallotOpened(BaseModel):
    """A join request or proposal started for ``subject_id``"""

    group_id: str
    ballot_id: str
    kind: str
    subject_id: str
    opened_at: datetime


class BallotClosed(BaseModel):
    """The ballot for ``subject_id`` reached a terminal status"""

    group_id: str
    ballot_id: str
    kind: str
    subject_id: str
    status: str
    closed_at: datetime
