"""
Membership Domain Models - roles, rosters and role counts

A group's roster is the set of (user, role) pairs. The anti-centralization
rule is stated in terms of role counts, so the roster keeps its counts up to
date on every change instead of recounting members.

Fun fact: "Founder" is the only role that can't be voted away here - it can
only be handed over, like a baton.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Member roles; managers and founders are leaders"""

    MEMBER = "member"
    MANAGER = "manager"
    FOUNDER = "founder"

    @property
    def is_leader(self) -> bool:
        return self in (Role.MANAGER, Role.FOUNDER)


class TransparencyMode(str, Enum):
    """
    Who may read a group's governance data

    PRIVATE: leaders only
    PUBLIC_MEMBERS: any member
    PUBLIC_ALL: anyone, including unauthenticated visitors
    """

    PRIVATE = "private"
    PUBLIC_MEMBERS = "public_members"
    PUBLIC_ALL = "public_all"


class RoleCounts(BaseModel):
    """Per-role member counts for one group"""

    founders: int = 0
    managers: int = 0
    members: int = 0

    @property
    def leaders(self) -> int:
        return self.founders + self.managers

    @property
    def total(self) -> int:
        return self.founders + self.managers + self.members

    def adjust(self, role: Role, delta: int) -> None:
        if role == Role.FOUNDER:
            self.founders += delta
        elif role == Role.MANAGER:
            self.managers += delta
        else:
            self.members += delta


class MemberRecord(BaseModel):
    """One membership row"""

    user_id: str
    role: Role
    joined_at: datetime


class Roster(BaseModel):
    """
    A group's members with role counts maintained on every change

    Attributes:
        members: user_id -> membership record
        counts: running per-role counts (never recomputed from members)
    """

    members: dict[str, MemberRecord] = Field(default_factory=dict)
    counts: RoleCounts = Field(default_factory=RoleCounts)

    def role_of(self, user_id: str) -> Role | None:
        record = self.members.get(user_id)
        return record.role if record else None

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def is_leader(self, user_id: str) -> bool:
        role = self.role_of(user_id)
        return role is not None and role.is_leader

    def add(self, user_id: str, role: Role, joined_at: datetime) -> None:
        if user_id in self.members:
            self.discard(user_id)
        self.members[user_id] = MemberRecord(user_id=user_id, role=role, joined_at=joined_at)
        self.counts.adjust(role, 1)

    def set_role(self, user_id: str, role: Role) -> None:
        record = self.members[user_id]
        self.counts.adjust(record.role, -1)
        self.counts.adjust(role, 1)
        self.members[user_id] = record.model_copy(update={"role": role})

    def discard(self, user_id: str) -> None:
        record = self.members.pop(user_id, None)
        if record is not None:
            self.counts.adjust(record.role, -1)

    def leader_ids(self) -> list[str]:
        return [uid for uid, record in self.members.items() if record.role.is_leader]

    @classmethod
    def from_roles(
        cls, roles: dict[str, Role], joined_at: datetime | None = None
    ) -> "Roster":
        """Build a roster from a plain user -> role mapping"""
        roster = cls()
        when = joined_at or datetime(1970, 1, 1, tzinfo=timezone.utc)
        for user_id, role in roles.items():
            roster.add(user_id, Role(role), when)
        return roster
