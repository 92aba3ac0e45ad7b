"""
Membership Projections - the group aggregate folded from its stream

GroupState is rebuilt for every operation from the group's own stream,
so no in-memory state survives between calls. Role counts are adjusted
event by event as the stream is folded.
"""

from datetime import datetime
from typing import Any

from group_governance.kernel.events import Event
from group_governance.membership.models import Role, Roster, TransparencyMode


class GroupState:
    """
    Projection: one group's settings, roster and live ballots

    Attributes:
        version: stream version this state was folded up to (0 = no group)
        open_join_requests: requester_id -> live join request ballot id
        open_proposals: target_id -> live proposal ballot id
    """

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        self.name: str = ""
        self.founder_id: str | None = None
        self.transparency_mode = TransparencyMode.PRIVATE
        self.founders_only_rules = False
        self.created_at: datetime | None = None
        self.roster = Roster()
        self.open_join_requests: dict[str, str] = {}
        self.open_proposals: dict[str, str] = {}
        self.version = 0

    @property
    def exists(self) -> bool:
        return self.version > 0

    def apply_event(self, event: Event) -> None:
        """Apply an event to update projection state"""
        payload = event.payload

        if event.event_type == "GroupCreated":
            self.name = payload["name"]
            self.founder_id = payload["founder_id"]
            self.transparency_mode = TransparencyMode(payload["transparency_mode"])
            self.founders_only_rules = payload["founders_only_rules"]
            self.created_at = datetime.fromisoformat(payload["created_at"])

        elif event.event_type == "MemberAdmitted":
            self.roster.add(
                payload["user_id"],
                Role(payload["role"]),
                datetime.fromisoformat(payload["joined_at"]),
            )

        elif event.event_type == "MemberRoleChanged":
            self.roster.set_role(payload["user_id"], Role(payload["new_role"]))

        elif event.event_type == "MemberRemoved":
            self.roster.discard(payload["user_id"])

        elif event.event_type == "FounderTransferred":
            self.roster.set_role(payload["previous_founder_id"], Role.MANAGER)
            self.roster.set_role(payload["new_founder_id"], Role.FOUNDER)
            self.founder_id = payload["new_founder_id"]

        elif event.event_type == "GroupSettingsUpdated":
            self.transparency_mode = TransparencyMode(payload["transparency_mode"])
            self.founders_only_rules = payload["founders_only_rules"]

        elif event.event_type == "BallotOpened":
            if payload["kind"] == "join_request":
                self.open_join_requests[payload["subject_id"]] = payload["ballot_id"]
            else:
                self.open_proposals[payload["subject_id"]] = payload["ballot_id"]

        elif event.event_type == "BallotClosed":
            if payload["kind"] == "join_request":
                self.open_join_requests.pop(payload["subject_id"], None)
            else:
                self.open_proposals.pop(payload["subject_id"], None)

        self.version = event.version

    def role_of(self, user_id: str | None) -> Role | None:
        if not user_id:
            return None
        return self.roster.role_of(user_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for read APIs and the CLI"""
        counts = self.roster.counts
        return {
            "group_id": self.group_id,
            "name": self.name,
            "founder_id": self.founder_id,
            "transparency_mode": self.transparency_mode.value,
            "founders_only_rules": self.founders_only_rules,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "members": {
                uid: record.role.value for uid, record in self.roster.members.items()
            },
            "counts": {
                "founders": counts.founders,
                "managers": counts.managers,
                "members": counts.members,
                "leaders": counts.leaders,
                "total": counts.total,
            },
            "open_join_requests": dict(self.open_join_requests),
            "open_proposals": dict(self.open_proposals),
            "version": self.version,
        }

    @classmethod
    def from_events(cls, group_id: str, events: list[Event]) -> "GroupState":
        state = cls(group_id)
        for event in events:
            state.apply_event(event)
        return state
