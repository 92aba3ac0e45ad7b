"""
Governance Log Recorder - committed events -> audit entries

Entries are derived from events after they are committed, never written
alongside them: the log is an audit trail, not the source of truth, so a
log outage must not block a governance action.

Exactly one entry is produced per resolution (BallotResolved or
BallotExpired) and one per direct action. Roster events that a resolution
caused (the admission of an approved requester, the demotion from an
approved proposal) carry a ``via_ballot_id`` and are covered by the
resolution's entry.
"""

from collections.abc import Callable
from datetime import datetime

from group_governance.ballots.models import BallotKind, BallotStatus, ProposalAction
from group_governance.governance_log.models import (
    FounderTransferDetails,
    GovernanceLogEntry,
    GroupCreatedDetails,
    JoinResolutionDetails,
    MemberLeftDetails,
    MemberRemovedDetails,
    ProposalExpiredDetails,
    ProposalResolutionDetails,
    RoleChangeDetails,
    SettingsUpdateDetails,
)
from group_governance.kernel.events import Event
from group_governance.kernel.ids import generate_id
from group_governance.membership.models import Role, TransparencyMode


def _entry(event: Event, group_id: str, details, summary: str, **fields) -> GovernanceLogEntry:
    return GovernanceLogEntry(
        entry_id=generate_id(),
        group_id=group_id,
        actor_id=event.actor_id,
        details=details,
        summary=summary,
        cause_event_id=event.event_id,
        created_at=event.occurred_at,
        **fields,
    )


def _group_created(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    return _entry(
        event,
        p["group_id"],
        GroupCreatedDetails(
            name=p["name"],
            transparency_mode=TransparencyMode(p["transparency_mode"]),
            founders_only_rules=p["founders_only_rules"],
        ),
        f"{p['founder_id']} founded the group \"{p['name']}\"",
        target_user_id=p["founder_id"],
    )


def _role_changed(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    if p.get("via_ballot_id"):
        return None
    old_role, new_role = Role(p["old_role"]), Role(p["new_role"])
    action_type = "promotion" if new_role.is_leader else "step_down"
    if action_type == "promotion":
        summary = f"{event.actor_id} promoted {p['user_id']} to {new_role.value}"
    else:
        summary = f"{p['user_id']} stepped down to {new_role.value}"
    return _entry(
        event,
        p["group_id"],
        RoleChangeDetails(action_type=action_type, old_role=old_role, new_role=new_role),
        summary,
        target_user_id=p["user_id"],
    )


def _member_removed(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    if p.get("via_ballot_id"):
        return None
    old_role = Role(p["old_role"])
    if p["cause"] == "removed":
        details = MemberRemovedDetails(old_role=old_role)
        summary = f"{event.actor_id} removed {p['user_id']} from the group"
    else:
        details = MemberLeftDetails(old_role=old_role)
        summary = f"{p['user_id']} left the group"
    return _entry(event, p["group_id"], details, summary, target_user_id=p["user_id"])


def _founder_transferred(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    return _entry(
        event,
        p["group_id"],
        FounderTransferDetails(
            previous_founder_id=p["previous_founder_id"],
            new_founder_id=p["new_founder_id"],
        ),
        f"{p['previous_founder_id']} handed the founder role to {p['new_founder_id']}",
        target_user_id=p["new_founder_id"],
    )


def _settings_updated(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    details = SettingsUpdateDetails(
        transparency_mode=TransparencyMode(p["transparency_mode"]),
        founders_only_rules=p["founders_only_rules"],
        previous_transparency_mode=TransparencyMode(p["previous_transparency_mode"]),
        previous_founders_only_rules=p["previous_founders_only_rules"],
    )
    changes = []
    if details.transparency_mode != details.previous_transparency_mode:
        changes.append(f"transparency to {details.transparency_mode.value}")
    if details.founders_only_rules != details.previous_founders_only_rules:
        changes.append(
            "founder-only rules " + ("on" if details.founders_only_rules else "off")
        )
    return _entry(
        event,
        p["group_id"],
        details,
        f"{event.actor_id} changed " + " and ".join(changes),
    )


def _ballot_resolved(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    status = BallotStatus(p["status"])
    verdict = "approved" if status == BallotStatus.APPROVED else "rejected"

    if BallotKind(p["kind"]) == BallotKind.JOIN_REQUEST:
        details = JoinResolutionDetails(
            action_type=f"join_{verdict}",
            approve_count=p["approve_count"],
            reject_count=p["reject_count"],
            required_votes=p["required_votes"],
        )
        summary = f"Join request from {p['subject_id']} {verdict}"
    else:
        action = ProposalAction(p["action"])
        details = ProposalResolutionDetails(
            action_type=f"proposal_{verdict}",
            action=action,
            approve_count=p["approve_count"],
            reject_count=p["reject_count"],
            required_votes=p["required_votes"],
            override_reason=p.get("override_reason"),
        )
        summary = f"Proposal to {action.value} {p['subject_id']} {verdict}"
        if details.override_reason:
            summary += f" ({details.override_reason})"

    return _entry(
        event,
        p["group_id"],
        details,
        summary,
        target_user_id=p["subject_id"],
        ballot_id=p["ballot_id"],
    )


def _ballot_expired(event: Event) -> GovernanceLogEntry | None:
    p = event.payload
    action = ProposalAction(p["action"])
    return _entry(
        event,
        p["group_id"],
        ProposalExpiredDetails(
            action=action,
            approve_count=p["approve_count"],
            reject_count=p["reject_count"],
            required_votes=p["required_votes"],
            expires_at=datetime.fromisoformat(p["expires_at"]),
        ),
        f"Proposal to {action.value} {p['subject_id']} expired without quorum",
        target_user_id=p["subject_id"],
        ballot_id=p["ballot_id"],
    )


_RECORDERS: dict[str, Callable[[Event], GovernanceLogEntry | None]] = {
    "GroupCreated": _group_created,
    "MemberRoleChanged": _role_changed,
    "MemberRemoved": _member_removed,
    "FounderTransferred": _founder_transferred,
    "GroupSettingsUpdated": _settings_updated,
    "BallotResolved": _ballot_resolved,
    "BallotExpired": _ballot_expired,
}


def entries_from_events(events: list[Event]) -> list[GovernanceLogEntry]:
    """Audit entries for a batch of committed events, in commit order"""
    entries = []
    for event in events:
        recorder = _RECORDERS.get(event.event_type)
        if recorder is None:
            continue
        entry = recorder(event)
        if entry is not None:
            entries.append(entry)
    return entries
