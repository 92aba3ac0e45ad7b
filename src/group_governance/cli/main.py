"""
Group Governance CLI

Command-line interface for the group governance core.
Provides commands for groups, join requests, proposals, polls and the
expiry scheduler.

Usage:
    ggov init --db governance.db
    ggov group create --name "Allotment Society" --actor alice
    ggov join request --group <id> --actor bob --message "Plot 14"
    ggov vote --ballot <id> --choice approve --actor alice
    ggov proposal open --group <id> --action kick --target carol --reason "..." --actor alice
    ggov poll create --group <id> --question "Compost day?" --option Sat --option Sun --actor bob
    ggov sweep
    ggov scheduler
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

import typer
from typing_extensions import Annotated

from group_governance.governance import GroupGovernance
from group_governance.kernel.errors import GovernanceError
from group_governance.kernel.logging import configure_logging, is_production
from group_governance.kernel.policy import GovernancePolicy

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(json_output=is_production(), log_level="INFO")

app = typer.Typer(
    name="ggov",
    help="Group Governance - leader-voted membership with an anti-centralization rule",
    add_completion=False,
)

# Sub-apps
group_app = typer.Typer(help="Group lifecycle and direct membership commands")
join_app = typer.Typer(help="Join request commands")
proposal_app = typer.Typer(help="Demote/kick proposal commands")
poll_app = typer.Typer(help="Poll commands")

app.add_typer(group_app, name="group")
app.add_typer(join_app, name="join")
app.add_typer(proposal_app, name="proposal")
app.add_typer(poll_app, name="poll")

# Global state
DEFAULT_DB = Path(".ggov.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
PolicyOption = Annotated[
    Optional[Path], typer.Option("--policy", help="Governance policy JSON file")
]
ActorOption = Annotated[str, typer.Option("--actor", help="Acting user ID")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_governance(
    db_path: Optional[Path] = None, policy_path: Optional[Path] = None
) -> GroupGovernance:
    """Get GroupGovernance instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'ggov init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    policy = GovernancePolicy.from_file(policy_path) if policy_path else None
    return GroupGovernance(str(db), policy=policy)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Print governance rejections as one line and exit 1"""
    try:
        yield
    except GovernanceError as e:
        typer.echo(f"Error: {e.reason}", err=True)
        raise typer.Exit(1) from e


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def echo_group(group: dict[str, Any]) -> None:
    typer.echo(f"\nGroup: {group['group_id']}")
    typer.echo(f"  Name: {group['name']}")
    typer.echo(f"  Transparency: {group['transparency_mode']}")
    counts = group.get("counts")
    if counts is None:
        typer.echo("  (membership is not visible to you)")
        return
    typer.echo(
        f"  Members: {counts['total']} "
        f"({counts['founders']} founder, {counts['managers']} managers, "
        f"{counts['members']} members)"
    )
    health = group.get("health")
    if health and health["in_violation"]:
        typer.echo(
            f"  ⚠️  Below the leader minimum: promote {health['leaders_needed']} more manager(s)"
        )
    if "members" in group:
        typer.echo("  Roster:")
        for user_id, role in group["members"].items():
            typer.echo(f"    {user_id}: {role}")


def echo_ballot(ballot: dict[str, Any]) -> None:
    typer.echo(f"  Status: {ballot['status']}")
    typer.echo(
        f"  Votes: {ballot['approve_count']} approve / {ballot['reject_count']} reject "
        f"(needs {ballot['required_votes']} to approve, "
        f"{ballot['reject_threshold']} to reject)"
    )
    if ballot.get("expires_at"):
        typer.echo(f"  Expires: {ballot['expires_at']}")
    if ballot.get("override_reason"):
        typer.echo(f"  Overridden: {ballot['override_reason']}")


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new governance database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Create database by initializing the core
    gov = GroupGovernance(str(db))
    typer.echo(f"✓ Initialized governance database: {db}")
    typer.echo(f"  Schema version: {gov.stats()['schema_version']}")


# Group commands


@group_app.command("create")
def group_create(
    name: Annotated[str, typer.Option("--name", help="Group name")],
    actor: ActorOption,
    transparency: Annotated[
        str,
        typer.Option(
            "--transparency", help="Transparency mode (private, public_members, public_all)"
        ),
    ] = "public_members",
    founders_only_rules: Annotated[
        bool,
        typer.Option("--founders-only-rules", help="Only the founder may change settings"),
    ] = False,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Create a group; the actor becomes its founder"""
    gov = get_governance(db, policy)
    with reported_errors():
        group = gov.create_group(
            name,
            actor_id=actor,
            transparency_mode=transparency,
            founders_only_rules=founders_only_rules,
        )

    typer.echo(f"✓ Created group: {group['group_id']}")
    typer.echo(f"  Name: {group['name']}")
    typer.echo(f"  Founder: {group['founder_id']}")


@group_app.command("show")
def group_show(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    viewer: Annotated[
        Optional[str],
        typer.Option("--viewer", help="Viewing user ID (omit for anonymous)"),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show group details (filtered by transparency mode)"""
    gov = get_governance(db)
    with reported_errors():
        group = gov.get_group(group_id, viewer_id=viewer)

    if json_output:
        echo_json(group)
        return
    echo_group(group)


@group_app.command("role")
def group_role(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    user: Annotated[str, typer.Option("--user", help="User whose role changes")],
    role: Annotated[str, typer.Option("--role", help="New role (manager or member)")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Promote a member to manager, or step down yourself"""
    gov = get_governance(db, policy)
    with reported_errors():
        group = gov.change_role(group_id, user, role, actor_id=actor)

    typer.echo(f"✓ {user} is now {group['members'][user]}")


@group_app.command("leave")
def group_leave(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Leave a group"""
    gov = get_governance(db, policy)
    with reported_errors():
        gov.leave_group(group_id, actor_id=actor)

    typer.echo(f"✓ {actor} left group {group_id}")


@group_app.command("remove")
def group_remove(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    user: Annotated[str, typer.Option("--user", help="Member to remove")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Remove a plain member right away (managers need a kick proposal)"""
    gov = get_governance(db, policy)
    with reported_errors():
        gov.remove_member(group_id, user, actor_id=actor)

    typer.echo(f"✓ Removed {user} from group {group_id}")


@group_app.command("transfer")
def group_transfer(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    to: Annotated[str, typer.Option("--to", help="Manager who becomes founder")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Hand the founder role to a manager"""
    gov = get_governance(db, policy)
    with reported_errors():
        group = gov.transfer_founder(group_id, to, actor_id=actor)

    typer.echo(f"✓ Founder is now {group['founder_id']}")


@group_app.command("settings")
def group_settings(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    actor: ActorOption,
    transparency: Annotated[
        Optional[str],
        typer.Option("--transparency", help="New transparency mode"),
    ] = None,
    founders_only_rules: Annotated[
        Optional[bool],
        typer.Option(
            "--founders-only-rules/--leaders-edit-rules",
            help="Whether only the founder may change settings",
        ),
    ] = None,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Change transparency mode or the founders-only-rules flag"""
    gov = get_governance(db, policy)
    with reported_errors():
        group = gov.update_settings(
            group_id,
            actor_id=actor,
            transparency_mode=transparency,
            founders_only_rules=founders_only_rules,
        )

    typer.echo(f"✓ Updated settings for {group_id}")
    typer.echo(f"  Transparency: {group['transparency_mode']}")
    typer.echo(f"  Founders-only rules: {group['founders_only_rules']}")


# Join request commands


@join_app.command("request")
def join_request(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    actor: ActorOption,
    message: Annotated[
        Optional[str],
        typer.Option("--message", help="Note to the group's leaders"),
    ] = None,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Ask to join a group"""
    gov = get_governance(db, policy)
    with reported_errors():
        ballot = gov.request_to_join(group_id, actor_id=actor, message=message)

    typer.echo(f"✓ Join request opened: {ballot['ballot_id']}")
    echo_ballot(ballot)


# Proposal commands


@proposal_app.command("open")
def proposal_open(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    action: Annotated[str, typer.Option("--action", help="demote or kick")],
    target: Annotated[str, typer.Option("--target", help="Member the proposal is about")],
    reason: Annotated[str, typer.Option("--reason", help="Why (shown to voters)")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Propose demoting a manager or kicking a member"""
    gov = get_governance(db, policy)
    with reported_errors():
        ballot = gov.open_proposal(group_id, action, target, reason, actor_id=actor)

    typer.echo(f"✓ Proposal opened: {ballot['ballot_id']}")
    echo_ballot(ballot)


@proposal_app.command("list")
def proposal_list(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    viewer: Annotated[
        Optional[str],
        typer.Option("--viewer", help="Viewing user ID (omit for anonymous)"),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List open join requests and proposals of a group"""
    gov = get_governance(db)
    with reported_errors():
        ballots = gov.list_open_ballots(group_id, viewer_id=viewer)

    if json_output:
        echo_json(ballots)
        return

    if not ballots:
        typer.echo("No open ballots")
        return

    typer.echo(f"Open ballots ({len(ballots)}):")
    for ballot in ballots:
        label = ballot["action"] or "join"
        typer.echo(f"\n  {ballot['ballot_id']}: {label} {ballot['subject_id']}")
        echo_ballot(ballot)


@proposal_app.command("show")
def proposal_show(
    ballot_id: Annotated[str, typer.Option("--ballot", help="Ballot ID")],
    viewer: Annotated[
        Optional[str],
        typer.Option("--viewer", help="Viewing user ID (omit for anonymous)"),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a join request or proposal"""
    gov = get_governance(db)
    with reported_errors():
        ballot = gov.get_ballot(ballot_id, viewer_id=viewer)

    if json_output:
        echo_json(ballot)
        return

    typer.echo(f"\nBallot: {ballot['ballot_id']} ({ballot['kind']})")
    typer.echo(f"  Subject: {ballot['subject_id']}")
    echo_ballot(ballot)


# Voting


@app.command()
def vote(
    ballot_id: Annotated[str, typer.Option("--ballot", help="Ballot ID")],
    choice: Annotated[str, typer.Option("--choice", help="approve or reject")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Vote on a join request or proposal"""
    gov = get_governance(db, policy)
    with reported_errors():
        result = gov.cast_vote(ballot_id, choice, actor_id=actor)

    typer.echo(f"✓ Vote recorded: {choice}")
    if result.outcome == "resolved":
        typer.echo(f"  Ballot resolved: {result.status.value}")
        if result.override_reason:
            typer.echo(f"  Overridden: {result.override_reason}")
    else:
        typer.echo(
            f"  Still open: {result.approve_count}/{result.required_votes} approvals, "
            f"{result.reject_count}/{result.reject_threshold} rejections"
        )


# Governance log


@app.command()
def log(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    viewer: Annotated[
        Optional[str],
        typer.Option("--viewer", help="Viewing user ID (omit for anonymous)"),
    ] = None,
    action_type: Annotated[
        Optional[str],
        typer.Option("--type", help="Only entries of this action type"),
    ] = None,
    target: Annotated[
        Optional[str],
        typer.Option("--target", help="Only entries about this user"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum entries")] = 20,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a group's governance log, newest first"""
    gov = get_governance(db)
    with reported_errors():
        entries = gov.get_governance_log(
            group_id,
            viewer_id=viewer,
            action_type=action_type,
            target_user_id=target,
            limit=limit,
        )

    if json_output:
        echo_json(entries)
        return

    if not entries:
        typer.echo("No governance log entries")
        return

    typer.echo(f"Governance log ({len(entries)}):")
    for entry in entries:
        typer.echo(f"  {entry['created_at']}  [{entry['details']['action_type']}] {entry['summary']}")


# Poll commands


@poll_app.command("create")
def poll_create(
    group_id: Annotated[str, typer.Option("--group", help="Group ID")],
    question: Annotated[str, typer.Option("--question", help="Poll question")],
    options: Annotated[List[str], typer.Option("--option", help="An answer (repeat 2-10 times)")],
    actor: ActorOption,
    expires_in: Annotated[
        Optional[int],
        typer.Option("--expires-in", help="Close automatically after this many minutes"),
    ] = None,
    multiple: Annotated[
        bool, typer.Option("--multiple", help="Voters may pick several options")
    ] = False,
    anonymous: Annotated[
        bool, typer.Option("--anonymous", help="Hide who voted for what")
    ] = False,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Create a poll"""
    gov = get_governance(db, policy)
    with reported_errors():
        poll = gov.create_poll(
            group_id,
            question,
            list(options),
            actor_id=actor,
            expires_in_minutes=expires_in,
            allow_multiple=multiple,
            is_anonymous=anonymous,
        )

    typer.echo(f"✓ Created poll: {poll['poll_id']}")
    for index, option in enumerate(poll["options"]):
        typer.echo(f"  [{index}] {option['label']}")
    if poll["expires_at"]:
        typer.echo(f"  Closes: {poll['expires_at']}")


@poll_app.command("vote")
def poll_vote(
    poll_id: Annotated[str, typer.Option("--poll", help="Poll ID")],
    options: Annotated[
        List[int],
        typer.Option("--option", help="Option index (repeat on multiple-choice polls)"),
    ],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Vote in a poll (voting again replaces your vote)"""
    gov = get_governance(db, policy)
    with reported_errors():
        poll = gov.vote_poll(poll_id, list(options), actor_id=actor)

    labels = [poll["options"][index]["label"] for index in sorted(options)]
    typer.echo(f"✓ Voted for: {', '.join(labels)}")


@poll_app.command("retract")
def poll_retract(
    poll_id: Annotated[str, typer.Option("--poll", help="Poll ID")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Withdraw your vote while the poll is open"""
    gov = get_governance(db, policy)
    with reported_errors():
        gov.retract_poll_vote(poll_id, actor_id=actor)

    typer.echo(f"✓ Vote withdrawn from poll {poll_id}")


@poll_app.command("close")
def poll_close(
    poll_id: Annotated[str, typer.Option("--poll", help="Poll ID")],
    actor: ActorOption,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Close a poll early (creator or leader)"""
    gov = get_governance(db, policy)
    with reported_errors():
        poll = gov.close_poll(poll_id, actor_id=actor)

    typer.echo(f"✓ Closed poll: {poll_id}")
    typer.echo(f"  Winner: {poll['winner'] or 'none (tie or no votes)'}")


@poll_app.command("show")
def poll_show(
    poll_id: Annotated[str, typer.Option("--poll", help="Poll ID")],
    viewer: Annotated[
        Optional[str],
        typer.Option("--viewer", help="Viewing user ID (omit for anonymous)"),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a poll and its tally"""
    gov = get_governance(db)
    with reported_errors():
        poll = gov.get_poll(poll_id, viewer_id=viewer)

    if json_output:
        echo_json(poll)
        return

    typer.echo(f"\nPoll: {poll['poll_id']} ({poll['status']})")
    typer.echo(f"  {poll['question']}")
    for index, option in enumerate(poll["options"]):
        typer.echo(f"  [{index}] {option['label']}: {option['count']}")
    if poll["status"] == "closed":
        typer.echo(f"  Winner: {poll['winner'] or 'none (tie or no votes)'}")


# Scheduling and monitoring


@app.command()
def sweep(
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Expire stale proposals and close overdue polls (run from cron)"""
    gov = get_governance(db, policy)

    result = gov.sweep()

    typer.echo(f"✓ Sweep completed at {result.swept_at.isoformat()}")
    typer.echo(f"  Proposals expired: {len(result.expired)}")
    typer.echo(f"  Polls closed: {len(result.closed)}")
    if result.skipped:
        typer.echo(f"  Skipped (resolved concurrently): {len(result.skipped)}")


@app.command()
def scheduler(
    iterations: Annotated[
        Optional[int],
        typer.Option("--iterations", help="Stop after this many poll-cadence steps"),
    ] = None,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Run both sweep cadences in-process"""
    gov = get_governance(db, policy)
    cadence = gov.get_policy()
    typer.echo(
        f"Scheduler running: proposals every {cadence.proposal_sweep_interval_minutes} min, "
        f"polls every {cadence.poll_sweep_interval_minutes} min"
    )
    gov.sweeper.run(iterations=iterations)


@app.command()
def stats(
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show storage statistics"""
    gov = get_governance(db)
    data = gov.stats()

    if json_output:
        echo_json(data)
        return

    typer.echo("Storage:")
    typer.echo(f"  Schema version: {data['schema_version']}")
    typer.echo(f"  Events: {data['event_count']}")
    typer.echo(f"  Streams: {data['stream_count']}")


@app.command()
def metrics(
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 9090,
) -> None:
    """Serve Prometheus metrics over HTTP"""
    import time

    from group_governance.kernel.metrics import start_metrics_server

    start_metrics_server(port)
    typer.echo(f"✓ Metrics server started on port {port}")
    typer.echo(f"  Scrape endpoint: http://localhost:{port}/metrics")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Metrics server stopped")


@app.command()
def health(
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 8080,
    db: DbOption = None,
) -> None:
    """Serve the health check endpoints for liveness/readiness checks"""
    from group_governance.health_server import initialize_health_server, run_health_server

    gov = get_governance(db)
    initialize_health_server(gov.sqlite_path, gov)
    run_health_server(port=port)


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
