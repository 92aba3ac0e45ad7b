"""
Governance Policy - the tunable constants of group self-government

The defaults encode the platform's rules: groups larger than three must keep
two leaders, proposals die after 48 hours, join messages stay short.

Fun fact: The "rule of two" is older than software - medieval city charters
often required two keys, held by two different officials, to open the
treasury chest.
"""

from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class GovernancePolicy(BaseModel):
    """
    Governance parameters

    Loaded once per process (from defaults or a JSON file) and injected
    into handlers, the sweeper and the facade.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Anti-centralization rule
    min_leaders: int = Field(
        default=2,
        ge=1,
        description="Minimum managers+founders once a group exceeds the threshold",
    )

    governance_threshold: int = Field(
        default=3,
        ge=1,
        description="Member count above which the minimum-leader rule applies",
    )

    # Ballot lifecycle
    proposal_ttl_hours: int = Field(
        default=48,
        ge=1,
        description="Hours a demote/kick proposal stays open before it expires",
    )

    max_join_message_length: int = Field(
        default=300,
        ge=0,
        description="Maximum length of the optional join request message",
    )

    # Polls
    poll_min_options: int = Field(default=2, ge=2)
    poll_max_options: int = Field(default=10, ge=2)

    # Scheduler cadence
    proposal_sweep_interval_minutes: int = Field(
        default=60,
        ge=1,
        description="How often the scheduler expires stale proposals",
    )

    poll_sweep_interval_minutes: int = Field(
        default=15,
        ge=1,
        description="How often the scheduler closes expired polls",
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @model_validator(mode="after")
    def _check_poll_bounds(self) -> "GovernancePolicy":
        if self.poll_max_options < self.poll_min_options:
            raise ValueError("poll_max_options must be >= poll_min_options")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "GovernancePolicy":
        """
        Load a policy from a JSON file

        Missing keys fall back to the defaults; unknown keys are rejected so
        a typo can't silently leave a safeguard at its default.
        """
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


default_policy = GovernancePolicy()
