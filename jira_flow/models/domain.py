"""
Domain models for the workflow engine.

These dataclasses are the normalized internal representation of tracker
data (issues, users, custom fields) and of the engine's own results.
Provider implementations convert Jira payloads into them.

Example:
    Building an issue snapshot from a Jira payload::

        issue = Issue(
            key=raw["key"],
            summary=fields["summary"],
            status=fields["status"]["name"],
            assignee=fields["assignee"]["displayName"],
            priority=fields["priority"]["name"],
            category=fields["issuetype"]["name"],
        )
"""

from dataclasses import dataclass, field

from jira_flow.enums import Operation, OutcomeStatus, RunPhase
from jira_flow.exceptions import JiraFlowError


@dataclass(frozen=True)
class FieldRef:
    """Identity of a custom field.

    The external id may be unknown until resolved through the tracker's
    field catalog.
    """

    display_name: str
    """Name shown in the tracker UI (e.g. "Dev Start Date")."""

    external_id: str | None = None
    """Tracker field id (e.g. "customfield_11516"), if known."""


@dataclass(frozen=True)
class FieldPair:
    """A managed field and the planned counterpart it is filled from."""

    target: FieldRef
    source: FieldRef


@dataclass(frozen=True)
class Stage:
    """One named step of the workflow.

    Stages are immutable and ordered by their position in the workflow
    table; the first stage is the initial state, the last is terminal.
    """

    name: str
    """Canonical display name (e.g. "1ST REVIEW")."""

    glyph: str = ""
    """Emoji shown next to the stage name."""

    color: str = ""
    """Hex color used when rendering the stage."""

    description: str = ""
    """One-line explanation of what happens in this stage."""

    required_fields: frozenset[FieldRef] = frozenset()
    """Fields that must hold values before entering this stage."""

    @property
    def label(self) -> str:
        """Glyph and name, as shown in progress reports."""
        return f"{self.glyph} {self.name}".strip()


@dataclass
class Issue:
    """Read replica of a tracker issue.

    Owned by the tracker; the engine replaces its local snapshot only after
    a transition is confirmed.
    """

    key: str
    summary: str = ""
    status: str = ""
    """Status name as reported by the tracker, possibly non-canonical."""

    assignee: str = ""
    priority: str = ""
    category: str = ""
    """Issue type (e.g. "Story", "Documentation")."""


@dataclass(frozen=True)
class Identity:
    """A tracker user."""

    account_id: str
    """Stable identifier (Cloud accountId, or the username on Server)."""

    display_name: str = ""
    name: str = ""
    """Login name on Jira Server/Data Center, empty on Cloud."""


@dataclass
class TransitionAttempt:
    """One call to the tracker while moving an issue."""

    issue_key: str
    from_stage: str
    to_stage_requested: str
    to_stage_invoked: str
    """Transition label actually sent to the tracker."""

    outcome: str
    """"success" or "rejected"."""


@dataclass
class AutoFillResult:
    """Fields written by the auto-filler and fields it could not compute."""

    filled: list[str] = field(default_factory=list)
    still_missing: list[str] = field(default_factory=list)


@dataclass
class AssignResult:
    """Result of a best-effort role assignment."""

    assigned: bool = False
    assignee_name: str | None = None
    error: str | None = None


@dataclass
class RunState:
    """Progress of a run to the terminal stage."""

    phase: RunPhase = RunPhase.IDLE
    current_transition: str | None = None
    """Human-readable "from → to" of the step in flight."""

    completed_steps: list[str] = field(default_factory=list)
    total_steps: int = 0
    failed_at: str | None = None
    error_message: str | None = None
    issue_status: str | None = None
    """Status the issue was last confirmed at."""


@dataclass
class TransitionOutcome:
    """Reportable result of an engine operation.

    Every failure mode is carried here as a value instead of being raised,
    so the presentation layer never has to guard engine calls.
    """

    operation: Operation
    status: OutcomeStatus
    issue: Issue | None = None
    """Issue snapshot after the operation."""

    from_stage: str | None = None
    to_stage: str | None = None
    attempts: list[TransitionAttempt] = field(default_factory=list)
    filled: list[str] = field(default_factory=list)
    assignment: AssignResult | None = None
    advisories: list[str] = field(default_factory=list)
    """Auxiliary failures that did not block the transition."""

    missing_fields: list[str] = field(default_factory=list)
    error: JiraFlowError | None = None
    run: RunState | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        """Check if the operation reached its goal (or had nothing to do)."""
        return self.status in (OutcomeStatus.COMPLETED, OutcomeStatus.NO_OP)

    @property
    def suspended(self) -> bool:
        """Check if the operation is waiting for field values."""
        return self.status == OutcomeStatus.SUSPENDED
