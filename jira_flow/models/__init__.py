"""Domain models for jira-flow.

Key Models:
    - Stage: One named step of the workflow
    - FieldRef: Identity of a custom field
    - Issue: Transient read replica of a tracker issue
    - Identity: Tracker user
    - TransitionOutcome: Reportable result of every engine operation
    - RunState: Progress of a multi-step run

Example:
    >>> from jira_flow.models import Issue
    >>> issue = Issue(key="PROJ-42", summary="Fix login", status="Doing")
"""

from jira_flow.models.domain import (
    AssignResult,
    AutoFillResult,
    FieldPair,
    FieldRef,
    Identity,
    Issue,
    RunState,
    Stage,
    TransitionAttempt,
    TransitionOutcome,
)

__all__ = [
    "AssignResult",
    "AutoFillResult",
    "FieldPair",
    "FieldRef",
    "Identity",
    "Issue",
    "RunState",
    "Stage",
    "TransitionAttempt",
    "TransitionOutcome",
]
