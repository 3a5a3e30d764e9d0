"""Workflow transition engine.

This package holds the stage model and the logic that moves an issue
through it against the tracker.

Key Components:
    - WorkflowTable: Ordered stages, aliases and per-category sequences
    - TransitionResolver: Picks the tracker label for a target stage
    - RejectionClassifier: Text patterns over tracker rejection messages
    - FieldAutoFiller: Fills managed fields from planned counterparts
    - RoleAutoAssigner: Best-effort assignment on role-mapped stages
    - TransitionEngine: advance / regress / run_to_completion / resume

Example:
    >>> from jira_flow.engine.transition_engine import TransitionEngine
    >>> engine = TransitionEngine.from_settings(settings, store)
    >>> outcome = await engine.advance("PROJ-42")
"""

from jira_flow.engine.resolver import RejectionClassifier, TransitionResolver
from jira_flow.engine.workflow_table import WorkflowTable

__all__ = [
    "RejectionClassifier",
    "TransitionResolver",
    "WorkflowTable",
]
