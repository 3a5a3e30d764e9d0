"""Configuration system for jira-flow.

This package provides type-safe configuration management using Pydantic.

Key Components:
    - JiraFlowSettings: Main configuration container with YAML loading support
    - TrackerConfig: Jira connection and transport settings
    - WorkflowConfig: Stage sequence, category workflows, aliases, pacing
    - FieldPairConfig: Auto-filled field and its planned counterpart
    - RoleConfig: Stage-to-role assignment rules

Example:
    >>> from jira_flow.config import JiraFlowSettings
    >>> settings = JiraFlowSettings.from_yaml("jira_flow.yaml")
    >>> settings.workflow.pacing_delay
    0.6
"""

from jira_flow.config.settings import (
    FieldPairConfig,
    FieldRefConfig,
    JiraFlowSettings,
    RejectionPatternsConfig,
    RoleConfig,
    StageConfig,
    TrackerConfig,
    WorkflowConfig,
)

__all__ = [
    "FieldPairConfig",
    "FieldRefConfig",
    "JiraFlowSettings",
    "RejectionPatternsConfig",
    "RoleConfig",
    "StageConfig",
    "TrackerConfig",
    "WorkflowConfig",
]
