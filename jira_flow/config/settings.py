"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for the tracker connection, the
workflow table, the auto-filled field pairs and the role assignment rules.
Defaults reproduce the team workflow the tool was written for, so a config
file only needs the tracker section.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, HttpUrl, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jira_flow.exceptions import ConfigurationError


class TrackerConfig(BaseModel):
    """Jira connection configuration.

    The API token supports ``${ENV}`` interpolation in the YAML file:
    - api_token: "${JIRA_API_TOKEN}"
    """

    base_url: HttpUrl = Field(..., description="Base URL of the Jira instance")
    api_token: SecretStr = Field(..., description="Personal access token (Server) or API token (Cloud)")
    email: str | None = Field(default=None, description="Account email, required for Jira Cloud basic auth")
    deployment: Literal["server", "cloud"] = Field(default="server", description="Jira deployment flavour")
    transport: Literal["rest", "cli"] = Field(
        default="rest", description="Use the REST API directly or the jira CLI for issue operations"
    )
    cli_path: str = Field(default="jira", description="Path to the jira CLI executable")
    default_project: str | None = Field(default=None, description="Project prefix for bare ticket numbers")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    @model_validator(mode="after")
    def validate_cloud_auth(self) -> TrackerConfig:
        """Jira Cloud authenticates with email + token."""
        if self.deployment == "cloud" and not self.email:
            raise ValueError("email is required when deployment='cloud'")
        return self


class FieldRefConfig(BaseModel):
    """Custom field reference."""

    name: str = Field(..., description="Field display name")
    id: str | None = Field(default=None, description="Field id, resolved from the field catalog when omitted")


class FieldPairConfig(BaseModel):
    """A field filled automatically from its planned counterpart."""

    target: FieldRefConfig
    source: FieldRefConfig


class RoleConfig(BaseModel):
    """Automatic assignment when an issue enters one of ``stages``."""

    name: str = Field(..., description="Role name (e.g. QA)")
    stages: list[str] = Field(..., min_length=1, description="Stages that hand the issue to this role")
    field: FieldRefConfig | None = Field(default=None, description="Issue field naming the person for this role")
    default_assignee: str | None = Field(default=None, description="Directory query used when the field is empty")


class StageConfig(BaseModel):
    """One workflow stage."""

    name: str
    glyph: str = ""
    color: str = ""
    description: str = ""
    required_fields: list[str] = Field(default_factory=list, description="Field names needed to enter the stage")


class RejectionPatternsConfig(BaseModel):
    """Regular expressions used to classify tracker rejection messages.

    Tracker wording changes between versions, so both patterns can be
    overridden. Matching is case-insensitive.
    """

    missing_fields: str = Field(
        default=r"(?:please )?fill in (.+)",
        description="Pattern whose first group lists missing field names",
    )
    available_labels: str = Field(
        default=r"available (?:states|transitions)(?: for issue \S+)?\s*:\s*(.+)",
        description="Pattern whose first group lists the legal transition labels",
    )


DEFAULT_STAGES = [
    StageConfig(name="Waiting", glyph="📋", color="#8B9EB0", description="Waiting to be started"),
    StageConfig(name="Doing", glyph="🔨", color="#F4A261", description="Actively in development"),
    StageConfig(name="Integration", glyph="🔗", color="#E9C46A", description="Integrating with other services"),
    StageConfig(name="1ST REVIEW", glyph="👀", color="#2A9D8F", description="First code review"),
    StageConfig(name="Testing", glyph="🧪", color="#4361EE", description="QA / manual testing"),
    StageConfig(name="2ND REVIEW", glyph="🔍", color="#7209B7", description="Second code review"),
    StageConfig(name="UAT", glyph="✅", color="#3A86FF", description="User acceptance testing"),
    StageConfig(name="Staging", glyph="🚀", color="#FF6B6B", description="Deployed to staging"),
    StageConfig(name="Regression", glyph="🔄", color="#FB8500", description="Regression testing"),
    StageConfig(name="Delivering", glyph="📦", color="#6A4C93", description="Delivering to production"),
    StageConfig(
        name="Done",
        glyph="🎉",
        color="#2DC653",
        description="Completed",
        required_fields=["Dev Start Date", "Dev Due Date"],
    ),
]

DEFAULT_ALIASES = {
    "TO DO": "Waiting",
    "OPEN": "Waiting",
    "IN PROGRESS": "Doing",
    "CODE REVIEW": "1ST REVIEW",
    "QA": "Testing",
    "IN TESTING": "Testing",
    "CLOSED": "Done",
    "RESOLVED": "Done",
}


def _default_stages() -> list[StageConfig]:
    return [stage.model_copy(deep=True) for stage in DEFAULT_STAGES]


def _default_field_pairs() -> list[FieldPairConfig]:
    return [
        FieldPairConfig(
            target=FieldRefConfig(name="Dev Start Date", id="customfield_11516"),
            source=FieldRefConfig(name="Planned Dev Start Date", id="customfield_11520"),
        ),
        FieldPairConfig(
            target=FieldRefConfig(name="Dev Due Date", id="customfield_10304"),
            source=FieldRefConfig(name="Planned Dev Due Date", id="customfield_11509"),
        ),
    ]


def _default_roles() -> list[RoleConfig]:
    return [
        RoleConfig(name="QA", stages=["Testing"], field=FieldRefConfig(name="QA Assignee")),
        RoleConfig(
            name="Reviewer",
            stages=["1ST REVIEW", "2ND REVIEW"],
            field=FieldRefConfig(name="Code Reviewer"),
        ),
    ]


class WorkflowConfig(BaseModel):
    """Workflow table and engine behavior configuration."""

    stages: list[StageConfig] = Field(default_factory=_default_stages, min_length=2)
    categories: dict[str, list[str]] = Field(
        default_factory=lambda: {"Documentation": ["Waiting", "Doing", "1ST REVIEW", "Done"]},
        description="Issue type -> its own ordered subset of stage names",
    )
    aliases: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ALIASES),
        description="Alternate status spelling -> canonical stage name",
    )
    exempt_categories: list[str] = Field(
        default_factory=lambda: ["Documentation"],
        description="Issue types that skip the field auto-fill gate",
    )
    pacing_delay: float = Field(default=0.6, ge=0.0, le=30.0, description="Seconds between chained transitions")
    max_message_length: int = Field(default=400, ge=40, description="Display bound for tracker messages")
    rejection_patterns: RejectionPatternsConfig = Field(default_factory=RejectionPatternsConfig)


class JiraFlowSettings(BaseSettings):
    """Main jira-flow settings.

    Combines all configuration sections and provides loading from YAML
    files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="JIRA_FLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    tracker: TrackerConfig
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    field_pairs: list[FieldPairConfig] = Field(default_factory=_default_field_pairs)
    roles: list[RoleConfig] = Field(default_factory=_default_roles)

    @property
    def known_field_ids(self) -> dict[str, str]:
        """Field name -> id for every field whose id is configured."""
        known: dict[str, str] = {}
        refs = [ref for pair in self.field_pairs for ref in (pair.target, pair.source)]
        refs.extend(role.field for role in self.roles if role.field is not None)
        for ref in refs:
            if ref.id:
                known[ref.name] = ref.id
        return known

    @classmethod
    def from_yaml(cls, config_path: str) -> JiraFlowSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            JiraFlowSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, encoding="utf-8") as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigurationError(f"Missing or invalid configuration fields: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
