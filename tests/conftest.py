"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from jira_flow.config.settings import JiraFlowSettings, WorkflowConfig
from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.models.domain import Issue, Stage
from jira_flow.providers.base import IssueStore

CONFIGURED_FIELD_IDS = {
    "Dev Start Date": "customfield_11516",
    "Planned Dev Start Date": "customfield_11520",
    "Dev Due Date": "customfield_10304",
    "Planned Dev Due Date": "customfield_11509",
}


@pytest.fixture
def workflow_table() -> WorkflowTable:
    """Default team workflow."""
    return WorkflowTable.from_config(WorkflowConfig(), CONFIGURED_FIELD_IDS)


@pytest.fixture
def short_table() -> WorkflowTable:
    """Four-stage workflow A -> B -> C -> Done without required fields."""
    return WorkflowTable([Stage("A"), Stage("B"), Stage("C"), Stage("Done")])


def make_store(table: WorkflowTable) -> MagicMock:
    """IssueStore mock whose async methods are AsyncMocks."""
    store = MagicMock(spec=IssueStore)
    store.workflow = table
    store.normalize_status.side_effect = table.normalize
    store.fetch_issue = AsyncMock()
    store.list_assigned_issues = AsyncMock(return_value=[])
    store.attempt_transition = AsyncMock(return_value=None)
    store.read_fields = AsyncMock(return_value={})
    store.write_fields = AsyncMock(return_value=None)
    store.resolve_field_id = AsyncMock(return_value=None)
    store.search_identity = AsyncMock(return_value=[])
    store.assign = AsyncMock(return_value=None)
    store.current_identity = AsyncMock()
    store.browse_url.side_effect = lambda key: f"https://jira.example.com/browse/{key}"
    store.open_issue = AsyncMock(return_value=False)
    return store


@pytest.fixture
def mock_store(workflow_table: WorkflowTable) -> MagicMock:
    """Store mock bound to the default workflow."""
    return make_store(workflow_table)


@pytest.fixture
def sample_issue() -> Issue:
    """Story sitting in development."""
    return Issue(
        key="PROJ-42",
        summary="Fix login redirect",
        status="Doing",
        assignee="Sam Dev",
        priority="High",
        category="Story",
    )


@pytest.fixture
def settings() -> JiraFlowSettings:
    """Settings with defaults for everything but the tracker."""
    return JiraFlowSettings(
        tracker={
            "base_url": "https://jira.example.com",
            "api_token": "test-token",
            "default_project": "PROJ",
        },
    )


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Minimal YAML configuration on disk."""
    path = tmp_path / "jira_flow.yaml"
    path.write_text(
        """
tracker:
  base_url: https://jira.example.com
  api_token: ${JIRA_FLOW_TEST_TOKEN:-secret-token}
  default_project: PROJ
workflow:
  pacing_delay: 0
""".lstrip(),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def short_store(short_table: WorkflowTable) -> MagicMock:
    """Store mock bound to the four-stage workflow."""
    return make_store(short_table)
