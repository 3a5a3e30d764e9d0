"""Tests for jira_flow/providers/factory.py."""

from jira_flow.config.settings import JiraFlowSettings
from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.providers.factory import create_issue_store, create_workflow_table
from jira_flow.providers.jira_cli import JiraCliStore
from jira_flow.providers.jira_rest import JiraRestStore
from jira_flow.utils.caching import TrackerCache


def make_settings(**tracker) -> JiraFlowSettings:
    return JiraFlowSettings(
        tracker={"base_url": "https://jira.example.com", "api_token": " test-token ", **tracker},
    )


class TestCreateWorkflowTable:
    def test_required_fields_carry_configured_ids(self, settings: JiraFlowSettings) -> None:
        table = create_workflow_table(settings)

        done = table.stage_of("Done")
        ids = {ref.display_name: ref.external_id for ref in done.required_fields}
        assert ids == {"Dev Start Date": "customfield_11516", "Dev Due Date": "customfield_10304"}


class TestCreateIssueStore:
    def test_rest_store_by_default(self) -> None:
        store = create_issue_store(make_settings())

        assert type(store) is JiraRestStore
        assert store.base_url == "https://jira.example.com"
        assert store.token == "test-token"
        assert store.deployment == "server"
        assert isinstance(store.workflow, WorkflowTable)

    def test_cli_store(self) -> None:
        store = create_issue_store(make_settings(transport="cli", cli_path="/opt/jira"))

        assert isinstance(store, JiraCliStore)
        assert store.cli_path == "/opt/jira"

    def test_cloud_settings_passed_through(self) -> None:
        store = create_issue_store(make_settings(deployment="cloud", email="dev@example.com", timeout=12))

        assert store.is_cloud
        assert store.email == "dev@example.com"
        assert store.timeout == 12

    def test_cache_seeded_with_configured_ids(self) -> None:
        store = create_issue_store(make_settings())

        assert store.cache._seed["Planned Dev Due Date"] == "customfield_11509"

    def test_explicit_workflow_and_cache(self, short_table: WorkflowTable) -> None:
        cache = TrackerCache()

        store = create_issue_store(make_settings(), workflow=short_table, cache=cache)

        assert store.workflow is short_table
        assert store.cache is cache
