"""Factory for creating the configured issue store."""

import structlog

from jira_flow.config.settings import JiraFlowSettings
from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.providers.base import IssueStore
from jira_flow.providers.jira_cli import JiraCliStore
from jira_flow.providers.jira_rest import JiraRestStore
from jira_flow.utils.caching import TrackerCache

log = structlog.get_logger(__name__)


def create_workflow_table(settings: JiraFlowSettings) -> WorkflowTable:
    """Build the workflow table, attaching configured field ids."""
    return WorkflowTable.from_config(settings.workflow, settings.known_field_ids)


def create_issue_store(
    settings: JiraFlowSettings,
    workflow: WorkflowTable | None = None,
    cache: TrackerCache | None = None,
) -> IssueStore:
    """Create the issue store selected by ``tracker.transport``.

    Args:
        settings: Application settings
        workflow: Workflow table; built from settings when omitted
        cache: Tracker cache for the session; one seeded with the configured
            field ids is created when omitted

    Returns:
        JiraRestStore or JiraCliStore

    Raises:
        ConfigurationError: If the workflow definition is inconsistent
    """
    tracker = settings.tracker
    workflow = workflow or create_workflow_table(settings)
    cache = cache or TrackerCache(seed=settings.known_field_ids)

    common = {
        "email": tracker.email,
        "deployment": tracker.deployment,
        "cache": cache,
        "timeout": tracker.timeout,
    }
    base_url = str(tracker.base_url)
    token = tracker.api_token.get_secret_value()

    if tracker.transport == "cli":
        log.info("creating_jira_cli_store", base_url=base_url, cli_path=tracker.cli_path)
        return JiraCliStore(workflow, base_url, token, cli_path=tracker.cli_path, **common)

    log.info("creating_jira_rest_store", base_url=base_url, deployment=tracker.deployment)
    return JiraRestStore(workflow, base_url, token, **common)
