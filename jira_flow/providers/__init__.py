"""Issue store implementations for the Jira tracker.

Key Components:
    - IssueStore: Abstract boundary used by the transition engine
    - JiraRestStore: Jira REST API v2 over a pooled httpx client
    - JiraCliStore: Issue view/list/move through the ``jira`` CLI, REST
      for fields and users

Example:
    >>> from jira_flow.providers.factory import create_issue_store
    >>> store = create_issue_store(settings)
    >>> async with store:
    ...     issue = await store.fetch_issue("PROJ-42")
"""

from jira_flow.providers.base import IssueStore

__all__ = [
    "IssueStore",
]
