"""Jira issue store that drives the ``jira`` command-line client.

Issue lookup, search and transitions run through ``jira issue view/list/move``
so they behave exactly like the CLI the team already uses. The CLI has no
commands for custom fields, the field catalog or the user directory, so
those operations go through the REST API of the parent class.
"""

import json
import re

import structlog

from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.exceptions import (
    ExternalServiceError,
    IssueNotFoundError,
    TransitionRejectedError,
    truncate_message,
)
from jira_flow.models.domain import Issue
from jira_flow.providers.jira_rest import JiraRestStore, jql_list
from jira_flow.utils.async_subprocess import command_env, run_command, strip_ansi

log = structlog.get_logger(__name__)

_NOT_FOUND = re.compile(r"not found|does not exist|\b404\b", re.IGNORECASE)
_ERROR_WORDS = re.compile(r"error|failed|invalid", re.IGNORECASE)
_SUCCESS_TICK = "✓"


class JiraCliStore(JiraRestStore):
    """``IssueStore`` backed by the jira CLI for issue operations."""

    def __init__(
        self,
        workflow: WorkflowTable,
        base_url: str,
        token: str,
        *,
        cli_path: str = "jira",
        **kwargs,
    ):
        super().__init__(workflow, base_url, token, **kwargs)
        self.cli_path = cli_path

    async def _run_cli(self, *args: str) -> tuple[str, str, int]:
        log.debug("jira_cli", args=args)
        try:
            return await run_command(
                self.cli_path,
                *args,
                check=False,
                timeout=self.timeout,
                env=command_env({"JIRA_API_TOKEN": self.token or ""}),
            )
        except FileNotFoundError as e:
            raise ExternalServiceError(f"jira CLI not found at '{self.cli_path}'") from e
        except TimeoutError as e:
            raise ExternalServiceError(f"jira CLI timed out after {self.timeout}s") from e

    async def fetch_issue(self, key: str) -> Issue:
        """Get single issue via ``jira issue view --raw``."""
        log.info("fetch_issue", issue=key, transport="cli")

        stdout, stderr, code = await self._run_cli("issue", "view", key, "--raw")
        if code != 0:
            text = strip_ansi(stderr or stdout).strip()
            if _NOT_FOUND.search(text):
                raise IssueNotFoundError(key)
            raise ExternalServiceError(f"jira CLI failed (exit {code}): {truncate_message(text)}")

        try:
            raw = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ExternalServiceError(
                f"Could not parse jira CLI output for {key}", response_text=stdout[:500]
            ) from e

        issue = self._parse_issue(raw, fallback_key=key)
        if not issue.status:
            raise ExternalServiceError(f"Could not determine status for {key}")
        return issue

    async def list_assigned_issues(self, statuses: list[str]) -> list[Issue]:
        """Issues assigned to the current user, via ``jira issue list --raw``."""
        if not statuses:
            return []
        log.info("list_assigned_issues", statuses=statuses, transport="cli")

        jql = f"assignee = currentUser() AND status in ({jql_list(statuses)})"
        stdout, stderr, code = await self._run_cli(
            "issue", "list", "--jql", jql, "--order-by", "updated", "--raw"
        )
        if code != 0:
            text = strip_ansi(stderr or stdout).strip()
            raise ExternalServiceError(f"jira CLI failed (exit {code}): {truncate_message(text)}")

        try:
            parsed = json.loads(stdout)
        except json.JSONDecodeError:
            # The CLI prints a plain message instead of JSON when nothing matches
            log.debug("jira_cli_list_not_json", output=stdout[:200])
            return []

        if isinstance(parsed, list):
            items = parsed
        elif isinstance(parsed, dict):
            items = parsed.get("issues", [])
        else:
            items = []

        issues = [self._parse_issue(raw) for raw in items if isinstance(raw, dict)]
        return [issue for issue in issues if issue.key and issue.status]

    async def attempt_transition(self, key: str, label: str) -> None:
        """Invoke ``jira issue move KEY LABEL``."""
        log.info("attempt_transition", issue=key, label=label, transport="cli")

        stdout, stderr, code = await self._run_cli("issue", "move", key, label)
        output = strip_ansi("\n".join(part for part in (stderr, stdout) if part)).strip()

        if code != 0:
            if _NOT_FOUND.search(output) and "transition" not in output.lower():
                raise IssueNotFoundError(key)
            raise TransitionRejectedError(
                output or f"jira CLI exited with status {code}",
                issue_key=key,
                label=label,
            )

        clean_stdout = strip_ansi(stdout)
        if _ERROR_WORDS.search(clean_stdout) and _SUCCESS_TICK not in clean_stdout:
            raise TransitionRejectedError(output, issue_key=key, label=label)

        log.info("transition_applied", issue=key, label=label)

    async def open_issue(self, key: str) -> bool:
        """Open the issue in the browser via ``jira open KEY``."""
        try:
            _, stderr, code = await self._run_cli("open", key)
        except ExternalServiceError as e:
            log.warning("jira_cli_open_failed", issue=key, error=e.message)
            return False
        if code != 0:
            log.warning("jira_cli_open_failed", issue=key, error=strip_ansi(stderr).strip())
            return False
        return True
