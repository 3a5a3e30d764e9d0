"""
Abstract base class for issue stores.

The transition engine talks to the tracker only through ``IssueStore``.
Implementations translate tracker payloads into the domain models and
tracker failures into the exceptions of ``jira_flow.exceptions``.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.models.domain import Identity, Issue


class IssueStore(ABC):
    """Narrow async boundary between the engine and the remote tracker.

    All methods are async to support non-blocking I/O. Implementations
    raise instead of returning error values; the engine is responsible for
    turning those exceptions into reportable outcomes.
    """

    def __init__(self, workflow: WorkflowTable) -> None:
        self.workflow = workflow

    def normalize_status(self, raw: str) -> str:
        """Canonical status name, as defined by the workflow table."""
        return self.workflow.normalize(raw)

    async def connect(self) -> None:
        """Open connections to the tracker. Optional for implementations."""

    async def disconnect(self) -> None:
        """Release connections. Optional for implementations."""

    async def __aenter__(self) -> "IssueStore":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    @abstractmethod
    async def fetch_issue(self, key: str) -> Issue:
        """Get a single issue.

        Raises:
            IssueNotFoundError: If the key does not exist.
            ExternalServiceError: If the tracker cannot be reached.
        """

    @abstractmethod
    async def list_assigned_issues(self, statuses: list[str]) -> list[Issue]:
        """Issues assigned to the current user whose status is in ``statuses``.

        Sorted by last update, most recent first.
        """

    @abstractmethod
    async def attempt_transition(self, key: str, label: str) -> None:
        """Invoke the transition named ``label``.

        Raises:
            TransitionRejectedError: If the tracker refuses. The message is
                the tracker's text, unaltered apart from formatting cleanup.
        """

    @abstractmethod
    async def read_fields(self, key: str, field_ids: list[str]) -> dict[str, str | None]:
        """Current values of custom fields, keyed by field id.

        Absent or empty fields map to None. Option-like values are flattened
        to their display string.
        """

    @abstractmethod
    async def write_fields(self, key: str, values: Mapping[str, str]) -> None:
        """Set custom fields by display name in a single update.

        Raises:
            FieldUpdateError: If a name cannot be resolved or the update fails.
        """

    @abstractmethod
    async def resolve_field_id(self, display_name: str) -> str | None:
        """Field id for a display name, from the cached field catalog."""

    @abstractmethod
    async def search_identity(self, query: str) -> list[Identity]:
        """Users matching a directory query (username, email or name)."""

    @abstractmethod
    async def assign(self, key: str, identity: Identity) -> None:
        """Assign the issue.

        Raises:
            ExternalServiceError: If the tracker refuses the assignment.
        """

    @abstractmethod
    async def current_identity(self) -> Identity:
        """The user the store is authenticated as."""

    @abstractmethod
    def browse_url(self, key: str) -> str:
        """Web address of the issue in the tracker UI."""

    async def open_issue(self, key: str) -> bool:
        """Open the issue with the tracker's own client, if it has one.

        Returns:
            False when the store has no native viewer and the caller should
            open ``browse_url`` itself
        """
        return False
