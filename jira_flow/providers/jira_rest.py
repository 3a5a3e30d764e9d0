"""Jira issue store implementation using direct REST API (v2) calls."""

import base64
from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.exceptions import (
    ExternalServiceError,
    FieldUpdateError,
    IssueNotFoundError,
    TransitionRejectedError,
)
from jira_flow.models.domain import Identity, Issue
from jira_flow.providers.base import IssueStore
from jira_flow.utils.caching import TrackerCache
from jira_flow.utils.connection_pool import HTTPConnectionPool, get_pool
from jira_flow.utils.retry import async_retry

log = structlog.get_logger(__name__)

ISSUE_FIELDS = "summary,status,assignee,priority,issuetype"


class JiraRestStore(IssueStore):
    """Jira implementation of ``IssueStore`` using direct REST API calls."""

    def __init__(
        self,
        workflow: WorkflowTable,
        base_url: str,
        token: str,
        *,
        email: str | None = None,
        deployment: str = "server",
        cache: TrackerCache | None = None,
        timeout: float = 30.0,
    ):
        """Initialize Jira store.

        Args:
            workflow: Workflow table used to normalize statuses
            base_url: Jira base URL (e.g., https://jira.example.com)
            token: Personal access token (Server) or API token (Cloud)
            email: Account email, used for Cloud basic auth
            deployment: "server" or "cloud"
            cache: Field catalog / identity cache shared for the session
            timeout: HTTP timeout in seconds
        """
        super().__init__(workflow)
        self.base_url = base_url.rstrip("/")
        self.api_base = f"{self.base_url}/rest/api/2"
        self.token = token.strip() if token else token
        self.email = email
        self.deployment = deployment
        self.cache = cache or TrackerCache()
        self.timeout = timeout
        self._pool: HTTPConnectionPool | None = None
        self._me: Identity | None = None

    @property
    def is_cloud(self) -> bool:
        return self.deployment == "cloud"

    def _auth_header(self) -> str:
        if self.is_cloud:
            basic = base64.b64encode(f"{self.email}:{self.token}".encode()).decode("ascii")
            return f"Basic {basic}"
        return f"Bearer {self.token}"

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = await get_pool(
            name=f"jira-{self.base_url}",
            base_url=self.api_base,
            timeout=self.timeout,
            headers={
                "Authorization": self._auth_header(),
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )
        log.info("jira_connected", base_url=self.base_url, deployment=self.deployment)

    async def disconnect(self) -> None:
        """Clear pool reference (pool manager handles actual cleanup)."""
        self._pool = None
        log.debug("tracker_cache_stats", catalog_loaded=self.cache.catalog_loaded, **self.cache.get_stats())

    def browse_url(self, key: str) -> str:
        return f"{self.base_url}/browse/{key}"

    async def _http(self) -> HTTPConnectionPool:
        if self._pool is None:
            await self.connect()
        assert self._pool is not None
        return self._pool

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def fetch_issue(self, key: str) -> Issue:
        """Get single issue by key."""
        log.info("fetch_issue", issue=key)

        pool = await self._http()
        response = await pool.get(f"/issue/{key}", params={"fields": ISSUE_FIELDS})
        if response.status_code == 404:
            raise IssueNotFoundError(key)
        self._raise_for_status(response, f"Failed to fetch {key}")

        issue = self._parse_issue(response.json(), fallback_key=key)
        if not issue.status:
            raise ExternalServiceError(f"Could not determine status for {key}", response_text=response.text[:500])
        return issue

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def list_assigned_issues(self, statuses: list[str]) -> list[Issue]:
        """Issues assigned to the current user in the given statuses."""
        if not statuses:
            return []
        log.info("list_assigned_issues", statuses=statuses)

        jql = f"assignee = currentUser() AND status in ({jql_list(statuses)}) ORDER BY updated DESC"
        pool = await self._http()
        response = await pool.get(
            "/search",
            params={"jql": jql, "fields": ISSUE_FIELDS, "maxResults": 100},
        )
        self._raise_for_status(response, "Failed to search issues")

        issues = [self._parse_issue(raw) for raw in response.json().get("issues", [])]
        return [issue for issue in issues if issue.key and issue.status]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def list_transitions(self, key: str) -> list[dict[str, Any]]:
        """Transitions currently available on the issue."""
        pool = await self._http()
        response = await pool.get(f"/issue/{key}/transitions")
        if response.status_code == 404:
            raise IssueNotFoundError(key)
        self._raise_for_status(response, f"Failed to list transitions for {key}")
        return response.json().get("transitions", [])

    async def attempt_transition(self, key: str, label: str) -> None:
        """Invoke the transition whose name matches ``label`` (case-insensitive)."""
        log.info("attempt_transition", issue=key, label=label)

        transitions = await self.list_transitions(key)
        wanted = label.strip().upper()
        match = next((t for t in transitions if str(t.get("name", "")).strip().upper() == wanted), None)
        if match is None:
            available = ", ".join(f"'{t.get('name')}'" for t in transitions if t.get("name"))
            raise TransitionRejectedError(
                f'Invalid transition "{label}" for {key}\nAvailable states for issue {key}: {available}',
                issue_key=key,
                label=label,
            )

        pool = await self._http()
        response = await pool.post(f"/issue/{key}/transitions", json={"transition": {"id": match["id"]}})
        if response.status_code == 404:
            raise IssueNotFoundError(key)
        if response.is_error:
            raise TransitionRejectedError(
                await self._rejection_text(response, key, label),
                issue_key=key,
                label=label,
            )
        log.info("transition_applied", issue=key, label=label)

    async def _rejection_text(self, response: httpx.Response, key: str, label: str) -> str:
        """Flatten a Jira error body into one message.

        Field validation errors ("X is required") are listed last as
        "Please fill in X, Y" so the classifier can pick them up.
        """
        header = f'Transition "{label}" rejected for {key} (HTTP {response.status_code})'
        try:
            body = response.json()
        except ValueError:
            return f"{header}\n{response.text[:400]}"

        lines = [str(msg) for msg in body.get("errorMessages", []) if msg]
        missing: list[str] = []
        for field_id, detail in (body.get("errors") or {}).items():
            if "required" in str(detail).lower():
                name = await self.cache.field_name(field_id, self._fetch_field_catalog)
                missing.append(name or field_id)
            else:
                lines.append(f"{field_id}: {detail}")
        if missing:
            lines.append(f"Please fill in {', '.join(missing)}")
        return "\n".join([header, *lines])

    # ------------------------------------------------------------------
    # Custom fields
    # ------------------------------------------------------------------

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def read_fields(self, key: str, field_ids: list[str]) -> dict[str, str | None]:
        """Current values of the given custom fields."""
        if not field_ids:
            return {}
        log.info("read_fields", issue=key, fields=field_ids)

        pool = await self._http()
        response = await pool.get(f"/issue/{key}", params={"fields": ",".join(field_ids)})
        if response.status_code == 404:
            raise IssueNotFoundError(key)
        self._raise_for_status(response, f"Failed to read fields of {key}")

        fields = response.json().get("fields") or {}
        return {field_id: _field_value(fields.get(field_id)) for field_id in field_ids}

    async def write_fields(self, key: str, values: Mapping[str, str]) -> None:
        """Set custom fields by display name in one PUT."""
        log.info("write_fields", issue=key, fields=list(values))

        field_data: dict[str, str] = {}
        for name, value in values.items():
            field_id = await self.resolve_field_id(name)
            if not field_id:
                raise FieldUpdateError(f'Could not resolve Jira field ID for "{name}"')
            field_data[field_id] = value

        pool = await self._http()
        response = await pool.put(f"/issue/{key}", json={"fields": field_data})
        if response.is_error:
            raise FieldUpdateError(
                f"Failed to update fields on {key}",
                status_code=response.status_code,
                response_text=response.text[:400],
            )

    async def resolve_field_id(self, display_name: str) -> str | None:
        """Field id from the session's cached catalog."""
        return await self.cache.field_id(display_name, self._fetch_field_catalog)

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def _fetch_field_catalog(self) -> list[dict[str, Any]]:
        log.info("fetch_field_catalog")
        pool = await self._http()
        response = await pool.get("/field")
        self._raise_for_status(response, "Failed to fetch field catalog")
        return response.json()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def search_identity(self, query: str) -> list[Identity]:
        """Directory search, memoized for the session."""
        cached = self.cache.cached_identities(query)
        if cached is not None:
            return cached

        log.info("search_identity", query=query)
        params = {"query": query} if self.is_cloud else {"username": query}
        pool = await self._http()
        response = await pool.get("/user/search", params=params)
        self._raise_for_status(response, f"User search failed for '{query}'")

        identities = [self._parse_identity(user) for user in response.json()]
        self.cache.remember_identities(query, identities)
        return identities

    async def assign(self, key: str, identity: Identity) -> None:
        """Assign the issue to a user."""
        log.info("assign", issue=key, assignee=identity.display_name or identity.account_id)

        body = {"accountId": identity.account_id} if self.is_cloud else {"name": identity.name or identity.account_id}
        pool = await self._http()
        response = await pool.put(f"/issue/{key}/assignee", json=body)
        if response.status_code == 404:
            raise IssueNotFoundError(key)
        self._raise_for_status(response, f"Failed to assign {key}")

    async def current_identity(self) -> Identity:
        """Authenticated user, fetched once."""
        if self._me is None:
            pool = await self._http()
            response = await pool.get("/myself")
            self._raise_for_status(response, "Failed to fetch current user")
            self._me = self._parse_identity(response.json())
        return self._me

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for_status(response: httpx.Response, message: str) -> None:
        if response.is_error:
            raise ExternalServiceError(message, status_code=response.status_code, response_text=response.text[:500])

    @staticmethod
    def _parse_issue(raw: dict[str, Any], fallback_key: str = "") -> Issue:
        fields = raw.get("fields") or {}
        assignee = fields.get("assignee") or {}
        issue_type = fields.get("issuetype") or fields.get("issueType") or {}
        return Issue(
            key=raw.get("key") or fallback_key,
            summary=fields.get("summary") or "",
            status=(fields.get("status") or {}).get("name") or "",
            assignee=assignee.get("displayName") or assignee.get("name") or "",
            priority=(fields.get("priority") or {}).get("name") or "",
            category=issue_type.get("name") or "",
        )

    @staticmethod
    def _parse_identity(user: dict[str, Any]) -> Identity:
        return Identity(
            account_id=user.get("accountId") or user.get("key") or user.get("name") or "",
            display_name=user.get("displayName") or "",
            name=user.get("name") or "",
        )


def jql_list(values: list[str]) -> str:
    return ", ".join('"{}"'.format(value.replace('"', '\\"')) for value in values)


def _field_value(value: Any) -> str | None:
    """Flatten a Jira field value to a string, None when empty."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for attr in ("value", "name", "displayName", "accountId", "key"):
            if isinstance(value.get(attr), str) and value[attr]:
                return value[attr]
        return None
    if isinstance(value, list):
        return _field_value(value[0]) if value else None
    return str(value)
