"""
Best-effort assignment when an issue enters a role-mapped stage.

Entering Testing hands the issue to QA, entering a review stage hands it to
the reviewer. The person comes from an issue field when it names someone the
directory knows, else from the role's configured default; a failed field
lookup also falls back to the default. Assignment is a convenience: every
failure is logged and reported as ``assigned=False``.
"""

from collections.abc import Sequence

import structlog

from jira_flow.config.settings import RoleConfig
from jira_flow.models.domain import AssignResult, Identity
from jira_flow.providers.base import IssueStore

log = structlog.get_logger(__name__)


class RoleAutoAssigner:
    """Assigns issues to the role owning the stage they just entered."""

    def __init__(self, store: IssueStore, roles: Sequence[RoleConfig]) -> None:
        self.store = store
        self._by_stage: dict[str, RoleConfig] = {}
        for role in roles:
            for stage in role.stages:
                self._by_stage[store.normalize_status(stage)] = role

    def role_for(self, stage_name: str) -> RoleConfig | None:
        """Role mapped to a stage, if any."""
        return self._by_stage.get(self.store.normalize_status(stage_name))

    async def auto_assign(self, issue_key: str, stage_name: str) -> AssignResult:
        """Assign the issue to the role owning ``stage_name``.

        Never raises. Stages without a role return ``assigned=False`` with
        no tracker call.
        """
        role = self.role_for(stage_name)
        if role is None:
            return AssignResult()

        lookup_error: Exception | None = None
        try:
            identity = await self._designated(issue_key, role)
        except Exception as e:
            log.warning("designated_assignee_lookup_failed", issue=issue_key, role=role.name, error=str(e))
            lookup_error = e
            identity = None

        try:
            if identity is None:
                identity = await self._default(role)
            if identity is None:
                log.info("no_assignee_for_role", issue=issue_key, role=role.name, stage=stage_name)
                return AssignResult(error=str(lookup_error) if lookup_error else None)

            await self.store.assign(issue_key, identity)
        except Exception as e:
            log.warning("role_assignment_failed", issue=issue_key, role=role.name, error=str(e))
            return AssignResult(assigned=False, error=str(e))

        name = identity.display_name or identity.name or identity.account_id
        log.info("role_assigned", issue=issue_key, role=role.name, assignee=name)
        return AssignResult(assigned=True, assignee_name=name)

    async def _designated(self, issue_key: str, role: RoleConfig) -> Identity | None:
        """Person named in the issue's role field, when the directory knows them."""
        if role.field is None:
            return None
        field_id = role.field.id or await self.store.resolve_field_id(role.field.name)
        if not field_id:
            return None

        values = await self.store.read_fields(issue_key, [field_id])
        person = values.get(field_id)
        if not person:
            return None
        matches = await self.store.search_identity(person)
        return matches[0] if matches else None

    async def _default(self, role: RoleConfig) -> Identity | None:
        if not role.default_assignee:
            return None
        matches = await self.store.search_identity(role.default_assignee)
        return matches[0] if matches else None
