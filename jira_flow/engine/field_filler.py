"""
Field auto-filler for transitions that require custom fields.

Each managed field has a "planned" counterpart (e.g. Dev Start Date is
filled from Planned Dev Start Date). Before a transition that needs those
fields, the filler copies planned values into empty managed fields. It
never overwrites a value that is already set.
"""

from collections.abc import Sequence

import structlog

from jira_flow.config.settings import FieldPairConfig
from jira_flow.models.domain import AutoFillResult, FieldPair, FieldRef
from jira_flow.providers.base import IssueStore

log = structlog.get_logger(__name__)


class FieldAutoFiller:
    """Copies planned field values into empty managed fields."""

    def __init__(self, store: IssueStore, pairs: Sequence[FieldPair]) -> None:
        self.store = store
        self.pairs = list(pairs)

    @classmethod
    def from_config(cls, store: IssueStore, pairs: Sequence[FieldPairConfig]) -> "FieldAutoFiller":
        return cls(
            store,
            [
                FieldPair(
                    target=FieldRef(pair.target.name, pair.target.id),
                    source=FieldRef(pair.source.name, pair.source.id),
                )
                for pair in pairs
            ],
        )

    async def auto_fill(self, issue_key: str, only: Sequence[str] | None = None) -> AutoFillResult:
        """Fill empty managed fields from their planned counterparts.

        Policy per pair: skip when the target already holds a value, copy
        the source verbatim when it holds one, otherwise report the target
        as still missing. All copies go out in a single write.

        Args:
            issue_key: Issue to fill
            only: Restrict to these target field names (case-insensitive)

        Returns:
            Filled and still-missing field names

        Raises:
            FieldUpdateError: If the batched write fails
        """
        pairs = self._select(only)
        if not pairs:
            return AutoFillResult()

        ids: dict[FieldRef, str | None] = {}
        for pair in pairs:
            for ref in (pair.target, pair.source):
                if ref not in ids:
                    ids[ref] = ref.external_id or await self.store.resolve_field_id(ref.display_name)

        wanted = sorted({field_id for field_id in ids.values() if field_id})
        values = await self.store.read_fields(issue_key, wanted) if wanted else {}

        def value_of(ref: FieldRef) -> str | None:
            field_id = ids[ref]
            return values.get(field_id) if field_id else None

        result = AutoFillResult()
        updates: dict[str, str] = {}
        for pair in pairs:
            name = pair.target.display_name
            if value_of(pair.target):
                log.debug("field_already_set", issue=issue_key, field=name)
                continue
            planned = value_of(pair.source)
            if planned:
                updates[name] = planned
                result.filled.append(name)
            else:
                result.still_missing.append(name)

        if updates:
            await self.store.write_fields(issue_key, updates)
            log.info("fields_auto_filled", issue=issue_key, fields=result.filled)
        if result.still_missing:
            log.info("fields_still_missing", issue=issue_key, fields=result.still_missing)
        return result

    def _select(self, only: Sequence[str] | None) -> list[FieldPair]:
        if only is None:
            return self.pairs
        names = {name.strip().lower() for name in only}
        return [pair for pair in self.pairs if pair.target.display_name.strip().lower() in names]
