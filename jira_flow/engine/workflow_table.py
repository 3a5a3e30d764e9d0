"""
Ordered workflow stages and status normalization.

The table is built once at startup and never changes. Every lookup is a
pure function over it: unknown statuses produce "not found" sentinels
(None, -1, empty tuple) instead of exceptions, so callers can ask about any
string the tracker sends back.

Issue categories may use a shorter sequence (for example documentation
tickets skip integration and testing). The category lookup lives here so
the transition engine never branches on issue type.

Example:
    >>> table = WorkflowTable.from_config(WorkflowConfig())
    >>> table.normalize(" to do ")
    'WAITING'
    >>> table.next("Waiting").name
    'Doing'
    >>> [s.name for s in table.remaining("Delivering")]
    ['Done']
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from jira_flow.config.settings import WorkflowConfig
from jira_flow.exceptions import ConfigurationError
from jira_flow.models.domain import FieldRef, Stage


def _fold(value: str) -> str:
    return value.strip().upper()


class WorkflowTable:
    """Immutable ordered stage sequence with per-category specializations."""

    def __init__(
        self,
        stages: Sequence[Stage],
        categories: Mapping[str, Sequence[str]] | None = None,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        """Build the table.

        Args:
            stages: Default ordered stage sequence (initial first, terminal last)
            categories: Issue category -> ordered stage names for that category
            aliases: Alternate status spelling -> canonical stage name

        Raises:
            ConfigurationError: If the definitions are inconsistent
        """
        if len(stages) < 2:
            raise ConfigurationError("A workflow needs at least two stages")

        self._stages: tuple[Stage, ...] = tuple(stages)
        self._by_name: dict[str, Stage] = {}
        for stage in self._stages:
            folded = _fold(stage.name)
            if folded in self._by_name:
                raise ConfigurationError(f"Duplicate stage name: {stage.name}")
            self._by_name[folded] = stage

        self._aliases: dict[str, str] = {}
        self._alias_spellings: dict[str, list[str]] = {}
        for alias, target in (aliases or {}).items():
            folded_alias = _fold(alias)
            folded_target = _fold(target)
            if folded_alias in self._by_name:
                raise ConfigurationError(f"Alias '{alias}' shadows a stage name")
            if folded_target not in self._by_name:
                raise ConfigurationError(f"Alias '{alias}' points to unknown stage '{target}'")
            self._aliases[folded_alias] = folded_target
            self._alias_spellings.setdefault(folded_target, []).append(alias.strip())

        self._categories: dict[str, tuple[Stage, ...]] = {}
        for category, names in (categories or {}).items():
            sequence = []
            for name in names:
                stage = self._by_name.get(_fold(name))
                if stage is None:
                    raise ConfigurationError(f"Category '{category}' names unknown stage '{name}'")
                sequence.append(stage)
            if len(sequence) < 2:
                raise ConfigurationError(f"Category '{category}' needs at least two stages")
            self._categories[_fold(category)] = tuple(sequence)

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        field_ids: Mapping[str, str] | None = None,
    ) -> WorkflowTable:
        """Build the table from the workflow section of the settings.

        Args:
            config: Workflow configuration
            field_ids: Known field name -> id, attached to required fields

        Returns:
            WorkflowTable instance
        """
        field_ids = field_ids or {}
        stages = [
            Stage(
                name=stage.name,
                glyph=stage.glyph,
                color=stage.color,
                description=stage.description,
                required_fields=frozenset(FieldRef(name, field_ids.get(name)) for name in stage.required_fields),
            )
            for stage in config.stages
        ]
        return cls(stages, categories=config.categories, aliases=config.aliases)

    @property
    def categories(self) -> list[str]:
        """Categories with a specialized sequence (uppercased)."""
        return list(self._categories)

    def stages(self, category: str | None = None) -> tuple[Stage, ...]:
        """Ordered stages for a category, or the default sequence."""
        if category:
            return self._categories.get(_fold(category), self._stages)
        return self._stages

    def normalize(self, status: str) -> str:
        """Canonical (uppercased) name for a status string.

        Unknown statuses come back trimmed and uppercased, so the result is
        stable when normalized again.
        """
        folded = _fold(status)
        return self._aliases.get(folded, folded)

    def stage_of(self, status: str, category: str | None = None) -> Stage | None:
        """Stage for a status string within the category's sequence."""
        stage = self._by_name.get(self.normalize(status))
        if stage is None or stage not in self.stages(category):
            return None
        return stage

    def index_of(self, status: str, category: str | None = None) -> int:
        """Position of a status in the category's sequence, -1 if absent."""
        stage = self.stage_of(status, category)
        if stage is None:
            return -1
        return self.stages(category).index(stage)

    def next(self, status: str, category: str | None = None) -> Stage | None:
        """Stage after ``status``; None if unrecognized or already terminal."""
        sequence = self.stages(category)
        idx = self.index_of(status, category)
        if idx == -1 or idx >= len(sequence) - 1:
            return None
        return sequence[idx + 1]

    def previous(self, status: str, category: str | None = None) -> Stage | None:
        """Stage before ``status``; None if unrecognized or already initial."""
        idx = self.index_of(status, category)
        if idx <= 0:
            return None
        return self.stages(category)[idx - 1]

    def remaining(self, status: str, category: str | None = None) -> tuple[Stage, ...]:
        """Stages after ``status`` up to and including the terminal stage."""
        idx = self.index_of(status, category)
        if idx == -1:
            return ()
        return self.stages(category)[idx + 1 :]

    def terminal(self, category: str | None = None) -> Stage:
        """Last stage of the category's sequence."""
        return self.stages(category)[-1]

    def is_terminal(self, status: str, category: str | None = None) -> bool:
        """Check if ``status`` is the terminal stage of its sequence."""
        return self.stage_of(status, category) == self.terminal(category)

    def aliases_for(self, name: str) -> list[str]:
        """Alternate spellings configured for a stage, in definition order."""
        return list(self._alias_spellings.get(self.normalize(name), []))
