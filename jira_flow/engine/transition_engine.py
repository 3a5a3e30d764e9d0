"""
Transition engine driving one issue through the workflow.

The engine is the only component that talks to the tracker on behalf of
the presentation layer. It computes targets from the workflow table, runs
the field auto-fill gate, invokes transitions through the ``IssueStore``,
classifies rejections and decides how to recover:

- a missing-field rejection suspends the operation until the operator
  supplies the values (``resume_after_field_input``)
- any other rejection of a single step is retried once with the label the
  resolver picks from the rejection text, then with the stage's aliases
- inside a run to the terminal stage there is no fallback; the first
  failure halts the run with its partial progress

Operations:
    advance: Move one stage forward
    regress: Move one stage back
    run_to_completion: Move stage by stage to the terminal stage, pacing
        the calls so the tracker's per-step side effects do not overlap
    resume_after_field_input: Write operator-supplied fields and replay
        the suspended operation

Every operation returns a ``TransitionOutcome``; store exceptions are
converted into outcome values and never escape.

Example:
    >>> engine = TransitionEngine.from_settings(settings, store)
    >>> outcome = await engine.run_to_completion("PROJ-42")
    >>> if outcome.suspended:
    ...     outcome = await engine.resume_after_field_input({"Dev Due Date": "2024-03-01"})
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace

import structlog

from jira_flow.config.settings import JiraFlowSettings
from jira_flow.engine.field_filler import FieldAutoFiller
from jira_flow.engine.resolver import RejectionClassifier, TransitionResolver
from jira_flow.engine.role_assigner import RoleAutoAssigner
from jira_flow.engine.workflow_table import WorkflowTable
from jira_flow.enums import Operation, OutcomeStatus, RunPhase
from jira_flow.exceptions import (
    DEFAULT_MAX_MESSAGE_LENGTH,
    AuxiliaryError,
    ExternalServiceError,
    JiraFlowError,
    MissingRequiredFieldsError,
    TransitionRejectedError,
    UnrecognizedStatusError,
    WorkflowError,
    truncate_message,
)
from jira_flow.models.domain import (
    AssignResult,
    Issue,
    RunState,
    Stage,
    TransitionAttempt,
    TransitionOutcome,
)
from jira_flow.providers.base import IssueStore

log = structlog.get_logger(__name__)

ProgressCallback = Callable[[RunState], None]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class PendingResumption:
    """An operation suspended until field values are supplied."""

    operation: Operation
    issue: Issue
    """Snapshot to replay from; for a run, the status it had reached."""

    target: Stage
    fields: list[str]
    from_stage: str | None = None
    """Where the suspended run started."""

    completed_steps: list[str] = field(default_factory=list)
    """Stages a suspended run had already reached."""


class TransitionEngine:
    """Moves issues between workflow stages against the tracker.

    The engine is sequential and non-reentrant: one operation runs at a time
    and it holds at most one pending resumption.

    Attributes:
        store: Tracker boundary
        table: Workflow table used for every stage computation
        resolver: Rejection classifier and label resolver
        filler: Field auto-filler run before gated transitions
        assigner: Best-effort role assigner run after each success
        pacing_delay: Seconds to wait between steps of a run
    """

    def __init__(
        self,
        store: IssueStore,
        table: WorkflowTable,
        resolver: TransitionResolver | None = None,
        filler: FieldAutoFiller | None = None,
        assigner: RoleAutoAssigner | None = None,
        *,
        pacing_delay: float = 0.6,
        exempt_categories: Sequence[str] = (),
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        on_progress: ProgressCallback | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.store = store
        self.table = table
        self.resolver = resolver or TransitionResolver()
        self.filler = filler or FieldAutoFiller(store, [])
        self.assigner = assigner or RoleAutoAssigner(store, [])
        self.pacing_delay = pacing_delay
        self.max_message_length = max_message_length
        self.on_progress = on_progress
        self._exempt = {category.strip().upper() for category in exempt_categories}
        self._sleep = sleep
        self._state = RunState()
        self._pending: PendingResumption | None = None
        self._cancelled = False

    @classmethod
    def from_settings(
        cls,
        settings: JiraFlowSettings,
        store: IssueStore,
        on_progress: ProgressCallback | None = None,
    ) -> "TransitionEngine":
        """Wire the engine and its collaborators from settings."""
        workflow = settings.workflow
        return cls(
            store,
            store.workflow,
            resolver=TransitionResolver(RejectionClassifier(workflow.rejection_patterns)),
            filler=FieldAutoFiller.from_config(store, settings.field_pairs),
            assigner=RoleAutoAssigner(store, settings.roles),
            pacing_delay=workflow.pacing_delay,
            exempt_categories=workflow.exempt_categories,
            max_message_length=workflow.max_message_length,
            on_progress=on_progress,
        )

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        """Latest state of the current or last run."""
        return self._state

    @property
    def pending(self) -> PendingResumption | None:
        """The operation waiting for field input, if any."""
        return self._pending

    def stage_of(self, issue: Issue) -> Stage | None:
        return self.table.stage_of(issue.status, issue.category)

    def next_stage(self, issue: Issue) -> Stage | None:
        return self.table.next(issue.status, issue.category)

    def previous_stage(self, issue: Issue) -> Stage | None:
        return self.table.previous(issue.status, issue.category)

    def remaining_stages(self, issue: Issue) -> list[Stage]:
        return list(self.table.remaining(issue.status, issue.category))

    def stages_for(self, category: str | None = None) -> list[Stage]:
        return list(self.table.stages(category))

    def cancel(self) -> None:
        """Stop a running chain before its next step."""
        log.info("run_cancel_requested")
        self._cancelled = True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def advance(self, issue: Issue | str) -> TransitionOutcome:
        """Move the issue to the next stage of its workflow."""
        loaded = await self._load(Operation.ADVANCE, issue)
        if isinstance(loaded, TransitionOutcome):
            return loaded
        issue = loaded

        current = self.stage_of(issue)
        if current is None:
            return self._unrecognized(Operation.ADVANCE, issue)

        target = self.next_stage(issue)
        if target is None:
            return TransitionOutcome(
                operation=Operation.ADVANCE,
                status=OutcomeStatus.NO_OP,
                issue=issue,
                from_stage=current.name,
                message=f"{issue.key} is already at the final stage ({current.name})",
            )
        return await self._single_step(Operation.ADVANCE, issue, target, gate=True)

    async def regress(self, issue: Issue | str) -> TransitionOutcome:
        """Move the issue back one stage. No auto-fill gate."""
        loaded = await self._load(Operation.REGRESS, issue)
        if isinstance(loaded, TransitionOutcome):
            return loaded
        issue = loaded

        current = self.stage_of(issue)
        if current is None:
            return self._unrecognized(Operation.REGRESS, issue)

        target = self.previous_stage(issue)
        if target is None:
            return TransitionOutcome(
                operation=Operation.REGRESS,
                status=OutcomeStatus.NO_OP,
                issue=issue,
                from_stage=current.name,
                message=f"{issue.key} is already at the first stage ({current.name})",
            )
        return await self._single_step(Operation.REGRESS, issue, target, gate=False)

    async def run_to_completion(self, issue: Issue | str) -> TransitionOutcome:
        """Move the issue stage by stage to the terminal stage."""
        loaded = await self._load(Operation.RUN_TO_COMPLETION, issue)
        if isinstance(loaded, TransitionOutcome):
            return loaded
        issue = loaded

        if self.stage_of(issue) is None:
            return self._unrecognized(Operation.RUN_TO_COMPLETION, issue)
        return await self._run_chain(issue, gate=True)

    async def resume_after_field_input(self, fields: Mapping[str, str]) -> TransitionOutcome:
        """Write operator-supplied field values and replay the suspended operation.

        The replay skips the auto-fill gate. A run resumes from the status it
        had reached when it was suspended. If the write fails, the pending
        resumption is kept so the operator can try again.

        Args:
            fields: Field display name -> value

        Returns:
            Outcome of the replayed operation, or a FAILED outcome when
            nothing is pending, the input is empty or the write fails
        """
        pending = self._pending
        if pending is None:
            error = WorkflowError("No operation is waiting for field input")
            return TransitionOutcome(
                operation=Operation.RESUME,
                status=OutcomeStatus.FAILED,
                error=error,
                message=error.message,
            )

        values = {
            name.strip(): str(value).strip()
            for name, value in fields.items()
            if name and name.strip() and value is not None and str(value).strip()
        }
        if not values:
            error = WorkflowError(f"No values supplied for {', '.join(pending.fields)}")
            return TransitionOutcome(
                operation=Operation.RESUME,
                status=OutcomeStatus.FAILED,
                issue=pending.issue,
                to_stage=pending.target.name,
                missing_fields=list(pending.fields),
                error=error,
                message=error.message,
            )

        try:
            await self.store.write_fields(pending.issue.key, values)
        except Exception as e:
            outcome = TransitionOutcome(
                operation=Operation.RESUME,
                status=OutcomeStatus.FAILED,
                issue=pending.issue,
                to_stage=pending.target.name,
                missing_fields=list(pending.fields),
            )
            return self._fail(outcome, self._as_flow_error(e, "Field update failed"))

        log.info("fields_supplied", issue=pending.issue.key, fields=list(values), operation=str(pending.operation))
        self._pending = None

        if pending.operation == Operation.RUN_TO_COMPLETION:
            return await self._run_chain(pending.issue, gate=False, resumed=pending)
        return await self._single_step(pending.operation, pending.issue, pending.target, gate=False)

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    async def _single_step(
        self,
        operation: Operation,
        issue: Issue,
        target: Stage,
        *,
        gate: bool,
    ) -> TransitionOutcome:
        current = self.stage_of(issue)
        outcome = TransitionOutcome(
            operation=operation,
            status=OutcomeStatus.FAILED,
            issue=issue,
            from_stage=current.name if current else issue.status,
            to_stage=target.name,
        )

        if gate and self._needs_auto_fill(issue, target):
            missing = await self._auto_fill(outcome, issue, target)
            if missing:
                return self._suspend(outcome, issue, target, missing)

        try:
            issue = await self._transition(outcome, issue, target, allow_fallback=True)
        except MissingRequiredFieldsError as e:
            return self._suspend(outcome, issue, target, e.fields)
        except JiraFlowError as e:
            return self._fail(outcome, e)

        outcome.issue = issue
        outcome.assignment = await self._assign(outcome, issue.key, target)
        outcome.status = OutcomeStatus.COMPLETED
        outcome.message = f"{issue.key}: {outcome.from_stage} → {target.name}"
        log.info("transition_completed", issue=issue.key, stage=target.name, operation=str(operation))
        return outcome

    async def _transition(
        self,
        outcome: TransitionOutcome,
        issue: Issue,
        target: Stage,
        *,
        allow_fallback: bool,
    ) -> Issue:
        """Move ``issue`` to ``target`` and return the confirmed snapshot.

        Raises:
            MissingRequiredFieldsError: The tracker wants field values first
            TransitionRejectedError: No label got through
        """
        try:
            await self._invoke(outcome, issue, target, target.name)
        except TransitionRejectedError as e:
            e.stage = e.stage or target.name
            self._raise_if_missing_fields(e, target)
            if not allow_fallback:
                raise

            label = self.resolver.resolve(target.name, e.message)
            if label and label.strip().upper() != target.name.strip().upper():
                log.info("retry_with_resolved_label", issue=issue.key, stage=target.name, label=label)
                try:
                    await self._invoke(outcome, issue, target, label)
                except TransitionRejectedError as retry_error:
                    retry_error.stage = retry_error.stage or target.name
                    self._raise_if_missing_fields(retry_error, target)
                    raise
            else:
                await self._try_aliases(outcome, issue, target, e)

        return replace(issue, status=target.name)

    async def _try_aliases(
        self,
        outcome: TransitionOutcome,
        issue: Issue,
        target: Stage,
        original: TransitionRejectedError,
    ) -> None:
        for alias in self.table.aliases_for(target.name):
            try:
                await self._invoke(outcome, issue, target, alias)
                return
            except TransitionRejectedError:
                log.debug("alias_rejected", issue=issue.key, stage=target.name, label=alias)
        raise original

    async def _invoke(self, outcome: TransitionOutcome, issue: Issue, target: Stage, label: str) -> None:
        attempt = TransitionAttempt(
            issue_key=issue.key,
            from_stage=issue.status,
            to_stage_requested=target.name,
            to_stage_invoked=label,
            outcome="rejected",
        )
        outcome.attempts.append(attempt)
        try:
            await self.store.attempt_transition(issue.key, label)
        except JiraFlowError:
            raise
        except Exception as e:
            log.error("transition_call_failed", issue=issue.key, label=label, error=str(e), exc_info=True)
            raise ExternalServiceError(f"Transition call failed: {e}") from e
        attempt.outcome = "success"

    def _raise_if_missing_fields(self, error: TransitionRejectedError, target: Stage) -> None:
        fields = self.resolver.classifier.missing_fields(error.message)
        if fields:
            raise MissingRequiredFieldsError(fields, target.name) from error

    # ------------------------------------------------------------------
    # Run to completion
    # ------------------------------------------------------------------

    async def _run_chain(
        self,
        issue: Issue,
        *,
        gate: bool,
        resumed: PendingResumption | None = None,
    ) -> TransitionOutcome:
        remaining = self.remaining_stages(issue)
        start = self.stage_of(issue)
        terminal = self.table.terminal(issue.category)
        self._cancelled = False

        done_before = list(resumed.completed_steps) if resumed else []
        if resumed and resumed.from_stage:
            origin = resumed.from_stage
        else:
            origin = start.name if start else issue.status
        run = RunState(
            completed_steps=done_before,
            total_steps=len(done_before) + len(remaining),
            issue_status=issue.status,
        )
        outcome = TransitionOutcome(
            operation=Operation.RUN_TO_COMPLETION,
            status=OutcomeStatus.FAILED,
            issue=issue,
            from_stage=origin,
            to_stage=terminal.name,
            run=run,
        )

        if not remaining:
            run.phase = RunPhase.DONE
            self._publish(run)
            outcome.status = OutcomeStatus.NO_OP
            outcome.message = f"{issue.key} is already at the final stage ({terminal.name})"
            return outcome

        if gate and self._needs_auto_fill(issue, terminal):
            missing = await self._auto_fill(outcome, issue, terminal)
            if missing:
                run.phase = RunPhase.SUSPENDED
                run.failed_at = remaining[0].name
                self._publish(run)
                return self._suspend(outcome, issue, remaining[0], missing)

        log.info("run_started", issue=issue.key, steps=[stage.name for stage in remaining])
        run.phase = RunPhase.RUNNING
        previous = outcome.from_stage
        for index, step in enumerate(remaining):
            if self._cancelled:
                run.phase = RunPhase.CANCELLED
                run.current_transition = None
                self._publish(run)
                outcome.status = OutcomeStatus.CANCELLED
                outcome.message = f"Cancelled with {issue.key} at {issue.status}"
                log.info("run_cancelled", issue=issue.key, status=issue.status)
                return outcome

            run.current_transition = f"{previous} → {step.name}"
            self._publish(run)

            try:
                issue = await self._transition(outcome, issue, step, allow_fallback=False)
            except MissingRequiredFieldsError as e:
                run.phase = RunPhase.SUSPENDED
                run.failed_at = step.name
                run.error_message = e.message
                self._publish(run)
                return self._suspend(outcome, issue, step, e.fields)
            except JiraFlowError as e:
                run.phase = RunPhase.ERROR
                run.failed_at = step.name
                run.error_message = truncate_message(str(e), self.max_message_length)
                self._publish(run)
                log.warning("run_halted", issue=issue.key, failed_at=step.name, completed=run.completed_steps)
                return self._fail(outcome, e)

            run.completed_steps.append(step.name)
            run.issue_status = step.name
            outcome.issue = issue
            outcome.assignment = await self._assign(outcome, issue.key, step)
            self._publish(run)
            previous = step.name

            if index < len(remaining) - 1:
                await self._sleep(self.pacing_delay)

        run.phase = RunPhase.DONE
        run.current_transition = None
        self._publish(run)
        outcome.status = OutcomeStatus.COMPLETED
        outcome.message = f"{issue.key} moved to {terminal.name} in {len(run.completed_steps)} step(s)"
        log.info("run_completed", issue=issue.key, steps=run.completed_steps)
        return outcome

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, operation: Operation, issue: Issue | str) -> Issue | TransitionOutcome:
        if isinstance(issue, Issue):
            return issue
        try:
            return await self.store.fetch_issue(issue)
        except Exception as e:
            outcome = TransitionOutcome(operation=operation, status=OutcomeStatus.FAILED)
            return self._fail(outcome, self._as_flow_error(e, f"Could not load {issue}"))

    def _needs_auto_fill(self, issue: Issue, target: Stage) -> bool:
        if (issue.category or "").strip().upper() in self._exempt:
            return False
        return bool(target.required_fields) or self.table.is_terminal(target.name, issue.category)

    async def _auto_fill(self, outcome: TransitionOutcome, issue: Issue, target: Stage) -> list[str]:
        """Run the auto-fill gate and return the fields still missing.

        A failing fill is reported as an advisory and the transition goes
        ahead; the tracker rejects it if the fields really are required.
        """
        only = None
        if not self.table.is_terminal(target.name, issue.category):
            only = [ref.display_name for ref in target.required_fields]
        try:
            result = await self.filler.auto_fill(issue.key, only=only)
        except Exception as e:
            error = AuxiliaryError(f"Field auto-fill failed: {e}")
            log.warning("auto_fill_failed", issue=issue.key, stage=target.name, error=str(e))
            outcome.advisories.append(error.message)
            return []
        outcome.filled.extend(result.filled)
        return result.still_missing

    async def _assign(self, outcome: TransitionOutcome, issue_key: str, target: Stage) -> AssignResult:
        result = await self.assigner.auto_assign(issue_key, target.name)
        if result.error:
            outcome.advisories.append(f"Auto-assign on {target.name} failed: {result.error}")
        return result

    def _suspend(
        self,
        outcome: TransitionOutcome,
        issue: Issue,
        target: Stage,
        fields: list[str],
    ) -> TransitionOutcome:
        self._pending = PendingResumption(
            operation=outcome.operation,
            issue=issue,
            target=target,
            fields=list(fields),
        )
        if outcome.run is not None:
            self._pending.from_stage = outcome.from_stage
            self._pending.completed_steps = list(outcome.run.completed_steps)
        error = MissingRequiredFieldsError(fields, target.name)
        outcome.issue = issue
        outcome.status = OutcomeStatus.SUSPENDED
        outcome.missing_fields = list(fields)
        outcome.error = error
        outcome.message = error.message
        log.info("operation_suspended", issue=issue.key, stage=target.name, fields=fields)
        return outcome

    def _fail(self, outcome: TransitionOutcome, error: JiraFlowError) -> TransitionOutcome:
        outcome.status = OutcomeStatus.FAILED
        outcome.error = error
        outcome.message = truncate_message(str(error), self.max_message_length)
        log.warning(
            "operation_failed",
            operation=str(outcome.operation),
            issue=outcome.issue.key if outcome.issue else None,
            error_type=type(error).__name__,
            error=outcome.message,
        )
        return outcome

    def _unrecognized(self, operation: Operation, issue: Issue) -> TransitionOutcome:
        outcome = TransitionOutcome(operation=operation, status=OutcomeStatus.FAILED, issue=issue)
        return self._fail(outcome, UnrecognizedStatusError(issue.status, issue.key))

    def _publish(self, run: RunState) -> None:
        self._state = replace(run, completed_steps=list(run.completed_steps))
        if self.on_progress is not None:
            self.on_progress(replace(run, completed_steps=list(run.completed_steps)))

    @staticmethod
    def _as_flow_error(error: Exception, context: str) -> JiraFlowError:
        if isinstance(error, JiraFlowError):
            return error
        log.error("unexpected_store_error", context=context, error=str(error), exc_info=True)
        return ExternalServiceError(f"{context}: {error}")
