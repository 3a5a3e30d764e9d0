"""Tests for jira_flow/engine/transition_engine.py.

The store is an ``IssueStore`` mock; transitions succeed unless a test
gives ``attempt_transition`` a side effect.
"""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from jira_flow.config.settings import JiraFlowSettings
from jira_flow.engine.field_filler import FieldAutoFiller
from jira_flow.engine.role_assigner import RoleAutoAssigner
from jira_flow.engine.transition_engine import TransitionEngine
from jira_flow.enums import Operation, OutcomeStatus, RunPhase
from jira_flow.exceptions import (
    ExternalServiceError,
    FieldUpdateError,
    IssueNotFoundError,
    MissingRequiredFieldsError,
    TransitionRejectedError,
    UnrecognizedStatusError,
    WorkflowError,
)
from jira_flow.models.domain import Identity, Issue, RunState

START = "customfield_11516"
PLANNED_START = "customfield_11520"
DUE = "customfield_10304"
PLANNED_DUE = "customfield_11509"

ALL_DATES_SET = {START: "2024-01-01", PLANNED_START: None, DUE: "2024-02-01", PLANNED_DUE: None}


def rejected(message: str) -> TransitionRejectedError:
    return TransitionRejectedError(message)


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def engine(mock_store: MagicMock, settings: JiraFlowSettings, sleep: AsyncMock) -> TransitionEngine:
    return TransitionEngine(
        mock_store,
        mock_store.workflow,
        filler=FieldAutoFiller.from_config(mock_store, settings.field_pairs),
        assigner=RoleAutoAssigner(mock_store, settings.roles),
        exempt_categories=["Documentation"],
        sleep=sleep,
    )


@pytest.fixture
def chain_store(short_store: MagicMock) -> MagicMock:
    return short_store


@pytest.fixture
def progress() -> list[RunState]:
    return []


@pytest.fixture
def chain_engine(chain_store: MagicMock, sleep: AsyncMock, progress: list[RunState]) -> TransitionEngine:
    return TransitionEngine(
        chain_store,
        chain_store.workflow,
        pacing_delay=0.6,
        on_progress=progress.append,
        sleep=sleep,
    )


def issue_at(status: str, category: str = "Story") -> Issue:
    return Issue(key="PROJ-42", summary="Fix login redirect", status=status, category=category)


def invoked_labels(store: MagicMock) -> list[str]:
    return [c.args[1] for c in store.attempt_transition.call_args_list]


# =============================================================================
# Advance
# =============================================================================


class TestAdvance:
    """Single step forward."""

    @pytest.mark.asyncio
    async def test_advance_success(self, engine: TransitionEngine, mock_store: MagicMock, sample_issue: Issue) -> None:
        outcome = await engine.advance(sample_issue)

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.ok
        assert outcome.operation == Operation.ADVANCE
        assert outcome.from_stage == "Doing"
        assert outcome.to_stage == "Integration"
        assert outcome.issue.status == "Integration"
        assert sample_issue.status == "Doing"
        mock_store.attempt_transition.assert_awaited_once_with("PROJ-42", "Integration")
        assert [a.outcome for a in outcome.attempts] == ["success"]
        mock_store.read_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_advance_at_final_stage(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.advance(issue_at("Done"))

        assert outcome.status == OutcomeStatus.NO_OP
        assert "final stage" in outcome.message
        mock_store.attempt_transition.assert_not_called()

    @pytest.mark.asyncio
    async def test_advance_unrecognized_status(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.advance(issue_at("Blocked"))

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.error, UnrecognizedStatusError)
        mock_store.attempt_transition.assert_not_called()

    @pytest.mark.asyncio
    async def test_advance_from_legacy_alias(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.advance(issue_at("TO DO"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.from_stage == "Waiting"
        mock_store.attempt_transition.assert_awaited_once_with("PROJ-42", "Doing")

    @pytest.mark.asyncio
    async def test_advance_by_key_fetches_issue(
        self, engine: TransitionEngine, mock_store: MagicMock, sample_issue: Issue
    ) -> None:
        mock_store.fetch_issue.return_value = sample_issue

        outcome = await engine.advance("PROJ-42")

        mock_store.fetch_issue.assert_awaited_once_with("PROJ-42")
        assert outcome.status == OutcomeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_advance_missing_issue(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.fetch_issue.side_effect = IssueNotFoundError("PROJ-404")

        outcome = await engine.advance("PROJ-404")

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.error, IssueNotFoundError)
        assert "PROJ-404" in outcome.message

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_becomes_outcome(
        self, engine: TransitionEngine, mock_store: MagicMock
    ) -> None:
        mock_store.fetch_issue.side_effect = OSError("connection reset")

        outcome = await engine.advance("PROJ-42")

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.error, ExternalServiceError)


class TestAutoFillGate:
    """Field auto-fill before the terminal stage."""

    @pytest.mark.asyncio
    async def test_gate_fills_then_transitions(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = {
            START: "2024-01-01",
            PLANNED_START: None,
            DUE: None,
            PLANNED_DUE: "2024-03-01",
        }

        outcome = await engine.advance(issue_at("Delivering"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.filled == ["Dev Due Date"]
        mock_store.write_fields.assert_awaited_once_with("PROJ-42", {"Dev Due Date": "2024-03-01"})
        mock_store.attempt_transition.assert_awaited_once_with("PROJ-42", "Done")

    @pytest.mark.asyncio
    async def test_gate_suspends_then_resumes_without_refilling(
        self, engine: TransitionEngine, mock_store: MagicMock
    ) -> None:
        mock_store.read_fields.return_value = {START: None, PLANNED_START: None, DUE: "2024-02-01"}

        outcome = await engine.advance(issue_at("Delivering"))

        assert outcome.status == OutcomeStatus.SUSPENDED
        assert outcome.suspended
        assert outcome.missing_fields == ["Dev Start Date"]
        assert isinstance(outcome.error, MissingRequiredFieldsError)
        assert engine.pending is not None
        mock_store.attempt_transition.assert_not_called()

        resumed = await engine.resume_after_field_input({"Dev Start Date": "2024-01-15"})

        assert resumed.status == OutcomeStatus.COMPLETED
        assert resumed.issue.status == "Done"
        mock_store.write_fields.assert_awaited_once_with("PROJ-42", {"Dev Start Date": "2024-01-15"})
        mock_store.attempt_transition.assert_awaited_once_with("PROJ-42", "Done")
        assert mock_store.read_fields.await_count == 1
        assert engine.pending is None

    @pytest.mark.asyncio
    async def test_exempt_category_skips_gate(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.advance(issue_at("1ST REVIEW", category="Documentation"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.to_stage == "Done"
        mock_store.read_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_fill_failure_is_advisory(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = {START: None, PLANNED_START: "2024-01-01", DUE: "2024-02-01"}
        mock_store.write_fields.side_effect = FieldUpdateError("Failed to update fields on PROJ-42", status_code=400)

        outcome = await engine.advance(issue_at("Delivering"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert any("auto-fill failed" in advisory for advisory in outcome.advisories)
        mock_store.attempt_transition.assert_awaited_once_with("PROJ-42", "Done")


class TestRejections:
    """Classification and recovery of rejected single steps."""

    @pytest.mark.asyncio
    async def test_missing_field_rejection_suspends(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.attempt_transition.side_effect = [rejected("Please fill in Story Points."), None]

        outcome = await engine.advance(issue_at("Doing"))

        assert outcome.status == OutcomeStatus.SUSPENDED
        assert outcome.missing_fields == ["Story Points"]
        assert outcome.error.stage == "Integration"

        resumed = await engine.resume_after_field_input({"Story Points": "3"})

        assert resumed.status == OutcomeStatus.COMPLETED
        assert resumed.operation == Operation.ADVANCE
        assert invoked_labels(mock_store) == ["Integration", "Integration"]

    @pytest.mark.asyncio
    async def test_retry_with_resolved_label(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.attempt_transition.side_effect = [
            rejected("Invalid transition \"Doing\"\nAvailable states for issue PROJ-42: 'Return to Doing', 'Cancel'"),
            None,
        ]

        outcome = await engine.regress(issue_at("Integration"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.issue.status == "Doing"
        assert invoked_labels(mock_store) == ["Doing", "Return to Doing"]
        assert [a.to_stage_invoked for a in outcome.attempts] == ["Doing", "Return to Doing"]
        assert [a.outcome for a in outcome.attempts] == ["rejected", "success"]

    @pytest.mark.asyncio
    async def test_resolved_retry_is_attempted_once(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.attempt_transition.side_effect = [
            rejected("Available states for issue PROJ-42: 'Back to Doing'"),
            rejected("Workflow condition failed"),
        ]

        outcome = await engine.regress(issue_at("Integration"))

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.message == "Workflow condition failed"
        assert invoked_labels(mock_store) == ["Doing", "Back to Doing"]

    @pytest.mark.asyncio
    async def test_alias_fallback(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = ALL_DATES_SET
        mock_store.attempt_transition.side_effect = [rejected("No such transition"), rejected("nope"), None]

        outcome = await engine.advance(issue_at("Delivering"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert invoked_labels(mock_store) == ["Done", "CLOSED", "RESOLVED"]
        assert outcome.issue.status == "Done"

    @pytest.mark.asyncio
    async def test_all_aliases_fail_surfaces_original(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = ALL_DATES_SET
        mock_store.attempt_transition.side_effect = [rejected("No such transition"), rejected("a"), rejected("b")]

        outcome = await engine.advance(issue_at("Delivering"))

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.message == "No such transition"
        assert len(outcome.attempts) == 3

    @pytest.mark.asyncio
    async def test_long_messages_are_truncated(self, mock_store: MagicMock) -> None:
        engine = TransitionEngine(mock_store, mock_store.workflow, max_message_length=50)
        mock_store.attempt_transition.side_effect = rejected("x" * 500)

        outcome = await engine.advance(issue_at("Doing"))

        assert outcome.status == OutcomeStatus.FAILED
        assert len(outcome.message) == 50
        assert len(outcome.error.message) == 500


class TestRegress:
    """Single step back."""

    @pytest.mark.asyncio
    async def test_regress_at_first_stage(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.regress(issue_at("TO DO"))

        assert outcome.status == OutcomeStatus.NO_OP
        assert "first stage" in outcome.message
        mock_store.attempt_transition.assert_not_called()

    @pytest.mark.asyncio
    async def test_regress_skips_gate(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.regress(issue_at("Done"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.to_stage == "Delivering"
        mock_store.read_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_regress_into_role_stage_assigns(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.resolve_field_id.return_value = "customfield_12000"
        mock_store.read_fields.return_value = {"customfield_12000": "Jane QA"}
        jane = Identity(account_id="acc-jane", display_name="Jane QA", name="jane")
        mock_store.search_identity.return_value = [jane]

        outcome = await engine.regress(issue_at("2ND REVIEW"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.to_stage == "Testing"
        assert outcome.assignment.assigned is True
        mock_store.assign.assert_awaited_once_with("PROJ-42", jane)


class TestAssignment:
    """Role assignment never blocks a transition."""

    @pytest.mark.asyncio
    async def test_assignment_failure_is_advisory(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.resolve_field_id.side_effect = ExternalServiceError("Failed to fetch field catalog")

        outcome = await engine.advance(issue_at("1ST REVIEW"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.issue.status == "Testing"
        assert outcome.assignment.assigned is False
        assert len(outcome.advisories) == 1
        assert "Testing" in outcome.advisories[0]


# =============================================================================
# Run to completion
# =============================================================================


class TestRunToCompletion:
    """Chained run to the terminal stage."""

    @pytest.mark.asyncio
    async def test_runs_every_step_with_pacing(
        self,
        chain_engine: TransitionEngine,
        chain_store: MagicMock,
        sleep: AsyncMock,
        progress: list[RunState],
    ) -> None:
        outcome = await chain_engine.run_to_completion(issue_at("A"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.issue.status == "Done"
        assert invoked_labels(chain_store) == ["B", "C", "Done"]
        assert outcome.run.completed_steps == ["B", "C", "Done"]
        assert outcome.run.phase == RunPhase.DONE
        assert sleep.await_args_list == [call(0.6), call(0.6)]
        assert progress[-1].phase == RunPhase.DONE
        assert progress[0].current_transition == "A → B"
        assert chain_engine.state.phase == RunPhase.DONE

    @pytest.mark.asyncio
    async def test_halts_and_keeps_partial_progress(
        self, chain_engine: TransitionEngine, chain_store: MagicMock, sleep: AsyncMock
    ) -> None:
        chain_store.attempt_transition.side_effect = [
            None,
            rejected("Available states for issue PROJ-42: 'Skip to C'"),
        ]

        outcome = await chain_engine.run_to_completion(issue_at("A"))

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.run.phase == RunPhase.ERROR
        assert outcome.run.completed_steps == ["B"]
        assert outcome.run.failed_at == "C"
        assert outcome.run.issue_status == "B"
        assert outcome.issue.status == "B"
        assert invoked_labels(chain_store) == ["B", "C"]
        assert sleep.await_count == 1
        assert chain_engine.pending is None

    @pytest.mark.asyncio
    async def test_missing_fields_resume_from_reached_stage(
        self, chain_engine: TransitionEngine, chain_store: MagicMock
    ) -> None:
        chain_store.attempt_transition.side_effect = [None, rejected("Please fill in X"), None, None]

        outcome = await chain_engine.run_to_completion(issue_at("A"))

        assert outcome.status == OutcomeStatus.SUSPENDED
        assert outcome.missing_fields == ["X"]
        assert outcome.run.phase == RunPhase.SUSPENDED
        assert outcome.run.failed_at == "C"
        assert chain_engine.pending.issue.status == "B"

        resumed = await chain_engine.resume_after_field_input({"X": "value"})

        assert resumed.status == OutcomeStatus.COMPLETED
        assert resumed.run.completed_steps == ["B", "C", "Done"]
        assert resumed.run.total_steps == 3
        assert resumed.from_stage == "A"
        assert resumed.message.endswith("in 3 step(s)")
        assert invoked_labels(chain_store) == ["B", "C", "C", "Done"]
        chain_store.write_fields.assert_awaited_once_with("PROJ-42", {"X": "value"})

    @pytest.mark.asyncio
    async def test_already_done(self, chain_engine: TransitionEngine, chain_store: MagicMock) -> None:
        outcome = await chain_engine.run_to_completion(issue_at("Done"))

        assert outcome.status == OutcomeStatus.NO_OP
        assert outcome.run.phase == RunPhase.DONE
        chain_store.attempt_transition.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrecognized_status(self, chain_engine: TransitionEngine, chain_store: MagicMock) -> None:
        outcome = await chain_engine.run_to_completion(issue_at("Blocked"))

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.error, UnrecognizedStatusError)

    @pytest.mark.asyncio
    async def test_cancel_between_steps(self, chain_store: MagicMock, sleep: AsyncMock) -> None:
        engine = TransitionEngine(chain_store, chain_store.workflow, sleep=sleep)

        def cancel_after_first_step(state: RunState) -> None:
            if state.completed_steps == ["B"]:
                engine.cancel()

        engine.on_progress = cancel_after_first_step

        outcome = await engine.run_to_completion(issue_at("A"))

        assert outcome.status == OutcomeStatus.CANCELLED
        assert outcome.run.phase == RunPhase.CANCELLED
        assert outcome.issue.status == "B"
        assert invoked_labels(chain_store) == ["B"]

    @pytest.mark.asyncio
    async def test_gate_runs_once_up_front(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = ALL_DATES_SET

        outcome = await engine.run_to_completion(issue_at("Staging"))

        assert outcome.status == OutcomeStatus.COMPLETED
        assert invoked_labels(mock_store) == ["Regression", "Delivering", "Done"]
        assert mock_store.read_fields.await_count == 1

    @pytest.mark.asyncio
    async def test_gate_suspension_resumes_whole_chain(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        mock_store.read_fields.return_value = {}

        outcome = await engine.run_to_completion(issue_at("Regression"))

        assert outcome.status == OutcomeStatus.SUSPENDED
        assert outcome.missing_fields == ["Dev Start Date", "Dev Due Date"]
        mock_store.attempt_transition.assert_not_called()

        resumed = await engine.resume_after_field_input({"Dev Start Date": "2024-01-01", "Dev Due Date": "2024-02-01"})

        assert resumed.status == OutcomeStatus.COMPLETED
        assert invoked_labels(mock_store) == ["Delivering", "Done"]

    @pytest.mark.asyncio
    async def test_run_by_key(self, chain_engine: TransitionEngine, chain_store: MagicMock) -> None:
        chain_store.fetch_issue.return_value = issue_at("C")

        outcome = await chain_engine.run_to_completion("PROJ-42")

        assert outcome.status == OutcomeStatus.COMPLETED
        assert invoked_labels(chain_store) == ["Done"]


# =============================================================================
# Resume
# =============================================================================


class TestResume:
    """Field input handling."""

    @pytest.mark.asyncio
    async def test_nothing_pending(self, engine: TransitionEngine, mock_store: MagicMock) -> None:
        outcome = await engine.resume_after_field_input({"X": "1"})

        assert outcome.status == OutcomeStatus.FAILED
        assert isinstance(outcome.error, WorkflowError)
        mock_store.write_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_input_is_rejected(self, chain_engine: TransitionEngine, chain_store: MagicMock) -> None:
        chain_store.attempt_transition.side_effect = [rejected("Please fill in X")]
        await chain_engine.run_to_completion(issue_at("A"))

        outcome = await chain_engine.resume_after_field_input({"X": "   "})

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.missing_fields == ["X"]
        assert chain_engine.pending is not None
        chain_store.write_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_failure_keeps_pending(self, chain_engine: TransitionEngine, chain_store: MagicMock) -> None:
        chain_store.attempt_transition.side_effect = [rejected("Please fill in X"), None, None, None]
        await chain_engine.run_to_completion(issue_at("A"))
        chain_store.write_fields.side_effect = [FieldUpdateError("Failed to update fields", status_code=400), None]

        failed = await chain_engine.resume_after_field_input({"X": "bad"})

        assert failed.status == OutcomeStatus.FAILED
        assert isinstance(failed.error, FieldUpdateError)
        assert chain_engine.pending is not None

        resumed = await chain_engine.resume_after_field_input({"X": "good"})

        assert resumed.status == OutcomeStatus.COMPLETED
        assert invoked_labels(chain_store) == ["B", "B", "C", "Done"]


# =============================================================================
# Queries and wiring
# =============================================================================


class TestQueries:
    """Read-only queries mirror the workflow table."""

    def test_queries(self, engine: TransitionEngine) -> None:
        issue = issue_at("Doing", category="Documentation")

        assert engine.stage_of(issue).name == "Doing"
        assert engine.next_stage(issue).name == "1ST REVIEW"
        assert engine.previous_stage(issue).name == "Waiting"
        assert [s.name for s in engine.remaining_stages(issue)] == ["1ST REVIEW", "Done"]
        assert len(engine.stages_for("Documentation")) == 4
        assert len(engine.stages_for()) == 11

    def test_initial_state(self, engine: TransitionEngine) -> None:
        assert engine.state.phase == RunPhase.IDLE
        assert engine.pending is None

    def test_from_settings(self, mock_store: MagicMock, settings: JiraFlowSettings) -> None:
        engine = TransitionEngine.from_settings(settings, mock_store)

        assert engine.pacing_delay == 0.6
        assert engine.max_message_length == 400
        assert engine.table is mock_store.workflow
        assert [pair.target.display_name for pair in engine.filler.pairs] == ["Dev Start Date", "Dev Due Date"]
        assert engine.assigner.role_for("Testing").name == "QA"
