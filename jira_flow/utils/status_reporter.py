"""Text rendering of workflow position and run progress for the terminal."""

from collections.abc import Sequence

from jira_flow.enums import RunPhase
from jira_flow.models.domain import Issue, RunState, Stage, TransitionOutcome

DONE_CELL = "🟩"
CURRENT_CELL = "🔵"
TODO_CELL = "⬜"


def progress_bar(current_index: int, total: int) -> str:
    """One cell per stage: passed, current, then still to do."""
    if total <= 0:
        return ""
    if current_index < 0:
        return TODO_CELL * total
    passed = min(current_index, total - 1)
    return DONE_CELL * passed + CURRENT_CELL + TODO_CELL * (total - passed - 1)


def progress_percent(current_index: int, total: int) -> int:
    if current_index < 0 or total <= 1:
        return 0
    return round(current_index / (total - 1) * 100)


def render_workflow(stages: Sequence[Stage], current: Stage | None) -> str:
    """Stage list with passed stages ticked and the current one marked."""
    current_index = stages.index(current) if current in stages else -1
    lines = []
    for index, stage in enumerate(stages):
        if index == current_index:
            marker = "◀ current"
        elif index < current_index:
            marker = "✓"
        else:
            marker = ""
        lines.append(f"  {stage.glyph or '•'} {stage.name:<12} {stage.description:<34} {marker}".rstrip())
    return "\n".join(lines)


def render_issue(issue: Issue, stages: Sequence[Stage], current: Stage | None) -> str:
    """Header, progress bar and workflow table for one issue."""
    index = stages.index(current) if current in stages else -1
    glyph = current.glyph if current else "🔘"
    header = [
        f"{issue.key}  {issue.summary or '—'}",
        f"Status:   {glyph} {issue.status}",
        f"Type:     {issue.category or '—'}",
        f"Assignee: {issue.assignee or 'Unassigned'}",
        f"Priority: {issue.priority or '—'}",
        "",
        f"{progress_bar(index, len(stages))}  {progress_percent(index, len(stages))}%",
        "",
    ]
    return "\n".join(header) + render_workflow(stages, current)


def render_run_state(state: RunState) -> str:
    """One-line description of a run's progress."""
    done = len(state.completed_steps)
    if state.phase == RunPhase.RUNNING:
        step = f" {state.current_transition}" if state.current_transition else ""
        return f"[{done}/{state.total_steps}]{step}"
    if state.phase == RunPhase.DONE:
        return f"Done: {done} step(s) completed"
    if state.phase == RunPhase.ERROR:
        return f"Failed at {state.failed_at} after {done}/{state.total_steps} step(s): {state.error_message}"
    if state.phase == RunPhase.SUSPENDED:
        return f"Waiting for field values before {state.failed_at}"
    if state.phase == RunPhase.CANCELLED:
        return f"Cancelled at {state.issue_status} after {done}/{state.total_steps} step(s)"
    return "Idle"


def render_outcome(outcome: TransitionOutcome) -> str:
    """Summary of an engine outcome, including advisories."""
    lines = [outcome.message] if outcome.message else []
    if outcome.filled:
        lines.append(f"Auto-filled: {', '.join(outcome.filled)}")
    if outcome.assignment is not None and outcome.assignment.assigned:
        lines.append(f"Assigned to {outcome.assignment.assignee_name}")
    if outcome.run is not None and outcome.run.completed_steps:
        lines.append(f"Completed: {' → '.join(outcome.run.completed_steps)}")
    lines.extend(f"Warning: {advisory}" for advisory in outcome.advisories)
    return "\n".join(lines)
