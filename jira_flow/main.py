"""CLI entry point for jira-flow."""

import asyncio
import contextlib
import signal
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click
import structlog

from jira_flow.config.settings import JiraFlowSettings
from jira_flow.engine.transition_engine import TransitionEngine
from jira_flow.enums import OutcomeStatus
from jira_flow.exceptions import ConfigurationError, JiraFlowError, truncate_message
from jira_flow.models.domain import Issue, RunState, Stage, TransitionOutcome
from jira_flow.providers.base import IssueStore
from jira_flow.providers.factory import create_issue_store
from jira_flow.utils.connection_pool import close_all_pools
from jira_flow.utils.helpers import DATE_PATTERN, is_date_field, parse_field_assignments, resolve_ticket_key
from jira_flow.utils.logging_config import configure_logging
from jira_flow.utils.status_reporter import render_issue, render_outcome, render_run_state

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--config",
    default="jira_flow.yaml",
    envvar="JIRA_FLOW_CONFIG",
    help="Path to configuration file",
)
@click.option("--log-level", default="WARNING", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str) -> None:
    """jira-flow: move Jira issues through the team workflow."""
    configure_logging(log_level)

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(1)

    try:
        settings = JiraFlowSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


def _run(command: str, coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine with the shared error handling."""
    try:
        asyncio.run(coro)
    except JiraFlowError as e:
        click.echo(f"Error: {truncate_message(str(e))}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except click.Abort:
        raise
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{command}_unexpected", exc_info=True)
        sys.exit(1)


@contextlib.asynccontextmanager
async def _session(settings: JiraFlowSettings):
    """Open the configured store for the duration of one command."""
    store = create_issue_store(settings)
    try:
        async with store:
            yield store
    finally:
        await close_all_pools()


def _prompt_fields(fields: list[str]) -> dict[str, str]:
    """Ask the operator for each missing field."""

    def check_date(value: str) -> str:
        value = value.strip()
        if not DATE_PATTERN.match(value):
            raise click.BadParameter("expected a date as YYYY-MM-DD")
        return value

    click.echo("The following fields are required before the transition:")
    values = {}
    for name in fields:
        if is_date_field(name):
            values[name] = click.prompt(f"  {name} (YYYY-MM-DD)", value_proc=check_date)
        else:
            values[name] = click.prompt(f"  {name}").strip()
    return values


async def _settle(engine: TransitionEngine, outcome: TransitionOutcome) -> TransitionOutcome:
    """Prompt for missing fields and resume until the operation stops waiting."""
    while True:
        if outcome.suspended:
            click.echo(render_outcome(outcome))
            outcome = await engine.resume_after_field_input(_prompt_fields(outcome.missing_fields))
            continue
        if outcome.status == OutcomeStatus.FAILED and engine.pending is not None:
            click.echo(f"Error: {outcome.message}", err=True)
            if click.confirm("Try entering the fields again?", default=True):
                outcome = await engine.resume_after_field_input(_prompt_fields(engine.pending.fields))
                continue
        return outcome


def _report(outcome: TransitionOutcome) -> None:
    if outcome.status == OutcomeStatus.FAILED:
        if outcome.run is not None and outcome.run.completed_steps:
            click.echo(f"Completed before failure: {' → '.join(outcome.run.completed_steps)}")
        raise outcome.error or JiraFlowError(outcome.message)
    if outcome.status == OutcomeStatus.COMPLETED:
        click.echo(f"✅ {render_outcome(outcome)}")
    else:
        click.echo(render_outcome(outcome))


async def _show(settings: JiraFlowSettings, ticket: str) -> None:
    key = resolve_ticket_key(ticket, settings.tracker.default_project)
    async with _session(settings) as store:
        engine = TransitionEngine.from_settings(settings, store)
        issue = await store.fetch_issue(key)
        stages = engine.stages_for(issue.category)
        current = engine.stage_of(issue)
        click.echo(render_issue(issue, stages, current))
        click.echo("")

        if current is None:
            click.echo(f"⚠️  Status '{issue.status}' is not part of the workflow")
            return
        following = engine.next_stage(issue)
        preceding = engine.previous_stage(issue)
        click.echo(f"Next:     {following.label if following else '— (final stage)'}")
        click.echo(f"Previous: {preceding.label if preceding else '— (first stage)'}")


async def _step(settings: JiraFlowSettings, ticket: str, forward: bool) -> None:
    key = resolve_ticket_key(ticket, settings.tracker.default_project)
    async with _session(settings) as store:
        engine = TransitionEngine.from_settings(settings, store)
        outcome = await (engine.advance(key) if forward else engine.regress(key))
        _report(await _settle(engine, outcome))


async def _done(settings: JiraFlowSettings, ticket: str, assume_yes: bool) -> None:
    key = resolve_ticket_key(ticket, settings.tracker.default_project)

    def show_progress(state: RunState) -> None:
        click.echo(f"  {render_run_state(state)}")

    async with _session(settings) as store:
        engine = TransitionEngine.from_settings(settings, store, on_progress=show_progress)
        issue = await store.fetch_issue(key)
        remaining = engine.remaining_stages(issue)
        if len(remaining) > 1 and not assume_yes:
            chain = " → ".join([issue.status, *(stage.name for stage in remaining)])
            if not click.confirm(f"Move {issue.key} through {len(remaining)} stages?\n{chain}\n", default=True):
                click.echo("Cancelled")
                return

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, engine.cancel)
        try:
            outcome = await engine.run_to_completion(issue)
        finally:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signal.SIGINT)
        _report(await _settle(engine, outcome))


async def _board(settings: JiraFlowSettings, statuses: tuple[str, ...]) -> None:
    async with _session(settings) as store:
        engine = TransitionEngine.from_settings(settings, store)
        stages = engine.stages_for()
        if statuses:
            wanted = {store.normalize_status(status) for status in statuses}
            stages = [stage for stage in stages if store.normalize_status(stage.name) in wanted]
            if not stages:
                raise JiraFlowError(f"None of {', '.join(statuses)} is a workflow stage")

        query = [name for stage in stages for name in (stage.name, *store.workflow.aliases_for(stage.name))]
        issues = await store.list_assigned_issues(query)
        if not issues:
            click.echo("No issues assigned to you in these stages")
            return

        _print_board(store, engine, stages, issues)


def _print_board(
    store: IssueStore,
    engine: TransitionEngine,
    stages: list[Stage],
    issues: list[Issue],
) -> None:
    for stage in stages:
        in_stage = [issue for issue in issues if store.normalize_status(issue.status) == store.normalize_status(stage.name)]
        if not in_stage:
            continue
        click.echo(f"\n{stage.label} ({len(in_stage)})")
        for issue in in_stage:
            following = engine.next_stage(issue)
            hint = f"  → {following.name}" if following else ""
            click.echo(f"  {issue.key:<12} {issue.summary[:60]:<60} {issue.priority or ''}{hint}")


async def _set_fields(settings: JiraFlowSettings, ticket: str, values: dict[str, str]) -> None:
    key = resolve_ticket_key(ticket, settings.tracker.default_project)
    async with _session(settings) as store:
        await store.write_fields(key, values)
    click.echo(f"✅ Updated {key}: " + ", ".join(f"{name}: {value}" for name, value in values.items()))


async def _open(settings: JiraFlowSettings, ticket: str, print_only: bool) -> None:
    key = resolve_ticket_key(ticket, settings.tracker.default_project)
    async with _session(settings) as store:
        url = store.browse_url(key)
        if print_only:
            click.echo(url)
            return
        if not await store.open_issue(key):
            click.launch(url)
    click.echo(f"Opened {key}: {url}")


@cli.command()
@click.argument("ticket")
@click.pass_context
def show(ctx: click.Context, ticket: str) -> None:
    """Show where TICKET stands in the workflow."""
    _run("show", _show(ctx.obj["settings"], ticket))


@cli.command()
@click.argument("ticket")
@click.pass_context
def advance(ctx: click.Context, ticket: str) -> None:
    """Move TICKET to the next stage."""
    _run("advance", _step(ctx.obj["settings"], ticket, forward=True))


@cli.command()
@click.argument("ticket")
@click.pass_context
def regress(ctx: click.Context, ticket: str) -> None:
    """Move TICKET back one stage."""
    _run("regress", _step(ctx.obj["settings"], ticket, forward=False))


@cli.command()
@click.argument("ticket")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def done(ctx: click.Context, ticket: str, assume_yes: bool) -> None:
    """Move TICKET stage by stage to the final stage."""
    _run("done", _done(ctx.obj["settings"], ticket, assume_yes))


@cli.command()
@click.option("--status", "statuses", multiple=True, help="Only show these stages (repeatable)")
@click.pass_context
def board(ctx: click.Context, statuses: tuple[str, ...]) -> None:
    """List issues assigned to you, grouped by stage."""
    _run("board", _board(ctx.obj["settings"], statuses))


@cli.command("set-fields")
@click.argument("ticket")
@click.argument("assignments", nargs=-1, required=True)
@click.pass_context
def set_fields(ctx: click.Context, ticket: str, assignments: tuple[str, ...]) -> None:
    """Set custom fields on TICKET, given as NAME=VALUE."""
    try:
        values = parse_field_assignments(assignments)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ASSIGNMENTS") from e
    _run("set_fields", _set_fields(ctx.obj["settings"], ticket, values))


@cli.command("open")
@click.argument("ticket")
@click.option("--print-url", "print_only", is_flag=True, help="Print the issue URL instead of opening it")
@click.pass_context
def open_issue(ctx: click.Context, ticket: str, print_only: bool) -> None:
    """Open TICKET in the browser."""
    _run("open", _open(ctx.obj["settings"], ticket, print_only))


if __name__ == "__main__":
    cli()
