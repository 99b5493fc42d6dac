"""Main CLI entry point using Typer."""

import json
from pathlib import Path
from typing import Any

import anyio
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from conductor import __version__
from conductor.core.config import get_settings
from conductor.core.exceptions import PlanningError
from conductor.core.log import configure_logging
from conductor.core.orchestrator import Orchestrator
from conductor.core.session import PlanSession, PlanSnapshot
from conductor.decomposition.assigner import WorkerRegistry
from conductor.decomposition.cycle_validator import CycleValidator
from conductor.decomposition.executor import DryRunWorker
from conductor.decomposition.graph_builder import GraphBuilder

app = typer.Typer(
    name="conductor",
    help="Conductor - task orchestration engine",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

STATUS_COLORS = {
    "completed": "green",
    "blocked": "red",
    "contingent": "yellow",
    "unassignable": "magenta",
    "failed": "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Conductor[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Conductor - plan declared sub-tasks into waves and drive workers through them.
    """
    configure_logging(get_settings())


# =============================================================================
# HELPERS
# =============================================================================


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        console.print(f"[bold red]File not found: {path}[/bold red]")
        raise typer.Exit(code=2)
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[bold red]Malformed JSON in {path}:[/bold red] {e}")
        raise typer.Exit(code=1)


def _print_validation_error(error: ValidationError) -> None:
    console.print(f"[bold red]Invalid declaration:[/bold red] {error.error_count()} errors")
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "-"
        console.print(f"  [red]{location}[/red] {detail['msg']}")


def _load_plan(path: Path) -> dict[str, Any]:
    data = _load_json(path)
    if isinstance(data, list):
        data = {"tasks": data}
    if not isinstance(data, dict):
        console.print(f"[bold red]Expected a task list or object in {path}[/bold red]")
        raise typer.Exit(code=1)
    return data


def _load_workers(path: Path) -> WorkerRegistry:
    try:
        return WorkerRegistry.from_dict(_load_json(path))
    except ValidationError as e:
        _print_validation_error(e)
        raise typer.Exit(code=1)


def _print_diagnostics(diagnostics: list) -> None:
    for d in diagnostics:
        color = "red" if d.kind.fatal else "yellow"
        console.print(f"  [{color}]{d.kind.value}[/{color}] {d.message}")


def _print_plan(session: PlanSession) -> None:
    graph = session.graph
    table = Table(title=f"Plan {session.id[:8]}")
    table.add_column("Wave", style="cyan")
    table.add_column("Task", style="bold")
    table.add_column("Domain")
    table.add_column("Worker")
    table.add_column("Effort", justify="right")
    table.add_column("Slack", justify="right")
    table.add_column("Status")

    for number, wave in enumerate(graph.waves):
        for tid in wave:
            task = graph.tasks[tid]
            marker = " *" if task.on_critical_path else ""
            color = STATUS_COLORS.get(task.status.value, "white")
            table.add_row(
                str(number),
                f"{tid}{marker}",
                task.domain,
                task.assigned_worker or "-",
                str(task.effort),
                "-" if task.slack is None else str(task.slack),
                f"[{color}]{task.status.value}[/{color}]",
            )

    console.print(table)
    console.print(
        f"Critical path: [bold]{' -> '.join(session.critical_path) or '-'}[/bold] "
        f"(length {session.critical_path_length})"
    )
    if graph.diagnostics:
        console.print("\n[bold]Diagnostics[/bold]")
        _print_diagnostics(graph.diagnostics)


def _plan_or_exit(data: dict[str, Any], orchestrator: Orchestrator) -> PlanSession:
    try:
        return orchestrator.plan(
            data.get("tasks", []),
            goal=data.get("goal", ""),
            preexisting=data.get("preexisting", []),
            deliverables=data.get("deliverables") or None,
        )
    except ValidationError as e:
        _print_validation_error(e)
        raise typer.Exit(code=1)
    except PlanningError as e:
        console.print(f"[bold red]Planning failed:[/bold red] {e}")
        _print_diagnostics(e.diagnostics)
        raise typer.Exit(code=1)


# =============================================================================
# COMMANDS
# =============================================================================


@app.command()
def validate(
    plan_file: Path = typer.Argument(..., help="JSON file with task declarations"),
) -> None:
    """
    Build the dependency graph and check it for cycles.

    Example:
        conductor validate tasks.json
    """
    data = _load_plan(plan_file)
    try:
        graph = GraphBuilder().build(data.get("tasks", []), data.get("preexisting", []))
        CycleValidator().validate(graph)
    except ValidationError as e:
        _print_validation_error(e)
        raise typer.Exit(code=1)
    except PlanningError as e:
        console.print(f"[bold red]Invalid:[/bold red] {e}")
        _print_diagnostics(e.diagnostics)
        raise typer.Exit(code=1)

    console.print(
        f"[green]{len(graph.tasks)} tasks, {len(graph.edges)} edges, acyclic[/green]"
    )
    if graph.diagnostics:
        _print_diagnostics(graph.diagnostics)
    if graph.fatal_diagnostics:
        raise typer.Exit(code=1)


@app.command()
def plan(
    plan_file: Path = typer.Argument(..., help="JSON file with task declarations"),
    workers_file: Path = typer.Option(
        ...,
        "--workers",
        "-w",
        help="JSON file with worker capabilities",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the plan snapshot to this file",
    ),
) -> None:
    """
    Plan without executing: waves, critical path and assignments.

    Example:
        conductor plan tasks.json -w workers.json -o plan.json
    """
    data = _load_plan(plan_file)
    workers = _load_workers(workers_file)
    session = _plan_or_exit(data, Orchestrator(workers))

    _print_plan(session)

    if output:
        output.write_text(session.to_snapshot().to_json())
        console.print(f"[green]Saved to {output}[/green]")


@app.command()
def run(
    plan_file: Path = typer.Argument(..., help="JSON file with task declarations"),
    workers_file: Path = typer.Option(
        ...,
        "--workers",
        "-w",
        help="JSON file with worker capabilities",
    ),
    fail: list[str] = typer.Option(
        [],
        "--fail",
        "-f",
        help="Task id the dry-run workers should fail (repeatable)",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Per-dispatch deadline in seconds",
    ),
) -> None:
    """
    Rehearse a plan end to end with dry-run workers.

    Example:
        conductor run tasks.json -w workers.json --fail T3
    """
    data = _load_plan(plan_file)
    profiles = _load_workers(workers_file).profiles
    workers = WorkerRegistry()
    for profile in profiles:
        workers.register(profile, DryRunWorker(name=profile.name, fail_tasks=set(fail)))

    orchestrator = Orchestrator(workers)
    session = _plan_or_exit(data, orchestrator)

    async def execute() -> None:
        report = await orchestrator.execute(session, timeout=timeout)

        _print_plan(session)

        color = "green" if report.success else "yellow" if report.partial_success else "red"
        degradation = report.degradation
        console.print(
            Panel(
                f"[bold]State:[/bold] {report.state.value}\n"
                f"[bold]Completed:[/bold] {', '.join(report.completed) or '-'}\n"
                f"[bold]Blocked:[/bold] {', '.join(report.blocked) or '-'}\n"
                f"[bold]Contingent:[/bold] {', '.join(report.contingent) or '-'}\n"
                f"[bold]Deliverables achieved:[/bold] {', '.join(degradation.achieved) or '-'}\n"
                f"[bold]Deliverables lost:[/bold] {', '.join(degradation.lost) or '-'}",
                title=f"[bold {color}]Execution report[/bold {color}]",
                border_style=color,
            )
        )

        if not report.success:
            raise typer.Exit(code=1)

    anyio.run(execute)


@app.command()
def show(
    snapshot_file: Path = typer.Argument(..., help="Plan snapshot written by 'plan -o'"),
) -> None:
    """
    Re-import a plan snapshot and print its summary.
    """
    if not snapshot_file.exists():
        console.print(f"[bold red]File not found: {snapshot_file}[/bold red]")
        raise typer.Exit(code=2)

    try:
        snapshot = PlanSnapshot.from_json(snapshot_file.read_text())
    except ValidationError as e:
        console.print(f"[bold red]Not a plan snapshot: {snapshot_file}[/bold red]")
        _print_validation_error(e)
        raise typer.Exit(code=1)
    session = PlanSession.from_snapshot(snapshot)

    summary = snapshot.summary()
    for key, value in summary.items():
        console.print(f"[bold]{key}:[/bold] {value}")
    console.print()
    _print_plan(session)


if __name__ == "__main__":
    app()
