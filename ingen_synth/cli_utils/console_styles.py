from __future__ import annotations

from typing import Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TaskID, TextColumn, TimeElapsedColumn
from rich.style import Style
from rich.table import Table
from rich.text import Text

from ingen_synth.python_libs.common.errors import Outcome
from ingen_synth.python_libs.common.generation_results import GenerationResult, ScenarioResult
from ingen_synth.python_libs.python.chunked_generation_pipeline import ChunkEvent


class ConsoleStyles:
    """
    Centralized styles and helper methods for rich console output.
    """

    SUCCESS = Style(color="green", bold=True)
    WARNING = Style(color="yellow", bold=True)
    ERROR = Style(color="red", bold=True)
    INFO = Style(color="cyan", italic=True)
    DIM = Style(dim=True)
    TITLE = Style(color="magenta", bold=True)

    OUTCOME_STYLES = {
        Outcome.SUCCEEDED: SUCCESS,
        Outcome.SUCCEEDED_WITH_WARNINGS: WARNING,
        Outcome.FAILED: ERROR,
    }

    @staticmethod
    def print_success(console: Console, message: str) -> None:
        console.print(Text(message, style=ConsoleStyles.SUCCESS))

    @staticmethod
    def print_warning(console: Console, message: str) -> None:
        console.print(Text(message, style=ConsoleStyles.WARNING))

    @staticmethod
    def print_error(console: Console, message: str) -> None:
        console.print(Text(message, style=ConsoleStyles.ERROR))

    @staticmethod
    def print_title(console: Console, message: str) -> None:
        console.print(Text(message, style=ConsoleStyles.TITLE))

    @staticmethod
    def print_outcome(console: Console, label: str, outcome: Outcome) -> None:
        style = ConsoleStyles.OUTCOME_STYLES[outcome]
        console.print(Text(f"{label}: {outcome.value.replace('_', ' ')}", style=style))


class RichProgressObserver:
    """Chunk observer that renders one rich progress bar per entity.

    Use as a context manager around the run and pass the instance as the
    pipeline's or orchestrator's ``observer``.
    """

    def __init__(self, console: Optional[Console] = None, transient: bool = False):
        self.console = console or Console()
        self.progress = Progress(
            TextColumn("[cyan]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[rows]:,} rows"),
            TimeElapsedColumn(),
            console=self.console,
            transient=transient,
        )
        self._tasks: Dict[str, TaskID] = {}
        self._rows: Dict[TaskID, int] = {}
        self.events = 0

    def __enter__(self) -> "RichProgressObserver":
        self.progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def __call__(self, event: ChunkEvent) -> None:
        self.events += 1
        task = self._tasks.get(event.entity)
        # A first chunk starts a new bar, e.g. for the next cohort of an entity
        if task is None or event.index == 0:
            task = self.progress.add_task(event.entity, total=event.total, rows=0)
            self._tasks[event.entity] = task
            self._rows[task] = 0
        self._rows[task] += event.inserted
        self.progress.update(task, completed=event.index + 1, rows=self._rows[task])


def print_generation_result(console: Console, result: GenerationResult) -> None:
    stats = result.statistics
    ConsoleStyles.print_outcome(console, result.entity, result.outcome)
    console.print(
        f"[cyan]Records:[/cyan] {stats.generated_count:,}  "
        f"[cyan]Chunks:[/cyan] {stats.chunks_completed}/{stats.chunks_total}  "
        f"[cyan]Elapsed:[/cyan] {stats.elapsed_time:.2f}s"
    )
    for issue in result.errors + result.warnings:
        console.print(Text(f"  {issue.kind.value}: {issue.message}", style=ConsoleStyles.DIM))


def print_scenario_result(console: Console, result: ScenarioResult) -> None:
    """Render a scenario result as a table followed by its recorded issues."""
    table = Table(title="Dry run estimates" if result.dry_run else "Generated records")
    table.add_column("Entity", style="cyan")
    if result.dry_run:
        table.add_column("Records", justify="right")
        table.add_column("Est. seconds", justify="right")
        table.add_column("Est. memory", justify="right")
        for entity in result.order:
            estimate = result.estimates.get(entity, {})
            table.add_row(
                entity,
                f"{estimate.get('records', 0):,}",
                f"{estimate.get('estimated_seconds', 0.0):.2f}",
                f"{estimate.get('estimated_bytes', 0):,} B",
            )
    else:
        table.add_column("Records", justify="right")
        table.add_column("Seconds", justify="right")
        for entity in result.order:
            stats = result.statistics.get(entity)
            table.add_row(
                entity,
                f"{result.generated.get(entity, 0):,}",
                f"{stats.elapsed_time:.2f}" if stats else "-",
            )
    console.print(table)
    ConsoleStyles.print_outcome(console, "Scenario", result.outcome)

    issues = result.errors + result.warnings
    if issues:
        lines = "\n".join(f"{issue.severity.value}: {issue.message}" for issue in issues)
        console.print(Panel(Text(lines), title="[bold]Issues[/bold]", border_style="yellow", expand=False))
