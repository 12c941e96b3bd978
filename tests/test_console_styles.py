import io

import pytest
from rich.console import Console

from ingen_synth import (
    ConsoleStyles,
    RichProgressObserver,
    print_generation_result,
    print_scenario_result,
)
from ingen_synth.python_libs.common.errors import GenerationIssue, IssueKind, Outcome
from ingen_synth.python_libs.common.generation_results import GenerationResult, ScenarioResult
from ingen_synth.python_libs.common.synthetic_data_config import GenerationRequest
from ingen_synth.python_libs.python.chunked_generation_pipeline import ChunkedGenerationPipeline, ChunkEvent


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=120, color_system=None)


def _output(console):
    return console.file.getvalue()


def test_outcome_styles_cover_every_outcome():
    assert set(ConsoleStyles.OUTCOME_STYLES) == set(Outcome)


def test_print_outcome(console):
    ConsoleStyles.print_outcome(console, "Order", Outcome.SUCCEEDED_WITH_WARNINGS)
    assert "Order: succeeded with warnings" in _output(console)


def test_observer_tracks_pipeline_chunks(console, memory_store, catalog, engine, settings, clock):
    with RichProgressObserver(console=console) as observer:
        pipeline = ChunkedGenerationPipeline(memory_store, catalog=catalog, engine=engine,
                                             settings=settings, observer=observer, clock=clock)
        pipeline.generate(GenerationRequest(entity="Tag", count=250))

    assert observer.events == 3
    task = observer.progress.tasks[0]
    assert task.description == "Tag"
    assert task.completed == 3
    assert task.fields["rows"] == 250


def test_observer_starts_new_bar_per_cohort(console):
    observer = RichProgressObserver(console=console)
    for index in range(2):
        observer(ChunkEvent("User", index, 2, 10))
    observer(ChunkEvent("User", 0, 1, 5))
    assert len(observer.progress.tasks) == 2
    assert observer.progress.tasks[1].fields["rows"] == 5


def test_print_generation_result(console):
    result = GenerationResult(entity="Order", records=[1, 2])
    result.statistics.generated_count = 2
    result.record(GenerationIssue.warning(IssueKind.REFERENTIAL_INTEGRITY, "users has no rows"))
    print_generation_result(console, result)

    output = _output(console)
    assert "Order: succeeded with warnings" in output
    assert "referential_integrity: users has no rows" in output


def test_print_scenario_result(console):
    result = ScenarioResult(order=["User", "Order"], generated={"User": 1200, "Order": 0}, failed=True)
    result.record(GenerationIssue.error(IssueKind.STEP_FAILURE, "Step Order failed"))
    print_scenario_result(console, result)

    output = _output(console)
    assert "Generated records" in output
    assert "1,200" in output
    assert "Scenario: failed" in output
    assert "error: Step Order failed" in output


def test_print_dry_run_estimates(console):
    result = ScenarioResult(order=["User"], dry_run=True)
    result.estimates["User"] = {"records": 5000, "estimated_seconds": 1.25, "estimated_bytes": 640000}
    print_scenario_result(console, result)

    output = _output(console)
    assert "Dry run estimates" in output
    assert "5,000" in output
    assert "640,000 B" in output
