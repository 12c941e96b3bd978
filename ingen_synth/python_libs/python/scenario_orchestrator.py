"""
Scenario Orchestrator - Python Implementation

Runs a multi-entity scenario: orders the steps by dependency, expands cohort
steps into one generation request per cohort and drives the chunked pipeline
for each request.

Modes:
    transactional  the whole scenario runs inside one store transaction and a
                   failed step rolls everything back
    best-effort    failed steps are recorded, the remaining steps still run and
                   the scenario is reported as failed
    dry run        a sample of each step is synthesized and profiled with
                   pandas to estimate records, time and memory; nothing is stored
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.errors import (
    GenerationIssue,
    IssueKind,
    SyntheticDataError,
)
from ingen_synth.python_libs.common.generation_results import ScenarioResult
from ingen_synth.python_libs.common.schema_description import SchemaCatalog
from ingen_synth.python_libs.common.synthetic_data_config import GenerationRequest, ScenarioStep
from ingen_synth.python_libs.common.synthetic_data_logger import (
    EntityGenerationMetrics,
    ScenarioGenerationSummary,
    SyntheticDataLogger,
)
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreError, DataStoreInterface
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine

from .chunked_generation_pipeline import ChunkedGenerationPipeline, ChunkObserver
from .scenario_plan import ScenarioDefinition, ScenarioPlan, StepInput, build_plan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]
ScenarioInput = Union[ScenarioPlan, ScenarioDefinition, Iterable[StepInput]]

STEP_SEED_STRIDE = 1000


class _StepFailed(Exception):
    """Internal signal that unwinds the outer transaction."""

    def __init__(self, entity: str, cause: BaseException):
        super().__init__(f"{entity}: {cause}")
        self.entity = entity
        self.cause = cause


class ScenarioOrchestrator:
    """Coordinates pipelines across the entities of a scenario."""

    def __init__(
        self,
        store: DataStoreInterface,
        catalog: SchemaCatalog,
        engine: Optional[PatternEngine] = None,
        settings: Optional[EngineSettings] = None,
        observer: Optional[ChunkObserver] = None,
        metrics_logger: Optional[SyntheticDataLogger] = None,
        memory_reader: Optional[Callable[[], int]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.catalog = catalog
        self.engine = engine or PatternEngine()
        self.settings = settings or EngineSettings()
        self.observer = observer
        self.metrics_logger = metrics_logger or SyntheticDataLogger(logger_name=__name__)
        self.memory_reader = memory_reader
        self.clock = clock

    def plan(self, scenario: ScenarioInput) -> ScenarioPlan:
        if isinstance(scenario, ScenarioPlan):
            return scenario
        if isinstance(scenario, ScenarioDefinition):
            return build_plan(scenario.steps, self.catalog, strict=self.settings.strict_cycles,
                              name=scenario.name, seed=scenario.seed, transactional=scenario.transactional)
        return build_plan(scenario, self.catalog, strict=self.settings.strict_cycles)

    def _pipeline(self) -> ChunkedGenerationPipeline:
        # One pipeline per run keeps the foreign-key cache and unique registry run-scoped
        return ChunkedGenerationPipeline(
            self.store,
            catalog=self.catalog,
            engine=self.engine,
            settings=self.settings,
            observer=self.observer,
            metrics_logger=self.metrics_logger,
            memory_reader=self.memory_reader,
            unique_registry={},
            clock=self.clock,
        )

    def _requests(self, plan: ScenarioPlan, seed: Optional[int], transactional: bool) -> Dict[str, List[GenerationRequest]]:
        """Expand and validate every step before anything is stored."""
        expanded: Dict[str, List[GenerationRequest]] = {}
        for position, step in enumerate(plan.steps):
            step_seed = None if seed is None else seed + position * STEP_SEED_STRIDE
            requests = step.requests(seed=step_seed, transactional=transactional)
            schema = self.catalog.get(step.entity)
            for request in requests:
                request.validate(schema)
            expanded[step.entity] = requests
        return expanded

    def run(self, scenario: ScenarioInput, transactional: Optional[bool] = None, dry_run: bool = False,
            seed: Optional[int] = None, on_progress: Optional[ProgressCallback] = None) -> ScenarioResult:
        """Run a scenario and return its aggregated result.

        Args:
            scenario: a plan, a loaded definition, or a list of steps (ScenarioStep or dicts)
            transactional: overrides the plan and engine settings when given
            dry_run: estimate without persisting
            seed: run seed; each step derives its own seed from it
            on_progress: ``callback(entity, message)`` for per-step progress

        Raises:
            ConfigurationError: invalid steps or requests, before any persistence
            SchemaMismatchError: a step names an unknown entity or column
            DependencyCycleError: cyclic dependencies with ``strict_cycles`` enabled
        """
        plan = self.plan(scenario)
        if transactional is None:
            transactional = plan.transactional if plan.transactional is not None else self.settings.transactional
        if seed is None:
            seed = plan.seed if plan.seed is not None else self.settings.seed

        result = ScenarioResult(order=list(plan.order), dry_run=dry_run)
        result.warnings.extend(plan.warnings)
        requests = self._requests(plan, seed, transactional)
        started = time.perf_counter()

        if dry_run:
            self._dry_run(plan, requests, result, on_progress)
        elif transactional:
            self._run_transactional(plan, requests, result, on_progress)
        else:
            self._run_best_effort(plan, requests, result, on_progress)

        result.elapsed_time = time.perf_counter() - started
        self._log_summary(plan, result)
        return result

    # Modes

    def _run_transactional(self, plan, requests, result: ScenarioResult, on_progress) -> None:
        pipeline = self._pipeline()
        try:
            with self.store.transaction():
                for step in plan.steps:
                    try:
                        self._run_step(pipeline, step, requests[step.entity], result, on_progress)
                    except (SyntheticDataError, DataStoreError) as exc:
                        raise _StepFailed(step.entity, exc) from exc
        except _StepFailed as failure:
            result.failed = True
            result.record(
                GenerationIssue.error(
                    IssueKind.STEP_FAILURE,
                    f"Step {failure.entity} failed, scenario rolled back: {failure.cause}",
                    entity=failure.entity, rolled_back=True,
                )
            )
            self._progress(on_progress, failure.entity, f"failed: {failure.cause}")
            result.generated = {entity: 0 for entity in result.generated}

    def _run_best_effort(self, plan, requests, result: ScenarioResult, on_progress) -> None:
        pipeline = self._pipeline()
        for step in plan.steps:
            try:
                self._run_step(pipeline, step, requests[step.entity], result, on_progress)
            except (SyntheticDataError, DataStoreError) as exc:
                result.failed = True
                result.record(
                    GenerationIssue.error(
                        IssueKind.STEP_FAILURE, f"Step {step.entity} failed: {exc}", entity=step.entity
                    )
                )
                self._progress(on_progress, step.entity, f"failed: {exc}")

    def _run_step(self, pipeline: ChunkedGenerationPipeline, step: ScenarioStep,
                  requests: List[GenerationRequest], result: ScenarioResult,
                  on_progress: Optional[ProgressCallback]) -> None:
        callback = step.on_progress or on_progress
        self._progress(callback, step.entity, f"generating {step.count:,} records")
        for request in requests:
            try:
                entity_result = pipeline.generate(request)
            except (SyntheticDataError, DataStoreError) as exc:
                partial = getattr(exc, "partial_result", None)
                if partial is not None:
                    result.absorb(partial)
                raise
            result.absorb(entity_result)
        self._progress(callback, step.entity, f"generated {result.generated.get(step.entity, 0):,} records")

    def _dry_run(self, plan, requests, result: ScenarioResult, on_progress) -> None:
        pipeline = self._pipeline()
        for step in plan.steps:
            callback = step.on_progress or on_progress
            sampled: List[Dict[str, Any]] = []
            total = 0
            started = time.perf_counter()
            for request in requests[step.entity]:
                total += request.count
                sampled.extend(pipeline.preview(request, self.settings.dry_run_sample))
            elapsed = time.perf_counter() - started
            profile = self.metrics_logger.profile_records(sampled)
            chunk_size = step.chunk_size or self.settings.chunk_size
            seconds_per_record = elapsed / len(sampled) if sampled else 0.0
            result.estimates[step.entity] = {
                "records": total,
                "sample_size": len(sampled),
                "estimated_seconds": seconds_per_record * total,
                "bytes_per_record": profile["bytes_per_record"],
                "estimated_bytes": int(profile["bytes_per_record"] * total),
                "peak_chunk_bytes": int(profile["bytes_per_record"] * min(chunk_size, total)),
                "columns": profile["columns"],
            }
            self._progress(callback, step.entity, f"estimated {total:,} records from {len(sampled)} samples")

    # Reporting

    def _progress(self, callback: Optional[ProgressCallback], entity: str, message: str) -> None:
        logger.info(f"   ➡️ {entity}: {message}")
        if callback is None:
            return
        try:
            callback(entity, message)
        except Exception as exc:
            logger.warning(f"⚠️ Progress callback failed for {entity}: {exc}")

    def _log_summary(self, plan: ScenarioPlan, result: ScenarioResult) -> None:
        metrics = []
        for step in plan.steps:
            entity = step.entity
            stats = result.statistics.get(entity)
            metrics.append(
                EntityGenerationMetrics(
                    entity=entity,
                    table=self.catalog.get(entity).table,
                    generation_timestamp=datetime.now().isoformat(),
                    rows_requested=step.count,
                    rows_generated=result.generated.get(entity, 0),
                    duration_seconds=stats.elapsed_time if stats else 0.0,
                    chunks_total=stats.chunks_total if stats else 0,
                    chunks_failed=stats.chunks_failed if stats else 0,
                    peak_memory_bytes=stats.peak_memory if stats else 0,
                    outcome=result.outcome.value,
                )
            )
        self.metrics_logger.log_scenario_summary(
            ScenarioGenerationSummary(
                scenario_id=plan.name,
                generation_timestamp=datetime.now().isoformat(),
                total_duration_seconds=result.elapsed_time,
                entity_metrics=metrics,
                dry_run=result.dry_run,
            )
        )
