"""
Chunked Generation Pipeline - Python Implementation

Generates one entity's records in bounded chunks:

    synthesize -> prepare -> persist -> invalidate FK cache -> memory check -> notify

Transactional mode wraps each chunk in a store transaction and aborts the
run on the first failed chunk; non-transactional mode records the failure,
skips the chunk and continues. Relationships are populated once all base rows
of the entity are stored.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
from faker import Faker

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.errors import (
    ChunkInsertError,
    GenerationIssue,
    IssueKind,
    SyntheticDataError,
    memory_pressure_warning,
)
from ingen_synth.python_libs.common.generation_results import GenerationResult
from ingen_synth.python_libs.common.schema_description import SchemaCatalog, SchemaDescription
from ingen_synth.python_libs.common.synthetic_data_config import GenerationRequest
from ingen_synth.python_libs.common.synthetic_data_logger import SyntheticDataLogger
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreError, DataStoreInterface
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine

from . import worker_pool
from .foreign_key_cache import ForeignKeyCache
from .memory_monitor import MemoryMonitor, format_bytes
from .record_synthesizer import RecordSynthesizer, UniqueRegistry
from .relationship_resolver import RelationshipResolver, RelationshipStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkEvent:
    """Progress notification emitted after each persisted chunk."""

    entity: str
    index: int
    total: int
    inserted: int


ChunkObserver = Callable[[ChunkEvent], None]


class ChunkedGenerationPipeline:
    """Bounded-memory generation of a single entity."""

    def __init__(
        self,
        store: DataStoreInterface,
        catalog: Optional[SchemaCatalog] = None,
        engine: Optional[PatternEngine] = None,
        settings: Optional[EngineSettings] = None,
        resolver: Optional[RelationshipResolver] = None,
        observer: Optional[ChunkObserver] = None,
        metrics_logger: Optional[SyntheticDataLogger] = None,
        memory_reader: Optional[Callable[[], int]] = None,
        unique_registry: Optional[UniqueRegistry] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.catalog = catalog or SchemaCatalog()
        self.engine = engine or PatternEngine()
        self.settings = settings or EngineSettings()
        self.clock = clock
        if resolver is None:
            resolver = RelationshipResolver(
                store, self.catalog, self.settings, ForeignKeyCache(store), clock=clock
            )
        self.resolver = resolver
        self.cache = resolver.cache
        self.observer = observer
        self.metrics_logger = metrics_logger or SyntheticDataLogger(logger_name=__name__)
        self.memory_reader = memory_reader
        self.unique_registry: UniqueRegistry = unique_registry if unique_registry is not None else {}
        self._related: Dict[str, RecordSynthesizer] = {}
        self._related_index: Dict[str, int] = {}

    # Setup

    def _schema_for(self, request: GenerationRequest, schema: Optional[SchemaDescription]) -> SchemaDescription:
        if schema is not None:
            if schema.entity not in self.catalog:
                self.catalog.add(schema)
            return schema
        return self.catalog.get(request.entity)

    def _settings_for(self, request: GenerationRequest) -> EngineSettings:
        return self.settings.merged(
            chunk_size=request.chunk_size,
            memory_limit=request.memory_limit,
            seed=request.seed,
            transactional=request.transactional,
            workers=request.workers,
        )

    def _synthesizer(self, schema: SchemaDescription, request: GenerationRequest,
                     settings: EngineSettings, rng: np.random.Generator,
                     unique_registry: Optional[UniqueRegistry] = None) -> RecordSynthesizer:
        fake = Faker(settings.locale)
        if settings.seed is not None:
            fake.seed_instance(settings.seed)
        return RecordSynthesizer(
            schema,
            self.engine,
            resolver=self.resolver,
            settings=settings,
            rng=rng,
            faker=fake,
            column_patterns=request.column_patterns,
            entity_patterns=request.entity_patterns(schema.entity),
            overrides=request.overrides,
            total=request.count,
            unique_registry=self.unique_registry if unique_registry is None else unique_registry,
        )

    # Generation

    def generate(self, request: GenerationRequest, schema: Optional[SchemaDescription] = None) -> GenerationResult:
        """Generate ``request.count`` records for one entity.

        Raises:
            ConfigurationError: invalid request or pattern parameters, before any persistence
            SchemaMismatchError: request references an unknown entity or column
            ChunkInsertError: a chunk failed to persist in transactional mode
        """
        schema = self._schema_for(request, schema)
        request.validate(schema)
        settings = self._settings_for(request)
        rng = np.random.default_rng(settings.seed)
        self.resolver.reset_warnings()
        synthesizer = self._synthesizer(schema, request, settings, rng)

        monitor = MemoryMonitor(settings.memory_limit_bytes, settings.memory_threshold,
                                usage_reader=self.memory_reader)
        monitor.on_pressure(self.cache.clear)
        monitor.on_pressure(self.engine.clear_inferred)

        result = GenerationResult(entity=schema.entity)
        stats = result.statistics
        chunk_size = settings.chunk_size
        total_chunks = math.ceil(request.count / chunk_size) if request.count else 0
        stats.chunks_total = total_chunks
        started = time.perf_counter()

        if not request.silent:
            self.metrics_logger.log_entity_generation_start(
                schema.entity, request.count, chunk_size, request.to_dict()
            )

        for chunk_index, records, issues in self._chunks(request, schema, settings, synthesizer, total_chunks):
            result.extend(issues)
            prepared = self.prepare_records(schema, records)
            try:
                ids = self._persist(schema, prepared, settings.transactional)
            except Exception as exc:
                stats.chunks_failed += 1
                message = f"Chunk {chunk_index + 1}/{total_chunks} of {schema.entity} failed: {exc}"
                if settings.transactional:
                    result.failed = True
                    result.record(GenerationIssue.error(IssueKind.CHUNK_INSERT, message, chunk=chunk_index))
                    self._finish(result, monitor, started)
                    raise ChunkInsertError(message, chunk_index, cause=exc, partial_result=result) from exc
                result.record(GenerationIssue.error(IssueKind.CHUNK_INSERT, message, chunk=chunk_index))
                continue

            result.records.extend(ids)
            stats.generated_count += len(ids)
            stats.chunks_completed += 1
            self.cache.invalidate(schema.table)

            status = monitor.check()
            if status.under_pressure:
                result.record(
                    memory_pressure_warning(
                        f"{schema.entity}: memory at {format_bytes(status.current_bytes)} after chunk "
                        f"{chunk_index + 1}, caches cleared",
                        chunk=chunk_index, usage=status.current_bytes, limit=status.limit_bytes,
                    )
                )
            self._notify(ChunkEvent(schema.entity, chunk_index, total_chunks, len(ids)))

        if request.populate_relationships and schema.relationships and result.records:
            try:
                relationship_stats = self._populate(schema, result.records, settings, rng)
            except (SyntheticDataError, DataStoreError) as exc:
                # Base rows are already stored; hand their accounting to the caller
                result.failed = True
                result.extend(self.resolver.drain_issues())
                self._finish(result, monitor, started)
                exc.partial_result = result
                raise
            stats.relationships = relationship_stats.to_dict()
        result.extend(self.resolver.drain_issues())

        self._finish(result, monitor, started)
        if not request.silent:
            self.metrics_logger.log_entity_generation_complete(
                self.metrics_logger.create_entity_metrics(result, schema.table, request.count)
            )
        return result

    def _chunks(self, request: GenerationRequest, schema: SchemaDescription, settings: EngineSettings,
                synthesizer: RecordSynthesizer,
                total_chunks: int) -> Iterator[Tuple[int, List[Dict[str, Any]], List[GenerationIssue]]]:
        if settings.workers > 1 and total_chunks > 1:
            reason = worker_pool.fallback_reason(request, schema, self.engine)
            if reason is None:
                snapshot = worker_pool.foreign_key_snapshot(schema, self.store, self.cache)
                units = worker_pool.build_work_units(request, schema, settings, settings.chunk_size, snapshot)
                for chunk_index, records, issues in worker_pool.iter_parallel_chunks(units, settings.workers):
                    yield chunk_index, synthesizer.register_unique(records), issues
                return
            logger.warning(f"⚠️ {schema.entity}: {reason} need the parent process, generating sequentially")

        for chunk_index in range(total_chunks):
            start = chunk_index * settings.chunk_size
            size = min(settings.chunk_size, request.count - start)
            records = synthesizer.synthesize_chunk(start, size)
            yield chunk_index, records, self.resolver.drain_issues()

    def _persist(self, schema: SchemaDescription, records: List[Dict[str, Any]], transactional: bool) -> List[Any]:
        if transactional:
            with self.store.transaction():
                return self.store.insert_rows(schema.table, records)
        return self.store.insert_rows(schema.table, records)

    def _notify(self, event: ChunkEvent) -> None:
        self.metrics_logger.log_chunk_complete(event.entity, event.index, event.total, event.inserted)
        if self.observer is None:
            return
        try:
            self.observer(event)
        except Exception as exc:
            logger.warning(f"⚠️ Progress observer failed on {event.entity} chunk {event.index}: {exc}")

    def _finish(self, result: GenerationResult, monitor: MemoryMonitor, started: float) -> None:
        stats = result.statistics
        stats.elapsed_time = time.perf_counter() - started
        stats.memory_usage = monitor.current_usage()
        stats.peak_memory = monitor.peak_increase

    def prepare_records(self, schema: SchemaDescription, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Fill framework-managed timestamps that were not overridden."""
        if not schema.timestamps:
            return records
        now = self.clock()
        for record in records:
            for name in schema.MANAGED_TIMESTAMPS:
                if record.get(name) is None:
                    record[name] = now
        return records

    # Relationships

    def _populate(self, schema: SchemaDescription, parent_ids: List[Any], settings: EngineSettings,
                  rng: np.random.Generator) -> RelationshipStats:
        if settings.transactional:
            with self.store.transaction():
                return self.resolver.populate(schema, parent_ids, self._write_related_factory(settings), rng)
        return self.resolver.populate(schema, parent_ids, self._write_related_factory(settings), rng)

    def _write_related_factory(self, settings: EngineSettings):
        def write_related(related: SchemaDescription, overrides: List[Dict[str, Any]]) -> List[Any]:
            synthesizer = self._related.get(related.entity)
            if synthesizer is None:
                request = GenerationRequest(entity=related.entity, count=0)
                synthesizer = self._synthesizer(related, request, settings, self.resolver.rng)
                self._related[related.entity] = synthesizer
            offset = self._related_index.get(related.entity, 0)
            ids: List[Any] = []
            for start in range(0, len(overrides), settings.chunk_size):
                batch = overrides[start:start + settings.chunk_size]
                records = [synthesizer.synthesize(offset + start + i, o) for i, o in enumerate(batch)]
                ids.extend(self.store.insert_rows(related.table, self.prepare_records(related, records)))
                self.cache.invalidate(related.table)
            self._related_index[related.entity] = offset + len(overrides)
            return ids

        return write_related

    # Preview

    def preview(self, request: GenerationRequest, sample: Optional[int] = None,
                schema: Optional[SchemaDescription] = None) -> List[Dict[str, Any]]:
        """Synthesize up to ``sample`` records without persisting anything."""
        schema = self._schema_for(request, schema)
        request.validate(schema)
        settings = self._settings_for(request)
        size = min(sample or settings.dry_run_sample, request.count)
        synthesizer = self._synthesizer(schema, request, settings, np.random.default_rng(settings.seed),
                                        unique_registry={})
        records = self.prepare_records(schema, synthesizer.synthesize_chunk(0, size))
        self.resolver.drain_issues()
        self.resolver.reset_warnings()
        return records
