"""
Process-pool chunk synthesis.

Chunks are described by plain-data work units so they can be pickled to
worker processes. Each unit carries the schema, pattern specs, static
overrides, a snapshot of referenced identifiers and a seed derived from the
run seed, the entity and the chunk index. Workers only synthesize; the parent
process persists the returned records in chunk order.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np
from faker import Faker

from ingen_synth.engine_config import EngineSettings
from ingen_synth.python_libs.common.column_naming import BindingKind, resolve_foreign_key_binding
from ingen_synth.python_libs.common.errors import GenerationIssue
from ingen_synth.python_libs.common.schema_description import SchemaDescription
from ingen_synth.python_libs.common.synthetic_data_config import GenerationRequest, PatternSpec
from ingen_synth.python_libs.interfaces.data_store_interface import DataStoreInterface
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine

from .foreign_key_cache import ForeignKeyCache
from .memory_store import InMemoryDataStore
from .record_synthesizer import RecordSynthesizer
from .relationship_resolver import RelationshipResolver

logger = logging.getLogger(__name__)


def derive_chunk_seed(run_seed: Optional[int], entity: str, chunk_index: int) -> int:
    digest = hashlib.sha256(f"{run_seed}:{entity}:{chunk_index}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


@dataclass
class ChunkWorkUnit:
    entity: str
    chunk_index: int
    start_index: int
    size: int
    total: int
    seed: int
    schema: Dict[str, Any]
    settings: Dict[str, Any]
    column_patterns: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    entity_patterns: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    overrides: Dict[str, Any] = field(default_factory=dict)
    foreign_key_ids: Dict[str, List[Any]] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


def fallback_reason(request: GenerationRequest, schema: SchemaDescription,
                    engine: PatternEngine) -> Optional[str]:
    """Why a request cannot be synthesized in worker processes, or None."""
    if request.has_callable_overrides():
        return "callable overrides"
    builtin = PatternEngine()
    specs = list(request.column_patterns.values()) + list(request.entity_patterns(schema.entity).values())
    specs += [c.pattern for c in schema.columns.values() if c.pattern is not None]
    for spec in specs:
        if not isinstance(spec, (PatternSpec, str, Mapping)):
            return "pattern instances"
        if not builtin.has(PatternSpec.from_value(spec).type):
            return f"custom pattern {PatternSpec.from_value(spec).type!r}"
    if engine.available() != builtin.available():
        return "custom pattern registrations"
    for column in schema.columns.values():
        binding = resolve_foreign_key_binding(column, schema)
        if binding.is_bound and binding.table == schema.table:
            return "self-referencing foreign keys"
    return None


def foreign_key_snapshot(schema: SchemaDescription, store: DataStoreInterface,
                         cache: ForeignKeyCache) -> Dict[str, List[Any]]:
    """Identifiers the synthesizer may draw from, keyed ``table.column``."""
    targets: List[Tuple[str, str]] = []
    for column in schema.columns.values():
        binding = resolve_foreign_key_binding(column, schema)
        if not binding.is_bound:
            continue
        if binding.kind is BindingKind.INFERRED and not store.table_exists(binding.table):
            continue
        targets.append((binding.table, binding.foreign_column))
    return cache.snapshot(targets)


def build_work_units(request: GenerationRequest, schema: SchemaDescription, settings: EngineSettings,
                     chunk_size: int, foreign_key_ids: Dict[str, List[Any]]) -> List[ChunkWorkUnit]:
    units = []
    total_chunks = -(-request.count // chunk_size)
    for chunk_index in range(total_chunks):
        start = chunk_index * chunk_size
        units.append(
            ChunkWorkUnit(
                entity=schema.entity,
                chunk_index=chunk_index,
                start_index=start,
                size=min(chunk_size, request.count - start),
                total=request.count,
                seed=derive_chunk_seed(settings.seed, schema.entity, chunk_index),
                schema=schema.to_dict(),
                settings=settings.to_dict(),
                column_patterns={k: PatternSpec.from_value(v).to_dict() for k, v in request.column_patterns.items()},
                entity_patterns={
                    k: PatternSpec.from_value(v).to_dict()
                    for k, v in request.entity_patterns(schema.entity).items()
                },
                overrides=dict(request.overrides),
                foreign_key_ids=foreign_key_ids,
            )
        )
    return units


def run_chunk_work_unit(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Worker entry point: synthesize one chunk from its plain-data description."""
    schema = SchemaDescription.from_dict(payload["schema"])
    settings = EngineSettings.from_dict(payload["settings"])

    store = InMemoryDataStore(auto_create=False)
    cache = ForeignKeyCache(store)
    for key, ids in payload["foreign_key_ids"].items():
        table, column = key.split(".", 1)
        store.ensure_table(table)
        cache.seed(table, column, ids)

    rng = np.random.default_rng(payload["seed"])
    fake = Faker(settings.locale)
    fake.seed_instance(payload["seed"])
    resolver = RelationshipResolver(store, settings=settings, cache=cache, rng=rng)
    synthesizer = RecordSynthesizer(
        schema,
        PatternEngine(),
        resolver=resolver,
        settings=settings,
        rng=rng,
        faker=fake,
        column_patterns=payload["column_patterns"],
        entity_patterns=payload["entity_patterns"],
        overrides=payload["overrides"],
        total=payload["total"],
    )
    records = synthesizer.synthesize_chunk(payload["start_index"], payload["size"])
    return {
        "chunk_index": payload["chunk_index"],
        "records": records,
        "issues": [issue.to_dict() for issue in resolver.drain_issues()],
    }


def iter_parallel_chunks(units: List[ChunkWorkUnit], workers: int,
                         max_inflight: Optional[int] = None) -> Iterator[Tuple[int, List[Dict[str, Any]], List[GenerationIssue]]]:
    """Yield ``(chunk_index, records, issues)`` in chunk order.

    At most ``max_inflight`` chunks (default twice the worker count) are
    pending at once so finished chunks do not pile up in memory.
    """
    max_inflight = max_inflight or workers * 2
    pending = list(units)
    inflight: List[concurrent.futures.Future] = []
    logger.info(f"🚀 Synthesizing {len(units)} chunks with {workers} worker processes")
    with concurrent.futures.ProcessPoolExecutor(max_workers=workers) as executor:
        while pending or inflight:
            while pending and len(inflight) < max_inflight:
                inflight.append(executor.submit(run_chunk_work_unit, pending.pop(0).to_payload()))
            outcome = inflight.pop(0).result()
            issues = [GenerationIssue.from_dict(item) for item in outcome["issues"]]
            yield outcome["chunk_index"], outcome["records"], issues
