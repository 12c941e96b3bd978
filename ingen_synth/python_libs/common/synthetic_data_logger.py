"""
Synthetic Data Generation Logging

This module provides logging for synthetic data generation runs: per-entity
generation metrics, scenario summaries, chunk progress at debug level and
pandas-based profiles of sampled records.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

import pandas as pd

from .generation_results import GenerationResult


@dataclass
class EntityGenerationMetrics:
    """Metrics for one entity generation run."""
    entity: str
    table: str
    generation_timestamp: str
    rows_requested: int
    rows_generated: int
    duration_seconds: float
    chunks_total: int = 0
    chunks_failed: int = 0
    peak_memory_bytes: int = 0
    warning_count: int = 0
    error_count: int = 0
    outcome: str = "succeeded"
    relationships: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def rows_per_second(self) -> float:
        """Calculate generation rate in rows per second."""
        if self.duration_seconds <= 0:
            return 0.0
        return self.rows_generated / self.duration_seconds

    @property
    def completion_percentage(self) -> float:
        if self.rows_requested == 0:
            return 100.0
        return (self.rows_generated / self.rows_requested) * 100


@dataclass
class ScenarioGenerationSummary:
    """Summary of a whole scenario run."""
    scenario_id: str
    generation_timestamp: str
    total_duration_seconds: float
    entity_metrics: List[EntityGenerationMetrics]
    dry_run: bool = False

    @property
    def total_rows(self) -> int:
        return sum(m.rows_generated for m in self.entity_metrics)

    @property
    def overall_generation_rate(self) -> float:
        """Calculate overall generation rate in rows per second."""
        if self.total_duration_seconds <= 0:
            return 0.0
        return self.total_rows / self.total_duration_seconds

    def get_entity(self, entity: str) -> Optional[EntityGenerationMetrics]:
        return next((m for m in self.entity_metrics if m.entity == entity), None)


class SyntheticDataLogger:
    """Logger for synthetic data generation with metric tracking."""

    def __init__(self,
                 logger_name: str = __name__,
                 log_level: int = logging.INFO,
                 enable_console_output: bool = False,
                 enable_file_logging: bool = False,
                 log_file_path: Optional[str] = None):

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)

        if enable_console_output or (enable_file_logging and log_file_path):
            # Avoid duplicate handlers when the logger is rebuilt
            self.logger.handlers.clear()

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        if enable_console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        if enable_file_logging and log_file_path:
            file_handler = logging.FileHandler(log_file_path)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        self._generation_logs: List[EntityGenerationMetrics] = []
        self._persistent_storage_callback: Optional[Callable[[EntityGenerationMetrics], None]] = None

    def enable_persistent_storage(self, storage_callback: Callable[[EntityGenerationMetrics], None]) -> None:
        """Forward every completed entity's metrics to ``storage_callback``."""
        self._persistent_storage_callback = storage_callback

    def log_entity_generation_start(self,
                                    entity: str,
                                    target_rows: int,
                                    chunk_size: int,
                                    config_applied: Optional[Mapping[str, Any]] = None) -> None:
        self.logger.info(f"🚀 Starting generation for {entity}")
        self.logger.info(f"   🎯 Target rows: {target_rows:,}")
        self.logger.info(f"   📦 Chunk size: {chunk_size:,}")
        if config_applied:
            self.logger.debug(f"   ⚙️ Configuration: {json.dumps(dict(config_applied), indent=2, default=str)}")

    def log_chunk_complete(self, entity: str, index: int, total: int, inserted: int) -> None:
        self.logger.debug(f"   📦 {entity}: chunk {index + 1}/{total} stored {inserted:,} rows")

    def log_entity_generation_complete(self, metrics: EntityGenerationMetrics) -> None:
        self.logger.info(f"✅ Completed generation for {metrics.entity}")
        self.logger.info(f"   📈 Rows generated: {metrics.rows_generated:,} of {metrics.rows_requested:,}")
        self.logger.info(f"   ⏱️ Duration: {metrics.duration_seconds:.2f} seconds")
        self.logger.info(f"   🚀 Rate: {metrics.rows_per_second:.0f} rows/second")
        if metrics.chunks_failed:
            self.logger.info(f"   ⚠️ Failed chunks: {metrics.chunks_failed} of {metrics.chunks_total}")
        for name, counts in metrics.relationships.items():
            details = ", ".join(f"{k}={v}" for k, v in counts.items())
            self.logger.info(f"   🔗 {name}: {details}")

        self._generation_logs.append(metrics)
        if self._persistent_storage_callback is not None:
            self._persistent_storage_callback(metrics)

    def log_scenario_summary(self, summary: ScenarioGenerationSummary) -> None:
        label = "Dry run" if summary.dry_run else "Scenario generation"
        self.logger.info(f"🎉 {label} complete: {summary.scenario_id}")
        self.logger.info(f"   📊 Entities: {len(summary.entity_metrics)}")
        self.logger.info(f"   📈 Total rows: {summary.total_rows:,}")
        self.logger.info(f"   ⏱️ Total duration: {summary.total_duration_seconds:.2f} seconds")
        self.logger.info(f"   🚀 Overall rate: {summary.overall_generation_rate:.0f} rows/second")
        self.logger.info("   📋 Entity breakdown:")
        for metrics in summary.entity_metrics:
            self.logger.info(f"     • {metrics.entity}: {metrics.rows_generated:,} rows ({metrics.outcome})")

    def create_entity_metrics(self, result: GenerationResult, table: str, rows_requested: int) -> EntityGenerationMetrics:
        stats = result.statistics
        return EntityGenerationMetrics(
            entity=result.entity,
            table=table,
            generation_timestamp=datetime.now().isoformat(),
            rows_requested=rows_requested,
            rows_generated=len(result.records),
            duration_seconds=stats.elapsed_time,
            chunks_total=stats.chunks_total,
            chunks_failed=stats.chunks_failed,
            peak_memory_bytes=stats.peak_memory,
            warning_count=len(result.warnings),
            error_count=len(result.errors),
            outcome=result.outcome.value,
            relationships={k: dict(v) for k, v in stats.relationships.items()},
        )

    def profile_records(self, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Profile sampled records with pandas.

        Returns the sample size, the deep memory footprint per record and a
        per-column summary of dtype, null share and distinct values.
        """
        if not records:
            return {"rows": 0, "bytes_per_record": 0.0, "columns": {}}
        df = pd.DataFrame.from_records(records)
        total_bytes = int(df.memory_usage(deep=True, index=False).sum())
        columns = {}
        for name in df.columns:
            series = df[name]
            columns[name] = {
                "dtype": str(series.dtype),
                "null_share": float(series.isna().mean()),
                "distinct": int(series.astype(str).nunique()),
            }
        return {
            "rows": len(df),
            "bytes_per_record": total_bytes / len(df),
            "columns": columns,
        }

    def export_generation_logs(self, output_path: str, format: str = "json") -> None:
        """Export all entity metrics to a JSON or CSV file."""
        if format == "json":
            with open(output_path, "w") as f:
                json.dump([asdict(log) for log in self._generation_logs], f, indent=2, default=str)
        elif format == "csv":
            rows = [
                {
                    "entity": log.entity,
                    "table": log.table,
                    "generation_timestamp": log.generation_timestamp,
                    "rows_requested": log.rows_requested,
                    "rows_generated": log.rows_generated,
                    "duration_seconds": log.duration_seconds,
                    "outcome": log.outcome,
                }
                for log in self._generation_logs
            ]
            pd.DataFrame(rows).to_csv(output_path, index=False)
        else:
            raise ValueError(f"Unsupported export format: {format}")
        self.logger.info(f"Exported {len(self._generation_logs)} log entries to {output_path}")

    def get_generation_statistics(self) -> Dict[str, Any]:
        """Aggregate statistics over all logged entity runs."""
        if not self._generation_logs:
            return {}
        total_rows = sum(log.rows_generated for log in self._generation_logs)
        total_duration = sum(log.duration_seconds for log in self._generation_logs)
        outcomes: Dict[str, int] = {}
        for log in self._generation_logs:
            outcomes[log.outcome] = outcomes.get(log.outcome, 0) + 1
        return {
            "total_entities_generated": len(self._generation_logs),
            "total_rows_generated": total_rows,
            "total_duration_seconds": total_duration,
            "overall_generation_rate": total_rows / total_duration if total_duration > 0 else 0,
            "outcomes_breakdown": outcomes,
        }
