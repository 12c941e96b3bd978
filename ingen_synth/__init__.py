from ingen_synth.cli_utils.console_styles import (
    ConsoleStyles,
    RichProgressObserver,
    print_generation_result,
    print_scenario_result,
)
from ingen_synth.engine_config import EngineSettings, load_engine_config, load_engine_settings
from ingen_synth.python_libs.common.errors import (
    ChunkInsertError,
    ConfigurationError,
    DependencyCycleError,
    Outcome,
    SchemaMismatchError,
    SyntheticDataError,
)
from ingen_synth.python_libs.common.generation_results import GenerationResult, ScenarioResult
from ingen_synth.python_libs.common.schema_description import SchemaCatalog, SchemaDescription
from ingen_synth.python_libs.common.synthetic_data_config import (
    Cohort,
    GenerationRequest,
    PatternSpec,
    ScenarioStep,
)
from ingen_synth.python_libs.patterns.pattern_engine import PatternEngine
from ingen_synth.python_libs.python.chunked_generation_pipeline import ChunkedGenerationPipeline, ChunkEvent
from ingen_synth.python_libs.python.memory_store import InMemoryDataStore
from ingen_synth.python_libs.python.scenario_orchestrator import ScenarioOrchestrator
from ingen_synth.python_libs.python.scenario_plan import build_plan, load_scenario_plan
from ingen_synth.python_libs.python.scenario_registry import ScenarioRegistry, ScenarioTemplate, load_scenario_template
from ingen_synth.python_libs.python.scenario_validator import ScenarioValidator, ValidationResult
from ingen_synth.python_libs.python.sqlite_store import SQLiteDataStore

__version__ = "0.1.0"

__all__ = [
    "ChunkEvent",
    "ChunkInsertError",
    "ChunkedGenerationPipeline",
    "Cohort",
    "ConfigurationError",
    "ConsoleStyles",
    "DependencyCycleError",
    "EngineSettings",
    "GenerationRequest",
    "GenerationResult",
    "InMemoryDataStore",
    "Outcome",
    "PatternEngine",
    "PatternSpec",
    "RichProgressObserver",
    "SQLiteDataStore",
    "ScenarioOrchestrator",
    "ScenarioRegistry",
    "ScenarioResult",
    "ScenarioStep",
    "ScenarioTemplate",
    "ScenarioValidator",
    "SchemaCatalog",
    "SchemaDescription",
    "SchemaMismatchError",
    "SyntheticDataError",
    "ValidationResult",
    "build_plan",
    "load_engine_config",
    "load_engine_settings",
    "load_scenario_plan",
    "load_scenario_template",
    "print_generation_result",
    "print_scenario_result",
]
