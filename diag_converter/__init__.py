"""Diagnostic Archive Converter - turn Windows diagnostic bundles into readable archives.

This library provides functionality to:
- Expand a diagnostic .zip bundle, including nested .cab containers
- Convert registry exports, SetupDiagResults.xml, .evtx event logs and
  .etl trace logs to CSV
- Merge converted and raw files without duplicating the same data
- Index the result in a README.TXT and repackage it as one archive

The library offers:
- A registry of format adapters, so new formats are added by registering a rule
- A pure merge planner that can be tested without touching the file system
- Optional parallel decoding of independent files
- Retrying cleanup of working files locked by the external decoders

Basic Usage:
    Process a whole bundle:
        >>> from diag_converter import run_pipeline
        >>> result = run_pipeline(Path("PC01-Diagnostics.zip"))
        >>> print(result.archive_path)

    Plan a merge from already converted files:
        >>> from diag_converter import discover_raw_files, convert_all, plan_merge
        >>> raw = discover_raw_files(Path("extracted"))
        >>> summary = convert_all(raw, Path("extracted"), Path("converted"))
        >>> plan = plan_merge(raw, summary.results, Path("extracted"))

Platform Requirements:
    - Event-log, trace-log and cabinet decoding: Windows (wevtutil, tracerpt, expand)
    - Everything else: Cross-platform (Python 3.8+)

For more information, see the documentation for individual functions and classes.
"""

__version__ = "1.0.0"

from .adapters import (
    Adapter,
    AdapterRegistry,
    ConversionOutcome,
    ConversionRule,
    EventLogAdapter,
    RegistryExportAdapter,
    SetupDiagAdapter,
    TraceLogAdapter,
    default_registry,
)

from .converter import (
    ConversionResult,
    ConversionSummary,
    convert_all,
    convert_file,
)

from .exceptions import (
    DiagConverterError,
    FileValidationError,
    ToolNotFoundError,
    ExtractionError,
    ConversionError,
    MergeError,
    PackagingError,
    CleanupWarning,
)

from .extractor import (
    RawFile,
    discover_raw_files,
    expand_containers,
    extract_archive,
)

from .indexer import (
    build_manifest,
    count_categories,
    write_manifest,
)

from .packager import (
    RetryPolicy,
    cleanup_working_dir,
    create_archive,
    output_archive_path,
    remove_empty_files,
)

from .pipeline import (
    PipelineResult,
    run_pipeline,
)

from .planner import (
    CopyAction,
    FileOrigin,
    FinalFileEntry,
    MergePlan,
    apply_plan,
    plan_merge,
)

__license__ = "MIT"

__all__ = [
    # Pipeline
    "run_pipeline",
    "PipelineResult",
    # Extraction
    "RawFile",
    "extract_archive",
    "expand_containers",
    "discover_raw_files",
    # Conversion
    "Adapter",
    "AdapterRegistry",
    "ConversionOutcome",
    "ConversionRule",
    "RegistryExportAdapter",
    "SetupDiagAdapter",
    "EventLogAdapter",
    "TraceLogAdapter",
    "default_registry",
    "ConversionResult",
    "ConversionSummary",
    "convert_file",
    "convert_all",
    # Merge planning
    "FileOrigin",
    "FinalFileEntry",
    "CopyAction",
    "MergePlan",
    "plan_merge",
    "apply_plan",
    # Indexing
    "build_manifest",
    "count_categories",
    "write_manifest",
    # Packaging
    "RetryPolicy",
    "output_archive_path",
    "remove_empty_files",
    "create_archive",
    "cleanup_working_dir",
    # Exceptions
    "DiagConverterError",
    "FileValidationError",
    "ToolNotFoundError",
    "ExtractionError",
    "ConversionError",
    "MergeError",
    "PackagingError",
    "CleanupWarning",
    # Metadata
    "__version__",
    "__license__",
]
