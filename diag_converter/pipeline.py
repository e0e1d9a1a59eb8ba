"""End-to-end processing of one diagnostic archive.

Each stage finishes completely before the next one starts:

    extract -> convert -> merge -> index -> package -> clean up

Working files live in a per-computer directory under the system temp
location; a tree left behind by an interrupted run is removed first.
"""

import logging
import os
import platform
import re
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .adapters import AdapterRegistry, default_registry
from .converter import ConversionSummary, ProgressCallback, convert_all
from .decoders import expand_cabinet
from .exceptions import CleanupWarning, ExtractionError, MergeError, PackagingError
from .extractor import discover_raw_files, expand_containers, extract_archive
from .indexer import write_manifest
from .packager import (
    RetryPolicy,
    cleanup_working_dir,
    create_archive,
    output_archive_path,
    remove_empty_files,
)
from .planner import FinalFileEntry, apply_plan, plan_merge
from .utils import validate_archive_path

logger = logging.getLogger(__name__)

WORK_DIR_PREFIX = "diag-converter-"


@dataclass
class PipelineResult:
    """Outcome of a successful run.

    Attributes:
        archive_path: The produced ``-processed.zip`` archive.
        work_dir: Working directory used by the run (removed unless kept).
        raw_files: Number of files discovered in the expanded input.
        conversion: Summary of the conversion stage.
        entries: Final archive entries, README.TXT excluded.
        removed_empty: Zero-byte files dropped just before packaging.
        warnings: Non-fatal cleanup warnings.
        duration_seconds: Total run time.
    """

    archive_path: Path
    work_dir: Path
    raw_files: int
    conversion: ConversionSummary
    entries: List[FinalFileEntry]
    removed_empty: int = 0
    warnings: List[CleanupWarning] = field(default_factory=list)
    duration_seconds: float = 0.0


def computer_name() -> str:
    """Return a file-name-safe name for this machine."""
    name = os.environ.get("COMPUTERNAME") or platform.node() or "localhost"
    return re.sub(r"[^A-Za-z0-9_.-]", "_", name)


def prepare_working_dir(
    work_root: Optional[Path] = None, policy: Optional[RetryPolicy] = None
) -> Path:
    """Create a fresh working directory for this run.

    A leftover directory from an interrupted run is removed first. If it
    cannot be removed, a uniquely named directory is used instead.
    """
    base = work_root or Path(tempfile.gettempdir())
    base.mkdir(parents=True, exist_ok=True)
    work_dir = base / f"{WORK_DIR_PREFIX}{computer_name()}"

    if work_dir.exists():
        logger.info(f"Removing leftover working directory {work_dir}")
        if cleanup_working_dir(work_dir, policy) is not None:
            fallback = Path(tempfile.mkdtemp(prefix=work_dir.name + "-", dir=str(base)))
            logger.warning(f"Using {fallback} instead")
            return fallback

    work_dir.mkdir(parents=True)
    return work_dir


def run_pipeline(
    archive: Path,
    destination: Optional[Path] = None,
    overwrite: bool = False,
    workers: int = 1,
    timeout: Optional[int] = None,
    work_root: Optional[Path] = None,
    keep_work_dir: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
    registry: Optional[AdapterRegistry] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> PipelineResult:
    """Convert a diagnostic archive into a processed, indexed archive.

    Args:
        archive: Input .zip archive.
        destination: Output archive path (default: ``<stem>-processed.zip``
                     next to the input).
        overwrite: Replace an existing output archive.
        workers: Maximum number of concurrent file conversions.
        timeout: Per-file timeout for external decoders (None waits indefinitely).
        work_root: Parent directory for working files (default: system temp).
        keep_work_dir: Leave the working directory in place after success.
        progress_callback: Called after each file conversion.
        registry: Adapter registry (default: built-in formats).
        retry_policy: Retry policy for working directory removal.

    Returns:
        PipelineResult describing the run.

    Raises:
        FileValidationError: If the input is not a readable zip archive.
        ExtractionError: If the input archive cannot be expanded.
        MergeError: If the final tree cannot be assembled.
        PackagingError: If the output archive cannot be written; the working
                        directory is kept and attached as ``work_dir``.
    """
    start_time = time.time()
    archive = Path(archive)
    destination = Path(destination) if destination else output_archive_path(archive)
    policy = retry_policy or RetryPolicy()

    validate_archive_path(archive)
    if destination.exists() and not overwrite:
        raise PackagingError(f"Output archive already exists: {destination}")

    work_dir = prepare_working_dir(work_root, policy)
    extracted_dir = work_dir / "extracted"
    converted_dir = work_dir / "converted"
    final_dir = work_dir / "final"

    try:
        logger.info(f"Extracting {archive.name}...")
        extract_archive(archive, extracted_dir)
        expand_containers(
            extracted_dir,
            expander=lambda cab, target: expand_cabinet(cab, target, timeout=timeout),
        )
        raw_files = discover_raw_files(extracted_dir)
        logger.info(f"Found {len(raw_files)} files")

        logger.info("Converting files...")
        summary = convert_all(
            raw_files,
            extracted_dir,
            converted_dir,
            registry=registry or default_registry(timeout),
            workers=workers,
            progress_callback=progress_callback,
        )
        logger.info(
            f"Converted {summary.converted} of {summary.total} convertible files "
            f"({summary.failed} failed, {summary.empty} empty)"
        )

        logger.info("Merging converted and raw files...")
        plan = plan_merge(raw_files, summary.results, extracted_dir)
        apply_plan(plan, final_dir)
        logger.info(
            f"Final archive holds {plan.converted_count} converted and "
            f"{plan.raw_count} raw files ({len(plan.skipped)} left out)"
        )

        logger.info("Writing README.TXT...")
        entries = plan.entries
        generated_at = datetime.now()
        write_manifest(final_dir, entries, archive.name, generated_at)

        removed = remove_empty_files(final_dir)
        if removed:
            entries = [e for e in entries if (final_dir / e.relative_path).exists()]
            write_manifest(final_dir, entries, archive.name, generated_at)
    except OSError as e:
        cleanup_working_dir(work_dir, policy)
        raise MergeError(f"Failed to assemble final tree: {e}")
    except (ExtractionError, MergeError):
        cleanup_working_dir(work_dir, policy)
        raise

    logger.info(f"Creating {destination.name}...")
    try:
        create_archive(final_dir, destination, overwrite=overwrite)
    except PackagingError as e:
        e.work_dir = work_dir
        raise

    warnings: List[CleanupWarning] = []
    if not keep_work_dir:
        warning = cleanup_working_dir(work_dir, policy)
        if warning is not None:
            warnings.append(warning)

    return PipelineResult(
        archive_path=destination,
        work_dir=work_dir,
        raw_files=len(raw_files),
        conversion=summary,
        entries=entries,
        removed_empty=removed,
        warnings=warnings,
        duration_seconds=time.time() - start_time,
    )
