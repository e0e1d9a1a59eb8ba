"""Conversion dispatch for discovered diagnostic files.

This module matches every raw file against the adapter registry, assigns
each convertible file a flat, collision-free output name, and runs the
adapters. Per-file failures are recorded in the results and never abort
the batch.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from .adapters import (
    AdapterRegistry,
    ConversionOutcome,
    ConversionRule,
    default_registry,
)
from .exceptions import DiagConverterError
from .extractor import RawFile
from .utils import unique_name

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Path], None]


@dataclass
class ConversionResult:
    """Result of converting a single raw file.

    Attributes:
        source: The raw file that matched a conversion rule.
        outcome: CONVERTED, UNSUPPORTED, FAILED or EMPTY.
        produced_path: Path of the written CSV (only set when CONVERTED).
        error_message: Description of the error if conversion failed.
        duration_seconds: Time taken by the adapter in seconds.
    """

    source: RawFile
    outcome: ConversionOutcome
    produced_path: Optional[Path] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def success(self) -> bool:
        """Check if the conversion produced a non-empty output file."""
        return (
            self.outcome == ConversionOutcome.CONVERTED
            and self.produced_path is not None
        )


@dataclass
class ConversionSummary:
    """Summary of converting all raw files of one run.

    Attributes:
        total: Number of raw files that matched a conversion rule.
        converted: Number of files converted to a non-empty CSV.
        failed: Number of files whose conversion failed.
        empty: Number of files that held no records.
        unsupported: Number of files with an unrecognized content shape.
        results: Individual ConversionResult objects, in input order.
        total_duration_seconds: Wall-clock time for the whole stage.
    """

    total: int
    converted: int
    failed: int
    empty: int
    unsupported: int
    results: List[ConversionResult]
    total_duration_seconds: float

    @property
    def success_rate(self) -> float:
        """Percentage of matched files that were converted (0 if none matched)."""
        if self.total == 0:
            return 0.0
        return (self.converted / self.total) * 100


def convert_file(
    raw: RawFile, rule: ConversionRule, source_root: Path, destination: Path
) -> ConversionResult:
    """Convert one raw file with the adapter of its rule.

    A zero-length input is reported as EMPTY without invoking the adapter.
    Any stale file at ``destination`` is removed first, and partial output
    is removed again unless the outcome is CONVERTED.

    Args:
        raw: The raw file to convert.
        rule: Rule whose adapter handles the file.
        source_root: Extraction root that ``raw.relative_path`` is relative to.
        destination: Output CSV path.

    Returns:
        ConversionResult describing the outcome.
    """
    if raw.size_bytes == 0:
        return ConversionResult(source=raw, outcome=ConversionOutcome.EMPTY)

    source = source_root / raw.relative_path
    start_time = time.time()
    error_message = None
    try:
        if destination.exists():
            destination.unlink()
        outcome = rule.adapter.convert(source, destination)
        if outcome == ConversionOutcome.CONVERTED:
            if not destination.exists():
                outcome = ConversionOutcome.FAILED
                error_message = "Adapter reported success but wrote no output"
            elif destination.stat().st_size == 0:
                outcome = ConversionOutcome.EMPTY
    except DiagConverterError as e:
        outcome = ConversionOutcome.FAILED
        error_message = str(e)
    except OSError as e:
        outcome = ConversionOutcome.FAILED
        error_message = f"File error: {e}"
    except Exception as e:
        logger.exception(f"Unexpected error converting {raw.relative_path}")
        outcome = ConversionOutcome.FAILED
        error_message = f"Unexpected error: {str(e)}"
    duration = time.time() - start_time

    if outcome != ConversionOutcome.CONVERTED:
        try:
            if destination.exists():
                destination.unlink()
        except OSError as e:
            logger.warning(f"Cannot remove partial output {destination.name}: {e}")
        if error_message:
            logger.warning(f"Conversion failed for {raw.relative_path}: {error_message}")
        return ConversionResult(
            source=raw,
            outcome=outcome,
            error_message=error_message,
            duration_seconds=duration,
        )

    logger.debug(f"Converted {raw.relative_path} -> {destination.name} ({duration:.2f}s)")
    return ConversionResult(
        source=raw,
        outcome=outcome,
        produced_path=destination,
        duration_seconds=duration,
    )


def plan_outputs(
    raw_files: List[RawFile], output_dir: Path, registry: AdapterRegistry
) -> List[Tuple[RawFile, ConversionRule, Path]]:
    """Match raw files to rules and assign flat, unique output paths.

    Names are assigned in input order so repeated runs on the same tree
    produce the same names.
    """
    taken: Set[str] = set()
    jobs = []
    for raw in raw_files:
        rule = registry.match(raw)
        if rule is None:
            continue
        name = unique_name(rule.output_name(raw), taken)
        jobs.append((raw, rule, output_dir / name))
    return jobs


def convert_all(
    raw_files: List[RawFile],
    source_root: Path,
    output_dir: Path,
    registry: Optional[AdapterRegistry] = None,
    workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> ConversionSummary:
    """Convert every raw file that matches a conversion rule.

    Conversions share no state, so with ``workers > 1`` they run on a
    bounded thread pool. Either way all of them have finished when this
    function returns.

    Args:
        raw_files: Files discovered by the extractor.
        source_root: Extraction root the raw paths are relative to.
        output_dir: Intermediate output area for converted CSVs.
        registry: Adapter registry (defaults to the built-in formats).
        workers: Maximum number of concurrent conversions.
        progress_callback: Optional callback called after each file is processed.
                          Signature: callback(current: int, total: int, file: Path)

    Returns:
        ConversionSummary with statistics and individual results.
    """
    registry = registry or default_registry()
    output_dir.mkdir(parents=True, exist_ok=True)

    jobs = plan_outputs(raw_files, output_dir, registry)
    total = len(jobs)
    results: Dict[int, ConversionResult] = {}

    start_time = time.time()

    if workers <= 1 or total <= 1:
        for index, (raw, rule, destination) in enumerate(jobs):
            results[index] = convert_file(raw, rule, source_root, destination)
            if progress_callback:
                progress_callback(index + 1, total, Path(raw.relative_path))
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(convert_file, raw, rule, source_root, destination): index
                for index, (raw, rule, destination) in enumerate(jobs)
            }
            for done, future in enumerate(as_completed(futures), start=1):
                index = futures[future]
                results[index] = future.result()
                if progress_callback:
                    progress_callback(done, total, Path(jobs[index][0].relative_path))

    ordered = [results[index] for index in range(total)]
    counts = {outcome: 0 for outcome in ConversionOutcome}
    for result in ordered:
        counts[result.outcome] += 1

    return ConversionSummary(
        total=total,
        converted=counts[ConversionOutcome.CONVERTED],
        failed=counts[ConversionOutcome.FAILED],
        empty=counts[ConversionOutcome.EMPTY],
        unsupported=counts[ConversionOutcome.UNSUPPORTED],
        results=ordered,
        total_duration_seconds=time.time() - start_time,
    )
