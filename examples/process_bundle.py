#!/usr/bin/env python3
"""
Usage Examples for the Diagnostic Archive Converter

This file demonstrates common ways of processing Windows diagnostic
bundles, from a single call to running the individual stages by hand.

Requirements:
    - Windows for .evtx, .etl and .cab decoding (other files work anywhere)
    - Python 3.8+
    - diag_converter package installed
"""

from pathlib import Path
from typing import Optional

from diag_converter import (
    AdapterRegistry,
    ConversionOutcome,
    ConversionRule,
    RegistryExportAdapter,
    apply_plan,
    convert_all,
    discover_raw_files,
    extract_archive,
    plan_merge,
    run_pipeline,
    write_manifest,
)
from diag_converter.exceptions import (
    DiagConverterError,
    ExtractionError,
    PackagingError,
)


def _format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "n/a"
    return f"{seconds:.2f}s"


def example_1_process_bundle() -> None:
    """
    Example 1: Process a whole bundle with default settings.

    The output archive is written next to the input as
    <name>-processed.zip.
    """
    print("=" * 70)
    print("Example 1: Process a Bundle")
    print("=" * 70)

    try:
        result = run_pipeline(Path("PC01-Diagnostics.zip"))

        print(f"Output archive: {result.archive_path}")
        print(f"Files found:    {result.raw_files}")
        print(f"Converted:      {result.conversion.converted}")
        print(f"Failed:         {result.conversion.failed}")
        print(f"Time:           {_format_duration(result.duration_seconds)}")

        for warning in result.warnings:
            print(f"Warning: {warning}")

    except ExtractionError as e:
        print(f"Input archive could not be read: {e}")
    except PackagingError as e:
        print(f"Packaging failed: {e}")
        if e.work_dir is not None:
            print(f"Working files kept in {e.work_dir}")

    print()


def example_2_parallel_with_timeout() -> None:
    """
    Example 2: Decode several files at once with a per-file timeout.

    Large trace logs can take a long time; a file that exceeds the
    timeout is reported as failed and its raw copy is kept.
    """
    print("=" * 70)
    print("Example 2: Parallel Decoding with Timeout")
    print("=" * 70)

    def progress(current: int, total: int, file_path: Path) -> None:
        print(f"[{current}/{total}] {file_path.name}")

    try:
        result = run_pipeline(
            Path("PC01-Diagnostics.zip"),
            destination=Path("C:/Processed/PC01.zip"),
            overwrite=True,
            workers=4,
            timeout=900,
            progress_callback=progress,
        )
        print(f"Success rate: {result.conversion.success_rate:.1f}%")
    except DiagConverterError as e:
        print(f"Error: {e}")

    print()


def example_3_failed_conversions() -> None:
    """
    Example 3: Inspect per-file conversion results.

    Every convertible file has a result, including the ones that failed.
    """
    print("=" * 70)
    print("Example 3: Examining Conversion Results")
    print("=" * 70)

    try:
        result = run_pipeline(Path("PC01-Diagnostics.zip"), overwrite=True)
    except DiagConverterError as e:
        print(f"Error: {e}")
        return

    for conversion in result.conversion.results:
        name = conversion.source.relative_path
        if conversion.success:
            print(f"  [CONVERTED] {name} -> {conversion.produced_path.name}")
        elif conversion.outcome == ConversionOutcome.FAILED:
            print(f"  [FAILED]    {name}: {conversion.error_message}")
        else:
            print(f"  [{conversion.outcome.value.upper()}] {name}")

    print()


def example_4_stages_by_hand() -> None:
    """
    Example 4: Run the stages yourself with a custom adapter registry.

    Only registry exports are converted here; every other file is kept
    as a raw copy in the final tree.
    """
    print("=" * 70)
    print("Example 4: Individual Stages")
    print("=" * 70)

    work = Path("C:/Work/PC01")
    extracted = work / "extracted"
    converted = work / "converted"
    final = work / "final"

    registry = AdapterRegistry()
    registry.register(ConversionRule(RegistryExportAdapter(), extension=".reg"))

    try:
        extract_archive(Path("PC01-Diagnostics.zip"), extracted)
        raw_files = discover_raw_files(extracted)
        summary = convert_all(raw_files, extracted, converted, registry=registry)

        plan = plan_merge(raw_files, summary.results, extracted)
        apply_plan(plan, final)
        write_manifest(final, plan.entries, source_name="PC01-Diagnostics.zip")

        print(f"Converted files: {plan.converted_count}")
        print(f"Raw files:       {plan.raw_count}")
        print(f"Skipped:         {len(plan.skipped)}")

    except DiagConverterError as e:
        print(f"Error: {e}")

    print()


def main() -> None:
    """Run all examples."""
    print("\n")
    print("*" * 70)
    print("Diagnostic Archive Converter - Usage Examples")
    print("*" * 70)
    print()

    # Note: These examples assume a diagnostic bundle is available
    # Uncomment the examples you want to run

    # example_1_process_bundle()
    # example_2_parallel_with_timeout()
    # example_3_failed_conversions()
    # example_4_stages_by_hand()

    print("\nTo run these examples:")
    print("1. Place a diagnostic .zip bundle next to this script")
    print("2. Uncomment the example functions you want to run")
    print("3. Adjust file paths to match your system")
    print("4. Run this script: python3 process_bundle.py")
    print()


if __name__ == "__main__":
    main()
