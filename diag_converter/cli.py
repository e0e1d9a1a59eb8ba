"""Command-line interface for the diagnostic archive converter.

This module provides the ``diag-converter`` tool, which turns a Windows
diagnostic bundle (.zip) into a ``-processed.zip`` archive of CSV files,
raw fallbacks and a README.TXT index.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .exceptions import (
    DiagConverterError,
    ExtractionError,
    FileValidationError,
    MergeError,
    PackagingError,
)
from .packager import output_archive_path
from .pipeline import PipelineResult, run_pipeline
from .utils import validate_archive_path
from . import __version__


# Progress symbols
SYMBOL_SUCCESS = "[+]"
SYMBOL_FAILURE = "[X]"
SYMBOL_SKIPPED = "[-]"
SYMBOL_WARNING = "[!]"

MAX_PROMPT_ATTEMPTS = 3


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, enable DEBUG level logging.
        quiet: If True, suppress all logging except errors.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level, format="%(levelname)s: %(message)s", stream=sys.stderr
    )


def progress_bar(current: int, total: int, file_path: Path, width: int = 40) -> None:
    """Display a simple progress bar for the conversion stage.

    Args:
        current: Current file number (1-indexed).
        total: Total number of files.
        file_path: Path of the current file being processed.
        width: Width of the progress bar in characters.
    """
    percent = (current / total) * 100 if total > 0 else 0
    filled = int(width * current / total) if total > 0 else 0
    bar = "=" * filled + "-" * (width - filled)

    # Print progress on same line using carriage return
    sys.stderr.write(f"\r[{bar}] {percent:.1f}% ({current}/{total}) {file_path.name}")
    sys.stderr.flush()

    if current == total:
        sys.stderr.write("\n")
        sys.stderr.flush()


def _is_interactive() -> bool:
    return sys.stdin is not None and sys.stdin.isatty()


def default_start_dir() -> Path:
    """Directory whose archives are offered when prompting for input."""
    downloads = Path.home() / "Downloads"
    return downloads if downloads.is_dir() else Path.home()


def list_candidate_archives(directory: Path) -> List[Path]:
    """Return input archives in ``directory``, newest first.

    Archives produced by a previous run are not offered.
    """
    try:
        candidates = [
            p
            for p in directory.glob("*.zip")
            if p.is_file() and not p.name.lower().endswith("-processed.zip")
        ]
    except OSError:
        return []
    return sorted(candidates, key=lambda p: p.stat().st_mtime, reverse=True)


def prompt_for_archive(
    start_dir: Path, input_func: Callable[[str], str] = input
) -> Optional[Path]:
    """Ask the operator to pick an input archive.

    Lists the archives in ``start_dir``; the answer may be a list number or
    a path. A blank answer or end of input cancels.

    Returns:
        A validated archive path, or None if nothing was selected.
    """
    candidates = list_candidate_archives(start_dir)
    if candidates:
        print(f"Archives in {start_dir}:", file=sys.stderr)
        for index, candidate in enumerate(candidates, 1):
            print(f"  {index}. {candidate.name}", file=sys.stderr)

    for _ in range(MAX_PROMPT_ATTEMPTS):
        try:
            answer = input_func("Archive path or number (blank to cancel): ")
        except EOFError:
            return None

        answer = answer.strip().strip('"')
        if not answer:
            return None

        if answer.isdigit() and 1 <= int(answer) <= len(candidates):
            selected = candidates[int(answer) - 1]
        else:
            selected = Path(answer).expanduser()
            if not selected.is_absolute() and not selected.exists():
                selected = start_dir / selected

        try:
            validate_archive_path(selected)
        except FileValidationError as e:
            print(f"{SYMBOL_FAILURE} {e}", file=sys.stderr)
            continue
        return selected

    return None


def confirm_overwrite(path: Path, input_func: Callable[[str], str] = input) -> bool:
    """Ask whether an existing output archive may be replaced."""
    try:
        answer = input_func(f"{path} already exists. Overwrite? [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def resolve_archive(archive_arg: Optional[str]) -> Optional[Path]:
    """Validate the archive argument, prompting when it is missing or invalid."""
    logger = logging.getLogger(__name__)

    if archive_arg:
        archive = Path(archive_arg)
        try:
            validate_archive_path(archive)
            return archive
        except FileValidationError as e:
            print(f"{SYMBOL_FAILURE} {e}", file=sys.stderr)
            logger.debug(f"Invalid archive argument: {archive_arg}")

    if not _is_interactive():
        return None
    return prompt_for_archive(default_start_dir())


def print_summary(result: PipelineResult) -> None:
    """Print the run summary to stderr, keeping stdout for the archive path."""
    summary = result.conversion
    out = sys.stderr
    print("\n" + "=" * 60, file=out)
    print("PROCESSING SUMMARY", file=out)
    print("=" * 60, file=out)
    print(f"Files found in archive:  {result.raw_files}", file=out)
    print(f"Convertible files:       {summary.total}", file=out)
    print(f"{SYMBOL_SUCCESS} Converted:           {summary.converted}", file=out)
    print(f"{SYMBOL_FAILURE} Failed:              {summary.failed}", file=out)
    no_output = summary.empty + summary.unsupported
    print(f"{SYMBOL_SKIPPED} Empty/unsupported:   {no_output}", file=out)
    print(f"Files in output:         {len(result.entries)}", file=out)
    print(f"Total duration:          {result.duration_seconds:.2f}s", file=out)
    print("=" * 60, file=out)


def process_archive(
    archive: Path,
    destination: Path,
    overwrite: bool,
    workers: int,
    timeout: Optional[int],
    work_root: Optional[Path],
    keep_work_dir: bool,
    verbose: bool,
    quiet: bool,
) -> int:
    """Run the pipeline for one archive and report the outcome.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    logger = logging.getLogger(__name__)

    try:
        result = run_pipeline(
            archive,
            destination=destination,
            overwrite=overwrite,
            workers=workers,
            timeout=timeout,
            work_root=work_root,
            keep_work_dir=keep_work_dir,
            progress_callback=None if quiet else progress_bar,
        )
    except FileValidationError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Input validation failed: {e}")
        return 1
    except ExtractionError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error("Extraction failed")
        return 1
    except MergeError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error("Merge failed")
        return 1
    except PackagingError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        if e.work_dir is not None:
            print(f"Working files kept in {e.work_dir}", file=sys.stderr)
        logger.error("Packaging failed")
        return 1
    except DiagConverterError as e:
        print(f"{SYMBOL_FAILURE} Error: {e}", file=sys.stderr)
        logger.error(f"Processing error: {e}")
        return 1
    except Exception as e:
        print(f"{SYMBOL_FAILURE} Unexpected error: {e}", file=sys.stderr)
        logger.exception("Unexpected error during processing")
        return 1

    if not quiet:
        print_summary(result)

    if verbose:
        for conversion in result.conversion.results:
            if conversion.error_message:
                print(
                    f"  {SYMBOL_FAILURE} {conversion.source.relative_path}: "
                    f"{conversion.error_message}",
                    file=sys.stderr,
                )

    for warning in result.warnings:
        print(f"{SYMBOL_WARNING} Warning: {warning}", file=sys.stderr)

    print(result.archive_path)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the CLI tool.

    Args:
        argv: Optional argument list to parse instead of sys.argv.

    Returns:
        Exit code: 0 for success, 1 for failure or when no archive was produced.
    """
    parser = argparse.ArgumentParser(
        prog="diag-converter",
        description=(
            "Convert a Windows diagnostic archive into CSV files, raw fallbacks "
            "and a README.TXT index"
        ),
        epilog="""
Examples:
  %(prog)s PC01-Diagnostics.zip             # Writes PC01-Diagnostics-processed.zip
  %(prog)s PC01.zip -o C:\\Out\\PC01.zip -f   # Custom output, overwrite if present
  %(prog)s PC01.zip -j 4 -t 900             # 4 parallel decoders, 15 min per file
  %(prog)s                                  # Prompt for the archive
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    parser.add_argument("archive", nargs="?", help="Input diagnostic .zip archive")

    parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output archive path (default: <archive>-processed.zip)",
    )

    parser.add_argument(
        "-f", "--force", action="store_true", help="Overwrite an existing output archive"
    )

    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Timeout per decoded file (default: wait indefinitely)",
    )

    parser.add_argument(
        "-j",
        "--workers",
        type=int,
        default=1,
        metavar="N",
        help="Number of files to decode in parallel (default: 1)",
    )

    parser.add_argument(
        "--work-dir",
        metavar="DIR",
        help="Parent directory for working files (default: system temp)",
    )

    parser.add_argument(
        "--keep-work-dir",
        action="store_true",
        help="Do not delete working files after a successful run",
    )

    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )

    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress progress output"
    )

    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    if args.verbose and args.quiet:
        print("Error: Cannot use --verbose and --quiet together", file=sys.stderr)
        return 1

    if args.timeout is not None and args.timeout <= 0:
        print("Error: Timeout must be positive", file=sys.stderr)
        return 1

    if args.workers < 1:
        print("Error: Workers must be at least 1", file=sys.stderr)
        return 1

    archive = resolve_archive(args.archive)
    if archive is None:
        print(f"{SYMBOL_FAILURE} No input archive selected", file=sys.stderr)
        return 1

    destination = Path(args.output) if args.output else output_archive_path(archive)
    overwrite = args.force
    if destination.exists() and not overwrite:
        if _is_interactive() and confirm_overwrite(destination):
            overwrite = True
        else:
            print(
                f"{SYMBOL_SKIPPED} {destination} exists and was not overwritten",
                file=sys.stderr,
            )
            return 1

    return process_archive(
        archive=archive,
        destination=destination,
        overwrite=overwrite,
        workers=args.workers,
        timeout=args.timeout,
        work_root=Path(args.work_dir) if args.work_dir else None,
        keep_work_dir=args.keep_work_dir,
        verbose=args.verbose,
        quiet=args.quiet,
    )


if __name__ == "__main__":
    sys.exit(main())
