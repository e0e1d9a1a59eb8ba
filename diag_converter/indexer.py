"""README.TXT manifest generation for the processed archive.

The manifest is derived data: it is built from the final file entries alone
and can be regenerated at any time.
"""

import re
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from .planner import MANIFEST_NAME, FinalFileEntry

CATEGORY_REGISTRY = "registry"
CATEGORY_EVENT_LOG = "event-log"
CATEGORY_TRACE_LOG = "trace-log"
CATEGORY_SETUPDIAG = "setupdiag"
CATEGORY_RAW = "raw"

# SetupDiagResults.csv, including the " (n)" form given to name collisions
SETUPDIAG_NAME = re.compile(r"setupdiagresults( \(\d+\))?\.csv")

CATEGORY_LABELS = [
    (CATEGORY_REGISTRY, "Registry exports (*.reg.csv)"),
    (CATEGORY_EVENT_LOG, "Event logs (*.evtx.csv)"),
    (CATEGORY_TRACE_LOG, "Trace logs (*.etl.csv)"),
    (CATEGORY_SETUPDIAG, "Setup diagnostics (SetupDiagResults.csv)"),
    (CATEGORY_RAW, "Other raw files"),
]

PREAMBLE = """\
PROCESSED WINDOWS DIAGNOSTIC ARCHIVE
====================================

This archive was produced from a Windows diagnostic bundle. Binary and
hard-to-read artifacts were converted to CSV where possible; everything
else is included unchanged at its original path. Files that held no data
(empty files, "No Results - Error" markers) were left out, and raw files
whose content is fully represented by a converted CSV are not duplicated.
"""

GUIDANCE = """\
HOW TO READ THIS ARCHIVE
------------------------
- *.evtx.csv   Windows event logs, one row per event:
               TimeCreated, Id, ProviderName, Level, Message.
               Start with Level = Error or Critical.
- *.etl.csv    Event trace logs decoded by tracerpt, one row per trace event.
- *.reg.csv    Registry exports, original text re-encoded as UTF-8.
- SetupDiagResults.csv
               Windows setup failures found by SetupDiag:
               Timestamp, Code, Phase, Operation, Message.
- Other files  Raw logs and reports, unchanged. Subdirectories named
               *_Extracted hold the contents of .cab containers.
"""


def categorize(path: str) -> str:
    """Return the manifest category of a final archive path."""
    name = PurePosixPath(path).name.casefold()
    if SETUPDIAG_NAME.fullmatch(name):
        return CATEGORY_SETUPDIAG
    if name.endswith(".reg.csv"):
        return CATEGORY_REGISTRY
    if name.endswith(".evtx.csv"):
        return CATEGORY_EVENT_LOG
    if name.endswith(".etl.csv"):
        return CATEGORY_TRACE_LOG
    return CATEGORY_RAW


def count_categories(paths: Iterable[str]) -> Dict[str, int]:
    """Count paths per manifest category (every category present, possibly 0)."""
    counts = {key: 0 for key, _ in CATEGORY_LABELS}
    for path in paths:
        counts[categorize(path)] += 1
    return counts


def build_manifest(
    entries: List[FinalFileEntry],
    source_name: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Build the README.TXT text for a final file set.

    Args:
        entries: Final archive entries (the manifest itself is not listed).
        source_name: Name of the input archive, shown in the header.
        generated_at: Timestamp shown in the header.

    Returns:
        Manifest text with summary counts, guidance and a full file index.
    """
    paths = sorted(
        (e.relative_path for e in entries if e.relative_path != MANIFEST_NAME),
        key=str.casefold,
    )
    counts = count_categories(paths)
    width = max(len(label) for _, label in CATEGORY_LABELS) + 2

    lines = [PREAMBLE]
    if source_name:
        lines.append(f"Source archive: {source_name}")
    if generated_at:
        lines.append(f"Generated:      {generated_at.isoformat(timespec='seconds')}")
    if source_name or generated_at:
        lines.append("")

    lines.append("SUMMARY")
    lines.append("-------")
    for key, label in CATEGORY_LABELS:
        lines.append(f"{label + ':':<{width}}{counts[key]}")
    lines.append(f"{'Total files:':<{width}}{len(paths)}")
    lines.append("")

    lines.append(GUIDANCE)

    lines.append("FILE INDEX")
    lines.append("----------")
    lines.extend(paths)

    return "\n".join(lines) + "\n"


def write_manifest(
    final_root: Path,
    entries: List[FinalFileEntry],
    source_name: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> Path:
    """Write README.TXT at the root of the final tree.

    Returns:
        Path of the written manifest.
    """
    manifest = final_root / MANIFEST_NAME
    manifest.write_text(
        build_manifest(entries, source_name=source_name, generated_at=generated_at),
        encoding="utf-8",
    )
    return manifest
