"""Merge planning: decide which files make up the final archive.

The planner is a pure function of the discovered raw files and the
conversion results. It never touches the file system; ``apply_plan``
realizes a plan by copying files into the final tree.

Decision order:
    1. Every converted CSV, flattened to the archive root.
    2. Every raw file, at its original relative path, unless it is
       zero-length, superseded by a conversion, or a textual file holding
       only a "no data" sentinel.
"""

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

from .converter import ConversionResult
from .exceptions import MergeError
from .extractor import RawFile
from .utils import is_sentinel_content, is_textual_extension, unique_name

logger = logging.getLogger(__name__)

MANIFEST_NAME = "README.TXT"


class FileOrigin(Enum):
    """Where a final archive entry comes from."""

    CONVERTED = "converted"
    RAW_PASSTHROUGH = "raw"


class SkipReason(Enum):
    """Why a raw file was left out of the final archive."""

    ZERO_LENGTH = "zero-length"
    SUPERSEDED = "superseded"
    SENTINEL = "sentinel"


@dataclass(frozen=True)
class FinalFileEntry:
    """A file in the final archive, relative to its root."""

    relative_path: str
    origin: FileOrigin


@dataclass(frozen=True)
class CopyAction:
    """Copy ``source`` to ``destination`` (relative to the final root)."""

    source: Path
    destination: str


@dataclass
class MergePlan:
    """Ordered final entries, the copies that realize them, and skipped files."""

    entries: List[FinalFileEntry] = field(default_factory=list)
    actions: List[CopyAction] = field(default_factory=list)
    skipped: Dict[str, SkipReason] = field(default_factory=dict)

    @property
    def converted_count(self) -> int:
        return sum(1 for e in self.entries if e.origin == FileOrigin.CONVERTED)

    @property
    def raw_count(self) -> int:
        return sum(1 for e in self.entries if e.origin == FileOrigin.RAW_PASSTHROUGH)


def _skip_reason(
    raw: RawFile, results: Dict[str, ConversionResult]
) -> Optional[SkipReason]:
    if raw.size_bytes == 0:
        return SkipReason.ZERO_LENGTH

    result = results.get(raw.relative_path)
    if result is not None and result.success:
        return SkipReason.SUPERSEDED

    if is_textual_extension(raw.extension) and (
        raw.is_sentinel or is_sentinel_content(raw.content_sample)
    ):
        return SkipReason.SENTINEL

    return None


def plan_merge(
    raw_files: List[RawFile],
    results: List[ConversionResult],
    raw_root: Path,
) -> MergePlan:
    """Build the final file set from raw files and conversion results.

    All conversion results must be complete before this is called: the
    supersession check relies on the full result set.

    Args:
        raw_files: Every file discovered in the expanded input.
        results: One result per raw file that matched a conversion rule.
        raw_root: Extraction root that raw relative paths are resolved against.

    Returns:
        MergePlan; planning the same inputs twice yields an equal plan.
    """
    plan = MergePlan()
    taken: Set[str] = {MANIFEST_NAME.casefold()}
    by_source = {r.source.relative_path: r for r in results}

    for result in results:
        if not result.success or result.produced_path is None:
            continue
        destination = unique_name(result.produced_path.name, taken)
        plan.entries.append(FinalFileEntry(destination, FileOrigin.CONVERTED))
        plan.actions.append(CopyAction(result.produced_path, destination))

    for raw in sorted(raw_files, key=lambda r: r.relative_path):
        reason = _skip_reason(raw, by_source)
        if reason is not None:
            plan.skipped[raw.relative_path] = reason
            continue
        destination = unique_name(raw.relative_path, taken)
        plan.entries.append(FinalFileEntry(destination, FileOrigin.RAW_PASSTHROUGH))
        plan.actions.append(CopyAction(raw_root / raw.relative_path, destination))

    return plan


def apply_plan(plan: MergePlan, final_root: Path) -> int:
    """Copy every planned file into ``final_root``.

    Returns:
        Number of files copied.

    Raises:
        MergeError: If any copy fails.
    """
    final_root.mkdir(parents=True, exist_ok=True)
    for action in plan.actions:
        target = final_root / action.destination
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(action.source, target)
        except OSError as e:
            raise MergeError(f"Failed to copy {action.source} to {target}: {e}")

    logger.debug(f"Copied {len(plan.actions)} files into {final_root}")
    return len(plan.actions)
