"""Input archive expansion and raw file discovery.

The input is a zip archive collected by a Windows diagnostics tool. Cabinet
(.cab) containers found inside it are expanded one level deep into sibling
``<name>_Extracted`` directories so their contents can be converted too.
"""

import logging
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from .decoders import expand_cabinet
from .exceptions import ConversionError, ExtractionError, ToolNotFoundError
from .utils import file_contains_sentinel, is_textual_extension, read_text_sample

logger = logging.getLogger(__name__)

CONTAINER_EXTENSION = ".cab"
EXPANDED_SUFFIX = "_Extracted"


@dataclass(frozen=True)
class RawFile:
    """A file discovered in the expanded input tree.

    Attributes:
        relative_path: POSIX-style path relative to the extraction root.
        extension: Lower-case suffix including the dot ("" if none).
        size_bytes: File size at discovery time.
        content_sample: Decoded leading text for textual types, None otherwise.
        is_sentinel: Whether a sentinel marker occurs anywhere in a textual file.
    """

    relative_path: str
    extension: str
    size_bytes: int
    content_sample: Optional[str] = None
    is_sentinel: bool = False

    @property
    def name(self) -> str:
        return PurePosixPath(self.relative_path).name


def _is_unsafe_member(name: str) -> bool:
    """Check for absolute, drive-qualified or parent-relative member names."""
    normalized = name.replace("\\", "/")
    if normalized.startswith("/"):
        return True
    parts = PurePosixPath(normalized).parts
    if parts and parts[0].endswith(":"):
        return True
    return ".." in parts


def extract_archive(archive: Path, destination: Path) -> int:
    """Expand every entry of a zip archive into ``destination``.

    Entries with absolute paths or ``..`` components are skipped.

    Args:
        archive: Path to the input zip archive.
        destination: Directory to extract into (created if missing).

    Returns:
        Number of file entries written.

    Raises:
        ExtractionError: If the archive is missing, unreadable or corrupt.
    """
    destination.mkdir(parents=True, exist_ok=True)
    extracted = 0

    try:
        with zipfile.ZipFile(archive, "r") as zf:
            for info in zf.infolist():
                if _is_unsafe_member(info.filename):
                    logger.warning(f"Skipping potentially unsafe path: {info.filename}")
                    continue
                zf.extract(info, destination)
                if not info.is_dir():
                    extracted += 1
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ExtractionError(f"Corrupt input archive {archive}: {e}")
    except OSError as e:
        raise ExtractionError(f"Cannot extract input archive {archive}: {e}")

    logger.debug(f"Extracted {extracted} entries from {archive.name}")
    return extracted


def _remove_partial_expansion(target: Path) -> None:
    if not target.exists():
        return
    try:
        shutil.rmtree(target)
    except OSError as e:
        logger.warning(f"Cannot remove partial expansion {target.name}: {e}")


def expand_containers(
    root: Path,
    expander: Optional[Callable[[Path, Path], None]] = None,
) -> List[Path]:
    """Expand every .cab file under ``root`` into ``<stem>_Extracted``.

    Containers are collected before any expansion happens, so cabinets
    inside freshly expanded output are left alone. A container that fails
    to expand stays in the tree as an ordinary raw file and its partial
    output directory is removed.

    Args:
        root: Extraction root to scan.
        expander: Callable ``(cab_file, destination)``; defaults to the
                  platform's cabinet tool.

    Returns:
        List of directories that were populated.
    """
    expand = expander or expand_cabinet
    containers = sorted(
        p
        for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() == CONTAINER_EXTENSION
    )

    expanded: List[Path] = []
    for cab_file in containers:
        target = cab_file.with_name(cab_file.stem + EXPANDED_SUFFIX)
        preexisting = target.exists()
        try:
            expand(cab_file, target)
        except ToolNotFoundError as e:
            logger.warning(f"Cannot expand containers: {e}")
            break
        except ConversionError as e:
            logger.warning(f"Failed to expand {cab_file.name}: {e}")
            if not preexisting:
                _remove_partial_expansion(target)
            continue
        expanded.append(target)
        logger.info(f"Expanded {cab_file.relative_to(root).as_posix()}")

    return expanded


def discover_raw_files(root: Path) -> List[RawFile]:
    """Walk the expanded tree and describe every file in it.

    Returns:
        RawFile entries sorted by relative path.
    """
    raw_files: List[RawFile] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue

        extension = path.suffix.lower()
        size = path.stat().st_size
        sample = None
        sentinel = False
        if size and is_textual_extension(extension):
            sample = read_text_sample(path)
            sentinel = file_contains_sentinel(path)

        raw_files.append(
            RawFile(
                relative_path=path.relative_to(root).as_posix(),
                extension=extension,
                size_bytes=size,
                content_sample=sample,
                is_sentinel=sentinel,
            )
        )

    raw_files.sort(key=lambda r: r.relative_path)
    return raw_files
