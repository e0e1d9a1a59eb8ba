"""Output archive creation and working directory cleanup."""

import logging
import os
import shutil
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from .exceptions import CleanupWarning, PackagingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OUTPUT_SUFFIX = "-processed.zip"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry for operations blocked by transient file locks.

    The external decoders can hold handles on files for a short while
    after they exit, so removing the working tree may need a few tries.

    Attributes:
        max_attempts: Total number of attempts (at least 1).
        delay_seconds: Pause between attempts.
    """

    max_attempts: int = 5
    delay_seconds: float = 2.0

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Call ``func(*args)`` until it stops raising OSError.

        Raises:
            OSError: The error of the last attempt.
        """
        attempts = max(1, self.max_attempts)
        attempt = 1
        while True:
            try:
                return func(*args)
            except OSError as e:
                if attempt >= attempts:
                    raise
                logger.debug(
                    f"Attempt {attempt}/{attempts} failed ({e}); "
                    f"retrying in {self.delay_seconds}s"
                )
                sleep(self.delay_seconds)
                attempt += 1


def output_archive_path(input_archive: Path) -> Path:
    """Return ``<dir>/<stem>-processed.zip`` next to the input archive.

    Example:
        >>> output_archive_path(Path("C:/Temp/PC01.zip"))
        Path("C:/Temp/PC01-processed.zip")
    """
    return input_archive.with_name(input_archive.stem + OUTPUT_SUFFIX)


def remove_empty_files(root: Path) -> int:
    """Delete zero-byte files anywhere under ``root``.

    Returns:
        Number of files removed.
    """
    removed = 0
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.stat().st_size == 0:
            path.unlink()
            removed += 1
            logger.debug(f"Removed empty file {path.relative_to(root).as_posix()}")
    return removed


def create_archive(source_dir: Path, destination: Path, overwrite: bool = False) -> Path:
    """Compress every file under ``source_dir`` into a zip archive.

    The archive is written to a partial file first and renamed into place,
    so a failed run never leaves a truncated archive at ``destination``.

    Args:
        source_dir: Directory to compress; paths are stored relative to it.
        destination: Output .zip path.
        overwrite: Replace an existing archive at ``destination``.

    Returns:
        The destination path.

    Raises:
        PackagingError: If the destination exists without consent, writing
                        fails, or the resulting archive is empty.
    """
    if destination.exists() and not overwrite:
        raise PackagingError(f"Output archive already exists: {destination}")
    if destination.is_dir():
        raise PackagingError(f"Output path is a directory: {destination}")

    partial = destination.with_name(destination.name + ".partial")
    try:
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in sorted(source_dir.rglob("*")):
                if path.is_file():
                    zf.write(path, path.relative_to(source_dir).as_posix())
        os.replace(partial, destination)
    except OSError as e:
        if partial.exists():
            partial.unlink()
        raise PackagingError(f"Failed to write output archive {destination}: {e}")

    if destination.stat().st_size == 0:
        raise PackagingError(f"Output archive is empty: {destination}")

    return destination


def cleanup_working_dir(
    path: Path,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[CleanupWarning]:
    """Remove the working directory, retrying on transient errors.

    Returns:
        None on success (or if the directory is already gone), otherwise a
        CleanupWarning describing the last error. Never raises.
    """
    if not path.exists():
        return None

    policy = policy or RetryPolicy()
    try:
        policy.call(shutil.rmtree, path, sleep=sleep)
    except OSError as e:
        warning = CleanupWarning(path, str(e))
        logger.warning(str(warning))
        return warning
    return None
