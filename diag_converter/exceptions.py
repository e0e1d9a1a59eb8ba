"""Custom exceptions for the diagnostic archive converter.

This module defines the exception hierarchy used throughout the library to
separate fatal, run-aborting failures from per-file conversion problems.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class DiagConverterError(Exception):
    """Base exception for all diagnostic converter errors.

    All custom exceptions in this library inherit from this base class,
    allowing users to catch all converter-related errors with a single except block.
    """

    pass


class FileValidationError(DiagConverterError):
    """Raised when an input path fails validation.

    This can occur when:
    - The input archive does not exist
    - The path is a directory rather than a file
    - The file is not a readable zip archive
    """

    pass


class ToolNotFoundError(DiagConverterError):
    """Raised when an external command-line tool cannot be found.

    The event-log, trace-log and cabinet decoders are Windows utilities that
    must be available in the system PATH.
    """

    def __init__(self, tool: str) -> None:
        """Initialize the exception with the missing tool name.

        Args:
            tool: Name of the executable that was looked up.
        """
        self.tool = tool
        super().__init__(
            f"{tool} command not found. Ensure it is installed and available "
            "in the system PATH."
        )


class ExtractionError(DiagConverterError):
    """Raised when the input archive cannot be read or expanded.

    This is fatal for the run: no partial processing is attempted.
    """

    pass


class ConversionError(DiagConverterError):
    """Raised when a single file cannot be converted.

    Adapters raise this for whole-file failures; the dispatcher turns it into
    a FAILED conversion result so the run continues with the raw file.
    """

    def __init__(
        self,
        message: str,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ) -> None:
        """Initialize the conversion error with execution details.

        Args:
            message: Human-readable error description.
            return_code: The exit code returned by the external decoder (if any).
            stderr: Error output from the external decoder (if any).
        """
        self.return_code = return_code
        self.stderr = stderr

        error_parts = [message]
        if return_code is not None:
            error_parts.append(f"Return code: {return_code}")
        if stderr:
            error_parts.append(f"Error output: {stderr}")

        super().__init__(" | ".join(error_parts))


class MergeError(DiagConverterError):
    """Raised when copying a file into the final tree fails at the I/O level."""

    pass


class PackagingError(DiagConverterError):
    """Raised when the output archive cannot be written.

    The working directory is preserved so the operator can recover the
    converted files by hand; its location is kept in ``work_dir``.
    """

    def __init__(self, message: str, work_dir: Optional[Path] = None) -> None:
        self.work_dir = work_dir
        super().__init__(message)


class CleanupWarning(UserWarning):
    """Working storage could not be removed after a successful run.

    Returned rather than raised: the output archive already exists.
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Could not remove working directory {path}: {reason}")
