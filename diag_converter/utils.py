"""Utility functions for validation, tool lookup, and text handling.

This module provides helper functions used throughout the converter library
for input validation, external tool checks, text decoding, sentinel
detection, and collision-free file naming.
"""

import codecs
import shutil
import zipfile
from pathlib import Path
from typing import Optional, Set, Tuple

from .exceptions import FileValidationError, ToolNotFoundError

# Raw types that are inherently textual and may carry sentinel content
TEXTUAL_EXTENSIONS = frozenset({".txt", ".xml", ".reg"})

# Marker written by diagnostic collectors when a source produced no data
SENTINEL_MARKERS = ("No Results - Error",)

# Bytes read from a textual raw file for sentinel detection
CONTENT_SAMPLE_BYTES = 64 * 1024

UTF16_LE_BOM = b"\xff\xfe"
UTF16_BE_BOM = b"\xfe\xff"
UTF8_BOM = b"\xef\xbb\xbf"


def validate_archive_path(archive: Path) -> None:
    """Validate that a path points to a readable zip archive.

    Performs the following checks:
    - The path exists and is a file (not a directory)
    - The file is a zip archive

    Args:
        archive: Path to the input archive.

    Raises:
        FileValidationError: If any validation check fails.

    Example:
        >>> validate_archive_path(Path("Diagnostics.zip"))  # Valid archive
        >>> validate_archive_path(Path("missing.zip"))  # Raises FileValidationError
    """
    if not archive.exists():
        raise FileValidationError(f"Input archive does not exist: {archive}")

    if not archive.is_file():
        raise FileValidationError(f"Input path is not a file: {archive}")

    try:
        is_zip = zipfile.is_zipfile(archive)
    except OSError as e:
        raise FileValidationError(f"Cannot read input archive: {archive} ({e})")

    if not is_zip:
        raise FileValidationError(f"Input file is not a zip archive: {archive}")


def check_tool_available(tool: str) -> str:
    """Verify that an external command-line tool is available.

    Uses shutil.which() to check if the tool is in the system PATH.

    Args:
        tool: Executable name, e.g. ``wevtutil`` or ``tracerpt``.

    Returns:
        The resolved path of the executable.

    Raises:
        ToolNotFoundError: If the tool cannot be found in the system PATH.
    """
    resolved = shutil.which(tool)
    if resolved is None:
        raise ToolNotFoundError(tool)
    return resolved


def _bom_encoding(data: bytes) -> Tuple[Optional[str], int]:
    """Return the encoding announced by a byte order mark and the BOM length."""
    if data.startswith(UTF16_LE_BOM):
        return "utf-16-le", len(UTF16_LE_BOM)
    if data.startswith(UTF16_BE_BOM):
        return "utf-16-be", len(UTF16_BE_BOM)
    if data.startswith(UTF8_BOM):
        return "utf-8", len(UTF8_BOM)
    return None, 0


def decode_text(data: bytes) -> str:
    """Decode bytes from a Windows text export.

    Registry exports are usually UTF-16 LE with a BOM; other collectors write
    UTF-8 or the ANSI code page.
    """
    encoding, skip = _bom_encoding(data)
    if encoding is not None:
        return data[skip:].decode(encoding, errors="replace")

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("cp1252", errors="replace")


def read_text_sample(path: Path, limit: int = CONTENT_SAMPLE_BYTES) -> Optional[str]:
    """Read and decode the first ``limit`` bytes of a file.

    Returns:
        The decoded sample, or None if the file cannot be read.
    """
    try:
        with path.open("rb") as f:
            data = f.read(limit)
    except OSError:
        return None

    # Keep UTF-16 samples on a code unit boundary
    if data.startswith((UTF16_LE_BOM, UTF16_BE_BOM)) and len(data) % 2:
        data = data[:-1]
    return decode_text(data)


def is_textual_extension(extension: str) -> bool:
    return extension.lower() in TEXTUAL_EXTENSIONS


def is_sentinel_content(text: Optional[str]) -> bool:
    """Check whether text contains a "no data" sentinel marker.

    The match is a case-insensitive substring check against the fixed markers.

    Example:
        >>> is_sentinel_content("No Results - Error")
        True
        >>> is_sentinel_content("HKEY_LOCAL_MACHINE\\\\Software")
        False
    """
    if not text:
        return False
    folded = text.casefold()
    return any(marker.casefold() in folded for marker in SENTINEL_MARKERS)


def file_contains_sentinel(path: Path, chunk_size: int = CONTENT_SAMPLE_BYTES) -> bool:
    """Scan a whole text file for a sentinel marker.

    The file is decoded incrementally in chunks. The tail of each chunk is
    carried into the next one so a marker split across a chunk boundary is
    still found. Without a BOM the text is read as UTF-8 with replacement,
    which leaves the ASCII markers intact for ANSI files too.

    Returns:
        True if any marker occurs anywhere in the file, False otherwise or
        if the file cannot be read.
    """
    overlap = max(len(marker) for marker in SENTINEL_MARKERS) - 1
    try:
        with path.open("rb") as f:
            data = f.read(chunk_size)
            encoding, skip = _bom_encoding(data)
            decoder = codecs.getincrementaldecoder(encoding or "utf-8")(errors="replace")
            data = data[skip:]
            carry = ""
            while data:
                text = carry + decoder.decode(data)
                if is_sentinel_content(text):
                    return True
                carry = text[-overlap:] if overlap else ""
                data = f.read(chunk_size)
    except OSError:
        return False

    return is_sentinel_content(carry + decoder.decode(b"", final=True))


def unique_name(name: str, taken: Set[str]) -> str:
    """Return a file name (or relative path) not yet present in ``taken``.

    Names are compared case-insensitively, as on Windows. On collision a
    ``" (n)"`` counter is inserted before the first extension of the final
    path component, so ``System.evtx.csv`` becomes ``System (2).evtx.csv``.
    The chosen name is added to ``taken``.
    """
    candidate = name
    counter = 2
    while candidate.casefold() in taken:
        head, sep, tail = name.rpartition("/")
        base, dot, rest = tail.partition(".")
        tail = f"{base} ({counter}){dot}{rest}"
        candidate = f"{head}{sep}{tail}"
        counter += 1

    taken.add(candidate.casefold())
    return candidate
