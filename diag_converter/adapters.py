"""Per-format adapters that turn one diagnostic file into one CSV file.

Each adapter converts a single source file into a destination CSV and
reports the outcome. Adapters are looked up through an AdapterRegistry of
ConversionRules, so supporting a new format means registering a new rule.
"""

import csv
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence
from xml.etree import ElementTree as ET

from .decoders import EVENT_COLUMNS, query_event_log, run_tracerpt
from .exceptions import ConversionError
from .extractor import RawFile
from .utils import decode_text, is_sentinel_content

logger = logging.getLogger(__name__)

SETUPDIAG_FILENAME = "SetupDiagResults.xml"
SETUPDIAG_OUTPUT = "SetupDiagResults.csv"
SETUPDIAG_RECORD = "Error"
SETUPDIAG_COLUMNS = ["Timestamp", "Code", "Phase", "Operation", "Message"]

# Accepted element/attribute names for each SetupDiag column
SETUPDIAG_FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "Timestamp": ("Timestamp", "DateTime", "Time", "Date"),
    "Code": ("Code", "ErrorCode", "HResult", "Result"),
    "Phase": ("Phase", "SetupPhase"),
    "Operation": ("Operation", "SetupOperation"),
    "Message": ("Message", "Description", "Text"),
}


class ConversionOutcome(Enum):
    """Outcome of converting a single file.

    Attributes:
        CONVERTED: A non-empty CSV was written.
        UNSUPPORTED: The file was recognized but its content has an unknown shape.
        FAILED: The file or its decoder could not be processed.
        EMPTY: The file holds no records; nothing was written.
    """

    CONVERTED = "converted"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"
    EMPTY = "empty"


def sanitize_csv_cell(value: str) -> str:
    """Make a value safe for strict CSV consumers.

    - Avoid literal newlines/tabs within cells (some importers mis-handle them).
    - Preserve meaning by using escape sequences.
    """
    if not value:
        return value

    value = value.replace("\r\n", "\\n").replace("\r", "\\n").replace("\n", "\\n")
    value = value.replace("\t", "\\t")

    sanitized: list[str] = []
    for ch in value:
        code = ord(ch)
        if code < 0x20:
            sanitized.append(f"\\x{code:02x}")
        else:
            sanitized.append(ch)
    return "".join(sanitized)


def write_csv_rows(
    destination: Path, columns: List[str], rows: Iterable[Dict[str, str]]
) -> int:
    """Write a header plus one sanitized row per mapping.

    Returns:
        Number of data rows written.
    """
    count = 0
    with destination.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([sanitize_csv_cell(row.get(col) or "") for col in columns])
            count += 1
    return count


class Adapter(ABC):
    """Base class for format adapters."""

    name = "adapter"

    @abstractmethod
    def convert(self, source: Path, destination: Path) -> ConversionOutcome:
        """Convert ``source`` into ``destination``.

        Raises:
            ConversionError: If the whole file cannot be converted.
        """
        pass


class RegistryExportAdapter(Adapter):
    """Re-encode a .reg export as UTF-8 text under a CSV name.

    The content is copied line for line; no registry semantics are parsed.
    """

    name = "registry-export"

    def convert(self, source: Path, destination: Path) -> ConversionOutcome:
        try:
            data = source.read_bytes()
        except OSError as e:
            raise ConversionError(f"Cannot read registry export {source.name}: {e}")

        text = decode_text(data)
        if not text.strip() or is_sentinel_content(text):
            return ConversionOutcome.EMPTY

        with destination.open("w", encoding="utf-8", newline="") as f:
            f.write(text)
        return ConversionOutcome.CONVERTED


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _record_field(record: ET.Element, aliases: Sequence[str]) -> str:
    """Read a field from a child element or attribute, case-insensitively."""
    wanted = [a.casefold() for a in aliases]

    children = {}
    for child in record:
        children.setdefault(_local(child.tag).casefold(), (child.text or "").strip())
    attributes = {_local(k).casefold(): v.strip() for k, v in record.attrib.items()}

    for key in wanted:
        if children.get(key):
            return children[key]
        if attributes.get(key):
            return attributes[key]
    return ""


class SetupDiagAdapter(Adapter):
    """Flatten SetupDiagResults.xml into one CSV row per ``<Error>`` record."""

    name = "setupdiag"

    def convert(self, source: Path, destination: Path) -> ConversionOutcome:
        try:
            tree = ET.parse(source)
        except ET.ParseError as e:
            logger.warning(f"{source.name} is not a SetupDiag document: {e}")
            return ConversionOutcome.UNSUPPORTED
        except OSError as e:
            raise ConversionError(f"Cannot read {source.name}: {e}")

        rows: List[Dict[str, str]] = []
        for record in tree.getroot().iter():
            if _local(record.tag) != SETUPDIAG_RECORD:
                continue
            row = {
                column: _record_field(record, aliases)
                for column, aliases in SETUPDIAG_FIELD_ALIASES.items()
            }
            if not row["Message"] and len(record) == 0:
                row["Message"] = (record.text or "").strip()
            rows.append(row)

        if not rows:
            return ConversionOutcome.EMPTY

        write_csv_rows(destination, SETUPDIAG_COLUMNS, rows)
        return ConversionOutcome.CONVERTED


class EventLogAdapter(Adapter):
    """Decode an .evtx log through wevtutil into one row per event."""

    name = "event-log"

    def __init__(self, timeout: Optional[int] = None):
        """Initialize the event-log adapter.

        Args:
            timeout: Seconds to wait for wevtutil (None waits indefinitely).
        """
        self.timeout = timeout

    def convert(self, source: Path, destination: Path) -> ConversionOutcome:
        rows, _ = query_event_log(source, timeout=self.timeout)
        if not rows:
            raise ConversionError(f"wevtutil returned no events for {source.name}")

        write_csv_rows(destination, EVENT_COLUMNS, rows)
        return ConversionOutcome.CONVERTED


class TraceLogAdapter(Adapter):
    """Decode an .etl trace through tracerpt, which writes the CSV itself."""

    name = "trace-log"

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout

    def convert(self, source: Path, destination: Path) -> ConversionOutcome:
        run_tracerpt(source, destination, timeout=self.timeout)

        if not destination.exists():
            raise ConversionError(f"tracerpt did not create {destination.name}")

        lines = [
            line
            for line in decode_text(destination.read_bytes()).splitlines()
            if line.strip()
        ]
        if len(lines) < 2:
            raise ConversionError(f"tracerpt produced no rows for {source.name}")
        return ConversionOutcome.CONVERTED


@dataclass(frozen=True)
class ConversionRule:
    """Maps a file selector to an adapter and an output name.

    Attributes:
        adapter: Adapter that performs the conversion.
        extension: Lower-case suffix to match, e.g. ".reg".
        filename: Exact file name to match (case-insensitive); takes
                  precedence over extension rules.
        output_template: ``str.format`` template; ``{name}`` is the source
                         file name, ``{stem}`` the name without suffix.
    """

    adapter: Adapter
    extension: Optional[str] = None
    filename: Optional[str] = None
    output_template: str = "{name}.csv"

    def matches(self, raw: RawFile) -> bool:
        if self.filename is not None:
            return raw.name.casefold() == self.filename.casefold()
        return self.extension is not None and raw.extension == self.extension.lower()

    def output_name(self, raw: RawFile) -> str:
        stem = raw.name[: -len(raw.extension)] if raw.extension else raw.name
        return self.output_template.format(name=raw.name, stem=stem)


class AdapterRegistry:
    """Registry of conversion rules keyed by selector."""

    def __init__(self) -> None:
        self._rules: List[ConversionRule] = []

    def register(self, rule: ConversionRule) -> None:
        """Register a rule.

        Raises:
            ValueError: If the rule has neither a filename nor an extension.
        """
        if rule.filename is None and rule.extension is None:
            raise ValueError("ConversionRule needs a filename or an extension")
        self._rules.append(rule)

    @property
    def rules(self) -> List[ConversionRule]:
        return list(self._rules)

    def match(self, raw: RawFile) -> Optional[ConversionRule]:
        """Return the rule for a raw file, or None if it is not convertible."""
        for rule in self._rules:
            if rule.filename is not None and rule.matches(raw):
                return rule
        for rule in self._rules:
            if rule.filename is None and rule.matches(raw):
                return rule
        return None


def default_registry(timeout: Optional[int] = None) -> AdapterRegistry:
    """Build the registry with the built-in Windows diagnostic formats.

    Args:
        timeout: Per-file timeout for the external decoders.
    """
    registry = AdapterRegistry()
    registry.register(
        ConversionRule(
            SetupDiagAdapter(),
            filename=SETUPDIAG_FILENAME,
            output_template=SETUPDIAG_OUTPUT,
        )
    )
    registry.register(ConversionRule(RegistryExportAdapter(), extension=".reg"))
    registry.register(ConversionRule(EventLogAdapter(timeout), extension=".evtx"))
    registry.register(ConversionRule(TraceLogAdapter(timeout), extension=".etl"))
    return registry
