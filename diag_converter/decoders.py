"""Wrappers around the external Windows decoders.

The binary event-log, trace-log and cabinet formats are never parsed here.
They are handed to the native Windows tools:

    wevtutil qe <file.evtx> /lf:true /f:RenderedXml
    tracerpt <file.etl> -o <out.csv> -of CSV -y
    expand <file.cab> -F:* <dest>          (cabextract -q -d <dest> elsewhere)

These calls can run for minutes on large logs and are not cancelable.
"""

import logging
import platform
import re
import subprocess
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple
from xml.etree import ElementTree as ET

from .exceptions import ConversionError
from .utils import check_tool_available

logger = logging.getLogger(__name__)

EVENT_COLUMNS = ["TimeCreated", "Id", "ProviderName", "Level", "Message"]

# Numeric System/Level values, used when no rendered level text is present
EVENT_LEVEL_MAP = {
    0: "Information",
    1: "Critical",
    2: "Error",
    3: "Warning",
    4: "Information",
    5: "Verbose",
}

# One <Event> element; <EventData>/<EventID> do not match the tag boundary
_EVENT_PATTERN = re.compile(r"<Event[\s>].*?</Event>", re.DOTALL)


def run_tool(
    command: List[str], timeout: Optional[int] = None
) -> "subprocess.CompletedProcess[str]":
    """Run an external decoder and translate failures to ConversionError.

    Args:
        command: Full command line, tool name first.
        timeout: Maximum time in seconds to wait, or None to wait indefinitely.

    Returns:
        The completed process with captured stdout/stderr.

    Raises:
        ConversionError: If the tool times out, cannot be started, or exits non-zero.
    """
    logger.debug(f"Running: {' '.join(command)}")
    try:
        return subprocess.run(
            command,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired:
        raise ConversionError(f"{command[0]} timed out after {timeout} seconds")
    except subprocess.CalledProcessError as e:
        raise ConversionError(
            f"{command[0]} failed",
            return_code=e.returncode,
            stderr=(e.stderr or "").strip() or None,
        )
    except OSError as e:
        raise ConversionError(f"Cannot start {command[0]}: {e}")


def _local(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix from a tag."""
    return tag.rsplit("}", 1)[-1]


def _child(element: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if element is None:
        return None
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def parse_event_element(event: ET.Element) -> Dict[str, str]:
    """Extract the CSV columns from one rendered ``<Event>`` element."""
    system = _child(event, "System")
    rendering = _child(event, "RenderingInfo")

    provider = _child(system, "Provider")
    time_created = _child(system, "TimeCreated")

    level = _text(_child(rendering, "Level"))
    if not level:
        level = _text(_child(system, "Level"))
        if level.isdigit():
            level = EVENT_LEVEL_MAP.get(int(level), level)

    message = _text(_child(rendering, "Message"))
    if not message:
        event_data = _child(event, "EventData")
        if event_data is not None:
            message = "; ".join(_text(d) for d in event_data if _text(d))

    return {
        "TimeCreated": (
            time_created.get("SystemTime", "") if time_created is not None else ""
        ),
        "Id": _text(_child(system, "EventID")),
        "ProviderName": provider.get("Name", "") if provider is not None else "",
        "Level": level,
        "Message": message,
    }


def iter_event_rows(xml_stream: str) -> Iterator[Optional[Dict[str, str]]]:
    """Yield one row per ``<Event>`` in wevtutil output.

    Events are parsed one at a time so a single malformed record does not
    spoil the rest; None is yielded in its place.
    """
    for match in _EVENT_PATTERN.finditer(xml_stream):
        try:
            element = ET.fromstring(match.group(0))
        except ET.ParseError:
            yield None
            continue
        yield parse_event_element(element)


def query_event_log(
    input_file: Path, timeout: Optional[int] = None
) -> Tuple[List[Dict[str, str]], int]:
    """Decode an .evtx file into structured rows using wevtutil.

    Returns:
        Tuple of (rows, skipped) where skipped counts malformed events.

    Raises:
        ToolNotFoundError: If wevtutil is not available.
        ConversionError: If wevtutil fails.
    """
    check_tool_available("wevtutil")
    command = [
        "wevtutil",
        "qe",
        str(input_file.absolute()),
        "/lf:true",
        "/f:RenderedXml",
    ]
    completed = run_tool(command, timeout=timeout)

    rows: List[Dict[str, str]] = []
    skipped = 0
    for row in iter_event_rows(completed.stdout or ""):
        if row is None:
            skipped += 1
        else:
            rows.append(row)

    if skipped:
        logger.warning(f"Skipped {skipped} malformed event(s) in {input_file.name}")
    return rows, skipped


def run_tracerpt(input_file: Path, output_file: Path, timeout: Optional[int] = None) -> None:
    """Decode an .etl trace into a CSV file using tracerpt.

    Raises:
        ToolNotFoundError: If tracerpt is not available.
        ConversionError: If tracerpt fails.
    """
    check_tool_available("tracerpt")
    command = [
        "tracerpt",
        str(input_file.absolute()),
        "-o",
        str(output_file.absolute()),
        "-of",
        "CSV",
        "-y",
    ]
    run_tool(command, timeout=timeout)


def cabinet_command(cab_file: Path, destination: Path) -> List[str]:
    """Build the cabinet expansion command for the current platform.

    Raises:
        ToolNotFoundError: If no cabinet expander is available.
    """
    if platform.system() == "Windows":
        check_tool_available("expand")
        return ["expand", str(cab_file.absolute()), "-F:*", str(destination.absolute())]

    check_tool_available("cabextract")
    return ["cabextract", "-q", "-d", str(destination.absolute()), str(cab_file.absolute())]


def expand_cabinet(cab_file: Path, destination: Path, timeout: Optional[int] = None) -> None:
    """Expand a single-level .cab container into ``destination``.

    Raises:
        ToolNotFoundError: If no cabinet expander is available.
        ConversionError: If the expander fails.
    """
    destination.mkdir(parents=True, exist_ok=True)
    run_tool(cabinet_command(cab_file, destination), timeout=timeout)
