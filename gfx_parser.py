"""
Parsers for the diagnostic dumps polled from the device.

Frame timings come from ``dumpsys gfxinfo``, whose layout depends on the
platform version:

- API 21 and up: ``framestats`` CSV blocks between ``---PROFILEDATA---``
  marker lines. Only rows with ``Flags == "0"`` are real frames; the render
  time is ``FrameCompleted - IntendedVsync`` in nanoseconds.
- API 16 to 20: a tab separated "Profile data in ms" table whose header names
  the pipeline stages (``Draw Process Execute``, plus ``Prepare`` on API 20).
  The render time is the sum of the stages. The table ends at ``View hierarchy:``.
- Below API 16 nothing usable is reported.

A missing block or a broken row never raises; it just yields fewer samples.
"""

import csv
import enum
import logging
import math
import numbers
import re
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from adb_transport import FramewatchError

logger = logging.getLogger(__name__)

MIN_PLATFORM_VERSION = 16
FRAMESTATS_MIN_VERSION = 21
PREPARE_STAGE_VERSION = 20

PROFILEDATA_MARKER = "---PROFILEDATA---"
PROFILE_TABLE_END = "View hierarchy:"
NANOS_PER_MILLI = 1_000_000

TOTAL_PSS_RE = re.compile(r'TOTAL PSS:\s+([\d,]+)')
TOTAL_ROW_RE = re.compile(r'^\s*TOTAL\s+([\d,]+)')
TOP_HEADER_RE = re.compile(r'PID\s+USER')
TOP_ROW_RE = re.compile(r"\s*(\d+)\s+(\S+)\s+\S+\s+\S+\s+\S+\s+\S+\s+\S+\s+\S+\s+([\d.]+)\s+([\d.]+)\s+([\d:.]+)\s+(.+)")
ANSI_ESCAPE_RE = re.compile(r'\x1B\[[0-?]*[ -/]*[@-~]')


class UnsupportedPlatformError(FramewatchError):
    """The device runs a platform version we cannot read frame data from."""

    def __init__(self, version: int):
        super().__init__(f"API Level {version} not supported (minimum is {MIN_PLATFORM_VERSION}).")
        self.version = version


class DiagnosticFormat(enum.Enum):
    FRAMESTATS = "framestats"
    PROFILE_DATA = "profiledata"


def select_format(version: int) -> DiagnosticFormat:
    """Map a platform version to the gfxinfo layout it produces."""
    if version >= FRAMESTATS_MIN_VERSION:
        return DiagnosticFormat.FRAMESTATS
    if version >= MIN_PLATFORM_VERSION:
        return DiagnosticFormat.PROFILE_DATA
    raise UnsupportedPlatformError(version)


def profile_columns(version: int) -> Tuple[str, ...]:
    if version >= PREPARE_STAGE_VERSION:
        return ("Draw", "Prepare", "Process", "Execute")
    return ("Draw", "Process", "Execute")


def parse_frame_timings(raw: str, version: int) -> List[float]:
    """Extract per-frame render times (ms) from a gfxinfo dump."""
    fmt = select_format(version)
    if fmt is DiagnosticFormat.FRAMESTATS:
        return parse_framestats(raw)
    return parse_profile_data(raw, profile_columns(version))


# -------------------- framestats (API 21+) --------------------
def find_profiledata_blocks(raw: str) -> List[List[str]]:
    """Return the lines of every complete block between two marker lines."""
    blocks = []
    current = None
    for line in raw.splitlines():
        if line.strip() == PROFILEDATA_MARKER:
            if current is None:
                current = []
            else:
                blocks.append(current)
                current = None
        elif current is not None:
            current.append(line)
    return blocks


def _frame_duration(row: dict) -> Optional[float]:
    if row.get("Flags") != "0":
        return None
    try:
        completed = int(row["FrameCompleted"])
        intended = int(row["IntendedVsync"])
    except (KeyError, TypeError, ValueError):
        logger.debug("skipping malformed framestats row: %r", row)
        return None
    return (completed - intended) / NANOS_PER_MILLI


def parse_framestats_block(lines: Sequence[str]) -> List[float]:
    try:
        rows = list(csv.reader(line for line in lines if line.strip()))
    except csv.Error as e:
        logger.debug("unreadable framestats block: %s", e)
        return []
    if not rows:
        return []
    header = [name.strip() for name in rows[0]]
    timings = []
    for values in rows[1:]:
        duration = _frame_duration(dict(zip(header, (v.strip() for v in values))))
        if duration is not None:
            timings.append(duration)
    return timings


def parse_framestats(raw: str) -> List[float]:
    timings = []
    for block in find_profiledata_blocks(raw):
        timings.extend(parse_framestats_block(block))
    return timings


# -------------------- Profile data in ms (API 16-20) --------------------
def _is_header(line: str, columns: Sequence[str]) -> bool:
    return tuple(line.split()) == tuple(columns)


def find_profile_table(raw: str, columns: Sequence[str]) -> Optional[List[str]]:
    """Return the header line plus the rows up to ``View hierarchy:``.

    Returns None when either the header or the terminating line is missing.
    """
    lines = raw.splitlines()
    start = next((i for i, line in enumerate(lines) if _is_header(line, columns)), None)
    if start is None:
        return None
    for end in range(start + 1, len(lines)):
        if lines[end].strip().startswith(PROFILE_TABLE_END):
            return lines[start:end]
    return None


def sum_row(cells: Iterable[str]) -> Optional[float]:
    try:
        return sum(float(cell) for cell in cells)
    except ValueError:
        return None


def parse_table_block(text: str) -> List[float]:
    """Sum every data row of a tab separated table whose first line is the header."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []
    timings = []
    for line in lines[1:]:
        cells = [cell.strip() for cell in line.split('\t') if cell.strip()]
        total = sum_row(cells) if cells else None
        if total is None:
            logger.debug("skipping malformed profile row: %r", line)
            continue
        timings.append(total)
    return timings


def parse_profile_data(raw: str, columns: Sequence[str]) -> List[float]:
    table = find_profile_table(raw, columns)
    if table is None:
        return []
    return parse_table_block("\n".join(table))


# -------------------- Normalization --------------------
def normalize_samples(candidates: Iterable[Any]) -> List[float]:
    """Drop non-numeric and non-finite values, keeping the original order."""
    samples = []
    for value in candidates:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            continue
        value = float(value)
        if math.isfinite(value):
            samples.append(value)
    return samples


# -------------------- Memory / CPU --------------------
def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text."""
    return ANSI_ESCAPE_RE.sub('', text)


def parse_memory_usage(raw: str) -> List[float]:
    """Total PSS of the app in MB, as a one element list (empty if absent)."""
    for line in raw.splitlines():
        m = TOTAL_PSS_RE.search(line) or TOTAL_ROW_RE.match(line)
        if m:
            return [int(m.group(1).replace(',', '')) / 1024]
    return []


def parse_cpu_usage(raw: str, pids: Iterable[str]) -> List[float]:
    """%CPU summed over the rows of ``pids`` in a toybox ``top`` dump.

    Rows are matched on the PID column; the ARGS column is cut at the
    terminal width and cannot identify the app.
    """
    pids = set(pids)
    lines = [strip_ansi(line) for line in raw.splitlines() if line.strip()]
    header_idx = None
    for i, line in enumerate(lines):
        if TOP_HEADER_RE.search(line) and '[%CPU]' in line:
            header_idx = i
            break
    if header_idx is None:
        return []
    usage = None
    for line in lines[header_idx+1:]:
        m = TOP_ROW_RE.match(line)
        if not m:
            continue
        pid, cpu = m.group(1), m.group(3)
        if pid in pids:
            usage = (usage or 0.0) + float(cpu)
    return [] if usage is None else [usage]
