"""Shared parsing machinery for the CSV adapters.

Header cells vary in language, casing, and wording between publishers and over
time, so each adapter declares an ordered table of `ColumnSpec` entries. The
table is evaluated top to bottom; a cell claimed by an earlier spec is not
offered to later ones, which lets an area-specific price column win over a
generic "price" fallback.
"""

from __future__ import annotations

import csv
import io
import logging
import math
import unicodedata
from dataclasses import dataclass
from typing import IO, Dict, Iterable, List, Sequence, Tuple, Union

from ..errors import FormatError

LOGGER = logging.getLogger(__name__)

ByteSource = Union[bytes, bytearray, IO[bytes]]
EXPECTED_HOURS = 24


def normalize_header(cell: str) -> str:
    return unicodedata.normalize("NFKC", cell or "").strip().lower()


@dataclass(frozen=True)
class Matcher:
    text: str
    kind: str = "contains"

    def matches(self, cell: str) -> bool:
        wanted = normalize_header(self.text)
        if self.kind == "equals":
            return cell == wanted
        if self.kind == "contains":
            return wanted in cell
        raise ValueError(f"Unknown matcher kind '{self.kind}'")


def equals(text: str) -> Matcher:
    return Matcher(text, "equals")


def contains(text: str) -> Matcher:
    return Matcher(text, "contains")


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    matchers: Tuple[Matcher, ...]
    required: bool = True


def detect_columns(
    header: Sequence[str],
    specs: Iterable[ColumnSpec],
    *,
    source: str,
    line: int | None = None,
) -> Dict[str, int]:
    """Map logical column names to header indices; raise if a required column is absent."""
    cells = [normalize_header(cell) for cell in header]
    claimed: set[int] = set()
    indices: Dict[str, int] = {}
    missing: List[str] = []
    for spec in specs:
        found = _first_match(cells, spec.matchers, claimed)
        if found is None:
            if spec.required:
                missing.append(spec.name)
            continue
        indices[spec.name] = found
        claimed.add(found)
    if missing:
        raise FormatError(
            "required columns not found in header",
            source=source,
            line=line,
            expected=missing,
            found=[cell.strip() for cell in header],
        )
    return indices


def _first_match(cells: Sequence[str], matchers: Sequence[Matcher], claimed: set[int]) -> int | None:
    for matcher in matchers:
        for index, cell in enumerate(cells):
            if index in claimed or not cell:
                continue
            if matcher.matches(cell):
                return index
    return None


def read_bytes(source: ByteSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return source.read()


def decode_text(raw: bytes, encoding: str, *, source: str) -> str:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise FormatError(f"payload is not valid {encoding}: {exc}", source=source) from exc


def read_rows(text: str) -> List[List[str]]:
    """Split CSV text into rows, trimming cells and tolerating ragged lines."""
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    return [[cell.strip() for cell in row] for row in reader]


def find_header(
    rows: Sequence[Sequence[str]],
    anchors: Iterable[Matcher],
    *,
    source: str,
    first_cell_only: bool = False,
) -> int:
    """Return the index of the first row carrying an anchor cell, skipping any preamble."""
    anchor_list = list(anchors)
    for index, row in enumerate(rows):
        cells = [normalize_header(cell) for cell in row]
        if first_cell_only:
            cells = cells[:1]
        if any(anchor.matches(cell) for anchor in anchor_list for cell in cells if cell):
            return index
    raise FormatError(
        "header row not found",
        source=source,
        expected=[anchor.text for anchor in anchor_list],
    )


def cell(row: Sequence[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def parse_number(text: str) -> float | None:
    """Parse a locale-formatted number; None when the cell is blank.

    Raises ValueError for text that is not a finite number ("N/A", "nan", "inf").
    """
    cleaned = unicodedata.normalize("NFKC", text or "").strip().replace(",", "")
    if not cleaned or cleaned in {"-", "--", "―"}:
        return None
    value = float(cleaned)
    if not math.isfinite(value):
        raise ValueError(f"non-finite number '{text}'")
    return value


def completeness_warning(hours: int, *, source: str, date: str) -> str | None:
    if hours >= EXPECTED_HOURS:
        return None
    LOGGER.warning("%s: only %d of %d hours present for %s", source, hours, EXPECTED_HOURS, date)
    return f"Data for {hours} hours available (expected {EXPECTED_HOURS})"
