"""Cell-level extraction for ev.or.kr subsidy tables.

The portal has shipped the same numbers in several shapes over time:

    "11351(3470)(404)(1194)(6283)"          one cell, parenthesized
    "11351 (3470) (404) (1194) (6283)"      same, with spacing
    "11351<br>(3470)<br>(404)<br>..."       one cell, <br>-separated parts
    "1,234대"                               single total with a unit suffix

Column headers are not stable, so extraction is positional. Two cell layouts
are supported and picked per table by inspecting cell structure:

    FlatTextLayout   -> each cell is a whitespace-collapsed string
    MultiValueLayout -> each cell is an ordered list of <br>-separated parts

Layouts are tried in order; first match wins. A new layout only needs a
`matches` / `extract_cell` pair and a place in LAYOUTS.
"""

import logging
import re
from typing import Union

from bs4 import Comment, NavigableString, Tag

from evsubsidy.models import Quantities

logger = logging.getLogger(__name__)

# A cell as produced by a layout: plain text or an ordered list of parts.
CellValue = Union[str, list[str]]


# ---------------------------------------------------------------------------
# Text / number normalization
# ---------------------------------------------------------------------------

def collapse_whitespace(text: str | None) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def parse_int(text: str | None) -> int:
    """Strip everything but digits and parse; anything unparsable is 0.

    Examples:
        "1,234대" -> 1234
        "(404)"   -> 404
        "-"       -> 0
        None      -> 0
    """
    if not text:
        return 0
    digits = re.sub(r"[^\d]", "", str(text))
    if not digits:
        return 0
    try:
        return int(digits)
    except ValueError:
        return 0


_AMOUNT_RE = re.compile(r"\d+(?:\.\d+)?")


def parse_amount(text: str | None, unit: int = 1) -> int:
    """Parse a subsidy amount (published in 만원) and scale it by `unit`.

    Thousands separators are dropped; a decimal part is kept before scaling
    so "184.5" with unit 10000 gives 1845000.
    """
    if not text:
        return 0
    cleaned = str(text).replace(",", "")
    match = _AMOUNT_RE.search(cleaned)
    if not match:
        return 0
    try:
        return int(round(float(match.group(0)) * unit))
    except (ValueError, OverflowError):
        return 0


_COMPOUND_RE = re.compile(
    r"(\d[\d,]*)\s*\(\s*(\d[\d,]*)\s*\)\s*\(\s*(\d[\d,]*)\s*\)"
    r"\s*\(\s*(\d[\d,]*)\s*\)\s*\(\s*(\d[\d,]*)\s*\)"
)


def parse_compound(text: str | None) -> Quantities:
    """Decompose "TOTAL(A)(B)(C)(D)" into total/priority/corporate/taxi/general.

    Anything that does not match the five-part pattern is read as a single
    total with the other four quantities at 0.
    """
    if not text or not isinstance(text, str):
        return Quantities()

    match = _COMPOUND_RE.search(text)
    if match:
        total, priority, corporate, taxi, general = (parse_int(g) for g in match.groups())
        return Quantities(
            total=total,
            priority=priority,
            corporate=corporate,
            taxi=taxi,
            general=general,
        )

    return Quantities(total=parse_int(text))


def parse_quantities(cell: CellValue) -> Quantities:
    """Read a quantity cell produced by either layout."""
    if isinstance(cell, str):
        return parse_compound(cell)

    parts = [p for p in cell if p]
    if not parts:
        return Quantities()

    joined = "".join(parts)
    if _COMPOUND_RE.search(joined) or len(parts) == 1:
        return parse_compound(joined)

    values = [parse_int(p) for p in parts[:5]]
    values += [0] * (5 - len(values))
    return Quantities(
        total=values[0],
        priority=values[1],
        corporate=values[2],
        taxi=values[3],
        general=values[4],
    )


def cell_text(cell: CellValue) -> str:
    """Flatten a cell from either layout to display text."""
    if isinstance(cell, str):
        return cell
    return collapse_whitespace(" ".join(cell))


# ---------------------------------------------------------------------------
# Cell layouts
# ---------------------------------------------------------------------------

def row_cells(row: Tag) -> list[Tag]:
    """Direct <td> children of a row (header <th> cells are not data)."""
    return row.find_all("td", recursive=False)


class CellLayout:
    name = "base"

    def matches(self, rows: list[Tag]) -> bool:
        raise NotImplementedError

    def extract_cell(self, cell: Tag) -> CellValue:
        raise NotImplementedError

    def extract_row(self, row: Tag) -> list[CellValue]:
        return [self.extract_cell(td) for td in row_cells(row)]


class FlatTextLayout(CellLayout):
    """Visible text of each cell, whitespace-collapsed."""

    name = "flat"

    def matches(self, rows: list[Tag]) -> bool:
        return True

    def extract_cell(self, cell: Tag) -> str:
        return collapse_whitespace(cell.get_text())


class MultiValueLayout(CellLayout):
    """Cells that pack several values separated by <br>."""

    name = "multi"

    def matches(self, rows: list[Tag]) -> bool:
        for row in rows:
            for td in row_cells(row):
                if td.find("br") is not None:
                    return True
        return False

    def extract_cell(self, cell: Tag) -> list[str]:
        parts: list[str] = []
        current: list[str] = []
        for node in cell.descendants:
            if isinstance(node, Tag):
                if node.name == "br":
                    parts.append("".join(current))
                    current = []
            elif isinstance(node, NavigableString) and not isinstance(node, Comment):
                current.append(str(node))
        parts.append("".join(current))
        return [p for p in (collapse_whitespace(x) for x in parts) if p]


# Tried in order; first match wins.
LAYOUTS: list[CellLayout] = [MultiValueLayout(), FlatTextLayout()]


def select_layout(rows: list[Tag], layouts: list[CellLayout] | None = None) -> CellLayout:
    for layout in layouts or LAYOUTS:
        if layout.matches(rows):
            logger.debug(f"Using cell layout '{layout.name}'")
            return layout
    return FlatTextLayout()
