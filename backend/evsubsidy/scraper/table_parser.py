"""Markup -> subsidy records for the two ev.or.kr table shapes.

Strategy:
  1. Parse the rendered page with BeautifulSoup (lxml, falling back to
     html.parser).
  2. Pick the table with the most body rows. The page embeds several tables
     (search form, legend, data) and the data table's position moves.
  3. Pick a cell layout (flat text or <br>-separated parts) by inspecting
     the chosen table's cells.
  4. Map rows positionally into the shape's record. Rows below the
     configured minimum cell count are dropped; a bad cell becomes 0 / "".

`parse` never raises. A page it cannot make sense of yields [] and a
warning in the log.
"""

import logging

from bs4 import BeautifulSoup, Tag

from evsubsidy.config import Settings
from evsubsidy.models import (
    Quantities,
    QuotaRecord,
    SubsidyRecord,
    TableShape,
    VehiclePriceRecord,
)
from evsubsidy.scraper.cells import (
    LAYOUTS,
    CellLayout,
    CellValue,
    cell_text,
    parse_amount,
    parse_int,
    parse_quantities,
    row_cells,
    select_layout,
)

logger = logging.getLogger(__name__)

DISCONTINUED_MARKER = "(단종)"

# Wide quota layout: every quantity in its own cell.
#   sido(0) region(1) vehicle(2) quota(3-7) registered(8-12)
#   delivered(13-17) remaining(18-22) note(23)
WIDE_QUOTA_GROUPS = {
    "quota": 3,
    "registered": 8,
    "delivered": 13,
    "remaining": 18,
}
WIDE_QUOTA_NOTE = 23

# Compact quota layout: one compound cell per quantity group.
#   sido(0) region(1) vehicle(2) announcement(3) method(4)
#   quota(5) registered(6) delivered(7) remaining(8) note(9)
COMPACT_QUOTA_GROUPS = {
    "quota": 5,
    "registered": 6,
    "delivered": 7,
    "remaining": 8,
}
COMPACT_QUOTA_NOTE = 9


# ---------------------------------------------------------------------------
# Table helpers
# ---------------------------------------------------------------------------

def parse_soup(markup: str) -> BeautifulSoup:
    """Parse HTML into BeautifulSoup, trying lxml first then html.parser."""
    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:
        return BeautifulSoup(markup, "html.parser")


def body_rows(table: Tag) -> list[Tag]:
    """Rows of `table` (not of nested tables) that carry at least one <td>."""
    rows = []
    for tr in table.find_all("tr"):
        if tr.find_parent("table") is not table:
            continue
        if row_cells(tr):
            rows.append(tr)
    return rows


def select_largest_table(tables: list[Tag]) -> Tag | None:
    """Table with the most body rows; ties go to the first occurrence."""
    best = None
    best_count = -1
    for table in tables:
        count = len(body_rows(table))
        if count > best_count:
            best = table
            best_count = count
    return best


def _at(cells: list[CellValue], index: int) -> CellValue:
    return cells[index] if index < len(cells) else ""


def _wide_quantities(cells: list[CellValue], start: int) -> Quantities:
    values = [parse_int(cell_text(_at(cells, start + i))) for i in range(5)]
    return Quantities(
        total=values[0],
        priority=values[1],
        corporate=values[2],
        taxi=values[3],
        general=values[4],
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class TableParser:
    """Extracts records of one table shape from rendered page markup."""

    def __init__(
        self,
        shape: TableShape,
        min_cells: int,
        wide_min_cells: int = 24,
        price_unit: int = 10_000,
        layouts: list[CellLayout] | None = None,
    ):
        self.shape = shape
        self.min_cells = min_cells
        self.wide_min_cells = wide_min_cells
        self.price_unit = price_unit
        self.layouts = layouts or LAYOUTS

    @classmethod
    def from_settings(cls, shape: TableShape, settings: Settings) -> "TableParser":
        if shape == TableShape.QUOTA:
            return cls(
                shape,
                min_cells=settings.QUOTA_MIN_CELLS,
                wide_min_cells=settings.QUOTA_WIDE_MIN_CELLS,
            )
        return cls(
            shape,
            min_cells=settings.PRICE_MIN_CELLS,
            price_unit=settings.PRICE_UNIT,
        )

    def select_table(self, soup: BeautifulSoup) -> Tag | None:
        return select_largest_table(soup.find_all("table"))

    def parse(self, markup: str | None) -> list[SubsidyRecord]:
        if not markup or not isinstance(markup, str):
            logger.warning(f"{self.shape.value}: empty markup, nothing to parse")
            return []
        try:
            return self._parse(markup)
        except Exception as e:
            logger.warning(f"{self.shape.value}: table parsing failed: {e}")
            return []

    def _parse(self, markup: str) -> list[SubsidyRecord]:
        soup = parse_soup(markup)
        table = self.select_table(soup)
        if table is None:
            logger.warning(f"{self.shape.value}: no <table> found in markup")
            return []

        rows = body_rows(table)
        layout = select_layout(rows, self.layouts)

        records: list[SubsidyRecord] = []
        rejected = 0
        for index, row in enumerate(rows):
            cells = layout.extract_row(row)
            if len(cells) < self.min_cells:
                rejected += 1
                continue
            try:
                record = self._map_row(cells)
            except Exception as e:
                logger.warning(f"{self.shape.value}: row {index} skipped: {e}")
                rejected += 1
                continue
            if record is None:
                rejected += 1
                continue
            records.append(record)

        if rejected:
            logger.debug(
                f"{self.shape.value}: {rejected}/{len(rows)} rows below threshold or unmappable"
            )
        if rows and not records:
            logger.warning(
                f"{self.shape.value}: table has {len(rows)} rows but none reached "
                f"{self.min_cells} cells; upstream layout may have changed"
            )

        if self.shape == TableShape.PRICE:
            return self._dedupe_prices(records)
        return records

    def _map_row(self, cells: list[CellValue]) -> SubsidyRecord | None:
        if self.shape == TableShape.QUOTA:
            return self._map_quota(cells)
        return self._map_price(cells)

    def _map_quota(self, cells: list[CellValue]) -> QuotaRecord:
        if len(cells) >= self.wide_min_cells:
            return QuotaRecord(
                area_prefix=cell_text(cells[0]),
                area_suffix=cell_text(cells[1]),
                vehicle_class=cell_text(cells[2]),
                note=cell_text(_at(cells, WIDE_QUOTA_NOTE)),
                **{
                    group: _wide_quantities(cells, start)
                    for group, start in WIDE_QUOTA_GROUPS.items()
                },
            )

        return QuotaRecord(
            area_prefix=cell_text(cells[0]),
            area_suffix=cell_text(_at(cells, 1)),
            vehicle_class=cell_text(_at(cells, 2)),
            announcement=cell_text(_at(cells, 3)),
            registration_method=cell_text(_at(cells, 4)),
            note=cell_text(_at(cells, COMPACT_QUOTA_NOTE)),
            **{
                group: parse_quantities(_at(cells, index))
                for group, index in COMPACT_QUOTA_GROUPS.items()
            },
        )

    def _map_price(self, cells: list[CellValue]) -> VehiclePriceRecord | None:
        manufacturer = cell_text(cells[1])
        model = cell_text(cells[2])
        if not manufacturer or not model:
            return None
        return VehiclePriceRecord(
            vehicle_type=cell_text(cells[0]),
            manufacturer=manufacturer,
            model=model,
            national_subsidy=parse_amount(cell_text(_at(cells, 3)), self.price_unit),
            local_subsidy=parse_amount(cell_text(_at(cells, 4)), self.price_unit),
            total_subsidy=parse_amount(cell_text(_at(cells, 5)), self.price_unit),
            discontinued=DISCONTINUED_MARKER in model,
        )

    @staticmethod
    def _dedupe_prices(records: list[VehiclePriceRecord]) -> list[VehiclePriceRecord]:
        """One record per (manufacturer, model); a later row replaces an earlier one."""
        by_key: dict[tuple[str, str], VehiclePriceRecord] = {}
        for record in records:
            by_key[record.key] = record
        return list(by_key.values())
