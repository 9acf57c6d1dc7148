"""Tests for cell extraction and table parsing.

Covers:
1. Compound quantity cells in flat text and <br>-separated form.
2. Largest-table selection when the page embeds several tables.
3. Row thresholds (compact 10-cell and wide 24-cell quota rows).
4. Price amounts scaled from 만원, discontinued flag, duplicate models.
5. parse() never raises and is stable across repeated calls.

Run with: python -m pytest backend/evsubsidy/scraper/tests/test_cells_and_parser.py -v
Or standalone: python backend/evsubsidy/scraper/tests/test_cells_and_parser.py
"""

import sys
import os

# Allow running from repo root without installed package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from evsubsidy.models import Quantities, TableShape
from evsubsidy.scraper.cells import (
    FlatTextLayout,
    MultiValueLayout,
    parse_amount,
    parse_compound,
    parse_int,
    parse_quantities,
    select_layout,
)
from evsubsidy.scraper.table_parser import (
    TableParser,
    body_rows,
    parse_soup,
    select_largest_table,
)


# ===================================================================
# HTML fixture helpers
# ===================================================================

def _td(*cells):
    return "".join(f"<td>{c}</td>" for c in cells)


def quota_row(
    sido="경기",
    region="수원시",
    vehicle="전기승용",
    quota="10500 (1600) (0) (0) (8900)",
    registered="320 (20) (0) (0) (300)",
    delivered="150 (10) (0) (0) (140)",
    remaining="10030 (1570) (0) (0) (8460)",
    note="",
):
    return "<tr>" + _td(sido, region, vehicle, "공고문", "선착순", quota, registered, delivered, remaining, note) + "</tr>"


def price_row(vehicle_type="승용", manufacturer="폭스바겐", model="ID.4 Pro", national="423", local="184.5", total="607.5"):
    return "<tr>" + _td(vehicle_type, manufacturer, model, national, local, total) + "</tr>"


def page(*tables):
    body = "".join(f"<table>{t}</table>" for t in tables)
    return f"<html><body>{body}</body></html>"


QUOTA_HEADER = "<tr><th>시도</th><th>지역</th><th>차종</th></tr>"


def quota_parser():
    return TableParser(TableShape.QUOTA, min_cells=10, wide_min_cells=24)


def price_parser():
    return TableParser(TableShape.PRICE, min_cells=6, price_unit=10_000)


# ===================================================================
# Unit tests: number parsing
# ===================================================================

def test_parse_int_strips_units_and_separators():
    assert parse_int("1,234대") == 1234
    assert parse_int("(404)") == 404
    assert parse_int("-") == 0
    assert parse_int("") == 0
    assert parse_int(None) == 0


def test_parse_amount_scales_man_won():
    assert parse_amount("423", 10_000) == 4_230_000
    assert parse_amount("184.5", 10_000) == 1_845_000
    assert parse_amount("1,050", 10_000) == 10_500_000
    assert parse_amount("없음", 10_000) == 0
    assert parse_amount(None, 10_000) == 0


def test_parse_compound_with_spacing_and_commas():
    q = parse_compound("11351(3470)(404)(1194)(6283)")
    assert q == Quantities(total=11351, priority=3470, corporate=404, taxi=1194, general=6283)

    q = parse_compound("10500 (1600) (0) (0) (8900)")
    assert q == Quantities(total=10500, priority=1600, corporate=0, taxi=0, general=8900)

    q = parse_compound("1,200(100)(50)(25)(1,025)")
    assert q == Quantities(total=1200, priority=100, corporate=50, taxi=25, general=1025)


def test_parse_compound_single_total():
    assert parse_compound("350대") == Quantities(total=350)
    assert parse_compound("1,234대") == Quantities(total=1234)
    assert parse_compound("") == Quantities()


def test_parse_quantities_from_parts():
    assert parse_quantities(["100", "(10)", "(20)", "(30)", "(40)"]) == Quantities(
        total=100, priority=10, corporate=20, taxi=30, general=40
    )
    assert parse_quantities(["7", "3"]) == Quantities(total=7, priority=3)
    assert parse_quantities([]) == Quantities()


# ===================================================================
# Unit tests: layouts and table selection
# ===================================================================

def test_select_layout_prefers_multi_value_when_br_present():
    soup = parse_soup(page("<tr><td>1<br>2</td></tr>"))
    rows = body_rows(soup.find("table"))
    assert isinstance(select_layout(rows), MultiValueLayout)

    soup = parse_soup(page("<tr><td>1 2</td></tr>"))
    rows = body_rows(soup.find("table"))
    assert isinstance(select_layout(rows), FlatTextLayout)


def test_multi_value_layout_ignores_comments():
    soup = parse_soup(page("<tr><td>100<!-- hidden --><br>(10)</td></tr>"))
    td = soup.find("td")
    assert MultiValueLayout().extract_cell(td) == ["100", "(10)"]


def test_select_largest_table_picks_most_body_rows():
    small = "".join(price_row(model=f"A{i}") for i in range(2))
    big = "".join(price_row(model=f"M{i}") for i in range(9))
    mid = "".join(price_row(model=f"B{i}") for i in range(5))
    soup = parse_soup(page(small, big, mid))

    table = select_largest_table(soup.find_all("table"))
    assert len(body_rows(table)) == 9

    records = price_parser().parse(page(small, big, mid))
    assert [r.model for r in records] == [f"M{i}" for i in range(9)]


def test_select_largest_table_tie_goes_to_first():
    first = price_row(model="first")
    second = price_row(model="second")
    records = price_parser().parse(page(first, second))
    assert [r.model for r in records] == ["first"]


def test_header_rows_are_not_body_rows():
    soup = parse_soup(page(QUOTA_HEADER + quota_row()))
    assert len(body_rows(soup.find("table"))) == 1


# ===================================================================
# Unit tests: quota parsing
# ===================================================================

def test_parse_compact_quota_row():
    records = quota_parser().parse(page(QUOTA_HEADER + quota_row(note="법인 별도")))
    assert len(records) == 1
    rec = records[0]
    assert rec.area_prefix == "경기"
    assert rec.area_suffix == "수원시"
    assert rec.vehicle_class == "전기승용"
    assert rec.announcement == "공고문"
    assert rec.registration_method == "선착순"
    assert rec.quota == Quantities(total=10500, priority=1600, corporate=0, taxi=0, general=8900)
    assert rec.registered.total == 320
    assert rec.delivered.general == 140
    assert rec.remaining == Quantities(total=10030, priority=1570, corporate=0, taxi=0, general=8460)
    assert rec.note == "법인 별도"
    assert rec.flag is None


def test_parse_br_separated_quota_cells():
    row = "<tr>" + _td(
        "서울", "서울특별시", "전기승용", "공고문", "선착순",
        "100<br>(10)<br>(20)<br>(30)<br>(40)",
        "5<br>(1)<br>(1)<br>(1)<br>(2)",
        "3<br>(0)<br>(1)<br>(1)<br>(1)",
        "95<br>(9)<br>(19)<br>(29)<br>(38)",
        "",
    ) + "</tr>"
    records = quota_parser().parse(page(row))
    assert len(records) == 1
    rec = records[0]
    assert rec.area_suffix == "서울특별시"
    assert rec.quota == Quantities(total=100, priority=10, corporate=20, taxi=30, general=40)
    assert rec.remaining == Quantities(total=95, priority=9, corporate=19, taxi=29, general=38)
    assert rec.note == ""


def test_parse_wide_quota_row():
    numbers = [100, 10, 20, 30, 40, 5, 1, 1, 1, 2, 3, 0, 1, 1, 1, 95, 9, 19, 29, 38]
    row = "<tr>" + _td("부산", "부산광역시", "전기승용", *numbers, "비고") + "</tr>"
    records = quota_parser().parse(page(row))
    assert len(records) == 1
    rec = records[0]
    assert rec.quota == Quantities(total=100, priority=10, corporate=20, taxi=30, general=40)
    assert rec.registered == Quantities(total=5, priority=1, corporate=1, taxi=1, general=2)
    assert rec.delivered == Quantities(total=3, priority=0, corporate=1, taxi=1, general=1)
    assert rec.remaining == Quantities(total=95, priority=9, corporate=19, taxi=29, general=38)
    assert rec.note == "비고"


def test_rows_below_threshold_are_dropped():
    short = "<tr>" + _td("경기", "수원시", "전기승용", "1", "2") + "</tr>"
    records = quota_parser().parse(page(short + quota_row() + short))
    assert len(records) == 1

    assert quota_parser().parse(page(short * 3)) == []


def test_accepted_never_exceeds_body_rows():
    short = "<tr>" + _td("x") + "</tr>"
    markup = page(QUOTA_HEADER + quota_row() + short + quota_row(region="용인시"))
    soup = parse_soup(markup)
    rows = body_rows(select_largest_table(soup.find_all("table")))
    records = quota_parser().parse(markup)
    assert len(records) <= len(rows)
    assert [r.area_suffix for r in records] == ["수원시", "용인시"]


def test_unparsable_numbers_become_zero():
    records = quota_parser().parse(page(quota_row(quota="-", registered="", delivered="N/A")))
    rec = records[0]
    assert rec.quota == Quantities()
    assert rec.registered == Quantities()
    assert rec.delivered == Quantities()


# ===================================================================
# Unit tests: price parsing
# ===================================================================

def test_parse_price_row_scales_amounts():
    records = price_parser().parse(page(price_row()))
    assert len(records) == 1
    rec = records[0]
    assert rec.vehicle_type == "승용"
    assert rec.manufacturer == "폭스바겐"
    assert rec.model == "ID.4 Pro"
    assert rec.national_subsidy == 4_230_000
    assert rec.local_subsidy == 1_845_000
    assert rec.total_subsidy == 6_075_000
    assert rec.discontinued is False


def test_discontinued_model_is_flagged():
    records = price_parser().parse(page(price_row(model="ID.4 Pro (단종)")))
    assert records[0].discontinued is True


def test_price_rows_without_model_are_skipped():
    records = price_parser().parse(page(price_row(model="") + price_row()))
    assert [r.model for r in records] == ["ID.4 Pro"]


def test_duplicate_models_keep_last_row():
    markup = page(
        price_row(model="ID.4 Pro", local="100")
        + price_row(model="ID.5 GTX", local="120")
        + price_row(model="ID.4 Pro", local="150")
    )
    records = price_parser().parse(markup)
    assert len(records) == 2
    by_model = {r.model: r for r in records}
    assert by_model["ID.4 Pro"].local_subsidy == 1_500_000
    assert by_model["ID.5 GTX"].local_subsidy == 1_200_000


# ===================================================================
# Unit tests: robustness
# ===================================================================

def test_parse_never_raises_on_garbage():
    parser = quota_parser()
    assert parser.parse(None) == []
    assert parser.parse("") == []
    assert parser.parse("<html><body>no tables here</body></html>") == []
    assert parser.parse("<table><tr><td>") == []


def test_parse_is_stable_across_calls():
    markup = page(QUOTA_HEADER + quota_row() + quota_row(region="용인시"))
    parser = quota_parser()
    assert parser.parse(markup) == parser.parse(markup)


# ===================================================================
# Standalone runner
# ===================================================================

def _run_all():
    """Run all tests and report results."""
    tests = [
        (name, func)
        for name, func in sorted(globals().items())
        if name.startswith("test_") and callable(func)
    ]

    passed = 0
    failed = 0
    errors = []

    for name, func in tests:
        try:
            func()
            passed += 1
            print(f"  PASS  {name}")
        except AssertionError as e:
            failed += 1
            errors.append((name, str(e)))
            print(f"  FAIL  {name}: {e}")
        except Exception as e:
            failed += 1
            errors.append((name, f"ERROR: {e}"))
            print(f"  ERROR {name}: {e}")

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed, {passed + failed} total")
    print(f"{'='*60}")

    if errors:
        print("\nFailures:")
        for name, msg in errors:
            print(f"  - {name}: {msg}")
        return False
    return True


if __name__ == "__main__":
    print("Running table parser tests...\n")
    success = _run_all()
    sys.exit(0 if success else 1)
