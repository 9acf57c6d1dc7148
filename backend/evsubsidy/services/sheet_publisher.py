"""Google Sheets publishing of reconciled results.

Sheets written (titles come from settings):

    접수현황 (quota)          one row per region x vehicle class
    보조금 ALL (price)        one row per region x (manufacturer, model)
    보조금 DATA (summary)     one row per region, local subsidy per keyword
    Fail Data[_Quota]         failure ledger, cleared and rewritten each run

Every sheet is cleared and rewritten whole, except the summary sheet whose
first two rows are left alone; row order follows the region order of the run. The quota and price sheets double as prior state: their
rows can be read back into records keyed by (지역명 앞, 지역명 뒤).
"""

import datetime
import logging
from zoneinfo import ZoneInfo

import gspread
from google.oauth2.service_account import Credentials

from evsubsidy.config import Settings
from evsubsidy.errors import PublishError
from evsubsidy.models import (
    Quantities,
    QuotaRecord,
    ReconciledResult,
    RecordFlag,
    TableShape,
    VehiclePriceRecord,
)
from evsubsidy.scraper.cells import parse_int
from evsubsidy.scraper.table_parser import DISCONTINUED_MARKER
from evsubsidy.services.reconciliation import (
    FETCH_FAILED_LABEL,
    FETCH_FAILED_NOTE,
    NO_DATA_LABEL,
    FailureLedger,
    MappingPriorState,
)
from evsubsidy.services.region_names import AreaName, region_key

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
KST = ZoneInfo("Asia/Seoul")

QUOTA_HEADERS = [
    "지역명(앞)", "지역명(뒤)", "차량구분", "공고", "접수방법",
    "전체", "우선순위", "법인/기관", "택시", "일반",
    "접수대수", "출고대수", "잔여대수", "비고",
]

PRICE_HEADERS = [
    "지역명(앞)", "지역명(뒤)", "차종", "제조사", "모델", "모델명", "단종",
    "국비", "지방비", "합계",
]

FAIL_HEADERS = ["지역명", "에러메시지", "시도횟수", "타임스탬프"]

# Summary sheet: rows 1-2 are a hand-maintained banner, Z2 holds the update
# time, the keyword table starts at row 3.
SUMMARY_HEADER_CELL = "A3"
SUMMARY_CLEAR_RANGE = "A3:ZZ"
SUMMARY_TIMESTAMP_CELL = "Z2"


def format_kst(ts: datetime.datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts.astimezone(KST).strftime("%Y-%m-%d %H:%M:%S")


def display_model(model: str) -> str:
    return model.replace(DISCONTINUED_MARKER, "").strip()


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def quota_rows(results: list[ReconciledResult]) -> list[list]:
    rows = [list(QUOTA_HEADERS)]
    for result in results:
        key = region_key(result.region)
        for rec in result.records:
            rows.append([
                key.prefix,
                key.suffix,
                rec.vehicle_class,
                rec.announcement,
                rec.registration_method,
                rec.quota.total,
                rec.quota.priority,
                rec.quota.corporate,
                rec.quota.taxi,
                rec.quota.general,
                rec.registered.total,
                rec.delivered.total,
                rec.remaining.total,
                rec.note,
            ])
    return rows


def price_rows(results: list[ReconciledResult]) -> list[list]:
    rows = [list(PRICE_HEADERS)]
    for result in results:
        key = region_key(result.region)
        for rec in result.records:
            rows.append([
                key.prefix,
                key.suffix,
                rec.vehicle_type,
                rec.manufacturer,
                rec.model,
                display_model(rec.model),
                "Y" if rec.discontinued else "",
                rec.national_subsidy,
                rec.local_subsidy,
                rec.total_subsidy,
            ])
    return rows


def pick_keyword_models(
    records: list[VehiclePriceRecord],
    manufacturer: str,
    keywords: list[str],
) -> dict[str, VehiclePriceRecord]:
    """First model of `manufacturer` matching each keyword.

    A discontinued model is replaced by a later non-discontinued match.
    """
    chosen: dict[str, VehiclePriceRecord] = {}
    for rec in records:
        if rec.flag is not None or manufacturer not in rec.manufacturer:
            continue
        for keyword in keywords:
            if keyword not in rec.model:
                continue
            current = chosen.get(keyword)
            if current is None or (current.discontinued and not rec.discontinued):
                chosen[keyword] = rec
    return chosen


def summary_rows(
    results: list[ReconciledResult],
    manufacturer: str,
    keywords: list[str],
    unit: int = 10_000,
) -> list[list]:
    """Local subsidy per keyword, in 만원, one row per region."""
    rows = [["시/도", "시/군/구", *keywords]]
    for result in results:
        key = region_key(result.region)
        chosen = pick_keyword_models(list(result.records), manufacturer, keywords)
        row = [key.prefix, key.suffix]
        for keyword in keywords:
            rec = chosen.get(keyword)
            row.append(rec.local_subsidy // unit if rec else 0)
        rows.append(row)
    return rows


def failure_rows(ledger: FailureLedger) -> list[list]:
    rows = [list(FAIL_HEADERS)]
    for entry in ledger:
        rows.append([entry.region, entry.error_message, entry.attempts, format_kst(entry.timestamp)])
    return rows


# ---------------------------------------------------------------------------
# Sheet rows -> prior state
# ---------------------------------------------------------------------------

def _flag_for(label: str, note: str = "") -> RecordFlag | None:
    if label == FETCH_FAILED_LABEL and note == FETCH_FAILED_NOTE:
        return RecordFlag.FETCH_FAILED
    if label == NO_DATA_LABEL:
        return RecordFlag.NO_DATA
    return None


def _text(value) -> str:
    return "" if value is None else str(value).strip()


def quota_prior_state(records: list[dict]) -> MappingPriorState:
    state = MappingPriorState()
    for row in records:
        key = AreaName(_text(row.get("지역명(앞)")), _text(row.get("지역명(뒤)")))
        vehicle_class = _text(row.get("차량구분"))
        note = _text(row.get("비고"))
        state.add(key, [QuotaRecord(
            area_prefix=key.prefix,
            area_suffix=key.suffix,
            vehicle_class=vehicle_class,
            announcement=_text(row.get("공고")),
            registration_method=_text(row.get("접수방법")),
            quota=Quantities(
                total=parse_int(_text(row.get("전체"))),
                priority=parse_int(_text(row.get("우선순위"))),
                corporate=parse_int(_text(row.get("법인/기관"))),
                taxi=parse_int(_text(row.get("택시"))),
                general=parse_int(_text(row.get("일반"))),
            ),
            registered=Quantities(total=parse_int(_text(row.get("접수대수")))),
            delivered=Quantities(total=parse_int(_text(row.get("출고대수")))),
            remaining=Quantities(total=parse_int(_text(row.get("잔여대수")))),
            note=note,
            flag=_flag_for(vehicle_class, note),
        )])
    return state


def price_prior_state(records: list[dict]) -> MappingPriorState:
    state = MappingPriorState()
    for row in records:
        key = AreaName(_text(row.get("지역명(앞)")), _text(row.get("지역명(뒤)")))
        vehicle_type = _text(row.get("차종"))
        model = _text(row.get("모델"))
        flag = None
        if not model:
            flag = RecordFlag.NO_DATA if vehicle_type == NO_DATA_LABEL else RecordFlag.FETCH_FAILED
        state.add(key, [VehiclePriceRecord(
            vehicle_type=vehicle_type,
            manufacturer=_text(row.get("제조사")),
            model=model,
            national_subsidy=parse_int(_text(row.get("국비"))),
            local_subsidy=parse_int(_text(row.get("지방비"))),
            total_subsidy=parse_int(_text(row.get("합계"))),
            discontinued=DISCONTINUED_MARKER in model,
            flag=flag,
        )])
    return state


# ---------------------------------------------------------------------------
# Spreadsheet access
# ---------------------------------------------------------------------------

def find_worksheet(spreadsheet, title: str):
    for ws in spreadsheet.worksheets():
        if ws.title.strip().lower() == title.strip().lower():
            return ws
    return None


def upsert_sheet(spreadsheet, title: str, rows: list[list]):
    worksheet = find_worksheet(spreadsheet, title)
    if worksheet is None:
        logger.info(f"Creating sheet '{title}'")
        worksheet = spreadsheet.add_worksheet(title=title, rows=1, cols=1)
    elif worksheet.title != title:
        worksheet.update_title(title)

    worksheet.clear()
    if rows:
        worksheet.update(range_name="A1", values=rows, value_input_option="RAW")
    logger.info(f"Sheet '{title}': wrote {max(len(rows) - 1, 0)} rows")
    return worksheet


def write_summary_sheet(spreadsheet, title: str, rows: list[list], stamp: str):
    """Rewrite the keyword table from row 3 down, keeping rows 1-2."""
    worksheet = find_worksheet(spreadsheet, title)
    if worksheet is None:
        logger.info(f"Creating sheet '{title}'")
        worksheet = spreadsheet.add_worksheet(title=title, rows=len(rows) + 2, cols=26)

    worksheet.batch_clear([SUMMARY_CLEAR_RANGE])
    if rows:
        worksheet.update(range_name=SUMMARY_HEADER_CELL, values=rows, value_input_option="RAW")
    worksheet.update(range_name=SUMMARY_TIMESTAMP_CELL, values=[[stamp]])
    logger.info(f"Sheet '{title}': wrote {max(len(rows) - 1, 0)} rows")
    return worksheet


class SheetPublisher:
    def __init__(self, spreadsheet, settings: Settings):
        self.spreadsheet = spreadsheet
        self.settings = settings

    @classmethod
    def connect(cls, settings: Settings) -> "SheetPublisher":
        try:
            creds = Credentials.from_service_account_file(
                settings.GOOGLE_SERVICE_ACCOUNT_FILE, scopes=SCOPES
            )
            client = gspread.authorize(creds)
            spreadsheet = client.open_by_key(settings.GOOGLE_SHEETS_ID)
        except Exception as e:
            raise PublishError(f"Could not open spreadsheet {settings.GOOGLE_SHEETS_ID}: {e}") from e
        logger.info(f"Connected to spreadsheet: {spreadsheet.title}")
        return cls(spreadsheet, settings)

    def _sheet_title(self, shape: TableShape) -> str:
        if shape == TableShape.QUOTA:
            return self.settings.SHEET_QUOTA
        return self.settings.SHEET_PRICE

    def load_prior_state(self, shape: TableShape) -> MappingPriorState:
        worksheet = find_worksheet(self.spreadsheet, self._sheet_title(shape))
        if worksheet is None:
            logger.info(f"No '{self._sheet_title(shape)}' sheet yet (first run)")
            return MappingPriorState()
        records = worksheet.get_all_records()
        if shape == TableShape.QUOTA:
            state = quota_prior_state(records)
        else:
            state = price_prior_state(records)
        logger.info(f"Loaded prior state for {len(state)} regions from sheet")
        return state

    def publish(self, shape: TableShape, results: list[ReconciledResult], ledger: FailureLedger):
        try:
            if shape == TableShape.QUOTA:
                upsert_sheet(self.spreadsheet, self.settings.SHEET_QUOTA, quota_rows(results))
                upsert_sheet(self.spreadsheet, self.settings.SHEET_QUOTA_FAIL, failure_rows(ledger))
            else:
                upsert_sheet(self.spreadsheet, self.settings.SHEET_PRICE, price_rows(results))
                write_summary_sheet(
                    self.spreadsheet,
                    self.settings.SHEET_PRICE_SUMMARY,
                    summary_rows(
                        results,
                        self.settings.TARGET_MANUFACTURER,
                        self.settings.keywords,
                        self.settings.PRICE_UNIT,
                    ),
                    format_kst(datetime.datetime.now(datetime.timezone.utc)),
                )
                upsert_sheet(self.spreadsheet, self.settings.SHEET_PRICE_FAIL, failure_rows(ledger))
        except Exception as e:
            raise PublishError(f"Publishing {shape.value} failed: {e}") from e
