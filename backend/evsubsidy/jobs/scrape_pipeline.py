"""Scrape pipeline executed by the CLI and the Celery worker.

Strategy per table kind:
  1. Load regions from the directory (sample mode keeps the first N).
  2. Load prior state from the last snapshot, or from the published sheet.
  3. Fetch every region page through one shared browser (batched).
  4. Reconcile with prior state, write the JSON snapshot, publish sheets.

`kind` "all" runs quota then price over the same region list and returns
one combined summary. Fatal errors (region directory, browser start) are
logged and re-raised; sheet publishing errors only land on the summary.
"""
import asyncio
import datetime
import logging
from pathlib import Path
from typing import AsyncContextManager, Callable

from evsubsidy.config import Settings, get_settings
from evsubsidy.errors import BrowserHostError, PublishError, RegionDirectoryError
from evsubsidy.models import (
    RawFetchOutcome,
    ReconciledResult,
    RecordFlag,
    Region,
    RunSummary,
    TableShape,
)
from evsubsidy.scraper.batch import BatchOrchestrator
from evsubsidy.scraper.region_directory import load_regions
from evsubsidy.scraper.session_runner import (
    BrowserHost,
    SessionRunner,
    price_url_builder,
    quota_url_builder,
)
from evsubsidy.scraper.table_parser import TableParser
from evsubsidy.services.reconciliation import MappingPriorState, PriorStateLookup, ReconciliationEngine
from evsubsidy.services.sheet_publisher import SheetPublisher
from evsubsidy.services.snapshot_writer import SnapshotWriter

logger = logging.getLogger(__name__)

KINDS: dict[str, list[TableShape]] = {
    "quota": [TableShape.QUOTA],
    "price": [TableShape.PRICE],
    "all": [TableShape.QUOTA, TableShape.PRICE],
}

HostFactory = Callable[[], AsyncContextManager]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _url_builder(shape: TableShape, settings: Settings):
    if shape == TableShape.QUOTA:
        return quota_url_builder(settings.QUOTA_URL)
    return price_url_builder(settings.PRICE_URL, settings.PRICE_YEAR, settings.PRICE_CAR_TYPE)


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def _compact(name: str) -> str:
    return "".join(name.split())


def distribute_single_fetch(representative: RawFetchOutcome, regions: list[Region]) -> list[RawFetchOutcome]:
    """Fan one page's records out to every region.

    A region takes the records whose area suffix (or prefix + suffix) equals
    its local name; the fetch result itself is shared by all regions.
    """
    outcomes = []
    for region in regions:
        local = _compact(region.local_area_name)
        records = tuple(
            rec for rec in representative.records
            if _compact(rec.area_suffix) == local
            or _compact(rec.area_prefix + rec.area_suffix) == local
        )
        outcomes.append(representative.model_copy(update={"region": region, "records": records}))
    return outcomes


async def fetch_outcomes(
    shape: TableShape,
    regions: list[Region],
    settings: Settings,
    host_factory: HostFactory | None = None,
) -> list[RawFetchOutcome]:
    parser = TableParser.from_settings(shape, settings)
    url_builder = _url_builder(shape, settings)
    host_factory = host_factory or (lambda: BrowserHost(headless=settings.HEADLESS))

    orchestrator = BatchOrchestrator(
        host_factory=host_factory,
        fetch_factory=lambda host: SessionRunner.from_settings(host, parser, url_builder, settings).fetch_region,
        concurrency_limit=settings.CONCURRENCY,
        batch_delay=settings.BATCH_DELAY,
    )

    if shape == TableShape.QUOTA and settings.QUOTA_SINGLE_FETCH and regions:
        logger.info(f"Single-fetch mode: using {regions[0].display_name} as the representative page")
        representative = (await orchestrator.run_all(regions[:1]))[0]
        return distribute_single_fetch(representative, regions)

    return await orchestrator.run_all(regions)


# ---------------------------------------------------------------------------
# Prior state / publishing
# ---------------------------------------------------------------------------

def connect_publisher(settings: Settings) -> SheetPublisher | None:
    if not settings.GOOGLE_SHEETS_ID:
        logger.info("GOOGLE_SHEETS_ID not set, skipping sheet publishing")
        return None
    if not Path(settings.GOOGLE_SERVICE_ACCOUNT_FILE).exists():
        logger.warning(f"Service account file not found: {settings.GOOGLE_SERVICE_ACCOUNT_FILE}")
        return None
    return SheetPublisher.connect(settings)


def load_prior_state(
    shape: TableShape,
    settings: Settings,
    writer: SnapshotWriter,
    publisher: SheetPublisher | None = None,
) -> PriorStateLookup:
    if settings.PRIOR_STATE_SOURCE.lower() == "sheet" and publisher is not None:
        try:
            return publisher.load_prior_state(shape)
        except Exception as e:
            logger.warning(f"Could not read prior state from sheet, using snapshot: {e}")

    payload = writer.load()
    if payload is None:
        logger.info(f"No previous {shape.value} snapshot (first run)")
        return MappingPriorState()
    state = MappingPriorState.from_snapshot(payload, shape)
    logger.info(f"Loaded prior {shape.value} state for {len(state)} regions from {writer.path}")
    return state


def _is_placeholder(result: ReconciledResult) -> bool:
    return bool(result.records) and all(r.flag is not None for r in result.records)


def summarize(summary: RunSummary, results: list[ReconciledResult]) -> RunSummary:
    summary.total_regions = len(results)
    summary.success_count = sum(1 for r in results if r.success)
    summary.failed_count = summary.total_regions - summary.success_count
    summary.fallback_count = sum(
        1 for r in results
        if r.used_fallback and not any(rec.flag == RecordFlag.FETCH_FAILED for rec in r.records)
    )
    summary.placeholder_count = sum(1 for r in results if _is_placeholder(r))
    summary.record_count = sum(len(r.records) for r in results if not _is_placeholder(r))
    return summary


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def run_table(
    shape: TableShape,
    regions: list[Region],
    settings: Settings,
    publisher: SheetPublisher | None = None,
    host_factory: HostFactory | None = None,
) -> RunSummary:
    summary = RunSummary(kind=shape.value, started_at=utcnow())
    writer = SnapshotWriter(settings.DATA_DIR, shape)

    prior_state = load_prior_state(shape, settings, writer, publisher)
    outcomes = asyncio.run(fetch_outcomes(shape, regions, settings, host_factory))

    engine = ReconciliationEngine(shape)
    results = engine.reconcile(outcomes, prior_state)
    summarize(summary, results)

    extra = None
    if shape == TableShape.PRICE:
        extra = {"manufacturer": settings.TARGET_MANUFACTURER, "keywords": settings.keywords}
    summary.snapshot_path = str(writer.write(results, engine.ledger, extra))

    if publisher is not None:
        try:
            publisher.publish(shape, results, engine.ledger)
            summary.published = True
        except PublishError as e:
            logger.error(f"{shape.value}: {e}")
            summary.errors.append(str(e))

    summary.finished_at = utcnow()
    logger.info(
        f"{shape.value} finished: {summary.success_count}/{summary.total_regions} fetched, "
        f"{summary.fallback_count} from prior data, {summary.placeholder_count} placeholders, "
        f"{summary.record_count} records"
    )
    return summary


def combine(kind: str, started_at: datetime.datetime, parts: list[RunSummary]) -> RunSummary:
    if len(parts) == 1:
        return parts[0]
    combined = RunSummary(kind=kind, started_at=started_at, finished_at=utcnow())
    for part in parts:
        combined.total_regions += part.total_regions
        combined.success_count += part.success_count
        combined.failed_count += part.failed_count
        combined.fallback_count += part.fallback_count
        combined.placeholder_count += part.placeholder_count
        combined.record_count += part.record_count
        combined.errors.extend(part.errors)
    combined.published = bool(parts) and all(p.published for p in parts)
    combined.parts = list(parts)
    return combined


def execute_scrape_pipeline(
    kind: str,
    settings: Settings | None = None,
    publish: bool = True,
    host_factory: HostFactory | None = None,
) -> RunSummary:
    if kind not in KINDS:
        raise ValueError(f"Unknown kind '{kind}', expected one of {sorted(KINDS)}")
    settings = settings or get_settings()
    started_at = utcnow()
    parts: list[RunSummary] = []
    setup_errors: list[str] = []

    try:
        sample_size = settings.SAMPLE_SIZE if settings.sample_mode else None
        regions = load_regions(settings.REGION_DIRECTORY_URL, sample_size)

        publisher = None
        if publish:
            try:
                publisher = connect_publisher(settings)
            except PublishError as e:
                logger.error(str(e))
                setup_errors.append(str(e))

        for shape in KINDS[kind]:
            parts.append(run_table(shape, regions, settings, publisher, host_factory))

    except (RegionDirectoryError, BrowserHostError) as e:
        logger.exception(f"Scrape pipeline failed: {e}")
        raise

    summary = combine(kind, started_at, parts)
    summary.errors = setup_errors + summary.errors
    return summary
