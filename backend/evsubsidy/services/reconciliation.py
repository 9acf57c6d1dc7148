"""Merge fresh fetch outcomes with the previous run's data.

A transient scraping failure must never turn known-good numbers into zeros.
For each outcome:

    fetched, records found   -> fresh records
    fetched, no records      -> one NO_DATA placeholder (page had nothing)
    failed, prior records    -> prior records, used_fallback=True
    failed, no prior records -> one zero FETCH_FAILED placeholder, used_fallback=True

Prior data is looked up by the decomposed region name (see region_names)
through an injected PriorStateLookup, so the engine holds no global state
and can be fed synthetic fixtures in tests.

Every failed outcome also lands in the failure ledger, which is cleared at
the start of each reconcile() call.
"""

import logging
from typing import Iterable, Protocol

from evsubsidy.models import (
    RECORD_CLASSES,
    FailureEntry,
    QuotaRecord,
    RawFetchOutcome,
    ReconciledResult,
    RecordFlag,
    SubsidyRecord,
    TableShape,
    VehiclePriceRecord,
)
from evsubsidy.services.region_names import AreaName, decompose_region_name, region_key

logger = logging.getLogger(__name__)

NO_DATA_LABEL = "공고 없음"
FETCH_FAILED_LABEL = "데이터 없음"
FETCH_FAILED_NOTE = "스크래핑 실패"


# ---------------------------------------------------------------------------
# Prior state
# ---------------------------------------------------------------------------

class PriorStateLookup(Protocol):
    def records_for(self, key: AreaName) -> list[SubsidyRecord] | None:
        ...


class EmptyPriorState:
    """First run: nothing to fall back to."""

    def records_for(self, key: AreaName) -> list[SubsidyRecord] | None:
        return None

    def __len__(self) -> int:
        return 0


class MappingPriorState:
    """Prior records keyed by decomposed region name."""

    def __init__(self, records_by_key: dict[AreaName, list[SubsidyRecord]] | None = None):
        self._records: dict[AreaName, list[SubsidyRecord]] = {}
        for key, records in (records_by_key or {}).items():
            self.add(key, records)

    def add(self, key: AreaName, records: Iterable[SubsidyRecord]):
        self._records.setdefault(AreaName(*key), []).extend(records)

    def records_for(self, key: AreaName) -> list[SubsidyRecord] | None:
        records = self._records.get(AreaName(*key))
        if not records:
            return None
        # A stored "fetch failed" placeholder is not real data.
        if all(r.flag == RecordFlag.FETCH_FAILED for r in records):
            return None
        return list(records)

    def __len__(self) -> int:
        return len(self._records)

    @classmethod
    def from_snapshot(cls, payload: dict, shape: TableShape) -> "MappingPriorState":
        """Build from a snapshot previously written by SnapshotWriter.

        Malformed entries are skipped; a snapshot we cannot read is treated
        as no prior state rather than an error.
        """
        record_class = RECORD_CLASSES[shape]
        state = cls()
        for entry in payload.get("data") or []:
            try:
                region = entry["region"]
                key = decompose_region_name(
                    region.get("parentAreaName", ""),
                    region.get("localAreaName", ""),
                )
                records = [record_class.model_validate(r) for r in entry.get("records") or []]
            except Exception as e:
                logger.warning(f"Skipping unreadable snapshot entry: {e}")
                continue
            state.add(key, records)
        return state


# ---------------------------------------------------------------------------
# Failure ledger
# ---------------------------------------------------------------------------

class FailureLedger:
    """Regions whose fetch failed in the current run."""

    def __init__(self):
        self.entries: list[FailureEntry] = []

    def clear(self):
        self.entries = []

    def record(self, outcome: RawFetchOutcome):
        self.entries.append(FailureEntry(
            region=region_key(outcome.region).label,
            error_message=outcome.error_message or "Unknown",
            attempts=outcome.attempts,
            timestamp=outcome.fetched_at,
        ))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def placeholder_record(shape: TableShape, key: AreaName, flag: RecordFlag) -> SubsidyRecord:
    """A single all-zero record standing in for a region without data."""
    label = NO_DATA_LABEL if flag == RecordFlag.NO_DATA else FETCH_FAILED_LABEL
    if shape == TableShape.QUOTA:
        return QuotaRecord(
            area_prefix=key.prefix,
            area_suffix=key.suffix,
            vehicle_class=label,
            note=FETCH_FAILED_NOTE if flag == RecordFlag.FETCH_FAILED else "",
            flag=flag,
        )
    return VehiclePriceRecord(vehicle_type=label, flag=flag)


class ReconciliationEngine:
    def __init__(self, shape: TableShape):
        self.shape = shape
        self.ledger = FailureLedger()

    def reconcile(
        self,
        outcomes: list[RawFetchOutcome],
        prior_state: PriorStateLookup | None = None,
    ) -> list[ReconciledResult]:
        prior_state = prior_state or EmptyPriorState()
        self.ledger.clear()

        results = []
        fallbacks = 0
        for outcome in outcomes:
            result = self._reconcile_one(outcome, prior_state)
            if result.used_fallback and result.records and result.records[0].flag != RecordFlag.FETCH_FAILED:
                fallbacks += 1
            results.append(result)

        logger.info(
            f"{self.shape.value}: reconciled {len(results)} regions "
            f"({len(self.ledger)} failed, {fallbacks} from prior data)"
        )
        return results

    def _reconcile_one(self, outcome: RawFetchOutcome, prior_state: PriorStateLookup) -> ReconciledResult:
        key = region_key(outcome.region)
        common = dict(
            region=outcome.region,
            success=outcome.success,
            attempts=outcome.attempts,
            error_message=outcome.error_message,
            fetched_at=outcome.fetched_at,
        )

        if outcome.success:
            if outcome.records:
                return ReconciledResult(records=tuple(outcome.records), used_fallback=False, **common)
            logger.info(f"{key.label}: page loaded but no rows")
            return ReconciledResult(
                records=(placeholder_record(self.shape, key, RecordFlag.NO_DATA),),
                used_fallback=False,
                **common,
            )

        self.ledger.record(outcome)
        prior = prior_state.records_for(key)
        if prior:
            logger.warning(f"{key.label}: fetch failed, reusing {len(prior)} prior records")
            return ReconciledResult(records=tuple(prior), used_fallback=True, **common)

        logger.warning(f"{key.label}: fetch failed and no prior data")
        return ReconciledResult(
            records=(placeholder_record(self.shape, key, RecordFlag.FETCH_FAILED),),
            used_fallback=True,
            **common,
        )
