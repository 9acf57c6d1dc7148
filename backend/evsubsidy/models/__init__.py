from evsubsidy.models.records import (
    TableShape,
    RecordFlag,
    Region,
    Quantities,
    QuotaRecord,
    VehiclePriceRecord,
    SubsidyRecord,
    RECORD_CLASSES,
    RawFetchOutcome,
    ReconciledResult,
    FailureEntry,
    RunSummary,
)

__all__ = [
    "TableShape",
    "RecordFlag",
    "Region",
    "Quantities",
    "QuotaRecord",
    "VehiclePriceRecord",
    "SubsidyRecord",
    "RECORD_CLASSES",
    "RawFetchOutcome",
    "ReconciledResult",
    "FailureEntry",
    "RunSummary",
]
