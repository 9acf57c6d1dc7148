import datetime
import enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TableShape(str, enum.Enum):
    QUOTA = "quota"
    PRICE = "price"


class RecordFlag(str, enum.Enum):
    NO_DATA = "NO_DATA"
    FETCH_FAILED = "FETCH_FAILED"


class _Record(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Region(_Record):
    parent_area_name: str
    local_area_name: str
    code: int

    @property
    def display_name(self) -> str:
        return f"{self.parent_area_name} {self.local_area_name}".strip()


class Quantities(_Record):
    total: int = 0
    priority: int = 0
    corporate: int = 0
    taxi: int = 0
    general: int = 0


class QuotaRecord(_Record):
    area_prefix: str = ""
    area_suffix: str = ""
    vehicle_class: str = ""
    announcement: str = ""
    registration_method: str = ""
    quota: Quantities = Field(default_factory=Quantities)
    registered: Quantities = Field(default_factory=Quantities)
    delivered: Quantities = Field(default_factory=Quantities)
    remaining: Quantities = Field(default_factory=Quantities)
    note: str = ""
    flag: RecordFlag | None = None


class VehiclePriceRecord(_Record):
    vehicle_type: str = ""
    manufacturer: str = ""
    model: str = ""
    national_subsidy: int = 0
    local_subsidy: int = 0
    total_subsidy: int = 0
    discontinued: bool = False
    flag: RecordFlag | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.manufacturer, self.model)


SubsidyRecord = Union[QuotaRecord, VehiclePriceRecord]

RECORD_CLASSES: dict[TableShape, type[_Record]] = {
    TableShape.QUOTA: QuotaRecord,
    TableShape.PRICE: VehiclePriceRecord,
}


class RawFetchOutcome(_Record):
    region: Region
    success: bool
    attempts: int
    raw_markup: str | None = None
    error_message: str | None = None
    fetched_at: datetime.datetime
    records: tuple[SubsidyRecord, ...] = ()


class ReconciledResult(_Record):
    region: Region
    success: bool
    records: tuple[SubsidyRecord, ...]
    used_fallback: bool
    attempts: int = 0
    error_message: str | None = None
    fetched_at: datetime.datetime | None = None


class FailureEntry(_Record):
    region: str
    error_message: str
    attempts: int
    timestamp: datetime.datetime


class RunSummary(BaseModel):
    kind: str
    started_at: datetime.datetime
    finished_at: datetime.datetime | None = None
    total_regions: int = 0
    success_count: int = 0
    failed_count: int = 0
    fallback_count: int = 0
    placeholder_count: int = 0
    record_count: int = 0
    snapshot_path: str | None = None
    published: bool = False
    errors: list[str] = Field(default_factory=list)
    # Per-table summaries when one run covered several tables.
    parts: list["RunSummary"] = Field(default_factory=list)
