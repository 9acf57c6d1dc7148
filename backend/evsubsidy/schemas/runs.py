from typing import Literal

from pydantic import BaseModel

ScrapeKind = Literal["quota", "price", "all"]
SnapshotKind = Literal["quota", "price"]


class ScrapeRunRequest(BaseModel):
    kind: ScrapeKind = "all"
