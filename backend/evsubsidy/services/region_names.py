"""Split a region into the (prefix, suffix) pair used as sheet keys.

Metropolitan and special administrative areas carry their status in the
local name ("서울특별시", "부산광역시", "세종특별자치시", "제주특별자치도").
For those the marker is split off: "서울특별시" -> ("서울", "특별시").
Everything else keeps the directory's parent / local names verbatim:
("경기", "수원시").

Markers are checked in order and the first one contained in the name wins.
"""

from typing import NamedTuple

from evsubsidy.models import Region

# Ordered: first match wins.
ADMIN_SUFFIXES: list[str] = [
    "특별시",
    "광역시",
    "특별자치시",
    "특별자치도",
]


class AreaName(NamedTuple):
    prefix: str
    suffix: str

    @property
    def label(self) -> str:
        return f"{self.prefix} {self.suffix}".strip()


def decompose_region_name(parent_area_name: str, local_area_name: str) -> AreaName:
    parent = (parent_area_name or "").strip()
    local = (local_area_name or "").strip()
    for marker in ADMIN_SUFFIXES:
        if marker in local:
            return AreaName(local.replace(marker, "", 1).strip(), marker)
    return AreaName(parent, local)


def region_key(region: Region) -> AreaName:
    return decompose_region_name(region.parent_area_name, region.local_area_name)
