"""Read-only views over the JSON snapshots written by the pipeline."""
from fastapi import APIRouter, Depends, HTTPException

from evsubsidy.config import Settings, get_settings
from evsubsidy.models import TableShape
from evsubsidy.schemas.runs import SnapshotKind
from evsubsidy.services.snapshot_writer import SnapshotWriter

router = APIRouter()


def _writer(kind: SnapshotKind, settings: Settings) -> SnapshotWriter:
    return SnapshotWriter(settings.DATA_DIR, TableShape(kind))


@router.get("/{kind}")
async def get_snapshot(kind: SnapshotKind, settings: Settings = Depends(get_settings)):
    payload = _writer(kind, settings).load()
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No {kind} snapshot yet")
    return payload


@router.get("/{kind}/failures")
async def get_failures(kind: SnapshotKind, settings: Settings = Depends(get_settings)):
    payload = _writer(kind, settings).load_failures()
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No {kind} failure ledger yet")
    return payload


@router.get("/{kind}/regions/{code}")
async def get_region(kind: SnapshotKind, code: int, settings: Settings = Depends(get_settings)):
    payload = _writer(kind, settings).load()
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No {kind} snapshot yet")
    for entry in payload.get("data") or []:
        if (entry.get("region") or {}).get("code") == code:
            return entry
    raise HTTPException(status_code=404, detail=f"Region {code} not in {kind} snapshot")
