"""JSON snapshots of reconciled results.

Layout of `<DATA_DIR>/<name>.json`:

    {
      "timestamp": "...",
      "totalRegions": 161,
      "successCount": 158,
      "failedCount": 3,
      "data": [ReconciledResult, ...]
    }

and `<DATA_DIR>/<name>_failures.json` holds the failure ledger. Both files
are replaced whole (write to a temp file, then os.replace) so a crash never
leaves a half-written snapshot behind for the next run's fallback.
"""

import datetime
import json
import logging
import os
import tempfile
from pathlib import Path

from evsubsidy.models import ReconciledResult, TableShape
from evsubsidy.services.reconciliation import FailureLedger

logger = logging.getLogger(__name__)

SNAPSHOT_NAMES = {
    TableShape.QUOTA: "quota",
    TableShape.PRICE: "subsidies",
}


def write_json_atomic(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def build_snapshot(
    results: list[ReconciledResult],
    timestamp: datetime.datetime | None = None,
    extra: dict | None = None,
) -> dict:
    timestamp = timestamp or datetime.datetime.now(datetime.timezone.utc)
    success = sum(1 for r in results if r.success)
    payload = {
        "timestamp": timestamp.isoformat(),
        "totalRegions": len(results),
        "successCount": success,
        "failedCount": len(results) - success,
    }
    if extra:
        payload.update(extra)
    payload["data"] = [r.model_dump(mode="json", by_alias=True) for r in results]
    return payload


def build_failure_ledger(ledger: FailureLedger, timestamp: datetime.datetime | None = None) -> dict:
    timestamp = timestamp or datetime.datetime.now(datetime.timezone.utc)
    return {
        "timestamp": timestamp.isoformat(),
        "failedCount": len(ledger),
        "failures": [e.model_dump(mode="json", by_alias=True) for e in ledger],
    }


class SnapshotWriter:
    def __init__(self, data_dir: str | Path, shape: TableShape):
        self.data_dir = Path(data_dir)
        self.shape = shape
        name = SNAPSHOT_NAMES[shape]
        self.path = self.data_dir / f"{name}.json"
        self.failures_path = self.data_dir / f"{name}_failures.json"

    def write(
        self,
        results: list[ReconciledResult],
        ledger: FailureLedger,
        extra: dict | None = None,
    ) -> Path:
        now = datetime.datetime.now(datetime.timezone.utc)
        write_json_atomic(self.path, build_snapshot(results, now, extra))
        write_json_atomic(self.failures_path, build_failure_ledger(ledger, now))
        logger.info(f"Snapshot saved: {self.path} ({len(results)} regions, {len(ledger)} failures)")
        return self.path

    def load(self) -> dict | None:
        """Previous snapshot, or None when missing or unreadable."""
        return load_json(self.path)

    def load_failures(self) -> dict | None:
        return load_json(self.failures_path)


def load_json(path: Path) -> dict | None:
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return None
    return payload if isinstance(payload, dict) else None
