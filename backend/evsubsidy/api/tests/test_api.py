"""HTTP surface: snapshot views and the scrape trigger."""

import datetime
import os
import sys
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from evsubsidy.config import Settings, get_settings
from evsubsidy.jobs import celery_app
from evsubsidy.main import app
from evsubsidy.models import QuotaRecord, RawFetchOutcome, Region, TableShape
from evsubsidy.services.reconciliation import ReconciliationEngine
from evsubsidy.services.snapshot_writer import SnapshotWriter

NOW = datetime.datetime(2025, 3, 1, 6, 0, tzinfo=datetime.timezone.utc)
SUWON = Region(parent_area_name="경기", local_area_name="수원시", code=4111)
YONGIN = Region(parent_area_name="경기", local_area_name="용인시", code=4146)


@pytest.fixture
def client(tmp_path):
    app.dependency_overrides[get_settings] = lambda: Settings(DATA_DIR=str(tmp_path))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def quota_snapshot(tmp_path):
    engine = ReconciliationEngine(TableShape.QUOTA)
    results = engine.reconcile([
        RawFetchOutcome(
            region=SUWON, success=True, attempts=1, fetched_at=NOW,
            records=(QuotaRecord(area_prefix="경기", area_suffix="수원시", vehicle_class="전기승용"),),
        ),
        RawFetchOutcome(region=YONGIN, success=False, attempts=3, error_message="timeout", fetched_at=NOW),
    ])
    SnapshotWriter(tmp_path, TableShape.QUOTA).write(results, engine.ledger)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_missing_snapshot_is_404(client):
    assert client.get("/api/snapshots/quota").status_code == 404
    assert client.get("/api/snapshots/price/failures").status_code == 404


def test_unknown_kind_is_422(client):
    assert client.get("/api/snapshots/trucks").status_code == 422


def test_snapshot_and_failures(client, quota_snapshot):
    resp = client.get("/api/snapshots/quota")
    assert resp.status_code == 200
    body = resp.json()
    assert body["totalRegions"] == 2
    assert body["successCount"] == 1

    failures = client.get("/api/snapshots/quota/failures").json()
    assert failures["failedCount"] == 1
    assert failures["failures"][0]["region"] == "경기 용인시"


def test_single_region(client, quota_snapshot):
    resp = client.get("/api/snapshots/quota/regions/4111")
    assert resp.status_code == 200
    assert resp.json()["records"][0]["vehicleClass"] == "전기승용"

    assert client.get("/api/snapshots/quota/regions/9999").status_code == 404


def test_scrape_run_enqueues_task(client, monkeypatch):
    calls = []

    def delay(kind):
        calls.append(kind)
        return SimpleNamespace(id="task-123")

    monkeypatch.setattr(celery_app, "run_subsidy_scrape_task", SimpleNamespace(delay=delay))
    resp = client.post("/api/scrape-runs", json={"kind": "price"})

    assert resp.status_code == 202
    assert resp.json() == {"kind": "price", "status": "QUEUED", "celery_task_id": "task-123"}
    assert calls == ["price"]


def test_scrape_run_reports_broker_failure(client, monkeypatch):
    def delay(kind):
        raise ConnectionError("redis unavailable")

    monkeypatch.setattr(celery_app, "run_subsidy_scrape_task", SimpleNamespace(delay=delay))
    resp = client.post("/api/scrape-runs", json={})

    body = resp.json()
    assert body["kind"] == "all"
    assert body["status"] == "FAILED"
    assert "redis unavailable" in body["error"]


def test_scrape_run_rejects_unknown_kind(client):
    assert client.post("/api/scrape-runs", json={"kind": "trucks"}).status_code == 422
