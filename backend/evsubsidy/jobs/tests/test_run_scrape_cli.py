"""Command-line entry point exit codes."""

import datetime
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from evsubsidy.errors import BrowserHostError, RegionDirectoryError
from evsubsidy.models import RunSummary
from scripts import run_scrape


def test_browser_start_failure_exits_with_one(monkeypatch, capsys):
    def fail(kind, settings, publish=True):
        raise BrowserHostError("Could not start browser: Executable doesn't exist")

    monkeypatch.setattr(run_scrape, "execute_scrape_pipeline", fail)
    assert run_scrape.main(["--kind", "quota", "--no-publish"]) == 1
    assert "Could not start browser" in capsys.readouterr().out


def test_region_directory_failure_exits_with_one(monkeypatch):
    def fail(kind, settings, publish=True):
        raise RegionDirectoryError("HTTP 503")

    monkeypatch.setattr(run_scrape, "execute_scrape_pipeline", fail)
    assert run_scrape.main(["--kind", "all"]) == 1


def test_successful_run_exits_with_zero(monkeypatch):
    calls = []

    def run(kind, settings, publish=True):
        calls.append((kind, settings.RUN_MODE, publish))
        return RunSummary(kind=kind, started_at=datetime.datetime.now(datetime.timezone.utc))

    monkeypatch.setattr(run_scrape, "execute_scrape_pipeline", run)
    assert run_scrape.main(["--kind", "price", "--sample", "--no-publish"]) == 0
    assert calls == [("price", "sample", False)]
