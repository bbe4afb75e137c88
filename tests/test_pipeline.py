import io
import json
import logging
import zipfile

import pytest
import requests

from conftest import FIXTURE_DATE, FakeResponse, FakeSession, fixture_bytes
from jpgrid import pipeline
from jpgrid.adapters import FIXTURE, LIVE, select_route
from jpgrid.config import SourceConfig, SourcesConfig
from jpgrid.errors import TransientFetchError, ValidationError
from jpgrid.fetchers import FetcherConfig, ResilientFetcher
from jpgrid.logs import FetchLogger
from jpgrid.pipeline import (
    PipelineContext,
    artifact_path,
    load_or_fetch,
    run_estimate,
    run_job,
    run_many,
    run_settlement,
)
from jpgrid.storage import MemoryStore

SOURCES = SourcesConfig(
    tepco=SourceConfig(name="TEPCO", url="https://tepco.test/", download_url="https://tepco.test/archive/"),
    kansai=SourceConfig(name="Kansai Electric", url="https://kansai.test/"),
    occto=SourceConfig(name="OCCTO", url="https://occto.test/", download_url="https://occto.test/download"),
    jepx=SourceConfig(name="JEPX", url="https://jepx.test/"),
)


def _context(tmp_path, outcomes=None, **kwargs):
    fetcher = None
    session = None
    if outcomes is not None:
        session = FakeSession(outcomes)
        fetcher = ResilientFetcher(FetcherConfig(), session_factory=lambda: session, sleep=lambda seconds: None)
    ctx = PipelineContext(
        sources=SOURCES,
        fetcher=fetcher,
        store=MemoryStore(),
        output_dir=tmp_path,
        fetch_logger=FetchLogger(),
        **kwargs,
    )
    return ctx, session


def test_route_selection_policy():
    assert select_route("demand", "tokyo", LIVE).member is not None
    assert select_route("demand", "kansai", LIVE).source_key == "occto"
    assert select_route("demand", "kansai", FIXTURE).fixture == "kansai-sample.csv"
    assert select_route("reserve", None, FIXTURE).fixture == "occto-sample.csv"
    with pytest.raises(ValidationError):
        select_route("weather", "tokyo", LIVE)


def test_artifact_layout(tmp_path):
    assert artifact_path(tmp_path, "demand", "tokyo", FIXTURE_DATE) == tmp_path / "tokyo" / "demand-2025-10-23.json"
    assert artifact_path(tmp_path, "reserve", None, FIXTURE_DATE) == tmp_path / "reserve-2025-10-23.json"


def test_fixture_job_writes_artifact_and_store(tmp_path):
    ctx, _ = _context(tmp_path)
    result = run_job("demand", "tokyo", "2025/10/23", ctx)
    assert result.mode == FIXTURE
    assert result.date == FIXTURE_DATE
    assert result.artifact == tmp_path / "tokyo" / "demand-2025-10-23.json"
    document = json.loads(result.artifact.read_text(encoding="utf-8"))
    assert document["source"]["name"] == "TEPCO (testdata)"
    assert len(document["series"]) == 24
    assert ctx.store.get("demand", "tokyo", FIXTURE_DATE) == document


def test_rerun_is_byte_identical(tmp_path):
    ctx, _ = _context(tmp_path)
    first = run_job("price", "kansai", FIXTURE_DATE, ctx).artifact.read_bytes()
    second = run_job("price", "kansai", FIXTURE_DATE, ctx).artifact.read_bytes()
    assert first == second


def test_reserve_is_written_once_for_all_areas(tmp_path):
    ctx, _ = _context(tmp_path)
    result = run_job("reserve", "tokyo", FIXTURE_DATE, ctx)
    assert result.area is None
    assert result.artifact == tmp_path / "reserve-2025-10-23.json"
    assert ctx.store.get("reserve", None, FIXTURE_DATE) is not None


@pytest.mark.parametrize(
    "data_type, area, date",
    [
        ("demand", "osaka", FIXTURE_DATE),
        ("demand", "tokyo", "23/10/2025"),
        ("demand", None, FIXTURE_DATE),
        ("estimate", "tokyo", FIXTURE_DATE),
    ],
)
def test_invalid_requests_are_rejected(tmp_path, data_type, area, date):
    ctx, _ = _context(tmp_path)
    with pytest.raises(ValidationError):
        run_job(data_type, area, date, ctx)


def test_live_price_job(tmp_path):
    ctx, session = _context(tmp_path, [FakeResponse(200, fixture_bytes("jepx-sample.csv"))])
    result = run_job("price", "tokyo", FIXTURE_DATE, ctx)
    assert result.mode == LIVE
    assert session.calls[0]["url"] == "https://jepx.test/market/excel/spot_20251023.csv"
    assert result.series.source.name == "JEPX"
    assert result.series.prices[0].price == pytest.approx(12.41)


def test_live_tokyo_demand_reads_monthly_archive(tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("20251022_power_usage.csv", b"")
        archive.writestr("20251023_power_usage.csv", fixture_bytes("tepco-sample.csv"))
    ctx, session = _context(tmp_path, [FakeResponse(200, buffer.getvalue())])
    result = run_job("demand", "tokyo", FIXTURE_DATE, ctx)
    assert result.mode == LIVE
    assert session.calls[0]["url"] == "https://tepco.test/archive/202510_power_usage.zip"
    assert len(result.series.series) == 24


def test_live_failure_falls_back_to_fixture(tmp_path, caplog):
    outcomes = [requests.ConnectionError("refused")] * 4
    ctx, session = _context(tmp_path, outcomes)
    with caplog.at_level(logging.INFO, logger="jpgrid.fetch"):
        result = run_job("reserve", None, FIXTURE_DATE, ctx)
    assert result.mode == FIXTURE
    assert len(session.calls) == 4
    assert result.series.source.name == "OCCTO (testdata)"
    assert "falling back to testdata" in caplog.text


def test_live_failure_propagates_without_fallback(tmp_path):
    outcomes = [requests.ConnectionError("refused")] * 4
    ctx, _ = _context(tmp_path, outcomes, fallback_to_fixture=False)
    with pytest.raises(TransientFetchError):
        run_job("price", "tokyo", FIXTURE_DATE, ctx)


def test_load_or_fetch_prefers_stored_series(tmp_path):
    ctx, _ = _context(tmp_path)
    stored = run_job("demand", "kansai", FIXTURE_DATE, ctx).series.to_dict()
    stored["series"] = stored["series"][:3]
    ctx.store.put("demand", "kansai", FIXTURE_DATE, stored)
    assert len(load_or_fetch("demand", "kansai", FIXTURE_DATE, ctx).series) == 3


def test_estimate_from_fixtures(tmp_path):
    ctx, _ = _context(tmp_path)
    result = run_estimate("tokyo", FIXTURE_DATE, ctx)
    assert result.artifact == tmp_path / "tokyo" / "estimate-2025-10-23.json"
    assert len(result.series.series) == 24
    assert ctx.store.get("demand", "tokyo", FIXTURE_DATE) is not None
    assert ctx.store.get("price", "tokyo", FIXTURE_DATE) is not None
    assert json.loads(result.artifact.read_text(encoding="utf-8"))["meta"]["peak_solar_mw"] > 0


def test_settlement_against_fixture_prices(tmp_path):
    ctx, _ = _context(tmp_path)
    result, artifact = run_settlement("tokyo", FIXTURE_DATE, ctx, pv_offset_pct=0.15, flat_kwh=100.0)
    assert result.total_kwh == 2400.0
    assert len(result.by_hour) == 24
    assert result.area == "tokyo"
    assert artifact == tmp_path / "tokyo" / "settlement-2025-10-23.json"
    assert json.loads(artifact.read_text(encoding="utf-8"))["totals"]["kwh"] == 2400.0


def test_settlement_needs_a_profile(tmp_path):
    ctx, _ = _context(tmp_path)
    with pytest.raises(ValidationError):
        run_settlement("tokyo", FIXTURE_DATE, ctx)


def test_run_many_keeps_job_order(tmp_path):
    ctx, _ = _context(tmp_path)
    jobs = [("price", "tokyo", FIXTURE_DATE), ("demand", "kansai", FIXTURE_DATE), ("reserve", None, FIXTURE_DATE)]
    progress = []
    results = run_many(jobs, ctx, max_workers=3, progress_cb=lambda message, fraction: progress.append(fraction))
    assert [(item.data_type, item.area) for item in results] == [("price", "tokyo"), ("demand", "kansai"), ("reserve", None)]
    assert sorted(progress) == pytest.approx([1 / 3, 2 / 3, 1.0])


def test_cli_fetch_in_fixture_mode(tmp_path, monkeypatch):
    monkeypatch.setattr(pipeline, "ensure_directories", lambda: None)
    argv = ["--no-db", "--output-dir", str(tmp_path), "fetch", "--type", "price", "reserve", "--area", "tokyo", "kansai", "--date", FIXTURE_DATE]
    assert pipeline.main(argv) == 0
    assert (tmp_path / "tokyo" / "price-2025-10-23.json").exists()
    assert (tmp_path / "kansai" / "price-2025-10-23.json").exists()
    assert (tmp_path / "reserve-2025-10-23.json").exists()


def test_cli_reports_errors_as_exit(tmp_path, monkeypatch):
    monkeypatch.setattr(pipeline, "ensure_directories", lambda: None)
    with pytest.raises(SystemExit):
        pipeline.main(["--no-db", "--output-dir", str(tmp_path), "fetch", "--date", "not-a-date"])
