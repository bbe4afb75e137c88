import json
import logging

import pytest

from conftest import FIXTURE_DATE, assert_hourly, fixture_bytes
from jpgrid.adapters.occto import (
    OcctoDemandAdapter,
    OcctoGenerationAdapter,
    OcctoReserveAdapter,
    normalize_area,
)
from jpgrid.config import ReserveThresholds
from jpgrid.errors import FormatError
from jpgrid.models import GenerationSeries

HEADER = '"対象年月日","時刻","エリア名","エリア需要(MW)","エリア供給力(MW)"'


def _csv(*rows: str, header: str = HEADER) -> bytes:
    return ('"2025/10/23 23:59 UPDATE"\n' + header + "\n" + "\n".join(rows) + "\n").encode("utf-8")


@pytest.mark.parametrize("raw, expected", [("東京", "tokyo"), ("関西", "kansai"), (" Tokyo ", "tokyo"), ("北海道", "北海道")])
def test_normalize_area(raw, expected):
    assert normalize_area(raw) == expected


def test_reserve_fixture_classifies_every_area():
    series = OcctoReserveAdapter(url="u").parse(fixture_bytes("occto-sample.csv"), FIXTURE_DATE)
    by_area = {item.area: item for item in series.areas}
    assert set(by_area) == {"tokyo", "kansai", "北海道", "東北"}
    assert by_area["tokyo"].reserve_margin_pct == pytest.approx(6.54, abs=0.1)
    assert by_area["tokyo"].status == "tight"
    assert by_area["東北"].reserve_margin_pct == pytest.approx(10.71, abs=0.1)
    assert by_area["東北"].status == "watch"
    assert by_area["北海道"].status == "stable"
    assert by_area["kansai"].reserve_margin_pct == pytest.approx(20.0, abs=0.1)
    assert by_area["kansai"].status == "stable"
    assert [item["area"] for item in series.to_dict()["areas"]] == sorted(by_area)


def test_reserve_skips_malformed_cells(caplog):
    with caplog.at_level(logging.WARNING):
        series = OcctoReserveAdapter(url="u").parse(fixture_bytes("occto-sample.csv"), FIXTURE_DATE, "東北")
    assert [item.area for item in series.areas] == ["東北"]
    assert "skipping malformed value 'N/A'" in caplog.text


def test_reserve_thresholds_are_configurable():
    strict = ReserveThresholds(tight_below=25.0, watch_below=30.0)
    series = OcctoReserveAdapter(url="u", thresholds=strict).parse(fixture_bytes("occto-sample.csv"), FIXTURE_DATE)
    assert {item.status for item in series.areas} == {"tight"}


def test_reserve_zero_capacity_reports_zero_margin():
    payload = _csv('"2025/10/23","00:30","東京",100,0')
    series = OcctoReserveAdapter(url="u").parse(payload, FIXTURE_DATE)
    assert series.areas[0].reserve_margin_pct == 0.0
    assert series.areas[0].status == "tight"


def test_demand_fixture_averages_half_hours():
    series = OcctoDemandAdapter(url="u").parse(fixture_bytes("occto-sample.csv"), FIXTURE_DATE, "tokyo")
    assert len(series.series) == 24
    assert_hourly([point.ts for point in series.series], FIXTURE_DATE)
    assert all(point.forecast_mw is None for point in series.series)
    assert series.warning is None


def test_demand_drops_end_of_day_slot():
    payload = _csv(
        '"2025/10/23","00:30","東京",100,120',
        '"2025/10/23","01:00","東京",200,240',
        '"2025/10/23","01:30","東京",300,360',
        '"2025/10/23","24:00","東京",900,990',
    )
    series = OcctoDemandAdapter(url="u").parse(payload, FIXTURE_DATE, "tokyo")
    assert [point.demand_mw for point in series.series] == [100.0, 250.0]
    assert series.warning == "Data for 2 hours available (expected 24)"


def test_demand_invalid_time_is_format_error():
    payload = _csv('"2025/10/23","00:30","東京",100,120', '"2025/10/23","noon","東京",100,120')
    with pytest.raises(FormatError) as info:
        OcctoDemandAdapter(url="u").parse(payload, FIXTURE_DATE, "tokyo")
    assert info.value.line == 4


def test_demand_for_absent_area_is_format_error():
    payload = _csv('"2025/10/23","00:30","東京",100,120')
    with pytest.raises(FormatError):
        OcctoDemandAdapter(url="u").parse(payload, FIXTURE_DATE, "kansai")


def test_empty_area_on_first_row_is_format_error():
    payload = _csv('"2025/10/23","00:30","",100,120')
    with pytest.raises(FormatError):
        OcctoReserveAdapter(url="u").parse(payload, FIXTURE_DATE)


def test_missing_capacity_column_is_format_error():
    header = '"対象年月日","時刻","エリア名","エリア需要(MW)"'
    with pytest.raises(FormatError) as info:
        OcctoReserveAdapter(url="u").parse(_csv('"2025/10/23","00:30","東京",100', header=header), FIXTURE_DATE)
    assert info.value.expected == ["capacity"]


def test_generation_fixture_folds_minor_fuels_into_other():
    series = OcctoGenerationAdapter(url="u").parse(fixture_bytes("occto-generation-sample.csv"), FIXTURE_DATE, "tokyo")
    assert len(series.series) == 24
    assert_hourly([point.ts for point in series.series], FIXTURE_DATE)
    first = series.series[0]
    assert first.lng_mw == pytest.approx(9844.4)
    assert first.coal_mw == pytest.approx(6264.6)
    assert first.other_mw == pytest.approx(358.0 + 1431.9 + 397.8)
    assert first.total_mw == pytest.approx(19887.7)
    for point in series.series:
        assert point.total_mw == pytest.approx(point.fuel_sum())
    assert series.meta is not None
    assert series.meta.peak_solar_mw == pytest.approx(max(point.solar_mw for point in series.series))


def test_generation_partial_day_warns_in_meta():
    lines = fixture_bytes("occto-generation-sample.csv").decode("utf-8").splitlines()
    kept = lines[:2] + [line for line in lines[2:] if '"東京"' in line and ('"00:30"' in line or '"01:00"' in line)]
    payload = ("\n".join(kept) + "\n").encode("utf-8")

    series = OcctoGenerationAdapter(url="u").parse(payload, FIXTURE_DATE, "tokyo")
    assert len(series.series) == 2
    assert series.warning == "Data for 2 hours available (expected 24)"
    document = json.loads(series.to_json())
    assert document["meta"]["warning"] == series.warning
    assert document["meta"]["peak_solar_mw"] == series.meta.peak_solar_mw

    restored = GenerationSeries.from_dict(document)
    assert restored.warning == series.warning
    assert restored.meta == series.meta


def test_generation_full_day_has_no_warning():
    series = OcctoGenerationAdapter(url="u").parse(fixture_bytes("occto-generation-sample.csv"), FIXTURE_DATE, "tokyo")
    assert series.warning is None
    assert "warning" not in series.to_dict()["meta"]


def test_reserve_rejects_non_finite_values(caplog):
    payload = _csv('"2025/10/23","00:30","東京",nan,120', '"2025/10/23","01:00","東京",100,120')
    with caplog.at_level(logging.WARNING):
        series = OcctoReserveAdapter(url="u").parse(payload, FIXTURE_DATE)
    assert series.areas[0].reserve_margin_pct == pytest.approx(100 * 20 / 120)
    assert "skipping malformed value 'nan'" in caplog.text


def test_generation_for_kansai():
    series = OcctoGenerationAdapter(url="u").parse(fixture_bytes("occto-generation-sample.csv"), FIXTURE_DATE, "kansai")
    assert series.area == "kansai"
    assert series.series[0].nuclear_mw > 0
