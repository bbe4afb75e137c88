import io

import pytest

from conftest import FIXTURE_DATE, assert_hourly, fixture_bytes
from jpgrid.adapters.utility import FORECAST_MISSING, kansai_adapter, tepco_adapter
from jpgrid.errors import FormatError

HEADER = "DATE,TIME,当日実績(万kW),予測値(万kW),使用率(%),供給力(万kW)\n"


def _csv(*rows: str, header: str = HEADER) -> bytes:
    return ("2025/10/23 23:55 UPDATE\n\n" + header + "".join(row + "\n" for row in rows)).encode("cp932")


def _full_day(skip=(), actual="2500", forecast="2600"):
    return [f"2025/10/23,{hour}:00,{actual},{forecast},60,4000" for hour in range(24) if hour not in skip]


def test_tepco_fixture_yields_full_day_in_mw():
    series = tepco_adapter("https://example.test/tepco").parse(fixture_bytes("tepco-sample.csv"), FIXTURE_DATE)
    assert series.area == "tokyo"
    assert len(series.series) == 24
    assert_hourly([point.ts for point in series.series], FIXTURE_DATE)
    first = series.series[0]
    assert first.ts == "2025-10-23T00:00:00+09:00"
    assert first.demand_mw == pytest.approx(26650.0)
    assert first.forecast_mw == pytest.approx(27010.0)
    assert series.warning is None
    assert series.source.name == "TEPCO"


def test_kansai_fixture_accepts_yosou_forecast_header():
    series = kansai_adapter("https://example.test/kansai").parse(fixture_bytes("kansai-sample.csv"), FIXTURE_DATE)
    assert series.area == "kansai"
    assert len(series.series) == 24
    assert series.series[0].demand_mw == pytest.approx(13020.0)
    assert series.series[0].forecast_mw == pytest.approx(13200.0)


def test_five_minute_block_does_not_duplicate_hours():
    rows = _full_day() + ["", "DATE,TIME,当日実績(5分間隔値)(万kW)", "2025/10/23,0:00,2400", "2025/10/23,0:05,2410"]
    series = tepco_adapter("u").parse(_csv(*rows), FIXTURE_DATE)
    assert len(series.series) == 24
    assert series.series[0].demand_mw == pytest.approx(25000.0)


def test_parse_is_deterministic():
    adapter = tepco_adapter("u")
    payload = fixture_bytes("tepco-sample.csv")
    first = adapter.parse(payload, FIXTURE_DATE).to_json()
    second = adapter.parse(io.BytesIO(payload), "2025/10/23").to_json()
    assert first == second


def test_missing_forecast_column_sets_warning():
    header = "DATE,TIME,当日実績(万kW),使用率(%)\n"
    rows = [f"2025/10/23,{hour}:00,2500,60" for hour in range(24)]
    series = tepco_adapter("u").parse(_csv(*rows, header=header), FIXTURE_DATE)
    assert len(series.series) == 24
    assert all(point.forecast_mw is None for point in series.series)
    assert series.warning == FORECAST_MISSING
    assert "forecast_mw" not in series.to_dict()["series"][0]


def test_empty_actual_is_a_missing_hour():
    rows = _full_day(skip=(5,)) + ["2025/10/23,5:00,,2600,60,4000"]
    series = tepco_adapter("u").parse(_csv(*rows), FIXTURE_DATE)
    assert len(series.series) == 23
    assert "Data for 23 hours available (expected 24)" in series.warning


def test_rows_for_other_dates_are_ignored():
    rows = ["2025/10/22,23:00,9999,9999,60,4000"] + _full_day()
    series = tepco_adapter("u").parse(_csv(*rows), FIXTURE_DATE)
    assert all(point.demand_mw == pytest.approx(25000.0) for point in series.series)


def test_missing_actual_column_is_format_error():
    header = "DATE,TIME,予測値(万kW)\n"
    with pytest.raises(FormatError) as info:
        tepco_adapter("u").parse(_csv("2025/10/23,0:00,2600", header=header), FIXTURE_DATE)
    assert info.value.expected == ["actual"]


def test_invalid_time_is_format_error_with_line():
    rows = _full_day()
    rows[3] = "2025/10/23,3h,2500,2600,60,4000"
    with pytest.raises(FormatError) as info:
        tepco_adapter("u").parse(_csv(*rows), FIXTURE_DATE)
    assert info.value.line == 7


def test_invalid_actual_is_format_error():
    rows = _full_day()
    rows[0] = "2025/10/23,0:00,abc,2600,60,4000"
    with pytest.raises(FormatError):
        tepco_adapter("u").parse(_csv(*rows), FIXTURE_DATE)


def test_unparseable_first_row_date_is_format_error():
    with pytest.raises(FormatError):
        tepco_adapter("u").parse(_csv("yesterday,0:00,2500,2600,60,4000", *_full_day()), FIXTURE_DATE)


def test_no_rows_for_date_is_format_error():
    with pytest.raises(FormatError):
        tepco_adapter("u").parse(_csv(*_full_day()), "2025-10-24")


def test_wrong_area_is_rejected():
    with pytest.raises(FormatError):
        tepco_adapter("u").parse(fixture_bytes("tepco-sample.csv"), FIXTURE_DATE, "kansai")
