"""OCCTO (広域機関) CSV adapters: area demand, reserve margin, and generation by fuel.

The download endpoint prepends a `"YYYY/MM/DD HH:MM UPDATE"` banner and then
lists every area for every 30-minute slot, e.g.

    "対象年月日","時刻","ブロックNo","エリア名",...,"エリア需要(MW)","エリア供給力(MW)",...
    "2025/11/03","00:30","1","北海道",...,2854,3243,...

These are multi-area aggregate feeds: a malformed numeric cell drops that
sample instead of failing the whole parse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from ..config import DEFAULT_RESERVE_THRESHOLDS, ReserveThresholds
from ..errors import FormatError
from ..generation import summarize_generation
from ..models import (
    AreaReserve,
    DemandPoint,
    DemandSeries,
    GenerationPoint,
    GenerationSeries,
    ReserveSeries,
    Source,
)
from ..timeutil import build_timestamp, normalize_date, parse_clock
from .columns import (
    ByteSource,
    ColumnSpec,
    cell,
    completeness_warning,
    contains,
    decode_text,
    detect_columns,
    equals,
    find_header,
    parse_number,
    read_bytes,
    read_rows,
)

LOGGER = logging.getLogger(__name__)

HEADER_ANCHORS = (contains("対象年月日"), equals("date"))

DATE_COLUMN = ColumnSpec("date", (contains("対象年月日"), contains("date")))
TIME_COLUMN = ColumnSpec("time", (contains("時刻"), contains("time")))
AREA_COLUMN = ColumnSpec("area", (equals("エリア名"), contains("area")))
DEMAND_COLUMN = ColumnSpec("demand", (equals("エリア需要(MW)"), equals("area_demand")))
CAPACITY_COLUMN = ColumnSpec("capacity", (equals("エリア供給力(MW)"), equals("area_capacity")))

# Area-scoped columns must be claimed before the generic "area" matcher can grab them.
RESERVE_COLUMNS: Tuple[ColumnSpec, ...] = (DEMAND_COLUMN, CAPACITY_COLUMN, DATE_COLUMN, AREA_COLUMN)
DEMAND_COLUMNS: Tuple[ColumnSpec, ...] = (DEMAND_COLUMN, DATE_COLUMN, TIME_COLUMN, AREA_COLUMN)

FUEL_COLUMNS: Tuple[ColumnSpec, ...] = (
    ColumnSpec("nuclear_mw", (contains("原子力"), contains("nuclear"))),
    ColumnSpec("lng_mw", (contains("lng"),)),
    ColumnSpec("coal_mw", (contains("石炭"), contains("coal"))),
    ColumnSpec("oil_mw", (contains("石油"), contains("oil")), required=False),
    ColumnSpec("hydro_mw", (equals("水力"), contains("水力"), contains("hydro"))),
    ColumnSpec("solar_mw", (contains("太陽光"), contains("solar"))),
    ColumnSpec("wind_mw", (contains("風力"), contains("wind"))),
    ColumnSpec("geothermal_mw", (contains("地熱"), contains("geothermal")), required=False),
    ColumnSpec("biomass_mw", (contains("バイオマス"), contains("biomass")), required=False),
    ColumnSpec("other_mw", (contains("その他"), contains("other")), required=False),
)
OTHER_PARTS = ("oil_mw", "geothermal_mw", "biomass_mw", "other_mw")
GENERATION_COLUMNS: Tuple[ColumnSpec, ...] = FUEL_COLUMNS + (DATE_COLUMN, TIME_COLUMN, AREA_COLUMN)


def normalize_area(name: str) -> str:
    text = (name or "").strip().lower()
    if "tokyo" in text or "東京" in text:
        return "tokyo"
    if "kansai" in text or "関西" in text:
        return "kansai"
    return text


@dataclass
class _Table:
    """Header-resolved OCCTO rows that fall on the requested date."""

    columns: Dict[str, int]
    rows: List[Tuple[int, List[str], str]] = field(default_factory=list)


def _load_table(
    source: ByteSource,
    target_date: str,
    specs: Sequence[ColumnSpec],
    *,
    source_name: str,
) -> _Table:
    rows = read_rows(decode_text(read_bytes(source), "utf-8-sig", source=source_name))
    header_index = find_header(rows, HEADER_ANCHORS, source=source_name)
    table = _Table(columns=detect_columns(rows[header_index], specs, source=source_name, line=header_index + 1))
    date_idx = table.columns["date"]
    area_idx = table.columns["area"]

    checked_first_row = False
    for line, row in enumerate(rows[header_index + 1 :], start=header_index + 2):
        if not any(row):
            continue
        row_date = normalize_date(cell(row, date_idx))
        area = normalize_area(cell(row, area_idx))
        if not checked_first_row:
            checked_first_row = True
            if row_date is None:
                raise FormatError(
                    f"unparseable date '{cell(row, date_idx)}' on first data row", source=source_name, line=line
                )
            if not area:
                raise FormatError("empty area name on first data row", source=source_name, line=line)
        if row_date != target_date or not area:
            continue
        table.rows.append((line, row, area))
    return table


def _hour_of(row: Sequence[str], index: int, *, source_name: str, line: int) -> int | None:
    raw = cell(row, index)
    try:
        hour, _ = parse_clock(raw)
    except ValueError as exc:
        raise FormatError(f"invalid time format '{raw}'", source=source_name, line=line) from exc
    # "24:00" closes the day and belongs to the next civil date.
    return None if hour > 23 else hour


def _number(row: Sequence[str], index: int, *, source_name: str, line: int) -> float | None:
    raw = cell(row, index)
    try:
        return parse_number(raw)
    except ValueError:
        LOGGER.warning("%s: skipping malformed value '%s' on line %d", source_name, raw, line)
        return None


def _target(target_date: str, source_name: str) -> str:
    wanted = normalize_date(target_date)
    if wanted is None:
        raise FormatError(f"invalid target date '{target_date}'", source=source_name)
    return wanted


@dataclass(frozen=True)
class OcctoReserveAdapter:
    """Average demand and capacity per area across the day's samples."""

    url: str
    name: str = "OCCTO"
    thresholds: ReserveThresholds = DEFAULT_RESERVE_THRESHOLDS

    def parse(self, source: ByteSource, target_date: str, target_area: str | None = None) -> ReserveSeries:
        wanted = _target(target_date, self.name)
        table = _load_table(source, wanted, RESERVE_COLUMNS, source_name=self.name)
        records = []
        for line, row, area in table.rows:
            if target_area and area != target_area:
                continue
            demand = _number(row, table.columns["demand"], source_name=self.name, line=line)
            capacity = _number(row, table.columns["capacity"], source_name=self.name, line=line)
            if demand is None or capacity is None:
                continue
            records.append({"area": area, "demand": demand, "capacity": capacity})
        if not records:
            raise FormatError(f"no data found for date {wanted}", source=self.name)

        averages = pd.DataFrame.from_records(records).groupby("area", sort=True)[["demand", "capacity"]].mean()
        areas = []
        for area, values in averages.iterrows():
            capacity = float(values["capacity"])
            demand = float(values["demand"])
            margin = (capacity - demand) / capacity * 100.0 if capacity > 0 else 0.0
            areas.append(AreaReserve(area=str(area), reserve_margin_pct=margin, status=self.thresholds.classify(margin)))
        return ReserveSeries(date=wanted, areas=areas, source=Source(name=self.name, url=self.url))


@dataclass(frozen=True)
class OcctoDemandAdapter:
    """Hourly area demand from the 30-minute reserve feed; OCCTO publishes no forecast."""

    url: str
    name: str = "OCCTO"

    def parse(self, source: ByteSource, target_date: str, target_area: str) -> DemandSeries:
        wanted = _target(target_date, self.name)
        table = _load_table(source, wanted, DEMAND_COLUMNS, source_name=self.name)
        records = []
        for line, row, area in table.rows:
            if area != target_area:
                continue
            hour = _hour_of(row, table.columns["time"], source_name=self.name, line=line)
            if hour is None:
                continue
            demand = _number(row, table.columns["demand"], source_name=self.name, line=line)
            if demand is None:
                continue
            records.append({"hour": hour, "demand": demand})
        if not records:
            raise FormatError(f"no demand data found for area {target_area} on date {wanted}", source=self.name)

        hourly = pd.DataFrame.from_records(records).groupby("hour", sort=True)["demand"].mean()
        series = [DemandPoint(ts=build_timestamp(wanted, int(hour)), demand_mw=float(value)) for hour, value in hourly.items()]
        return DemandSeries(
            date=wanted,
            area=target_area,
            series=series,
            source=Source(name=self.name, url=self.url),
            warning=completeness_warning(len(series), source=self.name, date=wanted),
        )


@dataclass(frozen=True)
class OcctoGenerationAdapter:
    """Hourly generation by fuel (jhSybt=03); oil, geothermal, biomass and the rest fold into `other_mw`."""

    url: str
    name: str = "OCCTO"

    def parse(self, source: ByteSource, target_date: str, target_area: str) -> GenerationSeries:
        wanted = _target(target_date, self.name)
        table = _load_table(source, wanted, GENERATION_COLUMNS, source_name=self.name)
        fuels = [spec.name for spec in FUEL_COLUMNS if spec.name in table.columns]
        records = []
        for line, row, area in table.rows:
            if area != target_area:
                continue
            hour = _hour_of(row, table.columns["time"], source_name=self.name, line=line)
            if hour is None:
                continue
            values = {fuel: _number(row, table.columns[fuel], source_name=self.name, line=line) for fuel in fuels}
            required = [fuel for fuel in fuels if fuel not in OTHER_PARTS]
            if any(values[fuel] is None for fuel in required):
                continue
            record = {"hour": hour, **{fuel: values[fuel] or 0.0 for fuel in fuels}}
            records.append(record)
        if not records:
            raise FormatError(f"no generation data found for area {target_area} on date {wanted}", source=self.name)

        frame = pd.DataFrame.from_records(records)
        other_parts = [name for name in OTHER_PARTS if name in frame.columns]
        frame["other_total"] = frame[other_parts].sum(axis=1) if other_parts else 0.0
        hourly = frame.groupby("hour", sort=True).mean()

        series = []
        for hour, values in hourly.iterrows():
            point = {
                "solar_mw": float(values["solar_mw"]),
                "wind_mw": float(values["wind_mw"]),
                "hydro_mw": float(values["hydro_mw"]),
                "nuclear_mw": float(values["nuclear_mw"]),
                "lng_mw": float(values["lng_mw"]),
                "coal_mw": float(values["coal_mw"]),
                "other_mw": float(values["other_total"]),
            }
            series.append(GenerationPoint(ts=build_timestamp(wanted, int(hour)), total_mw=sum(point.values()), **point))

        warning = completeness_warning(len(series), source=self.name, date=wanted)
        return GenerationSeries(
            date=wanted,
            area=target_area,
            series=series,
            source=Source(name=self.name, url=self.url),
            meta=summarize_generation(series),
            warning=warning,
        )
