"""Utility (TEPCO / Kansai) demand CSV adapters.

The utilities publish one CSV per day made of several blocks: a free-text
banner, an hourly block (`DATE,TIME,当日実績(万kW),予測値(万kW),...`), then
5-minute blocks that repeat the same hours. Values are in 万kW (10 MW).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

from ..errors import FormatError
from ..models import DemandPoint, DemandSeries, Source
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

MAN_KW_TO_MW = 10.0
FORECAST_MISSING = "Forecast data not available for this date"

DEMAND_COLUMNS: Tuple[ColumnSpec, ...] = (
    ColumnSpec("date", (equals("日付"), contains("date"))),
    ColumnSpec("time", (equals("時刻"), contains("time"))),
    ColumnSpec("actual", (contains("実績"), contains("actual"))),
    ColumnSpec("forecast", (contains("予測"), contains("予想"), contains("forecast")), required=False),
)
HEADER_ANCHORS = (equals("date"), equals("日付"))


@dataclass(frozen=True)
class UtilityDemandAdapter:
    name: str
    url: str
    area: str
    encoding: str = "utf-8-sig"
    scale: float = MAN_KW_TO_MW

    def parse(self, source: ByteSource, target_date: str, target_area: str | None = None) -> DemandSeries:
        area = target_area or self.area
        if area != self.area:
            raise FormatError(f"feed only covers area '{self.area}', not '{area}'", source=self.name)
        wanted = normalize_date(target_date)
        if wanted is None:
            raise FormatError(f"invalid target date '{target_date}'", source=self.name)

        rows = read_rows(decode_text(read_bytes(source), self.encoding, source=self.name))
        header_index = find_header(rows, HEADER_ANCHORS, source=self.name, first_cell_only=True)
        columns = detect_columns(rows[header_index], DEMAND_COLUMNS, source=self.name, line=header_index + 1)

        points: Dict[int, DemandPoint] = {}
        has_forecast = False
        checked_first_row = False
        for offset, row in enumerate(rows[header_index + 1 :], start=header_index + 2):
            if not any(row):
                continue
            row_date = normalize_date(cell(row, columns["date"]))
            if not checked_first_row:
                checked_first_row = True
                if row_date is None:
                    raise FormatError(
                        f"unparseable date '{cell(row, columns['date'])}' on first data row",
                        source=self.name,
                        line=offset,
                    )
            if row_date != wanted:
                continue

            raw_time = cell(row, columns["time"])
            try:
                hour, minute = parse_clock(raw_time)
            except ValueError as exc:
                raise FormatError(f"invalid time format '{raw_time}'", source=self.name, line=offset) from exc
            if minute != 0 or hour > 23 or hour in points:
                continue

            raw_actual = cell(row, columns["actual"])
            try:
                actual = parse_number(raw_actual)
            except ValueError as exc:
                raise FormatError(f"invalid actual value '{raw_actual}'", source=self.name, line=offset) from exc
            if actual is None:
                continue

            forecast_mw = None
            try:
                forecast = parse_number(cell(row, columns.get("forecast")))
            except ValueError:
                LOGGER.warning("%s: ignoring unparseable forecast on line %d", self.name, offset)
                forecast = None
            if forecast is not None:
                forecast_mw = forecast * self.scale
                has_forecast = True

            points[hour] = DemandPoint(
                ts=build_timestamp(wanted, hour),
                demand_mw=actual * self.scale,
                forecast_mw=forecast_mw,
            )

        if not points:
            raise FormatError(f"no data found for date {wanted}", source=self.name)

        warnings = []
        if not has_forecast:
            warnings.append(FORECAST_MISSING)
        partial = completeness_warning(len(points), source=self.name, date=wanted)
        if partial:
            warnings.append(partial)

        return DemandSeries(
            date=wanted,
            area=self.area,
            series=[points[hour] for hour in sorted(points)],
            source=Source(name=self.name, url=self.url),
            warning="; ".join(warnings) or None,
        )


def tepco_adapter(url: str, name: str = "TEPCO") -> UtilityDemandAdapter:
    """TEPCO distributes its CSVs in Shift-JIS (cp932 superset)."""
    return UtilityDemandAdapter(name=name, url=url, area="tokyo", encoding="cp932")


def kansai_adapter(url: str, name: str = "Kansai Electric") -> UtilityDemandAdapter:
    return UtilityDemandAdapter(name=name, url=url, area="kansai", encoding="cp932")
