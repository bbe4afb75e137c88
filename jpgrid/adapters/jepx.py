"""JEPX day-ahead spot price adapter.

Two layouts are accepted:

* the hourly summary (`Date,Hour,Tokyo_Price,Kansai_Price` or
  `日付,時,東京価格,関西価格`), hours 0-23;
* the exchange's own spot download (`受渡日,時刻コード,...,エリアプライス東京(円/kWh),...`)
  with 48 half-hour slot codes, averaged into hourly buckets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from ..errors import FormatError
from ..models import PricePoint, PriceSeries, Source
from ..timeutil import build_timestamp, normalize_date
from .columns import (
    ByteSource,
    ColumnSpec,
    Matcher,
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

AREA_PRICE_MATCHERS: Dict[str, Tuple[Matcher, ...]] = {
    "tokyo": (contains("tokyo_price"), equals("東京価格"), contains("エリアプライス東京"), contains("tokyo")),
    "kansai": (contains("kansai_price"), equals("関西価格"), contains("エリアプライス関西"), contains("kansai")),
}
# Equality only, so a generic fallback never steals another area's column.
GENERIC_PRICE_MATCHERS: Tuple[Matcher, ...] = (
    equals("price"),
    equals("価格"),
    contains("システムプライス"),
    contains("system_price"),
)
# Equality on "date" so a "Last updated: ..." banner is not taken for the header.
HEADER_ANCHORS = (equals("date"), equals("日付"), contains("受渡日"))
SLOTS_PER_DAY = 48


def price_columns(area: str) -> Tuple[ColumnSpec, ...]:
    """Ordered matcher table for `area`; the area-specific column outranks the generic one."""
    matchers = AREA_PRICE_MATCHERS.get(area, (contains(f"{area}_price"),)) + GENERIC_PRICE_MATCHERS
    return (
        ColumnSpec("date", (equals("date"), equals("日付"), contains("受渡日"), contains("date"))),
        ColumnSpec("slot", (contains("時刻コード"), contains("slot")), required=False),
        ColumnSpec("hour", (contains("hour"), equals("時"), equals("時刻")), required=False),
        ColumnSpec("price", matchers),
    )


@dataclass(frozen=True)
class JepxPriceAdapter:
    url: str
    name: str = "JEPX"
    encoding: str = "utf-8-sig"

    def parse(self, source: ByteSource, target_date: str, target_area: str) -> PriceSeries:
        wanted = normalize_date(target_date)
        if wanted is None:
            raise FormatError(f"invalid target date '{target_date}'", source=self.name)

        raw = read_bytes(source)
        try:
            text = raw.decode(self.encoding)
        except UnicodeDecodeError:
            # The exchange's own download is Shift-JIS.
            text = decode_text(raw, "cp932", source=self.name)
        rows = read_rows(text)
        header_index = find_header(rows, HEADER_ANCHORS, source=self.name)
        header = rows[header_index]
        columns = detect_columns(header, price_columns(target_area), source=self.name, line=header_index + 1)
        if "slot" not in columns and "hour" not in columns:
            raise FormatError(
                "required columns not found in header",
                source=self.name,
                line=header_index + 1,
                expected=["hour"],
                found=header,
            )

        by_hour: Dict[int, List[float]] = {}
        checked_first_row = False
        for line, row in enumerate(rows[header_index + 1 :], start=header_index + 2):
            if not any(row):
                continue
            row_date = normalize_date(cell(row, columns["date"]))
            if not checked_first_row:
                checked_first_row = True
                if row_date is None:
                    raise FormatError(
                        f"unparseable date '{cell(row, columns['date'])}' on first data row",
                        source=self.name,
                        line=line,
                    )
            if row_date != wanted:
                continue

            hour = self._hour(row, columns, line)
            raw_price = cell(row, columns["price"])
            try:
                price = parse_number(raw_price)
            except ValueError:
                price = None
            if price is None:
                raise FormatError(f"invalid price '{raw_price}'", source=self.name, line=line)

            if "slot" in columns:
                by_hour.setdefault(hour, []).append(price)
            elif hour in by_hour:
                LOGGER.warning("%s: duplicate hour %d on line %d ignored", self.name, hour, line)
            else:
                by_hour[hour] = [price]

        if not by_hour:
            raise FormatError(f"no data found for date {wanted} and area {target_area}", source=self.name)

        prices = [
            PricePoint(ts=build_timestamp(wanted, hour), price=sum(values) / len(values))
            for hour, values in sorted(by_hour.items())
        ]
        return PriceSeries(
            date=wanted,
            area=target_area,
            prices=prices,
            source=Source(name=self.name, url=self.url),
            warning=completeness_warning(len(prices), source=self.name, date=wanted),
        )

    def _hour(self, row: List[str], columns: Dict[str, int], line: int) -> int:
        if "slot" in columns:
            raw = cell(row, columns["slot"])
            try:
                slot = int(raw)
            except ValueError as exc:
                raise FormatError(f"invalid slot code '{raw}'", source=self.name, line=line) from exc
            if not 1 <= slot <= SLOTS_PER_DAY:
                raise FormatError(f"slot code out of range (1-48): {slot}", source=self.name, line=line)
            return (slot - 1) // 2
        raw = cell(row, columns["hour"])
        try:
            hour = int(raw)
        except ValueError as exc:
            raise FormatError(f"invalid hour '{raw}'", source=self.name, line=line) from exc
        if not 0 <= hour <= 23:
            raise FormatError(f"hour out of range (0-23): {hour}", source=self.name, line=line)
        return hour
