"""Settlement of an hourly consumption profile against spot prices.

effective_kwh = kwh * (1 - pv_offset_pct); cost = effective_kwh * price.

Totals accumulate unrounded values and are rounded once at the end; per-hour
lines are rounded independently for display, so they need not add up to the
rounded totals. `totals.kwh` reports metered (raw) consumption, while
`totals.cost_yen` reflects the PV-offset consumption actually billed.
"""

from __future__ import annotations

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from .errors import ValidationError
from .models import HourlyCharge, PricePoint, PriceSeries, ProfilePoint, SettlementResult, Source

LOGGER = logging.getLogger(__name__)

DISPLAY_PRECISION = Decimal("0.1")


def round_to(value: float, precision: Decimal = DISPLAY_PRECISION) -> float:
    """Round half away from zero on the shortest decimal repr (12.25 -> 12.3, -12.25 -> -12.3)."""
    return float(Decimal(repr(value)).quantize(precision, rounding=ROUND_HALF_UP))


def calculate(
    profile: Sequence[ProfilePoint],
    prices: Sequence[PricePoint] | PriceSeries,
    pv_offset_pct: float,
    *,
    area: str | None = None,
    price_source: Source | None = None,
) -> SettlementResult:
    """Price every profile hour at the exactly matching spot price.

    Raises `ValidationError` before computing anything when the profile or prices
    are empty, the PV offset is outside [0, 1], or any profile timestamp has no
    price. The profile is taken in input order and is not re-sorted.
    """
    if isinstance(prices, PriceSeries):
        area = area or prices.area
        price_source = price_source or prices.source
        price_points: Sequence[PricePoint] = prices.prices
    else:
        price_points = prices

    if not profile:
        raise ValidationError("profile is empty")
    if not price_points:
        raise ValidationError("prices are empty")
    if not 0.0 <= pv_offset_pct <= 1.0:
        raise ValidationError(f"pv_offset_pct must be between 0 and 1, got {pv_offset_pct}")

    price_by_ts = {point.ts: point.price for point in price_points}
    missing = [point.ts for point in profile if point.ts not in price_by_ts]
    if missing:
        raise ValidationError(f"no price found for timestamp {missing[0]} ({len(missing)} unmatched)")

    total_kwh = 0.0
    total_cost = 0.0
    by_hour: List[HourlyCharge] = []
    for point in profile:
        price = price_by_ts[point.ts]
        effective_kwh = point.kwh * (1.0 - pv_offset_pct)
        cost = effective_kwh * price
        total_kwh += point.kwh
        total_cost += cost
        by_hour.append(HourlyCharge(ts=point.ts, kwh=round_to(point.kwh), price=price, cost=round_to(cost)))

    result = SettlementResult(
        period_from=profile[0].ts,
        period_to=profile[-1].ts,
        total_kwh=round_to(total_kwh),
        total_cost_yen=round_to(total_cost),
        by_hour=by_hour,
        pv_offset_pct=pv_offset_pct,
        area=area or "",
        source_prices=price_source or Source(name="", url=""),
    )
    LOGGER.info(
        "Settled %d hours: %.1f kWh, %.1f JPY (pv offset %.0f%%)",
        len(by_hour),
        result.total_kwh,
        result.total_cost_yen,
        pv_offset_pct * 100,
    )
    return result


def profile_from_records(records: Iterable[Dict[str, Any]]) -> List[ProfilePoint]:
    points = []
    for index, record in enumerate(records):
        try:
            points.append(ProfilePoint(ts=str(record["ts"]), kwh=float(record["kwh"])))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"invalid profile entry #{index}: {record!r}") from exc
    return points


def load_profile(path: Path) -> List[ProfilePoint]:
    """Read a profile JSON file: either a bare list or `{"profile": [...]}` of `{ts, kwh}`."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("profile", [])
    if not isinstance(payload, list):
        raise ValidationError(f"{path}: expected a list of {{ts, kwh}} entries")
    return profile_from_records(payload)


def flat_profile(timestamps: Iterable[str], kwh: float) -> List[ProfilePoint]:
    return [ProfilePoint(ts=ts, kwh=kwh) for ts in timestamps]
