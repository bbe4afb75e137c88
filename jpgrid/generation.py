"""Heuristic generation-mix estimator.

Derives an hourly fuel mix from area demand and the day's spot prices when no
measured mix is available. This is a plausibility model, not a dispatch
solver:

* solar follows a fixed time-of-day curve, nudged up (by at most
  `price_swing`) in cheap hours, and is capped at `max_solar_share` of demand;
* nuclear, wind and hydro are fixed shares of demand;
* the residual is split across LNG / coal / other;
* a seasonal pass boosts summer solar and winter nuclear, taking the delta
  out of LNG and coal.

Fossil allocations are floored at zero in both passes, so on extreme inputs
the fuel sum can exceed `total_mw`; `total_mw` always equals demand.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .config import DEFAULT_HEURISTICS, GenerationHeuristics
from .errors import ValidationError
from .models import DemandSeries, GenerationMeta, GenerationPoint, GenerationSeries, PriceSeries, Source
from .timeutil import parse_date, parse_timestamp

LOGGER = logging.getLogger(__name__)

ESTIMATE_SOURCE = Source(name="Estimated (demand + price correlation)", url="Internal calculation")


def solar_factor(hour: int, heuristics: GenerationHeuristics = DEFAULT_HEURISTICS) -> float:
    """Share of peak solar output expected at `hour` (0-23)."""
    h = heuristics
    if hour < h.ramp_start_hour or hour > h.tail_end_hour:
        return 0.0
    if hour < h.peak_start_hour:
        # Quadratic ramp measured from the last dark hour, so the first ramp hour is already above zero.
        t = (hour - h.night_end_hour) / float(h.peak_start_hour - h.night_end_hour)
        return t * t
    if hour <= h.peak_end_hour:
        return 1.0
    if hour <= h.decline_end_hour:
        t = (h.decline_end_hour + 1 - hour) / float(h.decline_end_hour + 1 - h.peak_end_hour)
        return t * t
    return h.tail_factor


def summarize_generation(
    series: Sequence[GenerationPoint],
    heuristics: GenerationHeuristics = DEFAULT_HEURISTICS,
) -> GenerationMeta | None:
    """Average renewable share and carbon intensity, plus solar/wind peaks.

    Points with a non-positive total count towards the average as zero.
    """
    if not series:
        return None
    total = np.array([point.total_mw for point in series], dtype=float)
    solar = np.array([point.solar_mw for point in series], dtype=float)
    wind = np.array([point.wind_mw for point in series], dtype=float)
    hydro = np.array([point.hydro_mw for point in series], dtype=float)
    emissions = np.array(
        [
            point.lng_mw * heuristics.lng_gco2_kwh
            + point.coal_mw * heuristics.coal_gco2_kwh
            + point.other_mw * heuristics.other_gco2_kwh
            for point in series
        ],
        dtype=float,
    )
    positive = total > 0
    safe_total = np.where(positive, total, 1.0)
    renewable_pct = np.where(positive, (solar + wind + hydro) / safe_total * 100.0, 0.0)
    carbon = np.where(positive, emissions / safe_total, 0.0)
    return GenerationMeta(
        avg_renewable_pct=float(renewable_pct.mean()),
        avg_carbon_gco2_kwh=float(carbon.mean()),
        peak_solar_mw=float(max(solar.max(), 0.0)),
        peak_wind_mw=float(max(wind.max(), 0.0)),
    )


class GenerationEstimator:
    def __init__(self, heuristics: GenerationHeuristics = DEFAULT_HEURISTICS) -> None:
        self.heuristics = heuristics

    def estimate(self, demand: DemandSeries, prices: PriceSeries, *, seasonal: bool = True) -> GenerationSeries:
        """Estimate an hourly fuel mix for the demand series' area and date."""
        if not demand.series or not prices.prices:
            raise ValidationError("empty demand or price data")
        if len(demand.series) != len(prices.prices):
            raise ValidationError(
                f"demand and price series differ in length ({len(demand.series)} vs {len(prices.prices)})"
            )
        for demand_point, price_point in zip(demand.series, prices.prices):
            if demand_point.ts != price_point.ts:
                raise ValidationError(f"series are not hour-aligned: {demand_point.ts} vs {price_point.ts}")

        h = self.heuristics
        total = np.array([point.demand_mw for point in demand.series], dtype=float)
        price = np.array([point.price for point in prices.prices], dtype=float)
        hours = [parse_timestamp(point.ts).hour for point in demand.series]
        curve = np.array([solar_factor(hour, h) for hour in hours], dtype=float)

        low, high = float(price.min()), float(price.max())
        if high > low:
            price_factor = 1.0 - (price - low) / (high - low) * h.price_swing
        else:
            price_factor = np.ones_like(price)

        solar = np.maximum(total * h.max_solar_share * curve * price_factor, 0.0)
        nuclear = total * h.nuclear_share
        wind = total * h.wind_share
        hydro = total * h.hydro_share
        fossil = np.maximum(total - solar - nuclear - wind - hydro, 0.0)
        lng_share, coal_share, other_share = h.fossil_split
        lng = fossil * lng_share
        coal = fossil * coal_share
        other = fossil * other_share

        if seasonal:
            month = parse_date(demand.date).month
            solar, nuclear, lng, coal = self._seasonal_adjustment(month, solar, nuclear, lng, coal)

        series = [
            GenerationPoint(
                ts=point.ts,
                solar_mw=float(solar[i]),
                wind_mw=float(wind[i]),
                hydro_mw=float(hydro[i]),
                nuclear_mw=float(nuclear[i]),
                lng_mw=float(lng[i]),
                coal_mw=float(coal[i]),
                other_mw=float(other[i]),
                total_mw=float(total[i]),
            )
            for i, point in enumerate(demand.series)
        ]
        LOGGER.info("Estimated generation mix for %s/%s (%d points)", demand.area, demand.date, len(series))
        return GenerationSeries(
            date=demand.date,
            area=demand.area,
            series=series,
            source=ESTIMATE_SOURCE,
            meta=summarize_generation(series, h),
            warning="; ".join(dict.fromkeys(w for w in (demand.warning, prices.warning) if w)) or None,
        )

    def _seasonal_adjustment(
        self,
        month: int,
        solar: np.ndarray,
        nuclear: np.ndarray,
        lng: np.ndarray,
        coal: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        h = self.heuristics
        lng_part, coal_part = h.rebalance_split
        if month in h.summer_months:
            solar = solar * h.summer_solar_factor
            shift = solar * h.summer_rebalance_share
            lng = lng - shift * lng_part
            coal = coal - shift * coal_part
        elif month in h.winter_months:
            solar = solar * h.winter_solar_factor
            nuclear = nuclear * h.winter_nuclear_factor
            shift = nuclear * h.winter_rebalance_share
            lng = lng - shift * lng_part
            coal = coal - shift * coal_part
        return solar, nuclear, np.maximum(lng, 0.0), np.maximum(coal, 0.0)
