"""pandas views of canonical series for the dashboard and CSV export."""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from .models import FUEL_FIELDS, DemandSeries, GenerationSeries, PriceSeries, ReserveSeries, SettlementResult


def _with_timestamp(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    df["timestamp"] = pd.to_datetime(df["ts"], utc=False)
    return df.sort_values("timestamp").reset_index(drop=True)


def demand_frame(series: DemandSeries) -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "ts": [point.ts for point in series.series],
            "demand_mw": [point.demand_mw for point in series.series],
            "forecast_mw": [point.forecast_mw for point in series.series],
        }
    )
    df["forecast_mw"] = pd.to_numeric(df["forecast_mw"], errors="coerce")
    return _with_timestamp(df)


def price_frame(series: PriceSeries) -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "ts": [point.ts for point in series.prices],
            "price_yen_per_kwh": [point.price for point in series.prices],
        }
    )
    return _with_timestamp(df)


def generation_frame(series: GenerationSeries, *, long: bool = False) -> pd.DataFrame:
    """Wide frame (one column per fuel) or, with `long=True`, tidy rows for stacked charts."""
    df = pd.DataFrame([point.to_dict() for point in series.series])
    df = _with_timestamp(df)
    if not long or df.empty:
        return df
    melted = df.melt(id_vars=["ts", "timestamp"], value_vars=list(FUEL_FIELDS), var_name="fuel", value_name="mw")
    melted["fuel"] = melted["fuel"].str.replace("_mw", "", regex=False)
    return melted


def reserve_frame(series: ReserveSeries) -> pd.DataFrame:
    df = pd.DataFrame([item.to_dict() for item in series.areas], columns=["area", "reserve_margin_pct", "status"])
    return df.sort_values("area").reset_index(drop=True)


def settlement_frame(result: SettlementResult) -> pd.DataFrame:
    df = pd.DataFrame([item.to_dict() for item in result.by_hour], columns=["ts", "kwh", "price", "cost"])
    return _with_timestamp(df)


def write_csv(df: pd.DataFrame, path: Path) -> None:
    """Persist dataframe to CSV, ensuring parent directory exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
