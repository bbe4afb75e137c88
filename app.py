"""Streamlit dashboard over the JSON artefacts written by `jpgrid.pipeline`."""

import json
from pathlib import Path
from typing import Dict, List, Optional

import altair as alt
import pandas as pd
import streamlit as st

from jpgrid.config import AREA_LABELS, AREAS, OUTPUT_DIR
from jpgrid.errors import ValidationError
from jpgrid.frames import demand_frame, generation_frame, price_frame, reserve_frame, settlement_frame
from jpgrid.models import DemandSeries, GenerationSeries, PriceSeries, ReserveSeries
from jpgrid.pipeline import artifact_path
from jpgrid.settlement import calculate, flat_profile

FUEL_COLORS = {
    "solar": "#f4b400",
    "wind": "#4fc3f7",
    "hydro": "#1e88e5",
    "nuclear": "#8e24aa",
    "lng": "#fb8c00",
    "coal": "#6d4c41",
    "other": "#9e9e9e",
}
STATUS_LABELS = {"stable": "Stable", "watch": "Watch", "tight": "Tight"}


@st.cache_data(show_spinner=False)
def load_artifact(path: Path) -> Optional[Dict]:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def available_dates(root: Path) -> List[str]:
    dates = set()
    for path in root.glob("**/*.json"):
        stem = path.stem
        parts = stem.split("-", 1)
        if len(parts) == 2 and len(parts[1]) == 10:
            dates.add(parts[1])
    return sorted(dates, reverse=True)


def _line_chart(df: pd.DataFrame, value_columns: List[str], title: str, y_title: str) -> alt.Chart:
    melted = df.melt(id_vars=["timestamp"], value_vars=value_columns, var_name="series", value_name="value").dropna()
    return (
        alt.Chart(melted, title=title)
        .mark_line(point=True)
        .encode(
            x=alt.X("timestamp:T", title="Hour (JST)"),
            y=alt.Y("value:Q", title=y_title),
            color=alt.Color("series:N", title=""),
            tooltip=["timestamp:T", "series:N", alt.Tooltip("value:Q", format=",.1f")],
        )
        .properties(height=280)
    )


def _generation_chart(series: GenerationSeries) -> alt.Chart:
    df = generation_frame(series, long=True)
    return (
        alt.Chart(df, title=f"Generation mix ({series.source.name})")
        .mark_area()
        .encode(
            x=alt.X("timestamp:T", title="Hour (JST)"),
            y=alt.Y("mw:Q", stack="zero", title="MW"),
            color=alt.Color(
                "fuel:N",
                scale=alt.Scale(domain=list(FUEL_COLORS), range=list(FUEL_COLORS.values())),
                title="Fuel",
            ),
            tooltip=["timestamp:T", "fuel:N", alt.Tooltip("mw:Q", format=",.0f")],
        )
        .properties(height=320)
    )


def render_demand(payload: Dict) -> None:
    series = DemandSeries.from_dict(payload)
    df = demand_frame(series)
    columns = ["demand_mw"] + (["forecast_mw"] if df["forecast_mw"].notna().any() else [])
    st.altair_chart(_line_chart(df, columns, f"Demand ({series.source.name})", "MW"), use_container_width=True)
    if series.warning:
        st.warning(series.warning)


def render_prices(payload: Dict) -> PriceSeries:
    series = PriceSeries.from_dict(payload)
    df = price_frame(series)
    st.altair_chart(
        _line_chart(df, ["price_yen_per_kwh"], f"Day-ahead price ({series.source.name})", "JPY/kWh"),
        use_container_width=True,
    )
    if series.warning:
        st.warning(series.warning)
    return series


def render_reserve(payload: Dict, area: str) -> None:
    series = ReserveSeries.from_dict(payload)
    df = reserve_frame(series)
    current = series.for_area(area)
    if current is not None:
        st.metric(
            "Reserve margin",
            f"{current.reserve_margin_pct:.1f}%",
            STATUS_LABELS.get(current.status, current.status),
            delta_color="off",
        )
    st.dataframe(df, use_container_width=True, hide_index=True)


def render_settlement(prices: PriceSeries) -> None:
    st.subheader("Settlement preview")
    col_kwh, col_pv = st.columns(2)
    kwh = col_kwh.number_input("Hourly consumption (kWh)", min_value=0.0, value=100.0, step=10.0)
    pv = col_pv.slider("PV offset", min_value=0.0, max_value=1.0, value=0.0, step=0.05)
    try:
        result = calculate(flat_profile([point.ts for point in prices.prices], kwh), prices, pv)
    except ValidationError as exc:
        st.error(str(exc))
        return
    total_col, cost_col = st.columns(2)
    total_col.metric("Total consumption", f"{result.total_kwh:,.1f} kWh")
    cost_col.metric("Total cost", f"¥{result.total_cost_yen:,.1f}")
    st.dataframe(settlement_frame(result).drop(columns=["timestamp"]), use_container_width=True, hide_index=True)


def main() -> None:
    st.set_page_config(page_title="JP grid dashboard", layout="wide")
    st.title("Japan grid: demand, prices, reserve, generation")

    root = Path(st.sidebar.text_input("Artefact directory", str(OUTPUT_DIR)))
    dates = available_dates(root)
    if not dates:
        st.info("No artefacts found. Run `python -m jpgrid.pipeline fetch --type demand price reserve` first.")
        return
    area = st.sidebar.selectbox("Area", AREAS, format_func=lambda key: AREA_LABELS.get(key, key))
    date = st.sidebar.selectbox("Date", dates)

    demand = load_artifact(artifact_path(root, "demand", area, date))
    prices = load_artifact(artifact_path(root, "price", area, date))
    reserve = load_artifact(artifact_path(root, "reserve", None, date))
    generation = load_artifact(artifact_path(root, "generation", area, date)) or load_artifact(
        artifact_path(root, "estimate", area, date)
    )

    left, right = st.columns(2)
    with left:
        if demand:
            render_demand(demand)
        else:
            st.caption("No demand artefact for this date.")
    price_series = None
    with right:
        if prices:
            price_series = render_prices(prices)
        else:
            st.caption("No price artefact for this date.")

    if reserve:
        render_reserve(reserve, area)

    if generation:
        series = GenerationSeries.from_dict(generation)
        st.altair_chart(_generation_chart(series), use_container_width=True)
        if series.warning:
            st.warning(series.warning)
        if series.meta is not None:
            cols = st.columns(4)
            cols[0].metric("Renewable share", f"{series.meta.avg_renewable_pct:.1f}%")
            cols[1].metric("Carbon intensity", f"{series.meta.avg_carbon_gco2_kwh:.0f} g/kWh")
            cols[2].metric("Peak solar", f"{series.meta.peak_solar_mw:,.0f} MW")
            cols[3].metric("Peak wind", f"{series.meta.peak_wind_mw:,.0f} MW")

    if price_series is not None:
        render_settlement(price_series)


if __name__ == "__main__":
    main()
