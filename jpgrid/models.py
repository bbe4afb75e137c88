"""Canonical hourly series exchanged between adapters, engines, storage, and artefacts.

Field names follow the JSON contract consumed by the dashboard and existing
clients (`ts`, `demand_mw`, `price_yen_per_kwh[].price`, `*_mw`, `cost_yen`).
`to_json()` is deterministic so re-running a job over identical bytes yields an
identical artefact.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import TIMEZONE_NAME

HOURLY = "hourly"


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


@dataclass(frozen=True)
class Source:
    name: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "url": self.url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(name=str(data.get("name", "")), url=str(data.get("url", "")))


def _meta_dict(warning: Optional[str]) -> Dict[str, Any]:
    return {"meta": {"warning": warning}} if warning else {}


def _meta_warning(data: Dict[str, Any]) -> Optional[str]:
    meta = data.get("meta") or {}
    return meta.get("warning") or None


@dataclass(frozen=True)
class DemandPoint:
    ts: str
    demand_mw: float
    forecast_mw: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"ts": self.ts, "demand_mw": self.demand_mw}
        if self.forecast_mw is not None:
            record["forecast_mw"] = self.forecast_mw
        return record


@dataclass
class DemandSeries:
    date: str
    area: str
    series: List[DemandPoint]
    source: Source
    warning: Optional[str] = None
    timezone: str = TIMEZONE_NAME
    timescale: str = HOURLY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "area": self.area,
            "timezone": self.timezone,
            "timescale": self.timescale,
            "series": [point.to_dict() for point in self.series],
            "source": self.source.to_dict(),
            **_meta_dict(self.warning),
        }

    def to_json(self) -> str:
        return _dump(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DemandSeries":
        return cls(
            date=data["date"],
            area=data["area"],
            series=[
                DemandPoint(
                    ts=item["ts"],
                    demand_mw=float(item["demand_mw"]),
                    forecast_mw=None if item.get("forecast_mw") is None else float(item["forecast_mw"]),
                )
                for item in data.get("series", [])
            ],
            source=Source.from_dict(data.get("source", {})),
            warning=_meta_warning(data),
            timezone=data.get("timezone", TIMEZONE_NAME),
            timescale=data.get("timescale", HOURLY),
        )


@dataclass(frozen=True)
class PricePoint:
    ts: str
    price: float

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "price": self.price}


@dataclass
class PriceSeries:
    date: str
    area: str
    prices: List[PricePoint]
    source: Source
    warning: Optional[str] = None
    timescale: str = HOURLY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "area": self.area,
            "timescale": self.timescale,
            "price_yen_per_kwh": [point.to_dict() for point in self.prices],
            "source": self.source.to_dict(),
            **_meta_dict(self.warning),
        }

    def to_json(self) -> str:
        return _dump(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceSeries":
        return cls(
            date=data["date"],
            area=data["area"],
            prices=[PricePoint(ts=item["ts"], price=float(item["price"])) for item in data.get("price_yen_per_kwh", [])],
            source=Source.from_dict(data.get("source", {})),
            warning=_meta_warning(data),
            timescale=data.get("timescale", HOURLY),
        )


@dataclass(frozen=True)
class AreaReserve:
    area: str
    reserve_margin_pct: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"area": self.area, "reserve_margin_pct": self.reserve_margin_pct, "status": self.status}


@dataclass
class ReserveSeries:
    date: str
    areas: List[AreaReserve]
    source: Source
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        ordered = sorted(self.areas, key=lambda item: item.area)
        return {
            "date": self.date,
            "areas": [item.to_dict() for item in ordered],
            "source": self.source.to_dict(),
            **_meta_dict(self.warning),
        }

    def to_json(self) -> str:
        return _dump(self.to_dict())

    def for_area(self, area: str) -> Optional[AreaReserve]:
        return next((item for item in self.areas if item.area == area), None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReserveSeries":
        return cls(
            date=data["date"],
            areas=[
                AreaReserve(
                    area=item["area"],
                    reserve_margin_pct=float(item["reserve_margin_pct"]),
                    status=item["status"],
                )
                for item in data.get("areas", [])
            ],
            source=Source.from_dict(data.get("source", {})),
            warning=_meta_warning(data),
        )


FUEL_FIELDS = ("solar_mw", "wind_mw", "hydro_mw", "nuclear_mw", "lng_mw", "coal_mw", "other_mw")


@dataclass(frozen=True)
class GenerationPoint:
    ts: str
    solar_mw: float
    wind_mw: float
    hydro_mw: float
    nuclear_mw: float
    lng_mw: float
    coal_mw: float
    other_mw: float
    total_mw: float

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"ts": self.ts}
        for name in FUEL_FIELDS:
            record[name] = getattr(self, name)
        record["total_mw"] = self.total_mw
        return record

    def fuel_sum(self) -> float:
        return sum(getattr(self, name) for name in FUEL_FIELDS)


@dataclass(frozen=True)
class GenerationMeta:
    avg_renewable_pct: float
    avg_carbon_gco2_kwh: float
    peak_solar_mw: float
    peak_wind_mw: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "avg_renewable_pct": self.avg_renewable_pct,
            "avg_carbon_gco2_kwh": self.avg_carbon_gco2_kwh,
            "peak_solar_mw": self.peak_solar_mw,
            "peak_wind_mw": self.peak_wind_mw,
        }


@dataclass
class GenerationSeries:
    date: str
    area: str
    series: List[GenerationPoint]
    source: Source
    meta: Optional[GenerationMeta] = None
    warning: Optional[str] = None
    timezone: str = TIMEZONE_NAME
    timescale: str = HOURLY

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "date": self.date,
            "area": self.area,
            "timezone": self.timezone,
            "timescale": self.timescale,
            "series": [point.to_dict() for point in self.series],
            "source": self.source.to_dict(),
        }
        meta: Dict[str, Any] = self.meta.to_dict() if self.meta is not None else {}
        if self.warning:
            meta["warning"] = self.warning
        if meta:
            payload["meta"] = meta
        return payload

    def to_json(self) -> str:
        return _dump(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationSeries":
        meta = data.get("meta") or {}
        stats = GenerationMeta.__dataclass_fields__
        return cls(
            date=data["date"],
            area=data["area"],
            series=[
                GenerationPoint(ts=item["ts"], total_mw=float(item["total_mw"]), **{name: float(item[name]) for name in FUEL_FIELDS})
                for item in data.get("series", [])
            ],
            source=Source.from_dict(data.get("source", {})),
            meta=GenerationMeta(**{key: float(meta[key]) for key in stats}) if all(key in meta for key in stats) else None,
            warning=_meta_warning(data),
            timezone=data.get("timezone", TIMEZONE_NAME),
            timescale=data.get("timescale", HOURLY),
        )


@dataclass(frozen=True)
class ProfilePoint:
    ts: str
    kwh: float


@dataclass(frozen=True)
class HourlyCharge:
    ts: str
    kwh: float
    price: float
    cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "kwh": self.kwh, "price": self.price, "cost": self.cost}


@dataclass
class SettlementResult:
    period_from: str
    period_to: str
    total_kwh: float
    total_cost_yen: float
    by_hour: List[HourlyCharge]
    pv_offset_pct: float
    area: str
    source_prices: Source

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"from": self.period_from, "to": self.period_to},
            "totals": {"kwh": self.total_kwh, "cost_yen": self.total_cost_yen},
            "by_hour": [item.to_dict() for item in self.by_hour],
            "assumptions": {"pv_offset_pct": self.pv_offset_pct, "area": self.area},
            "source_prices": self.source_prices.to_dict(),
        }

    def to_json(self) -> str:
        return _dump(self.to_dict())
