"""Feed adapters and the policy that picks one per (data type, area, mode)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Protocol, Tuple

from ..config import OCCTO_DEMAND_KIND, OCCTO_GENERATION_KIND, SourcesConfig
from ..errors import ValidationError
from .columns import ByteSource, ColumnSpec, Matcher, contains, detect_columns, equals, parse_number
from .jepx import JepxPriceAdapter
from .occto import OcctoDemandAdapter, OcctoGenerationAdapter, OcctoReserveAdapter, normalize_area
from .utility import UtilityDemandAdapter, kansai_adapter, tepco_adapter

LIVE = "live"
FIXTURE = "fixture"
FIXTURE_SUFFIX = " (testdata)"


class Adapter(Protocol):
    def parse(self, source: ByteSource, target_date: str, target_area: str): ...


@dataclass(frozen=True)
class SourceRoute:
    """Where a (data type, area, mode) request gets its bytes and which adapter reads them.

    `area=None` matches any area. Live routes carry a URL builder (and an archive
    member pattern when the payload is a ZIP); fixture routes name a bundled file.
    """

    data_type: str
    area: Optional[str]
    mode: str
    source_key: str
    build_adapter: Callable[[str, str], Adapter]
    url: Optional[Callable[[SourcesConfig, date], str]] = None
    member: Optional[Callable[[date], str]] = None
    fixture: Optional[str] = None

    def adapter(self, sources: SourcesConfig) -> Adapter:
        source = getattr(sources, self.source_key)
        name = source.name + (FIXTURE_SUFFIX if self.mode == FIXTURE else "")
        return self.build_adapter(source.url, name)


def _tepco_archive(sources: SourcesConfig, day: date) -> str:
    return sources.tepco_archive_url(day.strftime("%Y%m"))


def _tepco_member(day: date) -> str:
    return f"{day.strftime('%Y%m%d')}_power_usage.csv"


def _occto(kind: str) -> Callable[[SourcesConfig, date], str]:
    def build(sources: SourcesConfig, day: date) -> str:
        return sources.occto_csv_url(kind, day.strftime("%Y/%m/%d"))

    return build


def _jepx_spot(sources: SourcesConfig, day: date) -> str:
    return sources.jepx_spot_url(day.strftime("%Y%m%d"))


def _occto_demand(url: str, name: str) -> Adapter:
    return OcctoDemandAdapter(url=url, name=name)


def _occto_reserve(url: str, name: str) -> Adapter:
    return OcctoReserveAdapter(url=url, name=name)


def _occto_generation(url: str, name: str) -> Adapter:
    return OcctoGenerationAdapter(url=url, name=name)


def _jepx(url: str, name: str) -> Adapter:
    return JepxPriceAdapter(url=url, name=name)


# Evaluated top to bottom; the first matching route wins.
ROUTES: Tuple[SourceRoute, ...] = (
    SourceRoute("demand", "tokyo", LIVE, "tepco", tepco_adapter, url=_tepco_archive, member=_tepco_member),
    SourceRoute("demand", "tokyo", FIXTURE, "tepco", tepco_adapter, fixture="tepco-sample.csv"),
    # The Kansai utility site has no stable per-day URL; live runs read OCCTO's area demand instead.
    SourceRoute("demand", "kansai", LIVE, "occto", _occto_demand, url=_occto(OCCTO_DEMAND_KIND)),
    SourceRoute("demand", "kansai", FIXTURE, "kansai", kansai_adapter, fixture="kansai-sample.csv"),
    SourceRoute("price", None, LIVE, "jepx", _jepx, url=_jepx_spot),
    SourceRoute("price", None, FIXTURE, "jepx", _jepx, fixture="jepx-sample.csv"),
    SourceRoute("reserve", None, LIVE, "occto", _occto_reserve, url=_occto(OCCTO_DEMAND_KIND)),
    SourceRoute("reserve", None, FIXTURE, "occto", _occto_reserve, fixture="occto-sample.csv"),
    SourceRoute("generation", None, LIVE, "occto", _occto_generation, url=_occto(OCCTO_GENERATION_KIND)),
    SourceRoute("generation", None, FIXTURE, "occto", _occto_generation, fixture="occto-generation-sample.csv"),
)


def select_route(data_type: str, area: Optional[str], mode: str) -> SourceRoute:
    for route in ROUTES:
        if route.data_type == data_type and route.mode == mode and route.area in (None, area):
            return route
    raise ValidationError(f"No source route for data type '{data_type}', area '{area}', mode '{mode}'")


__all__ = [
    "FIXTURE",
    "LIVE",
    "ROUTES",
    "Adapter",
    "ColumnSpec",
    "JepxPriceAdapter",
    "Matcher",
    "OcctoDemandAdapter",
    "OcctoGenerationAdapter",
    "OcctoReserveAdapter",
    "SourceRoute",
    "UtilityDemandAdapter",
    "contains",
    "detect_columns",
    "equals",
    "kansai_adapter",
    "normalize_area",
    "parse_number",
    "select_route",
    "tepco_adapter",
]
