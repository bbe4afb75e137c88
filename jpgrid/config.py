from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple


BASE_DIR = Path(__file__).resolve().parent
PROJECT_DIR = BASE_DIR.parent
TESTDATA_DIR = BASE_DIR / "testdata"
DATA_DIR = PROJECT_DIR / "data"
OUTPUT_DIR = PROJECT_DIR / "public" / "data" / "jp"
DB_PATH = DATA_DIR / "jpgrid.sqlite3"

TIMEZONE_NAME = "Asia/Tokyo"
AREAS = ("tokyo", "kansai")

AREA_LABELS = {
    "tokyo": "Tokyo (TEPCO)",
    "kansai": "Kansai (KEPCO)",
}

OCCTO_DEMAND_KIND = "02"
OCCTO_GENERATION_KIND = "03"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def load_env_file(filename: str = ".env") -> None:
    """Populate os.environ with entries from a simple KEY=VALUE .env file."""
    env_path = PROJECT_DIR / filename
    if not env_path.exists():
        return
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _env(key: str, default: str) -> str:
    value = os.environ.get(key, "")
    return value or default


@dataclass(frozen=True)
class SourceConfig:
    name: str
    url: str
    download_url: str = ""


@dataclass(frozen=True)
class SourcesConfig:
    tepco: SourceConfig
    kansai: SourceConfig
    occto: SourceConfig
    jepx: SourceConfig

    def jepx_spot_url(self, compact_date: str) -> str:
        return f"{self.jepx.url.rstrip('/')}/market/excel/spot_{compact_date}.csv"

    def occto_csv_url(self, kind: str, slashed_date: str) -> str:
        return (
            f"{self.occto.download_url}?jhSybt={kind}"
            f"&tgtYmdFrom={slashed_date}&tgtYmdTo={slashed_date}"
        )

    def tepco_archive_url(self, year_month: str) -> str:
        return f"{self.tepco.download_url.rstrip('/')}/{year_month}_power_usage.zip"


def load_sources() -> SourcesConfig:
    """Resolve upstream URLs, letting environment variables override the defaults."""
    load_env_file()
    return SourcesConfig(
        tepco=SourceConfig(
            name="TEPCO",
            url=_env("TEPCO_URL", "https://www.tepco.co.jp/forecast/html/download-j.html"),
            download_url=_env("TEPCO_ARCHIVE_URL", "https://www.tepco.co.jp/forecast/html/images/"),
        ),
        kansai=SourceConfig(
            name="Kansai Electric",
            url=_env("KANSAI_URL", "https://www.kansai-td.co.jp/denkiyoho/download.html"),
        ),
        occto=SourceConfig(
            name="OCCTO",
            url=_env("OCCTO_URL", "https://www.occto.or.jp/"),
            download_url=_env(
                "OCCTO_DOWNLOAD_URL",
                "https://web-kohyo.occto.or.jp/kks-web-public/download/downloadCsv",
            ),
        ),
        jepx=SourceConfig(
            name="JEPX",
            url=_env("JEPX_URL", "https://www.jepx.jp/"),
        ),
    )


@dataclass(frozen=True)
class ReserveThresholds:
    """Reserve-margin cut points in percent; tiers must stay ascending."""

    tight_below: float = 8.0
    watch_below: float = 15.0

    def classify(self, margin_pct: float) -> str:
        if margin_pct < self.tight_below:
            return "tight"
        if margin_pct < self.watch_below:
            return "watch"
        return "stable"


@dataclass(frozen=True)
class GenerationHeuristics:
    """Fixed shares, curve breakpoints, and emission factors used by the estimator."""

    night_end_hour: int = 5
    ramp_start_hour: int = 6
    peak_start_hour: int = 11
    peak_end_hour: int = 14
    decline_end_hour: int = 18
    tail_end_hour: int = 21
    tail_factor: float = 0.05

    price_swing: float = 0.30
    max_solar_share: float = 0.18
    nuclear_share: float = 0.27
    wind_share: float = 0.03
    hydro_share: float = 0.08
    fossil_split: Tuple[float, float, float] = (0.60, 0.30, 0.10)

    lng_gco2_kwh: float = 350.0
    coal_gco2_kwh: float = 850.0
    other_gco2_kwh: float = 500.0

    summer_months: Tuple[int, ...] = (6, 7, 8)
    summer_solar_factor: float = 1.10
    summer_rebalance_share: float = 0.10
    winter_months: Tuple[int, ...] = (12, 1, 2)
    winter_solar_factor: float = 0.80
    winter_nuclear_factor: float = 1.05
    winter_rebalance_share: float = 0.05
    rebalance_split: Tuple[float, float] = (0.6, 0.4)


DEFAULT_RESERVE_THRESHOLDS = ReserveThresholds()
DEFAULT_HEURISTICS = GenerationHeuristics()


def ensure_directories() -> None:
    for path in (DATA_DIR, OUTPUT_DIR):
        path.mkdir(parents=True, exist_ok=True)
