"""Daily ingestion pipeline for Japanese grid feeds.

For one (data type, area, date) the pipeline picks a source route, obtains the
bytes (live fetch through `ResilientFetcher`, or a bundled fixture), parses them
with the matching adapter, stores the canonical series, and writes the JSON
artefact read by the dashboard. Live fetch failures fall back to the fixture.
Derived artefacts (estimated generation mix, settlement) are built from stored
demand and price series.
"""

from __future__ import annotations

import argparse
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .adapters import FIXTURE, LIVE, SourceRoute, select_route
from .adapters.columns import read_bytes
from .circuit import CircuitBreaker
from .config import AREAS, DB_PATH, OUTPUT_DIR, TESTDATA_DIR, SourcesConfig, ensure_directories, load_sources
from .errors import FetchError, JpGridError, ValidationError
from .fetchers import FetcherConfig, ResilientFetcher
from .generation import GenerationEstimator
from .logs import FAILURE, SUCCESS, FetchLogger
from .models import DemandSeries, GenerationSeries, PriceSeries, ReserveSeries, SettlementResult
from .settlement import calculate, flat_profile, load_profile
from .storage import DataStore, SqliteStore
from .timeutil import normalize_date, parse_date, today_tokyo

LOGGER = logging.getLogger(__name__)

FETCH_TYPES = ("demand", "price", "reserve", "generation")
Series = Union[DemandSeries, PriceSeries, ReserveSeries, GenerationSeries]
SERIES_TYPES = {
    "demand": DemandSeries,
    "price": PriceSeries,
    "reserve": ReserveSeries,
    "generation": GenerationSeries,
    "estimate": GenerationSeries,
}


@dataclass(frozen=True)
class JobResult:
    data_type: str
    area: Optional[str]
    date: str
    mode: str
    series: Series
    artifact: Optional[Path]


@dataclass
class PipelineContext:
    """Collaborators shared by every job in one run."""

    sources: SourcesConfig
    fetcher: Optional[ResilientFetcher] = None
    store: Optional[DataStore] = None
    output_dir: Optional[Path] = OUTPUT_DIR
    fetch_logger: Optional[FetchLogger] = None
    fallback_to_fixture: bool = True

    @classmethod
    def create(
        cls,
        *,
        use_http: bool = False,
        db_path: Optional[Path] = DB_PATH,
        output_dir: Optional[Path] = OUTPUT_DIR,
        json_logs: bool = False,
    ) -> "PipelineContext":
        fetcher = None
        if use_http:
            fetcher = ResilientFetcher(FetcherConfig.browser(), breaker=CircuitBreaker(failure_threshold=3, cooldown=300.0))
        return cls(
            sources=load_sources(),
            fetcher=fetcher,
            store=SqliteStore(db_path) if db_path else None,
            output_dir=output_dir,
            fetch_logger=FetchLogger(json_output=json_logs),
        )

    @property
    def mode(self) -> str:
        return LIVE if self.fetcher is not None else FIXTURE


def artifact_path(output_dir: Path, data_type: str, area: Optional[str], date: str) -> Path:
    if area is None:
        return output_dir / f"{data_type}-{date}.json"
    return output_dir / area / f"{data_type}-{date}.json"


def _write_artifact(series, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(series.to_json(), encoding="utf-8")


def _check_request(data_type: str, area: Optional[str], date: str) -> str:
    normalized = normalize_date(date)
    if normalized is None:
        raise ValidationError(f"Invalid date '{date}'. Expected YYYY-MM-DD.")
    if area is not None and area not in AREAS:
        raise ValidationError(f"Invalid area '{area}'. Expected one of: {', '.join(AREAS)}")
    if data_type not in SERIES_TYPES:
        raise ValidationError(f"Unknown data type '{data_type}'. Expected one of: {', '.join(SERIES_TYPES)}")
    return normalized


def _read_live(route: SourceRoute, ctx: PipelineContext, date: str) -> Tuple[bytes, str]:
    if ctx.fetcher is None or route.url is None:
        raise ValidationError(f"Route for {route.data_type} has no live source configured")
    day = parse_date(date)
    url = route.url(ctx.sources, day)
    if route.member is not None:
        return ctx.fetcher.fetch_from_archive(url, route.member(day)).getvalue(), url
    return ctx.fetcher.fetch_bytes(url), url


def _read_fixture(route: SourceRoute) -> Tuple[bytes, str]:
    if route.fixture is None:
        raise ValidationError(f"Route for {route.data_type} has no bundled fixture")
    path = TESTDATA_DIR / route.fixture
    with path.open("rb") as handle:
        return read_bytes(handle), str(path)


def _persist(ctx: PipelineContext, data_type: str, area: Optional[str], date: str, series) -> Optional[Path]:
    if ctx.store is not None:
        ctx.store.put(data_type, area, date, series.to_dict())
    if ctx.output_dir is None:
        return None
    path = artifact_path(ctx.output_dir, data_type, area, date)
    _write_artifact(series, path)
    return path


def run_job(data_type: str, area: Optional[str], date: str, ctx: PipelineContext) -> JobResult:
    """Fetch (or load), parse, persist and write one canonical series."""
    if data_type not in FETCH_TYPES:
        raise ValidationError(f"'{data_type}' is not a fetchable data type; expected one of: {', '.join(FETCH_TYPES)}")
    date = _check_request(data_type, area, date)
    scoped_area = None if data_type == "reserve" else area
    if data_type != "reserve" and area is None:
        raise ValidationError(f"'{data_type}' requires an area")

    mode = ctx.mode
    route = select_route(data_type, scoped_area, mode)
    fetch_logger = ctx.fetch_logger or FetchLogger()
    started = time.monotonic()
    payload: Optional[bytes] = None
    origin = ""
    if mode == LIVE:
        try:
            payload, origin = _read_live(route, ctx, date)
        except FetchError as exc:
            if not ctx.fallback_to_fixture:
                raise
            fetch_logger.log_fetch(
                route.adapter(ctx.sources).name,
                FAILURE,
                "HTTP fetch failed, falling back to testdata",
                time.monotonic() - started,
                error=exc,
            )
            mode = FIXTURE
            route = select_route(data_type, scoped_area, FIXTURE)
    if payload is None:
        payload, origin = _read_fixture(route)

    adapter = route.adapter(ctx.sources)
    series = adapter.parse(payload, date, scoped_area)
    artifact = _persist(ctx, data_type, scoped_area, date, series)
    fetch_logger.log_fetch(
        adapter.name,
        SUCCESS,
        f"Parsed {data_type} for {scoped_area or 'all areas'} on {date} from {origin}",
        time.monotonic() - started,
        artifact=str(artifact or ""),
    )
    return JobResult(data_type=data_type, area=scoped_area, date=date, mode=mode, series=series, artifact=artifact)


def load_or_fetch(data_type: str, area: Optional[str], date: str, ctx: PipelineContext) -> Series:
    """Reuse a stored series for the key when present, otherwise run the job."""
    if ctx.store is not None:
        stored = ctx.store.get(data_type, None if data_type == "reserve" else area, date)
        if stored is not None:
            LOGGER.info("Using stored %s for %s/%s", data_type, area, date)
            return SERIES_TYPES[data_type].from_dict(stored)
    return run_job(data_type, area, date, ctx).series


def align_for_estimate(demand: DemandSeries, prices: PriceSeries) -> Tuple[DemandSeries, PriceSeries]:
    """Keep only hours present in both series so the estimator sees aligned inputs."""
    shared = {point.ts for point in demand.series} & {point.ts for point in prices.prices}
    dropped = len(demand.series) + len(prices.prices) - 2 * len(shared)
    if dropped:
        LOGGER.warning("Dropping %d unmatched hours before estimating %s/%s", dropped, demand.area, demand.date)
    return (
        replace(demand, series=[point for point in demand.series if point.ts in shared]),
        replace(prices, prices=[point for point in prices.prices if point.ts in shared]),
    )


def run_estimate(area: str, date: str, ctx: PipelineContext, *, estimator: Optional[GenerationEstimator] = None) -> JobResult:
    date = _check_request("estimate", area, date)
    demand = load_or_fetch("demand", area, date, ctx)
    prices = load_or_fetch("price", area, date, ctx)
    demand, prices = align_for_estimate(demand, prices)
    series = (estimator or GenerationEstimator()).estimate(demand, prices)
    artifact = _persist(ctx, "estimate", area, date, series)
    if series.meta is not None:
        LOGGER.info(
            "Renewable share %.1f%%, carbon intensity %.1f gCO2/kWh, peak solar %.1f MW",
            series.meta.avg_renewable_pct,
            series.meta.avg_carbon_gco2_kwh,
            series.meta.peak_solar_mw,
        )
    return JobResult(data_type="estimate", area=area, date=date, mode=ctx.mode, series=series, artifact=artifact)


def run_settlement(
    area: str,
    date: str,
    ctx: PipelineContext,
    *,
    pv_offset_pct: float = 0.0,
    profile_path: Optional[Path] = None,
    flat_kwh: Optional[float] = None,
) -> Tuple[SettlementResult, Optional[Path]]:
    """Settle a profile file, or a flat hourly profile, against the day's spot prices."""
    date = _check_request("price", area, date)
    prices = load_or_fetch("price", area, date, ctx)
    if profile_path is not None:
        profile = load_profile(profile_path)
    elif flat_kwh is not None:
        profile = flat_profile([point.ts for point in prices.prices], flat_kwh)
    else:
        raise ValidationError("Provide a profile file or a flat kWh value to settle.")
    result = calculate(profile, prices, pv_offset_pct)
    if ctx.store is not None:
        ctx.store.put("settlement", area, date, result.to_dict())
    artifact = None
    if ctx.output_dir is not None:
        artifact = artifact_path(ctx.output_dir, "settlement", area, date)
        _write_artifact(result, artifact)
    return result, artifact


def run_many(
    jobs: Iterable[Tuple[str, Optional[str], str]],
    ctx: PipelineContext,
    *,
    max_workers: int = 4,
    progress_cb: Callable[[str, float], None] | None = None,
) -> List[JobResult]:
    """Run independent jobs concurrently; failures are re-raised after every job settles."""
    job_list = list(jobs)
    if not job_list:
        return []
    results: List[JobResult] = []
    errors: List[Tuple[Tuple[str, Optional[str], str], Exception]] = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(run_job, kind, area, day, ctx): (kind, area, day) for kind, area, day in job_list}
        for completed, future in enumerate(as_completed(futures), start=1):
            job = futures[future]
            try:
                results.append(future.result())
            except JpGridError as exc:
                LOGGER.error("Job %s/%s/%s failed: %s", job[0], job[1], job[2], exc)
                errors.append((job, exc))
            if progress_cb is not None:
                progress_cb(f"Finished {job[0]} {job[1] or ''} {job[2]}".strip(), completed / len(job_list))
    if errors:
        raise errors[0][1]
    order = {job: index for index, job in enumerate(job_list)}
    return sorted(results, key=lambda item: order.get((item.data_type, item.area, item.date), len(order)))


def _build_arg_parser() -> argparse.ArgumentParser:
    """CLI definition for daily ingestion and derived artefacts."""
    parser = argparse.ArgumentParser(description="Ingest Japanese grid feeds and derive generation/settlement artefacts.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured fetch records as JSON lines.")
    parser.add_argument("--use-http", action="store_true", help="Fetch live data (default: bundled testdata).")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="SQLite store path.")
    parser.add_argument("--no-db", action="store_true", help="Skip persistence to the SQLite store.")
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR, help="Root directory for JSON artefacts.")

    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser("fetch", help="Fetch and normalize one or more feeds.")
    fetch.add_argument("--type", dest="types", nargs="+", choices=FETCH_TYPES, default=["demand"])
    fetch.add_argument("--area", dest="areas", nargs="+", choices=AREAS, default=["tokyo"])
    fetch.add_argument("--date", default=None, help="Civil date YYYY-MM-DD (default: today in Asia/Tokyo).")
    fetch.add_argument("--workers", type=int, default=4)

    estimate = sub.add_parser("estimate", help="Estimate the generation mix from demand and prices.")
    estimate.add_argument("--area", choices=AREAS, default="tokyo")
    estimate.add_argument("--date", default=None)

    settle = sub.add_parser("settle", help="Settle a consumption profile against spot prices.")
    settle.add_argument("--area", choices=AREAS, default="tokyo")
    settle.add_argument("--date", default=None)
    settle.add_argument("--pv-offset", type=float, default=0.0, help="Fraction of consumption offset by on-site PV (0-1).")
    group = settle.add_mutually_exclusive_group(required=True)
    group.add_argument("--profile", type=Path, help="JSON file with [{ts, kwh}, ...].")
    group.add_argument("--flat-kwh", type=float, help="Use a flat hourly profile of this many kWh.")
    return parser


def _expand_jobs(types: Sequence[str], areas: Sequence[str], date: str) -> List[Tuple[str, Optional[str], str]]:
    jobs: List[Tuple[str, Optional[str], str]] = []
    for data_type in types:
        if data_type == "reserve":
            jobs.append((data_type, None, date))
            continue
        jobs.extend((data_type, area, date) for area in areas)
    return jobs


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="%(levelname)s %(message)s")

    ensure_directories()
    ctx = PipelineContext.create(
        use_http=args.use_http,
        db_path=None if args.no_db else args.db,
        output_dir=args.output_dir,
        json_logs=args.json_logs,
    )
    date = args.date or today_tokyo()
    try:
        if args.command == "fetch":
            for result in run_many(_expand_jobs(args.types, args.areas, date), ctx, max_workers=args.workers):
                LOGGER.info("Wrote %s (%s mode)", result.artifact, result.mode)
        elif args.command == "estimate":
            result = run_estimate(args.area, date, ctx)
            LOGGER.info("Wrote %s", result.artifact)
        elif args.command == "settle":
            settlement, artifact = run_settlement(
                args.area,
                date,
                ctx,
                pv_offset_pct=args.pv_offset,
                profile_path=args.profile,
                flat_kwh=args.flat_kwh,
            )
            LOGGER.info(
                "Settlement %s: %.1f kWh, %.1f JPY -> %s",
                date,
                settlement.total_kwh,
                settlement.total_cost_yen,
                artifact,
            )
    except JpGridError as exc:
        raise SystemExit(str(exc)) from exc
    finally:
        if isinstance(ctx.store, SqliteStore):
            ctx.store.close()
        if ctx.fetcher is not None:
            ctx.fetcher.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
