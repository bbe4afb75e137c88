"""HTTP fetch layer for the Japanese market feeds.

Publishers sit behind bot filters and flaky CDNs, so every download goes through
`ResilientFetcher`: browser-like headers, bounded exponential backoff, optional
circuit breaking across runs, transparent gzip, and ZIP member extraction.
"""

from __future__ import annotations

import gzip
import io
import logging
import time
import zipfile
from dataclasses import dataclass, replace
from fnmatch import fnmatch
from typing import IO, Callable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .circuit import CircuitBreaker
from .config import BROWSER_USER_AGENT
from .errors import ArchiveMemberNotFound, FetchError, TransientFetchError

LOGGER = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
}


@dataclass(frozen=True)
class FetcherConfig:
    max_retries: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    timeout: float = 30.0
    user_agent: str = BROWSER_USER_AGENT
    total_budget: float | None = None

    @classmethod
    def browser(cls, **overrides) -> "FetcherConfig":
        """Slower, more patient preset for publishers that throttle scripted clients."""
        return replace(cls(initial_backoff=1.0, timeout=45.0), **overrides)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based): min(initial * 2^(attempt-1), cap)."""
        if attempt < 1:
            return 0.0
        return min(self.initial_backoff * (2 ** (attempt - 1)), self.max_backoff)


def _create_session() -> requests.Session:
    session = requests.Session()
    # Retries are owned by ResilientFetcher so backoff stays bounded by FetcherConfig.
    retry = Retry(total=0, raise_on_status=False, allowed_methods=("GET",))
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class FetchedBody(io.RawIOBase):
    """Readable response body; `close()` releases the decompressor and then the connection."""

    def __init__(self, stream: IO[bytes], response: requests.Response, *, url: str, gzipped: bool) -> None:
        super().__init__()
        self._stream = stream
        self._response = response
        self.url = url
        self.gzipped = gzipped

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._stream.read(len(buffer))
        size = len(data)
        buffer[:size] = data
        return size

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return self._stream.read()
        return self._stream.read(size)

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self.gzipped:
                self._stream.close()
        finally:
            self._response.close()
            super().close()


class ResilientFetcher:
    def __init__(
        self,
        config: FetcherConfig | None = None,
        *,
        session_factory: Callable[[], requests.Session] | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or FetcherConfig()
        self._session = (session_factory or _create_session)()
        self._breaker = breaker
        self._sleep = sleep
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        if self.config.user_agent:
            headers["User-Agent"] = self.config.user_agent
        return headers

    def fetch(self, url: str) -> FetchedBody:
        """GET `url` with retries; the caller owns (and must close) the returned body."""
        if self._breaker is not None:
            return self._breaker.call(self._fetch_with_retries, url)
        return self._fetch_with_retries(url)

    def _fetch_with_retries(self, url: str) -> FetchedBody:
        attempts_allowed = self.config.max_retries + 1
        started = self._clock()
        last_error: BaseException | str | None = None
        attempt = 0
        while attempt < attempts_allowed:
            if attempt > 0:
                delay = self.config.backoff(attempt)
                budget = self.config.total_budget
                if budget is not None and (self._clock() - started) + delay > budget:
                    LOGGER.warning("Fetch budget of %.1fs exhausted for %s", budget, url)
                    break
                LOGGER.info("Retrying %s in %.2fs (attempt %d/%d)", url, delay, attempt + 1, attempts_allowed)
                self._sleep(delay)
            attempt += 1
            try:
                response = self._session.get(url, headers=self._headers(), timeout=self.config.timeout, stream=True)
            except requests.RequestException as exc:
                last_error = exc
                LOGGER.warning("Request to %s failed (attempt %d/%d): %s", url, attempt, attempts_allowed, exc)
                continue
            if not 200 <= response.status_code < 300:
                response.close()
                last_error = f"HTTP {response.status_code} from {url}"
                LOGGER.warning("%s (attempt %d/%d)", last_error, attempt, attempts_allowed)
                continue
            return self._wrap_body(response, url)

        error = TransientFetchError(url, attempt, last_error)
        if isinstance(last_error, BaseException):
            raise error from last_error
        raise error

    def _wrap_body(self, response: requests.Response, url: str) -> FetchedBody:
        encoding = (response.headers.get("Content-Encoding") or "").lower()
        if "gzip" in encoding:
            stream: IO[bytes] = gzip.GzipFile(fileobj=response.raw, mode="rb")
            return FetchedBody(stream, response, url=url, gzipped=True)
        response.raw.decode_content = True
        return FetchedBody(response.raw, response, url=url, gzipped=False)

    def fetch_bytes(self, url: str) -> bytes:
        """GET `url` and read the whole body; a body that fails to decode counts as a breaker failure."""
        if self._breaker is not None:
            return self._breaker.call(self._read_all, url)
        return self._read_all(url)

    def _read_all(self, url: str) -> bytes:
        with self._fetch_with_retries(url) as body:
            try:
                return body.read()
            except (OSError, EOFError) as exc:
                raise FetchError(f"failed to read body from {url}: {exc}") from exc

    def fetch_from_archive(self, url: str, member_pattern: str) -> io.BytesIO:
        """Download a ZIP and return the first member whose name matches the glob `member_pattern`."""
        payload = self.fetch_bytes(url)
        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as exc:
            raise FetchError(f"failed to open ZIP archive from {url}: {exc}") from exc
        with archive:
            names = archive.namelist()
            for name in names:
                if not fnmatch(name, member_pattern):
                    continue
                LOGGER.info("Extracting %s from %s", name, url)
                try:
                    return io.BytesIO(archive.read(name))
                except (zipfile.BadZipFile, OSError) as exc:
                    raise FetchError(f"failed to read {name} from ZIP {url}: {exc}") from exc
        raise ArchiveMemberNotFound(url, member_pattern, names)

    def close(self) -> None:
        self._session.close()
