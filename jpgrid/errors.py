"""Error taxonomy shared by the fetch layer, adapters, and derivation engines."""

from __future__ import annotations

from typing import Sequence


class JpGridError(Exception):
    """Base class for all errors raised by jpgrid."""


class FetchError(JpGridError):
    """Upstream bytes could not be obtained."""


class TransientFetchError(FetchError):
    """Network, timeout, or non-2xx failure that survived every retry."""

    def __init__(self, url: str, attempts: int, last_error: BaseException | str | None = None) -> None:
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"fetch of {url} failed after {attempts} attempts{detail}")


class ArchiveMemberNotFound(FetchError):
    def __init__(self, url: str, pattern: str, members: Sequence[str]) -> None:
        self.url = url
        self.pattern = pattern
        self.members = list(members)
        super().__init__(
            f"no member matching {pattern!r} in archive {url} (members: {', '.join(self.members) or 'none'})"
        )


class CircuitOpenError(FetchError):
    """Raised without attempting the call while the breaker is open."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"circuit open; next trial allowed in {retry_after:.1f}s")


class FormatError(JpGridError, ValueError):
    """A feed did not have the expected shape; signals a parser/source mismatch."""

    def __init__(
        self,
        message: str,
        *,
        source: str,
        line: int | None = None,
        expected: Sequence[str] | None = None,
        found: Sequence[str] | None = None,
    ) -> None:
        self.source = source
        self.line = line
        self.expected = list(expected) if expected is not None else None
        self.found = list(found) if found is not None else None
        parts = [f"{source}: {message}"]
        if line is not None:
            parts.append(f"at line {line}")
        if expected is not None:
            parts.append(f"expected {self.expected}")
        if found is not None:
            parts.append(f"found {self.found}")
        super().__init__(" ".join(parts))


class ValidationError(JpGridError, ValueError):
    """Out-of-range configuration or inconsistent inputs, rejected before computing."""