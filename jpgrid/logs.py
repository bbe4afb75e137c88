"""Structured records for fetch jobs: source, status, duration, artefact."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Optional

from .timeutil import TOKYO_TZ

FETCH_LOGGER = logging.getLogger("jpgrid.fetch")

SUCCESS = "success"
FAILURE = "failure"
RETRY = "retry"


def _level_for(status: str, error: Optional[BaseException | str]) -> str:
    if error or status == FAILURE:
        return "error"
    if status == RETRY:
        return "warn"
    return "info"


_LOGGING_LEVELS = {"error": logging.ERROR, "warn": logging.WARNING, "info": logging.INFO}


class FetchLogger:
    def __init__(
        self,
        json_output: bool = False,
        *,
        logger: logging.Logger = FETCH_LOGGER,
        now: Callable[[], datetime] = lambda: datetime.now(TOKYO_TZ),
    ) -> None:
        self.json_output = json_output
        self._logger = logger
        self._now = now

    def log_fetch(
        self,
        source: str,
        status: str,
        message: str,
        duration: float,
        *,
        artifact: str = "",
        error: Optional[BaseException | str] = None,
    ) -> dict:
        """Emit one record; `duration` is in seconds and reported as whole milliseconds."""
        level = _level_for(status, error)
        entry = {
            "timestamp": self._now().isoformat(timespec="seconds"),
            "level": level,
            "source": source,
            "duration_ms": int(duration * 1000),
            "status": status,
            "artifact": artifact,
            "message": message,
        }
        if error:
            entry["error"] = str(error)

        if self.json_output:
            text = json.dumps(entry, ensure_ascii=False)
        elif error:
            text = f"[{level}] {source}: {message} ({entry['duration_ms']}ms) - {entry['error']}"
        else:
            text = f"[{level}] {source}: {message} ({entry['duration_ms']}ms)"
        self._logger.log(_LOGGING_LEVELS[level], text)
        return entry
