"""Append-only telemetry log sink.

Accepted events are wrapped as ``{"telemetry": <payload>}`` and written as one
JSON object per line to every configured handler: a flat file, a file
partitioned by day and the console.
"""
from __future__ import annotations

import json
import logging
import re
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from .config import Settings

logger = logging.getLogger(__name__)


class JsonLineFormatter(logging.Formatter):
    """Render a record as ``{"level": ..., <envelope>, "timestamp": ...}``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {"level": record.levelname.lower()}
        envelope = getattr(record, "envelope", None)
        if isinstance(envelope, dict):
            entry.update(envelope)
        else:
            entry["message"] = record.getMessage()
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry["timestamp"] = created.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return json.dumps(entry, default=str)


class DailyFileHandler(logging.FileHandler):
    """Write to ``<directory>/<prefix>-YYYY-MM-DD.log`` for the current local day.

    Partitions older than ``retention_days`` are deleted whenever the handler
    moves to a new day.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        prefix: str = "telemetry",
        retention_days: int = 60,
        today: Callable[[], date] = date.today,
        encoding: str = "utf-8",
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.retention_days = retention_days
        self._today = today
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log$")
        self.current_date = today()
        super().__init__(self.path_for(self.current_date), mode="a", encoding=encoding, delay=True)
        self.prune()

    def path_for(self, day: date) -> Path:
        return self.directory / f"{self.prefix}-{day.isoformat()}.log"

    def emit(self, record: logging.LogRecord) -> None:
        day = self._today()
        if day != self.current_date:
            self._switch_to(day)
        super().emit(record)

    def _switch_to(self, day: date) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None
        self.current_date = day
        self.baseFilename = str(self.path_for(day).resolve())
        self.prune()

    def prune(self) -> None:
        """Delete partitions dated before the retention horizon."""

        horizon = self.current_date - timedelta(days=self.retention_days)
        for path in self.directory.iterdir():
            match = self._pattern.match(path.name)
            if not match:
                continue
            try:
                day = datetime.strptime(match.group(1), "%Y-%m-%d").date()
            except ValueError:
                continue
            if day < horizon:
                logger.info("Removing expired telemetry log %s", path)
                path.unlink(missing_ok=True)


class TelemetryLog:
    """Sink for accepted telemetry events."""

    def __init__(self, sink: logging.Logger) -> None:
        self._sink = sink

    @property
    def handlers(self):
        return tuple(self._sink.handlers)

    def record(self, payload: Any) -> None:
        self._sink.info("telemetry", extra={"envelope": {"telemetry": payload}})

    def close(self) -> None:
        for handler in list(self._sink.handlers):
            self._sink.removeHandler(handler)
            handler.close()


def build_telemetry_log(settings: Settings, today: Optional[Callable[[], date]] = None) -> TelemetryLog:
    """Create a telemetry sink writing to the handlers described by ``settings``."""

    # Standalone logger so every application owns its handlers.
    sink = logging.Logger("spa_edge.telemetry.sink", level=logging.INFO)
    formatter = JsonLineFormatter()

    flat_path = Path(settings.telemetry_log_file)
    flat_path.parent.mkdir(parents=True, exist_ok=True)
    handlers: List[logging.Handler] = [
        logging.FileHandler(flat_path, mode="a", encoding="utf-8", delay=True),
        DailyFileHandler(
            settings.telemetry_log_dir,
            retention_days=settings.telemetry_retention_days,
            today=today or date.today,
        ),
    ]
    if settings.telemetry_console:
        handlers.append(logging.StreamHandler(sys.stdout))

    for handler in handlers:
        handler.setFormatter(formatter)
        sink.addHandler(handler)
    return TelemetryLog(sink)


__all__ = ["DailyFileHandler", "JsonLineFormatter", "TelemetryLog", "build_telemetry_log"]
