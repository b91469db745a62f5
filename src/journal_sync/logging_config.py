"""
logging_config.py - Structured logging for journal_sync.

Provides:
- JSON log formatter producing one sync-event object per line
- SyncLogger with convenience methods for sync events
- configure_logging() for CLI and server entry points
"""

import json
import logging
from datetime import datetime, timezone

from journal_sync.utils.timestamps import to_iso

# Attributes every LogRecord carries; anything else came in via extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Top-level keys are fixed: ts, level, logger, msg, plus event when a
    SyncLogger call supplied one. Other extra fields go under "ctx" so
    they can never shadow the fixed keys.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        line = {
            "ts": to_iso(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        event = extra.pop("event", None)
        if event is not None:
            line["event"] = event
        if self.include_extra and extra:
            line["ctx"] = extra
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str, ensure_ascii=False)


class SyncLogger:
    """
    Structured logger for sync events.

    Every event carries an "event" field plus event-specific extras,
    so JSON output can be filtered without parsing messages.
    """

    def __init__(self, name: str = "journal_sync.sync"):
        self._logger = logging.getLogger(name)

    def sync_started(self, mode: str, kind: str) -> None:
        self._logger.info(
            f"Sync started: {mode} ({kind})",
            extra={"event": "sync_started", "mode": mode, "kind": kind},
        )

    def sync_completed(
        self,
        mode: str,
        kind: str,
        scanned: int,
        applied: int,
        duration_ms: float,
    ) -> None:
        self._logger.info(
            f"Sync completed: {mode} ({kind}) scanned={scanned}, applied={applied}",
            extra={
                "event": "sync_completed",
                "mode": mode,
                "kind": kind,
                "scanned": scanned,
                "applied": applied,
                "duration_ms": duration_ms,
            },
        )

    def sync_failed(self, mode: str, kind: str, error: str) -> None:
        self._logger.error(
            f"Sync failed: {mode} ({kind}): {error}",
            extra={"event": "sync_failed", "mode": mode, "kind": kind, "error": error},
        )

    def conflict_resolved(self, kind: str, record_id: str, resolution: str) -> None:
        self._logger.debug(
            f"Conflict resolved for {kind}/{record_id}: {resolution}",
            extra={
                "event": "conflict_resolved",
                "kind": kind,
                "record_id": record_id,
                "resolution": resolution,
            },
        )

    def tombstones_collected(self, kind: str, count: int) -> None:
        self._logger.info(
            f"Collected {count} tombstones ({kind})",
            extra={"event": "tombstones_collected", "kind": kind, "count": count},
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """
    Install handlers on the root logger, replacing any existing ones.

    The file handler, when given, always writes JSON. HTTP and
    WebSocket client libraries stay at WARNING unless level is DEBUG.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    console = logging.StreamHandler()
    console.setFormatter(
        JSONFormatter() if json_format
        else logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    handlers: list[logging.Handler] = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=numeric, handlers=handlers, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if numeric <= logging.DEBUG else logging.WARNING)
