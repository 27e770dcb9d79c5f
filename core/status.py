"""Notification sinks: status file writer and logger"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from core.models import TransferEvent, COMPLETE, ERROR, STOPPED

logger = logging.getLogger(__name__)


def event_status(event: TransferEvent) -> str:
    if event.kind == COMPLETE:
        return "failed" if event.failed else "success"
    if event.kind == STOPPED:
        return "stopped"
    if event.kind == ERROR:
        return "failed"
    return "running"


class LoggingSink:
    """Log every event; terminal events at INFO or above."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def __call__(self, event: TransferEvent) -> None:
        if event.kind == ERROR:
            self._log.error(f"Transfer failed: {event.message}")
        elif event.is_terminal:
            self._log.info(f"{event.message} (added={event.added}, failed={event.failed}, "
                           f"skipped={event.skipped})")
        else:
            self._log.debug(f"[{event.kind}] {event.message}")


class StatusFileSink:
    """Keep a JSON status file with the latest event."""

    def __init__(self, status_file: Path):
        self._file = Path(status_file)

    def __call__(self, event: TransferEvent) -> None:
        write_status(event, self._file)


def fan_out(*sinks: Callable[[TransferEvent], None]) -> Callable[[TransferEvent], None]:
    """Combine sinks into one; each receives every event in order."""
    def sink(event: TransferEvent) -> None:
        for s in sinks:
            s(event)
    return sink


def write_status(event: TransferEvent, status_file: Path) -> bool:
    data = {
        "status": event_status(event),
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "event": event.to_dict(),
    }
    return _atomic_write(status_file, data)


def write_failure_status(message: str, status_file: Path) -> bool:
    return write_status(TransferEvent(ERROR, message), status_file)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".status_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return True
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except OSError as e:
        logger.warning(f"Status write failed: {e}")
        return False
