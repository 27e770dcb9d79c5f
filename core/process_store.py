"""Persistence of transfer state and the bearer credential."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from core.models import ProcessStoreError, TransferState

logger = logging.getLogger(__name__)

PROCESS_KEY = "currentPastingProcess"
TOKEN_KEY = "7tv-token"


class ProcessStore(Protocol):
    def load_process(self) -> TransferState | None: ...
    def save_process(self, state: TransferState) -> None: ...
    def clear_process(self) -> None: ...
    def load_credentials(self) -> str | None: ...
    def save_credentials(self, token: str) -> None: ...


def _decode_process(raw: Any) -> TransferState | None:
    if not raw:
        return None
    try:
        return TransferState.from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Discarding unreadable saved process: {e}")
        return None


class MemoryProcessStore:
    """In-process store. Values still go through their JSON form."""

    def __init__(self):
        self._data: dict[str, Any] = {PROCESS_KEY: None}
        self.saves = 0

    def load_process(self) -> TransferState | None:
        return _decode_process(self._data.get(PROCESS_KEY))

    def save_process(self, state: TransferState) -> None:
        self._data[PROCESS_KEY] = json.loads(json.dumps(state.to_dict()))
        self.saves += 1

    def clear_process(self) -> None:
        self._data[PROCESS_KEY] = None

    def load_credentials(self) -> str | None:
        return self._data.get(TOKEN_KEY)

    def save_credentials(self, token: str) -> None:
        self._data[TOKEN_KEY] = token


class JsonProcessStore:
    """Key-value JSON file, rewritten atomically on every change."""

    def __init__(self, path: Path):
        self._file = Path(path)
        self._data: dict[str, Any] = {PROCESS_KEY: None}
        self._load()

    def _load(self) -> None:
        if not self._file.exists():
            return

        try:
            data = json.loads(self._file.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("top-level value is not an object")
            self._data.update(data)
            logger.debug(f"Loaded process store {self._file}")
        except Exception as e:
            logger.warning(f"Process store load failed: {e}")
            self._data = {PROCESS_KEY: None}

    def _save(self, data: dict[str, Any]) -> None:
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self._file.parent, prefix=".store_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, self._file)
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            raise ProcessStoreError(f"Failed to write {self._file}: {e}") from e

    def _commit(self, key: str, value: Any) -> None:
        """Write the updated data, and only then adopt it in memory."""
        data = dict(self._data)
        data[key] = value
        self._save(data)
        self._data = data

    def load_process(self) -> TransferState | None:
        return _decode_process(self._data.get(PROCESS_KEY))

    def save_process(self, state: TransferState) -> None:
        self._commit(PROCESS_KEY, state.to_dict())

    def clear_process(self) -> None:
        if self._data.get(PROCESS_KEY) is None and self._file.exists():
            return
        self._commit(PROCESS_KEY, None)

    def load_credentials(self) -> str | None:
        return self._data.get(TOKEN_KEY)

    def save_credentials(self, token: str) -> None:
        if self._data.get(TOKEN_KEY) == token:
            return
        self._commit(TOKEN_KEY, token)
