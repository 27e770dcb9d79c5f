"""Data models for emote set transfers."""

import time
from dataclasses import dataclass, field
from typing import Any


class ApiError(Exception):
    """7TV API operation failed."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class NotFoundError(ApiError):
    """Requested emote set does not exist."""

    def __init__(self, message: str):
        super().__init__(404, message)


class RateLimitedError(ApiError):
    """API rejected the call because of throttling."""
    pass


class NoActiveProcessError(Exception):
    """Resume requested but no saved process exists."""
    pass


class UserCancelledError(Exception):
    """Raised internally when a transfer is stopped during planning."""
    pass


class ProcessStoreError(Exception):
    """Persisting transfer state failed."""
    pass


@dataclass(frozen=True)
class Item:
    """An emote registered in an emote set under an alias."""
    id: str
    alias: str
    media_id: str
    media_name: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "alias": self.alias,
            "media_id": self.media_id,
            "media_name": self.media_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            id=data["id"],
            alias=data["alias"],
            media_id=data["media_id"],
            media_name=data.get("media_name", ""),
        )


@dataclass(frozen=True)
class Collection:
    """An emote set snapshot as fetched from the API."""
    id: str
    name: str
    items: tuple[Item, ...] = ()


@dataclass(frozen=True)
class TransferPlan:
    """Frozen list of items to add, computed once before running."""
    source_id: str
    target_id: str
    target_name: str
    pending_items: tuple[Item, ...]
    total: int
    skipped: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "pending_items": [item.to_dict() for item in self.pending_items],
            "total": self.total,
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferPlan":
        items = tuple(Item.from_dict(i) for i in data["pending_items"])
        return cls(
            source_id=data["source_id"],
            target_id=data["target_id"],
            target_name=data.get("target_name", ""),
            pending_items=items,
            total=data.get("total", len(items)),
            skipped=data.get("skipped", 0),
        )


@dataclass
class TransferState:
    """
    Resumable progress of one transfer.

    cursor is the index of the next item to process. Counters only cover
    the processed prefix, so added + failed <= cursor.
    """
    plan: TransferPlan
    cursor: int = 0
    added: int = 0
    failed: int = 0
    is_active: bool = True
    start_time: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "cursor": self.cursor,
            "added": self.added,
            "failed": self.failed,
            "is_active": self.is_active,
            "start_time": self.start_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferState":
        plan = TransferPlan.from_dict(data["plan"])
        cursor = min(max(int(data.get("cursor", 0)), 0), plan.total)
        return cls(
            plan=plan,
            cursor=cursor,
            added=int(data.get("added", 0)),
            failed=int(data.get("failed", 0)),
            is_active=bool(data.get("is_active", False)),
            start_time=float(data.get("start_time", 0.0)),
        )


LOADING = "loading"
PROCESSING = "processing"
WAITING = "waiting"
RESUMING = "resuming"
COMPLETE = "complete"
STOPPED = "stopped"
ERROR = "error"

TERMINAL_KINDS = frozenset({COMPLETE, STOPPED, ERROR})


@dataclass(frozen=True)
class TransferEvent:
    """A progress or terminal notification emitted by the engine."""
    kind: str
    message: str
    progress: int | None = None
    total: int | None = None
    added: int | None = None
    failed: int | None = None
    skipped: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        for key in ("progress", "total", "added", "failed", "skipped"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(frozen=True)
class TransferResult:
    """Reply of the engine-facing start/stop/resume calls."""
    success: bool
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "TransferResult":
        """Create a failure result with single error."""
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data
