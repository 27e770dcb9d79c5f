"""
Transfer Engine

Copies the emotes of one 7TV emote set into another, skipping every emote
whose alias the target set already uses.

Lifecycle: Idle -> Planning -> Running -> Completed | Stopped | Failed.

1. Planning fetches source then target and freezes the list of pending
   emotes. Nothing is persisted until planning succeeds.
2. Running walks the plan from the saved cursor. Each iteration checks the
   stop flag, persists a checkpoint, then issues the add call. A crash after
   the checkpoint re-runs that emote on resume (at-least-once); the API
   rejects duplicate aliases, so a repeat add is harmless.
3. Per-emote failures are counted and the loop moves on. Throttling errors
   trigger a cool-down that keeps polling the stop flag.
4. Every run ends with exactly one terminal event (complete, stopped, error).

Only one run is active per TransferProcess. Starting or resuming while a run
is active stops the old run; its loop notices on the next check and exits
without touching the saved state of the new run.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from core.config import TransferConfig
from core.diff import compute_pending
from core.models import (
    ApiError, Collection, NoActiveProcessError, ProcessStoreError, RateLimitedError,
    TransferEvent, TransferResult, TransferState, UserCancelledError,
    COMPLETE, ERROR, LOADING, PROCESSING, RESUMING, STOPPED, WAITING,
)
from core.process_store import ProcessStore

logger = logging.getLogger(__name__)

NotificationSink = Callable[[TransferEvent], None]


class CollectionClientProtocol(Protocol):
    def fetch_collection(self, collection_id: str, token: str) -> Collection: ...
    def add_item(self, collection_id: str, media_id: str, alias: str, token: str) -> None: ...


@dataclass
class _Run:
    """One start/resume invocation and its private stop flag."""
    state: TransferState | None = None
    stop: threading.Event = field(default_factory=threading.Event)


class TransferProcess:
    """Resumable, cancellable emote set transfer."""

    def __init__(self, client: CollectionClientProtocol, store: ProcessStore,
                 sink: NotificationSink | None = None,
                 config: TransferConfig | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._client = client
        self._store = store
        self._sink = sink
        self._config = config or TransferConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._current: _Run | None = None

    @property
    def is_running(self) -> bool:
        run = self._current
        return run is not None and not run.stop.is_set()

    def pending_process(self) -> TransferState | None:
        """Saved process that can still be resumed, if any."""
        state = self._store.load_process()
        if state is None or not state.is_active:
            return None
        return state

    # -- engine-facing API --------------------------------------------------

    def start(self, source_id: str, target_id: str, target_name: str, token: str) -> TransferResult:
        """Plan and run a transfer. Blocks until a terminal event is emitted."""
        run = self._install()

        try:
            self._store.save_credentials(token)

            self._emit(TransferEvent(LOADING, "Loading source emote set..."))
            source = self._client.fetch_collection(source_id, token)
            logger.info(f"Source set loaded: {source.name} ({len(source.items)} emotes)")
            self._check_cancelled(run)

            self._emit(TransferEvent(LOADING, "Loading target emote set..."))
            target = self._client.fetch_collection(target_id, token)
            logger.info(f"Target set loaded: {target.name} ({len(target.items)} emotes)")
            self._check_cancelled(run)

            plan = compute_pending(source, target, target_name or None)
            logger.info(f"Plan: {plan.total} to add, {plan.skipped} already present")

            if plan.total == 0:
                self._release(run)
                self._emit(TransferEvent(
                    COMPLETE, "All emotes are already in the target set!",
                    added=0, failed=0, total=0, skipped=plan.skipped,
                ))
                return TransferResult(success=True)

            run.state = TransferState(plan=plan)
            if not self._checkpoint(run):
                raise UserCancelledError()

            self._emit(TransferEvent(PROCESSING, f"Adding {plan.total} emotes...",
                                     progress=0, total=plan.total))
        except UserCancelledError:
            return self._finish_stopped(run)
        except (ApiError, ProcessStoreError) as e:
            logger.error(f"Error starting transfer: {e}")
            return self._abort(run, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error starting transfer: {e}")
            return self._abort(run, f"Unexpected error: {e}")

        return self._execute(run, token)

    def stop(self) -> TransferResult:
        """Request the running transfer to stop. The loop does the cleanup."""
        logger.info("Stop requested")
        run = self._current
        if run is not None:
            run.stop.set()
            if run.state is not None:
                run.state.is_active = False
        return TransferResult(success=True)

    def resume(self, token: str | None = None) -> TransferResult:
        """Continue the saved transfer from its checkpoint."""
        try:
            saved = self.pending_process()
            if saved is None:
                raise NoActiveProcessError("No saved process to resume")
        except NoActiveProcessError as e:
            logger.info(str(e))
            return TransferResult.failure(str(e))

        token = token or self._store.load_credentials()
        if not token:
            return TransferResult.failure("7TV token not found")

        logger.info(f"Resuming transfer into '{saved.plan.target_name}' "
                    f"at {saved.cursor}/{saved.plan.total}")
        run = self._install(saved)
        try:
            if not self._checkpoint(run):
                return self._finish_stopped(run)
        except ProcessStoreError as e:
            return self._abort(run, str(e))

        self._emit(TransferEvent(
            RESUMING, f"Resuming from {saved.cursor + 1}/{saved.plan.total}...",
            progress=saved.cursor, total=saved.plan.total,
        ))
        return self._execute(run, token)

    # -- run loop -----------------------------------------------------------

    def _execute(self, run: _Run, token: str) -> TransferResult:
        try:
            self._process_queue(run, token)
        except ProcessStoreError as e:
            logger.error(f"Checkpoint failed, aborting: {e}")
            return self._abort(run, str(e))
        except Exception as e:
            # Saved checkpoint is kept so the transfer can be resumed.
            logger.exception(f"Unexpected error during transfer: {e}")
            self._detach(run)
            return self._fail(f"Unexpected error: {e}")

        if run.stop.is_set():
            return self._finish_stopped(run)
        return self._finish_complete(run)

    def _process_queue(self, run: _Run, token: str) -> None:
        state = run.state
        plan = state.plan

        for index in range(state.cursor, plan.total):
            if run.stop.is_set():
                logger.info("Transfer stopped by user")
                return

            item = plan.pending_items[index]
            state.cursor = index
            if not self._checkpoint(run):
                run.stop.set()
                return

            progress = index + 1
            self._emit(TransferEvent(PROCESSING, f"{progress}/{plan.total}",
                                     progress=progress, total=plan.total))

            try:
                logger.info(f"[{progress}/{plan.total}] Adding: {item.alias}")
                self._client.add_item(plan.target_id, item.media_id, item.alias, token)
                state.added += 1
                state.cursor = progress
            except RateLimitedError as e:
                state.failed += 1
                state.cursor = progress
                logger.warning(f"[{progress}/{plan.total}] Failed: {item.alias} - {e}")
                self._emit(TransferEvent(WAITING, "API rate limit reached, waiting..."))
                self._cool_down(run)
            except ApiError as e:
                state.failed += 1
                state.cursor = progress
                logger.warning(f"[{progress}/{plan.total}] Failed: {item.alias} - {e}")

    def _cool_down(self, run: _Run) -> None:
        poll = self._config.cooldown_poll_ms / 1000
        logger.info(f"Rate limit detected, waiting {self._config.rate_limit_cooldown_ms / 1000:.1f}s...")
        for _ in range(self._config.cooldown_polls):
            if run.stop.is_set():
                return
            self._sleep(poll)

    # -- state handling -----------------------------------------------------

    def _install(self, state: TransferState | None = None) -> _Run:
        """Make a new run the active one, stopping any previous run."""
        run = _Run(state=state)
        with self._lock:
            previous = self._current
            self._current = run
            if previous is not None:
                logger.info("Stopping existing process before starting new one")
                previous.stop.set()
                if previous.state is not None:
                    previous.state.is_active = False
                try:
                    self._store.clear_process()
                except ProcessStoreError as e:
                    # The new run's first checkpoint replaces it anyway.
                    logger.error(f"Failed to clear superseded process: {e}")
        if previous is not None and self._config.supersede_grace_ms:
            self._sleep(self._config.supersede_grace_ms / 1000)
        return run

    def _checkpoint(self, run: _Run) -> bool:
        """Persist the run's state. False if another run has taken over."""
        with self._lock:
            if self._current is not run:
                return False
            self._store.save_process(run.state)
        return True

    def _release(self, run: _Run) -> bool:
        """Drop the run and its saved state, unless another run took over."""
        with self._lock:
            if self._current is not run:
                return False
            try:
                self._store.clear_process()
            finally:
                self._current = None
        return True

    def _detach(self, run: _Run) -> None:
        """Drop the run but leave its saved state in the store."""
        with self._lock:
            if self._current is run:
                self._current = None

    def _check_cancelled(self, run: _Run) -> None:
        if run.stop.is_set():
            raise UserCancelledError("Stopped by user")

    # -- terminal events ----------------------------------------------------

    def _finish_complete(self, run: _Run) -> TransferResult:
        state = run.state
        try:
            self._release(run)
        except ProcessStoreError as e:
            return self._fail(str(e))

        message = f"Done! Added {state.added} of {state.plan.total} emotes"
        if state.failed:
            message += f" (errors: {state.failed})"
        logger.info(message)
        self._emit(TransferEvent(
            COMPLETE, message, added=state.added, failed=state.failed,
            total=state.plan.total, skipped=state.plan.skipped,
        ))
        return TransferResult(success=True)

    def _finish_stopped(self, run: _Run) -> TransferResult:
        try:
            self._release(run)
        except ProcessStoreError as e:
            logger.error(f"Failed to clear saved process: {e}")

        state = run.state
        added = state.added if state else 0
        failed = state.failed if state else 0
        total = state.plan.total if state else 0
        skipped = state.plan.skipped if state else 0
        message = f"Stopped. Added {added} of {total} emotes"
        logger.info(message)
        self._emit(TransferEvent(STOPPED, message, added=added, failed=failed,
                                 total=total, skipped=skipped))
        return TransferResult(success=True)

    def _abort(self, run: _Run, message: str) -> TransferResult:
        try:
            self._release(run)
        except ProcessStoreError as e:
            logger.error(f"Failed to clear saved process: {e}")
        return self._fail(message)

    def _fail(self, message: str) -> TransferResult:
        self._emit(TransferEvent(ERROR, message))
        return TransferResult.failure(message)

    def _emit(self, event: TransferEvent) -> None:
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception:
            logger.exception(f"Notification sink failed on {event.kind} event")


START_PASTE_PROCESS = "START_PASTE_PROCESS"
STOP_PASTE_PROCESS = "STOP_PASTE_PROCESS"
RESUME_PASTE_PROCESS = "RESUME_PASTE_PROCESS"


def handle_message(process: TransferProcess, message: dict[str, Any]) -> dict[str, Any]:
    """Dispatch a command message to the process and return its reply."""
    kind = message.get("type")

    if kind == START_PASTE_PROCESS:
        missing = [key for key in ("sourceSetId", "targetSetId", "token") if not message.get(key)]
        if missing:
            return TransferResult.failure(f"Missing fields: {', '.join(missing)}").to_dict()
        result = process.start(
            message["sourceSetId"],
            message["targetSetId"],
            message.get("targetSetName", ""),
            message["token"],
        )
    elif kind == STOP_PASTE_PROCESS:
        result = process.stop()
    elif kind == RESUME_PASTE_PROCESS:
        result = process.resume(message.get("token"))
    else:
        result = TransferResult.failure("Unknown message type")

    return result.to_dict()
