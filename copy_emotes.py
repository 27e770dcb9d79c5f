#!/usr/bin/env python3
"""7TV Emote Set Copy - Command Line Entry Point

Usage: copy_emotes.py [start|resume|auto]

  start   copy SOURCE_SET_ID into TARGET_SET_ID
  resume  continue the saved transfer
  auto    resume a saved transfer if there is one, otherwise start (default)
"""

import fcntl
import logging
import os
import signal
import sys
import time
from pathlib import Path

from clients.seventv import SevenTVClient
from core.config import TransferConfig
from core.process_store import JsonProcessStore
from core.rate_limiter import RateLimiter
from core.status import LoggingSink, StatusFileSink, fan_out, write_failure_status
from core.transfer_engine import TransferProcess

COMMANDS = ("start", "resume", "auto")
DEFAULT_DATA_DIR = Path.home() / ".seventv_copy"
STALE_LOCK_SECONDS = 1800

logger = logging.getLogger(__name__)


def data_dir() -> Path:
    return Path(os.environ.get("DATA_DIR") or DEFAULT_DATA_DIR)


def setup_logging(directory: Path) -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    directory.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(directory / "copy_emotes.log", encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def acquire_lock(lock_file: Path) -> int | None:
    try:
        # Lock older than 30 min is likely orphaned
        if lock_file.exists():
            age = time.time() - lock_file.stat().st_mtime
            if age > STALE_LOCK_SECONDS:
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                lock_file.unlink(missing_ok=True)

        fd = os.open(str(lock_file), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int, lock_file: Path) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        lock_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to release lock: {e}")


def load_config(command: str, environ=None) -> dict:
    environ = os.environ if environ is None else environ
    required = ["SOURCE_SET_ID", "TARGET_SET_ID", "SEVENTV_TOKEN"] if command == "start" else []
    config = {}
    missing = []

    for var in ("SOURCE_SET_ID", "TARGET_SET_ID", "TARGET_SET_NAME", "SEVENTV_TOKEN"):
        value = environ.get(var)
        if value:
            config[var] = value
        elif var in required:
            missing.append(var)

    if missing:
        raise ValueError(f"Missing config: {', '.join(missing)}")

    return config


def build_process(directory: Path, settings: TransferConfig) -> TransferProcess:
    limiter = RateLimiter(settings.requests_per_window, settings.window_ms,
                          buffer_ms=settings.rate_limit_buffer_ms)
    client = SevenTVClient(limiter, mutation_delay_ms=settings.mutation_delay_ms,
                           timeout=settings.request_timeout)
    store = JsonProcessStore(directory / "process.json")
    sink = fan_out(LoggingSink(), StatusFileSink(directory / "copy_status.json"))
    return TransferProcess(client, store, sink=sink, config=settings)


def install_stop_handlers(process: TransferProcess) -> None:
    def handle(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current emote...")
        process.stop()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def run_command(process: TransferProcess, command: str, config: dict):
    token = config.get("SEVENTV_TOKEN")

    if command == "auto":
        pending = process.pending_process()
        if pending is not None:
            logger.info(f"Found unfinished transfer into '{pending.plan.target_name}' "
                        f"({pending.cursor}/{pending.plan.total}), resuming")
            return process.resume(token)
        config = load_config("start")
        token = config["SEVENTV_TOKEN"]
        command = "start"

    if command == "resume":
        return process.resume(token)

    return process.start(
        config["SOURCE_SET_ID"],
        config["TARGET_SET_ID"],
        config.get("TARGET_SET_NAME", ""),
        token,
    )


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "auto"
    if command not in COMMANDS:
        print(__doc__, file=sys.stderr)
        return 2

    directory = data_dir()
    setup_logging(directory)
    status_file = directory / "copy_status.json"
    lock_file = directory / ".copy.lock"

    lock_fd = acquire_lock(lock_file)
    if lock_fd is None:
        logger.warning("Another transfer running, exiting")
        return 0

    try:
        config = load_config(command)
        settings = TransferConfig.from_env()
        process = build_process(directory, settings)
        install_stop_handlers(process)

        result = run_command(process, command, config)
        if result.success:
            return 0
        logger.warning(f"Transfer failed: {result.error}")
        return 1

    except ValueError as e:
        logger.error(str(e))
        write_failure_status(str(e), status_file)
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        write_failure_status(f"Unexpected error: {e}", status_file)
        return 1
    finally:
        release_lock(lock_fd, lock_file)


if __name__ == "__main__":
    sys.exit(main())
