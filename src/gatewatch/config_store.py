"""File-backed configuration store with atomic writes and hot reload.

The store owns the single WatcherConfig value. Readers take the current
snapshot reference without locking; writers funnel through save(), which
applies the change to a mutable draft under one lock, validates the draft
into a new frozen snapshot, writes it durably and then publishes it.

External edits are picked up by an asyncio file watcher that polls the
document's fingerprint. Bursts of changes are coalesced by a Debouncer
into one reload. A reload whose bytes hash to the store's own write from
less than a second ago is skipped, so a save does not bounce back as a
spurious external change.

State machine:
    Stable -> save() -> WriteInFlight -> Stable (notify)
    Stable -> file change -> Debouncing -> SkippedSelfWrite
                                        -> Reloaded (notify)
                                        -> RetryExhausted (no-op)
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import os
import tempfile
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from pydantic import ValidationError

from gatewatch.config import WatcherConfig
from gatewatch.exceptions import (
    ConfigError,
    ConfigReadError,
    ConfigValidationError,
    ConfigWriteError,
)
from gatewatch.logging import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[WatcherConfig], None]
Mutation = Callable[[Any], object]
Fingerprint = tuple[int, int, int]

DEBOUNCE_SECONDS = 0.25
SELF_WRITE_WINDOW_SECONDS = 1.0
WATCH_INTERVAL_SECONDS = 0.2

# 8 attempts, 50ms growing by 25ms up to 200ms (~0.9s total)
READ_ATTEMPTS = 8
READ_INITIAL_DELAY = 0.05
READ_DELAY_STEP = 0.025
READ_MAX_DELAY = 0.2

_REPLACE_ATTEMPTS = 5


def _to_draft(value: Any) -> Any:
    """Turn a dumped document into attribute-addressable, mutable values."""
    if isinstance(value, dict):
        return SimpleNamespace(**{k: _to_draft(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return [_to_draft(v) for v in value]
    return value


def _from_draft(value: Any) -> Any:
    if isinstance(value, SimpleNamespace):
        return {k: _from_draft(v) for k, v in vars(value).items()}
    if isinstance(value, (list, tuple)):
        return [_from_draft(v) for v in value]
    return value


@dataclass(frozen=True)
class _OwnWrite:
    """Hash and monotonic time of the most recent document written by the store."""

    digest: bytes
    written_at: float


class Debouncer:
    """Coalesce bursts of triggers into a single deferred async action.

    Each trigger() restarts the one pending timer. When the timer fires the
    action runs as a task; a fire that arrives while the action is still
    running schedules exactly one follow-up run instead of a concurrent one.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[object]]) -> None:
        self._delay = delay
        self._action = action
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._rerun = False
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        if self._closed:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._closed:
            return
        if self.running:
            self._rerun = True
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._rerun = False
            try:
                await self._action()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("debounced_action_failed", exc_info=True)
            if not self._rerun or self._closed:
                return

    async def close(self) -> None:
        """Disable the timer and wait for an in-flight action to unwind."""
        self._closed = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class ConfigStore:
    """Owns the persisted WatcherConfig and broadcasts changes.

    Args:
        path: Location of the JSON configuration document.
        debounce_seconds: Quiet period before a burst of file events reloads.
        self_write_window: How long an own write suppresses a matching reload.
        watch_interval: Fingerprint polling period of the file watcher.
        read_attempts: Bounded retries for a contended or torn read.
        read_initial_delay: First backoff delay between read attempts.
        read_delay_step: Backoff growth per attempt.
        read_max_delay: Backoff ceiling.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        self_write_window: float = SELF_WRITE_WINDOW_SECONDS,
        watch_interval: float = WATCH_INTERVAL_SECONDS,
        read_attempts: int = READ_ATTEMPTS,
        read_initial_delay: float = READ_INITIAL_DELAY,
        read_delay_step: float = READ_DELAY_STEP,
        read_max_delay: float = READ_MAX_DELAY,
    ) -> None:
        self._path = Path(path)
        self._debounce_seconds = debounce_seconds
        self._self_write_window = self_write_window
        self._watch_interval = watch_interval
        self._read_attempts = max(1, read_attempts)
        self._read_initial_delay = read_initial_delay
        self._read_delay_step = read_delay_step
        self._read_max_delay = read_max_delay

        self._current: WatcherConfig | None = None
        self._gate = threading.Lock()
        self._subscribers: list[ChangeCallback] = []
        self._last_write: _OwnWrite | None = None
        self._generation = 0
        self._fingerprint: Fingerprint | None = None
        self._debouncer: Debouncer | None = None
        self._watch_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def current(self) -> WatcherConfig:
        """Latest committed snapshot (frozen)."""
        config = self._current
        if config is None:
            raise ConfigError("ConfigStore.load() must be called before reading")
        return config

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register an on-changed callback; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # ──────────────────────────────────────────────
    # Load / save
    # ──────────────────────────────────────────────

    def load(self) -> WatcherConfig:
        """Load the document, creating it with defaults when absent.

        A document that stays unreadable through every retry is left on disk
        untouched and the defaults are used in memory until it is fixed.
        """
        with self._gate:
            if not self._path.exists():
                config = WatcherConfig()
                self._write_atomic(config)
                logger.info("config_created_with_defaults", path=str(self._path))
            else:
                try:
                    config = self._read_with_retry_blocking()
                except ConfigReadError as e:
                    logger.error(
                        "config_unreadable_using_defaults",
                        path=str(self._path),
                        error=str(e),
                    )
                    config = WatcherConfig()
            self._current = config
            self._fingerprint = self._stat_fingerprint()
        logger.info(
            "config_loaded",
            path=str(self._path),
            interval_seconds=config.polling.interval_seconds,
            lookback_seconds=config.polling.lookback_seconds,
        )
        return config

    def save(self, mutate: Mutation) -> WatcherConfig:
        """Apply a mutation, persist it atomically and notify subscribers.

        The mutation receives a mutable draft with the same attribute layout
        as WatcherConfig (lists in place of tuples), so concurrent readers keep
        seeing the previous frozen snapshot until the new one is published.

        Raises:
            ConfigValidationError: The draft does not validate; nothing changes.
            ConfigWriteError: The document could not be written; the previous
                snapshot stays current.
        """
        if self._closed:
            raise ConfigError("ConfigStore is closed")

        with self._gate:
            draft = _to_draft(self.current.model_dump())
            mutate(draft)
            try:
                validated = WatcherConfig.model_validate(_from_draft(draft))
            except ValidationError as e:
                raise ConfigValidationError(str(e)) from e
            try:
                self._write_atomic(validated)
            except OSError as e:
                logger.error("config_write_failed", path=str(self._path), error=str(e))
                raise ConfigWriteError(f"cannot write {self._path}: {e}") from e
            self._current = validated

        logger.info("config_saved", path=str(self._path))
        self._notify(validated)
        return validated

    # ──────────────────────────────────────────────
    # Hot reload
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Start watching the document for external edits."""
        if self._watch_task is not None:
            logger.warning("config_watcher_already_running")
            return
        self._closed = False
        self._debouncer = Debouncer(self._debounce_seconds, self.reload)
        self._fingerprint = self._stat_fingerprint()
        self._watch_task = asyncio.create_task(self._watch_loop(), name="config-watcher")
        logger.info("config_watcher_started", path=str(self._path))

    async def stop(self) -> None:
        """Disable the watcher and debounce timer before the store is discarded."""
        self._closed = True
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        if self._debouncer is not None:
            await self._debouncer.close()
            self._debouncer = None
        logger.info("config_watcher_stopped")

    def notify_file_changed(self) -> None:
        """Feed one file-change event into the debouncer."""
        if self._closed or self._debouncer is None:
            return
        self._debouncer.trigger()

    async def reload(self, *, force: bool = False) -> bool:
        """Re-read the document after an external change.

        Args:
            force: Bypass self-write suppression.

        Returns:
            True when a new snapshot was published and subscribers notified.
        """
        if self._closed:
            return False

        if not force and self._is_recent_own_write():
            logger.debug("config_reload_skipped_self_write", path=str(self._path))
            return False

        generation = self._generation
        config = await self._read_with_retry()
        if config is None:
            logger.warning(
                "config_reload_failed_keeping_previous",
                path=str(self._path),
                attempts=self._read_attempts,
            )
            return False

        with self._gate:
            if self._generation != generation:
                # an own save landed while we were reading; its event reloads again
                logger.debug("config_reload_superseded_by_save")
                return False
            self._current = config

        logger.info("config_reloaded", path=str(self._path))
        self._notify(config)
        return True

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self._watch_interval)
            fingerprint = self._stat_fingerprint()
            if fingerprint != self._fingerprint:
                self._fingerprint = fingerprint
                self.notify_file_changed()

    def _stat_fingerprint(self) -> Fingerprint | None:
        try:
            st = os.stat(self._path)
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size, st.st_ino)

    def _is_recent_own_write(self) -> bool:
        own = self._last_write
        if own is None:
            return False
        if time.monotonic() - own.written_at >= self._self_write_window:
            return False
        try:
            data = self._path.read_bytes()
        except OSError:
            return False
        return hashlib.sha256(data).digest() == own.digest

    # ──────────────────────────────────────────────
    # Disk I/O
    # ──────────────────────────────────────────────

    def _read_once(self) -> WatcherConfig:
        try:
            raw = self._path.read_bytes()
        except OSError as e:
            raise ConfigReadError(f"cannot read {self._path}: {e}") from e
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ConfigReadError(f"{self._path} is not valid UTF-8") from e
        if not text.strip():
            raise ConfigReadError(f"{self._path} is empty")
        try:
            return WatcherConfig.model_validate_json(text)
        except ValidationError as e:
            raise ConfigReadError(f"{self._path} is malformed: {e}") from e

    def _read_with_retry_blocking(self) -> WatcherConfig:
        delay = self._read_initial_delay
        last_error: ConfigReadError | None = None
        for attempt in range(1, self._read_attempts + 1):
            try:
                return self._read_once()
            except ConfigReadError as e:
                last_error = e
                logger.debug("config_read_retry", attempt=attempt, error=str(e))
            if attempt < self._read_attempts:
                time.sleep(delay)
                delay = min(self._read_max_delay, delay + self._read_delay_step)
        assert last_error is not None
        raise last_error

    async def _read_with_retry(self) -> WatcherConfig | None:
        delay = self._read_initial_delay
        for attempt in range(1, self._read_attempts + 1):
            try:
                return self._read_once()
            except ConfigReadError as e:
                logger.debug("config_read_retry", attempt=attempt, error=str(e))
            if attempt < self._read_attempts:
                await asyncio.sleep(delay)
                delay = min(self._read_max_delay, delay + self._read_delay_step)
        return None

    def _write_atomic(self, config: WatcherConfig) -> None:
        """Write temp file, fsync, then atomically replace the target.

        Caller must hold the gate.
        """
        data = (config.model_dump_json(indent=2) + "\n").encode("utf-8")
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            self._replace_with_retry(temp_path)
        except OSError:
            with contextlib.suppress(OSError):
                os.unlink(temp_path)
            raise

        self._generation += 1
        self._last_write = _OwnWrite(
            digest=hashlib.sha256(data).digest(),
            written_at=time.monotonic(),
        )

    def _replace_with_retry(self, temp_path: str) -> None:
        # os.replace can fail transiently on Windows while an editor holds the target open
        for attempt in range(1, _REPLACE_ATTEMPTS + 1):
            try:
                os.replace(temp_path, self._path)
                return
            except PermissionError:
                if attempt == _REPLACE_ATTEMPTS:
                    raise
                time.sleep(0.05 * attempt)

    def _notify(self, config: WatcherConfig) -> None:
        for callback in list(self._subscribers):
            try:
                callback(config)
            except Exception:
                logger.warning("config_subscriber_failed", exc_info=True)
