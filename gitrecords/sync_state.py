"""
Replication state for one collection.

Tracks whether the latest local write has reached the remote, runs sync
attempts in the background so writers never wait on the network, and
keeps retrying failed attempts until one succeeds or the machine is shut
down.

States:
    idle            no known divergence from the remote
    syncing         an attempt is in flight (at most one at a time)
    pending_retry   the last attempt failed; a snapshot of the collection
                    is held and a retry timer is armed

Retry delays are fixed: ``initial_retry_delay`` after the first failure,
``retry_delay`` after every later one, with no cap on attempts. Retries
pull before pushing and always push what is on disk at the time of the
retry, so an older snapshot is never replicated over a newer write.

A trigger that arrives while an attempt is in flight is dropped, not
queued. A write that lands during an attempt is picked up by the next
trigger or retry.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .errors import DocumentFormatError, SyncError
from .protocol import SynchronizerProtocol
from .remote import SyncResult
from .types import Collection, copy_collection, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Update records"
RETRY_MESSAGE_PREFIX = "Background sync: "


class SyncPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    PENDING_RETRY = "pending_retry"


@dataclass
class SyncStatus:
    """
    Read-only view of replication progress.

    ``has_pending_changes`` is true from the write that triggers an attempt
    until an attempt succeeds, including while the first attempt runs.
    """
    has_pending_changes: bool
    sync_in_progress: bool
    last_sync_attempt: Optional[str]
    retry_count: int = 0
    phase: SyncPhase = SyncPhase.IDLE
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "hasPendingChanges": self.has_pending_changes,
            "syncInProgress": self.sync_in_progress,
            "lastSyncAttempt": self.last_sync_attempt,
            "retryCount": self.retry_count,
            "phase": self.phase.value,
            "lastError": self.last_error,
        }


class SyncStateMachine:
    """
    Background replication driver for one collection document.
    """

    def __init__(
        self,
        synchronizer: SynchronizerProtocol,
        document_path: Path,
        read_snapshot: Callable[[], Collection],
        *,
        name: str = "records",
        initial_retry_delay: float = 30.0,
        retry_delay: float = 300.0,
        pull_before_push: bool = False,
    ):
        """
        Args:
            synchronizer: Performs the stage/commit/pull/push sequence
            document_path: Document replicated by every attempt
            read_snapshot: Re-reads the collection from local storage
            name: Collection kind, used in logs and thread names
            initial_retry_delay: Seconds before the first retry
            retry_delay: Seconds before each later retry
            pull_before_push: Also pull on the first attempt after a write
                (retries always pull)
        """
        self._synchronizer = synchronizer
        self._path = Path(document_path)
        self._read_snapshot = read_snapshot
        self._name = name
        self._initial_retry_delay = initial_retry_delay
        self._retry_delay = retry_delay
        self._pull_before_push = pull_before_push

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._syncing = False
        self._pending: Optional[Collection] = None
        self._last_attempt_at: Optional[str] = None
        self._last_error: Optional[str] = None
        self._failures = 0
        self._timer: Optional[threading.Timer] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def trigger(self, message: str = DEFAULT_MESSAGE) -> bool:
        """
        Start a background sync attempt after a local write.

        Cancels a pending retry timer, since this attempt replaces it.

        Returns:
            True if an attempt was started, False if one was already in
            flight or the machine is shut down
        """
        with self._lock:
            if self._closed:
                logger.debug("Sync for %s is shut down; trigger ignored", self._name)
                return False
            if self._syncing:
                logger.debug("Sync for %s already in progress; trigger dropped", self._name)
                return False
            self._cancel_timer()
            self._failures = 0
            self._syncing = True
            previous = self._pending
        # The remote is behind from this write until an attempt succeeds
        snapshot = self._snapshot(previous)
        with self._lock:
            self._pending = snapshot
        worker = threading.Thread(
            target=self._attempt,
            args=(message, False),
            name=f"gitrecords-sync-{self._name}",
            daemon=True,
        )
        worker.start()
        return True

    def _on_retry_timer(self, message: str) -> None:
        with self._lock:
            self._timer = None
            if self._closed or self._syncing or self._pending is None:
                return
            self._syncing = True
            previous = self._pending
        # Retry what is on disk now, not what was there at failure time
        snapshot = self._snapshot(previous)
        with self._lock:
            self._pending = snapshot
        self._attempt(message, True)

    def _attempt(self, message: str, retry: bool) -> None:
        with self._lock:
            self._last_attempt_at = utc_now()
            attempt = self._failures + 1
        commit_message = f"{RETRY_MESSAGE_PREFIX}{message}" if retry else message
        logger.info("Syncing %s (attempt %d)", self._name, attempt)

        try:
            result = self._synchronizer.sync(
                self._path, commit_message, pull=retry or self._pull_before_push)
        except Exception as e:
            # Synchronizers report failures in the result; anything raised is a bug there
            logger.exception("Synchronizer raised for %s", self._name)
            result = SyncResult.failure(SyncError("sync", str(e)))

        if result.ok:
            with self._lock:
                self._pending = None
                self._failures = 0
                self._last_error = None
                self._syncing = False
                self._idle.notify_all()
            logger.info("Sync of %s completed", self._name)
            return

        with self._lock:
            previous = self._pending
        snapshot = self._snapshot(previous)
        with self._lock:
            self._pending = snapshot
            self._failures += 1
            self._last_error = str(result.error) if result.error else "unknown error"
            self._syncing = False
            if not self._closed:
                delay = self._initial_retry_delay if self._failures == 1 else self._retry_delay
                self._schedule(delay, message)
            self._idle.notify_all()

    def _snapshot(self, fallback: Optional[Collection]) -> Collection:
        try:
            return copy_collection(self._read_snapshot())
        except (OSError, DocumentFormatError) as e:
            logger.error("Cannot read %s for pending snapshot: %s", self._name, e)
            return fallback if fallback is not None else []

    def _schedule(self, delay: float, message: str) -> None:
        # Caller holds the lock
        self._cancel_timer()
        logger.warning(
            "Sync of %s failed (%d consecutive); retrying in %.0fs: %s",
            self._name, self._failures, delay, self._last_error,
        )
        timer = threading.Timer(delay, self._on_retry_timer, args=(message,))
        timer.name = f"gitrecords-retry-{self._name}"
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # Observation & lifecycle
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> SyncPhase:
        with self._lock:
            return self._phase()

    def _phase(self) -> SyncPhase:
        if self._syncing:
            return SyncPhase.SYNCING
        if self._pending is not None:
            return SyncPhase.PENDING_RETRY
        return SyncPhase.IDLE

    @property
    def pending_snapshot(self) -> Optional[Collection]:
        """Collection not yet known to be replicated, or None when in sync."""
        with self._lock:
            return None if self._pending is None else copy_collection(self._pending)

    def status(self) -> SyncStatus:
        with self._lock:
            return SyncStatus(
                has_pending_changes=self._pending is not None,
                sync_in_progress=self._syncing,
                last_sync_attempt=self._last_attempt_at,
                retry_count=self._failures,
                phase=self._phase(),
                last_error=self._last_error,
            )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no attempt is in flight. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._syncing, timeout)

    def flush(self, message: str = DEFAULT_MESSAGE, timeout: Optional[float] = None) -> SyncStatus:
        """Run an attempt now (unless one is in flight) and wait for it."""
        self.trigger(message)
        self.wait_idle(timeout)
        return self.status()

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop retrying. Pending changes stay on disk and are reported as
        pending; an in-flight attempt is allowed to finish.
        """
        with self._lock:
            self._closed = True
            self._cancel_timer()
        if wait:
            self.wait_idle(timeout)

    @property
    def closed(self) -> bool:
        return self._closed
