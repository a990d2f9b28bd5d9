"""
Store context: one configured set of replicated collections.

RecordStore owns the synchronizer for the working directory and, per
collection kind, a DocumentStore, a SyncStateMachine and the
RecordRepository in front of them. Everything is built from a
StoreConfig and owned by the instance, so several stores (or tests) can
coexist in one process.

Local-only use is possible with NullSynchronizer::

    store = RecordStore(config, synchronizer=NullSynchronizer())
"""

import logging
import re
import threading
from pathlib import Path
from typing import Optional

from .config import StoreConfig, get_config_dir, load_config
from .document_store import DocumentStore
from .errors import ConfigError
from .protocol import SynchronizerProtocol
from .remote import RemoteStatus, RemoteSynchronizer, SyncResult
from .repository import RecordRepository
from .sync_state import SyncStateMachine, SyncStatus

logger = logging.getLogger(__name__)

_KIND_RE = re.compile(r'^[a-z][a-z0-9_-]*$')


class NullSynchronizer:
    """No-op synchronizer for stores that are not replicated."""

    def sync(self, path: Path, message: str, *, pull: bool = False) -> SyncResult:
        return SyncResult.success()

    def ensure_repository(self) -> SyncResult:
        return SyncResult.success()


class RecordStore:
    """
    Replicated collections described by one StoreConfig.

    Configuration is validated on construction; a missing token raises
    ConfigError here rather than failing later on every sync.
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        synchronizer: Optional[SynchronizerProtocol] = None,
        bootstrap: bool = False,
    ):
        """
        Args:
            config: Validated before anything else happens
            synchronizer: Replaces the git synchronizer (tests, local-only use)
            bootstrap: Clone or pull the working directory before first use
        """
        self._config = config.validate()
        self._synchronizer = synchronizer or RemoteSynchronizer(
            config.data_dir, config.remote, config.sync)
        self._repositories: dict[str, RecordRepository] = {}
        self._lock = threading.Lock()
        self._closed = False
        if bootstrap:
            self.ensure_repository()

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def synchronizer(self) -> SynchronizerProtocol:
        return self._synchronizer

    @property
    def kinds(self) -> list[str]:
        """Configured collection kinds."""
        return sorted(self._config.collections)

    def collection(self, kind: str) -> RecordRepository:
        """Repository for a collection kind, created on first use."""
        if not _KIND_RE.match(kind):
            raise ConfigError(f"Invalid collection kind: {kind!r}")
        with self._lock:
            if self._closed:
                raise RuntimeError("RecordStore is closed")
            repository = self._repositories.get(kind)
            if repository is None:
                repository = self._build(kind)
                self._repositories[kind] = repository
            return repository

    def _build(self, kind: str) -> RecordRepository:
        coll = self._config.collection(kind)
        store = DocumentStore(self._config.data_dir / coll.filename)
        machine = SyncStateMachine(
            self._synchronizer,
            store.path,
            store.read_collection,
            name=kind,
            initial_retry_delay=self._config.sync.initial_retry_delay,
            retry_delay=self._config.sync.retry_delay,
            pull_before_push=self._config.remote.pull_before_push,
        )
        logger.debug("Opened collection %s at %s", kind, store.path)
        return RecordRepository(kind, store, machine, backup=self._config.backup)

    def ensure_repository(self) -> SyncResult:
        """Clone or pull the working directory. Failures are logged, not raised."""
        bootstrap = getattr(self._synchronizer, "ensure_repository", None)
        if bootstrap is None:
            return SyncResult.success()
        result = bootstrap()
        if not result.ok:
            logger.warning("Continuing with local data: %s", result.error)
        return result

    def remote_status(self) -> Optional[RemoteStatus]:
        status = getattr(self._synchronizer, "status", None)
        return status() if status is not None else None

    def sync_status(self) -> dict[str, SyncStatus]:
        """Sync status of every collection opened so far."""
        with self._lock:
            repositories = dict(self._repositories)
        return {kind: repo.get_sync_status() for kind, repo in repositories.items()}

    def close(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Stop all retry timers. Optionally wait for in-flight attempts."""
        with self._lock:
            self._closed = True
            repositories = list(self._repositories.values())
        for repo in repositories:
            if repo.sync is not None:
                repo.sync.shutdown(wait=wait, timeout=timeout)

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close(wait=True, timeout=30)


def open_store(config_dir: Optional[Path] = None, **kwargs) -> RecordStore:
    """Load config from ``config_dir`` (default: GITRECORDS_CONFIG_DIR or ~/.gitrecords)."""
    config = load_config(config_dir or get_config_dir())
    return RecordStore(config, **kwargs)
