"""
Shared pytest fixtures for gitrecords tests.

Provides a scripted synchronizer so sync behaviour can be tested without
git or a network, and a local bare repository for the tests that do use
git.
"""

import shutil
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from gitrecords.config import CollectionConfig, RemoteConfig, StoreConfig, SyncConfig
from gitrecords.errors import SyncError
from gitrecords.remote import SyncResult


class FakeSynchronizer:
    """
    Synchronizer double with scripted outcomes.

    ``results`` is consumed one per call; when empty, ``default_ok`` decides.
    Set ``gate`` to an unset Event to hold calls in flight until it is set.
    Each call records the document content on disk at the time of the call.
    """

    def __init__(self, default_ok: bool = True):
        self.default_ok = default_ok
        self.results: list[bool] = []
        self.calls: list[dict] = []
        self.gate: threading.Event | None = None
        self.raise_exc: Exception | None = None
        self._lock = threading.Lock()

    def sync(self, path: Path, message: str, *, pull: bool = False) -> SyncResult:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        content = Path(path).read_text(encoding="utf-8") if Path(path).exists() else None
        with self._lock:
            self.calls.append({"path": Path(path), "message": message, "pull": pull, "content": content})
            ok = self.results.pop(0) if self.results else self.default_ok
        if self.raise_exc is not None:
            raise self.raise_exc
        if ok:
            return SyncResult.success(committed=True, pushed=True)
        return SyncResult.failure(SyncError("push", "simulated network error"))

    def ensure_repository(self) -> SyncResult:
        return SyncResult.success()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true. Returns False on timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def fake_sync():
    """Create a fresh FakeSynchronizer that always succeeds."""
    return FakeSynchronizer()


@pytest.fixture
def make_config(tmp_path):
    """Factory for a valid StoreConfig rooted in tmp_path, with short delays."""

    def _make(**overrides) -> StoreConfig:
        remote = overrides.pop("remote", None) or RemoteConfig(
            owner="acme", repo="content", token="test-token",
            url=str(tmp_path / "remote.git"),
        )
        sync = overrides.pop("sync", None) or SyncConfig(
            initial_retry_delay=0.05, retry_delay=0.2,
        )
        config = StoreConfig(
            path=tmp_path / "config",
            data_dir=tmp_path / "content",
            remote=remote,
            sync=sync,
            collections={
                "tags": CollectionConfig("tags", "tags.yml"),
                "categories": CollectionConfig("categories", "categories.yml"),
            },
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    return _make


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture
def bare_remote(tmp_path):
    """An empty bare repository usable as a push target."""
    from git import Repo

    path = tmp_path / "remote.git"
    Repo.init(path, bare=True)
    return path


@pytest.fixture(autouse=True)
def _no_token_env(monkeypatch):
    """Keep the developer's tokens and identity out of config tests."""
    for name in ("GITRECORDS_TOKEN", "GITHUB_TOKEN", "GIT_NAME", "GIT_EMAIL", "GITRECORDS_CONFIG_DIR"):
        monkeypatch.delenv(name, raising=False)
