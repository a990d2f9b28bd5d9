"""
Protocol definitions for record repositories and their collaborators.

Defines interface contracts at two levels:
- RecordRepositoryProtocol: the public CRUD API (CLI, request handlers)
- DocumentStoreProtocol / SynchronizerProtocol: local storage and remote
  replication (YAML file + git locally, in-memory fakes in tests)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from .remote import SyncResult
from .types import Collection, Page, Record


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """Whole-document persistence for one collection."""

    @property
    def path(self) -> Path: ...

    def read_collection(self) -> Collection: ...

    def write_collection(self, records: Collection) -> None: ...

    def create_backup(self) -> Optional[Path]: ...


@runtime_checkable
class SynchronizerProtocol(Protocol):
    """
    Replicates a document to a remote.

    Must report failure through the returned SyncResult, not by raising.
    """

    def sync(self, path: Path, message: str, *, pull: bool = False) -> SyncResult: ...


@runtime_checkable
class RecordRepositoryProtocol(Protocol):
    """
    The public interface for one collection kind.

    Implemented by RecordRepository.
    """

    kind: str

    # -- Read operations --

    def list(self, *, include_inactive: bool = True) -> list[Record]: ...

    def find_by_id(self, id: str) -> Optional[Record]: ...

    def find_by_name(self, name: str) -> Optional[Record]: ...

    def paginate(
        self,
        page: int = 1,
        limit: int = 10,
        *,
        include_inactive: bool = True,
    ) -> Page: ...

    # -- Write operations --

    def create(self, data: dict[str, Any]) -> Record: ...

    def update(self, id: str, data: dict[str, Any]) -> Record: ...

    def delete(self, id: str) -> None: ...

    def reorder(self, ids: list[str]) -> list[Record]: ...

    # -- Replication --

    def get_sync_status(self): ...
