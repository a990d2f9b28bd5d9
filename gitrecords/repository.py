"""
CRUD over one record collection.

RecordRepository is what request handlers and the CLI call. Each write
loads the whole collection, validates, mutates it in memory, rewrites the
document, and then asks the sync state machine to replicate it. The call
returns once the local write is done; replication happens in the
background and its failures are never raised here.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, Mapping, Optional

from .document_store import DocumentStore
from .errors import DuplicateError, NotFoundError, ValidationError
from .protocol import DocumentStoreProtocol
from .sync_state import SyncStateMachine, SyncStatus
from .types import (
    ID_KEY,
    NAME_KEY,
    Collection,
    Page,
    Record,
    active_flag,
    same_name,
    validate_active,
    validate_id,
    validate_name,
)

logger = logging.getLogger(__name__)

_PAYLOAD_CORE_KEYS = frozenset({ID_KEY, NAME_KEY, "isActive", "is_active"})


def _metadata(data: Mapping[str, Any]) -> dict[str, Any]:
    """Kind-specific fields of a payload."""
    return {k: v for k, v in data.items() if k not in _PAYLOAD_CORE_KEYS}


class RecordRepository:
    """
    Business-facing access to one collection kind.

    Validation errors (ValidationError, DuplicateError, NotFoundError) are
    raised before anything is written. Local I/O errors propagate as they
    are. Replication is best-effort and observed via get_sync_status().
    """

    def __init__(
        self,
        kind: str,
        store: DocumentStoreProtocol,
        sync: Optional[SyncStateMachine] = None,
        *,
        backup: bool = False,
    ):
        """
        Args:
            kind: Collection kind ("tags", "categories", ...)
            store: Local document store for the collection
            sync: Replication driver; None keeps the collection local-only
            backup: Copy the document aside before every rewrite
        """
        self.kind = kind
        self._store = store
        self._sync = sync
        self._backup = backup
        # Serializes read-modify-write cycles within the process
        self._write_lock = threading.Lock()

    @classmethod
    def local(cls, kind: str, path) -> "RecordRepository":
        """A repository with no replication, backed by the file at ``path``."""
        return cls(kind, DocumentStore(path))

    @property
    def store(self) -> DocumentStoreProtocol:
        return self._store

    @property
    def sync(self) -> Optional[SyncStateMachine]:
        return self._sync

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def list(self, *, include_inactive: bool = True) -> list[Record]:
        """All records in collection order."""
        records = self._store.read_collection()
        if not include_inactive:
            records = [r for r in records if r.is_active]
        return records

    def find_by_id(self, id: str) -> Optional[Record]:
        for record in self._store.read_collection():
            if record.id == id:
                return record
        return None

    def find_by_name(self, name: str) -> Optional[Record]:
        """Case-insensitive lookup by name."""
        for record in self._store.read_collection():
            if same_name(record.name, name):
                return record
        return None

    def paginate(
        self,
        page: int = 1,
        limit: int = 10,
        *,
        include_inactive: bool = True,
    ) -> Page:
        """
        One page of the collection, in collection order.

        Pages past the end are empty rather than an error.
        """
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        records = self.list(include_inactive=include_inactive)
        total = len(records)
        start = (page - 1) * limit
        return Page(
            records=records[start:start + limit],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def check_duplicate_id(self, id: str) -> bool:
        return self.find_by_id(id) is not None

    def check_duplicate_name(self, name: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            same_name(r.name, name) and r.id != exclude_id
            for r in self._store.read_collection()
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create(self, data: Mapping[str, Any]) -> Record:
        """
        Append a new record.

        Args:
            data: ``id``, ``name``, optional ``isActive`` (default true) and
                any kind-specific fields

        Raises:
            ValidationError: Bad id or name
            DuplicateError: id exists, or name exists ignoring case
        """
        id = validate_id(data.get(ID_KEY))
        name = validate_name(data.get(NAME_KEY))
        active = active_flag(data)
        is_active = True if active is None else validate_active(active)
        extra = {k: v for k, v in _metadata(data).items() if v is not None}

        with self._write_lock:
            records = self._store.read_collection()
            if any(r.id == id for r in records):
                raise DuplicateError(f"{self.kind} record with ID '{id}' already exists", field=ID_KEY)
            if any(same_name(r.name, name) for r in records):
                raise DuplicateError(
                    f"{self.kind} record with name '{name}' already exists", field=NAME_KEY)

            record = Record(id=id, name=name, is_active=is_active, extra=extra)
            records.append(record)
            self._persist(records, f"Update {self.kind}: create {id}")

        logger.info("Created %s record %s", self.kind, id)
        return record.copy()

    def update(self, id: str, data: Mapping[str, Any]) -> Record:
        """
        Change a record's name, active flag or metadata.

        The id never changes; an ``id`` in ``data`` is ignored. Metadata
        fields set to None are removed.

        Raises:
            NotFoundError: No record with this id
            ValidationError: Bad name or flag
            DuplicateError: Another record already has the new name
        """
        name = data.get(NAME_KEY)
        if name is not None:
            name = validate_name(name)
        active = active_flag(data)
        if active is not None:
            validate_active(active)

        with self._write_lock:
            records = self._store.read_collection()
            index = self._index_of(records, id)

            if name is not None and any(
                r.id != id and same_name(r.name, name) for r in records
            ):
                raise DuplicateError(
                    f"{self.kind} record with name '{name}' already exists", field=NAME_KEY)

            updated = records[index].copy()
            if name is not None:
                updated.name = name
            if active is not None:
                updated.is_active = active
            for key, value in _metadata(data).items():
                if value is None:
                    updated.extra.pop(key, None)
                else:
                    updated.extra[key] = value

            records[index] = updated
            self._persist(records, f"Update {self.kind}: update {id}")

        logger.info("Updated %s record %s", self.kind, id)
        return updated.copy()

    def delete(self, id: str) -> None:
        """
        Remove a record.

        Raises:
            NotFoundError: No record with this id
        """
        with self._write_lock:
            records = self._store.read_collection()
            index = self._index_of(records, id)
            del records[index]
            self._persist(records, f"Update {self.kind}: delete {id}")
        logger.info("Deleted %s record %s", self.kind, id)

    def reorder(self, ids: list[str]) -> list[Record]:
        """
        Put records in the order given by ``ids``.

        Unknown and repeated ids are ignored. Records not mentioned keep
        their relative order and go after the listed ones; a reorder never
        drops a record.
        """
        with self._write_lock:
            records = self._store.read_collection()
            by_id = {r.id: r for r in records}
            ordered: Collection = []
            placed: set[str] = set()
            for id in ids:
                if id in by_id and id not in placed:
                    ordered.append(by_id[id])
                    placed.add(id)
            ordered.extend(r for r in records if r.id not in placed)
            self._persist(ordered, f"Update {self.kind}: reorder")
        logger.info("Reordered %s (%d records)", self.kind, len(ordered))
        return [r.copy() for r in ordered]

    # -------------------------------------------------------------------------
    # Replication
    # -------------------------------------------------------------------------

    def get_sync_status(self) -> SyncStatus:
        if self._sync is None:
            return SyncStatus(
                has_pending_changes=False,
                sync_in_progress=False,
                last_sync_attempt=None,
            )
        return self._sync.status()

    def _persist(self, records: Collection, message: str) -> None:
        if self._backup:
            self._store.create_backup()
        self._store.write_collection(records)
        if self._sync is not None:
            self._sync.trigger(message)

    def _index_of(self, records: Collection, id: str) -> int:
        for i, record in enumerate(records):
            if record.id == id:
                return i
        raise NotFoundError(self.kind, id)
