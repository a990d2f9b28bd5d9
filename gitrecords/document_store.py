"""
Document store using a YAML file.

Each collection kind is one document: a top-level sequence of mappings,
one per record, in display order. The document is the durable source of
truth for content. It is always read and written whole.

Local I/O errors propagate to the caller unchanged; there is no retry at
this layer.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import DocumentFormatError
from .types import ID_KEY, NAME_KEY, Collection, Record, active_flag

logger = logging.getLogger(__name__)

BACKUP_DIRNAME = "backups"


def decode_collection(data: Any, path: Path) -> Collection:
    """
    Turn a parsed YAML value into a typed collection.

    An empty document is an empty collection. Anything that is not a
    sequence of records with string ``id`` and ``name`` (and boolean
    ``isActive`` when present), or that repeats an id, is rejected.

    Raises:
        DocumentFormatError: If the document has the wrong shape
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise DocumentFormatError(path, f"expected a sequence, got {type(data).__name__}")

    records: Collection = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise DocumentFormatError(path, "entry is not a mapping", index=index)
        id = entry.get(ID_KEY)
        if not isinstance(id, str) or not id:
            raise DocumentFormatError(path, "missing or non-string 'id'", index=index)
        if not isinstance(entry.get(NAME_KEY), str):
            raise DocumentFormatError(path, f"missing or non-string 'name' for {id!r}", index=index)
        active = active_flag(entry)
        if active is not None and not isinstance(active, bool):
            raise DocumentFormatError(path, f"'isActive' must be a boolean for {id!r}", index=index)
        if id in seen:
            raise DocumentFormatError(path, f"duplicate id {id!r}", index=index)
        seen.add(id)
        records.append(Record.from_dict(entry))
    return records


def encode_collection(records: Collection) -> str:
    """Serialize a collection. Sequence order is kept exactly."""
    return yaml.safe_dump(
        [r.to_dict() for r in records],
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class DocumentStore:
    """
    YAML-file-backed store for one collection.

    Assumes a single writer process; no file locking is done.
    """

    def __init__(self, path: Path, *, backup_dir: Optional[Path] = None):
        """
        Args:
            path: Path to the collection document
            backup_dir: Where create_backup() puts copies
                (default: ``backups/`` next to the document)
        """
        self._path = Path(path)
        self._backup_dir = backup_dir or self._path.parent / BACKUP_DIRNAME

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def read_collection(self) -> Collection:
        """
        Read the whole collection.

        Creates an empty document first if none exists, so this is safe to
        call before any write.

        Raises:
            DocumentFormatError: If the document cannot be decoded
            OSError: If the document cannot be read or created
        """
        if not self._path.exists():
            logger.info("Creating empty collection document %s", self._path)
            self.write_collection([])
            return []

        text = self._path.read_text(encoding="utf-8")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise DocumentFormatError(self._path, f"YAML parse error: {e}") from e
        return decode_collection(data, self._path)

    def write_collection(self, records: Collection) -> None:
        """
        Replace the document with the given collection.

        This is a full replace; pass the complete, already-mutated
        collection. The new content is written to a temporary file in the
        same directory and moved into place.

        Raises:
            OSError: If the document cannot be written
        """
        content = encode_collection(records)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d records to %s", len(records), self._path)

    def create_backup(self) -> Optional[Path]:
        """
        Copy the current document aside before it is rewritten.

        Returns the backup path, or None when there is no document yet.
        """
        if not self._path.exists():
            return None
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self._backup_dir / f"{self._path.stem}-backup-{stamp}{self._path.suffix}"
        shutil.copy2(self._path, backup_path)
        logger.info("Backup created: %s", backup_path)
        return backup_path
