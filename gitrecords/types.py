"""
Data types for replicated record collections.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import ValidationError


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.

    Used for commit messages, backups and sync status.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


# IDs are slugs: lowercase letters, digits and hyphens
_ID_RE = re.compile(r'^[a-z0-9-]+$')

MAX_ID_LENGTH = 50
MAX_NAME_LENGTH = 50

# Keys owned by Record itself; everything else is kind-specific metadata
ID_KEY = "id"
NAME_KEY = "name"
ACTIVE_KEY = "isActive"
_CORE_KEYS = frozenset({ID_KEY, NAME_KEY, ACTIVE_KEY, "is_active"})


def validate_id(id: str) -> str:
    """Validate a record ID and return it trimmed."""
    if not isinstance(id, str) or not id.strip():
        raise ValidationError("Record ID is required", field=ID_KEY)
    id = id.strip()
    if len(id) > MAX_ID_LENGTH:
        raise ValidationError(
            f"Record ID must be no more than {MAX_ID_LENGTH} characters long", field=ID_KEY)
    if not _ID_RE.match(id):
        raise ValidationError(
            "Record ID must contain only lowercase letters, numbers, and hyphens",
            field=ID_KEY,
        )
    return id


def validate_name(name: str) -> str:
    """Validate a record name and return it trimmed."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Record name is required", field=NAME_KEY)
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Record name must be no more than {MAX_NAME_LENGTH} characters long", field=NAME_KEY)
    return name


def validate_active(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("isActive must be true or false", field=ACTIVE_KEY)
    return value


def active_flag(data: dict) -> Optional[Any]:
    """Return the active flag from a payload, accepting either spelling."""
    if ACTIVE_KEY in data:
        return data[ACTIVE_KEY]
    return data.get("is_active")


def same_name(a: str, b: str) -> bool:
    """Names collide case-insensitively."""
    return a.casefold() == b.casefold()


@dataclass
class Record:
    """
    A single named entity in a collection (a tag, a category, ...).

    ``extra`` holds kind-specific metadata (icon, sort weight, ...). It is
    carried through reads and writes without interpretation.
    """
    id: str
    name: str
    is_active: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Document representation; core keys first, then metadata."""
        d: dict[str, Any] = {ID_KEY: self.id, NAME_KEY: self.name, ACTIVE_KEY: self.is_active}
        for key, value in self.extra.items():
            if key not in _CORE_KEYS:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        """Build a record from a document mapping.

        A missing ``isActive`` means active, for documents written before
        the flag existed.
        """
        active = active_flag(data)
        return cls(
            id=data[ID_KEY],
            name=data[NAME_KEY],
            is_active=True if active is None else active,
            extra={k: v for k, v in data.items() if k not in _CORE_KEYS},
        )

    def copy(self) -> "Record":
        return Record(self.id, self.name, self.is_active, dict(self.extra))

    def __str__(self) -> str:
        flag = "" if self.is_active else " (inactive)"
        return f"{self.id}  {self.name}{flag}"


# An ordered collection; list order is display order
Collection = list[Record]


def copy_collection(records: Collection) -> Collection:
    return [r.copy() for r in records]


@dataclass
class Page:
    """One page of a collection."""
    records: Collection
    total: int
    page: int
    limit: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.records],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }
