"""
Git-replicated record collections

Small, frequently edited named collections (tags, categories, ...) kept as
one YAML document per kind. Writes land on local disk immediately and are
mirrored to a remote git repository in the background, with retries.

Quick Start:
    from gitrecords import open_store

    with open_store() as store:          # reads ~/.gitrecords/records.toml
        tags = store.collection("tags")
        tags.create({"id": "tools", "name": "Tools", "isActive": True})
        tags.list()
        tags.get_sync_status()

CLI Usage:
    records init --owner acme --repo content
    records create tags tools "Tools"
    records list tags
    records status

Environment Variables:
    GITRECORDS_CONFIG_DIR  - Override config directory (default ~/.gitrecords)
    GITRECORDS_TOKEN       - Access token used to push (or GITHUB_TOKEN)
    GIT_NAME / GIT_EMAIL   - Commit identity
"""

from .backend import NullSynchronizer, RecordStore, open_store
from .config import StoreConfig, load_config, load_or_create_config
from .document_store import DocumentStore
from .errors import (
    ConfigError,
    DocumentFormatError,
    DuplicateError,
    NotFoundError,
    RecordStoreError,
    SyncError,
    ValidationError,
)
from .remote import RemoteSynchronizer, SyncResult
from .repository import RecordRepository
from .sync_state import SyncPhase, SyncStateMachine, SyncStatus
from .types import Page, Record

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DocumentFormatError",
    "DocumentStore",
    "DuplicateError",
    "NotFoundError",
    "NullSynchronizer",
    "Page",
    "Record",
    "RecordRepository",
    "RecordStore",
    "RecordStoreError",
    "RemoteSynchronizer",
    "StoreConfig",
    "SyncError",
    "SyncPhase",
    "SyncResult",
    "SyncStateMachine",
    "SyncStatus",
    "ValidationError",
    "load_config",
    "load_or_create_config",
    "open_store",
]
