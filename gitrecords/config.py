"""
Configuration management for replicated record stores.

The configuration is stored as a TOML file in the config directory.
It names the remote repository, the credential used to push to it, the
local working directory, and the collection documents inside it.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .errors import ConfigError


CONFIG_FILENAME = "records.toml"
CONFIG_VERSION = 1

DEFAULT_CONFIG_DIR = Path.home() / ".gitrecords"
DEFAULT_BRANCH = "main"

# Retry schedule: one short delay after the first failure, then a long one
INITIAL_RETRY_DELAY = 30.0
RETRY_DELAY = 300.0

DEFAULT_COMMITTER_NAME = "Records Bot"
DEFAULT_COMMITTER_EMAIL = "records@localhost"

TOKEN_ENV_VARS = ("GITRECORDS_TOKEN", "GITHUB_TOKEN")

DEFAULT_COLLECTIONS = {
    "tags": "tags.yml",
    "categories": "categories.yml",
}


@dataclass
class RemoteConfig:
    """Where collections are replicated to."""
    owner: str = ""
    repo: str = ""
    token: str = ""
    branch: str = DEFAULT_BRANCH
    url: Optional[str] = None
    pull_before_push: bool = False

    @property
    def repository_url(self) -> str:
        """Remote URL without credentials."""
        if self.url:
            return self.url
        return f"https://github.com/{self.owner}/{self.repo}.git"


@dataclass
class SyncConfig:
    """Retry schedule and commit identity."""
    initial_retry_delay: float = INITIAL_RETRY_DELAY
    retry_delay: float = RETRY_DELAY
    committer_name: str = DEFAULT_COMMITTER_NAME
    committer_email: str = DEFAULT_COMMITTER_EMAIL


@dataclass
class CollectionConfig:
    """One collection kind and its document filename."""
    kind: str
    filename: str


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    data_dir: Path
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    collections: dict[str, CollectionConfig] = field(default_factory=dict)
    backup: bool = False
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def collection(self, kind: str) -> CollectionConfig:
        """Config for a collection kind; unconfigured kinds use ``<kind>.yml``."""
        if kind in self.collections:
            return self.collections[kind]
        return CollectionConfig(kind, DEFAULT_COLLECTIONS.get(kind, f"{kind}.yml"))

    def validate(self) -> "StoreConfig":
        """
        Check the configuration is usable.

        A missing credential is a configuration fault, not something a
        later retry can fix, so it is rejected here.

        Raises:
            ConfigError: If a required value is missing or invalid
        """
        remote = self.remote
        if not remote.token or not remote.token.strip():
            raise ConfigError(
                "Remote access token is required "
                f"(set [remote] token or one of {', '.join(TOKEN_ENV_VARS)})"
            )
        if not remote.url and not (remote.owner and remote.repo):
            raise ConfigError("Remote owner and repo are required when no url is given")
        if not remote.branch:
            raise ConfigError("Remote branch must not be empty")
        if self.sync.initial_retry_delay <= 0 or self.sync.retry_delay <= 0:
            raise ConfigError("Retry delays must be positive")
        for kind, coll in self.collections.items():
            if not coll.filename or Path(coll.filename).is_absolute() or ".." in Path(coll.filename).parts:
                raise ConfigError(
                    f"Collection {kind!r} filename must be relative to data_dir: {coll.filename!r}")
        return self


def get_config_dir() -> Path:
    """Config directory, respecting GITRECORDS_CONFIG_DIR."""
    env_dir = os.environ.get("GITRECORDS_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return DEFAULT_CONFIG_DIR


def _token_from_env() -> str:
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return ""


def _committer_from_env(sync: SyncConfig) -> SyncConfig:
    """Apply GIT_NAME / GIT_EMAIL overrides to the commit identity."""
    name = os.environ.get("GIT_NAME")
    email = os.environ.get("GIT_EMAIL")
    if name:
        sync.committer_name = name
    if email:
        sync.committer_email = email
    return sync


def create_default_config(
    config_dir: Path,
    *,
    owner: str = "",
    repo: str = "",
    token: str = "",
    branch: str = DEFAULT_BRANCH,
    url: Optional[str] = None,
    data_dir: Optional[Path] = None,
) -> StoreConfig:
    """Create a new config with default collections."""
    return StoreConfig(
        path=config_dir,
        data_dir=data_dir or config_dir / "content",
        remote=RemoteConfig(owner=owner, repo=repo, token=token, branch=branch, url=url),
        collections={
            kind: CollectionConfig(kind, filename)
            for kind, filename in DEFAULT_COLLECTIONS.items()
        },
    )


def load_config(config_dir: Path) -> StoreConfig:
    """
    Load configuration from a config directory.

    A token in the environment fills in for one missing from the file.

    Raises:
        FileNotFoundError: If config doesn't exist
        ConfigError: If config is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ConfigError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    data_dir = Path(store.get("data_dir", "content")).expanduser()
    if not data_dir.is_absolute():
        data_dir = config_dir / data_dir

    remote_section = data.get("remote", {})
    remote = RemoteConfig(
        owner=remote_section.get("owner", ""),
        repo=remote_section.get("repo", ""),
        token=remote_section.get("token", "") or _token_from_env(),
        branch=remote_section.get("branch", DEFAULT_BRANCH),
        url=remote_section.get("url"),
        pull_before_push=bool(remote_section.get("pull_before_push", False)),
    )

    sync_section = data.get("sync", {})
    sync = _committer_from_env(SyncConfig(
        initial_retry_delay=float(sync_section.get("initial_retry_delay", INITIAL_RETRY_DELAY)),
        retry_delay=float(sync_section.get("retry_delay", RETRY_DELAY)),
        committer_name=sync_section.get("committer_name", DEFAULT_COMMITTER_NAME),
        committer_email=sync_section.get("committer_email", DEFAULT_COMMITTER_EMAIL),
    ))

    def parse_collection(kind: str, section: dict[str, Any]) -> CollectionConfig:
        return CollectionConfig(kind, section.get("file", f"{kind}.yml"))

    collections = {
        kind: parse_collection(kind, section)
        for kind, section in data.get("collections", {}).items()
    }

    return StoreConfig(
        path=config_dir,
        data_dir=data_dir,
        remote=remote,
        sync=sync,
        collections=collections,
        backup=bool(store.get("backup", False)),
        version=version,
        created=store.get("created", ""),
    )


def save_config(config: StoreConfig, *, include_token: bool = True) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist. With ``include_token=False``
    the token is left for the environment to supply.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    remote: dict[str, Any] = {
        "owner": config.remote.owner,
        "repo": config.remote.repo,
        "branch": config.remote.branch,
        "pull_before_push": config.remote.pull_before_push,
    }
    if config.remote.url:
        remote["url"] = config.remote.url
    if include_token and config.remote.token:
        remote["token"] = config.remote.token

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "data_dir": str(config.data_dir),
            "backup": config.backup,
        },
        "remote": remote,
        "sync": {
            "initial_retry_delay": config.sync.initial_retry_delay,
            "retry_delay": config.sync.retry_delay,
            "committer_name": config.sync.committer_name,
            "committer_email": config.sync.committer_email,
        },
        "collections": {
            kind: {"file": coll.filename}
            for kind, coll in config.collections.items()
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)
    # The file may hold a credential
    os.chmod(config.config_path, 0o600)


def load_or_create_config(config_dir: Path, **defaults: Any) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = config_dir / CONFIG_FILENAME

    if config_path.exists():
        return load_config(config_dir)
    else:
        config = create_default_config(config_dir, **defaults)
        save_config(config)
        return config
