"""
CLI interface for replicated record collections.

Usage:
    records init --owner acme --repo content
    records list tags
    records create tags tools "Tools" --set icon=wrench
    records reorder tags tools design
    records status
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from typing_extensions import Annotated

from .backend import NullSynchronizer, RecordStore
from .config import (
    CONFIG_FILENAME,
    DEFAULT_BRANCH,
    create_default_config,
    get_config_dir,
    load_config,
    save_config,
)
from .errors import ConfigError, DocumentFormatError, RecordStoreError
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .repository import RecordRepository
from .sync_state import SyncStatus
from .types import Record

# How long a write command waits for its first sync attempt before exiting
SYNC_WAIT_SECONDS = 60.0


if os.environ.get("GITRECORDS_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"records {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_offline = False
_config_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _offline_callback(value: bool):
    global _offline
    _offline = value


def _config_callback(value: Optional[Path]):
    global _config_override
    _config_override = value


def _config_dir() -> Path:
    return _config_override if _config_override is not None else get_config_dir()


app = typer.Typer(
    name="records",
    help="Named record collections replicated to a git repository.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    offline: Annotated[bool, typer.Option(
        "--offline",
        help="Write locally without replicating",
        callback=_offline_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    config: Annotated[Optional[Path], typer.Option(
        "--config", "-c",
        envvar="GITRECORDS_CONFIG_DIR",
        help="Config directory (default: ~/.gitrecords)",
        callback=_config_callback,
        is_eager=True,
    )] = None,
):
    """Named record collections replicated to a git repository."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

KindArgument = Annotated[str, typer.Argument(help="Collection kind (e.g. tags, categories)")]

SetOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--set", "-s",
        help="Kind-specific field as key=value (value parsed as YAML)",
    )
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_store() -> RecordStore:
    """Open the configured store, handling errors gracefully."""
    import atexit

    config_dir = _config_dir()
    try:
        config = load_config(config_dir)
        handler = configure_ops_log(config_dir)
        synchronizer = NullSynchronizer() if _offline else None
        store = RecordStore(config, synchronizer=synchronizer)
    except FileNotFoundError:
        typer.echo(
            f"Error: no {CONFIG_FILENAME} in {config_dir}. Run 'records init' first.", err=True)
        raise typer.Exit(1)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    def _close():
        store.close()
        logging.getLogger("gitrecords").removeHandler(handler)
        handler.close()

    atexit.register(_close)
    return store


def _open_collection(kind: str) -> RecordRepository:
    store = _get_store()
    return _run(lambda: store.collection(kind))


def _parse_fields(pairs: Optional[list[str]]) -> dict[str, Any]:
    """Parse key=value pairs; values are YAML scalars (3, true, 'x')."""
    fields: dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            typer.echo(f"Error: expected key=value, got {pair!r}", err=True)
            raise typer.Exit(1)
        key, raw = pair.split("=", 1)
        key = key.strip()
        if not key:
            typer.echo(f"Error: empty key in {pair!r}", err=True)
            raise typer.Exit(1)
        try:
            fields[key] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            fields[key] = raw
    return fields


def _to_json(data: Any) -> str:
    """JSON for output; YAML dates and other non-JSON scalars become strings."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _format_records(records: list[Record]) -> str:
    if _json_output:
        return _to_json([r.to_dict() for r in records])
    if not records:
        return "No records."
    width = max(len(r.id) for r in records)
    lines = []
    for r in records:
        flag = "" if r.is_active else "  (inactive)"
        lines.append(f"{r.id:<{width}}  {r.name}{flag}")
    return "\n".join(lines)


def _format_record(record: Record) -> str:
    if _json_output:
        return _to_json(record.to_dict())
    return yaml.safe_dump(record.to_dict(), sort_keys=False, allow_unicode=True).rstrip()


def _format_status(kind: str, status: SyncStatus) -> str:
    line = f"{kind}: {status.phase.value}"
    if status.last_sync_attempt:
        line += f" (last attempt {status.last_sync_attempt})"
    if status.last_error:
        line += f"\n  last error: {status.last_error}"
    return line


def _wait_for_sync(repo: RecordRepository) -> None:
    """Wait for the write's sync attempt so the process doesn't exit mid-push."""
    if repo.sync is None:
        return
    repo.sync.wait_idle(timeout=SYNC_WAIT_SECONDS)
    status = repo.get_sync_status()
    if status.has_pending_changes:
        typer.echo(
            f"Saved locally; sync to remote pending: {status.last_error}", err=True)


def _run(action):
    """Run a store operation, turning expected errors into clean exits."""
    try:
        return action()
    except RecordStoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    owner: Annotated[str, typer.Option("--owner", help="Remote repository owner")] = "",
    repo: Annotated[str, typer.Option("--repo", help="Remote repository name")] = "",
    branch: Annotated[str, typer.Option("--branch", "-b", help="Branch to push to")] = DEFAULT_BRANCH,
    url: Annotated[Optional[str], typer.Option(
        "--url", help="Remote URL (overrides owner/repo)")] = None,
    token: Annotated[Optional[str], typer.Option(
        "--token", envvar="GITRECORDS_TOKEN", help="Access token used to push")] = None,
    data_dir: Annotated[Optional[Path], typer.Option(
        "--data-dir", help="Local working directory (default: <config>/content)")] = None,
    store_token: Annotated[bool, typer.Option(
        "--store-token/--no-store-token",
        help="Write the token into records.toml")] = True,
    force: Annotated[bool, typer.Option("--force", help="Overwrite an existing config")] = False,
):
    """
    Create records.toml and clone (or initialise) the working directory.
    """
    config_dir = _config_dir()
    config = create_default_config(
        config_dir,
        owner=owner,
        repo=repo,
        token=token or os.environ.get("GITHUB_TOKEN", ""),
        branch=branch,
        url=url,
        data_dir=data_dir.expanduser().resolve() if data_dir else None,
    )
    if config.exists() and not force:
        typer.echo(f"Error: {config.config_path} exists (use --force to overwrite)", err=True)
        raise typer.Exit(1)
    try:
        config.validate()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    save_config(config, include_token=store_token)
    typer.echo(f"Wrote {config.config_path}")

    store = RecordStore(config, synchronizer=NullSynchronizer() if _offline else None)
    result = store.ensure_repository()
    if not result.ok:
        typer.echo(f"Warning: {result.error}; continuing with local data", err=True)
    typer.echo(f"Working directory: {config.data_dir}")


@app.command("list")
def list_cmd(
    kind: KindArgument,
    active_only: Annotated[bool, typer.Option(
        "--active-only", "-a", help="Hide inactive records")] = False,
    page: Annotated[Optional[int], typer.Option("--page", "-p", help="Page number (1-based)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Records per page")] = 10,
):
    """List records in collection order."""
    repo = _open_collection(kind)
    if page is None:
        records = _run(lambda: repo.list(include_inactive=not active_only))
        typer.echo(_format_records(records))
        return
    result = _run(lambda: repo.paginate(page, limit, include_inactive=not active_only))
    if _json_output:
        typer.echo(_to_json(result.to_dict()))
        return
    typer.echo(_format_records(result.records))
    typer.echo(f"-- page {result.page}/{max(result.total_pages, 1)} ({result.total} records)")


@app.command()
def show(
    kind: KindArgument,
    id: Annotated[str, typer.Argument(help="Record ID, or a name with --name")],
    by_name: Annotated[bool, typer.Option("--name", help="Look up by name (ignoring case)")] = False,
):
    """Show one record."""
    repo = _open_collection(kind)
    record = _run(lambda: repo.find_by_name(id) if by_name else repo.find_by_id(id))
    if record is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    typer.echo(_format_record(record))


@app.command()
def create(
    kind: KindArgument,
    id: Annotated[str, typer.Argument(help="Record ID (lowercase letters, digits, hyphens)")],
    name: Annotated[str, typer.Argument(help="Display name")],
    inactive: Annotated[bool, typer.Option("--inactive", help="Create hidden")] = False,
    set_fields: SetOption = None,
):
    """Add a record to the end of a collection."""
    repo = _open_collection(kind)
    data = _parse_fields(set_fields)
    data.update({"id": id, "name": name, "isActive": not inactive})
    record = _run(lambda: repo.create(data))
    typer.echo(_format_record(record))
    _wait_for_sync(repo)


@app.command()
def update(
    kind: KindArgument,
    id: Annotated[str, typer.Argument(help="Record ID")],
    name: Annotated[Optional[str], typer.Option("--name", help="New display name")] = None,
    active: Annotated[Optional[bool], typer.Option(
        "--active/--inactive", help="Show or hide the record")] = None,
    set_fields: SetOption = None,
    unset: Annotated[Optional[list[str]], typer.Option(
        "--unset", "-u", help="Remove a kind-specific field")] = None,
):
    """Change a record's name, visibility or fields. The ID never changes."""
    repo = _open_collection(kind)
    data = _parse_fields(set_fields)
    for key in unset or []:
        data[key] = None
    if name is not None:
        data["name"] = name
    if active is not None:
        data["isActive"] = active
    if not data:
        typer.echo("Error: nothing to update", err=True)
        raise typer.Exit(1)
    record = _run(lambda: repo.update(id, data))
    typer.echo(_format_record(record))
    _wait_for_sync(repo)


@app.command("del")
def del_cmd(
    kind: KindArgument,
    id: Annotated[list[str], typer.Argument(help="ID(s) of record(s) to delete")],
):
    """Delete records."""
    repo = _open_collection(kind)
    had_errors = False
    for one_id in id:
        try:
            repo.delete(one_id)
        except RecordStoreError as e:
            typer.echo(f"Error: {e}", err=True)
            had_errors = True
            continue
        typer.echo(f"Deleted {one_id}")
        # One sync attempt at a time; let each delete's attempt finish
        _wait_for_sync(repo)
    if had_errors:
        raise typer.Exit(1)


@app.command("delete", hidden=True)
def delete(
    kind: KindArgument,
    id: Annotated[list[str], typer.Argument(help="ID(s) of record(s) to delete")],
):
    """Delete records (alias for 'del')."""
    del_cmd(kind=kind, id=id)


@app.command()
def reorder(
    kind: KindArgument,
    id: Annotated[list[str], typer.Argument(help="IDs in the new order; others follow")],
):
    """Reorder a collection. Records not listed keep their order after the listed ones."""
    repo = _open_collection(kind)
    records = _run(lambda: repo.reorder(id))
    typer.echo(_format_records(records))
    _wait_for_sync(repo)


@app.command()
def sync(
    kind: Annotated[Optional[list[str]], typer.Argument(
        help="Collection kinds to sync (default: all configured)")] = None,
):
    """Push collections to the remote now and report the outcome."""
    store = _get_store()
    kinds = kind or store.kinds
    failed = False
    results = {}
    for one_kind in kinds:
        repo = _run(lambda: store.collection(one_kind))
        # Make sure the document exists before staging it
        _run(repo.list)
        status = repo.sync.flush(f"Update {one_kind}", timeout=SYNC_WAIT_SECONDS)
        results[one_kind] = status
        failed = failed or status.has_pending_changes
    if _json_output:
        typer.echo(_to_json({k: s.to_dict() for k, s in results.items()}))
    else:
        for one_kind, status in results.items():
            typer.echo(_format_status(one_kind, status))
    if failed:
        raise typer.Exit(1)


@app.command()
def status(
    kind: Annotated[Optional[list[str]], typer.Argument(
        help="Collection kinds (default: all configured)")] = None,
):
    """Show the remote target, working directory state and collection sizes."""
    store = _get_store()
    kinds = kind or store.kinds
    remote = store.remote_status()
    counts = {}
    for one_kind in kinds:
        try:
            counts[one_kind] = len(_run(lambda: store.collection(one_kind)).list())
        except (OSError, DocumentFormatError) as e:
            counts[one_kind] = None
            typer.echo(f"Error reading {one_kind}: {e}", err=True)
    if _json_output:
        typer.echo(_to_json({
            "remote": remote.to_dict() if remote else None,
            "collections": counts,
            "sync": {k: s.to_dict() for k, s in store.sync_status().items()},
        }))
        return
    if remote:
        state = "dirty" if remote.dirty else "clean"
        if not remote.is_repository:
            state = "not a git repository"
        typer.echo(f"remote: {remote.url} ({remote.branch}), working directory {state}")
    for one_kind, count in counts.items():
        shown = "unreadable" if count is None else f"{count} records"
        typer.echo(f"{one_kind}: {shown}")


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="records CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
