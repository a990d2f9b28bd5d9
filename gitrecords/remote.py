"""
Replication of collection documents to a remote git repository.

RemoteSynchronizer stages one document, commits it with a fixed identity,
optionally pulls the branch, and pushes. Every failure is captured as a
SyncError inside the returned SyncResult; nothing is raised to the caller.
It keeps no state between calls beyond a lock that serializes git commands
in the working directory, which may be shared by several collection kinds.

Retry policy is not handled here; see sync_state.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from git import Repo
from git.exc import GitError, InvalidGitRepositoryError, NoSuchPathError

from .config import RemoteConfig, SyncConfig
from .errors import SyncError, redact
from .types import utc_now

logger = logging.getLogger(__name__)

# GitHub accepts any username with a token; this one is conventional
TOKEN_USERNAME = "x-access-token"


@dataclass
class SyncResult:
    """Outcome of one replication attempt."""
    ok: bool
    error: Optional[SyncError] = None
    committed: bool = False
    pushed: bool = False

    @classmethod
    def success(cls, *, committed: bool = False, pushed: bool = False) -> "SyncResult":
        return cls(ok=True, committed=committed, pushed=pushed)

    @classmethod
    def failure(cls, error: SyncError) -> "SyncResult":
        return cls(ok=False, error=error)


@dataclass
class RemoteStatus:
    """Where the working directory replicates to, and whether it is clean."""
    url: str
    branch: str
    is_repository: bool
    dirty: bool

    def to_dict(self) -> dict:
        return {
            "repoUrl": self.url,
            "branch": self.branch,
            "isRepository": self.is_repository,
            "dirty": self.dirty,
        }


def authenticated_url(url: str, token: str) -> str:
    """Embed the token in an https URL. Other URLs are returned as-is."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not token:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{TOKEN_USERNAME}:{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class RemoteSynchronizer:
    """
    Best-effort git replication for documents in one working directory.
    """

    def __init__(self, working_dir: Path, remote: RemoteConfig, sync: Optional[SyncConfig] = None):
        """
        Args:
            working_dir: Local git working directory holding the documents
            remote: Remote repository, branch and credential
            sync: Commit identity (defaults from SyncConfig)
        """
        self._working_dir = Path(working_dir)
        self._remote = remote
        sync = sync or SyncConfig()
        self._env = {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_AUTHOR_NAME": sync.committer_name,
            "GIT_AUTHOR_EMAIL": sync.committer_email,
            "GIT_COMMITTER_NAME": sync.committer_name,
            "GIT_COMMITTER_EMAIL": sync.committer_email,
        }
        self._lock = threading.Lock()

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def branch(self) -> str:
        return self._remote.branch

    def _auth_url(self) -> str:
        return authenticated_url(self._remote.repository_url, self._remote.token)

    def _failure(self, stage: str, exc: Exception) -> SyncResult:
        message = redact(str(exc), self._remote.token)
        quoted = quote(self._remote.token, safe="") if self._remote.token else None
        message = redact(message, quoted)
        error = SyncError(stage, message)
        logger.warning("%s", error)
        return SyncResult.failure(error)

    def _open(self) -> Repo:
        return Repo(self._working_dir)

    # -------------------------------------------------------------------------
    # Replication
    # -------------------------------------------------------------------------

    def sync(self, path: Path, message: str, *, pull: bool = False) -> SyncResult:
        """
        Stage, commit and push one document.

        The commit message gets a timestamp suffix. When nothing is staged
        (for instance a retry after a commit whose push failed) the commit
        is skipped and the existing commits are pushed.

        Args:
            path: Document to stage, inside the working directory
            message: Commit message prefix
            pull: Pull the branch after committing and before pushing

        Returns:
            SyncResult; ``error`` names the step that failed
        """
        with self._lock:
            try:
                repo = self._open()
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                return self._failure("open", e)

            try:
                relative = Path(path).resolve().relative_to(self._working_dir.resolve())
            except ValueError as e:
                return self._failure("add", e)

            try:
                repo.git.add("--", str(relative))
            except GitError as e:
                return self._failure("add", e)

            committed = False
            try:
                staged = repo.git.diff("--cached", "--name-only")
                if staged.strip():
                    repo.git.commit("-m", f"{message} - {utc_now()}", env=self._env)
                    committed = True
                else:
                    logger.debug("Nothing to commit for %s", relative)
            except GitError as e:
                return self._failure("commit", e)

            if pull:
                result = self._pull(repo)
                if not result.ok:
                    return result

            try:
                repo.git.push(self._auth_url(), f"HEAD:refs/heads/{self.branch}", env=self._env)
            except GitError as e:
                return self._failure("push", e)

        logger.info("Pushed %s to %s (%s)", relative, self._remote.repository_url, self.branch)
        return SyncResult.success(committed=committed, pushed=True)

    def pull(self) -> SyncResult:
        """Pull the configured branch into the working directory."""
        with self._lock:
            try:
                repo = self._open()
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                return self._failure("open", e)
            return self._pull(repo)

    def _pull(self, repo: Repo) -> SyncResult:
        # A plain merge; a real conflict fails here and is retried later
        url = self._auth_url()
        try:
            heads = repo.git.ls_remote("--heads", url, self.branch, env=self._env)
            if not heads.strip():
                logger.info("Branch %s not on remote yet; nothing to pull", self.branch)
                return SyncResult.success()
            repo.git.pull(
                url, self.branch, "--no-rebase", "--no-edit", "--allow-unrelated-histories",
                env=self._env,
            )
        except GitError as e:
            self._abort_merge(repo)
            return self._failure("pull", e)
        return SyncResult.success()

    def _abort_merge(self, repo: Repo) -> None:
        """Leave no conflict markers in the documents after a failed pull."""
        if not (Path(repo.git_dir) / "MERGE_HEAD").exists():
            return
        try:
            repo.git.merge("--abort")
            logger.warning("Aborted conflicting merge in %s", self._working_dir)
        except GitError as e:
            logger.error("Could not abort merge in %s: %s", self._working_dir, e)

    # -------------------------------------------------------------------------
    # Bootstrap & status
    # -------------------------------------------------------------------------

    def ensure_repository(self) -> SyncResult:
        """
        Make the working directory a git repository tracking the remote.

        Pulls when it already is one. Otherwise clones the branch into it.
        If cloning fails, or the directory already holds files, a local
        repository is initialised on the branch so commits can still be
        made and pushed later. Failures are reported, never raised.
        """
        with self._lock:
            if (self._working_dir / ".git").exists():
                try:
                    repo = self._open()
                except InvalidGitRepositoryError as e:
                    return self._failure("open", e)
                logger.info("Pulling latest changes into %s", self._working_dir)
                return self._pull(repo)

            self._working_dir.mkdir(parents=True, exist_ok=True)
            if not any(self._working_dir.iterdir()):
                logger.info("Cloning %s into %s", self._remote.repository_url, self._working_dir)
                try:
                    repo = Repo.clone_from(
                        self._auth_url(),
                        self._working_dir,
                        env=self._env,
                        branch=self.branch,
                        single_branch=True,
                    )
                    repo.remote("origin").set_url(self._remote.repository_url)
                    return SyncResult.success()
                except GitError as e:
                    result = self._failure("clone", e)
            else:
                result = SyncResult.success()

            try:
                self._init_local()
            except GitError as e:
                return self._failure("init", e)
            return result

    def _init_local(self) -> Repo:
        logger.info("Initialising local repository in %s on %s", self._working_dir, self.branch)
        repo = Repo.init(self._working_dir, mkdir=True)
        repo.git.symbolic_ref("HEAD", f"refs/heads/{self.branch}")
        if "origin" not in [r.name for r in repo.remotes]:
            repo.create_remote("origin", self._remote.repository_url)
        return repo

    def status(self) -> RemoteStatus:
        """Report the remote target and working directory state."""
        with self._lock:
            try:
                repo = self._open()
                is_repository = True
                dirty = repo.is_dirty(untracked_files=True)
            except (InvalidGitRepositoryError, NoSuchPathError):
                is_repository = False
                dirty = False
            except GitError as e:
                logger.warning("git status failed: %s", redact(str(e), self._remote.token))
                dirty = False
        return RemoteStatus(
            url=self._remote.repository_url,
            branch=self.branch,
            is_repository=is_repository,
            dirty=dirty,
        )
