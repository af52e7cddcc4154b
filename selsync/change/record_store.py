"""Git record store — the durable, discoverable home of every change.

Each applied change is one commit whose message carries the serialized
``ChangeRecord``; rollbacks are ``git revert`` commits. Pushes go through the
retrying executor because the remote is the one resource another process
may hold at the same time.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from selsync.errors import (
    FailureKind,
    RecordStoreError,
    SelsyncError,
    TransientLockError,
    TransientNetworkError,
)
from selsync.models.records import COMMIT_SUBJECT_PREFIX, ChangeRecord
from selsync.runtime.commands import classify_output
from selsync.runtime.retry import RetryingExecutor

logger = logging.getLogger(__name__)


def git_error(exc: GitCommandError, context: str) -> SelsyncError:
    """Translate a GitCommandError into the selsync error taxonomy."""
    stderr = str(exc.stderr or "").strip()
    detail = stderr or str(exc)
    message = f"{context} failed: {detail[:500]}"
    kind = classify_output(f"{stderr}\n{exc.stdout or ''}")
    if kind is FailureKind.TRANSIENT_LOCK:
        return TransientLockError(message)
    if kind is FailureKind.TRANSIENT_OTHER:
        return TransientNetworkError(message)
    if kind is FailureKind.TERMINAL:
        return RecordStoreError(message, hint="The remote rejected the credentials; check SSH keys or the access token.")
    return RecordStoreError(message)


class GitRecordStore:
    """Version-controlled source repository used as the durable record store."""

    def __init__(
        self,
        root: str | Path,
        remote: str = "origin",
        executor: RetryingExecutor | None = None,
    ):
        self.root = Path(root)
        self.remote = remote
        self.executor = executor or RetryingExecutor()
        try:
            self.repo = Repo(self.root)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise RecordStoreError(f"Not a Git repository: {self.root}")

    # -- working tree --------------------------------------------------------

    def mutate(self, path: str | Path, transform: Callable[[str], str]) -> bool:
        """Rewrite ``path`` through ``transform``; return True if it changed."""
        target = self._abs(path)
        if not target.is_file():
            raise RecordStoreError(f"File not found: {target}")
        before = target.read_text(encoding="utf-8")
        after = transform(before)
        if after == before:
            return False
        target.write_text(after, encoding="utf-8")
        return True

    def restore(self, paths: list[str | Path]) -> None:
        """Discard working tree changes to ``paths`` (back to HEAD)."""
        rel = [self._rel(p) for p in paths]
        try:
            self.repo.git.checkout("HEAD", "--", *rel)
        except GitCommandError as e:
            raise git_error(e, "git checkout")

    def is_dirty(self, paths: list[str | Path] | None = None) -> bool:
        if paths is None:
            return self.repo.is_dirty(untracked_files=False)
        return any(self.repo.is_dirty(path=self._rel(p)) for p in paths)

    # -- identity ------------------------------------------------------------

    def ensure_identity(self, email: str, name: str) -> None:
        """Set a repository-local identity only when none is configured."""
        reader = self.repo.config_reader()
        has_email = reader.has_option("user", "email")
        has_name = reader.has_option("user", "name")
        if has_email and has_name:
            return
        logger.info("Configuring git identity for demo...")
        with self.repo.config_writer() as writer:
            if not has_email:
                writer.set_value("user", "email", email)
            if not has_name:
                writer.set_value("user", "name", name)

    # -- commits -------------------------------------------------------------

    def head_revision(self, short: bool = True) -> str:
        sha = self.repo.head.commit.hexsha
        return sha[:8] if short else sha

    def commit(self, message: str, paths: list[str | Path] | None = None) -> str:
        """Commit ``paths`` (or everything); return the new HEAD sha.

        With ``paths`` only those files are committed; anything else already
        staged stays staged and out of the commit.
        """
        try:
            if paths:
                rel = [self._rel(p) for p in paths]
                self.repo.git.add("--", *rel)
                self.repo.git.commit("-m", message, "--", *rel)
            else:
                self.repo.git.add("-A")
                self.repo.git.commit("-m", message)
        except GitCommandError as e:
            raise git_error(e, "git commit")
        sha = self.repo.head.commit.hexsha
        logger.info("Committed %s %s", sha[:8], message.splitlines()[0])
        return sha

    def push(self) -> int:
        """Push HEAD to the remote, backing off while the remote is busy.

        Returns the number of attempts it took.
        """
        result = self.executor.execute(
            self._push_once,
            retry_transient_other=True,
            description="git push",
        )
        result.unwrap()
        logger.info("Pushed to %s", self.remote)
        return result.attempts

    def check_remote(self) -> None:
        """Raise unless the remote is configured and answers ``git ls-remote``."""
        if self.remote not in [r.name for r in self.repo.remotes]:
            raise RecordStoreError(
                f"Git remote '{self.remote}' is not configured",
                hint=f"Add it with 'git remote add {self.remote} <url>'.",
            )
        try:
            self.repo.git.ls_remote("--heads", self.remote)
        except GitCommandError as e:
            raise git_error(e, f"git ls-remote {self.remote}")

    def _push_once(self) -> None:
        args = [self.remote]
        if not self.repo.head.is_detached:
            args.append(f"HEAD:refs/heads/{self.repo.active_branch.name}")
        try:
            self.repo.git.push(*args)
        except GitCommandError as e:
            raise git_error(e, "git push")

    def revert(self, sha: str) -> str:
        """Create a revert commit for ``sha``; return the revert's sha.

        A failed revert is aborted so the working tree is left as it was.
        """
        try:
            self.repo.git.revert("--no-edit", sha)
        except GitCommandError as e:
            error = git_error(e, f"git revert {sha[:8]}")
            try:
                self.repo.git.revert("--abort")
            except GitCommandError:
                logger.debug("No revert in progress to abort")
            raise error
        new_sha = self.repo.head.commit.hexsha
        logger.info("Created revert commit %s", new_sha[:8])
        return new_sha

    def revert_last(self) -> str:
        return self.revert("HEAD")

    def is_reverted(self, sha: str) -> bool:
        """True if a later commit on HEAD reverts ``sha``."""
        try:
            full = self.repo.commit(sha).hexsha
            marker = f"This reverts commit {full}"
            for commit in self.repo.iter_commits(f"{full}..HEAD"):
                if marker in commit.message:
                    return True
        except (GitCommandError, ValueError) as e:
            raise RecordStoreError(f"Cannot inspect history for {sha[:8]}: {e}")
        return False

    def find_commits(self, pattern: str, max_count: int = 50) -> list:
        """Commits on HEAD whose message contains ``pattern``, newest first."""
        try:
            return list(
                self.repo.iter_commits("HEAD", grep=pattern, fixed_strings=True, max_count=max_count)
            )
        except (GitCommandError, ValueError):
            return []

    def latest_record(self, resource_id: str | None = None) -> ChangeRecord | None:
        """Most recent change record in history, reverted or not."""
        pattern = f"{COMMIT_SUBJECT_PREFIX} {resource_id}" if resource_id else COMMIT_SUBJECT_PREFIX
        for commit in self.find_commits(pattern):
            record = ChangeRecord.from_commit_message(commit.message, commit.hexsha)
            if record is not None:
                return record
        return None

    # -- helpers -------------------------------------------------------------

    def _abs(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def _rel(self, path: str | Path) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(Path(self.repo.working_tree_dir).resolve())
            except ValueError:
                raise RecordStoreError(f"{path} is outside the repository")
        return p.as_posix()
