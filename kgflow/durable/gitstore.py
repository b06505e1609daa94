"""
Git object store and ref namespace behind the durable services.

Every durable record is a git blob; a ref names it. All mutations go through
``git update-ref`` with an expected old value, so git's ref locking makes
them compare-and-swap:

    create   update-ref <ref> <new> 0000...   fails if the ref exists
    swap     update-ref <ref> <new> <old>     fails if the ref moved
    delete   update-ref -d <ref> <old>        fails if the ref moved

No commits are made, so the repository needs no author identity and never
touches a work tree. By default the repository is a bare one created under
the durable root; pointing ``git_dir`` at a project's own repository keeps
the refs next to its history.

Usage:
    git = GitStore(Path(".kgflow/git"))
    sha = git.write_blob(b"payload")
    if git.create_ref("refs/kgflow/locks/build", sha):
        ...
"""

from __future__ import annotations

import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from kgflow.errors import DurableIoError

logger = logging.getLogger(__name__)

ZERO_OID = "0" * 40


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


class GitStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        # One git process at a time per store; GitPython's Git object is not thread-safe
        self._lock = threading.RLock()
        self.repo = self._open()

    def _open(self) -> Repo:
        try:
            return Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            pass
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            repo = Repo.init(self.path, bare=True)
        except (GitCommandError, OSError) as exc:
            raise DurableIoError(f"Cannot initialise git repository at {self.path}: {exc}") from exc
        logger.info(f"[git] initialised bare repository at {self.path}")
        return repo

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    def write_blob(self, data: bytes | str) -> str:
        """Store ``data`` as a blob; returns its object id."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock, tempfile.TemporaryFile() as stream:
            stream.write(payload)
            stream.seek(0)
            try:
                return self.repo.git.hash_object("-w", "--stdin", istream=stream).strip()
            except GitCommandError as exc:
                raise DurableIoError(f"Cannot write git blob: {exc}") from exc

    def read_blob(self, sha: str) -> bytes:
        with self._lock:
            try:
                return self.repo.git.cat_file(
                    "blob", sha, stdout_as_string=False, strip_newline_in_stdout=False
                )
            except GitCommandError as exc:
                raise DurableIoError(f"Cannot read git blob {sha}: {exc}") from exc

    def write_json(self, data: Any) -> str:
        return self.write_blob(canonical_json(data))

    def read_json(self, sha: str) -> Any | None:
        """Parsed blob content, or None when it is not JSON."""
        try:
            return json.loads(self.read_blob(sha).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None

    # -------------------------------------------------------------------------
    # Refs
    # -------------------------------------------------------------------------

    def read_ref(self, ref: str) -> str | None:
        with self._lock:
            try:
                return self.repo.git.rev_parse("--verify", "--quiet", ref).strip() or None
            except GitCommandError:
                return None

    def create_ref(self, ref: str, sha: str) -> bool:
        """Point ``ref`` at ``sha`` only if the ref does not exist yet."""
        return self.swap_ref(ref, sha, ZERO_OID)

    def swap_ref(self, ref: str, new: str, old: str) -> bool:
        """Move ``ref`` from ``old`` to ``new``; False if it no longer points at ``old``."""
        with self._lock:
            try:
                self.repo.git.update_ref(ref, new, old)
            except GitCommandError as exc:
                logger.debug(f"[git] update-ref {ref} lost: {exc.stderr.strip() if exc.stderr else exc}")
                return False
        return True

    def set_ref(self, ref: str, sha: str) -> None:
        """Point ``ref`` at ``sha`` whatever it pointed at before."""
        with self._lock:
            try:
                self.repo.git.update_ref(ref, sha)
            except GitCommandError as exc:
                raise DurableIoError(f"Cannot update {ref}: {exc}") from exc

    def delete_ref(self, ref: str, old: str | None = None) -> bool:
        """Delete ``ref``; with ``old`` only while it still points there."""
        args = ["-d", ref] + ([old] if old else [])
        with self._lock:
            try:
                self.repo.git.update_ref(*args)
            except GitCommandError:
                return False
        return True

    def list_refs(self, prefix: str) -> list[tuple[str, str]]:
        """``(refname, object id)`` pairs under ``prefix``, sorted by name."""
        with self._lock:
            try:
                output = self.repo.git.for_each_ref(prefix, format="%(refname) %(objectname)")
            except GitCommandError as exc:
                raise DurableIoError(f"Cannot list {prefix}: {exc}") from exc
        pairs = []
        for line in output.splitlines():
            name, _, sha = line.partition(" ")
            if sha:
                pairs.append((name, sha))
        return sorted(pairs)

    def close(self) -> None:
        self.repo.close()

    def __repr__(self) -> str:
        return f"GitStore(path={self.path})"


__all__ = ["ZERO_OID", "GitStore", "canonical_json"]
