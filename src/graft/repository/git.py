"""GitPython implementation of the repository capabilities.

Object reads go through the repository's object database, tree listings and
index queries through plain git plumbing commands, and index writes through
:class:`git.IndexFile`.
"""

from __future__ import annotations

import functools
import logging
import os
import stat
from io import BytesIO
from pathlib import Path
from typing import Final
from typing import Iterable
from typing import Mapping

import git
from git.exc import BadName
from git.exc import BadObject
from git.exc import GitCommandError
from git.exc import InvalidGitRepositoryError
from git.exc import NoSuchPathError
from git.index.typ import BaseIndexEntry
from git.index.typ import IndexEntry
from git.objects.util import altz_to_utctz_str
from gitdb.base import IStream

from graft.exception import ConfigError
from graft.exception import DiffComputationError
from graft.exception import RefNotFound
from graft.exception import RepositoryWriteError
from graft.repository.base import MODE_EXECUTABLE
from graft.repository.base import MODE_SYMLINK
from graft.repository.base import CommitRecord
from graft.repository.base import ConflictSide
from graft.repository.base import Identity
from graft.repository.base import TreeEntry

logger = logging.getLogger(__name__)

_STAGE_SHIFT: Final = 12

_READ_ERRORS: Final = (BadName, BadObject, GitCommandError, ValueError)


def _identity(actor: git.Actor, timestamp: int, altz: int) -> Identity:
    return Identity(
        name=actor.name or "",
        email=actor.email or "",
        timestamp=int(timestamp),
        offset=altz_to_utctz_str(altz),
    )


def _split_z(output: str) -> list[str]:
    return [item for item in output.split("\0") if item]


def _write_operation(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (GitCommandError, OSError, ValueError) as e:
            raise RepositoryWriteError(f"{fn.__name__} failed: {e}") from e

    return wrapper


# public
class GitRepository:
    """A local git repository opened with GitPython.

    Implements both :class:`~graft.repository.base.SourceRepositoryLike` and
    :class:`~graft.repository.base.TargetRepositoryLike`. Instances hold
    persistent ``git cat-file`` processes; use them as context managers or
    call :meth:`close`.

    :param path:
        Working tree (or bare repository) location.
    :raises ConfigError:
        If *path* is not a git repository.
    """

    def __init__(self, path: str | os.PathLike):
        try:
            self._repo = git.Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ConfigError(f"{path} is not a git repository") from e

    def __enter__(self) -> GitRepository:
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def close(self) -> None:
        self._repo.close()

    @property
    def path(self) -> str:
        return self._repo.working_tree_dir or self._repo.git_dir

    @property
    def git_dir(self) -> str:
        return self._repo.git_dir

    # Reads

    def resolve(self, ref: str) -> str:
        try:
            return self._repo.commit(ref).hexsha
        except _READ_ERRORS as e:
            raise RefNotFound(ref) from e

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self._repo.is_ancestor(ancestor, descendant)

    def read_commit(self, commit: str) -> CommitRecord:
        try:
            obj = self._repo.commit(commit)
            message = obj.message
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            changed = self._repo.git.diff_tree(
                "-r", "--root", "--no-commit-id", "--name-only", "-z", obj.hexsha
            )
            return CommitRecord(
                id=obj.hexsha,
                parents=tuple(parent.hexsha for parent in obj.parents),
                author=_identity(obj.author, obj.authored_date, obj.author_tz_offset),
                committer=_identity(
                    obj.committer, obj.committed_date, obj.committer_tz_offset
                ),
                message=message,
                tree=obj.tree.hexsha,
                paths=frozenset(_split_z(changed)),
            )
        except _READ_ERRORS as e:
            raise DiffComputationError(commit, str(e)) from e

    def read_tree(self, tree: str) -> Mapping[str, TreeEntry]:
        try:
            listing = self._repo.git.ls_tree("-r", "-z", "--full-tree", tree)
        except GitCommandError as e:
            raise DiffComputationError(tree, f"unreadable tree: {e}") from e
        entries = {}
        for line in _split_z(listing):
            header, path = line.split("\t", 1)
            mode, _, blob = header.split(" ")
            entries[path] = TreeEntry(int(mode, 8), blob)
        return entries

    def read_blob(self, blob: str) -> bytes:
        try:
            return self._repo.odb.stream(bytes.fromhex(blob)).read()
        except (*_READ_ERRORS, OSError) as e:
            raise DiffComputationError(blob, f"unreadable blob: {e}") from e

    # Working tree and index

    def head(self) -> str | None:
        if not self._repo.head.is_valid():
            return None
        return self._repo.head.commit.hexsha

    def is_dirty(self) -> bool:
        return self._repo.is_dirty(index=True, working_tree=True, untracked_files=False)

    def tracked_paths(self) -> list[str]:
        return _split_z(self._repo.git.ls_files("-z"))

    def _abspath(self, path: str) -> Path:
        return Path(self._repo.working_tree_dir, *path.split("/"))

    def read_worktree(self, path: str) -> bytes | None:
        full = self._abspath(path)
        try:
            st = full.lstat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        if stat.S_ISLNK(st.st_mode):
            return os.fsencode(os.readlink(full))
        if stat.S_ISDIR(st.st_mode):
            return None
        return full.read_bytes()

    def is_blocked(self, path: str) -> bool:
        full = self._abspath(path)
        if full.is_dir() and not full.is_symlink():
            return True
        root = Path(self._repo.working_tree_dir)
        parent = full.parent
        while parent != root:
            if parent.is_symlink() or (parent.exists() and not parent.is_dir()):
                return True
            parent = parent.parent
        return False

    @_write_operation
    def write_worktree(self, path: str, data: bytes, mode: int) -> None:
        full = self._abspath(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        if full.is_symlink() or full.exists():
            full.unlink()
        if mode == MODE_SYMLINK:
            os.symlink(os.fsdecode(data), full)
        else:
            full.write_bytes(data)
            full.chmod(0o755 if mode == MODE_EXECUTABLE else 0o644)

    @_write_operation
    def remove_worktree(self, path: str) -> None:
        full = self._abspath(path)
        if full.is_symlink() or full.exists():
            full.unlink()
        root = Path(self._repo.working_tree_dir)
        parent = full.parent
        while parent != root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    @_write_operation
    def stage(self, added: Iterable[str], removed: Iterable[str]) -> None:
        added, removed = list(added), list(removed)
        if removed:
            self._repo.git.rm("--cached", "--quiet", "--ignore-unmatch", "--", *removed)
        if added:
            index = self._repo.index
            for path in added:
                for stage in (1, 2, 3):
                    index.entries.pop((path, stage), None)
            index.add(added)

    def _store_blob(self, data: bytes) -> bytes:
        return self._repo.odb.store(IStream("blob", len(data), BytesIO(data))).binsha

    @_write_operation
    def mark_conflict(
        self,
        path: str,
        base: ConflictSide | None,
        ours: ConflictSide | None,
        theirs: ConflictSide | None,
    ) -> None:
        index = self._repo.index
        index.entries.pop((path, 0), None)
        for stage, side in ((1, base), (2, ours), (3, theirs)):
            if side is None:
                continue
            mode, data = side
            entry = BaseIndexEntry(
                (mode, self._store_blob(data), stage << _STAGE_SHIFT, path)
            )
            index.entries[(path, stage)] = IndexEntry.from_base(entry)
        index.write(ignore_extension_data=True)
        logger.debug(f"Recorded {path} as unmerged")

    def unmerged_paths(self, paths: Iterable[str]) -> set[str]:
        paths = list(paths)
        if not paths:
            return set()
        listing = self._repo.git.ls_files("--unmerged", "-z", "--", *paths)
        return {line.split("\t", 1)[1] for line in _split_z(listing)}

    def read_stage(self, path: str, stage: int) -> ConflictSide | None:
        entry = self._repo.index.entries.get((path, stage))
        if entry is None:
            return None
        return entry.mode, self.read_blob(entry.hexsha)

    def unstaged_paths(self, paths: Iterable[str]) -> set[str]:
        paths = list(paths)
        if not paths:
            return set()
        return set(_split_z(self._repo.git.diff("--name-only", "-z", "--", *paths)))

    @_write_operation
    def index_tree(self) -> str:
        return self._repo.index.write_tree().hexsha

    @_write_operation
    def commit(self, message: str, author: Identity, committer: Identity) -> str:
        head = self.head()
        parents = [self._repo.commit(head)] if head else []
        created = self._repo.index.commit(
            message,
            parent_commits=parents,
            head=True,
            author=git.Actor(author.name, author.email),
            committer=git.Actor(committer.name, committer.email),
            author_date=author.date,
            commit_date=committer.date,
            skip_hooks=True,
        )
        return created.hexsha
