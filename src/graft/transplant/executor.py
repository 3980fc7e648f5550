"""Apply change sets to the target working tree and index.

Every commit goes through ``Pending -> Applying`` and ends in one of
:class:`Committed`, :class:`Skipped`, :class:`Conflict` or :class:`Failed`.

A conflicting path is left the way ``git status`` reports an unmerged path:
the index holds stage 1 (source parent), stage 2 (target) and stage 3
(source commit) for the sides that have the path, and the working tree
holds the whole target and source versions between conflict markers. Binary
content is never merged with markers; the working tree keeps the target
version. Stage the resolved path to mark it resolved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Final
from typing import Iterable
from typing import TypeAlias

from graft.exception import RepositoryWriteError
from graft.repository.base import ConflictSide
from graft.repository.base import Identity
from graft.repository.base import TargetRepositoryLike
from graft.transplant.changeset import ChangeSet
from graft.transplant.changeset import PathChange

logger = logging.getLogger(__name__)

MARKER_SIZE: Final = 7

_MARKER_LINE: Final = re.compile(
    rb"^(?:<{%d} |>{%d} )" % (MARKER_SIZE, MARKER_SIZE), re.MULTILINE
)


# public
@dataclass(frozen=True)
class Pending:
    source: str


# public
@dataclass(frozen=True)
class Applying:
    source: str


# public
@dataclass(frozen=True)
class Committed:
    """The commit was replayed as *target*."""

    source: str
    target: str


# public
@dataclass(frozen=True)
class Skipped:
    """The commit left no trace on the target."""

    source: str
    reason: str


# public
@dataclass(frozen=True)
class Conflict:
    """The commit halted on *paths*; clean paths are already staged."""

    source: str
    paths: tuple[str, ...]


# public
@dataclass(frozen=True)
class Failed:
    """A write to the target failed; nothing was committed."""

    source: str
    error: Exception


# public
Outcome: TypeAlias = Committed | Skipped | Conflict | Failed

# public
ExecutionState: TypeAlias = Pending | Applying | Outcome


def is_binary(data: bytes) -> bool:
    """Git's heuristic: content with a NUL byte in its first 8000 bytes."""
    return b"\0" in data[:8000]


def has_markers(data: bytes) -> bool:
    """Whether *data* still holds an opening or closing conflict marker."""
    return _MARKER_LINE.search(data) is not None


def render_markers(ours: bytes, theirs: bytes, label: str) -> bytes:
    """Whole-file conflict markers around the target and source versions."""

    def terminated(data: bytes) -> bytes:
        return data if not data or data.endswith(b"\n") else data + b"\n"

    return b"".join(
        (
            b"<" * MARKER_SIZE + b" HEAD\n",
            terminated(ours),
            b"=" * MARKER_SIZE + b"\n",
            terminated(theirs),
            b">" * MARKER_SIZE + b" " + label.encode("utf-8", "replace") + b"\n",
        )
    )


# public
class TransplantExecutor:
    """Replays change sets onto a target repository, one at a time.

    The executor never touches the progress file; the caller records each
    :data:`Outcome` it returns.

    :param target:
        Repository receiving the commits. Its working tree must be clean
        apart from what earlier calls of this executor left.
    """

    def __init__(self, target: TargetRepositoryLike):
        self.target = target
        self.state: ExecutionState | None = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.target.path!r}, state={self.state})"

    def apply(self, changeset: ChangeSet, *, label: str | None = None) -> Outcome:
        """Apply *changeset* and commit it when no path conflicts.

        Conflicts are detected for every path before anything is written.
        Clean paths are then written and staged, deletions first; a
        conflicting commit leaves them staged next to the unmerged paths.

        :param changeset:
            Changes and metadata of one kept source commit.
        :param label:
            Text following the closing conflict marker, the short source id
            by default.
        """
        self.state = Pending(changeset.source)
        try:
            modes = self._head_modes()
            unmerged = self.target.unmerged_paths(changeset.paths)
            clean, conflicting = [], []
            for change in changeset.changes:
                if self.target.is_blocked(change.path):
                    conflicting.append((change, None, True))
                    continue
                if change.path in unmerged:
                    ours = self.target.read_stage(change.path, 2)
                else:
                    current = self.target.read_worktree(change.path)
                    mode = modes.get(change.path, (change.new or change.old)[0])
                    ours = (mode, current) if current is not None else None
                if self._is_clean(change, ours[1] if ours else None):
                    clean.append(change)
                else:
                    conflicting.append((change, ours, False))
            self.state = Applying(changeset.source)
            self._write(clean)
            if conflicting:
                label = label or changeset.source[:10]
                for change, ours, blocked in conflicting:
                    self._mark(change, ours, label, blocked=blocked)
                paths = tuple(change.path for change, _, _ in conflicting)
                logger.info(
                    f"Commit {changeset.source[:10]} conflicts on {len(paths)} path(s)"
                )
                self.state = Conflict(changeset.source, paths)
                return self.state
            target = self.target.commit(
                changeset.message, changeset.author, changeset.committer
            )
        except (RepositoryWriteError, OSError) as e:
            logger.error(f"Failed to apply {changeset.source[:10]}: {e}")
            self.state = Failed(changeset.source, e)
            return self.state
        logger.debug(f"Committed {changeset.source[:10]} as {target[:10]}")
        self.state = Committed(changeset.source, target)
        return self.state

    def snapshot(self, changeset: ChangeSet) -> Outcome:
        """Write *changeset* over the target without conflict checks and
        commit it, or skip it when the target already holds that tree.
        """
        self.state = Applying(changeset.source)
        try:
            self._write(changeset.changes)
            self.state = self.conclude(
                changeset.source,
                changeset.message,
                changeset.author,
                changeset.committer,
            )
        except (RepositoryWriteError, OSError) as e:
            logger.error(f"Failed to write snapshot of {changeset.source[:10]}: {e}")
            self.state = Failed(changeset.source, e)
        return self.state

    def outstanding(self, paths: Iterable[str]) -> tuple[str, ...]:
        """Recorded conflict paths that are not resolved yet.

        A path is outstanding while it has unmerged index entries, changes
        that are not staged, or a conflict marker line in its content.
        """
        paths = list(paths)
        pending = self.target.unmerged_paths(paths) | self.target.unstaged_paths(paths)
        for path in paths:
            if path in pending:
                continue
            data = self.target.read_worktree(path)
            if data is not None and not is_binary(data) and has_markers(data):
                pending.add(path)
        return tuple(path for path in paths if path in pending)

    def conclude(
        self, source: str, message: str, author: Identity, committer: Identity
    ) -> Committed | Skipped:
        """Commit whatever is staged, or report :class:`Skipped` when the
        index matches the current tip.

        :raises RepositoryWriteError:
            If the index or the commit cannot be written.
        """
        head = self.target.head()
        if head is not None:
            tip = self.target.read_commit(head).tree
            if self.target.index_tree() == tip:
                logger.info(f"Commit {source[:10]} leaves the target unchanged")
                return Skipped(source, "no changes left on the target")
        target = self.target.commit(message, author, committer)
        return Committed(source, target)

    def _head_modes(self) -> dict[str, int]:
        head = self.target.head()
        if head is None:
            return {}
        tree = self.target.read_commit(head).tree
        return {path: entry.mode for path, entry in self.target.read_tree(tree).items()}

    @staticmethod
    def _is_clean(change: PathChange, current: bytes | None) -> bool:
        new = change.new[1] if change.new else None
        old = change.old[1] if change.old else None
        match change.kind:
            case "add":
                return current is None or current == new
            case "modify":
                return current is not None and current in (old, new)
            case "delete":
                return current is None or current == old
        raise ValueError(f"Unknown change kind {change.kind!r}")

    def _write(self, changes: Iterable[PathChange]) -> None:
        changes = list(changes)
        removed = [change.path for change in changes if change.new is None]
        added = [change for change in changes if change.new is not None]
        for path in removed:
            self.target.remove_worktree(path)
        for change in added:
            mode, data = change.new
            self.target.write_worktree(change.path, data, mode)
        self.target.stage([change.path for change in added], removed)

    def _mark(
        self,
        change: PathChange,
        ours: ConflictSide | None,
        label: str,
        *,
        blocked: bool = False,
    ) -> None:
        theirs = change.new
        self.target.mark_conflict(change.path, change.old, ours, theirs)
        if theirs is None or blocked:
            return
        if ours is None:
            self.target.write_worktree(change.path, theirs[1], theirs[0])
        elif not (is_binary(ours[1]) or is_binary(theirs[1])):
            self.target.write_worktree(
                change.path, render_markers(ours[1], theirs[1], label), ours[0]
            )
