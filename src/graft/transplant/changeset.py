from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from typing import Literal
from typing import Mapping
from typing import TypeAlias

from graft.exception import DiffComputationError
from graft.repository.base import MODE_GITLINK
from graft.repository.base import ConflictSide
from graft.repository.base import CommitRecord
from graft.repository.base import Identity
from graft.repository.base import SourceRepositoryLike
from graft.repository.base import TreeEntry
from graft.transplant.filter import Keep

logger = logging.getLogger(__name__)

# public
ChangeKind: TypeAlias = Literal["add", "modify", "delete"]


# public
@dataclass(frozen=True)
class PathChange:
    """One path level operation of a change set.

    :param kind:
        ``add``, ``modify`` or ``delete``.
    :param path:
        Path relative to the repository root.
    :param old:
        Mode and content in the source parent, ``None`` for additions.
    :param new:
        Mode and content in the source commit, ``None`` for deletions.
    """

    kind: ChangeKind
    path: str
    old: ConflictSide | None
    new: ConflictSide | None


# public
@dataclass(frozen=True)
class ChangeSet:
    """Materialized changes of one source commit plus the metadata to stamp
    on the commit that replays them.
    """

    source: str
    changes: tuple[PathChange, ...]
    author: Identity
    committer: Identity
    message: str

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(change.path for change in self.changes)


def _side(
    repository: SourceRepositoryLike, path: str, entry: TreeEntry | None
) -> ConflictSide | None:
    if entry is None:
        return None
    if entry.mode == MODE_GITLINK:
        raise ValueError(f"submodule {path} is not supported")
    return entry.mode, repository.read_blob(entry.blob)


def _diff(
    repository: SourceRepositoryLike,
    old: Mapping[str, TreeEntry],
    new: Mapping[str, TreeEntry],
) -> tuple[PathChange, ...]:
    changes = []
    for path in sorted(old.keys() | new.keys()):
        before, after = old.get(path), new.get(path)
        if before == after:
            continue
        if before is None:
            kind = "add"
        elif after is None:
            kind = "delete"
        else:
            kind = "modify"
        changes.append(
            PathChange(
                kind,
                path,
                _side(repository, path, before),
                _side(repository, path, after),
            )
        )
    return tuple(changes)


# public
def extract_changeset(
    repository: SourceRepositoryLike, commit: CommitRecord, decision: Keep
) -> ChangeSet:
    """Compute the changes *commit* introduces over its parent.

    A root commit is compared with the empty tree. Renames are reported as a
    deletion plus an addition.

    :param repository:
        The source repository.
    :param commit:
        A non-merge commit kept by the filter engine.
    :param decision:
        The keep decision carrying the metadata to stamp.
    :raises DiffComputationError:
        If an object referenced by the commit cannot be read, or the commit
        touches a submodule.
    """
    try:
        old = repository.read_tree(commit.parents[0]) if commit.parents else {}
        new = repository.read_tree(commit.id)
        changes = _diff(repository, old, new)
    except (DiffComputationError, ValueError) as e:
        raise DiffComputationError(commit.id, str(e)) from e
    logger.debug(f"Extracted {len(changes)} change(s) from {commit.short_id}")
    return ChangeSet(
        source=commit.id,
        changes=changes,
        author=decision.author,
        committer=decision.committer,
        message=decision.message,
    )


# public
def snapshot_changeset(
    repository: SourceRepositoryLike,
    commit: CommitRecord,
    decision: Keep,
    tracked: Iterable[str],
) -> ChangeSet:
    """Build the change set turning a target tree into the tree of *commit*.

    Every path of the source tree is written and every *tracked* target path
    missing from it is deleted.

    :param tracked:
        Paths currently tracked by the target.
    :raises DiffComputationError:
        As :func:`extract_changeset`.
    """
    try:
        tree = repository.read_tree(commit.id)
        changes = [
            PathChange("add", path, None, _side(repository, path, entry))
            for path, entry in tree.items()
        ]
    except (DiffComputationError, ValueError) as e:
        raise DiffComputationError(commit.id, str(e)) from e
    changes.extend(
        PathChange("delete", path, None, None)
        for path in set(tracked) - tree.keys()
    )
    changes.sort(key=lambda change: change.path)
    return ChangeSet(
        source=commit.id,
        changes=tuple(changes),
        author=decision.author,
        committer=decision.committer,
        message=decision.message,
    )
