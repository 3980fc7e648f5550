from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from typing import Final
from typing import Iterable
from typing import Mapping
from typing import NamedTuple
from typing import Protocol
from typing import runtime_checkable

MODE_FILE: Final = 0o100644
MODE_EXECUTABLE: Final = 0o100755
MODE_SYMLINK: Final = 0o120000
MODE_GITLINK: Final = 0o160000

_IDENTITY: Final = re.compile(r"^\s*(?P<name>.*?)\s*<(?P<email>[^<>]*)>\s*$")


# public
@dataclass(frozen=True)
class Identity:
    """Author or committer of a commit.

    :param name:
        Display name.
    :param email:
        Email address, without angle brackets.
    :param timestamp:
        Seconds since the epoch.
    :param offset:
        UTC offset in git's ``+HHMM`` notation.
    """

    name: str
    email: str
    timestamp: int = 0
    offset: str = "+0000"

    @classmethod
    def parse(cls, text: str) -> Identity:
        """Parse a ``Name <email>`` string.

        :param text:
            The identity to parse. A bare email address is accepted and
            yields an empty name.
        :returns:
            An identity with a zero timestamp.
        :raises ValueError:
            If the text holds neither form.
        """
        if match := _IDENTITY.match(text):
            return cls(match["name"], match["email"])
        if "@" in text and not any(c.isspace() for c in text.strip()):
            return cls("", text.strip())
        raise ValueError(f"Expected 'Name <email>', got {text!r}")

    @property
    def date(self) -> str:
        """Date in git's raw ``<timestamp> <offset>`` format."""
        return f"{self.timestamp} {self.offset}"

    def renamed(self, other: Identity) -> Identity:
        """Return a copy carrying the name and email of *other* but the
        timestamp of this identity.
        """
        return replace(self, name=other.name, email=other.email)

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


# public
@dataclass(frozen=True)
class CommitRecord:
    """Immutable view of one commit read from a repository.

    :param id:
        Full hexadecimal object name.
    :param parents:
        Object names of the parents, in order.
    :param author:
        Author identity.
    :param committer:
        Committer identity.
    :param message:
        Full commit message.
    :param tree:
        Object name of the root tree.
    :param paths:
        Paths changed relative to the first parent (every path for a root
        commit).
    """

    id: str
    parents: tuple[str, ...]
    author: Identity
    committer: Identity
    message: str
    tree: str
    paths: frozenset[str] = field(default_factory=frozenset)

    @property
    def summary(self) -> str:
        """First line of the message."""
        return self.message.split("\n", 1)[0]

    @property
    def short_id(self) -> str:
        return self.id[:10]


# public
class TreeEntry(NamedTuple):
    """A blob reachable from a tree, keyed by its path elsewhere."""

    mode: int
    blob: str


# public
ConflictSide = tuple[int, bytes]
"""Mode and content of one side of a conflicting path."""


# public
@runtime_checkable
class SourceRepositoryLike(Protocol):
    """Read capabilities the engine needs from the repository commits are
    copied from.
    """

    @property
    def path(self) -> str: ...

    def resolve(self, ref: str) -> str:
        """Resolve a ref expression to a commit object name.

        :raises RefNotFound:
            If the expression does not name a commit.
        """
        ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...

    def read_commit(self, commit: str) -> CommitRecord:
        """Read the metadata and changed paths of a commit."""
        ...

    def read_tree(self, tree: str) -> Mapping[str, TreeEntry]:
        """Recursively list the blobs of a tree.

        :raises DiffComputationError:
            If the tree or one of its subtrees is unreadable.
        """
        ...

    def read_blob(self, blob: str) -> bytes:
        """Read the content of a blob.

        :raises DiffComputationError:
            If the object is missing or corrupt.
        """
        ...


# public
@runtime_checkable
class TargetRepositoryLike(SourceRepositoryLike, Protocol):
    """Write capabilities the engine needs from the repository commits are
    copied onto, on top of the read capabilities.

    Paths are always relative to the working tree root and use forward
    slashes.
    """

    @property
    def git_dir(self) -> str: ...

    def head(self) -> str | None:
        """Object name of the current branch tip, ``None`` if unborn."""
        ...

    def is_dirty(self) -> bool: ...

    def tracked_paths(self) -> list[str]: ...

    def read_worktree(self, path: str) -> bytes | None:
        """Current working tree content, ``None`` when the path is absent."""
        ...

    def is_blocked(self, path: str) -> bool:
        """Whether *path* cannot hold a file: it is a directory, or one of
        its parents is not.
        """
        ...

    def write_worktree(self, path: str, data: bytes, mode: int) -> None: ...

    def remove_worktree(self, path: str) -> None: ...

    def stage(self, added: Iterable[str], removed: Iterable[str]) -> None:
        """Record working tree content of *added* in the index and drop
        *removed* from it.
        """
        ...

    def mark_conflict(
        self,
        path: str,
        base: ConflictSide | None,
        ours: ConflictSide | None,
        theirs: ConflictSide | None,
    ) -> None:
        """Record *path* as unmerged in the index with the given stages."""
        ...

    def unmerged_paths(self, paths: Iterable[str]) -> set[str]: ...

    def read_stage(self, path: str, stage: int) -> ConflictSide | None:
        """Mode and content of an unmerged index stage of *path*, ``None``
        when that stage is absent.
        """
        ...

    def unstaged_paths(self, paths: Iterable[str]) -> set[str]: ...

    def index_tree(self) -> str:
        """Write the index as a tree and return its object name."""
        ...

    def commit(self, message: str, author: Identity, committer: Identity) -> str:
        """Commit the index on the current branch.

        :returns:
            Object name of the new commit.
        """
        ...
