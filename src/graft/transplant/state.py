"""Persisted progress of a transplant run.

The state file is the only record of what has been durably applied. It is
written before the engine moves on to the next commit, replaced atomically,
and its exclusive creation doubles as the lock preventing two runs against
the same target.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from dataclasses import replace
from pathlib import Path
from typing import Any
from typing import ClassVar
from typing import Final

from graft.exception import RunInProgress
from graft.exception import StateReadFailure
from graft.exception import StateWriteFailure

logger = logging.getLogger(__name__)

STATE_FILE: Final = Path("graft") / "state.json"


def default_state_path(git_dir: str | os.PathLike) -> Path:
    """Location of the state file inside a repository's git directory."""
    return Path(git_dir) / STATE_FILE


# public
@dataclass(frozen=True)
class DoneEntry:
    """A processed source commit and the target commit replaying it, or
    ``None`` when it was skipped.
    """

    source: str
    target: str | None


# public
@dataclass(frozen=True)
class PendingConflict:
    """The source commit a run halted on and its conflicting paths."""

    commit: str
    paths: tuple[str, ...]


# public
@dataclass(frozen=True)
class TransplantState:
    """Resume checkpoint of a transplant run.

    Every source commit of the resolved range is in exactly one of
    :attr:`done`, :attr:`queue` or :attr:`pending_conflict`.

    :param source_path:
        Repository commits are read from.
    :param target_path:
        Repository commits are written to.
    :param since:
        Resolved exclusive lower bound, ``None`` for the root.
    :param until:
        Resolved inclusive upper bound.
    :param queue:
        Source commits not processed yet, oldest first.
    :param done:
        Processed source commits, in processing order.
    :param pending_conflict:
        The commit blocking the run, if any.
    :param target_head:
        Target branch tip when this state was written.
    """

    version: ClassVar[int] = 1

    source_path: str
    target_path: str
    since: str | None
    until: str
    queue: tuple[str, ...]
    done: tuple[DoneEntry, ...] = ()
    pending_conflict: PendingConflict | None = None
    target_head: str | None = None

    def __post_init__(self):
        seen = [entry.source for entry in self.done] + list(self.queue)
        if self.pending_conflict is not None:
            seen.append(self.pending_conflict.commit)
        if len(seen) != len(set(seen)):
            raise ValueError("A commit appears more than once in the state")

    @property
    def last_processed(self) -> str | None:
        return self.done[-1].source if self.done else None

    @property
    def finished(self) -> bool:
        return not self.queue and self.pending_conflict is None

    @property
    def commits(self) -> tuple[str, ...]:
        """Every source commit of the run, in range order."""
        pending = (self.pending_conflict.commit,) if self.pending_conflict else ()
        return tuple(entry.source for entry in self.done) + pending + self.queue

    def _pop(self, source: str) -> tuple[str, ...]:
        if not self.queue or self.queue[0] != source:
            raise ValueError(f"{source} is not the next queued commit")
        return self.queue[1:]

    def advance(
        self, source: str, target: str | None, target_head: str | None
    ) -> TransplantState:
        """Record the next queued commit as committed (or skipped when
        *target* is ``None``).
        """
        return replace(
            self,
            queue=self._pop(source),
            done=(*self.done, DoneEntry(source, target)),
            target_head=target_head,
        )

    def block(self, source: str, paths: tuple[str, ...]) -> TransplantState:
        """Move the next queued commit to the pending conflict slot."""
        if self.pending_conflict is not None:
            raise ValueError("A conflict is already pending")
        return replace(
            self,
            queue=self._pop(source),
            pending_conflict=PendingConflict(source, tuple(paths)),
        )

    def settle(self, target: str | None, target_head: str | None) -> TransplantState:
        """Record the pending conflict as resolved."""
        if self.pending_conflict is None:
            raise ValueError("No conflict is pending")
        return replace(
            self,
            done=(*self.done, DoneEntry(self.pending_conflict.commit, target)),
            pending_conflict=None,
            target_head=target_head,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "source_path": self.source_path,
            "target_path": self.target_path,
            "since": self.since,
            "until": self.until,
            "last_processed": self.last_processed,
            "target_head": self.target_head,
            "pending_conflict": (
                {
                    "commit": self.pending_conflict.commit,
                    "paths": list(self.pending_conflict.paths),
                }
                if self.pending_conflict
                else None
            ),
            "queue": list(self.queue),
            "done": [
                {"source": entry.source, "target": entry.target} for entry in self.done
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransplantState:
        """Rebuild a state from its serialized form.

        :raises ValueError:
            If the document is of another version or breaks the state
            invariants.
        :raises KeyError:
            If a required field is missing.
        """
        if data.get("version") != cls.version:
            raise ValueError(f"Unsupported state version {data.get('version')!r}")
        pending = data.get("pending_conflict")
        return cls(
            source_path=data["source_path"],
            target_path=data["target_path"],
            since=data["since"],
            until=data["until"],
            queue=tuple(data["queue"]),
            done=tuple(
                DoneEntry(entry["source"], entry["target"]) for entry in data["done"]
            ),
            pending_conflict=(
                PendingConflict(pending["commit"], tuple(pending["paths"]))
                if pending
                else None
            ),
            target_head=data.get("target_head"),
        )


# public
class ProgressStore:
    """Durable home of the :class:`TransplantState` of one target.

    :param path:
        Location of the state file.
    """

    path: Final[Path]

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self.path)!r})"

    def load(self) -> TransplantState | None:
        """Read the persisted state.

        :returns:
            The state, or ``None`` when no run is in progress.
        :raises StateReadFailure:
            If the file exists but is unreadable or inconsistent.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateReadFailure(str(self.path), str(e)) from e
        try:
            return TransplantState.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            raise StateReadFailure(str(self.path), str(e)) from e

    def begin(self, state: TransplantState) -> None:
        """Create the state file for a new run.

        :raises RunInProgress:
            If a state file already exists.
        :raises StateWriteFailure:
            If the file cannot be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as e:
            raise RunInProgress(str(self.path)) from e
        except OSError as e:
            raise StateWriteFailure(str(self.path), e) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                self._dump(state, file)
            self._sync_directory()
        except OSError as e:
            with contextlib.suppress(OSError):
                self.path.unlink()
            raise StateWriteFailure(str(self.path), e) from e
        logger.debug(f"Created {self.path}")

    def checkpoint(self, state: TransplantState) -> None:
        """Atomically replace the persisted state with *state*.

        Returns only once the new content is on disk.

        :raises StateWriteFailure:
            If the file cannot be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temporary = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=self.path.parent
            )
        except OSError as e:
            raise StateWriteFailure(str(self.path), e) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                self._dump(state, file)
            os.replace(temporary, self.path)
            self._sync_directory()
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(temporary)
            raise StateWriteFailure(str(self.path), e) from e
        logger.debug(
            f"Checkpointed {len(state.done)} processed, {len(state.queue)} queued"
        )

    def clear(self) -> None:
        """Remove the state file, ending the run.

        :raises StateWriteFailure:
            If the file exists and cannot be removed.
        """
        try:
            self.path.unlink(missing_ok=True)
            self._sync_directory()
        except OSError as e:
            raise StateWriteFailure(str(self.path), e) from e
        logger.debug(f"Cleared {self.path}")

    @staticmethod
    def _dump(state: TransplantState, file) -> None:
        json.dump(state.to_dict(), file, indent=2)
        file.write("\n")
        file.flush()
        os.fsync(file.fileno())

    def _sync_directory(self) -> None:
        if os.name == "nt" or not self.path.parent.exists():
            return
        fd = os.open(self.path.parent, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
