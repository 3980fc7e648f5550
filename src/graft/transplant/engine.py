"""The driving loop of a transplant run.

Each queued source commit is evaluated, extracted and applied in order, and
its terminal outcome is checkpointed before the next one is considered. The
checkpoint is the single record of progress, which makes the loop safe to
interrupt at any point:

* a conflict halts the run with :class:`~graft.exception.ApplyConflict` and
  the blocked commit recorded as pending;
* a crash after a commit was created but before it was checkpointed is
  recognized on resume by comparing the new target tip with the metadata
  the queued commit would carry;
* a crash before the commit was created re-applies the same changes, which
  finds the paths already written and treats them as clean, and takes the
  target side of paths already marked as conflicting from the index.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import replace
from typing import TYPE_CHECKING
from typing import Iterator

from graft.event import TransplantEvent
from graft.exception import ApplyConflict
from graft.exception import CommitWriteFailure
from graft.exception import DirtyWorkingTree
from graft.exception import NoRunInProgress
from graft.exception import RepositoryWriteError
from graft.exception import RunInProgress
from graft.exception import UnresolvedConflict
from graft.repository.base import CommitRecord
from graft.repository.base import SourceRepositoryLike
from graft.repository.base import TargetRepositoryLike
from graft.repository.git import GitRepository
from graft.transplant.changeset import extract_changeset
from graft.transplant.changeset import snapshot_changeset
from graft.transplant.executor import Committed
from graft.transplant.executor import Conflict
from graft.transplant.executor import Failed
from graft.transplant.executor import Outcome
from graft.transplant.executor import Skipped
from graft.transplant.executor import TransplantExecutor
from graft.transplant.filter import TRAILER
from graft.transplant.filter import Decision
from graft.transplant.filter import Drop
from graft.transplant.filter import FilterEngine
from graft.transplant.filter import Keep
from graft.transplant.filter import parse_trailer
from graft.transplant.range import resolve_range
from graft.transplant.state import ProgressStore
from graft.transplant.state import TransplantState
from graft.transplant.state import default_state_path

if TYPE_CHECKING:
    from graft.config import TransplantConfig

logger = logging.getLogger(__name__)


# public
class Transplanter:
    """Copies a filtered commit range from one repository onto another.

    :param source:
        Repository commits are read from.
    :param target:
        Repository commits are written to, on its current branch.
    :param store:
        Progress file of the target.
    :param filter:
        Keep/drop rules and metadata rewriting; keeps everything unchanged
        by default.
    :param since:
        Exclusive lower bound of the range, ``None`` for the root commit.
    :param until:
        Inclusive upper bound of the range.
    :param executor:
        Applies change sets to *target*; built on demand by default.
    """

    def __init__(
        self,
        source: SourceRepositoryLike,
        target: TargetRepositoryLike,
        store: ProgressStore,
        filter: FilterEngine | None = None,
        *,
        since: str | None = None,
        until: str = "HEAD",
        executor: TransplantExecutor | None = None,
    ):
        self.source = source
        self.target = target
        self.store = store
        self.filter = filter or FilterEngine()
        self.since = since
        self.until = until
        self.executor = executor or TransplantExecutor(target)

    @classmethod
    @contextlib.contextmanager
    def open(cls, config: TransplantConfig) -> Iterator[Transplanter]:
        """Open both repositories of *config* for the duration of the
        context.

        :raises ConfigError:
            If either path is not a git repository.
        """
        with GitRepository(config.source_path) as source:
            with GitRepository(config.target_path) as target:
                store = ProgressStore(
                    config.state_file_path or default_state_path(target.git_dir)
                )
                yield cls(
                    source,
                    target,
                    store,
                    config.filter_engine(),
                    since=config.since_ref,
                    until=config.until_ref,
                )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.source.path!r} -> "
            f"{self.target.path!r}, {self.since}..{self.until})"
        )

    @property
    def state(self) -> TransplantState | None:
        """The persisted state, ``None`` when no run is in progress."""
        return self.store.load()

    def plan(self) -> list[tuple[CommitRecord, Decision]]:
        """Resolve the range and evaluate every commit without touching the
        target.

        :raises RefNotFound:
            If a bound does not resolve.
        :raises InvalidRange:
            If the bounds do not form a linear range.
        :raises UnsupportedMergeCommit:
            If a merge commit lies in the range.
        """
        commits = map(
            self.source.read_commit,
            resolve_range(self.source, self.since, self.until),
        )
        return [(commit, self.filter.evaluate(commit)) for commit in commits]

    def start(self) -> TransplantState:
        """Begin a fresh run and drive it to completion.

        :returns:
            The final state; every commit of the range is in its ``done``
            list.
        :raises RunInProgress:
            If a run is already recorded for the target.
        :raises DirtyWorkingTree:
            If the target has local changes.
        :raises ApplyConflict:
            If a commit does not apply cleanly. The run is resumable.
        """
        if self.store.load() is not None:
            raise RunInProgress(str(self.store.path))
        if self.target.is_dirty():
            raise DirtyWorkingTree(self.target.path)
        until = self.source.resolve(self.until)
        since = self.source.resolve(self.since) if self.since is not None else None
        queue = resolve_range(self.source, since, until)
        state = TransplantState(
            source_path=self.source.path,
            target_path=self.target.path,
            since=since,
            until=until,
            queue=tuple(queue),
            target_head=self.target.head(),
        )
        self.store.begin(state)
        logger.info(f"Transplanting {len(queue)} commit(s) onto {self.target.path}")
        TransplantEvent("run-started").emit()
        return self._drive(state)

    def resume(self) -> TransplantState:
        """Continue the recorded run after a conflict or an interruption.

        :raises NoRunInProgress:
            If no state is recorded.
        :raises UnresolvedConflict:
            If the pending conflict still has unresolved paths.
        :raises ApplyConflict:
            If a later commit does not apply cleanly.
        """
        state = self.store.load()
        if state is None:
            raise NoRunInProgress(str(self.store.path))
        if state.pending_conflict is not None:
            state = self._settle(state)
        else:
            state = self._reconcile(state)
        return self._drive(state)

    def abort(self) -> TransplantState:
        """Discard the recorded run.

        The target history and working tree are left as they are; commits
        already transplanted stay.

        :returns:
            The discarded state.
        :raises NoRunInProgress:
            If no state is recorded.
        """
        state = self.store.load()
        if state is None:
            raise NoRunInProgress(str(self.store.path))
        self.store.clear()
        logger.info(
            f"Aborted transplant with {len(state.done)} processed and "
            f"{len(state.queue)} queued commit(s)"
        )
        return state

    def bootstrap(self, ref: str | None = None) -> Committed | Skipped:
        """Create a single commit making the target tree equal to the source
        tree at *ref*.

        :param ref:
            Source commit to copy, the upper bound of the range by default.
        :raises RunInProgress:
            If a run is recorded for the target.
        :raises DirtyWorkingTree:
            If the target has local changes.
        :raises CommitWriteFailure:
            If the target cannot be written.
        """
        if self.store.load() is not None:
            raise RunInProgress(str(self.store.path))
        if self.target.is_dirty():
            raise DirtyWorkingTree(self.target.path)
        commit = self.source.read_commit(self.source.resolve(ref or self.until))
        message = f"Bootstrap from {commit.id}\n"
        if self.filter.trailer:
            message = f"{message}\n{TRAILER}: {commit.id}\n"
        keep = replace(self.filter.stamp(commit), message=message)
        changeset = snapshot_changeset(
            self.source, commit, keep, self.target.tracked_paths()
        )
        outcome = self.executor.snapshot(changeset)
        if isinstance(outcome, Failed):
            raise CommitWriteFailure(commit.id, outcome.error) from outcome.error
        logger.info(f"Bootstrapped {self.target.path} from {commit.short_id}")
        return outcome

    def _drive(self, state: TransplantState) -> TransplantState:
        while state.queue:
            commit = self.source.read_commit(state.queue[0])
            match self.filter.evaluate(commit):
                case Drop(reason=reason):
                    state = self._record(state, Skipped(commit.id, reason))
                case Keep() as decision:
                    changeset = extract_changeset(self.source, commit, decision)
                    outcome = self.executor.apply(
                        changeset, label=f"{commit.short_id} {commit.summary}"
                    )
                    state = self._record(state, outcome)
        self.store.clear()
        logger.info(f"Transplant complete: {self._summary(state)}")
        TransplantEvent("run-completed").emit(context=state)
        return state

    def _record(self, state: TransplantState, outcome: Outcome) -> TransplantState:
        match outcome:
            case Committed(source=source, target=target):
                state = state.advance(source, target, target)
                self.store.checkpoint(state)
                logger.info(f"Applied {source[:10]} as {target[:10]}")
                TransplantEvent("commit-applied", source=source, target=target).emit()
            case Skipped(source=source, reason=reason):
                state = state.advance(source, None, state.target_head)
                self.store.checkpoint(state)
                logger.info(f"Skipped {source[:10]}: {reason}")
                TransplantEvent("commit-skipped", source=source, reason=reason).emit()
            case Conflict(source=source, paths=paths):
                state = state.block(source, paths)
                self.store.checkpoint(state)
                TransplantEvent("commit-conflicted", source=source, paths=paths).emit()
                raise ApplyConflict(source, paths)
            case Failed(source=source, error=error):
                raise CommitWriteFailure(source, error) from error
        return state

    def _reconcile(self, state: TransplantState) -> TransplantState:
        head = self.target.head()
        if head == state.target_head or not state.queue:
            return state
        commit = self.source.read_commit(state.queue[0])
        created = self.target.read_commit(head)
        parents = (state.target_head,) if state.target_head else ()
        if created.parents == parents and self._replays(created, commit):
            logger.info(
                f"Recovered {commit.short_id}, committed as "
                f"{created.short_id} before the last checkpoint"
            )
            return self._record(state, Committed(commit.id, head))
        logger.warning(
            f"Target moved from {state.target_head} to {head} outside the transplant"
        )
        return replace(state, target_head=head)

    def _replays(self, created: CommitRecord, commit: CommitRecord) -> bool:
        if (source := parse_trailer(created.message)) is not None:
            return source == commit.id
        decision = self.filter.evaluate(commit)
        return (
            isinstance(decision, Keep)
            and created.message == decision.message
            and created.author == decision.author
        )

    def _settle(self, state: TransplantState) -> TransplantState:
        pending = state.pending_conflict
        if outstanding := self.executor.outstanding(pending.paths):
            raise UnresolvedConflict(pending.commit, outstanding)
        head = self.target.head()
        if head != state.target_head:
            logger.info(f"Conflict on {pending.commit[:10]} resolved by {head[:10]}")
            target = head
        else:
            keep = self.filter.stamp(self.source.read_commit(pending.commit))
            try:
                outcome = self.executor.conclude(
                    pending.commit, keep.message, keep.author, keep.committer
                )
            except RepositoryWriteError as e:
                raise CommitWriteFailure(pending.commit, e) from e
            target = outcome.target if isinstance(outcome, Committed) else None
            head = self.target.head()
        state = state.settle(target, head)
        self.store.checkpoint(state)
        TransplantEvent(
            "conflict-resolved", source=pending.commit, target=target
        ).emit()
        return state

    @staticmethod
    def _summary(state: TransplantState) -> str:
        applied = sum(entry.target is not None for entry in state.done)
        return f"{applied} applied, {len(state.done) - applied} skipped"
