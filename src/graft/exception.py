from __future__ import annotations

from typing import Iterable


# public
class TransplantError(Exception):
    """Base class for every error raised by the transplant engine."""


# public
class ConfigError(TransplantError):
    """Raised when the configuration file is missing, malformed, or holds
    values of the wrong type.

    :param source:
        Path of the offending configuration file, if known.
    :param message:
        Human readable description of the problem.
    """

    def __init__(self, message: str, *, source: str | None = None):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


# public
class InvalidFilterPattern(ConfigError):
    """Raised at configuration load when a filter regular expression does
    not compile.
    """

    def __init__(self, pattern: str, error: Exception, *, source: str | None = None):
        self.pattern = pattern
        super().__init__(f"invalid filter pattern {pattern!r}: {error}", source=source)


# public
class RefNotFound(TransplantError):
    """Raised when a ref expression does not resolve to a commit."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"ref {ref!r} does not resolve to a commit")


# public
class InvalidRange(TransplantError):
    """Raised when the lower bound of a range is not a linear ancestor of
    the upper bound.
    """

    def __init__(self, since: str, until: str):
        self.since = since
        self.until = until
        super().__init__(f"{since} is not a linear ancestor of {until}")


# public
class UnsupportedMergeCommit(TransplantError):
    """Raised when the walked range contains a commit with several parents."""

    def __init__(self, commit: str):
        self.commit = commit
        super().__init__(f"commit {commit} is a merge commit and cannot be replayed")


# public
class DiffComputationError(TransplantError):
    """Raised when the source object store cannot provide an object
    referenced by a commit.

    This is fatal for the run and never retried: it points at a corrupt or
    incomplete source repository.
    """

    def __init__(self, commit: str, detail: str):
        self.commit = commit
        super().__init__(f"cannot compute changes of {commit}: {detail}")


# public
class ApplyConflict(TransplantError):
    """Raised when a commit does not apply cleanly on the target.

    The run halts with its state preserved; resolve the listed paths in the
    target working tree, stage them and resume.
    """

    def __init__(self, commit: str, paths: Iterable[str]):
        self.commit = commit
        self.paths = tuple(paths)
        listing = "".join(f"\n  {path}" for path in self.paths)
        super().__init__(f"commit {commit} halted due to conflicts:{listing}")


# public
class UnresolvedConflict(TransplantError):
    """Raised when resuming while a recorded conflict is still outstanding."""

    def __init__(self, commit: str, paths: Iterable[str]):
        self.commit = commit
        self.paths = tuple(paths)
        listing = "".join(f"\n  {path}" for path in self.paths)
        super().__init__(
            f"conflict on commit {commit} is not resolved; "
            f"fix and stage these paths before resuming:{listing}"
        )


# public
class RepositoryWriteError(TransplantError):
    """Raised by a repository implementation when a working tree, index or
    object write fails.
    """


# public
class CommitWriteFailure(TransplantError):
    """Raised when the target working tree, index or object store cannot
    be written. The commit stays first in the queue.
    """

    def __init__(self, commit: str, error: Exception):
        self.commit = commit
        super().__init__(f"failed to write commit {commit} on the target: {error}")


# public
class StateWriteFailure(TransplantError):
    """Raised when the progress file cannot be durably written or removed."""

    def __init__(self, path: str, error: Exception):
        self.path = path
        super().__init__(f"failed to write transplant state {path}: {error}")


# public
class StateReadFailure(TransplantError):
    """Raised when the progress file exists but cannot be trusted."""

    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__(f"cannot read transplant state {path}: {detail}")


# public
class RunInProgress(TransplantError):
    """Raised when a fresh run is requested while a state file exists."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"a transplant is already in progress ({path}); resume or abort it"
        )


# public
class NoRunInProgress(TransplantError):
    """Raised when resuming without a persisted state."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"no transplant in progress ({path} does not exist)")


# public
class DirtyWorkingTree(TransplantError):
    """Raised when the target has local changes before a run starts."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"target repository {path} has local changes; commit or reset them first"
        )
