import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

from graft._logging import __log_format__
from graft.config import TransplantConfig
from graft.event import Event
from graft.event import EventHandler
from graft.event import EventLike
from graft.event import TransplantEvent
from graft.event import TransplantEventType
from graft.exception import ApplyConflict
from graft.exception import CommitWriteFailure
from graft.exception import ConfigError
from graft.exception import DiffComputationError
from graft.exception import DirtyWorkingTree
from graft.exception import InvalidFilterPattern
from graft.exception import InvalidRange
from graft.exception import NoRunInProgress
from graft.exception import RefNotFound
from graft.exception import RepositoryWriteError
from graft.exception import RunInProgress
from graft.exception import StateReadFailure
from graft.exception import StateWriteFailure
from graft.exception import TransplantError
from graft.exception import UnresolvedConflict
from graft.exception import UnsupportedMergeCommit
from graft.repository.base import CommitRecord
from graft.repository.base import Identity
from graft.repository.base import SourceRepositoryLike
from graft.repository.base import TargetRepositoryLike
from graft.repository.git import GitRepository
from graft.transplant import AuthorMap
from graft.transplant import ChangeSet
from graft.transplant import Decision
from graft.transplant import Drop
from graft.transplant import FilterEngine
from graft.transplant import FilterRule
from graft.transplant import Keep
from graft.transplant import ProgressStore
from graft.transplant import TransplantExecutor
from graft.transplant import TransplantState
from graft.transplant import Transplanter
from graft.transplant import extract_changeset
from graft.transplant import resolve_range

try:
    __version__ = version("graft")
except PackageNotFoundError:
    __version__ = "unknown"

# public
__log_format__: str = __log_format__

# public
__log_level__: int = logging.WARNING

__all__ = [
    # Configuration
    "TransplantConfig",
    # Engine
    "Transplanter",
    "TransplantExecutor",
    "ProgressStore",
    "TransplantState",
    "resolve_range",
    "extract_changeset",
    "ChangeSet",
    # Filtering
    "AuthorMap",
    "Decision",
    "Drop",
    "FilterEngine",
    "FilterRule",
    "Keep",
    # Repositories
    "CommitRecord",
    "GitRepository",
    "Identity",
    "SourceRepositoryLike",
    "TargetRepositoryLike",
    # Events
    "Event",
    "EventHandler",
    "EventLike",
    "TransplantEvent",
    "TransplantEventType",
    # Exceptions
    "ApplyConflict",
    "CommitWriteFailure",
    "ConfigError",
    "DiffComputationError",
    "DirtyWorkingTree",
    "InvalidFilterPattern",
    "InvalidRange",
    "NoRunInProgress",
    "RefNotFound",
    "RepositoryWriteError",
    "RunInProgress",
    "StateReadFailure",
    "StateWriteFailure",
    "TransplantError",
    "UnresolvedConflict",
    "UnsupportedMergeCommit",
    # Logging
    "__log_format__",
    "__log_level__",
]

for symbol in __all__:
    attribute = globals().get(symbol)
    try:
        if attribute and "graft" in attribute.__module__.split("."):
            # Set the module to reflect imports of the symbol
            attribute.__module__ = __name__
    except AttributeError:
        continue
