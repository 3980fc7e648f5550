"""Commit range transplanting.

Resolution, filtering, change extraction, application and resumable
progress tracking of a transplant run.
"""

from graft.transplant.changeset import ChangeSet
from graft.transplant.changeset import PathChange
from graft.transplant.changeset import extract_changeset
from graft.transplant.changeset import snapshot_changeset
from graft.transplant.engine import Transplanter
from graft.transplant.executor import Committed
from graft.transplant.executor import Conflict
from graft.transplant.executor import Failed
from graft.transplant.executor import Outcome
from graft.transplant.executor import Skipped
from graft.transplant.executor import TransplantExecutor
from graft.transplant.filter import AuthorMap
from graft.transplant.filter import Decision
from graft.transplant.filter import Drop
from graft.transplant.filter import FilterEngine
from graft.transplant.filter import FilterRule
from graft.transplant.filter import Keep
from graft.transplant.range import resolve_range
from graft.transplant.state import DoneEntry
from graft.transplant.state import PendingConflict
from graft.transplant.state import ProgressStore
from graft.transplant.state import TransplantState

__all__ = [
    "AuthorMap",
    "ChangeSet",
    "Committed",
    "Conflict",
    "Decision",
    "DoneEntry",
    "Drop",
    "Failed",
    "FilterEngine",
    "FilterRule",
    "Keep",
    "Outcome",
    "PathChange",
    "PendingConflict",
    "ProgressStore",
    "Skipped",
    "TransplantExecutor",
    "TransplantState",
    "Transplanter",
    "extract_changeset",
    "resolve_range",
    "snapshot_changeset",
]
