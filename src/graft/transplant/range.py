from __future__ import annotations

import logging

from graft.exception import InvalidRange
from graft.exception import UnsupportedMergeCommit
from graft.repository.base import SourceRepositoryLike

logger = logging.getLogger(__name__)


# public
def resolve_range(
    repository: SourceRepositoryLike, since: str | None, until: str
) -> list[str]:
    """Resolve the commits of ``since..until``, oldest first.

    The walk follows parents backward from *until* and stops on *since*,
    which is excluded. Only linear history can be replayed, so any commit on
    the walked path with more than one parent aborts the resolution.

    :param repository:
        Repository holding both refs.
    :param since:
        Exclusive lower bound. ``None`` walks down to the root commit.
    :param until:
        Inclusive upper bound.
    :returns:
        Object names of the commits to consider, oldest first. Empty when
        both refs name the same commit.
    :raises RefNotFound:
        If either ref does not resolve.
    :raises InvalidRange:
        If *since* is not an ancestor of *until* reachable through first
        parents.
    :raises UnsupportedMergeCommit:
        If a merge commit lies on the walked path.
    """
    until_id = repository.resolve(until)
    since_id = repository.resolve(since) if since is not None else None
    if since_id is not None and not repository.is_ancestor(since_id, until_id):
        raise InvalidRange(since, until)

    commits: list[str] = []
    current = until_id
    while current != since_id:
        parents = repository.read_commit(current).parents
        if len(parents) > 1:
            raise UnsupportedMergeCommit(current)
        commits.append(current)
        if not parents:
            if since_id is not None:
                raise InvalidRange(since, until)
            break
        current = parents[0]

    commits.reverse()
    logger.debug(f"Resolved {since}..{until} to {len(commits)} commit(s)")
    return commits
