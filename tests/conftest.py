import logging
from pathlib import Path

import debugpy
import git
import pytest

from graft.event import Event
from graft.repository.base import Identity
from graft.repository.git import GitRepository
from graft.transplant.state import ProgressStore

logger = logging.getLogger(__name__)


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config):
    if config.getoption("--wait-for-debugger"):
        print("Waiting for debugger to attach...")
        debugpy.listen(("0.0.0.0", 5678))
        debugpy.wait_for_client()
        print("Debugger attached.")


def pytest_addoption(parser):
    parser.addoption(
        "-D",
        "--wait-for-debugger",
        action="store_true",
        default=False,
        help="Wait for a debugpy client to attach before running tests",
    )


class RepoBuilder:
    """Builds a throwaway git repository with deterministic commits.

    Every commit is one minute after the previous one, so two builders fed
    the same operations produce the same object names.
    """

    def __init__(self, path: Path):
        self.path = path
        self.repo = git.Repo.init(path)
        self.repo.git.symbolic_ref("HEAD", "refs/heads/main")
        with self.repo.config_writer() as writer:
            writer.set_value("user", "name", "Test Runner")
            writer.set_value("user", "email", "runner@example.com")
        self.clock = 1_700_000_000

    def write(self, path: str, content: str | bytes) -> None:
        full = self.path / path
        full.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode()
        full.write_bytes(content)

    def commit(
        self,
        message: str,
        files: dict[str, str | bytes | None] | None = None,
        *,
        author: str = "Alice <alice@example.com>",
    ) -> str:
        for path, content in (files or {}).items():
            if content is None:
                (self.path / path).unlink()
                self.repo.index.remove([path])
            else:
                self.write(path, content)
                self.repo.index.add([path])
        self.clock += 60
        identity = Identity.parse(author)
        actor = git.Actor(identity.name, identity.email)
        date = f"{self.clock} +0000"
        created = self.repo.index.commit(
            message,
            author=actor,
            committer=actor,
            author_date=date,
            commit_date=date,
        )
        return created.hexsha

    def read(self, path: str) -> str | None:
        full = self.path / path
        return full.read_text() if full.exists() else None

    def head(self) -> str | None:
        return self.repo.head.commit.hexsha if self.repo.head.is_valid() else None

    def log(self) -> list[git.Commit]:
        """Commits of the current branch, oldest first."""
        if not self.repo.head.is_valid():
            return []
        return list(reversed(list(self.repo.iter_commits("HEAD"))))

    def close(self) -> None:
        self.repo.close()


@pytest.fixture
def make_repo(tmp_path):
    """Provides a factory of :class:`RepoBuilder` under ``tmp_path``."""
    builders = []

    def factory(name: str) -> RepoBuilder:
        builder = RepoBuilder(tmp_path / name)
        builders.append(builder)
        return builder

    yield factory

    for builder in builders:
        builder.close()


@pytest.fixture
def source(make_repo):
    return make_repo("source")


@pytest.fixture
def target(make_repo):
    return make_repo("target")


@pytest.fixture
def source_repository(source):
    with GitRepository(source.path) as repository:
        yield repository


@pytest.fixture
def target_repository(target):
    with GitRepository(target.path) as repository:
        yield repository


@pytest.fixture
def store(target):
    return ProgressStore(target.path / ".git" / "graft" / "state.json")


@pytest.fixture(autouse=True)
def isolated_event_handlers():
    """Keeps handlers registered by one test away from the others."""
    saved = {key: list(value) for key, value in Event._handlers.items()}
    Event._handlers.clear()
    yield
    Event._handlers.clear()
    Event._handlers.update(saved)
