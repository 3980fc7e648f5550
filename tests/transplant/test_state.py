import json
import os

import pytest
from hypothesis import given
from hypothesis import strategies as st

from graft.exception import RunInProgress
from graft.exception import StateReadFailure
from graft.exception import StateWriteFailure
from graft.transplant.state import DoneEntry
from graft.transplant.state import PendingConflict
from graft.transplant.state import ProgressStore
from graft.transplant.state import TransplantState
from graft.transplant.state import default_state_path

A, B, C, D = (f"{digit}" * 40 for digit in "abcd")


@pytest.fixture
def state():
    return TransplantState(
        source_path="/src",
        target_path="/dst",
        since=None,
        until=D,
        queue=(A, B, C),
        target_head="e" * 40,
    )


@pytest.fixture
def progress(tmp_path):
    return ProgressStore(default_state_path(tmp_path / ".git"))


class TestTransplantState:
    """Tests for TransplantState.

    Fully qualified name: graft.transplant.state.TransplantState
    """

    def test_advance(self, state):
        """Test recording the next queued commit.

        Given:
            A state with three queued commits
        When:
            Advancing over the first as committed and the second as skipped
        Then:
            Both should be done in order and the target head updated
        """
        # Act
        state = state.advance(A, "1" * 40, "1" * 40).advance(B, None, "1" * 40)

        # Assert
        assert state.done == (DoneEntry(A, "1" * 40), DoneEntry(B, None))
        assert state.queue == (C,)
        assert state.last_processed == B
        assert state.target_head == "1" * 40
        assert not state.finished

    def test_advance_out_of_order(self, state):
        """Test advancing over a commit that is not next.

        Given:
            A state whose next queued commit is A
        When:
            Advancing over B
        Then:
            It should raise ValueError
        """
        # Act & Assert
        with pytest.raises(ValueError, match="not the next queued commit"):
            state.advance(B, None, None)

    def test_block_and_settle(self, state):
        """Test parking a conflicting commit and settling it.

        Given:
            A state with three queued commits
        When:
            Blocking the first on a path, then settling it as committed
        Then:
            The commit should move from the queue to pending to done, and
            the range should stay complete throughout
        """
        # Act
        blocked = state.block(A, ("file.txt",))
        settled = blocked.settle("2" * 40, "2" * 40)

        # Assert
        assert blocked.pending_conflict == PendingConflict(A, ("file.txt",))
        assert blocked.queue == (B, C)
        assert blocked.commits == (A, B, C)
        assert settled.pending_conflict is None
        assert settled.done == (DoneEntry(A, "2" * 40),)
        assert settled.commits == (A, B, C)

    def test_block_twice(self, state):
        """Test a second conflict cannot be parked.

        Given:
            A state with a pending conflict
        When:
            Blocking the next commit
        Then:
            It should raise ValueError
        """
        # Arrange
        state = state.block(A, ("x",))

        # Act & Assert
        with pytest.raises(ValueError, match="already pending"):
            state.block(B, ("y",))

    def test_init_with_duplicate_commit(self):
        """Test a commit cannot be both done and queued.

        Given:
            A done entry and a queue sharing a commit
        When:
            Building the state
        Then:
            It should raise ValueError
        """
        # Act & Assert
        with pytest.raises(ValueError, match="more than once"):
            TransplantState("/s", "/t", None, D, (A,), done=(DoneEntry(A, None),))

    def test_from_dict_with_other_version(self, state):
        """Test a document of another version is refused.

        Given:
            A serialized state claiming version 2
        When:
            Rebuilding it
        Then:
            It should raise ValueError
        """
        # Arrange
        data = state.to_dict() | {"version": 2}

        # Act & Assert
        with pytest.raises(ValueError, match="version"):
            TransplantState.from_dict(data)

    @given(
        done=st.integers(min_value=0, max_value=4),
        blocked=st.booleans(),
        skipped=st.lists(st.booleans(), min_size=4, max_size=4),
    )
    def test_to_dict_from_dict(self, done, blocked, skipped):
        """Test serialization preserves every reachable state.

        Given:
            A state reached by any number of advances and an optional block
        When:
            Serializing it to JSON and back
        Then:
            It should equal the original
        """
        # Arrange
        commits = [f"{index:040x}" for index in range(5)]
        state = TransplantState("/s", "/t", "f" * 40, commits[-1], tuple(commits))
        for index in range(done):
            target = None if skipped[index] else f"{index + 100:040x}"
            state = state.advance(commits[index], target, target)
        if blocked:
            state = state.block(commits[done], ("a.txt", "b/c.txt"))

        # Act
        restored = TransplantState.from_dict(json.loads(json.dumps(state.to_dict())))

        # Assert
        assert restored == state


class TestProgressStore:
    """Tests for ProgressStore.

    Fully qualified name: graft.transplant.state.ProgressStore
    """

    def test_load_without_file(self, progress):
        """Test loading when no run is in progress.

        Given:
            A store whose file does not exist
        When:
            Loading
        Then:
            It should return None
        """
        # Act & Assert
        assert progress.load() is None

    def test_begin_and_load(self, progress, state):
        """Test creating the state file and reading it back.

        Given:
            An empty store
        When:
            Beginning a run and loading it
        Then:
            The loaded state should equal the written one and the file should
            be indented JSON
        """
        # Act
        progress.begin(state)

        # Assert
        assert progress.load() == state
        text = progress.path.read_text()
        assert text.startswith("{\n  ")
        assert json.loads(text)["last_processed"] is None

    def test_begin_twice(self, progress, state):
        """Test the state file acts as a lock.

        Given:
            A store where a run already began
        When:
            Beginning another run
        Then:
            It should raise RunInProgress and keep the first state
        """
        # Arrange
        progress.begin(state)
        other = state.advance(A, None, None)

        # Act & Assert
        with pytest.raises(RunInProgress):
            progress.begin(other)
        assert progress.load() == state

    def test_checkpoint(self, progress, state):
        """Test replacing the state atomically.

        Given:
            A begun run
        When:
            Checkpointing an advanced state
        Then:
            The new state should be loaded and no temporary file should remain
        """
        # Arrange
        progress.begin(state)
        advanced = state.advance(A, "1" * 40, "1" * 40)

        # Act
        progress.checkpoint(advanced)

        # Assert
        assert progress.load() == advanced
        assert os.listdir(progress.path.parent) == [progress.path.name]

    def test_checkpoint_with_failing_replace(self, progress, state, mocker):
        """Test a failed checkpoint leaves the previous state intact.

        Given:
            A begun run and a file system refusing renames
        When:
            Checkpointing an advanced state
        Then:
            It should raise StateWriteFailure, keep the old state and clean up
            the temporary file
        """
        # Arrange
        progress.begin(state)
        mocker.patch("graft.transplant.state.os.replace", side_effect=OSError("disk full"))

        # Act
        with pytest.raises(StateWriteFailure, match="disk full"):
            progress.checkpoint(state.advance(A, None, None))

        # Assert
        assert progress.load() == state
        assert os.listdir(progress.path.parent) == [progress.path.name]

    def test_load_with_corrupt_file(self, progress):
        """Test a truncated state file is refused.

        Given:
            A state file holding invalid JSON
        When:
            Loading
        Then:
            It should raise StateReadFailure naming the file
        """
        # Arrange
        progress.path.parent.mkdir(parents=True)
        progress.path.write_text('{"version": 1, "queue": [')

        # Act
        with pytest.raises(StateReadFailure) as excinfo:
            progress.load()

        # Assert
        assert excinfo.value.path == str(progress.path)

    def test_load_with_duplicate_commits(self, progress, state):
        """Test a state file breaking the range invariant is refused.

        Given:
            A state file listing a commit both as done and queued
        When:
            Loading
        Then:
            It should raise StateReadFailure
        """
        # Arrange
        data = state.to_dict()
        data["done"] = [{"source": A, "target": None}]
        progress.path.parent.mkdir(parents=True)
        progress.path.write_text(json.dumps(data))

        # Act & Assert
        with pytest.raises(StateReadFailure, match="more than once"):
            progress.load()

    def test_clear(self, progress, state):
        """Test ending a run.

        Given:
            A begun run
        When:
            Clearing the store twice
        Then:
            The file should be gone and the second clear should be a no-op
        """
        # Arrange
        progress.begin(state)

        # Act
        progress.clear()
        progress.clear()

        # Assert
        assert not progress.path.exists()
        assert progress.load() is None
